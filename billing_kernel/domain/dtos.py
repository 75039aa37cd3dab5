"""
Module: billing_kernel.domain.dtos
Responsibility:
    Typed, immutable request objects for the consolidation workflow, and
    the single place where an untyped JSON payload is converted into them.

Architecture position:
    Kernel > Domain.  No ORM imports; services consume these objects and
    never look at the raw payload.

Invariants enforced:
    - Every money, quantity and rate value is Decimal (via to_decimal);
      floats from JSON are converted through their shortest repr.
    - Identifiers are UUIDs.  A malformed id is a ValidationError, not a
      NotFoundError.
    - Manifest numbers have set semantics: blanks dropped, duplicates
      collapsed, first-seen order kept.
    - Status is never read from the payload.

Failure modes:
    - ValidationError for malformed values, with ``field`` naming the
      payload key (camelCase, as the caller sent it).
    - InvalidInvoiceTypeError for an unknown ``type``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from billing_kernel.domain.money import ZERO, to_decimal
from billing_kernel.domain.values import InvoiceType
from billing_kernel.exceptions import InvalidInvoiceTypeError, ValidationError


def _decimal(payload: Mapping[str, Any], key: str) -> Decimal | None:
    try:
        return to_decimal(payload.get(key), field=key)
    except ValueError as exc:
        raise ValidationError(str(exc), field=key) from None


def _non_negative(payload: Mapping[str, Any], key: str) -> Decimal | None:
    value = _decimal(payload, key)
    if value is not None and value < ZERO:
        raise ValidationError(f"{key} cannot be negative", field=key)
    return value


def _date(payload: Mapping[str, Any], key: str) -> date | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            # Accept full ISO timestamps as sent by browsers
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise ValidationError(f"{key} must be an ISO date, got {value!r}", field=key)


def _uuid(value: Any, key: str) -> UUID | None:
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"{key} must be a UUID, got {value!r}", field=key) from None


def _text(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_manifest_numbers(values: Iterable[str | None]) -> tuple[str, ...]:
    """Drop blanks, collapse duplicates, keep first-seen order."""
    seen: dict[str, None] = {}
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            seen.setdefault(text, None)
    return tuple(seen)


def _line_amount(
    amount: Decimal | None, quantity: Decimal | None, rate: Decimal | None,
) -> Decimal:
    if amount is not None:
        return amount
    if quantity is not None and rate is not None:
        return quantity * rate
    return ZERO


@dataclass(frozen=True)
class MaterialLine:
    """A billed material on an invoice."""

    material_name: str
    quantity: Decimal | None = None
    rate: Decimal | None = None
    unit: str | None = None
    amount: Decimal | None = None
    manifest_no: str | None = None
    description: str | None = None

    @property
    def effective_amount(self) -> Decimal:
        """amount, else quantity * rate, else zero."""
        return _line_amount(self.amount, self.quantity, self.rate)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> MaterialLine:
        name = _text(payload, "materialName")
        if name is None:
            raise ValidationError("materialName is required for every material", field="materialName")
        return cls(
            material_name=name,
            quantity=_non_negative(payload, "quantity"),
            rate=_non_negative(payload, "rate"),
            unit=_text(payload, "unit"),
            amount=_non_negative(payload, "amount"),
            manifest_no=_text(payload, "manifestNo"),
            description=_text(payload, "description"),
        )


@dataclass(frozen=True)
class ChargeLine:
    """An additional charge (transport, handling, ...) on an invoice."""

    description: str
    quantity: Decimal | None = None
    rate: Decimal | None = None
    unit: str | None = None
    amount: Decimal | None = None

    @property
    def effective_amount(self) -> Decimal:
        return _line_amount(self.amount, self.quantity, self.rate)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ChargeLine:
        description = _text(payload, "description")
        if description is None:
            raise ValidationError(
                "description is required for every additional charge", field="description",
            )
        return cls(
            description=description,
            quantity=_non_negative(payload, "quantity"),
            rate=_non_negative(payload, "rate"),
            unit=_text(payload, "unit"),
            amount=_non_negative(payload, "amount"),
        )


@dataclass(frozen=True)
class InvoiceRequest:
    """
    A create or append/update request.

    For updates the collections are a complete replacement set, never a
    delta.  ``subtotal`` overrides the material sum when given and is
    mandatory when ``materials`` is empty (checked by the service, which
    knows whether it is creating or updating).
    """

    invoice_type: InvoiceType
    invoice_date: date
    company_id: UUID | None = None
    transporter_id: UUID | None = None
    customer_name: str | None = None
    invoice_number: str | None = None
    materials: tuple[MaterialLine, ...] = ()
    charges: tuple[ChargeLine, ...] = ()
    manifest_numbers: tuple[str, ...] = ()
    movement_record_ids: tuple[UUID, ...] = ()
    subtotal: Decimal | None = None
    cgst_rate: Decimal | None = None
    sgst_rate: Decimal | None = None
    payment_received: Decimal | None = None
    payment_received_on: date | None = None
    gst_no: str | None = None
    billed_to: str | None = None
    shipped_to: str | None = None
    description: str | None = None
    po_no: str | None = None
    po_date: date | None = None
    vehicle_no: str | None = None

    @property
    def counterparty_id(self) -> UUID | None:
        if self.invoice_type.requires_company:
            return self.company_id
        return self.transporter_id

    @property
    def counterparty_field(self) -> str:
        return "companyId" if self.invoice_type.requires_company else "transporterId"

    def material_total(self) -> Decimal:
        return sum((line.effective_amount for line in self.materials), ZERO)

    def charges_total(self) -> Decimal:
        return sum((line.effective_amount for line in self.charges), ZERO)

    def with_type(self, invoice_type: InvoiceType) -> InvoiceRequest:
        return replace(self, invoice_type=invoice_type)

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        invoice_type: InvoiceType | None = None,
        invoice_date: date | None = None,
    ) -> InvoiceRequest:
        """
        Build from the JSON request body.

        ``invoice_type`` and ``invoice_date`` fill in for keys the payload
        omits, which update bodies usually do (the invoice keeps its type).

        Movement record ids may arrive as ``movementRecordIds`` or, from
        older entry screens, as ``inwardEntryIds`` / ``outwardEntryIds``;
        all three are merged.
        """
        raw_type = payload.get("type")
        if raw_type is not None or invoice_type is None:
            try:
                invoice_type = InvoiceType(raw_type)
            except ValueError:
                raise InvalidInvoiceTypeError(
                    str(raw_type), tuple(t.value for t in InvoiceType),
                ) from None

        invoice_date = _date(payload, "date") or invoice_date
        if invoice_date is None:
            raise ValidationError("date is required", field="date")

        record_ids: dict[UUID, None] = {}
        for key in ("movementRecordIds", "inwardEntryIds", "outwardEntryIds"):
            for raw in payload.get(key) or ():
                record_id = _uuid(raw, key)
                if record_id is not None:
                    record_ids.setdefault(record_id, None)

        return cls(
            invoice_type=invoice_type,
            invoice_date=invoice_date,
            company_id=_uuid(payload.get("companyId"), "companyId"),
            transporter_id=_uuid(payload.get("transporterId"), "transporterId"),
            customer_name=_text(payload, "customerName"),
            invoice_number=_text(payload, "invoiceNo"),
            materials=tuple(
                MaterialLine.from_payload(item) for item in payload.get("materials") or ()
            ),
            charges=tuple(
                ChargeLine.from_payload(item)
                for item in payload.get("additionalChargesList") or ()
            ),
            manifest_numbers=normalize_manifest_numbers(payload.get("manifestNos") or ()),
            movement_record_ids=tuple(record_ids),
            subtotal=_non_negative(payload, "subtotal"),
            cgst_rate=_non_negative(payload, "cgstRate"),
            sgst_rate=_non_negative(payload, "sgstRate"),
            payment_received=_non_negative(payload, "paymentReceived"),
            payment_received_on=_date(payload, "paymentReceivedOn"),
            gst_no=_text(payload, "gstNo"),
            billed_to=_text(payload, "billedTo"),
            shipped_to=_text(payload, "shippedTo"),
            description=_text(payload, "description"),
            po_no=_text(payload, "poNo"),
            po_date=_date(payload, "poDate"),
            vehicle_no=_text(payload, "vehicleNo"),
        )


@dataclass(frozen=True)
class PaymentUpdate:
    """Replacement payment figures for an invoice."""

    payment_received: Decimal
    payment_received_on: date | None = None

    def __post_init__(self) -> None:
        if self.payment_received < ZERO:
            raise ValidationError("paymentReceived cannot be negative", field="paymentReceived")

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> PaymentUpdate:
        amount = _decimal(payload, "paymentReceived")
        if amount is None:
            raise ValidationError("paymentReceived is required", field="paymentReceived")
        return cls(
            payment_received=amount,
            payment_received_on=_date(payload, "paymentReceivedOn"),
        )
