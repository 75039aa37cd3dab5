"""
Invoice query selector.

Read-only access to invoices, their linked movement records, billing
statistics and per-record projections.

Key design decisions:
- Returns DTOs (frozen dataclasses), not ORM models
- Uses the caller's Session, never creates its own
- Aggregates are computed from the invoice rows on every call; there are
  no stored running totals
- project_records() is the store-backed side of AllocationProjector: it
  supplies each record's invoice and the invoice's line item count as the
  sibling count

Money from aggregate queries is re-quantized to two places so SQLite's
float-backed SUM cannot leak binary noise into reports.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from billing_kernel.domain.allocation import AllocationProjector, RecordProjection
from billing_kernel.domain.money import ZERO, round_money
from billing_kernel.domain.values import InvoiceType, PaymentStatus
from billing_kernel.exceptions import InvoiceNotFoundError, MovementRecordNotFoundError
from billing_kernel.models.invoice import Invoice, InvoiceLineItem
from billing_kernel.models.movement import MovementRecord
from billing_kernel.selectors.base import BaseSelector


def _money(value) -> Decimal:
    return round_money(Decimal(str(value)) if value is not None else ZERO)


@dataclass(frozen=True)
class LineItemDTO:
    """One material or additional charge as printed on the invoice."""

    name: str
    description: str | None
    quantity: Decimal | None
    rate: Decimal | None
    unit: str | None
    amount: Decimal | None
    manifest_no: str | None
    is_additional_charge: bool


@dataclass(frozen=True)
class InvoiceDTO:
    """Data transfer object for an invoice."""

    id: UUID
    invoice_number: str
    invoice_type: str
    invoice_date: date
    counterparty_id: UUID
    customer_name: str | None
    subtotal: Decimal
    additional_charges: Decimal
    cgst_rate: Decimal
    sgst_rate: Decimal
    cgst: Decimal
    sgst: Decimal
    grand_total: Decimal
    payment_received: Decimal
    payment_received_on: date | None
    status: str
    line_items: tuple[LineItemDTO, ...]
    manifest_numbers: tuple[str, ...]
    linked_record_ids: tuple[UUID, ...]

    @property
    def materials(self) -> tuple[LineItemDTO, ...]:
        return tuple(item for item in self.line_items if not item.is_additional_charge)

    @property
    def charges(self) -> tuple[LineItemDTO, ...]:
        return tuple(item for item in self.line_items if item.is_additional_charge)

    @property
    def balance_due(self) -> Decimal:
        return self.grand_total - self.payment_received

    @property
    def is_open(self) -> bool:
        return self.status != PaymentStatus.PAID.value


@dataclass(frozen=True)
class GroupTotals:
    """Invoice count and sums for one type or one status."""

    key: str
    count: int
    total_invoiced: Decimal
    total_received: Decimal


@dataclass(frozen=True)
class InvoiceStats:
    """Billing dashboard figures."""

    total_invoices: int
    total_invoiced: Decimal
    total_received: Decimal
    total_pending: Decimal
    by_type: tuple[GroupTotals, ...]
    by_status: tuple[GroupTotals, ...]

    def for_type(self, invoice_type: InvoiceType | str) -> GroupTotals | None:
        key = InvoiceType(invoice_type).value
        return next((group for group in self.by_type if group.key == key), None)

    def for_status(self, status: PaymentStatus | str) -> GroupTotals | None:
        key = PaymentStatus(status).value
        return next((group for group in self.by_status if group.key == key), None)


class InvoiceSelector(BaseSelector):
    """
    Read-only invoice queries.

    Usage:
        selector = InvoiceSelector(session)
        view = selector.get_by_number("INV-202601-0001")
        stats = selector.invoice_stats()
        projections = selector.project_records([record.id])
    """

    def __init__(self, session: Session, projector: AllocationProjector | None = None):
        super().__init__(session)
        self.projector = projector or AllocationProjector()

    def _to_dto(self, invoice: Invoice) -> InvoiceDTO:
        return InvoiceDTO(
            id=invoice.id,
            invoice_number=invoice.invoice_number,
            invoice_type=invoice.invoice_type,
            invoice_date=invoice.invoice_date,
            counterparty_id=invoice.counterparty_id,
            customer_name=invoice.customer_name,
            subtotal=_money(invoice.subtotal),
            additional_charges=_money(invoice.additional_charges),
            cgst_rate=Decimal(invoice.cgst_rate),
            sgst_rate=Decimal(invoice.sgst_rate),
            cgst=_money(invoice.cgst),
            sgst=_money(invoice.sgst),
            grand_total=_money(invoice.grand_total),
            payment_received=_money(invoice.payment_received),
            payment_received_on=invoice.payment_received_on,
            status=invoice.status,
            line_items=tuple(
                LineItemDTO(
                    name=item.name,
                    description=item.description,
                    quantity=item.quantity,
                    rate=item.rate,
                    unit=item.unit,
                    amount=item.amount,
                    manifest_no=item.manifest_no,
                    is_additional_charge=item.is_additional_charge,
                )
                for item in invoice.line_items
            ),
            manifest_numbers=tuple(invoice.manifest_numbers),
            linked_record_ids=tuple(self.linked_record_ids(invoice.id)),
        )

    def _load(self, *criteria) -> Invoice | None:
        return self.session.execute(
            select(Invoice)
            .where(*criteria)
            .options(selectinload(Invoice.line_items), selectinload(Invoice.manifest_refs))
        ).scalar_one_or_none()

    def get_invoice(self, invoice_id: UUID) -> InvoiceDTO:
        invoice = self._load(Invoice.id == invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return self._to_dto(invoice)

    def get_by_number(self, invoice_number: str) -> InvoiceDTO:
        invoice = self._load(Invoice.invoice_number == invoice_number)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_number)
        return self._to_dto(invoice)

    def open_invoices_for_counterparty(
        self,
        counterparty_id: UUID,
        invoice_type: InvoiceType | str | None = None,
    ) -> list[InvoiceDTO]:
        """
        Invoices not yet paid for a counterparty, newest first.

        Feeds the append-vs-new chooser shown before an append.
        """
        query = (
            select(Invoice)
            .where(
                Invoice.counterparty_id == counterparty_id,
                Invoice.status != PaymentStatus.PAID.value,
            )
            .options(selectinload(Invoice.line_items), selectinload(Invoice.manifest_refs))
            .order_by(Invoice.invoice_date.desc(), Invoice.invoice_number.desc())
        )
        if invoice_type is not None:
            query = query.where(Invoice.invoice_type == InvoiceType(invoice_type).value)
        return [self._to_dto(invoice) for invoice in self.session.execute(query).scalars()]

    def linked_record_ids(self, invoice_id: UUID) -> list[UUID]:
        return list(
            self.session.execute(
                select(MovementRecord.id)
                .where(MovementRecord.invoice_id == invoice_id)
                .order_by(MovementRecord.direction, MovementRecord.serial_no)
            ).scalars()
        )

    def invoice_stats(self, invoice_type: InvoiceType | str | None = None) -> InvoiceStats:
        """
        Count and sums overall, per type and per status.

        total_pending is invoiced minus received; overpayments therefore
        reduce it.
        """
        criteria = []
        if invoice_type is not None:
            criteria.append(Invoice.invoice_type == InvoiceType(invoice_type).value)

        count, invoiced, received = self.session.execute(
            select(
                func.count(Invoice.id),
                func.sum(Invoice.grand_total),
                func.sum(Invoice.payment_received),
            ).where(*criteria)
        ).one()

        def grouped(column) -> tuple[GroupTotals, ...]:
            rows = self.session.execute(
                select(
                    column,
                    func.count(Invoice.id),
                    func.sum(Invoice.grand_total),
                    func.sum(Invoice.payment_received),
                )
                .where(*criteria)
                .group_by(column)
                .order_by(column)
            ).all()
            return tuple(
                GroupTotals(
                    key=key,
                    count=group_count,
                    total_invoiced=_money(group_invoiced),
                    total_received=_money(group_received),
                )
                for key, group_count, group_invoiced, group_received in rows
            )

        total_invoiced = _money(invoiced)
        total_received = _money(received)
        return InvoiceStats(
            total_invoices=count or 0,
            total_invoiced=total_invoiced,
            total_received=total_received,
            total_pending=total_invoiced - total_received,
            by_type=grouped(Invoice.invoice_type),
            by_status=grouped(Invoice.status),
        )

    def _sibling_counts(self, invoice_ids: set[UUID]) -> dict[UUID, int]:
        if not invoice_ids:
            return {}
        rows = self.session.execute(
            select(InvoiceLineItem.invoice_id, func.count(InvoiceLineItem.id))
            .where(InvoiceLineItem.invoice_id.in_(invoice_ids))
            .group_by(InvoiceLineItem.invoice_id)
        ).all()
        return {invoice_id: count for invoice_id, count in rows}

    def project_records(self, record_ids: list[UUID]) -> dict[UUID, RecordProjection]:
        """
        Estimated gross amount and payment received per movement record.

        These are reporting approximations (see domain.allocation), not
        ledger amounts.

        Raises:
            MovementRecordNotFoundError: An id does not exist.
        """
        record_ids = list(dict.fromkeys(record_ids))
        if not record_ids:
            return {}
        records = {
            record.id: record
            for record in self.session.execute(
                select(MovementRecord).where(MovementRecord.id.in_(record_ids))
            ).scalars()
        }
        missing = [str(record_id) for record_id in record_ids if record_id not in records]
        if missing:
            raise MovementRecordNotFoundError(missing)

        invoice_ids = {r.invoice_id for r in records.values() if r.invoice_id is not None}
        invoices = {}
        if invoice_ids:
            invoices = {
                invoice.id: invoice
                for invoice in self.session.execute(
                    select(Invoice).where(Invoice.id.in_(invoice_ids))
                ).scalars()
            }
        siblings = self._sibling_counts(invoice_ids)

        return {
            record_id: self.projector.project_for_record(
                records[record_id],
                invoices.get(records[record_id].invoice_id),
                siblings.get(records[record_id].invoice_id),
            )
            for record_id in record_ids
        }

    def project_invoice(self, invoice_id: UUID) -> dict[UUID, RecordProjection]:
        """Projections for every record linked to one invoice."""
        if self.session.get(Invoice, invoice_id) is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return self.project_records(self.linked_record_ids(invoice_id))
