"""
InvoiceConsolidationService -- create, append to, pay and delete invoices.

Responsibility:
    Orchestrates SequenceAllocator, LinkageGuard and TaxCalculator so that
    an invoice, its line items, its manifest refs and the linkage of its
    movement records are always written together and always agree.

Architecture position:
    Kernel > Services.  The only writer of invoices.  Consumes
    domain/dtos.py request objects; the HTTP layer converts JSON with
    InvoiceRequest.from_payload() before calling in.

Entry points:
    create_invoice(request)
        1. counterparty required for the invoice type, and must exist
        2. explicit invoice number already in use -> idempotent append:
           validate and link the records to that invoice, return it
           otherwise unchanged
        3. LinkageGuard.validate_linkable(records)
        4. subtotal present (explicit, or from materials)
        5. invoice number: explicit, else SequenceAllocator
        6. TaxCalculator totals and derived status
        7. persist invoice + line items + manifest refs, flush
        8. LinkageGuard.link(records, invoice)

    update_invoice(invoice_id, request)
        The request is a complete replacement set, not a delta.
        1. LinkageGuard.validate_linkable(records, exclude=invoice)
        2. subtotal from replacement materials, explicit override, or the
           stored subtotal when neither is supplied
        3. TaxCalculator totals; status re-derived
        4. delete-then-insert line items and manifest refs
        5. unlink-all-then-link-selected

    record_payment / delete_invoice / ensure_invoice_for_outward

    run_consolidation(session_factory, config, operation)
        One request in its own transaction, retried on number collisions
        up to config.max_conflict_retries times.

Invariants enforced:
    - grand_total == round(subtotal + additional_charges, 2) + cgst + sgst
      after every write.
    - status is re-derived on every write touching payment or totals.
    - A movement record is linked to at most one invoice (LinkageGuard).
    - Deleting an invoice unlinks its records before the row goes.

Failure modes:
    All errors propagate unchanged; nothing is swallowed.  The caller's
    session_scope() rolls back, so no partial invoice and no partially
    linked record set ever commits.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from billing_kernel.db.engine import run_in_transaction
from billing_kernel.domain.dtos import (
    InvoiceRequest,
    PaymentUpdate,
    normalize_manifest_numbers,
)
from billing_kernel.domain.money import ZERO, round_money
from billing_kernel.domain.tax import TaxCalculator, TaxTotals
from billing_kernel.domain.values import InvoiceType
from billing_kernel.exceptions import (
    CounterpartyNotFoundError,
    InvoiceNotFoundError,
    MissingFieldError,
    ValidationError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.counterparty import Counterparty, CounterpartyKind
from billing_kernel.models.invoice import Invoice, InvoiceLineItem, InvoiceManifestRef
from billing_kernel.services.base import BaseService
from billing_kernel.services.linkage_guard import LinkageGuard
from billing_kernel.services.sequence_service import SequenceAllocator

logger = get_logger("services.consolidation")

T = TypeVar("T")


class ConsolidationOutcome(str, Enum):
    CREATED = "created"
    APPENDED = "appended"
    UPDATED = "updated"
    PAYMENT_RECORDED = "payment_recorded"


@dataclass(frozen=True)
class ConsolidationResult:
    """What a workflow call did, and to which invoice."""

    invoice: Invoice
    outcome: ConsolidationOutcome
    linked_record_ids: tuple[UUID, ...] = ()
    unlinked_count: int = 0


class InvoiceConsolidationService(BaseService):
    """
    Invoice consolidation workflow.

    Contract:
        Every public method runs inside the caller's transaction and
        flushes, never commits.  Pair with session_scope() or
        run_in_transaction() so that a number collision is retried.

    Usage:
        with session_scope() as session:
            service = build_consolidation_service(session, get_active_config())
            result = service.create_invoice(InvoiceRequest.from_payload(body))
            result.invoice.invoice_number
    """

    def __init__(
        self,
        session: Session,
        allocator: SequenceAllocator,
        linkage: LinkageGuard,
        calculator: TaxCalculator,
    ):
        super().__init__(session)
        self.allocator = allocator
        self.linkage = linkage
        self.calculator = calculator

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _lock_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self.session.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def _find_by_number(self, invoice_number: str) -> Invoice | None:
        return self.session.execute(
            select(Invoice)
            .where(Invoice.invoice_number == invoice_number)
            .with_for_update()
        ).scalar_one_or_none()

    def _require_counterparty(self, request: InvoiceRequest) -> Counterparty:
        kind = (
            CounterpartyKind.COMPANY
            if request.invoice_type.requires_company
            else CounterpartyKind.TRANSPORTER
        )
        counterparty_id = request.counterparty_id
        if counterparty_id is None:
            raise MissingFieldError(
                request.counterparty_field, f"{request.invoice_type.value} invoices",
            )
        counterparty = self.session.get(Counterparty, counterparty_id)
        if counterparty is None or counterparty.kind != kind.value:
            raise CounterpartyNotFoundError(str(counterparty_id), kind.value)
        return counterparty

    # ------------------------------------------------------------------
    # Totals and line items
    # ------------------------------------------------------------------

    def _totals(
        self,
        subtotal: Decimal,
        request: InvoiceRequest,
        cgst_rate: Decimal | None = None,
        sgst_rate: Decimal | None = None,
    ) -> TaxTotals:
        charges = request.charges_total()
        if subtotal < ZERO:
            raise ValidationError("subtotal cannot be negative", field="subtotal")
        if charges < ZERO:
            raise ValidationError(
                "additional charges cannot be negative", field="additionalChargesList",
            )
        return self.calculator.compute(
            subtotal,
            charges,
            request.cgst_rate if request.cgst_rate is not None else cgst_rate,
            request.sgst_rate if request.sgst_rate is not None else sgst_rate,
        )

    @staticmethod
    def _apply_totals(invoice: Invoice, totals: TaxTotals) -> None:
        invoice.subtotal = totals.subtotal
        invoice.additional_charges = totals.additional_charges
        invoice.cgst_rate = totals.cgst_rate
        invoice.sgst_rate = totals.sgst_rate
        invoice.cgst = totals.cgst
        invoice.sgst = totals.sgst
        invoice.grand_total = totals.grand_total

    def _apply_status(self, invoice: Invoice) -> None:
        invoice.status = self.calculator.status(
            Decimal(invoice.payment_received), Decimal(invoice.grand_total),
        ).value

    @staticmethod
    def _build_line_items(request: InvoiceRequest) -> list[InvoiceLineItem]:
        items = [
            InvoiceLineItem(
                position=position,
                name=line.material_name,
                description=line.description,
                quantity=line.quantity,
                rate=line.rate,
                unit=line.unit,
                amount=round_money(line.effective_amount),
                manifest_no=line.manifest_no,
                is_additional_charge=False,
            )
            for position, line in enumerate(request.materials)
        ]
        offset = len(items)
        items.extend(
            InvoiceLineItem(
                position=offset + position,
                name=line.description,
                description=line.description,
                quantity=line.quantity,
                rate=line.rate,
                unit=line.unit,
                amount=round_money(line.effective_amount),
                is_additional_charge=True,
            )
            for position, line in enumerate(request.charges)
        )
        return items

    @staticmethod
    def _build_manifest_refs(request: InvoiceRequest) -> list[InvoiceManifestRef]:
        return [
            InvoiceManifestRef(manifest_no=manifest_no)
            for manifest_no in normalize_manifest_numbers(request.manifest_numbers)
        ]

    @staticmethod
    def _apply_header(invoice: Invoice, request: InvoiceRequest) -> None:
        for attr in (
            "customer_name", "gst_no", "billed_to", "shipped_to",
            "description", "po_no", "po_date", "vehicle_no",
        ):
            value = getattr(request, attr)
            if value is not None:
                setattr(invoice, attr, value)

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def create_invoice(self, request: InvoiceRequest) -> ConsolidationResult:
        """
        Create an invoice, or append records to an existing one when the
        request names an invoice number that is already in use.

        Raises:
            MissingFieldError: counterparty id absent for the type.
            CounterpartyNotFoundError: unknown or wrong-kind counterparty.
            ValidationError: no materials and no subtotal.
            RecordAlreadyLinkedError: a record is billed elsewhere.
            MovementRecordNotFoundError: unknown record id.
            DuplicateIdentifierError: the number was taken concurrently.
        """
        counterparty = self._require_counterparty(request)
        record_ids = tuple(dict.fromkeys(request.movement_record_ids))

        if request.invoice_number:
            existing = self._find_by_number(request.invoice_number)
            if existing is not None:
                return self._append_records(existing, record_ids)

        self.linkage.validate_linkable(record_ids)

        if request.subtotal is not None:
            subtotal = request.subtotal
        elif request.materials:
            subtotal = request.material_total()
        else:
            raise ValidationError(
                "subtotal is required when no materials are supplied", field="subtotal",
            )

        invoice_number = request.invoice_number or self.allocator.next_invoice_number(
            request.invoice_date,
        )
        totals = self._totals(subtotal, request)

        invoice = Invoice(
            invoice_number=invoice_number,
            invoice_type=request.invoice_type.value,
            invoice_date=request.invoice_date,
            counterparty_id=counterparty.id,
            customer_name=request.customer_name or counterparty.name,
            payment_received=round_money(request.payment_received or ZERO),
            payment_received_on=request.payment_received_on,
            line_items=self._build_line_items(request),
            manifest_refs=self._build_manifest_refs(request),
        )
        self._apply_header(invoice, request)
        self._apply_totals(invoice, totals)
        self._apply_status(invoice)

        self.add_unique(invoice, "Invoice", invoice_number)

        self.linkage.link(record_ids, invoice.id)

        with LogContext.bind(invoice_id=str(invoice.id)):
            logger.info(
                "invoice_created",
                extra={
                    "invoice_number": invoice.invoice_number,
                    "invoice_type": request.invoice_type.value,
                    "subtotal": invoice.subtotal,
                    "grand_total": invoice.grand_total,
                    "status": invoice.status,
                    "record_count": len(record_ids),
                },
            )
        return ConsolidationResult(
            invoice=invoice,
            outcome=ConsolidationOutcome.CREATED,
            linked_record_ids=record_ids,
        )

    def _append_records(self, invoice: Invoice, record_ids: tuple[UUID, ...]) -> ConsolidationResult:
        # Records already on this invoice are accepted so a re-submit is a no-op
        self.linkage.validate_linkable(record_ids, exclude_invoice_id=invoice.id)
        self.linkage.link(record_ids, invoice.id)

        with LogContext.bind(invoice_id=str(invoice.id)):
            logger.info(
                "invoice_appended",
                extra={
                    "invoice_number": invoice.invoice_number,
                    "record_count": len(record_ids),
                },
            )
        return ConsolidationResult(
            invoice=invoice,
            outcome=ConsolidationOutcome.APPENDED,
            linked_record_ids=record_ids,
        )

    def update_invoice(self, invoice_id: UUID, request: InvoiceRequest) -> ConsolidationResult:
        """
        Replace an invoice's line items, manifest refs and linked records.

        The invoice keeps its number, type and counterparty.  Rates not
        supplied fall back to the rates stored on the invoice.

        Raises:
            InvoiceNotFoundError, RecordAlreadyLinkedError,
            MovementRecordNotFoundError.
        """
        invoice = self._lock_invoice(invoice_id)
        record_ids = tuple(dict.fromkeys(request.movement_record_ids))

        self.linkage.validate_linkable(record_ids, exclude_invoice_id=invoice.id)

        if request.subtotal is not None:
            subtotal = request.subtotal
        elif request.materials:
            subtotal = request.material_total()
        else:
            subtotal = Decimal(invoice.subtotal)

        totals = self._totals(
            subtotal,
            request,
            cgst_rate=Decimal(invoice.cgst_rate),
            sgst_rate=Decimal(invoice.sgst_rate),
        )

        # Delete first: the replacement set may reuse manifest numbers
        invoice.line_items.clear()
        invoice.manifest_refs.clear()
        self.session.flush()
        invoice.line_items.extend(self._build_line_items(request))
        invoice.manifest_refs.extend(self._build_manifest_refs(request))

        if request.invoice_date is not None:
            invoice.invoice_date = request.invoice_date
        self._apply_header(invoice, request)
        if request.payment_received is not None:
            invoice.payment_received = round_money(request.payment_received)
            invoice.payment_received_on = request.payment_received_on
        self._apply_totals(invoice, totals)
        self._apply_status(invoice)
        self.session.flush()

        unlinked, _ = self.linkage.replace_links(invoice.id, record_ids)

        with LogContext.bind(invoice_id=str(invoice.id)):
            logger.info(
                "invoice_updated",
                extra={
                    "invoice_number": invoice.invoice_number,
                    "grand_total": invoice.grand_total,
                    "status": invoice.status,
                    "record_count": len(record_ids),
                    "unlinked_count": unlinked,
                },
            )
        return ConsolidationResult(
            invoice=invoice,
            outcome=ConsolidationOutcome.UPDATED,
            linked_record_ids=record_ids,
            unlinked_count=unlinked,
        )

    def record_payment(self, invoice_id: UUID, payment: PaymentUpdate) -> ConsolidationResult:
        """Replace the payment figures and re-derive status."""
        invoice = self._lock_invoice(invoice_id)
        invoice.payment_received = round_money(payment.payment_received)
        invoice.payment_received_on = payment.payment_received_on
        self._apply_status(invoice)
        self.session.flush()

        with LogContext.bind(invoice_id=str(invoice.id)):
            logger.info(
                "invoice_payment_recorded",
                extra={
                    "invoice_number": invoice.invoice_number,
                    "payment_received": invoice.payment_received,
                    "grand_total": invoice.grand_total,
                    "status": invoice.status,
                },
            )
        return ConsolidationResult(invoice=invoice, outcome=ConsolidationOutcome.PAYMENT_RECORDED)

    def delete_invoice(self, invoice_id: UUID) -> int:
        """
        Unlink every movement record, then delete the invoice.

        Line items and manifest refs go with it.  Returns the number of
        records unlinked.
        """
        invoice = self._lock_invoice(invoice_id)
        invoice_number = invoice.invoice_number
        unlinked = self.linkage.unlink(invoice.id)
        self.session.delete(invoice)
        self.session.flush()

        logger.info(
            "invoice_deleted",
            extra={
                "invoice_id": str(invoice_id),
                "invoice_number": invoice_number,
                "unlinked_count": unlinked,
            },
        )
        return unlinked

    def ensure_invoice_for_outward(self, request: InvoiceRequest) -> ConsolidationResult:
        """
        Attach outward records to the invoice named by ``invoice_number``,
        creating it (as an Outward invoice) if it does not exist yet.
        """
        if not request.invoice_number:
            raise MissingFieldError("invoiceNo", "outward invoice linkage")
        return self.create_invoice(request.with_type(InvoiceType.OUTWARD))


def build_consolidation_service(session: Session, config) -> InvoiceConsolidationService:
    """
    Wire the workflow for one session from a BillingConfig.

    The kernel never loads configuration itself; callers pass
    billing_config.get_active_config() (or a test config).
    """
    return InvoiceConsolidationService(
        session,
        allocator=SequenceAllocator.from_config(session, config),
        linkage=LinkageGuard(session),
        calculator=TaxCalculator.from_config(config),
    )


def run_consolidation(
    session_factory: sessionmaker[Session],
    config,
    operation: Callable[[InvoiceConsolidationService], T],
) -> T:
    """
    Run ``operation`` against a freshly wired service in its own transaction.

    A DuplicateIdentifierError (two writers took the same number) rolls
    the attempt back and starts over with a new session, at most
    ``config.max_conflict_retries`` times in total.  Linkage conflicts and
    validation errors propagate on the first attempt.

    Usage:
        result = run_consolidation(
            get_session_factory(), config,
            lambda service: service.create_invoice(request),
        )
    """
    return run_in_transaction(
        lambda session: operation(build_consolidation_service(session, config)),
        session_factory,
        max_attempts=config.max_conflict_retries,
    )
