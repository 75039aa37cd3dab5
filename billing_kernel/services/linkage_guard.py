"""
LinkageGuard -- at most one invoice per movement record.

Responsibility:
    Validates and performs the link/unlink operations on
    movement_records.invoice_id.  No other code writes that column.

Architecture position:
    Kernel > Services.  Called by InvoiceConsolidationService for create,
    append/update and delete.

Invariants enforced:
    - A record is linked to at most one invoice at any time.  The column
      itself can hold only one reference; this guard stops a second
      invoice from silently overwriting the first.
    - Candidate records are locked (``SELECT ... FOR UPDATE``, ordered by
      id) before they are checked, so two concurrent invoices claiming
      the same record serialize and the second sees the first's link.
    - Replacing an invoice's record set is unlink-all-then-link-selected,
      never a diff.  The final linked set equals the supplied set even if
      earlier state was inconsistent.

Failure modes:
    - MovementRecordNotFoundError: one or more ids do not exist.
    - RecordAlreadyLinkedError: a record is linked to another invoice.
      The message names the record's manifest number and the holding
      invoice number.
"""

from collections.abc import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select, update

from billing_kernel.exceptions import MovementRecordNotFoundError, RecordAlreadyLinkedError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import Invoice
from billing_kernel.models.movement import MovementRecord
from billing_kernel.services.base import BaseService

logger = get_logger("services.linkage")


def _unique_ids(record_ids: Iterable[UUID]) -> list[UUID]:
    return list(dict.fromkeys(record_ids))


class LinkageGuard(BaseService):
    """
    Guards the movement record -> invoice reference.

    Contract:
        validate_linkable() raises on the first record held by an invoice
        other than ``exclude_invoice_id``; link()/unlink()/replace_links()
        flush their changes and return counts.

    Non-goals:
        - Does NOT create or delete invoices or movement records.
    """

    def _lock_records(self, record_ids: Sequence[UUID]) -> list[MovementRecord]:
        if not record_ids:
            return []
        records = list(
            self.session.execute(
                select(MovementRecord)
                .where(MovementRecord.id.in_(record_ids))
                .order_by(MovementRecord.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )
        found = {record.id for record in records}
        missing = [str(record_id) for record_id in record_ids if record_id not in found]
        if missing:
            raise MovementRecordNotFoundError(missing)
        return records

    def validate_linkable(
        self,
        record_ids: Iterable[UUID],
        exclude_invoice_id: UUID | None = None,
    ) -> list[MovementRecord]:
        """
        Check that every record is free, or already on ``exclude_invoice_id``.

        Returns the locked records so callers need not reload them.

        Raises:
            MovementRecordNotFoundError: An id does not exist.
            RecordAlreadyLinkedError: A record is linked elsewhere.
        """
        records = self._lock_records(_unique_ids(record_ids))

        for record in records:
            if record.invoice_id is None or record.invoice_id == exclude_invoice_id:
                continue
            holder = self.session.get(Invoice, record.invoice_id)
            invoice_number = holder.invoice_number if holder is not None else str(record.invoice_id)
            logger.warning(
                "linkage_conflict",
                extra={
                    "record_id": str(record.id),
                    "manifest_no": record.manifest_no,
                    "held_by_invoice_id": str(record.invoice_id),
                    "held_by_invoice_number": invoice_number,
                    "requested_invoice_id": str(exclude_invoice_id) if exclude_invoice_id else None,
                },
            )
            raise RecordAlreadyLinkedError(
                record_id=str(record.id),
                manifest_no=record.manifest_no,
                invoice_id=str(record.invoice_id),
                invoice_number=invoice_number,
            )

        return records

    def link(self, record_ids: Iterable[UUID], invoice_id: UUID) -> int:
        """
        Point every record at ``invoice_id``.

        Re-validates under lock; records already on this invoice are
        accepted.  Returns the number of records now linked.
        """
        records = self.validate_linkable(record_ids, exclude_invoice_id=invoice_id)
        for record in records:
            record.invoice_id = invoice_id
        self.session.flush()

        if records:
            logger.info(
                "records_linked",
                extra={"invoice_id": str(invoice_id), "record_count": len(records)},
            )
        return len(records)

    def unlink(self, invoice_id: UUID) -> int:
        """Null the reference on every record pointing at ``invoice_id``."""
        self.session.flush()
        result = self.session.execute(
            update(MovementRecord)
            .where(MovementRecord.invoice_id == invoice_id)
            .values(invoice_id=None)
            .execution_options(synchronize_session="fetch")
        )
        count = result.rowcount or 0
        if count:
            logger.info(
                "records_unlinked",
                extra={"invoice_id": str(invoice_id), "record_count": count},
            )
        return count

    def replace_links(self, invoice_id: UUID, record_ids: Iterable[UUID]) -> tuple[int, int]:
        """
        Make the invoice's linked set exactly ``record_ids``.

        Validation happens before anything is unlinked so a conflict leaves
        the current linkage untouched.  Returns (unlinked, linked).
        """
        record_ids = _unique_ids(record_ids)
        self.validate_linkable(record_ids, exclude_invoice_id=invoice_id)
        unlinked = self.unlink(invoice_id)
        linked = self.link(record_ids, invoice_id)
        return unlinked, linked

    def linked_record_ids(self, invoice_id: UUID) -> list[UUID]:
        return list(
            self.session.execute(
                select(MovementRecord.id)
                .where(MovementRecord.invoice_id == invoice_id)
                .order_by(MovementRecord.serial_no)
            ).scalars()
        )
