"""
MovementRecordService -- registration of inward and outward consignments.

Responsibility:
    Creates movement records with their serial numbers (per direction)
    and, for inward records, their lot numbers.  This is the entry point
    the operational forms use; the billing kernel itself only links and
    unlinks the records afterwards.

Architecture position:
    Kernel > Services.  Uses SequenceAllocator for numbering.

Invariants enforced:
    - Serial numbers are unique per direction; lot numbers are globally
      unique.  Explicitly supplied numbers are checked up front, generated
      ones come from the locked counter.
    - A new record is never linked to an invoice.
    - Quantity is Decimal and non-negative; rate is optional (priced later).

Failure modes:
    - MissingFieldError / ValidationError: required field absent or invalid.
    - CounterpartyNotFoundError: unknown id, or a counterparty of the
      wrong kind for the direction.
    - DuplicateIdentifierError: explicit serial or lot number taken, or a
      concurrent writer won the race at flush time.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.domain.money import ZERO
from billing_kernel.exceptions import (
    CounterpartyNotFoundError,
    DuplicateIdentifierError,
    MissingFieldError,
    ValidationError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.counterparty import Counterparty, CounterpartyKind
from billing_kernel.models.movement import MovementDirection, MovementRecord
from billing_kernel.services.base import BaseService
from billing_kernel.services.sequence_service import SequenceAllocator

logger = get_logger("services.movement")

_KIND_FOR_DIRECTION = {
    MovementDirection.INWARD: CounterpartyKind.COMPANY,
    MovementDirection.OUTWARD: CounterpartyKind.TRANSPORTER,
}


class MovementRecordService(BaseService):
    """
    Registers movement records.

    Usage:
        service = MovementRecordService(session, SequenceAllocator(session))
        record = service.register(
            direction=MovementDirection.INWARD,
            record_date=date(2026, 1, 5),
            counterparty_id=company.id,
            manifest_no="MAN-001",
            material_name="Spent solvent",
            quantity=Decimal("2.5"),
            unit="MT",
            rate=Decimal("4000"),
        )
        record.lot_no  # "LOT-202601-0001"
    """

    def __init__(self, session: Session, allocator: SequenceAllocator):
        super().__init__(session)
        self.allocator = allocator

    def _require_counterparty(self, counterparty_id: UUID, kind: CounterpartyKind) -> Counterparty:
        counterparty = self.session.get(Counterparty, counterparty_id)
        if counterparty is None or counterparty.kind != kind.value:
            raise CounterpartyNotFoundError(str(counterparty_id), kind.value)
        return counterparty

    def _exists(self, *criteria) -> bool:
        return self.session.execute(
            select(MovementRecord.id).where(*criteria).limit(1)
        ).first() is not None

    def register(
        self,
        direction: MovementDirection,
        record_date: date | None,
        counterparty_id: UUID | None,
        manifest_no: str | None,
        material_name: str | None,
        quantity: Decimal | None,
        unit: str | None,
        rate: Decimal | None = None,
        vehicle_no: str | None = None,
        remarks: str | None = None,
        lot_no: str | None = None,
        serial_no: int | None = None,
    ) -> MovementRecord:
        """
        Create one movement record.

        Postconditions:
            - serial_no assigned (explicit or next in direction).
            - lot_no assigned for inward records (explicit or next in the
              record date's month); outward records carry no lot.
            - invoice_id is None.
        """
        direction = MovementDirection(direction)
        context = f"{direction.value} movement record"

        if record_date is None:
            raise MissingFieldError("date", context)
        if counterparty_id is None:
            raise MissingFieldError("counterpartyId", context)
        manifest_no = (manifest_no or "").strip()
        if not manifest_no:
            raise MissingFieldError("manifestNo", context)
        material_name = (material_name or "").strip()
        if not material_name:
            raise MissingFieldError("materialName", context)
        if quantity is None:
            raise MissingFieldError("quantity", context)
        unit = (unit or "").strip()
        if not unit:
            raise MissingFieldError("unit", context)
        if quantity < ZERO:
            raise ValidationError("quantity cannot be negative", field="quantity")
        if rate is not None and rate < ZERO:
            raise ValidationError("rate cannot be negative", field="rate")

        self._require_counterparty(counterparty_id, _KIND_FOR_DIRECTION[direction])

        if serial_no is None:
            serial_no = self.allocator.next_serial_number(direction)
        elif self._exists(
            MovementRecord.direction == direction.value,
            MovementRecord.serial_no == serial_no,
        ):
            raise DuplicateIdentifierError(f"{direction.value} serial number", str(serial_no))

        lot_no = (lot_no or "").strip() or None
        if direction is MovementDirection.INWARD:
            if lot_no is None:
                lot_no = self.allocator.next_lot_number(record_date)
            elif self._exists(MovementRecord.lot_no == lot_no):
                raise DuplicateIdentifierError("Lot number", lot_no)
        else:
            lot_no = None

        record = MovementRecord(
            direction=direction.value,
            serial_no=serial_no,
            lot_no=lot_no,
            record_date=record_date,
            counterparty_id=counterparty_id,
            manifest_no=manifest_no,
            material_name=material_name,
            quantity=quantity,
            unit=unit,
            rate=rate,
            vehicle_no=vehicle_no,
            remarks=remarks,
            invoice_id=None,
        )
        self.add_unique(record, "Movement record", lot_no or f"{direction.value}#{serial_no}")

        logger.info(
            "movement_record_registered",
            extra={
                "record_id": str(record.id),
                "direction": direction.value,
                "serial_no": serial_no,
                "lot_no": lot_no,
                "manifest_no": manifest_no,
            },
        )
        return record
