"""
Module: billing_kernel.models.movement
Responsibility: ORM persistence for movement records -- one physical
    consignment, either an inward collection from a generator company or
    an outward dispatch through a transporter.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - At most one invoice per record: the linkage is a single nullable
      foreign key (invoice_id) on this table.  A row cannot reference two
      invoices, and Invoice holds no collection pointer back; traversal
      is always by query on invoice_id.
    - Weak reference: invoice_id is ON DELETE SET NULL.  Deleting an
      invoice never deletes the consignment.
    - Serial numbers are unique per direction (uq_movement_direction_serial);
      lot numbers are globally unique (uq_movement_lot_no).

Failure modes:
    - IntegrityError on duplicate serial/lot number; translated to
      DuplicateIdentifierError by the services.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UUIDString
from billing_kernel.db.types import quantity_type, rate_type, short_code_type


class MovementDirection(str, Enum):
    """Inward collection or outward dispatch."""

    INWARD = "inward"
    OUTWARD = "outward"


class MovementRecord(TrackedBase):
    """
    A single recorded consignment.

    Contract:
        Created by the operational entry forms (through
        MovementRecordService), mutated by LinkageGuard when invoiced or
        un-invoiced, never deleted by the billing kernel.

    Guarantees:
        - invoice_id is None or the id of exactly one invoice.
        - quantity and rate are Decimal; base_amount() never uses float.
    """

    __tablename__ = "movement_records"

    __table_args__ = (
        UniqueConstraint("direction", "serial_no", name="uq_movement_direction_serial"),
        UniqueConstraint("lot_no", name="uq_movement_lot_no"),
        Index("idx_movement_invoice", "invoice_id"),
        Index("idx_movement_counterparty", "counterparty_id"),
        Index("idx_movement_manifest", "manifest_no"),
    )

    direction: Mapped[MovementDirection] = mapped_column(
        String(10),
        nullable=False,
    )

    serial_no: Mapped[int] = mapped_column(
        nullable=False,
    )

    # Only inward records are grouped into lots
    lot_no: Mapped[str | None] = mapped_column(
        short_code_type(),
        nullable=True,
    )

    record_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    counterparty_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("counterparties.id"),
        nullable=False,
    )

    # Regulatory tracking number; not unique across records
    manifest_no: Mapped[str] = mapped_column(
        short_code_type(),
        nullable=False,
    )

    material_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(
        quantity_type(),
        nullable=False,
    )

    unit: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    rate: Mapped[Decimal | None] = mapped_column(
        rate_type(),
        nullable=True,
    )

    vehicle_no: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
    )

    remarks: Mapped[str | None] = mapped_column(
        String(2000),
        nullable=True,
    )

    invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
    )

    def base_amount(self) -> Decimal:
        """quantity * rate, or zero when the record has no rate yet."""
        if self.rate is None or self.quantity is None:
            return Decimal("0")
        return Decimal(self.quantity) * Decimal(self.rate)

    def __repr__(self) -> str:
        return f"<MovementRecord {self.direction} #{self.serial_no} manifest={self.manifest_no}>"
