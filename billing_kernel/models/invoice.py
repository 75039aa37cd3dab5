"""
Module: billing_kernel.models.invoice
Responsibility: ORM persistence for GST invoices, their line items
    (billed materials and additional charges) and the manifest numbers
    attached for audit and search.
Architecture position: Kernel > Models.  May import from db/ and
    domain/values.py only.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - invoice_number is globally unique (uq_invoice_number).  This is the
      backstop behind SequenceAllocator's locked counter: a duplicate
      number produced under a race fails at flush/commit.
    - grand_total == round(subtotal + additional_charges, 2) + cgst + sgst.
      Maintained by InvoiceConsolidationService on every write.
    - status is derived from (payment_received, grand_total) on every write
      that touches payment or totals; it is never taken from the caller.
    - Line items and manifest refs are owned: ON DELETE CASCADE plus ORM
      delete-orphan.
    - Manifest refs have set semantics per invoice
      (uq_invoice_manifest_ref).
    - Invoice holds NO collection of movement records.  The linkage is the
      nullable movement_records.invoice_id column, traversed by query.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase, UUIDString
from billing_kernel.db.types import money_type, quantity_type, rate_type, short_code_type
from billing_kernel.domain.values import InvoiceType, PaymentStatus


class Invoice(TrackedBase):
    """
    A GST invoice.

    Contract:
        Created, appended to, paid and deleted only through
        InvoiceConsolidationService.  Totals and status are computed by
        TaxCalculator; callers never write them directly.

    Guarantees:
        - invoice_number unique.
        - Exactly one of the counterparty classes in invoice_type.
        - All money columns are Numeric(18, 2).
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoice_number"),
        Index("idx_invoice_type", "invoice_type"),
        Index("idx_invoice_status", "status"),
        Index("idx_invoice_counterparty", "counterparty_id"),
        Index("idx_invoice_date", "invoice_date"),
    )

    invoice_number: Mapped[str] = mapped_column(
        short_code_type(),
        nullable=False,
    )

    invoice_type: Mapped[InvoiceType] = mapped_column(
        String(20),
        nullable=False,
    )

    invoice_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    counterparty_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("counterparties.id"),
        nullable=False,
    )

    customer_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Totals
    subtotal: Mapped[Decimal] = mapped_column(money_type(), nullable=False, default=Decimal("0"))
    additional_charges: Mapped[Decimal] = mapped_column(money_type(), nullable=False, default=Decimal("0"))
    cgst_rate: Mapped[Decimal] = mapped_column(rate_type(), nullable=False)
    sgst_rate: Mapped[Decimal] = mapped_column(rate_type(), nullable=False)
    cgst: Mapped[Decimal] = mapped_column(money_type(), nullable=False, default=Decimal("0"))
    sgst: Mapped[Decimal] = mapped_column(money_type(), nullable=False, default=Decimal("0"))
    grand_total: Mapped[Decimal] = mapped_column(money_type(), nullable=False, default=Decimal("0"))

    # Payment
    payment_received: Mapped[Decimal] = mapped_column(money_type(), nullable=False, default=Decimal("0"))
    payment_received_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[PaymentStatus] = mapped_column(
        String(10),
        nullable=False,
        default=PaymentStatus.PENDING.value,
    )

    # Printed header fields
    gst_no: Mapped[str | None] = mapped_column(String(20), nullable=True)
    billed_to: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    shipped_to: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    po_no: Mapped[str | None] = mapped_column(String(64), nullable=True)
    po_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    vehicle_no: Mapped[str | None] = mapped_column(String(32), nullable=True)

    line_items: Mapped[list["InvoiceLineItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="InvoiceLineItem.position",
    )

    manifest_refs: Mapped[list["InvoiceManifestRef"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="InvoiceManifestRef.manifest_no",
    )

    @property
    def materials(self) -> list["InvoiceLineItem"]:
        return [item for item in self.line_items if not item.is_additional_charge]

    @property
    def charges(self) -> list["InvoiceLineItem"]:
        return [item for item in self.line_items if item.is_additional_charge]

    @property
    def manifest_numbers(self) -> list[str]:
        return [ref.manifest_no for ref in self.manifest_refs]

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number} {self.invoice_type} {self.grand_total}>"


class InvoiceLineItem(TrackedBase):
    """
    One billed material or one additional charge on an invoice.

    is_additional_charge discriminates the two kinds.  manifest_no is a
    display back-reference only, not a foreign key.
    """

    __tablename__ = "invoice_line_items"

    __table_args__ = (
        Index("idx_line_item_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(quantity_type(), nullable=True)
    rate: Mapped[Decimal | None] = mapped_column(rate_type(), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(money_type(), nullable=True)
    manifest_no: Mapped[str | None] = mapped_column(short_code_type(), nullable=True)

    is_additional_charge: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    invoice: Mapped[Invoice] = relationship(back_populates="line_items")

    def __repr__(self) -> str:
        kind = "charge" if self.is_additional_charge else "material"
        return f"<InvoiceLineItem {kind} {self.name} {self.amount}>"


class InvoiceManifestRef(TrackedBase):
    """A manifest number attached to an invoice for audit and search."""

    __tablename__ = "invoice_manifest_refs"

    __table_args__ = (
        UniqueConstraint("invoice_id", "manifest_no", name="uq_invoice_manifest_ref"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )

    manifest_no: Mapped[str] = mapped_column(short_code_type(), nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="manifest_refs")
