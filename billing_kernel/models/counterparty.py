"""
Module: billing_kernel.models.counterparty
Responsibility: Minimal ORM row for the companies (waste generators) and
    transporters that invoices and movement records reference.  The
    registry screens that create and edit these rows live outside the
    kernel; the kernel only reads them to validate references and to
    default an invoice's customer name.
Architecture position: Kernel > Models.  May import from db/ only.
"""

from enum import Enum

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class CounterpartyKind(str, Enum):
    """Which registry a counterparty belongs to."""

    COMPANY = "company"
    TRANSPORTER = "transporter"


class Counterparty(TrackedBase):
    """A company or transporter the operator bills or is billed by."""

    __tablename__ = "counterparties"

    __table_args__ = (
        Index("idx_counterparty_kind", "kind"),
    )

    kind: Mapped[CounterpartyKind] = mapped_column(
        String(20),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    gst_number: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    def __repr__(self) -> str:
        return f"<Counterparty {self.kind}:{self.name}>"
