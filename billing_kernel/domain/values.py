"""
Value enumerations shared by the pure domain and the ORM models.

Lives in the domain layer so that calculators and DTOs stay free of ORM
imports; models import these, never the other way round.
"""

from enum import Enum


class InvoiceType(str, Enum):
    """The three counterparty classes an invoice can bill.

    Inward invoices bill a generator company; Outward and Transporter
    invoices bill a transporter.
    """

    INWARD = "Inward"
    OUTWARD = "Outward"
    TRANSPORTER = "Transporter"

    @property
    def requires_company(self) -> bool:
        return self is InvoiceType.INWARD


class PaymentStatus(str, Enum):
    """Payment status derived from payment received vs grand total."""

    PAID = "paid"
    PARTIAL = "partial"
    PENDING = "pending"
