"""Domain models for the billing kernel."""

from billing_kernel.models.counterparty import Counterparty, CounterpartyKind
from billing_kernel.models.invoice import (
    Invoice,
    InvoiceLineItem,
    InvoiceManifestRef,
    InvoiceType,
    PaymentStatus,
)
from billing_kernel.models.movement import MovementDirection, MovementRecord

__all__ = [
    "Counterparty",
    "CounterpartyKind",
    "Invoice",
    "InvoiceLineItem",
    "InvoiceManifestRef",
    "InvoiceType",
    "PaymentStatus",
    "MovementDirection",
    "MovementRecord",
]
