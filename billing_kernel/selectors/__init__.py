"""Selectors for the billing kernel (read side)."""

from billing_kernel.selectors.invoice_selector import (
    GroupTotals,
    InvoiceDTO,
    InvoiceSelector,
    InvoiceStats,
    LineItemDTO,
)

__all__ = [
    "GroupTotals",
    "InvoiceDTO",
    "InvoiceSelector",
    "InvoiceStats",
    "LineItemDTO",
]
