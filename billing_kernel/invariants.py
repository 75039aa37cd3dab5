"""
Billing Invariants Contract.

These invariants are structural law for the billing kernel.  They are
enforced by unique constraints, locked counter rows and the consolidation
workflow; no configuration value can switch them off.

This module declares them explicitly and provides the checks the test
suite (and operational audits) run against stored invoices.
"""

from decimal import Decimal
from enum import Enum, unique

from billing_kernel.domain.money import round_money
from billing_kernel.domain.tax import DEFAULT_PAYMENT_TOLERANCE, derive_status


@unique
class BillingInvariant(str, Enum):
    """Non-configurable guarantees provided by the billing kernel."""

    IDENTIFIER_UNIQUENESS = "identifier_uniqueness"
    """No two invoices share a number; no two records share a lot number
    or a (direction, serial) pair.  Enforced by SequenceAllocator and
    unique constraints."""

    SINGLE_LINKAGE = "single_linkage"
    """A movement record is linked to at most one invoice.  Enforced by
    the single invoice_id column and LinkageGuard."""

    TOTALS_IDENTITY = "totals_identity"
    """grand_total == round(subtotal + additional_charges) + cgst + sgst.
    Enforced by InvoiceConsolidationService on every write."""

    DERIVED_STATUS = "derived_status"
    """status is a pure function of (payment_received, grand_total) and is
    never taken from the caller."""

    IDEMPOTENT_RESUBMIT = "idempotent_resubmit"
    """Creating with an invoice number already in use links records to the
    existing invoice and never creates a second one."""

    REPLACE_NOT_MERGE = "replace_not_merge"
    """An append/update makes the linked record set exactly the supplied
    set (unlink-all-then-link-selected)."""


ALL_BILLING_INVARIANTS: frozenset[BillingInvariant] = frozenset(BillingInvariant)

# The kernel package may not import from these packages.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "billing_config",
)


def check_totals_identity(invoice, tolerance: Decimal = DEFAULT_PAYMENT_TOLERANCE) -> bool:
    """True when the stored totals satisfy the identity within ``tolerance``."""
    base = round_money(Decimal(invoice.subtotal) + Decimal(invoice.additional_charges))
    expected = base + Decimal(invoice.cgst) + Decimal(invoice.sgst)
    return abs(Decimal(invoice.grand_total) - expected) <= tolerance


def check_derived_status(invoice, tolerance: Decimal = DEFAULT_PAYMENT_TOLERANCE) -> bool:
    """True when the stored status matches the one derived from the amounts."""
    expected = derive_status(
        Decimal(invoice.payment_received), Decimal(invoice.grand_total), tolerance,
    )
    return invoice.status == expected.value
