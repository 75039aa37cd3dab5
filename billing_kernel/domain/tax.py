"""
Module: billing_kernel.domain.tax
Responsibility:
    Convert an invoice's subtotal and additional charges into CGST, SGST
    and grand total, and derive payment status from the amount received.

Architecture position:
    Kernel > Domain.  Pure calculation, zero I/O.  May import
    domain/money.py (rounding helpers) and domain/values.py only.

Invariants enforced:
    - base = subtotal + additional_charges.
    - cgst and sgst are each rounded to a whole currency unit, halves away
      from zero.  This is NOT two-decimal currency rounding.
    - grand_total = base + cgst + sgst, reported to two decimal places.
    - status is a pure function of (payment_received, grand_total) with an
      absolute tolerance, so 1179.995 against 1180.00 reads as paid.

Failure modes:
    - ValueError on a negative tax rate, tolerance or taxable base.

Usage:
    from decimal import Decimal
    from billing_kernel.domain.tax import TaxCalculator

    totals = TaxCalculator().compute(Decimal("1000"), Decimal("0"))
    totals.cgst         # Decimal("90")
    totals.grand_total  # Decimal("1180.00")
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from billing_kernel.domain.money import ZERO, round_money, round_whole
from billing_kernel.domain.values import PaymentStatus

DEFAULT_CGST_RATE = Decimal("9")
DEFAULT_SGST_RATE = Decimal("9")
DEFAULT_PAYMENT_TOLERANCE = Decimal("0.01")

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class TaxTotals:
    """
    Result of one totals computation.

    Carries the rates actually applied so that a caller who passed None
    can persist the configured default alongside the amounts.
    """

    subtotal: Decimal
    additional_charges: Decimal
    cgst_rate: Decimal
    sgst_rate: Decimal
    cgst: Decimal
    sgst: Decimal
    grand_total: Decimal

    @property
    def taxable_base(self) -> Decimal:
        return self.subtotal + self.additional_charges

    @property
    def tax_total(self) -> Decimal:
        return self.cgst + self.sgst


def compute_totals(
    subtotal: Decimal,
    additional_charges: Decimal,
    cgst_rate: Decimal,
    sgst_rate: Decimal,
) -> TaxTotals:
    if cgst_rate < ZERO or sgst_rate < ZERO:
        raise ValueError(
            f"Tax rates cannot be negative (cgst={cgst_rate}, sgst={sgst_rate})"
        )

    subtotal = round_money(subtotal)
    additional_charges = round_money(additional_charges)
    base = subtotal + additional_charges
    if base < ZERO:
        raise ValueError(f"Taxable base cannot be negative, got {base}")

    cgst = round_whole(base * cgst_rate / HUNDRED)
    sgst = round_whole(base * sgst_rate / HUNDRED)

    return TaxTotals(
        subtotal=subtotal,
        additional_charges=additional_charges,
        cgst_rate=cgst_rate,
        sgst_rate=sgst_rate,
        cgst=cgst,
        sgst=sgst,
        grand_total=round_money(base + cgst + sgst),
    )


def derive_status(
    payment_received: Decimal,
    grand_total: Decimal,
    tolerance: Decimal = DEFAULT_PAYMENT_TOLERANCE,
) -> PaymentStatus:
    """
    Map (payment_received, grand_total) to paid, partial or pending.

    paid     received >= grand_total - tolerance
    partial  0 < received < grand_total - tolerance
    pending  received <= 0

    The paid test runs first: an invoice with nothing owing (grand total
    within tolerance of zero) is paid even when nothing was received.
    """
    if tolerance < ZERO:
        raise ValueError(f"Payment tolerance cannot be negative, got {tolerance}")
    if payment_received >= grand_total - tolerance:
        return PaymentStatus.PAID
    if payment_received > ZERO:
        return PaymentStatus.PARTIAL
    return PaymentStatus.PENDING


class TaxCalculator:
    """
    Totals and status with configured defaults.

    Stateless apart from its defaults; one instance per process is fine,
    as is one per request.
    """

    def __init__(
        self,
        default_cgst_rate: Decimal = DEFAULT_CGST_RATE,
        default_sgst_rate: Decimal = DEFAULT_SGST_RATE,
        payment_tolerance: Decimal = DEFAULT_PAYMENT_TOLERANCE,
    ):
        if default_cgst_rate < ZERO or default_sgst_rate < ZERO:
            raise ValueError("Default tax rates cannot be negative")
        if payment_tolerance < ZERO:
            raise ValueError("Payment tolerance cannot be negative")
        self.default_cgst_rate = default_cgst_rate
        self.default_sgst_rate = default_sgst_rate
        self.payment_tolerance = payment_tolerance

    @classmethod
    def from_config(cls, config) -> TaxCalculator:
        """Build from a BillingConfig (or anything with the same attributes)."""
        return cls(
            default_cgst_rate=config.default_cgst_rate,
            default_sgst_rate=config.default_sgst_rate,
            payment_tolerance=config.payment_tolerance,
        )

    def compute(
        self,
        subtotal: Decimal,
        additional_charges: Decimal = ZERO,
        cgst_rate: Decimal | None = None,
        sgst_rate: Decimal | None = None,
    ) -> TaxTotals:
        return compute_totals(
            subtotal,
            additional_charges,
            self.default_cgst_rate if cgst_rate is None else cgst_rate,
            self.default_sgst_rate if sgst_rate is None else sgst_rate,
        )

    def status(self, payment_received: Decimal, grand_total: Decimal) -> PaymentStatus:
        return derive_status(payment_received, grand_total, self.payment_tolerance)
