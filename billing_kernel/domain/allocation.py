"""
Module: billing_kernel.domain.allocation
Responsibility:
    Estimate one movement record's share of its invoice's gross amount and
    payment received, for per-record reporting and export.

Architecture position:
    Kernel > Domain.  Pure calculation, zero I/O.  The store-backed
    projection (loading records, invoices and sibling counts) lives in
    selectors/invoice_selector.py.

This is an APPROXIMATION, not a ledger entry.  Tax and additional charges
are billed once per invoice, so a record's share is estimated:

    base            = record.quantity * record.rate
    equal split     gross = base + (grand_total - subtotal) / sibling_count
    ratio fallback  gross = base * (grand_total / subtotal)
    payment         = gross * (payment_received / grand_total)

The equal split is used when the sibling count is known; the ratio only
when it is not.  Neither reconciles to the exact cent across siblings
(rounding is per record), and records whose base differs from their line
item amount do not sum back to the invoice.  Nothing may post these
figures as authoritative amounts.

Edge cases:
    - sibling_count None or 0 -> ratio fallback.
    - subtotal or grand_total <= 0 under the ratio fallback -> base
      unchanged (no division by zero).
    - grand_total - subtotal <= 0 under the equal split -> base unchanged
      (a discount-like invoice adds no share).
    - grand_total <= 0 -> payment share is zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from billing_kernel.domain.money import ZERO, round_money


@dataclass(frozen=True)
class RecordProjection:
    """Reporting figures for one movement record."""

    record_id: UUID | None
    invoice_id: UUID | None
    base_amount: Decimal
    gross_amount: Decimal
    payment_received: Decimal

    @property
    def is_invoiced(self) -> bool:
        return self.invoice_id is not None


class AllocationProjector:
    """Stateless projector; see the module docstring for the formulas."""

    def gross_amount(
        self,
        base_amount: Decimal,
        subtotal: Decimal,
        grand_total: Decimal,
        sibling_count: int | None,
    ) -> Decimal:
        if sibling_count:
            tax_and_charges = grand_total - subtotal
            if tax_and_charges > ZERO:
                return base_amount + tax_and_charges / Decimal(sibling_count)
            return base_amount
        if subtotal > ZERO and grand_total > ZERO:
            return base_amount * (grand_total / subtotal)
        return base_amount

    def payment_share(
        self,
        gross_amount: Decimal,
        payment_received: Decimal,
        grand_total: Decimal,
    ) -> Decimal:
        if grand_total <= ZERO:
            return ZERO
        return gross_amount * (payment_received / grand_total)

    def project_for_record(self, record, invoice, sibling_count: int | None) -> RecordProjection:
        """
        Project ``invoice`` onto ``record``.

        ``record`` needs ``id`` and ``base_amount()``; ``invoice`` needs
        ``id``, ``subtotal``, ``grand_total`` and ``payment_received``, or
        may be None for a record not yet invoiced.
        """
        base = record.base_amount()
        if invoice is None:
            return RecordProjection(
                record_id=record.id,
                invoice_id=None,
                base_amount=round_money(base),
                gross_amount=round_money(base),
                payment_received=round_money(ZERO),
            )

        subtotal = Decimal(invoice.subtotal or 0)
        grand_total = Decimal(invoice.grand_total or 0)
        gross = self.gross_amount(base, subtotal, grand_total, sibling_count)
        payment = self.payment_share(
            gross, Decimal(invoice.payment_received or 0), grand_total,
        )

        return RecordProjection(
            record_id=record.id,
            invoice_id=invoice.id,
            base_amount=round_money(base),
            gross_amount=round_money(gross),
            payment_received=round_money(payment),
        )
