"""
Pure domain layer.

Calculators, identifier formats and request objects with NO dependency on
a session, the models or the clock.  Everything here is deterministic:
the same inputs give the same totals, numbers and projections.
"""

from billing_kernel.domain.allocation import AllocationProjector, RecordProjection
from billing_kernel.domain.dtos import (
    ChargeLine,
    InvoiceRequest,
    MaterialLine,
    PaymentUpdate,
    normalize_manifest_numbers,
)
from billing_kernel.domain.money import ZERO, round_money, round_whole, to_decimal
from billing_kernel.domain.numbering import (
    NumberingScope,
    expand_prefix_template,
    format_identifier,
    parse_suffix,
)
from billing_kernel.domain.tax import TaxCalculator, TaxTotals, compute_totals, derive_status
from billing_kernel.domain.values import InvoiceType, PaymentStatus

__all__ = [
    "AllocationProjector",
    "ChargeLine",
    "InvoiceRequest",
    "InvoiceType",
    "MaterialLine",
    "NumberingScope",
    "PaymentStatus",
    "PaymentUpdate",
    "RecordProjection",
    "TaxCalculator",
    "TaxTotals",
    "ZERO",
    "compute_totals",
    "derive_status",
    "expand_prefix_template",
    "format_identifier",
    "normalize_manifest_numbers",
    "parse_suffix",
    "round_money",
    "round_whole",
    "to_decimal",
]
