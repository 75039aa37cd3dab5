"""
BillingConfig schema.

The runtime configuration of the billing kernel as one frozen dataclass.
YAML is parsed into it by ``billing_config.loader``; callers obtain it
through ``billing_config.get_active_config()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from billing_kernel.domain.numbering import expand_prefix_template

_SAMPLE_PERIOD = date(2000, 1, 1)


@dataclass(frozen=True)
class BillingConfig:
    """
    Validated billing configuration.

    Guarantees:
        - Prefix templates use only {yyyy}, {mm} and {yyyymm} and expand
          to a non-empty prefix.
        - Rates and tolerance are non-negative Decimals.
        - sequence_width and max_conflict_retries are at least 1.
    """

    database_url: str
    invoice_prefix_template: str = "INV-{yyyymm}"
    lot_prefix_template: str = "LOT-{yyyymm}"
    sequence_width: int = 4
    default_cgst_rate: Decimal = Decimal("9")
    default_sgst_rate: Decimal = Decimal("9")
    payment_tolerance: Decimal = Decimal("0.01")
    max_conflict_retries: int = 3
    log_level: str = "INFO"
    checksum: str = ""

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database_url must not be empty")
        for name in ("invoice_prefix_template", "lot_prefix_template"):
            template = getattr(self, name)
            try:
                prefix = expand_prefix_template(template, _SAMPLE_PERIOD)
            except (KeyError, IndexError, ValueError) as exc:
                raise ValueError(f"{name} has an unknown placeholder: {template!r}") from exc
            if not prefix:
                raise ValueError(f"{name} must not be empty")
        if self.sequence_width < 1:
            raise ValueError(f"sequence_width must be at least 1, got {self.sequence_width}")
        if self.max_conflict_retries < 1:
            raise ValueError(
                f"max_conflict_retries must be at least 1, got {self.max_conflict_retries}"
            )
        for name in ("default_cgst_rate", "default_sgst_rate", "payment_tolerance"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log_level: {self.log_level!r}")
