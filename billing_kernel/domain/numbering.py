"""
Identifier formats for invoice, lot and serial numbers.

Pure functions: no I/O, no clock.  The period a number belongs to is passed
in explicitly so that the same inputs always produce the same scope.

Formats:
    invoice number  PREFIX-NNNN       PREFIX defaults to INV-YYYYMM
    lot number      LOT-YYYYMM-NNNN
    serial number   plain integer, scoped per movement direction

Suffixes are zero-padded to the scope width (4 by default).  A suffix that
outgrows the width is written in full, never truncated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date

DEFAULT_WIDTH = 4
SEPARATOR = "-"


@dataclass(frozen=True)
class NumberingScope:
    """
    One numbering sequence.

    ``key`` names the counter row; ``prefix`` is what generated identifiers
    start with (empty for plain integer scopes such as serial numbers).
    """

    key: str
    prefix: str = ""
    width: int = DEFAULT_WIDTH

    def format(self, value: int) -> str:
        return format_identifier(self.prefix, value, self.width)

    def parse(self, identifier: str | None) -> int | None:
        return parse_suffix(identifier, self.prefix)


def expand_prefix_template(template: str, period: date) -> str:
    """
    Fill ``{yyyy}``, ``{mm}`` and ``{yyyymm}`` placeholders.

    A template without placeholders is returned unchanged, which is how a
    fixed operator-configured prefix behaves.
    """
    return template.format(
        yyyy=f"{period.year:04d}",
        mm=f"{period.month:02d}",
        yyyymm=f"{period.year:04d}{period.month:02d}",
    )


def format_identifier(prefix: str, value: int, width: int = DEFAULT_WIDTH) -> str:
    if value < 1:
        raise ValueError(f"Sequence value must be positive, got {value}")
    suffix = str(value).zfill(width)
    if not prefix:
        return suffix
    return f"{prefix}{SEPARATOR}{suffix}"


def parse_suffix(identifier: str | None, prefix: str) -> int | None:
    """
    Return the trailing number of ``identifier`` if it belongs to ``prefix``.

    ``INV-202601-0042`` under prefix ``INV-202601`` -> 42.  Identifiers from
    another prefix, or with a non-numeric tail, return None.
    """
    if not identifier:
        return None
    if prefix:
        head = f"{prefix}{SEPARATOR}"
        if not identifier.startswith(head):
            return None
        tail = identifier[len(head):]
    else:
        tail = identifier
    if not re.fullmatch(r"\d+", tail):
        return None
    return int(tail)


def invoice_scope(prefix_template: str, period: date, width: int = DEFAULT_WIDTH) -> NumberingScope:
    prefix = expand_prefix_template(prefix_template, period)
    return NumberingScope(key=f"invoice:{prefix}", prefix=prefix, width=width)


def lot_scope(prefix_template: str, period: date, width: int = DEFAULT_WIDTH) -> NumberingScope:
    prefix = expand_prefix_template(prefix_template, period)
    return NumberingScope(key=f"lot:{prefix}", prefix=prefix, width=width)


def serial_scope(direction: str) -> NumberingScope:
    return NumberingScope(key=f"serial:{direction}", prefix="", width=1)
