"""
Module: billing_kernel.db.types
Responsibility: Column type factories for money, quantity, rate and
    identifier columns, so that every model declares them identically.
Architecture position: Kernel > DB.  May be imported by models/.
    Decimal conversion and rounding live in domain/money.py.

Invariants enforced:
    - No float column exists.  Money is Numeric(18, 2); quantities and
      unit rates are Numeric(18, 4) so that quantity * rate keeps its
      precision until the line amount is rounded.
"""

from sqlalchemy import Numeric, String


def money_type() -> Numeric:
    """Currency amount column: two decimal places."""
    return Numeric(18, 2)


def quantity_type() -> Numeric:
    """Quantity and unit-rate column; more precision than the totals they feed."""
    return Numeric(18, 4)


rate_type = quantity_type


def short_code_type() -> String:
    """Identifier strings (invoice, manifest and lot numbers)."""
    return String(64)
