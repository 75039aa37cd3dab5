"""
SequenceAllocator -- collision-free invoice, lot and serial numbers.

Responsibility:
    Hands out the next number in a numbering scope (invoice numbers per
    prefix, lot numbers per month, serial numbers per movement direction)
    inside the caller's transaction, so that the number and the row that
    consumes it commit together.

Architecture position:
    Kernel > Services.  Called by InvoiceConsolidationService (invoice
    numbers) and MovementRecordService (serial and lot numbers).
    Formatting and parsing live in domain/numbering.py.

Invariants enforced:
    - One locked counter row per scope (``SELECT ... FOR UPDATE``)
      serializes concurrent allocations in the same scope.  On SQLite the
      engine's BEGIN IMMEDIATE gives the same serialization.
    - next = max(counter value, highest existing suffix in the target
      column) + 1.  The existing-suffix floor absorbs numbers written
      outside the allocator, such as explicit invoice numbers or rows
      imported before the counter existed.
    - The unique constraints on invoice_number, lot_no and
      (direction, serial_no) are the backstop.  A duplicate that still
      slips through fails at flush or commit as DuplicateIdentifierError,
      which run_in_transaction() retries.

Failure modes:
    - IntegrityError on concurrent first use of a scope: handled inside a
      savepoint, the loser re-reads the winner's row under lock.
    - Rollback of the caller's transaction returns the number.

Audit relevance:
    Every allocation is logged at DEBUG as ``sequence_allocated`` with the
    scope key and value.
"""

from datetime import date

from sqlalchemy import BigInteger, String, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from billing_kernel.db.base import Base
from billing_kernel.domain.numbering import (
    DEFAULT_WIDTH,
    NumberingScope,
    invoice_scope,
    lot_scope,
    serial_scope,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import Invoice
from billing_kernel.models.movement import MovementDirection, MovementRecord
from billing_kernel.services.base import BaseService

logger = get_logger("services.sequence")

DEFAULT_INVOICE_PREFIX_TEMPLATE = "INV-{yyyymm}"
DEFAULT_LOT_PREFIX_TEMPLATE = "LOT-{yyyymm}"


class SequenceCounter(Base):
    """
    Sequence counter table.

    One row per numbering scope (``invoice:INV-202601``, ``lot:LOT-202601``,
    ``serial:inward``) holding the last value handed out.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceAllocator(BaseService):
    """
    Allocates identifiers for invoices and movement records.

    Contract:
        next_value(scope, floor) returns an integer strictly greater than
        both the scope's counter and ``floor``.  The higher-level helpers
        compute the floor from the table the number is destined for.

    Non-goals:
        - Does NOT commit.  Without an enclosing transaction the lock is
          released immediately and the guarantee is void.
        - Does NOT guarantee gap-free numbering across rolled-back
          transactions on PostgreSQL; gaps are allowed, duplicates are not.

    Usage:
        with session_scope() as session:
            allocator = SequenceAllocator(session)
            number = allocator.next_invoice_number(date(2026, 1, 15))
            # "INV-202601-0001"
    """

    def __init__(
        self,
        session: Session,
        invoice_prefix_template: str = DEFAULT_INVOICE_PREFIX_TEMPLATE,
        lot_prefix_template: str = DEFAULT_LOT_PREFIX_TEMPLATE,
        width: int = DEFAULT_WIDTH,
    ):
        super().__init__(session)
        self.invoice_prefix_template = invoice_prefix_template
        self.lot_prefix_template = lot_prefix_template
        self.width = width

    @classmethod
    def from_config(cls, session: Session, config) -> "SequenceAllocator":
        return cls(
            session,
            invoice_prefix_template=config.invoice_prefix_template,
            lot_prefix_template=config.lot_prefix_template,
            width=config.sequence_width,
        )

    def _lock_counter(self, name: str) -> SequenceCounter | None:
        return self.session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, scope: NumberingScope, floor: int = 0) -> int:
        """
        Lock the scope's counter, advance it past ``floor``, return it.

        Preconditions:
            - The caller is inside an active transaction.

        Postconditions:
            - Returns value > max(previous counter value, floor).
            - The counter row stays locked until the transaction ends.
        """
        counter = self._lock_counter(scope.key)

        if counter is None:
            savepoint = self.session.begin_nested()
            try:
                value = floor + 1
                counter = SequenceCounter(name=scope.key, current_value=value)
                self.session.add(counter)
                self.session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"scope": scope.key, "value": value, "floor": floor},
                )
                return value
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"scope": scope.key},
                )
                savepoint.rollback()
                counter = self._lock_counter(scope.key)
                if counter is None:
                    raise

        counter.current_value = max(counter.current_value, floor) + 1
        self.session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"scope": scope.key, "value": counter.current_value, "floor": floor},
        )
        return counter.current_value

    def current_value(self, scope_key: str) -> int | None:
        """Last value handed out in a scope, or None if never used."""
        return self.session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == scope_key)
        ).scalar_one_or_none()

    def _highest_existing(self, column, scope: NumberingScope) -> int:
        # Lexicographic MAX breaks once a suffix outgrows the width, so parse
        values = self.session.execute(
            select(column).where(column.startswith(f"{scope.prefix}-", autoescape=True))
        ).scalars()
        return max((n for n in map(scope.parse, values) if n is not None), default=0)

    def invoice_scope(self, on_date: date) -> NumberingScope:
        return invoice_scope(self.invoice_prefix_template, on_date, self.width)

    def lot_scope(self, on_date: date) -> NumberingScope:
        return lot_scope(self.lot_prefix_template, on_date, self.width)

    def next_invoice_number(self, on_date: date) -> str:
        scope = self.invoice_scope(on_date)
        floor = self._highest_existing(Invoice.invoice_number, scope)
        return scope.format(self.next_value(scope, floor))

    def next_lot_number(self, on_date: date) -> str:
        scope = self.lot_scope(on_date)
        floor = self._highest_existing(MovementRecord.lot_no, scope)
        return scope.format(self.next_value(scope, floor))

    def next_serial_number(self, direction: MovementDirection) -> int:
        direction = MovementDirection(direction)
        scope = serial_scope(direction.value)
        floor = self.session.execute(
            select(func.max(MovementRecord.serial_no))
            .where(MovementRecord.direction == direction.value)
        ).scalar_one_or_none() or 0
        return self.next_value(scope, floor)
