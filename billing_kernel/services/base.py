"""
BaseService -- common constructor and flush contract for kernel services.

Responsibility:
    Every service that writes receives the caller's SQLAlchemy ``Session``
    and persists through ``session.flush()``; the caller owns commit and
    rollback (see db.engine.session_scope / run_in_transaction).

Architecture position:
    Kernel > Services.  Subclassed by SequenceAllocator, LinkageGuard,
    MovementRecordService and InvoiceConsolidationService.

Invariants enforced:
    - Services never call ``session.commit()`` or ``session.rollback()``.
      A consolidation spanning invoice, line items, manifest refs and
      linkage is therefore atomic: it commits together or not at all.

Failure modes:
    - add_unique() turns a unique-constraint violation into
      DuplicateIdentifierError (retryable).  The failing statements are
      confined to a SAVEPOINT so the session stays usable.
"""

from abc import ABC

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing_kernel.db.engine import is_unique_violation
from billing_kernel.exceptions import DuplicateIdentifierError


class BaseService(ABC):
    """
    Abstract base class for billing kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only queries for callers; those belong in
          ``billing_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

    def add_unique(self, instance: object, entity: str, identifier: str) -> None:
        """
        Add ``instance`` and flush it inside a SAVEPOINT.

        The instance is added after the savepoint opens (begin_nested()
        flushes whatever was already pending), so a failed insert is
        rolled back and expunged without touching earlier work.

        Args:
            instance: The new row (with any cascaded children).
            entity: Human name of what was being written ("Invoice").
            identifier: The value that should have been unique.

        Raises:
            DuplicateIdentifierError: A concurrent writer (or an earlier
                row) already holds ``identifier``.
        """
        savepoint = self.session.begin_nested()
        try:
            self.session.add(instance)
            self.session.flush()
        except IntegrityError as exc:
            savepoint.rollback()
            if not is_unique_violation(exc):
                raise
            raise DuplicateIdentifierError(entity, identifier) from exc
        savepoint.commit()
