"""
Module: billing_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors, the
    read side next to the write-side services.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and the pure domain.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(),
      session.delete(), session.commit() or session.flush().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Accepts a Session from the caller, performs read-only queries and
        returns DTOs or computed results.
    """

    def __init__(self, session: Session):
        self.session = session
