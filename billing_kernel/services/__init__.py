"""Services for the billing kernel (write side)."""

from billing_kernel.services.consolidation_service import (
    ConsolidationOutcome,
    ConsolidationResult,
    InvoiceConsolidationService,
    build_consolidation_service,
    run_consolidation,
)
from billing_kernel.services.linkage_guard import LinkageGuard
from billing_kernel.services.movement_service import MovementRecordService
from billing_kernel.services.sequence_service import SequenceAllocator, SequenceCounter

__all__ = [
    "ConsolidationOutcome",
    "ConsolidationResult",
    "InvoiceConsolidationService",
    "LinkageGuard",
    "MovementRecordService",
    "SequenceAllocator",
    "SequenceCounter",
    "build_consolidation_service",
    "run_consolidation",
]
