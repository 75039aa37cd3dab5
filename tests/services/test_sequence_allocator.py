"""
Tests for SequenceAllocator.

Sequence numbers must come from a locked counter row and must never
collide with a number already stored, including numbers written outside
the allocator (explicit invoice numbers).

Verifies:
- Per-scope numbering for invoices, lots and serials
- The existing-suffix floor, parsed numerically
- Suffixes that outgrow the configured width
- Configured prefix templates
"""

import inspect
import re
from datetime import date
from pathlib import Path

from sqlalchemy import select

from billing_config import BillingConfig
from billing_kernel.domain.numbering import NumberingScope
from billing_kernel.models.movement import MovementDirection
from billing_kernel.services.sequence_service import SequenceAllocator, SequenceCounter

JAN = date(2026, 1, 15)
FEB = date(2026, 2, 3)


class TestNextValue:

    def test_first_use_creates_counter(self, allocator, session):
        scope = NumberingScope(key="test:first")

        assert allocator.current_value("test:first") is None
        assert allocator.next_value(scope) == 1

        counter = session.execute(
            select(SequenceCounter).where(SequenceCounter.name == "test:first")
        ).scalar_one()
        assert counter.current_value == 1

    def test_monotonic(self, allocator):
        scope = NumberingScope(key="test:monotonic")
        values = [allocator.next_value(scope) for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]
        assert allocator.current_value("test:monotonic") == 5

    def test_floor_raises_next_value(self, allocator):
        scope = NumberingScope(key="test:floor")
        assert allocator.next_value(scope, floor=5) == 6
        assert allocator.next_value(scope) == 7
        assert allocator.next_value(scope, floor=3) == 8
        assert allocator.next_value(scope, floor=10) == 11

    def test_uses_locked_counter_row(self):
        """The counter is read with SELECT ... FOR UPDATE."""
        source = Path(inspect.getfile(SequenceAllocator)).read_text()
        match = re.search(
            r"def _lock_counter\s*\([^)]*\).*?(?=\n    def \w|\nclass \w|\Z)",
            source,
            re.DOTALL,
        )
        assert match, "SequenceAllocator._lock_counter not found in source"
        assert "with_for_update()" in match.group(0)


class TestInvoiceNumbers:

    def test_sequential_within_month(self, allocator):
        assert allocator.next_invoice_number(JAN) == "INV-202601-0001"
        assert allocator.next_invoice_number(JAN) == "INV-202601-0002"

    def test_months_numbered_independently(self, allocator):
        assert allocator.next_invoice_number(JAN) == "INV-202601-0001"
        assert allocator.next_invoice_number(FEB) == "INV-202602-0001"
        assert allocator.next_invoice_number(JAN) == "INV-202601-0002"

    def test_skips_past_explicit_number(self, allocator, consolidation, inward_request):
        consolidation.create_invoice(inward_request(invoice_number="INV-202601-0007"))

        assert allocator.next_invoice_number(JAN) == "INV-202601-0008"

    def test_explicit_number_in_other_month_ignored(self, allocator, consolidation, inward_request):
        consolidation.create_invoice(inward_request(invoice_number="INV-202602-0050"))

        assert allocator.next_invoice_number(JAN) == "INV-202601-0001"

    def test_floor_parsed_numerically_past_width(self, allocator, consolidation, inward_request):
        # Lexicographically "9999" sorts after "10000"
        consolidation.create_invoice(inward_request(invoice_number="INV-202601-9999"))
        consolidation.create_invoice(inward_request(invoice_number="INV-202601-10000"))

        assert allocator.next_invoice_number(JAN) == "INV-202601-10001"

    def test_width_overflow_is_not_truncated(self, allocator, consolidation, inward_request):
        consolidation.create_invoice(inward_request(invoice_number="INV-202601-9999"))

        assert allocator.next_invoice_number(JAN) == "INV-202601-10000"
        assert allocator.next_invoice_number(JAN) == "INV-202601-10001"

    def test_non_numeric_explicit_number_ignored(self, allocator, consolidation, inward_request):
        consolidation.create_invoice(inward_request(invoice_number="INV-202601-DRAFT"))

        assert allocator.next_invoice_number(JAN) == "INV-202601-0001"

    def test_configured_template_and_width(self, session):
        config = BillingConfig(
            database_url="sqlite://",
            invoice_prefix_template="ACME/{yyyy}",
            sequence_width=3,
        )
        allocator = SequenceAllocator.from_config(session, config)

        assert allocator.next_invoice_number(JAN) == "ACME/2026-001"
        assert allocator.next_invoice_number(FEB) == "ACME/2026-002"


class TestLotAndSerialNumbers:

    def test_lot_numbers_per_month(self, allocator):
        assert allocator.next_lot_number(JAN) == "LOT-202601-0001"
        assert allocator.next_lot_number(JAN) == "LOT-202601-0002"
        assert allocator.next_lot_number(FEB) == "LOT-202602-0001"

    def test_lot_floor_from_explicit_lot(self, allocator, make_record):
        make_record("MAN-1", lot_no="LOT-202601-0040")

        assert allocator.next_lot_number(JAN) == "LOT-202601-0041"

    def test_serials_per_direction(self, allocator):
        assert allocator.next_serial_number(MovementDirection.INWARD) == 1
        assert allocator.next_serial_number(MovementDirection.INWARD) == 2
        assert allocator.next_serial_number(MovementDirection.OUTWARD) == 1

    def test_serial_floor_from_explicit_serial(self, allocator, make_record):
        make_record("MAN-1", serial_no=25)

        assert allocator.next_serial_number(MovementDirection.INWARD) == 26
        assert allocator.next_serial_number(MovementDirection.OUTWARD) == 1


class TestAllocationLogging:

    def test_allocation_logged(self, allocator, captured_logs):
        allocator.next_invoice_number(JAN)

        records = [r for r in captured_logs() if r["message"] == "sequence_allocated"]
        assert records
        assert records[-1]["scope"] == "invoice:INV-202601"
        assert records[-1]["value"] == 1
