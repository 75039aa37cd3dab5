"""
Kernel Boundary & Invariants Contract.

Tests that enforce the kernel's architectural boundaries:

1. billing_kernel/** may NOT import billing_config.  Configuration is
   passed in by callers; the kernel never loads it.

2. billing_kernel/domain/** may NOT import ORM or DB packages, nor the
   kernel's models/services/selectors.  The domain layer is pure.

3. movement_records.invoice_id is written only by LinkageGuard.

4. The billing invariants declaration is complete and non-empty.

These tests read source code via AST; they cannot break anything.
"""

import ast
from pathlib import Path

from billing_kernel.invariants import (
    ALL_BILLING_INVARIANTS,
    FORBIDDEN_KERNEL_IMPORTS,
    BillingInvariant,
)

REPO_ROOT = Path(__file__).resolve().parents[2]

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _python_files(root: str) -> list[Path]:
    """Return all .py files under root (relative to the repository)."""
    return sorted((REPO_ROOT / root).rglob("*.py"))


def _relative(path: Path) -> str:
    return path.relative_to(REPO_ROOT).as_posix()


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """Extract (line_number, module_string) for all imports in a file."""
    try:
        tree = ast.parse(filepath.read_text(), filename=str(filepath))
    except (SyntaxError, UnicodeDecodeError):
        return []

    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                results.append((node.lineno, node.module))
    return results


def _matches(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


# ---------------------------------------------------------------------------
# Test: Kernel has no upward dependencies
# ---------------------------------------------------------------------------


class TestKernelNoUpwardDependencies:
    """billing_kernel/** must not import billing_config."""

    def test_kernel_files_found(self):
        assert _python_files("billing_kernel"), "billing_kernel sources not found"

    def test_kernel_does_not_import_forbidden_packages(self):
        violations: list[str] = []

        for filepath in _python_files("billing_kernel"):
            for lineno, module in _extract_imports(filepath):
                if _matches(module, FORBIDDEN_KERNEL_IMPORTS):
                    violations.append(f"  {_relative(filepath)}:{lineno} imports '{module}'")

        assert not violations, (
            "Kernel boundary violation: billing_kernel/** must not import "
            "upward packages:\n" + "\n".join(violations)
        )


# ---------------------------------------------------------------------------
# Test: Kernel domain purity
# ---------------------------------------------------------------------------


class TestKernelDomainPurity:
    """billing_kernel/domain/** must not import ORM, DB or stateful layers."""

    FORBIDDEN_MODULES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "billing_kernel.db",
        "billing_kernel.models",
        "billing_kernel.services",
        "billing_kernel.selectors",
    )

    def test_domain_no_orm_imports(self):
        violations: list[str] = []

        for filepath in _python_files("billing_kernel/domain"):
            for lineno, module in _extract_imports(filepath):
                if _matches(module, self.FORBIDDEN_MODULES):
                    violations.append(f"  {_relative(filepath)}:{lineno} imports '{module}'")

        assert not violations, (
            "Domain purity violation: billing_kernel/domain/** must not "
            "import ORM or stateful modules:\n" + "\n".join(violations)
        )


# ---------------------------------------------------------------------------
# Test: Linkage column has a single writer
# ---------------------------------------------------------------------------


class TestLinkageSingleWriter:
    """Only services/linkage_guard.py assigns movement record invoice ids."""

    ALLOWED = {"billing_kernel/services/linkage_guard.py"}

    def _assigns_invoice_id(self, filepath: Path) -> list[int]:
        tree = ast.parse(filepath.read_text(), filename=str(filepath))
        lines: list[int] = []
        for node in ast.walk(tree):
            if isinstance(node, ast.Assign):
                for target in node.targets:
                    if (
                        isinstance(target, ast.Attribute)
                        and target.attr == "invoice_id"
                        and not (isinstance(target.value, ast.Name) and target.value.id == "self")
                    ):
                        lines.append(node.lineno)
        return lines

    def test_only_linkage_guard_writes_invoice_id(self):
        violations: list[str] = []

        for filepath in _python_files("billing_kernel"):
            if _relative(filepath) in self.ALLOWED:
                continue
            for lineno in self._assigns_invoice_id(filepath):
                violations.append(f"  {_relative(filepath)}:{lineno}")

        assert not violations, (
            "movement_records.invoice_id must only be written by LinkageGuard:\n"
            + "\n".join(violations)
        )


# ---------------------------------------------------------------------------
# Test: Invariants declaration
# ---------------------------------------------------------------------------


class TestInvariantsDeclaration:
    """Every declared invariant names the tests that enforce it, and they exist."""

    ENFORCED_BY: dict[BillingInvariant, tuple[str, ...]] = {
        BillingInvariant.IDENTIFIER_UNIQUENESS: (
            "tests/concurrency/test_allocation_concurrency.py::TestConcurrentNumbering::test_invoice_numbers_distinct",
            "tests/services/test_sequence_allocator.py",
        ),
        BillingInvariant.SINGLE_LINKAGE: (
            "tests/concurrency/test_allocation_concurrency.py::TestConcurrentLinkage::test_record_claimed_by_exactly_one_invoice",
            "tests/services/test_linkage_guard.py::TestLinkUnlink::test_link_refuses_to_steal",
            "tests/architecture/test_kernel_boundary.py::TestLinkageSingleWriter::test_only_linkage_guard_writes_invoice_id",
        ),
        BillingInvariant.TOTALS_IDENTITY: (
            "tests/audit/test_billing_invariants.py::TestStoredInvoicesPassAudit::test_after_create_update_and_payment",
            "tests/fuzzing/test_billing_properties.py::TestTotalsProperties::test_totals_identity",
        ),
        BillingInvariant.DERIVED_STATUS: (
            "tests/audit/test_billing_invariants.py::TestTamperedInvoicesFailAudit::test_edited_status",
            "tests/services/test_consolidation_service.py::TestRecordPayment::test_status_derived",
        ),
        BillingInvariant.IDEMPOTENT_RESUBMIT: (
            "tests/services/test_consolidation_service.py::TestIdempotentResubmit::test_existing_number_appends",
            "tests/services/test_consolidation_service.py::TestIdempotentResubmit::test_resubmit_of_same_request_is_a_noop",
        ),
        BillingInvariant.REPLACE_NOT_MERGE: (
            "tests/services/test_consolidation_service.py::TestUpdateInvoice::test_replaces_linked_set",
            "tests/services/test_linkage_guard.py::TestReplaceLinks::test_result_equals_supplied_set",
        ),
    }

    @staticmethod
    def _defined_tests(path: Path) -> set[str]:
        tree = ast.parse(path.read_text(), filename=str(path))
        names: set[str] = set()
        for node in tree.body:
            if isinstance(node, ast.ClassDef):
                for item in node.body:
                    if isinstance(item, ast.FunctionDef):
                        names.add(f"{node.name}::{item.name}")
        return names

    def test_every_invariant_has_enforcing_tests(self):
        unmapped = ALL_BILLING_INVARIANTS - set(self.ENFORCED_BY)
        assert not unmapped, f"Invariants without enforcing tests: {sorted(i.name for i in unmapped)}"

    def test_enforcing_tests_exist(self):
        missing: list[str] = []
        for invariant, node_ids in self.ENFORCED_BY.items():
            for node_id in node_ids:
                file_part, _, test_part = node_id.partition("::")
                path = REPO_ROOT / file_part
                if not path.is_file():
                    missing.append(f"  {invariant.name}: {file_part} (no such file)")
                elif test_part and test_part not in self._defined_tests(path):
                    missing.append(f"  {invariant.name}: {node_id}")
        assert not missing, "Invariant enforcement points to missing tests:\n" + "\n".join(missing)

    def test_config_is_forbidden_to_kernel(self):
        assert "billing_config" in FORBIDDEN_KERNEL_IMPORTS
