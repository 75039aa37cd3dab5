"""
Tests for billing configuration loading.

get_active_config() is the only entrypoint callers use; the loader and
schema are exercised through it and directly for their failure modes.
"""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from billing_config import DEFAULT_CONFIG_PATH, BillingConfig, get_active_config, parse_config
from billing_config.loader import compute_checksum, load_config
from billing_kernel.services.consolidation_service import build_consolidation_service


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "billing.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestGetActiveConfig:

    def test_packaged_defaults(self):
        config = get_active_config(environ={})

        assert config.invoice_prefix_template == "INV-{yyyymm}"
        assert config.lot_prefix_template == "LOT-{yyyymm}"
        assert config.sequence_width == 4
        assert config.default_cgst_rate == Decimal("9")
        assert config.default_sgst_rate == Decimal("9")
        assert config.payment_tolerance == Decimal("0.01")
        assert config.checksum

    def test_explicit_path_wins(self, tmp_path):
        path = _write(tmp_path, {"database_url": "sqlite://", "invoice_prefix_template": "ACME"})
        other = tmp_path / "missing.yaml"

        config = get_active_config(path, environ={"BILLING_CONFIG_PATH": str(other)})

        assert config.invoice_prefix_template == "ACME"

    def test_environment_path(self, tmp_path):
        path = _write(tmp_path, {"database_url": "sqlite://", "sequence_width": 6})

        config = get_active_config(environ={"BILLING_CONFIG_PATH": str(path)})

        assert config.sequence_width == 6

    def test_database_url_override(self):
        config = get_active_config(environ={"DATABASE_URL": "postgresql://billing@db/billing"})
        assert config.database_url == "postgresql://billing@db/billing"

    def test_load_is_logged(self, captured_logs):
        config = get_active_config(environ={})

        loaded = [r for r in captured_logs() if r["message"] == "billing_config_loaded"]
        assert loaded[0]["checksum"] == config.checksum
        assert loaded[0]["config_path"] == str(DEFAULT_CONFIG_PATH)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "nope.yaml", environ={})


class TestParseConfig:

    def test_yaml_float_becomes_exact_decimal(self):
        config = parse_config({"database_url": "sqlite://", "payment_tolerance": 0.01})
        assert config.payment_tolerance == Decimal("0.01")

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="Unknown configuration keys: invoice_prefx"):
            parse_config({"database_url": "sqlite://", "invoice_prefx": "X"})

    def test_database_url_required(self):
        with pytest.raises(ValueError, match="database_url"):
            parse_config({})

    def test_overrides_replace_file_values(self):
        config = parse_config(
            {"database_url": "sqlite:///a.db"}, overrides={"database_url": "sqlite:///b.db"},
        )
        assert config.database_url == "sqlite:///b.db"

    @pytest.mark.parametrize(
        "data",
        [
            {"sequence_width": 0},
            {"sequence_width": "4"},
            {"max_conflict_retries": True},
            {"default_cgst_rate": "-9"},
            {"payment_tolerance": "abc"},
            {"invoice_prefix_template": "INV-{dd}"},
            {"lot_prefix_template": ""},
            {"log_level": "CHATTY"},
        ],
    )
    def test_invalid_values_rejected(self, data):
        with pytest.raises(ValueError):
            parse_config({"database_url": "sqlite://", **data})

    def test_checksum_deterministic(self):
        first = parse_config({"database_url": "sqlite://", "sequence_width": 5})
        second = parse_config({"sequence_width": 5, "database_url": "sqlite://"})
        third = parse_config({"database_url": "sqlite://", "sequence_width": 6})

        assert first.checksum == second.checksum
        assert first.checksum != third.checksum
        assert compute_checksum({"a": 1}) == compute_checksum({"a": 1})

    def test_non_mapping_document_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path)


class TestBillingConfig:

    def test_frozen(self):
        config = BillingConfig(database_url="sqlite://")
        with pytest.raises(AttributeError):
            config.sequence_width = 9

    def test_drives_service_factory(self, session, company, inward_request):
        config = BillingConfig(
            database_url="sqlite://",
            invoice_prefix_template="GST/{yyyy}/{mm}",
            default_cgst_rate=Decimal("6"),
            default_sgst_rate=Decimal("6"),
        )
        service = build_consolidation_service(session, config)

        invoice = service.create_invoice(inward_request()).invoice

        assert invoice.invoice_number == "GST/2026/01-0001"
        assert invoice.grand_total == Decimal("1120.00")
