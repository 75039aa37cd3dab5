"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Reads a YAML file and parses it into a ``BillingConfig``.  Callers use
``billing_config.get_active_config()``; the loader is exposed for tests
and tooling.

Invariants enforced
-------------------
* Unknown keys raise ``ValueError``; a misspelt key never falls back to a
  silent default.
* Numeric settings become ``Decimal`` through ``to_decimal`` so that
  ``0.01`` in YAML is exactly one hundredth.
* ``compute_checksum`` is deterministic for the same settings.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid value  -> ``ValueError`` from parsing or ``BillingConfig``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import BillingConfig
from billing_kernel.domain.money import to_decimal

_DECIMAL_KEYS = ("default_cgst_rate", "default_sgst_rate", "payment_tolerance")
_INT_KEYS = ("sequence_width", "max_conflict_retries")
_KNOWN_KEYS = frozenset(f.name for f in fields(BillingConfig)) - {"checksum"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the settings in canonical JSON form."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_config(data: dict[str, Any], overrides: dict[str, Any] | None = None) -> BillingConfig:
    """
    Build a BillingConfig from a parsed YAML mapping.

    ``overrides`` (e.g. DATABASE_URL from the environment) replace file
    values before validation.
    """
    merged = {**data, **(overrides or {})}

    unknown = sorted(set(merged) - _KNOWN_KEYS)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
    if "database_url" not in merged:
        raise ValueError("database_url is required")

    values: dict[str, Any] = {}
    for key, value in merged.items():
        if key in _DECIMAL_KEYS:
            values[key] = to_decimal(value, field=key)
            if values[key] is None:
                raise ValueError(f"{key} must not be empty")
        elif key in _INT_KEYS:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{key} must be an integer, got {value!r}")
            values[key] = value
        else:
            values[key] = str(value)

    return BillingConfig(**values, checksum=compute_checksum(values))


def load_config(path: Path, overrides: dict[str, Any] | None = None) -> BillingConfig:
    return parse_config(load_yaml_file(path), overrides)
