"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration.  Sits above ``billing_kernel``: it may import the
    kernel's pure domain helpers, but the kernel MUST NEVER import from
    ``billing_config``.  Callers pass the returned ``BillingConfig`` into
    the kernel's service factories.

Resolution order:
    1. ``config_path`` argument
    2. ``BILLING_CONFIG_PATH`` environment variable
    3. packaged ``defaults.yaml``
    ``DATABASE_URL`` in the environment overrides ``database_url``.

Failure modes:
    - ``FileNotFoundError`` -- the selected file does not exist.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``ValueError`` -- unknown keys or invalid values.

Logging:
    The first call installs the kernel's JSON log handler at
    ``log_level`` (see ``billing_kernel.logging_config.configure_logging``).

Audit relevance:
    Every successful call emits a ``billing_config_loaded`` log entry with
    the source path and settings checksum.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from billing_config.loader import load_config, parse_config
from billing_config.schema import BillingConfig
from billing_kernel.logging_config import configure_logging, get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_PATH_ENV = "BILLING_CONFIG_PATH"
DATABASE_URL_ENV = "DATABASE_URL"


def get_active_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> BillingConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Explicit YAML file; wins over the environment.
        environ: Environment mapping, ``os.environ`` by default.

    Returns:
        A validated, frozen BillingConfig.
    """
    env = os.environ if environ is None else environ

    path = Path(config_path or env.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    overrides = {}
    if env.get(DATABASE_URL_ENV):
        overrides["database_url"] = env[DATABASE_URL_ENV]

    config = load_config(path, overrides)
    configure_logging(level=config.log_level)

    _logger.info(
        "billing_config_loaded",
        extra={
            "config_path": str(path),
            "checksum": config.checksum,
            "invoice_prefix_template": config.invoice_prefix_template,
            "database_url_overridden": bool(overrides),
        },
    )
    return config


__all__ = [
    "BillingConfig",
    "DEFAULT_CONFIG_PATH",
    "get_active_config",
    "load_config",
    "parse_config",
]
