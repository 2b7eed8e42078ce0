"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component may read configuration
    files or environment variables directly.

Architecture position:
    Configuration.  This package sits beside ``ledger_kernel``; the kernel
    never imports from it.  Outer layers (``ledger_batch``,
    ``ledger_services``) receive the relevant frozen sections by injection.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` -- schema or bound violations.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``LEDGER_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying every batch run to the configuration that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ledger_config.loader import compute_checksum, load_config
from ledger_config.schema import (
    BatchConfig,
    ClearingConfig,
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
    PaymentConfig,
)

_logger = logging.getLogger("ledger_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
_DEFAULT_CONFIG_NAME = "default.yaml"


def get_active_config(
    path: Path | str | None = None,
    config_dir: Path | None = None,
) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Explicit configuration file.  When omitted,
            ``<config_dir>/default.yaml`` is used.
        config_dir: Override path to the configuration sets directory.
            Defaults to ledger_config/sets/.

    Returns:
        LedgerConfig -- frozen and validated.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If configuration validation fails.
    """
    if path is None:
        path = (config_dir or _DEFAULT_CONFIG_DIR) / _DEFAULT_CONFIG_NAME
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    config = load_config(path)

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "chunk_size": config.batch.chunk_size,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "compute_checksum",
    "LedgerConfig",
    "DatabaseConfig",
    "BatchConfig",
    "ClearingConfig",
    "PaymentConfig",
    "LoggingConfig",
]
