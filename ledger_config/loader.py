"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``ledger_config.schema`` dataclasses.  Callers use
``ledger_config.get_active_config()``; this module is its implementation.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Unknown keys inside a section are errors, not silently ignored.
* Numeric bounds are checked here so no component sees a chunk size of 0
  or a negative timeout.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id`` / bad values / unknown keys  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    BatchConfig,
    ClearingConfig,
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
    PaymentConfig,
)

_VALID_LOG_LEVELS = frozenset(logging.getLevelNamesMapping())


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _parse_section(cls, name: str, data: Any):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"Section '{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in section '{name}': {', '.join(unknown)}")
    return cls(**data)


def _require_positive(section: str, **values: int | float) -> None:
    for key, value in values.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ValueError(f"{section}.{key} must be a positive number, got {value!r}")


def _require_non_negative(section: str, **values: int) -> None:
    for key, value in values.items():
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"{section}.{key} must be a non-negative integer, got {value!r}")


def parse_database(data: Any) -> DatabaseConfig:
    cfg = _parse_section(DatabaseConfig, "database", data)
    if not cfg.url:
        raise ValueError("database.url is required")
    _require_positive(
        "database",
        pool_size=cfg.pool_size,
        pool_timeout_s=cfg.pool_timeout_s,
        lock_timeout_ms=cfg.lock_timeout_ms,
        statement_timeout_ms=cfg.statement_timeout_ms,
        sqlite_busy_timeout_s=cfg.sqlite_busy_timeout_s,
    )
    _require_non_negative("database", max_overflow=cfg.max_overflow)
    return cfg


def parse_batch(data: Any) -> BatchConfig:
    cfg = _parse_section(BatchConfig, "batch", data)
    _require_positive("batch", chunk_size=cfg.chunk_size)
    _require_non_negative(
        "batch", item_retry_limit=cfg.item_retry_limit, skip_limit=cfg.skip_limit
    )
    return cfg


def parse_clearing(data: Any) -> ClearingConfig:
    cfg = _parse_section(ClearingConfig, "clearing", data)
    if len(cfg.status_marker) != 1:
        raise ValueError(f"clearing.status_marker must be one character, got {cfg.status_marker!r}")
    return cfg


def parse_payment(data: Any) -> PaymentConfig:
    cfg = _parse_section(PaymentConfig, "payment", data)
    if len(cfg.type_code) != 2 or len(cfg.category_code) != 4:
        raise ValueError("payment.type_code must be 2 and payment.category_code 4 characters")
    return cfg


def parse_logging(data: Any) -> LoggingConfig:
    cfg = _parse_section(LoggingConfig, "logging", data)
    level = str(cfg.level).upper()
    if level not in _VALID_LOG_LEVELS:
        raise ValueError(f"logging.level is not a logging level: {cfg.level!r}")
    return LoggingConfig(level=level)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """Parse a full configuration mapping into a LedgerConfig."""
    if "config_id" not in data:
        raise ValueError("config_id is required")
    known = {"config_id", "version", "database", "batch", "clearing", "payment", "logging"}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown configuration sections: {', '.join(unknown)}")

    return LedgerConfig(
        config_id=str(data["config_id"]),
        version=int(data.get("version", 1)),
        database=parse_database(data.get("database")),
        batch=parse_batch(data.get("batch")),
        clearing=parse_clearing(data.get("clearing")),
        payment=parse_payment(data.get("payment")),
        logging=parse_logging(data.get("logging")),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> LedgerConfig:
    """Load and parse a configuration file."""
    return parse_config(load_yaml_file(path))
