"""
Ledger configuration schema.

Frozen dataclasses for every configuration section.  YAML is parsed into
these types by the loader; nothing else in the system sees raw YAML.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection and storage-bound settings."""

    url: str = "sqlite:///ledger.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout_s: int = 30
    lock_timeout_ms: int = 5000
    statement_timeout_ms: int = 30000
    sqlite_busy_timeout_s: float = 30.0


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BatchConfig:
    """Chunking and retry bounds for the daily posting run."""

    chunk_size: int = 1000
    item_retry_limit: int = 3
    skip_limit: int = 100
    read_ahead: bool = True


# ---------------------------------------------------------------------------
# Clearing extract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClearingConfig:
    """Clearing file location and record markers."""

    output_dir: str = "clearing"
    sentinel_prefix: str = "NO ACTIVITY"
    status_marker: str = "P"


# ---------------------------------------------------------------------------
# Interactive bill payment
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentConfig:
    """Legacy constants stamped on every online bill payment."""

    type_code: str = "02"
    category_code: str = "0002"
    source: str = "POS TERM"
    description: str = "BILL PAYMENT - ONLINE"
    merchant_id: str = "999999999"
    merchant_name: str = "BILL PAYMENT"
    merchant_city: str = "N/A"
    merchant_zip: str = "N/A"


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfig:
    """The complete, validated runtime configuration."""

    config_id: str
    version: int
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    clearing: ClearingConfig = field(default_factory=ClearingConfig)
    payment: PaymentConfig = field(default_factory=PaymentConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
