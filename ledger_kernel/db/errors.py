"""
Translation of driver-level failures into the kernel's storage exceptions.

Lock waits, statement cancellations and pool exhaustion become
``StorageTimeoutError``; every other SQLAlchemy failure becomes
``StorageError``.  Both are ``PostingError`` subclasses, so the batch
executor can retry them and the interactive path can surface them.
"""

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from ledger_kernel.exceptions import StorageError, StorageTimeoutError

# PostgreSQL SQLSTATEs raised by lock_timeout / statement_timeout
_PG_TIMEOUT_CODES = frozenset({"55P03", "57014"})

_SQLITE_TIMEOUT_MESSAGES = ("database is locked", "database table is locked")


def is_timeout(exc: BaseException) -> bool:
    """Return True if the exception is a bounded wait that expired."""
    if isinstance(exc, PoolTimeoutError):
        return True
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode in _PG_TIMEOUT_CODES:
            return True
    if isinstance(exc, OperationalError):
        text = str(exc).lower()
        return any(msg in text for msg in _SQLITE_TIMEOUT_MESSAGES)
    return False


def translate_storage_error(
    exc: SQLAlchemyError,
    operation: str,
    account_id: str | None = None,
) -> StorageError:
    """Map a SQLAlchemy exception to StorageTimeoutError or StorageError."""
    cause = f"{type(exc).__name__}: {exc}"
    if is_timeout(exc):
        return StorageTimeoutError(operation, cause, account_id)
    return StorageError(operation, cause, account_id)
