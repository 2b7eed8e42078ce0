"""
ORM-level append-only enforcement for transactions and reject records.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  Listeners registered here raise ImmutabilityViolationError, the
flush aborts, and the enclosing transaction (or savepoint) is rolled back.

    session.flush()
         |
         v
    [before_update] --> _reject_update() --> ImmutabilityViolationError
         |
    [before_delete] --> _reject_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only for INSERTs of protected entities)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable         | Why
----------------|------------------------|-----------------------------------
Transaction     | ALWAYS (from creation) | Balances are replayed from it
RejectRecord    | ALWAYS (from creation) | Evidence for correction/resubmit

Accounts and category balances are NOT protected: the posting engine updates
them on every posting.

===============================================================================
USAGE
===============================================================================

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _reject_update(mapper, connection, target):
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} records are append-only and cannot be modified",
    )


def _reject_delete(mapper, connection, target):
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} records are append-only and cannot be deleted",
    )


def _protected_models():
    from ledger_kernel.models.reject import RejectRecord
    from ledger_kernel.models.transaction import Transaction

    return (Transaction, RejectRecord)


def register_immutability_listeners():
    """
    Register the append-only listeners (idempotent).

    Call this after all models are imported but before any database
    operations begin.
    """
    for model in _protected_models():
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)


def unregister_immutability_listeners():
    """
    Remove the append-only listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for model in _protected_models():
        if event.contains(model, "before_update", _reject_update):
            event.remove(model, "before_update", _reject_update)
        if event.contains(model, "before_delete", _reject_delete):
            event.remove(model, "before_delete", _reject_delete)
