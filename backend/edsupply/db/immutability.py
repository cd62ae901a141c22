"""
ORM-level immutability for the ledger and the audit trail.

SupplyTransaction: no UPDATE, no DELETE through the ORM.
AuditLog:          no UPDATE through the ORM. Deletion is left to the
                   retention purge, which uses a bulk DELETE statement.

Listeners are registered once at startup (init_db) and are idempotent.
"""
import logging

from sqlalchemy import event

from edsupply.core.exceptions import AuditImmutabilityError, LedgerImmutabilityError
from edsupply.models.audit_log import AuditLog
from edsupply.models.supply_transaction import SupplyTransaction

logger = logging.getLogger(__name__)


def _block_ledger_update(mapper, connection, target):
    logger.error(f"Blocked UPDATE of ledger entry {target.id}")
    raise LedgerImmutabilityError(target.id, "Ledger entries are append-only and cannot be modified")


def _block_ledger_delete(mapper, connection, target):
    logger.error(f"Blocked DELETE of ledger entry {target.id}")
    raise LedgerImmutabilityError(target.id, "Ledger entries are append-only and cannot be deleted")


def _block_audit_update(mapper, connection, target):
    logger.error(f"Blocked UPDATE of audit log {target.id}")
    raise AuditImmutabilityError(target.id, "Audit entries cannot be modified")


_LISTENERS = (
    (SupplyTransaction, "before_update", _block_ledger_update),
    (SupplyTransaction, "before_delete", _block_ledger_delete),
    (AuditLog, "before_update", _block_audit_update),
)


def register_immutability_listeners() -> None:
    for target, identifier, fn in _LISTENERS:
        if not event.contains(target, identifier, fn):
            event.listen(target, identifier, fn)


def unregister_immutability_listeners() -> None:
    """TESTS ONLY."""
    for target, identifier, fn in _LISTENERS:
        if event.contains(target, identifier, fn):
            event.remove(target, identifier, fn)
