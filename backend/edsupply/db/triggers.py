"""
Status consistency for medical_supplies.

1. `before_update` listener: whenever current_quantity changes in a flush,
   re-derive status and correct it (plus last_updated) if it disagrees.
   Covers every ORM write path, including edits made outside InventoryService.
2. `reconcile_supply_statuses`: sweep that fixes rows changed by raw SQL,
   which ORM events never see. Run by the daily job.

on_order and discontinued are administrative and never touched here.
"""
import logging
from typing import List

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from edsupply.core.clock import utcnow
from edsupply.models.enums import ADMINISTRATIVE_STATUSES
from edsupply.models.supply import Supply
from edsupply.services.status_deriver import derive

logger = logging.getLogger(__name__)


def _sync_status_on_quantity_change(mapper, connection, target: Supply):
    history = inspect(target).attrs.current_quantity.history
    if not history.has_changes():
        return

    if target.status in ADMINISTRATIVE_STATUSES:
        return

    correct = derive(target.current_quantity, target.minimum_quantity, target.critical_quantity)
    if target.status == correct:
        return

    logger.info(f"Updated status for supply {target.id} from {target.status} to {correct.value}")
    target.status = correct
    target.last_updated = utcnow()


def register_status_trigger() -> None:
    if not event.contains(Supply, "before_update", _sync_status_on_quantity_change):
        event.listen(Supply, "before_update", _sync_status_on_quantity_change)


def unregister_status_trigger() -> None:
    """TESTS ONLY."""
    if event.contains(Supply, "before_update", _sync_status_on_quantity_change):
        event.remove(Supply, "before_update", _sync_status_on_quantity_change)


def reconcile_supply_statuses(session: Session) -> List[str]:
    """Correct every non-administrative supply whose status disagrees with its quantity.

    Returns the ids of corrected supplies. Caller commits.
    """
    corrected = []
    supplies = (
        session.query(Supply)
        .filter(Supply.status.notin_(list(ADMINISTRATIVE_STATUSES)))
        .all()
    )
    for supply in supplies:
        correct = derive(supply.current_quantity, supply.minimum_quantity, supply.critical_quantity)
        if supply.status != correct:
            logger.info(f"Reconciled status for supply {supply.id}: {supply.status} -> {correct.value}")
            supply.status = correct
            supply.last_updated = utcnow()
            corrected.append(supply.id)
    return corrected
