"""
Daily Expiration Sweep: background maintenance job.

Each run, in order:
1. Zero out expired supplies through InventoryService.process_expired_supplies,
   acting as SYSTEM_ACTOR_ID (same path, ledger and audit as the endpoint)
2. Reconcile stored statuses against quantities (catches raw SQL writes)
3. Purge audit entries past their retention window

A failure in one step is logged and does not prevent the next.
"""
import asyncio
import logging
from typing import Dict, Optional

from edsupply.core.audit import AuditRecorder
from edsupply.core.config import settings
from edsupply.db.session import Database
from edsupply.db.triggers import reconcile_supply_statuses
from edsupply.models.enums import AuditSeverity
from edsupply.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)


def retention_policy() -> Dict[AuditSeverity, int]:
    return {
        AuditSeverity.INFO: settings.AUDIT_RETENTION_DAYS_INFO,
        AuditSeverity.WARNING: settings.AUDIT_RETENTION_DAYS_WARNING,
        AuditSeverity.CRITICAL: settings.AUDIT_RETENTION_DAYS_CRITICAL,
    }


def run_expiration_sweep(
    inventory: InventoryService,
    database: Database,
    audit: AuditRecorder,
    actor_id: Optional[str] = None,
) -> dict:
    """
    One pass of the maintenance job. Called periodically by the background loop.

    Returns:
        {"expired_count", "failed_count", "reconciled", "purged"}; a step that
        failed reports None.
    """
    actor_id = actor_id or settings.SYSTEM_ACTOR_ID
    summary: dict = {"expired_count": None, "failed_count": None, "reconciled": None, "purged": None}

    try:
        result = inventory.process_expired_supplies(actor_id)
        summary["expired_count"] = result["expired_count"]
        summary["failed_count"] = len(result["failed_supplies"])
    except Exception as e:
        logger.error(f"[ExpirationSweep] Expired supply processing failed: {e}")

    try:
        with database.session_scope() as session:
            corrected = reconcile_supply_statuses(session)
        summary["reconciled"] = len(corrected)
        if corrected:
            logger.info(f"[ExpirationSweep] Reconciled {len(corrected)} supply statuses")
    except Exception as e:
        logger.error(f"[ExpirationSweep] Status reconciliation failed: {e}", exc_info=True)

    try:
        summary["purged"] = audit.purge_expired(retention_policy())
    except Exception as e:
        logger.error(f"[ExpirationSweep] Audit purge failed: {e}")

    logger.info(f"[ExpirationSweep] Run complete: {summary}")
    return summary


# ============================================================================
# BACKGROUND TASK: runs in asyncio loop alongside FastAPI
# ============================================================================

_scheduler_running = False
_scheduler_task: Optional[asyncio.Task] = None


async def _expiration_scheduler_loop(
    inventory: InventoryService,
    database: Database,
    audit: AuditRecorder,
    interval_seconds: int,
    initial_delay_seconds: float,
):
    global _scheduler_running
    _scheduler_running = True

    logger.info(f"[ExpirationSweep] Scheduler started. Interval: {interval_seconds}s")

    # Let the server finish starting before the first pass
    await asyncio.sleep(initial_delay_seconds)

    while _scheduler_running:
        try:
            # Blocking DB work runs in the thread pool, off the event loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, run_expiration_sweep, inventory, database, audit)
        except Exception as e:
            logger.error(f"[ExpirationSweep] Scheduler error: {e}")

        await asyncio.sleep(interval_seconds)


def start_expiration_scheduler(
    inventory: InventoryService,
    database: Database,
    audit: AuditRecorder,
    interval_seconds: Optional[int] = None,
    initial_delay_seconds: float = 10,
) -> None:
    """Start the background sweep. Called from the FastAPI lifespan."""
    global _scheduler_task
    try:
        _scheduler_task = asyncio.create_task(_expiration_scheduler_loop(
            inventory, database, audit,
            interval_seconds or settings.EXPIRATION_SWEEP_INTERVAL_SECONDS,
            initial_delay_seconds,
        ))
        logger.info("[ExpirationSweep] Expiration scheduler initialized")
    except Exception as e:
        logger.error(f"[ExpirationSweep] Failed to start scheduler: {e}")


def stop_expiration_scheduler() -> None:
    """Stop the scheduler. Called from FastAPI shutdown."""
    global _scheduler_running, _scheduler_task
    _scheduler_running = False
    if _scheduler_task is not None:
        _scheduler_task.cancel()
        _scheduler_task = None
    logger.info("[ExpirationSweep] Scheduler stopped")
