"""
Audit trail for inventory operations.

Every mutating operation attempt (success or failure) is recorded with the
actor, operation name, payload snapshot and outcome.

DELIVERY MODEL:
- record() never raises and never blocks the caller on storage
- Each entry is emitted as one JSON line on the "audit" logger immediately
- The row is then queued for a background worker that writes audit_logs
- At-most-once: if the queue is full or the write fails, the row is dropped
  and an error is logged. Nothing is retried.
- Ordering relative to the inventory commit is not guaranteed.

When the worker is not running (scripts, some tests) record() writes inline,
with the same swallow-and-log behaviour.
"""
import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete

from edsupply.core.clock import Clock, utcnow
from edsupply.db.session import Database
from edsupply.models.audit_log import AuditLog
from edsupply.models.enums import AuditSeverity

logger = logging.getLogger(__name__)

# Separate logger for audit events (can be shipped to centralized logging)
audit_logger = logging.getLogger("audit")

# Success escalates to WARNING, failure to CRITICAL.
SENSITIVE_OPERATIONS = frozenset({
    "adjust_inventory",
    "waste_supply",
    "process_expired_supplies",
    "update_supply",
    "discontinue_supply",
    "delete_supply",
    "view_audit_logs",
    "audit_logs_purged",
})

_STOP = object()


def resolve_severity(operation: str, success: bool, requested: Optional[AuditSeverity] = None) -> AuditSeverity:
    severity = requested or AuditSeverity.INFO
    if operation in SENSITIVE_OPERATIONS:
        severity = AuditSeverity.WARNING if success else AuditSeverity.CRITICAL
    if not success and severity == AuditSeverity.INFO:
        severity = AuditSeverity.WARNING
    return severity


@dataclass
class AuditEntry:
    operation: str
    actor_id: Optional[str]
    details: Dict[str, Any]
    success: bool
    severity: AuditSeverity
    error_message: Optional[str] = None
    resource: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_log_dict(self) -> dict:
        entry = {
            "timestamp": self.timestamp.isoformat(),
            "event_type": f"inventory.{self.operation}",
            "actor_id": self.actor_id,
            "success": self.success,
            "severity": self.severity.value,
            "details": self.details,
        }
        if self.resource:
            entry["resource"] = self.resource
        if self.error_message:
            entry["error"] = self.error_message
        return entry


class AuditRecorder:
    """Best-effort asynchronous writer for audit_logs."""

    def __init__(self, database: Database, queue_size: int = 1000, clock: Clock = utcnow):
        self._db = database
        self._clock = clock
        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self._worker: Optional[threading.Thread] = None
        self.dropped = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._worker = threading.Thread(target=self._drain, name="audit-recorder", daemon=True)
        self._worker.start()
        logger.info("Audit recorder started")

    def stop(self, timeout: float = 5.0) -> None:
        """Drain what is queued, then stop the worker."""
        if not self.running:
            return
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.error(f"Audit queue still full after {timeout}s, worker left running")
            return
        self._worker.join(timeout)
        if self._worker.is_alive():
            logger.error(f"Audit worker did not stop within {timeout}s")
            return
        self._worker = None
        logger.info("Audit recorder stopped")

    def flush(self) -> None:
        """Block until every queued entry has been written or dropped."""
        if self.running:
            self._queue.join()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(
        self,
        operation: str,
        actor_id: Optional[str],
        details: Optional[Dict[str, Any]],
        success: bool,
        *,
        error_message: Optional[str] = None,
        severity: Optional[AuditSeverity] = None,
        resource: Optional[str] = None,
    ) -> Optional[AuditEntry]:
        """
        Record one operation attempt. Never raises.

        Usage:
            audit.record("checkout_supply", "u-1", {"supply_id": "s-1", "quantity": 2}, True)
            audit.record("waste_supply", "u-2", {...}, False, error_message="Insufficient permissions")
        """
        try:
            entry = AuditEntry(
                operation=operation,
                actor_id=actor_id,
                details=_json_safe(details or {}),
                success=success,
                severity=resolve_severity(operation, success, severity),
                error_message=error_message,
                resource=resource,
                timestamp=self._clock(),
            )
            payload = json.dumps(entry.to_log_dict())
            if entry.severity == AuditSeverity.INFO:
                audit_logger.info(payload)
            else:
                audit_logger.warning(payload)
        except Exception as e:
            logger.error(f"Failed to build audit entry for {operation}: {e}", exc_info=True)
            return None

        if not self.running:
            self._write(entry)
            return entry

        try:
            self._queue.put_nowait(entry)
        except queue.Full:
            self.dropped += 1
            logger.error(f"Audit queue full, dropped entry: {operation} by {actor_id}")
        return entry

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._write(item)
            finally:
                self._queue.task_done()

    def _write(self, entry: AuditEntry) -> None:
        try:
            with self._db.session_scope() as session:
                session.add(AuditLog(
                    operation=entry.operation,
                    actor_id=entry.actor_id,
                    details=entry.details,
                    success=entry.success,
                    error_message=entry.error_message,
                    severity=entry.severity,
                    resource=entry.resource,
                    timestamp=entry.timestamp,
                ))
        except Exception as e:
            # Audit failures must never affect the audited operation
            self.dropped += 1
            logger.error(f"Failed to record audit log {entry.operation}: {e}")

    # ------------------------------------------------------------------
    # Queries and retention
    # ------------------------------------------------------------------

    def query(
        self,
        operation: Optional[str] = None,
        actor_id: Optional[str] = None,
        severity: Optional[AuditSeverity] = None,
        success: Optional[bool] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[dict]:
        with self._db.session_scope() as session:
            q = session.query(AuditLog)
            if operation:
                q = q.filter(AuditLog.operation == operation)
            if actor_id:
                q = q.filter(AuditLog.actor_id == actor_id)
            if severity:
                q = q.filter(AuditLog.severity == severity)
            if success is not None:
                q = q.filter(AuditLog.success == success)
            if since:
                q = q.filter(AuditLog.timestamp >= since)
            rows = q.order_by(AuditLog.timestamp.desc()).offset(offset).limit(limit).all()
            return [
                {
                    "id": row.id,
                    "operation": row.operation,
                    "actor_id": row.actor_id,
                    "details": row.details,
                    "success": row.success,
                    "error_message": row.error_message,
                    "severity": row.severity.value,
                    "resource": row.resource,
                    "timestamp": row.timestamp.isoformat() if row.timestamp else None,
                }
                for row in rows
            ]

    def purge_expired(self, retention_days: Dict[AuditSeverity, int], now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Delete entries older than the retention window of their severity.

        Returns the number of rows deleted per severity. The purge itself is audited.
        """
        now = now or self._clock()
        deleted: Dict[str, int] = {}
        try:
            with self._db.session_scope() as session:
                for severity, days in retention_days.items():
                    cutoff = now - timedelta(days=days)
                    result = session.execute(
                        delete(AuditLog)
                        .where(AuditLog.severity == severity)
                        .where(AuditLog.timestamp < cutoff)
                    )
                    deleted[severity.value] = result.rowcount or 0
        except Exception as e:
            logger.error(f"Audit log purge failed: {e}", exc_info=True)
            self.record(
                "audit_logs_purge_failed", "system", {}, False,
                error_message=str(e), severity=AuditSeverity.CRITICAL, resource="audit_logs",
            )
            raise

        self.record(
            "audit_logs_purged", "system",
            {"deleted": deleted, "retention_days": {s.value: d for s, d in retention_days.items()}},
            True, resource="audit_logs",
        )
        logger.info(f"Purged audit logs: {deleted}")
        return deleted


def _json_safe(value: Any) -> Any:
    """Make a payload snapshot JSON-serialisable (enums, datetimes, decimals)."""
    return json.loads(json.dumps(value, default=_default))


def _default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "value"):
        return obj.value
    return str(obj)
