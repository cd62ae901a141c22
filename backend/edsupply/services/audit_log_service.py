"""Admin-only read access to the audit trail. Reading it is itself audited."""
import logging
from datetime import datetime
from typing import List, Optional

from edsupply.core.audit import AuditRecorder
from edsupply.core.exceptions import PermissionDeniedError, UnauthenticatedError
from edsupply.core.permissions import PermissionOracle
from edsupply.models.enums import AuditSeverity, Role

logger = logging.getLogger(__name__)


class AuditLogService:
    def __init__(self, permissions: PermissionOracle, audit: AuditRecorder):
        self._permissions = permissions
        self._audit = audit

    def list_audit_logs(
        self,
        actor_id: Optional[str],
        operation: Optional[str] = None,
        user_id: Optional[str] = None,
        severity: Optional[AuditSeverity] = None,
        success: Optional[bool] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[dict]:
        filters = {
            "operation": operation, "user_id": user_id,
            "severity": severity.value if severity else None,
            "success": success, "since": since.isoformat() if since else None,
            "limit": limit, "offset": offset,
        }
        if not actor_id:
            self._audit.record("view_audit_logs", None, filters, False,
                               error_message="Not authenticated", resource="audit_logs")
            raise UnauthenticatedError("You must be logged in to view audit logs")

        profile = self._permissions.resolve(actor_id)
        if profile is None or not profile.has_role(Role.ADMIN):
            logger.warning(f"Audit log access denied for {actor_id}")
            self._audit.record("view_audit_logs", actor_id, filters, False,
                               error_message="Insufficient permissions", resource="audit_logs")
            raise PermissionDeniedError("Only administrators can view audit logs")

        # Entries still queued would otherwise be missing from the result
        self._audit.flush()
        rows = self._audit.query(
            operation=operation, actor_id=user_id, severity=severity, success=success,
            since=since, limit=limit, offset=offset,
        )
        self._audit.record("view_audit_logs", actor_id, {**filters, "returned": len(rows)}, True,
                           resource="audit_logs")
        return rows
