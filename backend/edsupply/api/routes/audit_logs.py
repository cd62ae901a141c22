"""Audit trail reads. Administrators only."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from edsupply.api.deps import get_audit_log_service, get_optional_actor_id
from edsupply.models.enums import AuditSeverity
from edsupply.schemas.audit_log import AuditLogRecord
from edsupply.services.audit_log_service import AuditLogService

router = APIRouter()


@router.get("", response_model=List[AuditLogRecord])
def list_audit_logs(
    operation: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    severity: Optional[AuditSeverity] = Query(None),
    success: Optional[bool] = Query(None),
    since: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    actor_id: Optional[str] = Depends(get_optional_actor_id),
    service: AuditLogService = Depends(get_audit_log_service),
):
    return service.list_audit_logs(
        actor_id, operation=operation, user_id=user_id, severity=severity,
        success=success, since=since, limit=limit, offset=offset,
    )
