from pydantic import BaseModel
from typing import Any, Optional
from datetime import datetime


class AuditLogRecord(BaseModel):
    id: str
    operation: str
    actor_id: Optional[str] = None
    details: Optional[Any] = None
    success: bool
    error_message: Optional[str] = None
    severity: str
    resource: Optional[str] = None
    timestamp: Optional[datetime] = None
