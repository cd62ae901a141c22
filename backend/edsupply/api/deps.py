"""FastAPI dependencies: services from app state and the actor id from the JWT.

SECURITY: A missing or invalid token does not short-circuit here. The actor
resolves to None and the service rejects the attempt as `unauthenticated`,
so rejected calls are audited like every other attempt.
"""
import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from edsupply.core.security import decode_access_token
from edsupply.services.audit_log_service import AuditLogService
from edsupply.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_optional_actor_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    """Extract the actor id (token subject). None when absent or invalid."""
    if not credentials:
        return None
    sub = decode_access_token(credentials.credentials)
    if not sub:
        logger.warning("Rejected invalid or expired bearer token")
        return None
    return sub


def get_inventory_service(request: Request) -> InventoryService:
    return request.app.state.inventory_service


def get_audit_log_service(request: Request) -> AuditLogService:
    return request.app.state.audit_log_service
