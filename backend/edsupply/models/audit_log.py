"""
AuditLog: one row per mutating operation attempt, successful or not.
Written outside the inventory transaction by the AuditRecorder worker.
"""
import uuid

from sqlalchemy import Boolean, Column, DateTime, String, Text
from sqlalchemy.types import JSON

from edsupply.core.clock import utcnow
from edsupply.db.base import Base
from edsupply.models.enums import AuditSeverity
from edsupply.models.types import enum_column_type


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    operation = Column(String(128), nullable=False, index=True)  # e.g. checkout_supply, adjust_inventory
    actor_id = Column(String(128), nullable=True, index=True)  # None for unauthenticated attempts
    details = Column(JSON, nullable=True)  # payload snapshot
    success = Column(Boolean, nullable=False)
    error_message = Column(Text, nullable=True)
    severity = Column(enum_column_type(AuditSeverity), nullable=False, default=AuditSeverity.INFO, index=True)
    resource = Column(String(128), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
