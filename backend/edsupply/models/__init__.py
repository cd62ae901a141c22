from edsupply.models.supply import Supply
from edsupply.models.supply_transaction import SupplyTransaction
from edsupply.models.audit_log import AuditLog
from edsupply.models.user_profile import UserProfile

__all__ = ["Supply", "SupplyTransaction", "AuditLog", "UserProfile"]
