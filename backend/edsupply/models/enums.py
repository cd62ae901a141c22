"""Closed value sets stored on supplies, ledger entries, audit rows and profiles."""
from enum import Enum


class SupplyCategory(str, Enum):
    MEDICATION = "medication"
    DISPOSABLE = "disposable"
    EQUIPMENT = "equipment"
    PPE = "ppe"
    FLUID = "fluid"
    DIAGNOSTIC = "diagnostic"
    RESPIRATORY = "respiratory"
    TRAUMA = "trauma"
    OTHER = "other"


class SupplyStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    CRITICAL_STOCK = "critical_stock"
    ON_ORDER = "on_order"
    DISCONTINUED = "discontinued"


# Set only by administrative action, never by quantity thresholds.
ADMINISTRATIVE_STATUSES = frozenset({SupplyStatus.ON_ORDER, SupplyStatus.DISCONTINUED})


class SupplyUnit(str, Enum):
    EACH = "each"
    BOX = "box"
    CASE = "case"
    PACK = "pack"
    BOTTLE = "bottle"
    VIAL = "vial"
    AMPULE = "ampule"
    SYRINGE = "syringe"
    BAG = "bag"
    PAIR = "pair"
    ROLL = "roll"
    KIT = "kit"


class SupplyLocation(str, Enum):
    CENTRAL_SUPPLY = "central_supply"
    EMERGENCY_DEPT = "emergency_dept"
    TRAUMA_ROOM = "trauma_room"
    MED_SURG = "med_surg"
    ICU = "icu"
    PEDIATRICS = "pediatrics"
    OB_GYN = "ob_gyn"
    OPERATING_ROOM = "operating_room"
    OTHER = "other"


class TransactionType(str, Enum):
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    RESTOCK = "restock"
    RETURN = "return"
    WASTE = "waste"
    TRANSFER = "transfer"
    ADJUST = "adjust"
    EXPIRE = "expire"


INBOUND_TRANSACTION_TYPES = frozenset({TransactionType.CHECK_IN, TransactionType.RESTOCK, TransactionType.RETURN})


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class Role(str, Enum):
    STAFF = "staff"
    NURSE = "nurse"
    PHYSICIAN = "physician"
    PHARMACIST = "pharmacist"
    ADMIN = "admin"
    INVENTORY_MANAGER = "inventory_manager"
    VIEWER = "viewer"


class Capability(str, Enum):
    """Explicit per-profile overrides on top of roles."""

    CHECKOUT_SUPPLIES = "can_checkout_supplies"
    MANAGE_INVENTORY = "can_manage_inventory"
    ACCESS_CONTROLLED_SUBSTANCES = "can_access_controlled_substances"
