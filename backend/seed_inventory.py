"""Seed an emergency-department supply catalogue and a few staff profiles.

Supplies are created through InventoryService so each starting quantity gets
its initial restock ledger entry. Prints a bearer token per profile for manual
API testing.
"""
import logging
from datetime import datetime, timedelta, timezone

from edsupply.core.audit import AuditRecorder
from edsupply.core.config import settings
from edsupply.core.permissions import PermissionOracle
from edsupply.core.security import create_access_token
from edsupply.db.init_db import init_db
from edsupply.db.session import Database
from edsupply.models.supply import Supply
from edsupply.models.user_profile import UserProfile
from edsupply.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)

PROFILES = [
    {"id": "admin-1", "display_name": "Dana Admin", "email": "admin@ed.local",
     "roles": ["admin"]},
    {"id": "manager-1", "display_name": "Sam Inventory", "email": "inventory@ed.local",
     "roles": ["inventory_manager"], "can_manage_inventory": True},
    {"id": "nurse-1", "display_name": "Riley Nurse", "email": "nurse@ed.local",
     "roles": ["nurse"], "can_checkout_supplies": True},
    {"id": "physician-1", "display_name": "Alex Physician", "email": "physician@ed.local",
     "roles": ["physician"]},
    {"id": "viewer-1", "display_name": "Jordan Viewer", "email": "viewer@ed.local",
     "roles": ["viewer"]},
]


def _in_days(days: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).date().isoformat()


SUPPLIES = [
    {"name": "Nitrile Exam Gloves (M)", "category": "ppe", "unit": "box", "unit_price": 8.5,
     "current_quantity": 120, "minimum_quantity": 40, "critical_quantity": 15, "location": "emergency_dept"},
    {"name": "N95 Respirator", "category": "ppe", "unit": "each", "unit_price": 1.2,
     "current_quantity": 300, "minimum_quantity": 100, "critical_quantity": 50, "location": "central_supply"},
    {"name": "IV Start Kit", "category": "disposable", "unit": "kit", "unit_price": 4.75,
     "current_quantity": 60, "minimum_quantity": 25, "critical_quantity": 10, "location": "emergency_dept"},
    {"name": "Normal Saline 0.9% 1000mL", "category": "fluid", "unit": "bag", "unit_price": 2.1,
     "current_quantity": 80, "minimum_quantity": 30, "critical_quantity": 12,
     "location": "central_supply", "expiration_date": _in_days(240)},
    {"name": "Lactated Ringer's 1000mL", "category": "fluid", "unit": "bag", "unit_price": 2.4,
     "current_quantity": 18, "minimum_quantity": 20, "critical_quantity": 8,
     "location": "central_supply", "expiration_date": _in_days(200)},
    {"name": "Morphine Sulfate 4mg/mL", "category": "medication", "unit": "vial", "unit_price": 6.0,
     "current_quantity": 25, "minimum_quantity": 10, "critical_quantity": 4, "location": "emergency_dept",
     "is_controlled": True, "required_signature": True, "expiration_date": _in_days(365)},
    {"name": "Epinephrine 1mg/mL", "category": "medication", "unit": "ampule", "unit_price": 12.0,
     "current_quantity": 6, "minimum_quantity": 10, "critical_quantity": 5, "location": "trauma_room",
     "expiration_date": _in_days(120)},
    {"name": "Tourniquet (CAT)", "category": "trauma", "unit": "each", "unit_price": 29.0,
     "current_quantity": 14, "minimum_quantity": 6, "critical_quantity": 2, "location": "trauma_room"},
    {"name": "Non-rebreather Mask", "category": "respiratory", "unit": "each", "unit_price": 1.9,
     "current_quantity": 45, "minimum_quantity": 20, "critical_quantity": 8, "location": "emergency_dept"},
    {"name": "Rapid Strep Test", "category": "diagnostic", "unit": "kit", "unit_price": 3.3,
     "current_quantity": 4, "minimum_quantity": 10, "critical_quantity": 5, "location": "emergency_dept",
     "expiration_date": _in_days(-3)},
]


def seed_inventory(database: Database):
    init_db(database)

    with database.session_scope() as session:
        for data in PROFILES:
            if session.get(UserProfile, data["id"]) is None:
                session.add(UserProfile(**data))
        existing = {name for (name,) in session.query(Supply.name).all()}

    audit = AuditRecorder(database)
    service = InventoryService(database, PermissionOracle(database), audit)

    created = 0
    for data in SUPPLIES:
        if data["name"] in existing:
            continue
        service.create_supply("manager-1", data)
        created += 1
    logger.info(f"Seeded {created} supplies ({len(SUPPLIES) - created} already present)")

    for profile in PROFILES:
        token = create_access_token(profile["id"], expires_delta=timedelta(days=7))
        print(f"{profile['id']:<12} {token}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    seed_inventory(Database(settings.DATABASE_URL))
