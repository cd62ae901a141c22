"""Create all tables and install ORM listeners. Run on app startup.

Also seeds the system profile used by scheduled jobs so the expiration sweep
passes the same permission check as a human inventory manager.
"""
import logging

from edsupply.core.config import settings
from edsupply.db.base import Base
from edsupply.db.immutability import register_immutability_listeners
from edsupply.db.session import Database
from edsupply.db.triggers import register_status_trigger
from edsupply.models import AuditLog, Supply, SupplyTransaction, UserProfile  # noqa: F401 - register models
from edsupply.models.enums import Role

logger = logging.getLogger(__name__)


def init_db(database: Database) -> None:
    Base.metadata.create_all(bind=database.engine)
    register_immutability_listeners()
    register_status_trigger()

    with database.session_scope() as session:
        if session.get(UserProfile, settings.SYSTEM_ACTOR_ID) is None:
            session.add(UserProfile(
                id=settings.SYSTEM_ACTOR_ID,
                display_name="System",
                roles=[Role.INVENTORY_MANAGER.value],
                can_manage_inventory=True,
            ))
            logger.info(f"Created system profile '{settings.SYSTEM_ACTOR_ID}'")
