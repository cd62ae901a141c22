from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.sql import func
from sqlalchemy.types import JSON

from edsupply.db.base import Base


class UserProfile(Base):
    """
    Staff profile consulted for authorization.

    `roles` holds Role values; unknown strings are ignored when the profile is read.
    The can_* flags grant a capability regardless of role.
    """
    __tablename__ = "user_profiles"

    id = Column(String(128), primary_key=True)  # actor id (JWT subject)
    display_name = Column(String(255), nullable=False, default="")
    email = Column(String(255), nullable=True, unique=True)
    roles = Column(JSON, nullable=False, default=list)
    can_checkout_supplies = Column(Boolean, nullable=False, default=False)
    can_manage_inventory = Column(Boolean, nullable=False, default=False)
    can_access_controlled_substances = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
