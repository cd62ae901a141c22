"""
Permission checks for supply operations.
Trust: fails closed. A missing profile or a lookup error means "not allowed".
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from edsupply.db.session import Database
from edsupply.models.enums import Capability, Role
from edsupply.models.user_profile import UserProfile

logger = logging.getLogger(__name__)


class OperationClass(str, Enum):
    READ = "read"
    CHECKOUT = "checkout"
    CHECKIN = "checkin"
    MANAGE = "manage"


@dataclass(frozen=True)
class Rule:
    roles: FrozenSet[Role]
    capability: Optional[Capability] = None
    any_profile: bool = False


RULES: Dict[OperationClass, Rule] = {
    OperationClass.READ: Rule(roles=frozenset(), any_profile=True),
    OperationClass.CHECKOUT: Rule(
        roles=frozenset({Role.STAFF, Role.NURSE, Role.PHYSICIAN, Role.ADMIN}),
        capability=Capability.CHECKOUT_SUPPLIES,
    ),
    OperationClass.CHECKIN: Rule(
        roles=frozenset({Role.ADMIN, Role.INVENTORY_MANAGER, Role.NURSE}),
        capability=Capability.MANAGE_INVENTORY,
    ),
    OperationClass.MANAGE: Rule(
        roles=frozenset({Role.ADMIN, Role.INVENTORY_MANAGER}),
        capability=Capability.MANAGE_INVENTORY,
    ),
}

CONTROLLED_SUBSTANCE_ROLES = frozenset({Role.PHYSICIAN, Role.PHARMACIST, Role.ADMIN})

_missing = [op for op in OperationClass if op not in RULES]
if _missing:
    raise RuntimeError(f"No permission rule for operation classes: {_missing}")


@dataclass(frozen=True)
class ActorProfile:
    """Resolved view of a UserProfile row: typed roles and capabilities."""

    id: str
    display_name: str
    roles: FrozenSet[Role]
    capabilities: FrozenSet[Capability]

    @classmethod
    def from_model(cls, profile: UserProfile) -> "ActorProfile":
        roles = set()
        for raw in profile.roles or []:
            try:
                roles.add(Role(raw))
            except ValueError:
                logger.warning(f"Ignoring unknown role {raw!r} on profile {profile.id}")
        capabilities = {
            capability
            for capability in Capability
            if getattr(profile, capability.value, False)
        }
        return cls(
            id=profile.id,
            display_name=profile.display_name or "Unknown User",
            roles=frozenset(roles),
            capabilities=frozenset(capabilities),
        )

    def has_role(self, *roles: Role) -> bool:
        return any(role in self.roles for role in roles)


def permits(profile: ActorProfile, operation: OperationClass) -> bool:
    rule = RULES[OperationClass(operation)]
    if rule.any_profile:
        return True
    if profile.roles & rule.roles:
        return True
    return rule.capability is not None and rule.capability in profile.capabilities


def permits_controlled_substance(profile: ActorProfile) -> bool:
    if profile.roles & CONTROLLED_SUBSTANCE_ROLES:
        return True
    return (
        Role.NURSE in profile.roles
        and Capability.ACCESS_CONTROLLED_SUBSTANCES in profile.capabilities
    )


class PermissionOracle:
    """Answers "may this actor do X" from the profile store."""

    def __init__(self, database: Database):
        self._db = database

    def resolve(self, actor_id: Optional[str]) -> Optional[ActorProfile]:
        if not actor_id:
            return None
        try:
            with self._db.session_scope() as session:
                profile = session.get(UserProfile, actor_id)
                if profile is None:
                    logger.warning(f"User profile not found for ID: {actor_id}")
                    return None
                return ActorProfile.from_model(profile)
        except Exception as e:
            logger.error(f"Error loading user profile {actor_id}: {e}", exc_info=True)
            return None

    def authorize(self, actor_id: Optional[str], operation: OperationClass) -> bool:
        profile = self.resolve(actor_id)
        if profile is None:
            return False
        return permits(profile, operation)

    def authorize_controlled_substance(self, actor_id: Optional[str]) -> bool:
        profile = self.resolve(actor_id)
        if profile is None:
            return False
        return permits_controlled_substance(profile)
