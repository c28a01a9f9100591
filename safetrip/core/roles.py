"""
Roles and capabilities for SafeTrip.

Role-gated operations check an explicit capability instead of
branching on the kind of account object.
"""

from enum import Enum
from typing import FrozenSet, Mapping

from pydantic import BaseModel, ConfigDict

from .errors import PermissionDeniedError


class Role(str, Enum):
    TOURIST = "tourist"
    AUTHORITY = "authority"


class Capability(str, Enum):
    MANAGE_ZONES = "manage_zones"
    TRANSITION_ALERTS = "transition_alerts"
    DELETE_ALERTS = "delete_alerts"
    VIEW_ALL_ALERTS = "view_all_alerts"
    RAISE_SOS = "raise_sos"
    RAISE_ALERTS = "raise_alerts"
    REPORT_INCIDENTS = "report_incidents"


ROLE_CAPABILITIES: Mapping[Role, FrozenSet[Capability]] = {
    Role.TOURIST: frozenset({
        Capability.RAISE_SOS,
        Capability.RAISE_ALERTS,
        Capability.REPORT_INCIDENTS,
    }),
    Role.AUTHORITY: frozenset({
        Capability.MANAGE_ZONES,
        Capability.RAISE_ALERTS,
        Capability.TRANSITION_ALERTS,
        Capability.DELETE_ALERTS,
        Capability.VIEW_ALL_ALERTS,
    }),
}


class Actor(BaseModel):
    """요청 주체 (계정 디렉터리에서 확인된 사용자와 역할)"""
    model_config = ConfigDict(frozen=True)
    
    user_id: str
    role: Role
    
    def can(self, capability: Capability) -> bool:
        return capability in ROLE_CAPABILITIES.get(self.role, frozenset())


def require(actor: Actor, capability: Capability) -> None:
    """
    주체가 기능을 가지고 있는지 확인합니다.
    
    Raises:
        PermissionDeniedError: 역할에 기능이 없을 때
    """
    if not actor.can(capability):
        raise PermissionDeniedError(actor.role.value, capability.value)
