"""
Role capability table.

Every role-dependent decision in the pipeline (download quotas, blocking
thresholds, block exemption, which accounts a role may manage) is answered
here so that the behavior monitor, the scheduler and the access guard agree.
Quotas and thresholds are read from the live configuration on each lookup.
"""

from dataclasses import dataclass
from typing import FrozenSet, Optional, Union

from config import AppConfig, get_config
from models_validation import Role


VISIBILITY_ALL = "all"
VISIBILITY_TEAM = "team"
VISIBILITY_SELF = "self"

# Roles a Manager may see and manage
TEAM_ROLES: FrozenSet[Role] = frozenset({Role.ANALYST, Role.INTERN})

_STATIC_CAPABILITIES = {
    Role.ADMIN: (True, VISIBILITY_ALL),
    Role.MANAGER: (False, VISIBILITY_TEAM),
    Role.ANALYST: (False, VISIBILITY_SELF),
    Role.INTERN: (False, VISIBILITY_SELF),
}


@dataclass(frozen=True)
class RoleCapabilities:
    """What a role may do and the limits that apply to it."""
    role: Role
    can_bypass_block: bool
    download_quota: int
    block_threshold: float
    visibility_scope: str


def coerce_role(role: Union[Role, str]) -> Role:
    """Accept either the enum or its string value."""
    return role if isinstance(role, Role) else Role(role)


def capabilities_for(role: Union[Role, str], config: Optional[AppConfig] = None) -> RoleCapabilities:
    """Build the capability record for a role from the current configuration."""
    config = config or get_config()
    role = coerce_role(role)
    can_bypass_block, visibility = _STATIC_CAPABILITIES[role]
    return RoleCapabilities(
        role=role,
        can_bypass_block=can_bypass_block,
        download_quota=config.ROLE_DOWNLOAD_LIMITS.get(role.value, config.DEFAULT_DOWNLOAD_LIMIT),
        block_threshold=config.ROLE_BLOCKING_THRESHOLDS.get(
            role.value, config.DEFAULT_BLOCKING_THRESHOLD
        ),
        visibility_scope=visibility,
    )


def can_be_blocked(role: Union[Role, str]) -> bool:
    return not _STATIC_CAPABILITIES[coerce_role(role)][0]


def can_manage(actor_role: Union[Role, str], target_role: Union[Role, str]) -> bool:
    """Whether an actor may act on (e.g. unblock) a target account."""
    actor_role = coerce_role(actor_role)
    target_role = coerce_role(target_role)
    scope = _STATIC_CAPABILITIES[actor_role][1]
    if scope == VISIBILITY_ALL:
        return True
    if scope == VISIBILITY_TEAM:
        return target_role in TEAM_ROLES
    return False
