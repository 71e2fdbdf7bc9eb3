"""
Role checks for privileged progression operations.

Roles are ranked by a numeric hierarchy (``progression.roles.hierarchy`` in
config). A caller satisfies a required role when their rank is at least the
required rank. Unknown or missing roles rank 0.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from nordics.core.config.config import Config
from nordics.core.config.manager import ConfigManager
from nordics.core.logging.logger import get_logger
from nordics.modules.achievements.sources import RoleSource
from nordics.modules.shared.exceptions import UnauthorizedError

logger = get_logger(__name__)

DEFAULT_ROLE_HIERARCHY: Dict[str, int] = {
    "admin": 100,
    "moderator": 80,
    "helper": 60,
    "editor": 40,
    "member": 20,
    "vip": 15,
    "kala": 10,
    "fancy_kala": 8,
    "golden_kala": 5,
}


def role_rank(role: Optional[str], hierarchy: Optional[Mapping[str, int]] = None) -> int:
    if not role:
        return 0
    ranks = hierarchy if hierarchy is not None else DEFAULT_ROLE_HIERARCHY
    return int(ranks.get(role.strip().lower(), 0))


def has_role(
    role: Optional[str],
    required_role: str,
    hierarchy: Optional[Mapping[str, int]] = None,
) -> bool:
    required = role_rank(required_role, hierarchy)
    # An unknown required role can never be satisfied.
    return required > 0 and role_rank(role, hierarchy) >= required


def is_town_mayor(minecraft_username: Optional[str], town: Any) -> bool:
    mayor = getattr(town, "mayor", None)
    if not minecraft_username or not mayor:
        return False
    return minecraft_username.strip().lower() == str(mayor).strip().lower()


class ClaimAuthorizer:
    """
    Resolves caller roles through a ``RoleSource`` and applies claim rules.

    - admin claims need ``progression.claims.admin_role`` (default ``admin``)
    - town claims are open to staff (``progression.claims.town_staff_role``,
      default ``moderator``) and to the town's mayor
    """

    def __init__(self, role_source: RoleSource, config_manager: Any = ConfigManager) -> None:
        self._roles = role_source
        self._config = config_manager

    @property
    def hierarchy(self) -> Dict[str, int]:
        configured = self._config.get("progression.roles.hierarchy", None)
        if isinstance(configured, dict) and configured:
            return {str(k).lower(): int(v) for k, v in configured.items()}
        return dict(DEFAULT_ROLE_HIERARCHY)

    @property
    def admin_role(self) -> str:
        return str(self._config.get("progression.claims.admin_role", Config.ADMIN_CLAIM_ROLE))

    @property
    def town_staff_role(self) -> str:
        return str(
            self._config.get("progression.claims.town_staff_role", Config.TOWN_CLAIM_STAFF_ROLE)
        )

    async def require_role(self, actor_id: Optional[str], required_role: str, action: str) -> str:
        """
        Return the actor's role when it satisfies ``required_role``.

        Raises:
            UnauthorizedError: when the actor is unknown or ranks too low
            TransientStoreError: when the role lookup fails
        """
        role = await self._roles.get_role(actor_id) if actor_id else None
        if not has_role(role, required_role, self.hierarchy):
            logger.warning(
                "Privileged operation denied",
                extra={
                    "actor_id": actor_id,
                    "action": action,
                    "actor_role": role,
                    "required_role": required_role,
                },
            )
            raise UnauthorizedError(actor_id, action, required_role)
        return role  # type: ignore[return-value]

    async def require_admin(self, actor_id: Optional[str], action: str = "admin claim") -> str:
        return await self.require_role(actor_id, self.admin_role, action)

    async def can_claim_for_town(self, actor_id: Optional[str], town: Any) -> bool:
        if not actor_id:
            return False

        role = await self._roles.get_role(actor_id)
        if has_role(role, self.town_staff_role, self.hierarchy):
            return True
        if town is None:
            return False

        lookup = getattr(self._roles, "get_minecraft_username", None)
        if lookup is None:
            return False
        return is_town_mayor(await lookup(actor_id), town)
