# principal.py — Authenticated principal, normalised roles and the role policy
# Distinguished role names are configuration; policy checks never compare
# against string literals directly.
import os
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, Tuple

from errors import Unauthenticated, PrincipalNotFound

logger = logging.getLogger("taskscope.principal")


# ============================================================
# ROLE VALUE TYPE
# ============================================================

@dataclass(frozen=True)
class RoleRef:
    id: str
    name: str


async def normalize_roles(
    raw_roles: Iterable[Any],
    lookup: Optional[Callable[[str], Awaitable[Any]]] = None,
) -> Tuple[RoleRef, ...]:
    """Collapse mixed role representations into RoleRef values.

    Accepts ORM roles (anything with ``id`` and ``name``), mappings with
    ``id``/``name`` keys, or bare role identifiers which are resolved via
    ``lookup``. Unresolvable identifiers are dropped.
    """
    seen = {}
    for raw in raw_roles or []:
        if raw is None:
            continue
        if isinstance(raw, RoleRef):
            ref = raw
        elif isinstance(raw, dict):
            if not raw.get("name"):
                continue
            ref = RoleRef(id=str(raw.get("id") or raw["name"]), name=raw["name"])
        elif isinstance(raw, str):
            role = await lookup(raw) if lookup else None
            if role is None:
                logger.warning(f"Dropping unknown role reference {raw}")
                continue
            ref = RoleRef(id=role.id, name=role.name)
        else:
            ref = RoleRef(id=str(raw.id), name=raw.name)
        seen.setdefault(ref.id, ref)
    return tuple(seen.values())


@dataclass(frozen=True)
class Principal:
    id: str
    email: str
    display_name: str = ""
    roles: Tuple[RoleRef, ...] = ()

    @property
    def role_names(self) -> Tuple[str, ...]:
        return tuple(r.name for r in self.roles)

    def has_role(self, role_name: str) -> bool:
        return role_name in self.role_names


# ============================================================
# ROLE POLICY (distinguished names)
# ============================================================

def _split_names(value: str) -> Tuple[str, ...]:
    return tuple(name.strip() for name in value.split(",") if name.strip())


@dataclass(frozen=True)
class RolePolicy:
    """Names of the roles with fixed policy meaning.

    top_role bypasses ACL checks for viewing and is read-only; manager_roles
    may edit task fields and status; hierarchy_lead_role may reassign.
    """
    top_role: str = "CEO"
    manager_roles: Tuple[str, ...] = ("Engineer", "Manager")
    hierarchy_lead_role: str = "Project Lead"

    @classmethod
    def from_env(cls) -> "RolePolicy":
        return cls(
            top_role=os.getenv("TOP_ROLE_NAME", "CEO"),
            manager_roles=_split_names(os.getenv("MANAGER_ROLE_NAMES", "Engineer,Manager")),
            hierarchy_lead_role=os.getenv("HIERARCHY_LEAD_ROLE_NAME", "Project Lead"),
        )

    def has_role(self, principal: Principal, role_name: str) -> bool:
        return principal.has_role(role_name)

    def is_top_role(self, principal: Principal) -> bool:
        return principal.has_role(self.top_role)

    def is_manager_role(self, principal: Principal) -> bool:
        return bool(set(principal.role_names) & set(self.manager_roles))

    def is_hierarchy_lead(self, principal: Principal) -> bool:
        return principal.has_role(self.hierarchy_lead_role)

    def label(self, principal: Principal) -> str:
        if self.is_top_role(principal):
            return self.top_role
        if self.is_hierarchy_lead(principal):
            return self.hierarchy_lead_role
        return "Other"


# ============================================================
# RESOLVER
# ============================================================

@dataclass
class PrincipalResolver:
    """Turns a raw bearer token into a Principal.

    ``verify`` is the token collaborator and returns the token's subject (the
    user id) or raises Unauthenticated.
    """
    directory: Any
    verify: Callable[[str], str]
    policy: RolePolicy = field(default_factory=RolePolicy.from_env)

    async def resolve(self, raw_token: Optional[str]) -> Principal:
        if not raw_token:
            raise Unauthenticated()
        user_id = self.verify(raw_token)

        user = await self.directory.get_user(user_id)
        if user is None or not user.is_active:
            logger.info(f"Token subject {user_id} no longer resolves to an active user")
            raise PrincipalNotFound()

        roles = await normalize_roles(user.roles, self.directory.get_role)
        return Principal(
            id=user.id,
            email=user.email,
            display_name=user.display_name or "",
            roles=roles,
        )
