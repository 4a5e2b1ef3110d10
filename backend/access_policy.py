# access_policy.py — Pure access decisions over (principal, task)
# No I/O and no side effects; callers act on the booleans.
from principal import Principal, RolePolicy


def _is_member(principal: Principal, task) -> bool:
    return principal.id in set(task.can_access)


def can_view(policy: RolePolicy, principal: Principal, task) -> bool:
    return policy.is_top_role(principal) or _is_member(principal, task)


def can_mutate(policy: RolePolicy, principal: Principal, task) -> bool:
    """Field and status edits. The top role is read-only."""
    if policy.is_top_role(principal):
        return False
    return policy.is_manager_role(principal)


def can_reassign(policy: RolePolicy, principal: Principal, task) -> bool:
    return can_mutate(policy, principal, task) and policy.is_hierarchy_lead(principal)


def can_revoke(policy: RolePolicy, principal: Principal, task) -> bool:
    return can_reassign(policy, principal, task)


def can_create(policy: RolePolicy, principal: Principal) -> bool:
    return not policy.is_top_role(principal)


def can_comment(policy: RolePolicy, principal: Principal, task) -> bool:
    return not policy.is_top_role(principal) and _is_member(principal, task)
