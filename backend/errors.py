# errors.py — Error taxonomy for the task access & activity engine
from typing import Optional


class TaskAccessError(Exception):
    """Base class for engine errors"""
    status_code = 500
    detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class Unauthenticated(TaskAccessError):
    """Missing, malformed or expired credential"""
    status_code = 401
    detail = "Not authorized"


class PrincipalNotFound(Unauthenticated):
    """Token verified but the referenced user no longer exists"""


class NotAuthorized(TaskAccessError):
    status_code = 403
    detail = "Not authorized to perform this action"


class NotFound(TaskAccessError):
    status_code = 404
    detail = "Not found"


class ProtectedMember(TaskAccessError):
    """Revocation would break the creator/assignee membership invariant"""
    status_code = 409
    detail = "Cannot revoke access from the task creator or a current assignee"


class IntegrityWarning(TaskAccessError):
    """A superior-chain walk hit a cycle or a dangling reference.

    Never raised to callers: the walker records it and truncates the chain.
    """
    CYCLE = "cycle"
    DANGLING = "dangling"

    def __init__(self, kind: str, user_id: str, origin_id: str):
        self.kind = kind
        self.user_id = user_id
        self.origin_id = origin_id
        super().__init__(f"Hierarchy {kind} at user {user_id} (walk from {origin_id})")


class AuditWriteFailed(TaskAccessError):
    """An activity record could not be persisted"""
    detail = "Activity log write failed"
