"""
Access Policy - role checks for staff endpoints.

Roles come from explicit role-assignment records (one record per
user/role pair), never from hardcoded identities.
"""

from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Iterable, Optional, Set
import logging
import threading

from google.api_core import exceptions as google_exceptions

from app.core.settings import settings

logger = logging.getLogger(__name__)

ADMIN = "admin"
MODERATOR = "moderator"
STAFF_ROLES: FrozenSet[str] = frozenset({ADMIN, MODERATOR})


class RoleLookupError(Exception):
    """Role records could not be read."""


class RoleAssignmentRepository(ABC):

    @abstractmethod
    def roles_for(self, user_id: str) -> Set[str]:
        """All roles assigned to a user (empty if none)."""


class FirestoreRoleAssignmentRepository(RoleAssignmentRepository):
    """Reads {user_id, role} documents from ROLES_COLLECTION."""

    def __init__(self, db=None, collection: Optional[str] = None, timeout: Optional[float] = None):
        if db is None:
            from app.config.firebase import get_db
            db = get_db()
        self.db = db
        self.collection = collection or settings.ROLES_COLLECTION
        self.timeout = timeout if timeout is not None else settings.STORE_TIMEOUT_SECONDS

    def roles_for(self, user_id: str) -> Set[str]:
        query = self.db.collection(self.collection).where("user_id", "==", user_id)
        try:
            return {
                (doc.to_dict() or {}).get("role")
                for doc in query.stream(timeout=self.timeout)
            } - {None}
        except google_exceptions.GoogleAPICallError as e:
            raise RoleLookupError(f"Failed to read roles for {user_id}: {e}")


class InMemoryRoleAssignmentRepository(RoleAssignmentRepository):

    def __init__(self, assignments: Optional[Dict[str, Iterable[str]]] = None):
        self._lock = threading.Lock()
        self._roles: Dict[str, Set[str]] = {
            user_id: set(roles) for user_id, roles in (assignments or {}).items()
        }

    def assign(self, user_id: str, role: str) -> None:
        with self._lock:
            self._roles.setdefault(user_id, set()).add(role)

    def roles_for(self, user_id: str) -> Set[str]:
        with self._lock:
            return set(self._roles.get(user_id, set()))


class AccessPolicy:

    def __init__(self, repository: RoleAssignmentRepository):
        self.repository = repository

    def has_role(self, user_id: Optional[str], role: str) -> bool:
        return self.has_any_role(user_id, {role})

    def has_any_role(self, user_id: Optional[str], roles: Iterable[str]) -> bool:
        if not user_id:
            return False
        granted = self.repository.roles_for(user_id) & set(roles)
        if not granted:
            logger.info(f"Access denied for user {user_id}: none of {sorted(roles)}")
        return bool(granted)


# Global policy instance (singleton pattern)
_policy: Optional[AccessPolicy] = None


def get_access_policy() -> AccessPolicy:
    global _policy
    if _policy is None:
        if settings.USE_MOCK_DB:
            _policy = AccessPolicy(InMemoryRoleAssignmentRepository())
        else:
            _policy = AccessPolicy(FirestoreRoleAssignmentRepository())
    return _policy
