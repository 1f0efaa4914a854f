"""
Workspace management for Attio Sync.

Wraps the workspace-level parts of the Attio API: the current
workspace, its members, and syncing local users into it.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from attio_sync.config import ConfigurationRegistry, registry as default_registry
from attio_sync.db.records import write_column
from attio_sync.exceptions import WorkspaceError
from attio_sync.utils.cache import ExpiringCache
from attio_sync.utils.logging import get_logger

logger = get_logger(__name__)

INFO_TTL = 3600
NOT_SUPPORTED = "Client doesn't support workspace members"
DEFAULT_ROLE = "member"

PERMISSIONS = {
    "admin": {"read", "write", "delete", "manage"},
    "member": {"read", "write"},
    "viewer": {"read"},
}

RoleCondition = Union[str, Callable[[Any], Any]]
RoleMapping = Union[Dict[RoleCondition, str], Sequence[Tuple[RoleCondition, str]]]


def _supports(client: Any, operation: str) -> bool:
    if hasattr(client, "supports"):
        return client.supports(operation)
    return hasattr(client, operation)


def member_id_of(member: Dict[str, Any]) -> Optional[str]:
    """Attio returns member ids as {"workspace_member_id": ...} objects."""
    member_id = member.get("id")
    if isinstance(member_id, dict):
        return member_id.get("workspace_member_id")
    return member_id


def member_email(member: Dict[str, Any]) -> Optional[str]:
    return member.get("email_address") or member.get("email")


def member_role(member: Dict[str, Any]) -> Optional[str]:
    return member.get("access_level") or member.get("role")


class WorkspaceManager:
    """
    Workspace and member operations.

    Workspace info is cached for an hour per workspace. Member operations
    return a result dict instead of raising when the API call fails or
    the client has no member endpoints.
    """

    def __init__(
        self,
        workspace_id: Optional[str] = None,
        registry: Optional[ConfigurationRegistry] = None,
        cache: Optional[ExpiringCache] = None,
    ):
        self.registry = registry or default_registry
        self.workspace_id = workspace_id or self.registry.settings.default_workspace_id
        self.cache = cache or ExpiringCache()

    @property
    def client(self):
        return self.registry.client

    def _cache_key(self, name: str) -> str:
        return f"attio:workspace:{self.workspace_id}:{name}"

    # Workspace

    def info(self) -> Dict[str, Any]:
        """Current workspace details from the token introspection endpoint."""
        try:
            return self.cache.fetch(self._cache_key("info"), INFO_TTL, self.client.identify)
        except Exception as e:
            logger.error("Failed to fetch workspace info", workspace_id=self.workspace_id, error=str(e))
            return {}

    def health_check(self) -> bool:
        return self._token_active("Health check failed")

    def validate_api_key(self) -> bool:
        return self._token_active("API key validation failed")

    def _token_active(self, failure_message: str) -> bool:
        try:
            return self.client.identify().get("active") is True
        except Exception as e:
            logger.error(failure_message, error=str(e))
            return False

    def validate_workspace(self, workspace_id: Optional[str]) -> bool:
        """True when the API key belongs to the given workspace."""
        if not workspace_id:
            return False

        try:
            return self.client.identify().get("workspace_id") == workspace_id
        except Exception as e:
            logger.error("Failed to validate workspace", workspace_id=workspace_id, error=str(e))
            return False

    def ensure_workspace(self, workspace_id: Optional[str]) -> bool:
        if not self.validate_workspace(workspace_id):
            raise WorkspaceError(f"Invalid workspace: {workspace_id}")
        return True

    def switch_to(self, workspace_id: str) -> str:
        if not self.validate_workspace(workspace_id):
            raise WorkspaceError("Cannot switch to invalid workspace")
        self.workspace_id = workspace_id
        return workspace_id

    def clear_cache(self) -> None:
        self.cache.delete_matched(self._cache_key(""))

    # Members

    def members(self) -> Optional[List[Dict[str, Any]]]:
        if not _supports(self.client, "list_workspace_members"):
            return None
        return self.client.list_workspace_members()

    def member(self, member_id: str) -> Optional[Dict[str, Any]]:
        if not _supports(self.client, "get_workspace_member"):
            return None
        return self.client.get_workspace_member(member_id)

    def invite_member(self, email: str, role: str = DEFAULT_ROLE, sync_with_user: Any = None) -> Dict[str, Any]:
        """
        Invite someone to the workspace.

        Args:
            email: Address to invite
            role: Workspace role
            sync_with_user: Local user whose attio_member_id is set on success

        Returns:
            {"success": True, "member_id", "data"} or {"success": False, "error"}
        """
        if not _supports(self.client, "invite_workspace_member"):
            return {"success": False, "error": NOT_SUPPORTED}

        try:
            data = self.client.invite_workspace_member(email, role=role)
        except Exception as e:
            logger.error("Failed to invite member", email=email, error=str(e))
            return {"success": False, "error": str(e)}

        member_id = member_id_of(data)
        if sync_with_user is not None and hasattr(sync_with_user, "attio_member_id"):
            write_column(sync_with_user, "attio_member_id", member_id)

        return {"success": True, "member_id": member_id, "data": data}

    def update_member_role(self, member_id: str, role: str) -> Dict[str, Any]:
        if not _supports(self.client, "update_workspace_member"):
            return {"success": False, "error": NOT_SUPPORTED}

        try:
            data = self.client.update_workspace_member(member_id, role=role)
        except Exception as e:
            logger.error("Failed to update member role", member_id=member_id, error=str(e))
            return {"success": False, "error": str(e)}

        return {"success": True, "data": data}

    def remove_member(self, member_id: str) -> Dict[str, Any]:
        if not _supports(self.client, "remove_workspace_member"):
            return {"success": False, "error": NOT_SUPPORTED}

        try:
            data = self.client.remove_workspace_member(member_id)
        except Exception as e:
            logger.error("Failed to remove member", member_id=member_id, error=str(e))
            return {"success": False, "error": str(e)}

        return {"success": True, "data": data}

    def can_access(self, member_id: str, permission: str) -> bool:
        """Whether a member's access level grants a permission (read, write, delete, manage)."""
        try:
            member = self.member(member_id)
        except Exception as e:
            logger.warning("Failed to load member", member_id=member_id, error=str(e))
            return False

        if not member:
            return False

        role = member_role(member)
        if role not in PERMISSIONS:
            role = "viewer"
        return permission in PERMISSIONS[role]

    # User sync

    def sync_users(self, users: Iterable[Any], role_mapping: Optional[RoleMapping] = None) -> Dict[str, List[Any]]:
        """
        Invite local users that are not members yet and fix changed roles.

        Args:
            users: Objects with an ``email`` attribute
            role_mapping: (condition, role) pairs checked in order; a
                condition is a callable(user) or a user attribute/method name.
                Users matching none get the "member" role.

        Returns:
            {"invited": [...users], "updated": [...users], "failed": [{"user", "error"}]}
        """
        results: Dict[str, List[Any]] = {"invited": [], "updated": [], "failed": []}
        existing = self._members_by_email()

        for user in users:
            role = determine_user_role(user, role_mapping or {})
            member = existing.get(user.email)

            if member is None:
                result = self.invite_member(user.email, role=role, sync_with_user=user)
                bucket = "invited"
            elif member_role(member) != role:
                result = self.update_member_role(member_id_of(member), role)
                bucket = "updated"
            else:
                continue

            if result["success"]:
                results[bucket].append(user)
            else:
                results["failed"].append({"user": user, "error": result["error"]})

        logger.info(
            "Workspace users synced",
            invited=len(results["invited"]),
            updated=len(results["updated"]),
            failed=len(results["failed"]),
        )
        return results

    def _members_by_email(self) -> Dict[str, Dict[str, Any]]:
        return {member_email(member): member for member in self.members() or []}


def determine_user_role(user: Any, role_mapping: RoleMapping) -> str:
    pairs = role_mapping.items() if isinstance(role_mapping, dict) else role_mapping

    for condition, role in pairs:
        if callable(condition):
            matched = condition(user)
        else:
            value = getattr(user, condition, None)
            matched = value() if callable(value) else value
        if matched:
            return role

    return DEFAULT_ROLE
