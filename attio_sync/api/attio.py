"""
Attio REST API client for Attio Sync.

Documentation: https://developers.attio.com/reference
"""

from typing import Optional, List, Dict, Any

from attio_sync.api.base import BaseClient, APIError
from attio_sync.utils.logging import get_logger

logger = get_logger(__name__)

ATTIO_API_URL = "https://api.attio.com/v2"


def extract_record_id(response: Dict[str, Any]) -> Optional[str]:
    """
    Pull the record ID out of a create/update response body.

    Attio returns ``{"data": {"id": {"record_id": ...}}}``; a bare string
    ID is accepted too.
    """
    data = (response or {}).get("data") or {}
    record_id = data.get("id")
    if isinstance(record_id, dict):
        record_id = record_id.get("record_id")
    return str(record_id) if record_id else None


class AttioClient(BaseClient):
    """
    Client for the Attio v2 API.

    Covers the record operations the sync layer needs plus the token
    introspection and workspace member endpoints used by the workspace
    helpers. Attio has no bulk record endpoint, so supports_bulk is False.
    """

    supports_bulk = False

    def __init__(self, api_key: str, base_url: str = ATTIO_API_URL, timeout: int = 30):
        """
        Initialize Attio client.

        Args:
            api_key: Attio API key (bearer token)
            base_url: API base URL
            timeout: Request timeout in seconds
        """
        super().__init__(base_url, timeout=timeout)
        self.api_key = api_key

        self.session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    # Records

    def create_record(self, object_type: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a record.

        Args:
            object_type: Object slug (e.g. "people", "companies", "deals")
            values: Attribute values

        Returns:
            Response body with the created record under "data"
        """
        return self.post(
            f"/objects/{object_type}/records",
            json={"data": {"values": values}},
        )

    def update_record(
        self,
        object_type: str,
        record_id: str,
        values: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Update attribute values on an existing record."""
        return self.patch(
            f"/objects/{object_type}/records/{record_id}",
            json={"data": {"values": values}},
        )

    def delete_record(self, object_type: str, record_id: str) -> Dict[str, Any]:
        """Delete a record. Raises NotFoundError if it is already gone."""
        return self.delete(f"/objects/{object_type}/records/{record_id}")

    def get_record(self, object_type: str, record_id: str) -> Dict[str, Any]:
        """Fetch a single record."""
        return self.get(f"/objects/{object_type}/records/{record_id}")

    def list_records(
        self,
        object_type: str,
        filter: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Query records of an object.

        Args:
            object_type: Object slug
            filter: Attio filter expression, e.g. {"email_addresses": "a@b.com"}
            limit: Maximum number of records

        Returns:
            List of record dicts
        """
        body: Dict[str, Any] = {}
        if filter:
            body["filter"] = filter
        if limit:
            body["limit"] = limit

        response = self.post(f"/objects/{object_type}/records/query", json=body)
        return response.get("data", [])

    # Meta

    def identify(self) -> Dict[str, Any]:
        """Describe the current token and its workspace."""
        return self.get("/self")

    def test_connection(self) -> bool:
        """
        Test connection to Attio.

        Returns:
            True if the token is active, False otherwise
        """
        try:
            return bool(self.identify().get("active"))
        except APIError as e:
            logger.error("Failed to connect to Attio", error=str(e))
            return False

    # Workspace members

    def list_workspace_members(self) -> List[Dict[str, Any]]:
        """List members of the token's workspace."""
        response = self.get("/workspace_members")
        return response.get("data", [])

    def get_workspace_member(self, member_id: str) -> Dict[str, Any]:
        """Fetch one workspace member."""
        response = self.get(f"/workspace_members/{member_id}")
        return response.get("data", {})
