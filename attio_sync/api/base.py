"""
Base API client and error taxonomy for Attio Sync.
"""

from typing import Optional, Dict, Any
from dataclasses import dataclass
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


@dataclass
class APIError(Exception):
    """Custom exception for API errors."""
    message: str
    status_code: Optional[int] = None
    response_data: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        if self.status_code:
            return f"API Error {self.status_code}: {self.message}"
        return f"API Error: {self.message}"


@dataclass
class RateLimitError(APIError):
    """Raised on HTTP 429. Carries the server's backoff hint in seconds."""
    retry_after: Optional[float] = None


class ValidationError(APIError):
    """The remote rejected the payload. Never retried."""


class AuthenticationError(APIError):
    """Bad or missing credentials. Always surfaced to the caller."""


class NotFoundError(APIError):
    """The remote record does not exist."""


class ServerError(APIError):
    """5xx from the remote. Retryable with backoff."""


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def error_for_response(
    status_code: int,
    message: str,
    error_data: Dict[str, Any],
    retry_after: Optional[float] = None,
) -> APIError:
    """
    Build the APIError subclass matching an HTTP status code.

    Args:
        status_code: HTTP status
        message: Error message extracted from the body
        error_data: Decoded error body
        retry_after: Parsed Retry-After header, if any

    Returns:
        APIError instance (not raised)
    """
    if status_code == 429:
        return RateLimitError(
            message=message,
            status_code=status_code,
            response_data=error_data,
            retry_after=retry_after,
        )
    if status_code in (400, 422):
        error_cls = ValidationError
    elif status_code in (401, 403):
        error_cls = AuthenticationError
    elif status_code == 404:
        error_cls = NotFoundError
    elif status_code >= 500:
        error_cls = ServerError
    else:
        error_cls = APIError
    return error_cls(message=message, status_code=status_code, response_data=error_data)


class BaseClient:
    """
    Base class for API clients with common functionality.

    Server errors are retried by the transport; 429 responses are left to
    the caller so the server's Retry-After hint can be honoured.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        max_retries: int = 3,
        retry_backoff_factor: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        # Create session with retry strategy
        self.session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=retry_backoff_factor,
            status_forcelist=[500, 502, 503, 504],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from endpoint."""
        return f"{self.base_url}{endpoint}"

    def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Make an HTTP request.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint
            **kwargs: Additional arguments for requests

        Returns:
            Response JSON data (empty dict for empty bodies)

        Raises:
            APIError: If the request fails
        """
        url = self._build_url(endpoint)

        # Set default timeout
        kwargs.setdefault("timeout", self.timeout)

        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.ConnectionError as e:
            raise APIError(f"Connection error: {str(e)}")
        except requests.exceptions.Timeout as e:
            raise APIError(f"Request timeout: {str(e)}")
        except requests.exceptions.RequestException as e:
            raise APIError(f"Request failed: {str(e)}")

        # Check for HTTP errors
        if response.status_code >= 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {"error": response.text}

            message = error_data.get("message") or error_data.get("error") or response.text
            raise error_for_response(
                response.status_code,
                message,
                error_data,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )

        if not response.content:
            return {}

        # Return JSON if possible
        try:
            return response.json()
        except ValueError:
            return {"data": response.text}

    def get(self, endpoint: str, **kwargs) -> Dict[str, Any]:
        """Make a GET request."""
        return self._request("GET", endpoint, **kwargs)

    def post(self, endpoint: str, **kwargs) -> Dict[str, Any]:
        """Make a POST request."""
        return self._request("POST", endpoint, **kwargs)

    def patch(self, endpoint: str, **kwargs) -> Dict[str, Any]:
        """Make a PATCH request."""
        return self._request("PATCH", endpoint, **kwargs)

    def delete(self, endpoint: str, **kwargs) -> Dict[str, Any]:
        """Make a DELETE request."""
        return self._request("DELETE", endpoint, **kwargs)

    def close(self) -> None:
        """Close the session."""
        self.session.close()
