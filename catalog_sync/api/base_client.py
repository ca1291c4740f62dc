"""Base HTTP client with failure classification and logging."""

from typing import Optional, Dict

import httpx

from ..utils.logger import get_api_logger
from ..utils.exceptions import RemotePlatformError, RemoteErrorKind


def classify_status(status_code: int) -> Optional[RemoteErrorKind]:
    """Map an HTTP status to a remote failure kind (None for success)."""
    if status_code < 400:
        return None
    if status_code == 404:
        return RemoteErrorKind.NOT_FOUND
    if status_code == 429:
        return RemoteErrorKind.RATE_LIMITED
    if status_code in (401, 403):
        return RemoteErrorKind.UNAUTHORIZED
    if status_code in (400, 406, 409, 422):
        return RemoteErrorKind.VALIDATION
    return RemoteErrorKind.UNAVAILABLE


class BaseClient:
    """Base HTTP client; retries are the caller's decision."""

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize base client.

        Args:
            base_url: Base URL for API requests
            headers: Optional default headers
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.base_url = base_url.rstrip("/")
        self.logger = get_api_logger()

        default_headers = {
            "Content-Type": "application/json",
            "User-Agent": "Catalog-Sync/1.0"
        }

        if headers:
            default_headers.update(headers)

        self.client = httpx.Client(
            base_url=self.base_url,
            headers=default_headers,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Make one HTTP request.

        Raises:
            RemotePlatformError: ``unavailable`` on timeouts and network errors
        """
        self.logger.debug(f"{method} {url}")
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise RemotePlatformError(
                f"Timed out calling {method} {url}",
                kind=RemoteErrorKind.UNAVAILABLE,
                details={"error": str(e)}
            ) from e
        except httpx.HTTPError as e:
            raise RemotePlatformError(
                f"HTTP error calling {method} {url}: {str(e)}",
                kind=RemoteErrorKind.UNAVAILABLE,
                details={"error": str(e)}
            ) from e
        self.logger.debug(f"Response: {response.status_code}")
        return response

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
