"""Authenticated client handle for Google REST APIs."""

from typing import Any

import httpx

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"
CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"


def create_http_client() -> httpx.AsyncClient:
    """Create the shared HTTP client with connection pooling."""
    return httpx.AsyncClient(
        http2=True,
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        timeout=httpx.Timeout(30.0, connect=10.0),
    )


class GoogleApiClient:
    """Bearer-token requests on behalf of one account.

    Handles are cheap: they share the manager's ``httpx.AsyncClient`` and
    only carry the account's current access token.

    Attributes:
        user_id: Account the token belongs to.
    """

    def __init__(self, user_id: str, access_token: str, http_client: httpx.AsyncClient) -> None:
        self.user_id = user_id
        self._access_token = access_token
        self._http_client = http_client

    async def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated HTTP request to Google APIs.

        Args:
            method: HTTP method (GET, POST, etc.).
            url: Full URL to request.
            params: Optional query parameters.
            json_data: Optional JSON body data.

        Returns:
            JSON response as a dictionary (empty for 204 responses).

        Raises:
            httpx.HTTPStatusError: If the request fails.
        """
        response = await self._http_client.request(
            method=method,
            url=url,
            params=params,
            json=json_data,
            headers={
                "Authorization": f"Bearer {self._access_token}",
                "Accept": "application/json",
            },
        )
        response.raise_for_status()
        if response.status_code == 204 or not response.content:
            return {}
        result: dict[str, Any] = response.json()
        return result
