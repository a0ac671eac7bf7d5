"""Gmail and Calendar MCP server for many Google accounts.

Every tool except the ``*_list_accounts`` tools takes a ``user_id`` naming one
of the allow-listed accounts. Credentials for that account are resolved by the
CredentialManager before the tool runs; credential failures come back as
structured payloads naming the failure kind, and the server keeps serving
other calls.
"""

import asyncio
import base64
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from gsuite_mcp.api_client import CALENDAR_API_BASE, GMAIL_API_BASE, GoogleApiClient
from gsuite_mcp.auth import CredentialManager
from gsuite_mcp.config import Settings
from gsuite_mcp.errors import GSuiteAuthError, StorageError

logger = logging.getLogger(__name__)

USER_ID_ARG = "user_id"

LIST_ACCOUNTS_TOOLS = {"gmail_list_accounts", "calendar_list_accounts"}

_USER_ID_PROPERTY = {
    "type": "string",
    "description": "Email address of the Google account to act on",
}

ToolHandler = Callable[[GoogleApiClient, dict[str, Any]], Awaitable[dict[str, Any]]]


def _payload(data: dict[str, Any]) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(data, indent=2))]


class GoogleWorkspaceServer:
    """MCP server exposing Gmail and Calendar tools.

    Attributes:
        server: MCP Server instance.
        manager: CredentialManager resolving per-account credentials.
    """

    def __init__(self, manager: CredentialManager) -> None:
        """Initialize the server.

        Args:
            manager: Credential manager for the allow-listed accounts.
        """
        self.server = Server("gsuite-mcp")
        self.manager = manager
        self._handlers: dict[str, ToolHandler] = {
            "gmail_query_emails": self._query_emails,
            "gmail_get_email": self._get_email,
            "calendar_list": self._list_calendars,
            "calendar_get_events": self._get_events,
        }
        self._setup_handlers()

    @classmethod
    def from_settings(cls, settings: Settings) -> "GoogleWorkspaceServer":
        """Build a server from configuration files.

        Raises:
            ConfigError: If the client or accounts file is unusable.
        """
        return cls(CredentialManager.from_settings(settings))

    def _setup_handlers(self) -> None:
        """Register MCP tool handlers."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            """Return list of available tools."""
            return self.get_tools()

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            """Handle tool calls."""
            return await self.handle_tool(name, arguments)

    def get_tools(self) -> list[Tool]:
        return [
            Tool(
                name="gmail_list_accounts",
                description=(
                    "Lists all configured Google accounts that can be used with the Gmail "
                    "tools. Does not require a user_id."
                ),
                inputSchema={"type": "object", "properties": {}, "required": []},
            ),
            Tool(
                name="calendar_list_accounts",
                description=(
                    "Lists all configured Google accounts that can be used with the "
                    "Calendar tools. Does not require a user_id."
                ),
                inputSchema={"type": "object", "properties": {}, "required": []},
            ),
            Tool(
                name="gmail_query_emails",
                description=(
                    "Query Gmail emails with an optional search query. Returns emails "
                    "newest first with subject, sender, date and a short snippet."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: _USER_ID_PROPERTY,
                        "query": {
                            "type": "string",
                            "description": "Gmail search query (e.g., 'is:unread from:alice')",
                        },
                        "max_results": {
                            "type": "integer",
                            "description": "Maximum number of emails to return (default: 10)",
                            "default": 10,
                        },
                    },
                    "required": [USER_ID_ARG],
                },
            ),
            Tool(
                name="gmail_get_email",
                description="Get the full content of one email by its ID",
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: _USER_ID_PROPERTY,
                        "email_id": {"type": "string", "description": "Gmail message ID"},
                    },
                    "required": [USER_ID_ARG, "email_id"],
                },
            ),
            Tool(
                name="calendar_list",
                description="List all calendars accessible by the account",
                inputSchema={
                    "type": "object",
                    "properties": {USER_ID_ARG: _USER_ID_PROPERTY},
                    "required": [USER_ID_ARG],
                },
            ),
            Tool(
                name="calendar_get_events",
                description="Get events from a calendar within a time range",
                inputSchema={
                    "type": "object",
                    "properties": {
                        USER_ID_ARG: _USER_ID_PROPERTY,
                        "calendar_id": {
                            "type": "string",
                            "description": "Calendar ID (default: 'primary')",
                            "default": "primary",
                        },
                        "time_min": {
                            "type": "string",
                            "description": "Start time in RFC3339 format (e.g., '2024-01-01T00:00:00Z')",
                        },
                        "time_max": {
                            "type": "string",
                            "description": "End time in RFC3339 format",
                        },
                        "max_results": {
                            "type": "integer",
                            "description": "Maximum number of events to return (default: 10)",
                            "default": 10,
                        },
                    },
                    "required": [USER_ID_ARG],
                },
            ),
        ]

    async def handle_tool(self, name: str, arguments: Any) -> list[TextContent]:
        """Resolve credentials for the call's account and run the tool."""
        if not isinstance(arguments, dict):
            return _payload({"success": False, "error": "arguments must be dictionary"})

        if name in LIST_ACCOUNTS_TOOLS:
            return _payload(self._list_accounts())

        handler = self._handlers.get(name)
        if handler is None:
            return _payload({"success": False, "error": f"Unknown tool: {name}"})

        user_id = arguments.get(USER_ID_ARG)
        if not user_id:
            return _payload(
                {"success": False, "error": f"{USER_ID_ARG} argument is missing in dictionary"}
            )

        try:
            client = await self.manager.get_client(user_id)
        except GSuiteAuthError as e:
            logger.warning("Credentials unavailable for %s: %s", user_id, e)
            return _payload(e.to_payload())

        try:
            result = await handler(client, arguments)
        except Exception as e:
            logger.exception(f"Error calling tool {name}")
            return _payload({"success": False, "error": f"Tool execution failed: {e}"})
        return _payload(result)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _list_accounts(self) -> dict[str, Any]:
        accounts = [
            {
                "email": account.email,
                "account_type": account.account_type,
                "extra_info": account.extra_info,
                "description": account.to_description(),
            }
            for account in self.manager.registry.list()
        ]
        if not accounts:
            return {
                "message": "No accounts configured. Please check your accounts file.",
                "accounts": [],
            }
        return {"message": f"Found {len(accounts)} configured account(s)", "accounts": accounts}

    async def _query_emails(self, client: GoogleApiClient, arguments: dict[str, Any]) -> dict[str, Any]:
        """Search Gmail messages, fetching details in parallel."""
        url = f"{GMAIL_API_BASE}/users/me/messages"
        params = {"q": arguments.get("query", ""), "maxResults": arguments.get("max_results", 10)}
        response = await client.request("GET", url, params=params)

        message_list = response.get("messages", [])
        if not message_list:
            return {"messages": [], "count": 0}

        async def fetch_message_detail(msg_id: str) -> dict[str, Any]:
            msg_url = f"{GMAIL_API_BASE}/users/me/messages/{msg_id}"
            return await client.request("GET", msg_url, params={"format": "metadata"})

        details = await asyncio.gather(
            *[fetch_message_detail(msg["id"]) for msg in message_list],
            return_exceptions=True,
        )

        messages = []
        for msg, msg_detail in zip(message_list, details):
            if isinstance(msg_detail, BaseException):
                logger.warning("Failed to fetch message %s: %s", msg["id"], msg_detail)
                continue

            headers = {h["name"]: h["value"] for h in msg_detail.get("payload", {}).get("headers", [])}
            messages.append(
                {
                    "id": msg["id"],
                    "thread_id": msg.get("threadId"),
                    "subject": headers.get("Subject"),
                    "from": headers.get("From"),
                    "to": headers.get("To"),
                    "date": headers.get("Date"),
                    "snippet": msg_detail.get("snippet"),
                }
            )

        return {"messages": messages, "count": len(messages)}

    async def _get_email(self, client: GoogleApiClient, arguments: dict[str, Any]) -> dict[str, Any]:
        email_id = arguments["email_id"]
        url = f"{GMAIL_API_BASE}/users/me/messages/{email_id}"
        response = await client.request("GET", url, params={"format": "full"})

        headers = {h["name"]: h["value"] for h in response.get("payload", {}).get("headers", [])}
        return {
            "id": response.get("id"),
            "thread_id": response.get("threadId"),
            "subject": headers.get("Subject"),
            "from": headers.get("From"),
            "to": headers.get("To"),
            "cc": headers.get("Cc"),
            "date": headers.get("Date"),
            "body": extract_message_body(response.get("payload", {})),
            "labels": response.get("labelIds", []),
        }

    async def _list_calendars(self, client: GoogleApiClient, arguments: dict[str, Any]) -> dict[str, Any]:
        url = f"{CALENDAR_API_BASE}/users/me/calendarList"
        response = await client.request("GET", url)

        calendars = [
            {
                "id": item.get("id"),
                "summary": item.get("summary"),
                "description": item.get("description"),
                "access_role": item.get("accessRole"),
                "primary": item.get("primary", False),
            }
            for item in response.get("items", [])
        ]
        return {"calendars": calendars, "count": len(calendars)}

    async def _get_events(self, client: GoogleApiClient, arguments: dict[str, Any]) -> dict[str, Any]:
        calendar_id = arguments.get("calendar_id", "primary")
        url = f"{CALENDAR_API_BASE}/calendars/{calendar_id}/events"
        params: dict[str, Any] = {
            "maxResults": arguments.get("max_results", 10),
            "singleEvents": True,
            "orderBy": "startTime",
        }
        if arguments.get("time_min"):
            params["timeMin"] = arguments["time_min"]
        if arguments.get("time_max"):
            params["timeMax"] = arguments["time_max"]

        response = await client.request("GET", url, params=params)

        events = []
        for item in response.get("items", []):
            start = item.get("start", {})
            end = item.get("end", {})
            events.append(
                {
                    "id": item.get("id"),
                    "summary": item.get("summary"),
                    "description": item.get("description"),
                    "start": start.get("dateTime") or start.get("date"),
                    "end": end.get("dateTime") or end.get("date"),
                    "location": item.get("location"),
                    "attendees": [a.get("email") for a in item.get("attendees", [])],
                }
            )
        return {"events": events, "count": len(events)}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def log_stored_credentials(self) -> None:
        """Log which accounts already have stored credentials."""
        for account in self.manager.registry.list():
            try:
                record = self.manager.store.read(account.email)
            except StorageError as e:
                logger.warning("Stored credentials for %s are unusable: %s", account.email, e)
                continue
            if record is not None:
                logger.info("Found credentials for %s", account.email)

    async def run(self) -> None:
        """Run the MCP server using stdio transport."""
        self.log_stored_credentials()
        try:
            async with stdio_server() as (read_stream, write_stream):
                logger.info("Server ready")
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
        finally:
            await self.manager.close()


def extract_message_body(payload: dict[str, Any]) -> str:
    """Extract the message body from a Gmail payload.

    Prefers text/plain, recursing into nested multipart parts, and falls back
    to text/html.
    """
    if "body" in payload and payload["body"].get("data"):
        data = payload["body"]["data"]
        return base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")

    parts = payload.get("parts", [])
    for part in parts:
        mime_type = part.get("mimeType", "")
        if mime_type == "text/plain":
            data = part.get("body", {}).get("data", "")
            if data:
                return base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")
        elif mime_type.startswith("multipart/"):
            result = extract_message_body(part)
            if result:
                return result

    for part in parts:
        if part.get("mimeType") == "text/html":
            data = part.get("body", {}).get("data", "")
            if data:
                return base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")

    return ""


def main(settings: Settings | None = None) -> None:
    """Entry point for the MCP server."""
    server = GoogleWorkspaceServer.from_settings(settings or Settings.from_env())
    asyncio.run(server.run())
