"""MCP server implementation for Gmail and Calendar.

Tools:
- gmail_list_accounts / calendar_list_accounts: configured accounts
- gmail_query_emails, gmail_get_email
- calendar_list, calendar_get_events

Transport: Stdio
Authentication: per-account OAuth 2.0 with lazy refresh and interactive
authorization on first use
"""

from gsuite_mcp.server.google_workspace_server import (
    GoogleWorkspaceServer,
    main,
)

__all__ = ["GoogleWorkspaceServer", "main"]
