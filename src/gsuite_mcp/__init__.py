"""gsuite-mcp: Gmail and Calendar for MCP clients across many Google accounts."""

from gsuite_mcp.__version__ import __version__

__all__ = ["__version__"]
