"""File locations and tunables.

Environment Variables:
    GSUITE_MCP_GAUTH_FILE: OAuth client JSON (default: ./.gauth.json)
    GSUITE_MCP_ACCOUNTS_FILE: Accounts allow-list (default: ./.accounts.json)
    GSUITE_MCP_CREDENTIALS_DIR: Token record directory (default: ./.gsuite-mcp)
    GSUITE_MCP_AUTH_TIMEOUT: Seconds to wait for the browser redirect (default: 300)
    GSUITE_MCP_EXPIRY_MARGIN: Seconds before expiry a token counts as expired (default: 60)
    GSUITE_MCP_NO_BROWSER: Set to 1 to only log authorization URLs

OAUTHLIB_RELAX_TOKEN_SCOPE is set to 1 when an authorization flow is created,
unless already set, because Google may report granted scopes in a different
form than requested.
"""

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from gsuite_mcp.auth.models import ClientConfig
from gsuite_mcp.auth.token_storage import DEFAULT_CREDENTIALS_DIR
from gsuite_mcp.errors import ConfigError

DEFAULT_GAUTH_FILE = Path(".gauth.json")
DEFAULT_ACCOUNTS_FILE = Path(".accounts.json")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    gauth_file: Path = DEFAULT_GAUTH_FILE
    accounts_file: Path = DEFAULT_ACCOUNTS_FILE
    credentials_dir: Path = DEFAULT_CREDENTIALS_DIR
    auth_timeout: float = 300.0
    expiry_margin: float = 60.0
    open_browser: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            gauth_file=Path(env.get("GSUITE_MCP_GAUTH_FILE") or DEFAULT_GAUTH_FILE),
            accounts_file=Path(env.get("GSUITE_MCP_ACCOUNTS_FILE") or DEFAULT_ACCOUNTS_FILE),
            credentials_dir=Path(env.get("GSUITE_MCP_CREDENTIALS_DIR") or DEFAULT_CREDENTIALS_DIR),
            auth_timeout=_env_float("GSUITE_MCP_AUTH_TIMEOUT", 300.0),
            expiry_margin=_env_float("GSUITE_MCP_EXPIRY_MARGIN", 60.0),
            open_browser=env.get("GSUITE_MCP_NO_BROWSER", "") not in ("1", "true", "yes"),
        )

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_client_config(gauth_file: Path) -> ClientConfig:
    """Load OAuth client credentials downloaded from Google Cloud Console.

    Handles both "web" and "installed" credential formats.

    Raises:
        ConfigError: If the file is missing, malformed, or incomplete.
    """
    try:
        creds = json.loads(gauth_file.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(
            f"OAuth client file not found at {gauth_file}. "
            "Please download OAuth credentials from Google Cloud Console.",
            str(gauth_file),
        ) from e
    except OSError as e:
        raise ConfigError(f"Cannot read OAuth client file {gauth_file}: {e}", str(gauth_file)) from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"OAuth client file {gauth_file} is not valid JSON: {e.msg}", str(gauth_file)) from e

    if isinstance(creds, dict) and "installed" in creds:
        app_creds = creds["installed"]
    elif isinstance(creds, dict) and "web" in creds:
        app_creds = creds["web"]
    else:
        raise ConfigError(
            f"Invalid OAuth client file {gauth_file}. Expected 'installed' or 'web' key.",
            str(gauth_file),
        )

    try:
        return ClientConfig.model_validate(app_creds)
    except ValidationError as e:
        missing = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
        raise ConfigError(
            f"OAuth client file {gauth_file} is incomplete or invalid: {missing}",
            str(gauth_file),
        ) from e
