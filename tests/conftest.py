"""Shared pytest fixtures for gsuite-mcp tests.

This module provides reusable fixtures for accounts, OAuth client
configuration, token storage and credential manager tests.
"""

import json
import socket
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gsuite_mcp.auth.accounts import AccountRegistry
from gsuite_mcp.auth.credential_manager import CredentialManager
from gsuite_mcp.auth.models import ClientConfig, TokenMetadata, TokenSet
from gsuite_mcp.auth.oauth_client import GOOGLE_SCOPES, OAuthClient
from gsuite_mcp.auth.token_storage import CredentialStore

# =============================================================================
# Network Helpers
# =============================================================================


def free_port() -> int:
    """Return a currently unused loopback port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


# =============================================================================
# Token Fixtures
# =============================================================================


@pytest.fixture
def valid_token() -> TokenSet:
    """Create a valid, non-expired token."""
    return TokenSet(
        access_token="test_access_token_abc123",
        refresh_token="test_refresh_token_xyz789",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        scopes=list(GOOGLE_SCOPES),
        token_type="Bearer",
    )


@pytest.fixture
def expired_token() -> TokenSet:
    """Create an expired token that still has a refresh token."""
    return TokenSet(
        access_token="expired_access_token",
        refresh_token="R",
        expires_at=datetime.now(timezone.utc) - timedelta(hours=1),
        scopes=list(GOOGLE_SCOPES),
        token_type="Bearer",
    )


@pytest.fixture
def token_metadata() -> TokenMetadata:
    """Create token metadata for testing."""
    return TokenMetadata(created_at=datetime.now(timezone.utc) - timedelta(days=1))


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def callback_port() -> int:
    """A free port for the OAuth redirect URI."""
    return free_port()


@pytest.fixture
def client_config(callback_port: int) -> ClientConfig:
    """OAuth client whose redirect URI points at a free loopback port."""
    return ClientConfig(
        client_id="test-client-id.apps.googleusercontent.com",
        client_secret="test-client-secret",  # pragma: allowlist secret
        redirect_uris=[f"http://127.0.0.1:{callback_port}/code"],
    )


@pytest.fixture
def gauth_file(tmp_path: Path, client_config: ClientConfig) -> Path:
    """Write a Google-format client credentials file."""
    path = tmp_path / ".gauth.json"
    path.write_text(json.dumps(client_config.to_flow_config()))
    return path


@pytest.fixture
def accounts_data() -> dict:
    return {
        "accounts": [
            {"email": "a@x.com", "account_type": "personal", "extra_info": "Main inbox"},
            {"email": "b@x.com", "account_type": "work", "extra_info": "Team calendar"},
        ]
    }


@pytest.fixture
def accounts_file(tmp_path: Path, accounts_data: dict) -> Path:
    path = tmp_path / ".accounts.json"
    path.write_text(json.dumps(accounts_data))
    return path


@pytest.fixture
def registry(accounts_file: Path) -> AccountRegistry:
    return AccountRegistry.load(accounts_file)


# =============================================================================
# Storage and OAuth Fixtures
# =============================================================================


@pytest.fixture
def credentials_dir(tmp_path: Path) -> Path:
    return tmp_path / ".gsuite-mcp"


@pytest.fixture
def credential_store(credentials_dir: Path) -> CredentialStore:
    """Create a CredentialStore with temporary storage."""
    return CredentialStore(credentials_dir)


@pytest.fixture
def oauth_client(client_config: ClientConfig) -> OAuthClient:
    return OAuthClient(client_config)


@pytest.fixture
def opened_urls() -> list[str]:
    """URLs the credential manager asked to open."""
    return []


@pytest.fixture
def credential_manager(
    registry: AccountRegistry,
    credential_store: CredentialStore,
    oauth_client: OAuthClient,
    opened_urls: list[str],
) -> CredentialManager:
    """CredentialManager that records URLs instead of opening a browser."""
    return CredentialManager(
        registry=registry,
        store=credential_store,
        oauth_client=oauth_client,
        open_url=opened_urls.append,
        auth_timeout=5,
    )


# =============================================================================
# Mock Google Credentials
# =============================================================================


@pytest.fixture
def mock_google_credentials() -> MagicMock:
    """Create a mock Google OAuth2 Credentials object."""
    mock_creds = MagicMock()
    mock_creds.token = "mock_access_token"
    mock_creds.refresh_token = "mock_refresh_token"
    mock_creds.expiry = datetime.now(timezone.utc) + timedelta(hours=1)
    mock_creds.scopes = list(GOOGLE_SCOPES)
    return mock_creds


# =============================================================================
# CLI Test Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
