"""OAuth credential lifecycle for many Google accounts.

Quick Start:
    ```python
    from gsuite_mcp.auth import (
        AccountRegistry,
        CredentialManager,
        CredentialStore,
        OAuthClient,
    )

    manager = CredentialManager(
        registry=AccountRegistry.load(Path(".accounts.json")),
        store=CredentialStore(Path(".gsuite-mcp")),
        oauth_client=OAuthClient(client_config),
    )

    # Valid token, refreshed or interactively acquired as needed
    token = await manager.get_credentials("a@example.com")
    ```
"""

from gsuite_mcp.auth.accounts import AccountRegistry
from gsuite_mcp.auth.callback import AuthFlowCoordinator, CallbackListener
from gsuite_mcp.auth.credential_manager import CredentialManager
from gsuite_mcp.auth.models import (
    Account,
    ClientConfig,
    CredentialState,
    PendingAuthorization,
    StoredCredentialRecord,
    TokenMetadata,
    TokenSet,
)
from gsuite_mcp.auth.oauth_client import GOOGLE_SCOPES, AuthorizationRequest, OAuthClient
from gsuite_mcp.auth.token_storage import CredentialStore

__all__ = [
    "Account",
    "AccountRegistry",
    "AuthFlowCoordinator",
    "AuthorizationRequest",
    "CallbackListener",
    "ClientConfig",
    "CredentialManager",
    "CredentialState",
    "CredentialStore",
    "GOOGLE_SCOPES",
    "OAuthClient",
    "PendingAuthorization",
    "StoredCredentialRecord",
    "TokenMetadata",
    "TokenSet",
]
