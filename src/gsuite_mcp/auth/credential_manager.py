"""Per-account credential lifecycle.

``CredentialManager`` runs before every tool call that needs Google access.
For the requested account it walks this state machine:

    NoCredentials -> AwaitingInteractiveAuth -> Valid
    Valid -> Expired (detected lazily, at time of use)
    Expired -> Valid (silent refresh)
    Expired -> AwaitingInteractiveAuth (refresh token rejected)
    * -> RefreshFailed (network trouble during refresh; retry later)

Calls for the same account serialize on a per-account lock, so a second call
waiting behind an interactive flow reuses its result. A flow for a different
account while one is pending is rejected with ``AuthFlowBusy``.
"""

import asyncio
import logging
import webbrowser
from collections.abc import Callable
from datetime import datetime, timezone
from functools import partial
from typing import TYPE_CHECKING

import httpx

from gsuite_mcp.api_client import GoogleApiClient, create_http_client
from gsuite_mcp.auth.accounts import AccountRegistry
from gsuite_mcp.auth.callback import DEFAULT_AUTH_TIMEOUT, AuthFlowCoordinator, CallbackListener
from gsuite_mcp.auth.models import CredentialState, StoredCredentialRecord, TokenMetadata, TokenSet
from gsuite_mcp.auth.oauth_client import OAuthClient
from gsuite_mcp.auth.token_storage import CredentialStore
from gsuite_mcp.errors import (
    AuthorizationDenied,
    AuthTimeout,
    ReauthRequired,
    TransientNetworkError,
)

if TYPE_CHECKING:
    from gsuite_mcp.config import Settings

logger = logging.getLogger(__name__)

OpenUrl = Callable[[str], object]


def open_in_browser(url: str) -> bool:
    """Open ``url`` in the user's default browser."""
    return webbrowser.open(url)


class CredentialManager:
    """Orchestrates registry, storage, OAuth client and callback listener.

    Attributes:
        registry: Allow-listed accounts.
        store: Per-account token records.
        oauth_client: Google OAuth2 protocol client.
        coordinator: Guard for the shared callback port.
        auth_timeout: Seconds to wait for the browser redirect.
    """

    def __init__(
        self,
        registry: AccountRegistry,
        store: CredentialStore,
        oauth_client: OAuthClient,
        *,
        coordinator: AuthFlowCoordinator | None = None,
        open_url: OpenUrl | None = open_in_browser,
        auth_timeout: float = DEFAULT_AUTH_TIMEOUT,
    ) -> None:
        """Initialize the manager.

        Args:
            registry: Allow-listed accounts.
            store: Per-account token storage.
            oauth_client: OAuth client for URL building, exchange and refresh.
            coordinator: Shared single-flight guard. One is created if not
                provided; pass the same instance to managers sharing a port.
            open_url: Opens the authorization URL for the user. ``None``
                only logs the URL.
            auth_timeout: Seconds to wait for the redirect.
        """
        self.registry = registry
        self.store = store
        self.oauth_client = oauth_client
        self.coordinator = coordinator or AuthFlowCoordinator()
        self.auth_timeout = auth_timeout
        self._open_url = open_url
        self._account_locks: dict[str, asyncio.Lock] = {}
        self._refresh_failed: set[str] = set()
        self._http_client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "CredentialManager":
        """Load configuration files and build a manager.

        Raises:
            ConfigError: If the client or accounts file is unusable.
        """
        from gsuite_mcp.config import load_client_config

        client_config = load_client_config(settings.gauth_file)
        registry = AccountRegistry.load(settings.accounts_file)
        return cls(
            registry=registry,
            store=CredentialStore(settings.credentials_dir),
            oauth_client=OAuthClient(client_config, expiry_margin=settings.expiry_margin),
            open_url=open_in_browser if settings.open_browser else None,
            auth_timeout=settings.auth_timeout,
        )

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._account_locks.get(user_id)
        if lock is None:
            lock = self._account_locks[user_id] = asyncio.Lock()
        return lock

    async def _read(self, user_id: str) -> StoredCredentialRecord | None:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.store.read, user_id)

    async def _write(
        self, user_id: str, token: TokenSet, metadata: TokenMetadata | None = None
    ) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.store.write, user_id, token, metadata)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_state(self, user_id: str) -> CredentialState:
        """Report the lifecycle state of an account without changing it.

        Raises:
            AccountNotConfigured: If ``user_id`` is not allow-listed.
            StorageError: If the stored record is unreadable.
        """
        self.registry.validate(user_id)
        if self.coordinator.is_pending(user_id):
            return CredentialState.AWAITING_INTERACTIVE_AUTH
        if user_id in self._refresh_failed:
            return CredentialState.REFRESH_FAILED

        record = await self._read(user_id)
        if record is None:
            return CredentialState.NO_CREDENTIALS
        if self.oauth_client.is_expired(record.token):
            return CredentialState.EXPIRED
        return CredentialState.VALID

    async def get_credentials(self, user_id: str) -> TokenSet:
        """Return a usable token for ``user_id``, acquiring one if needed.

        Raises:
            AccountNotConfigured: If ``user_id`` is not allow-listed.
            StorageError: If the stored record is unreadable.
            TransientNetworkError: If refresh hit a network problem.
            AuthFlowBusy: If another account's interactive flow is pending.
            AuthorizationDenied: If the user declined access.
            AuthTimeout: If the user did not complete the flow in time.
            InvalidGrantError: If the authorization code was rejected.
        """
        self.registry.validate(user_id)

        async with self._lock_for(user_id):
            record = await self._read(user_id)
            if record is None:
                logger.info("No stored credentials for %s, starting authorization", user_id)
                return await self._authorize_interactively(user_id)

            if not self.oauth_client.is_expired(record.token):
                return record.token

            logger.info("Credentials for %s expired, trying refresh", user_id)
            try:
                return await self._refresh(user_id, record)
            except ReauthRequired as e:
                logger.warning("Refresh for %s failed, re-authorization required: %s", user_id, e)
                return await self._authorize_interactively(user_id)

    async def authorize(self, user_id: str) -> TokenSet:
        """Run the interactive flow even if credentials are stored."""
        self.registry.validate(user_id)

        async with self._lock_for(user_id):
            record = await self._read(user_id)
            previous = record.token.refresh_token if record else None
            return await self._authorize_interactively(user_id, previous_refresh_token=previous)

    async def get_client(self, user_id: str) -> GoogleApiClient:
        """Return an authenticated API client handle for ``user_id``."""
        token = await self.get_credentials(user_id)
        if self._http_client is None:
            self._http_client = create_http_client()
        return GoogleApiClient(user_id, token.access_token, self._http_client)

    async def close(self) -> None:
        """Close the shared HTTP client and release resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _refresh(self, user_id: str, record: StoredCredentialRecord) -> TokenSet:
        try:
            token = await self.oauth_client.refresh(record.token, user_id=user_id)
        except TransientNetworkError:
            self._refresh_failed.add(user_id)
            raise

        self._refresh_failed.discard(user_id)
        metadata = record.metadata.model_copy(
            update={"last_refreshed": datetime.now(timezone.utc)}
        )
        await self._write(user_id, token, metadata)
        logger.info("Refreshed credentials for %s", user_id)
        return token

    def _open_authorization_url(self, user_id: str, url: str) -> None:
        logger.info("Authorization required for %s. If no browser opens, visit: %s", user_id, url)
        if self._open_url is None:
            logger.warning("Browser launch disabled; open this URL to authorize %s: %s", user_id, url)
            return
        try:
            opened = self._open_url(url)
        except Exception as e:
            logger.warning("Could not open browser (%s); open this URL to authorize %s: %s", e, user_id, url)
            return
        if opened is False:
            logger.warning("No browser available; open this URL to authorize %s: %s", user_id, url)

    async def _authorize_interactively(
        self, user_id: str, previous_refresh_token: str | None = None
    ) -> TokenSet:
        request = self.oauth_client.build_authorization_url(
            user_id, has_refresh_token=previous_refresh_token is not None
        )
        listener = CallbackListener.from_redirect_uri(
            self.oauth_client.client_config.redirect_uri,
            state_validator=partial(self.oauth_client.verify_state, user_id),
        )

        async with self.coordinator.acquire(user_id, request.url):
            await listener.start()
            try:
                self._open_authorization_url(user_id, request.url)
                code = await listener.wait_for_code(self.auth_timeout)
            except AuthTimeout as e:
                logger.warning("Authorization for %s timed out after %gs", user_id, e.timeout)
                raise AuthTimeout(e.timeout, user_id=user_id, authorization_url=request.url) from None
            except AuthorizationDenied as e:
                logger.warning("Authorization for %s was denied: %s", user_id, e.reason)
                raise AuthorizationDenied(e.reason, user_id=user_id) from None
            finally:
                await listener.close()

        token = await self.oauth_client.exchange_code(request, code)
        if token.refresh_token is None and previous_refresh_token:
            token = token.model_copy(update={"refresh_token": previous_refresh_token})

        await self._write(user_id, token)
        self._refresh_failed.discard(user_id)
        logger.info("Authorization completed for %s", user_id)
        return token
