"""OAuth2 protocol client for Google accounts.

Builds authorization URLs, exchanges authorization codes and refreshes access
tokens using google-auth-oauthlib and google-auth. Both libraries are
blocking, so the network calls run in the default executor.

Failures are classified into the error taxonomy:

- ``TransientNetworkError``: timeouts, connection errors, provider 5xx.
  Retrying the tool call later may succeed.
- ``InvalidGrantError``: the authorization code was rejected. The
  interactive flow has to be restarted.
- ``ReauthRequired``: the refresh token is missing or was rejected.
"""

import asyncio
import hashlib
import hmac
import logging
import os
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import requests
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import InvalidGrantError as OAuthlibInvalidGrantError
from oauthlib.oauth2.rfc6749.errors import MissingTokenError, OAuth2Error

from gsuite_mcp.auth.models import ClientConfig, TokenSet
from gsuite_mcp.errors import InvalidGrantError, ReauthRequired, TransientNetworkError

logger = logging.getLogger(__name__)

GOOGLE_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://mail.google.com/",
    "https://www.googleapis.com/auth/calendar",
]

DEFAULT_EXPIRY_MARGIN = 60

_TRANSIENT_OAUTH_ERRORS = {"temporarily_unavailable", "server_error"}


@dataclass
class AuthorizationRequest:
    """An authorization URL bound to one account.

    The flow object must perform the code exchange because it carries the
    PKCE code verifier generated for the URL.
    """

    user_id: str
    url: str
    state: str
    flow: Any = field(repr=False)


class OAuthClient:
    """Google OAuth2 client for the authorization code grant.

    Attributes:
        client_config: OAuth client registered with Google.
        scopes: Scopes requested for every account.
        expiry_margin: Seconds before expiry at which a token is treated as
            expired.
    """

    def __init__(
        self,
        client_config: ClientConfig,
        scopes: list[str] | None = None,
        expiry_margin: float = DEFAULT_EXPIRY_MARGIN,
    ) -> None:
        self.client_config = client_config
        self.scopes = list(scopes or GOOGLE_SCOPES)
        self.expiry_margin = expiry_margin

    # ------------------------------------------------------------------
    # Authorization URL and account binding
    # ------------------------------------------------------------------

    def _sign_state(self, nonce: str, user_id: str) -> str:
        key = self.client_config.client_secret.get_secret_value().encode("utf-8")
        message = f"{nonce}:{user_id}".encode()
        return hmac.new(key, message, hashlib.sha256).hexdigest()[:32]

    def make_state(self, user_id: str) -> str:
        """Create a state token bound to ``user_id``."""
        nonce = secrets.token_urlsafe(16)
        return f"{nonce}.{self._sign_state(nonce, user_id)}"

    def verify_state(self, user_id: str, state: str) -> bool:
        """Check that ``state`` was issued for ``user_id``."""
        nonce, _, signature = state.partition(".")
        if not nonce or not signature:
            return False
        expected = self._sign_state(nonce, user_id)
        return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))

    def _create_flow(self) -> Flow:
        # Google may return the granted scopes in a different form than requested
        os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")
        return Flow.from_client_config(
            self.client_config.to_flow_config(),
            scopes=self.scopes,
            redirect_uri=self.client_config.redirect_uri,
        )

    def build_authorization_url(
        self, user_id: str, *, has_refresh_token: bool = False
    ) -> AuthorizationRequest:
        """Build the consent URL for an account.

        Args:
            user_id: Account email the URL is bound to.
            has_refresh_token: Whether a refresh token is already stored.
                Consent is forced when it is not, so Google issues one.

        Returns:
            AuthorizationRequest carrying the URL, state and flow.
        """
        flow = self._create_flow()
        state = self.make_state(user_id)

        params: dict[str, str] = {
            "access_type": "offline",
            "login_hint": user_id,
            "state": state,
        }
        if not has_refresh_token:
            params["prompt"] = "consent"

        url, _ = flow.authorization_url(**params)
        return AuthorizationRequest(user_id=user_id, url=url, state=state, flow=flow)

    # ------------------------------------------------------------------
    # Token conversion
    # ------------------------------------------------------------------

    def _credentials_to_token(self, credentials: Credentials, scopes: list[str]) -> TokenSet:
        """Convert google-auth Credentials to a TokenSet."""
        if credentials.expiry:
            expires_at = credentials.expiry
            # google-auth reports naive UTC datetimes
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
        else:
            # Default to 1 hour expiration
            expires_at = datetime.now(timezone.utc) + timedelta(hours=1)

        return TokenSet(  # nosec B106 - "Bearer" is OAuth token type, not a password
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            expires_at=expires_at,
            scopes=list(scopes),
            token_type="Bearer",
        )

    def _token_to_credentials(self, token: TokenSet) -> Credentials:
        """Convert a TokenSet to google-auth Credentials."""
        return Credentials(
            token=token.access_token,
            refresh_token=token.refresh_token,
            token_uri=self.client_config.token_uri,
            client_id=self.client_config.client_id,
            client_secret=self.client_config.client_secret.get_secret_value(),
            scopes=token.scopes,
        )

    def is_expired(self, token: TokenSet, now: datetime | None = None) -> bool:
        """Apply the expiry policy with this client's safety margin."""
        return token.is_expired(buffer_seconds=self.expiry_margin, now=now)

    # ------------------------------------------------------------------
    # Code exchange
    # ------------------------------------------------------------------

    async def exchange_code(self, request: AuthorizationRequest, code: str) -> TokenSet:
        """Exchange an authorization code for tokens.

        Args:
            request: The request the code was issued for.
            code: Authorization code from the redirect.

        Returns:
            TokenSet for ``request.user_id``.

        Raises:
            TransientNetworkError: On network failures or provider 5xx.
            InvalidGrantError: If Google rejects the code.
        """
        loop = asyncio.get_running_loop()
        credentials = await loop.run_in_executor(None, self._fetch_token, request, code)
        scopes = list(credentials.scopes or self.scopes)
        return self._credentials_to_token(credentials, scopes)

    def _fetch_token(self, request: AuthorizationRequest, code: str) -> Credentials:
        """Run the token exchange (blocking operation)."""
        user_id = request.user_id

        # oauthlib parses error bodies without looking at the HTTP status
        def reject_server_errors(response: requests.Response) -> requests.Response:
            if response.status_code >= 500:
                raise TransientNetworkError(
                    f"Token endpoint returned HTTP {response.status_code}; try again later",
                    user_id=user_id,
                )
            return response

        request.flow.oauth2session.register_compliance_hook(
            "access_token_response", reject_server_errors
        )
        try:
            request.flow.fetch_token(code=code)
        except OAuthlibInvalidGrantError as e:
            raise InvalidGrantError(
                f"Authorization code was rejected: {e.description or e.error}",
                user_id=user_id,
            ) from e
        except MissingTokenError as e:
            # 2xx or 4xx body that is neither a token nor an OAuth error
            raise TransientNetworkError(
                "Token endpoint returned no token; try again later", user_id=user_id
            ) from e
        except OAuth2Error as e:
            if e.error in _TRANSIENT_OAUTH_ERRORS:
                raise TransientNetworkError(
                    f"Token endpoint unavailable: {e.error}", user_id=user_id
                ) from e
            raise InvalidGrantError(
                f"Code exchange failed: {e.description or e.error}", user_id=user_id
            ) from e
        except requests.exceptions.RequestException as e:
            raise TransientNetworkError(
                f"Network error during code exchange: {e}", user_id=user_id
            ) from e

        return request.flow.credentials

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, token: TokenSet, *, user_id: str | None = None) -> TokenSet:
        """Obtain a new access token with the stored refresh token.

        The previous refresh token is kept when Google does not issue a new
        one.

        Args:
            token: Current (expired) token.
            user_id: Account the token belongs to, for error reporting.

        Returns:
            Refreshed TokenSet.

        Raises:
            ReauthRequired: If there is no refresh token or it was rejected.
            TransientNetworkError: On network failures or retryable errors.
        """
        if not token.refresh_token:
            raise ReauthRequired("No refresh token stored; re-authorization required", user_id=user_id)

        credentials = self._token_to_credentials(token)

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, credentials.refresh, Request())
        except RefreshError as e:
            if getattr(e, "retryable", False):
                raise TransientNetworkError(f"Token refresh failed: {e}", user_id=user_id) from e
            raise ReauthRequired(f"Refresh token was rejected: {e}", user_id=user_id) from e
        except TransportError as e:
            raise TransientNetworkError(
                f"Network error during token refresh: {e}", user_id=user_id
            ) from e

        new_token = self._credentials_to_token(credentials, token.scopes)
        if new_token.refresh_token is None:
            new_token = new_token.model_copy(update={"refresh_token": token.refresh_token})
        return new_token
