"""Data models for accounts, client configuration and OAuth tokens."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, SecretStr

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"  # nosec B105 - public endpoint


class CredentialState(str, Enum):
    """Lifecycle state of one account's credentials."""

    NO_CREDENTIALS = "no_credentials"
    VALID = "valid"
    EXPIRED = "expired"
    AWAITING_INTERACTIVE_AUTH = "awaiting_interactive_auth"
    REFRESH_FAILED = "refresh_failed"


class Account(BaseModel):
    """An allow-listed Google account.

    Attributes:
        email: Unique, case-sensitive account key used as ``user_id``.
        account_type: Free-form category such as "personal" or "work".
        extra_info: Free-form notes shown to the agent.
    """

    email: str = Field(..., min_length=1)
    account_type: str = Field(default="personal")
    extra_info: str = Field(default="")

    model_config = {"frozen": True}

    def to_description(self) -> str:
        return (
            f"Account for email: {self.email} of type: {self.account_type}. "
            f"Extra info for: {self.extra_info}"
        )


class ClientConfig(BaseModel):
    """OAuth client credentials registered with Google."""

    client_id: str = Field(..., min_length=1)
    client_secret: SecretStr
    redirect_uris: list[str] = Field(..., min_length=1)
    auth_uri: str = Field(default=GOOGLE_AUTH_URI)
    token_uri: str = Field(default=GOOGLE_TOKEN_URI)

    model_config = {"frozen": True}

    @property
    def redirect_uri(self) -> str:
        """The redirect URI the local callback listener serves."""
        return self.redirect_uris[0]

    def to_flow_config(self) -> dict[str, Any]:
        """Render the config in the shape google-auth-oauthlib expects."""
        return {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret.get_secret_value(),
                "auth_uri": self.auth_uri,
                "token_uri": self.token_uri,
                "redirect_uris": list(self.redirect_uris),
            }
        }


class TokenSet(BaseModel):
    """OAuth token data for one account.

    Attributes:
        access_token: Short-lived bearer token.
        refresh_token: Long-lived token for silent refresh, if granted.
        expires_at: Expiry timestamp (UTC).
        scopes: Granted scopes.
        token_type: Always "Bearer" for Google.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime
    scopes: list[str] = Field(default_factory=list)
    token_type: str = "Bearer"

    def is_expired(self, buffer_seconds: float = 60, now: datetime | None = None) -> bool:
        """Check whether the token is expired or within the safety margin.

        Args:
            buffer_seconds: Safety margin subtracted from the expiry.
            now: Reference time, defaults to the current UTC time.

        Returns:
            True once ``now >= expires_at - buffer_seconds``.
        """
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at - timedelta(seconds=buffer_seconds)


class TokenMetadata(BaseModel):
    """Bookkeeping stored alongside a token."""

    provider: str = "google"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_refreshed: datetime | None = None


class StoredCredentialRecord(BaseModel):
    """On-disk form of one account's TokenSet."""

    version: int = 1
    email: str
    metadata: TokenMetadata = Field(default_factory=TokenMetadata)
    token: TokenSet


class PendingAuthorization(BaseModel):
    """In-memory state of the one interactive flow in progress.

    Never persisted; exists only while the callback listener is bound.
    """

    user_id: str
    authorization_url: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
