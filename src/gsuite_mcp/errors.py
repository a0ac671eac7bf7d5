"""Error taxonomy for the credential layer.

Every failure the credential lifecycle can produce is one of the classes
below. Callers branch on the class (or on ``kind`` once serialized), never on
message text. ``to_payload()`` renders the structured result returned to the
calling tool invocation.
"""

from typing import Any


class GSuiteAuthError(Exception):
    """Base exception for credential lifecycle errors."""

    kind = "auth_error"
    retryable = False

    def __init__(self, message: str, *, user_id: str | None = None) -> None:
        self.user_id = user_id
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        """Render the error as a structured tool result."""
        payload: dict[str, Any] = {
            "success": False,
            "error": self.kind,
            "message": str(self),
            "retryable": self.retryable,
        }
        if self.user_id is not None:
            payload["user_id"] = self.user_id
        return payload


class ConfigError(GSuiteAuthError):
    """Raised when the client or accounts configuration cannot be loaded.

    Only raised at startup; the process exits non-zero.
    """

    kind = "config_error"

    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        super().__init__(message)


class AccountNotConfigured(GSuiteAuthError):
    """Raised when a user_id is not in the accounts allow-list."""

    kind = "account_not_configured"

    def __init__(self, user_id: str) -> None:
        super().__init__(
            f"Account for email: {user_id} not specified in accounts file",
            user_id=user_id,
        )


class AuthorizationDenied(GSuiteAuthError):
    """Raised when the provider redirects back with an error instead of a code."""

    kind = "authorization_denied"

    def __init__(self, reason: str, *, user_id: str | None = None) -> None:
        self.reason = reason
        super().__init__(f"Authorization was denied: {reason}", user_id=user_id)


class AuthTimeout(GSuiteAuthError):
    """Raised when the interactive flow is not completed in time."""

    kind = "auth_timeout"

    def __init__(
        self,
        timeout: float,
        *,
        user_id: str | None = None,
        authorization_url: str | None = None,
    ) -> None:
        self.timeout = timeout
        self.authorization_url = authorization_url
        super().__init__(
            f"No authorization callback received within {timeout:g} seconds",
            user_id=user_id,
        )

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.authorization_url:
            payload["authorization_url"] = self.authorization_url
        return payload


class AuthFlowBusy(GSuiteAuthError):
    """Raised when another interactive flow already holds the callback port."""

    kind = "auth_flow_busy"
    retryable = True

    def __init__(self, message: str, *, user_id: str | None = None, holder: str | None = None):
        self.holder = holder
        super().__init__(message, user_id=user_id)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.holder is not None:
            payload["pending_account"] = self.holder
        return payload


class InvalidGrantError(GSuiteAuthError):
    """Raised when an authorization code is rejected (expired or reused).

    Terminal: the interactive flow has to be restarted.
    """

    kind = "invalid_grant"


class ReauthRequired(GSuiteAuthError):
    """Raised when the stored refresh token is missing or rejected."""

    kind = "reauth_required"


class TransientNetworkError(GSuiteAuthError):
    """Raised for timeouts, connection failures and provider 5xx responses."""

    kind = "transient_network_error"
    retryable = True


class StorageError(GSuiteAuthError):
    """Raised when a stored credential record exists but cannot be used."""

    kind = "storage_error"
