"""Unit tests for the structured error payloads returned to tool calls."""

import pytest

from gsuite_mcp.errors import (
    AccountNotConfigured,
    AuthFlowBusy,
    AuthTimeout,
    GSuiteAuthError,
    InvalidGrantError,
    ReauthRequired,
    StorageError,
    TransientNetworkError,
)


@pytest.mark.unit
class TestErrorPayloads:
    """Tests for GSuiteAuthError.to_payload()."""

    def test_should_name_failure_kind(self) -> None:
        payload = AccountNotConfigured("c@x.com").to_payload()

        assert payload == {
            "success": False,
            "error": "account_not_configured",
            "message": "Account for email: c@x.com not specified in accounts file",
            "retryable": False,
            "user_id": "c@x.com",
        }

    def test_should_omit_unknown_user(self) -> None:
        assert "user_id" not in StorageError("disk gone").to_payload()

    def test_should_include_authorization_url_on_timeout(self) -> None:
        error = AuthTimeout(300, user_id="a@x.com", authorization_url="https://auth.test")

        payload = error.to_payload()

        assert payload["error"] == "auth_timeout"
        assert payload["authorization_url"] == "https://auth.test"
        assert "300 seconds" in payload["message"]

    @pytest.mark.parametrize(
        ("error", "retryable"),
        [
            (TransientNetworkError("timeout"), True),
            (AuthFlowBusy("busy", holder="a@x.com"), True),
            (InvalidGrantError("reused"), False),
            (ReauthRequired("revoked"), False),
        ],
    )
    def test_should_flag_retryable_failures(self, error: GSuiteAuthError, retryable: bool) -> None:
        assert error.to_payload()["retryable"] is retryable

    def test_should_share_base_class(self) -> None:
        assert issubclass(TransientNetworkError, GSuiteAuthError)
        assert issubclass(AccountNotConfigured, GSuiteAuthError)
