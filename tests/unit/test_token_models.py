"""Unit tests for account, client configuration and token models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from gsuite_mcp.auth.models import (
    GOOGLE_TOKEN_URI,
    Account,
    ClientConfig,
    CredentialState,
    StoredCredentialRecord,
    TokenSet,
)


def _token_expiring_in(seconds: float, now: datetime) -> TokenSet:
    return TokenSet(access_token="A", refresh_token="R", expires_at=now + timedelta(seconds=seconds))


@pytest.mark.unit
class TestTokenSetExpiry:
    """Tests for the expiry predicate with its safety margin."""

    def test_should_treat_token_inside_margin_as_expired(self) -> None:
        """Verify a token expiring in 30s counts as expired with a 60s margin."""
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        token = _token_expiring_in(30, now)

        assert token.is_expired(buffer_seconds=60, now=now) is True

    def test_should_treat_token_outside_margin_as_valid(self) -> None:
        """Verify a token expiring in 120s is still valid with a 60s margin."""
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        token = _token_expiring_in(120, now)

        assert token.is_expired(buffer_seconds=60, now=now) is False

    def test_should_be_expired_exactly_at_margin_boundary(self) -> None:
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        token = _token_expiring_in(60, now)

        assert token.is_expired(buffer_seconds=60, now=now) is True

    def test_should_treat_naive_expiry_as_utc(self) -> None:
        """Verify naive datetimes from google-auth compare as UTC."""
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        token = TokenSet(access_token="A", expires_at=datetime(2024, 5, 1, 13, 0))

        assert token.is_expired(now=now) is False

    def test_should_default_to_current_time(self, expired_token: TokenSet, valid_token: TokenSet) -> None:
        assert expired_token.is_expired() is True
        assert valid_token.is_expired() is False


@pytest.mark.unit
class TestAccount:
    """Tests for the Account model."""

    def test_should_describe_account_for_agent(self) -> None:
        account = Account(email="a@x.com", account_type="work", extra_info="Team calendar")

        assert account.to_description() == (
            "Account for email: a@x.com of type: work. Extra info for: Team calendar"
        )

    def test_should_apply_defaults(self) -> None:
        account = Account(email="a@x.com")

        assert account.account_type == "personal"
        assert account.extra_info == ""

    def test_should_reject_empty_email(self) -> None:
        with pytest.raises(ValidationError):
            Account(email="")

    def test_should_be_immutable(self) -> None:
        account = Account(email="a@x.com")

        with pytest.raises(ValidationError):
            account.email = "b@x.com"  # type: ignore[misc]


@pytest.mark.unit
class TestClientConfig:
    """Tests for the OAuth client configuration model."""

    def test_should_hide_secret_in_repr(self, client_config: ClientConfig) -> None:
        assert "test-client-secret" not in repr(client_config)

    def test_should_use_first_redirect_uri(self) -> None:
        config = ClientConfig(
            client_id="id",
            client_secret="secret",  # pragma: allowlist secret
            redirect_uris=["http://localhost:4100/code", "http://localhost:4200/code"],
        )

        assert config.redirect_uri == "http://localhost:4100/code"
        assert config.token_uri == GOOGLE_TOKEN_URI

    def test_should_require_a_redirect_uri(self) -> None:
        with pytest.raises(ValidationError):
            ClientConfig(client_id="id", client_secret="secret", redirect_uris=[])

    def test_should_render_flow_config(self, client_config: ClientConfig) -> None:
        flow_config = client_config.to_flow_config()

        assert flow_config["web"]["client_id"] == client_config.client_id
        assert flow_config["web"]["client_secret"] == "test-client-secret"  # pragma: allowlist secret
        assert flow_config["web"]["redirect_uris"] == client_config.redirect_uris


@pytest.mark.unit
class TestStoredCredentialRecord:
    """Tests for the on-disk record model."""

    def test_should_round_trip_through_json(self, valid_token: TokenSet) -> None:
        record = StoredCredentialRecord(email="a@x.com", token=valid_token)

        restored = StoredCredentialRecord.model_validate_json(record.model_dump_json())

        assert restored.email == "a@x.com"
        assert restored.token.access_token == valid_token.access_token
        assert restored.token.expires_at == valid_token.expires_at
        assert restored.metadata.provider == "google"
        assert restored.version == 1

    def test_should_expose_state_values(self) -> None:
        assert CredentialState.AWAITING_INTERACTIVE_AUTH.value == "awaiting_interactive_auth"
        assert CredentialState("refresh_failed") is CredentialState.REFRESH_FAILED
