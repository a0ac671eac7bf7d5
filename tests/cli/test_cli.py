"""Tests for the gsuite-mcp command-line interface."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from gsuite_mcp.__version__ import __version__
from gsuite_mcp.auth.credential_manager import CredentialManager
from gsuite_mcp.auth.models import TokenSet
from gsuite_mcp.auth.token_storage import CredentialStore
from gsuite_mcp.cli.main import main
from gsuite_mcp.errors import AuthTimeout


@pytest.fixture
def cli_args(gauth_file: Path, accounts_file: Path, credentials_dir: Path) -> list[str]:
    """Global options pointing every file at the test directory."""
    return [
        "--gauth-file",
        str(gauth_file),
        "--accounts-file",
        str(accounts_file),
        "--credentials-dir",
        str(credentials_dir),
    ]


@pytest.mark.unit
class TestMainGroup:
    """Tests for the top-level command group."""

    def test_should_show_version(self, cli_runner) -> None:
        result = cli_runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_should_list_commands(self, cli_runner) -> None:
        result = cli_runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        for command in ("mcp", "auth", "status", "logout"):
            assert command in result.output


@pytest.mark.unit
class TestMcpCommand:
    """Tests for the mcp command."""

    def test_should_exit_on_malformed_accounts_file(
        self, cli_runner, gauth_file: Path, tmp_path: Path, credentials_dir: Path
    ) -> None:
        """Verify a broken accounts file stops startup before touching storage."""
        accounts_file = tmp_path / "broken-accounts.json"
        accounts_file.write_text('{"accounts": [{"email": ')

        result = cli_runner.invoke(
            main,
            [
                "--gauth-file",
                str(gauth_file),
                "--accounts-file",
                str(accounts_file),
                "--credentials-dir",
                str(credentials_dir),
                "mcp",
            ],
        )

        assert result.exit_code == 1
        assert "Configuration error" in result.output
        assert not credentials_dir.exists()

    def test_should_exit_on_missing_client_file(
        self, cli_runner, accounts_file: Path, tmp_path: Path, credentials_dir: Path
    ) -> None:
        result = cli_runner.invoke(
            main,
            [
                "--gauth-file",
                str(tmp_path / "missing.json"),
                "--accounts-file",
                str(accounts_file),
                "--credentials-dir",
                str(credentials_dir),
                "mcp",
            ],
        )

        assert result.exit_code == 1
        assert "OAuth client file not found" in result.output

    def test_should_run_server(self, cli_runner, cli_args: list[str]) -> None:
        with patch(
            "gsuite_mcp.server.GoogleWorkspaceServer.run", new_callable=AsyncMock
        ) as mock_run:
            result = cli_runner.invoke(main, [*cli_args, "mcp"])

        assert result.exit_code == 0
        mock_run.assert_awaited_once()


@pytest.mark.unit
class TestAuthCommand:
    """Tests for the auth command."""

    def test_should_authorize_account(self, cli_runner, cli_args: list[str]) -> None:
        with patch.object(CredentialManager, "authorize", new_callable=AsyncMock) as mock_authorize:
            result = cli_runner.invoke(main, [*cli_args, "auth", "a@x.com"])

        assert result.exit_code == 0
        mock_authorize.assert_awaited_once_with("a@x.com")
        assert "Authentication completed for a@x.com" in result.output

    def test_should_report_failed_authorization(self, cli_runner, cli_args: list[str]) -> None:
        with patch.object(
            CredentialManager,
            "authorize",
            new_callable=AsyncMock,
            side_effect=AuthTimeout(300, user_id="a@x.com"),
        ):
            result = cli_runner.invoke(main, [*cli_args, "auth", "a@x.com"])

        assert result.exit_code == 1
        assert "Authentication failed" in result.output

    def test_should_reject_unknown_account(self, cli_runner, cli_args: list[str]) -> None:
        result = cli_runner.invoke(main, [*cli_args, "auth", "c@x.com"])

        assert result.exit_code == 1
        assert "not specified in accounts file" in result.output


@pytest.mark.unit
class TestStatusCommand:
    """Tests for the status command."""

    def test_should_show_state_per_account(
        self,
        cli_runner,
        cli_args: list[str],
        credentials_dir: Path,
        valid_token: TokenSet,
    ) -> None:
        CredentialStore(credentials_dir).write("a@x.com", valid_token)

        result = cli_runner.invoke(main, [*cli_args, "status"])

        assert result.exit_code == 0
        assert "a@x.com: valid" in result.output
        assert "b@x.com: no_credentials" in result.output

    def test_should_report_unreadable_record(
        self, cli_runner, cli_args: list[str], credentials_dir: Path
    ) -> None:
        store = CredentialStore(credentials_dir)
        store.path_for("a@x.com").write_text("{broken")

        result = cli_runner.invoke(main, [*cli_args, "status"])

        assert result.exit_code == 0
        assert "a@x.com: storage_error" in result.output


@pytest.mark.unit
class TestLogoutCommand:
    """Tests for the logout command."""

    def test_should_remove_stored_credentials(
        self,
        cli_runner,
        cli_args: list[str],
        credentials_dir: Path,
        valid_token: TokenSet,
    ) -> None:
        store = CredentialStore(credentials_dir)
        store.write("a@x.com", valid_token)

        result = cli_runner.invoke(main, [*cli_args, "logout", "a@x.com"])

        assert result.exit_code == 0
        assert "Removed stored credentials" in result.output
        assert store.read("a@x.com") is None

    def test_should_report_nothing_to_remove(self, cli_runner, cli_args: list[str]) -> None:
        result = cli_runner.invoke(main, [*cli_args, "logout", "b@x.com"])

        assert result.exit_code == 0
        assert "No stored credentials for b@x.com" in result.output

    def test_should_reject_unknown_account(self, cli_runner, cli_args: list[str]) -> None:
        result = cli_runner.invoke(main, [*cli_args, "logout", "c@x.com"])

        assert result.exit_code == 1
