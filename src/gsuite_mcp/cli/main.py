"""Command-line interface for gsuite-mcp."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from gsuite_mcp.__version__ import __version__
from gsuite_mcp.config import Settings
from gsuite_mcp.errors import ConfigError, GSuiteAuthError

if TYPE_CHECKING:
    from gsuite_mcp.auth import CredentialManager


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--gauth-file",
    type=click.Path(path_type=Path),
    envvar="GSUITE_MCP_GAUTH_FILE",
    help="OAuth client JSON downloaded from Google Cloud Console",
)
@click.option(
    "--accounts-file",
    type=click.Path(path_type=Path),
    envvar="GSUITE_MCP_ACCOUNTS_FILE",
    help="JSON allow-list of Google accounts",
)
@click.option(
    "--credentials-dir",
    type=click.Path(path_type=Path),
    envvar="GSUITE_MCP_CREDENTIALS_DIR",
    help="Directory for per-account token records",
)
@click.option("--log-level", default="INFO", envvar="GSUITE_MCP_LOG_LEVEL", help="Logging level")
@click.pass_context
def main(
    ctx: click.Context,
    gauth_file: Path | None,
    accounts_file: Path | None,
    credentials_dir: Path | None,
    log_level: str,
) -> None:
    """gsuite-mcp - Gmail and Calendar for MCP clients across many Google accounts."""
    # stdout carries the MCP stdio transport
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO), stream=sys.stderr
    )
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(1)
    ctx.obj = settings.with_overrides(
        gauth_file=gauth_file,
        accounts_file=accounts_file,
        credentials_dir=credentials_dir,
    )


def _load_manager(settings: Settings) -> "CredentialManager":
    from gsuite_mcp.auth import CredentialManager

    try:
        return CredentialManager.from_settings(settings)
    except ConfigError as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(1)


@main.command()
@click.pass_obj
def mcp(settings: Settings) -> None:
    """Start the MCP server on stdio.

    Accounts are authorized lazily: the first tool call for an account
    without stored credentials opens the browser for Google consent.
    """
    from gsuite_mcp.server import GoogleWorkspaceServer

    try:
        server = GoogleWorkspaceServer.from_settings(settings)
    except ConfigError as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(1)

    try:
        click.echo("Starting gsuite-mcp server...", err=True)
        asyncio.run(server.run())
    except KeyboardInterrupt:
        click.echo("\nServer stopped.", err=True)


@main.command()
@click.argument("email")
@click.pass_obj
def auth(settings: Settings, email: str) -> None:
    """Authorize EMAIL interactively and store its tokens."""
    manager = _load_manager(settings)

    async def _authorize() -> None:
        try:
            await manager.authorize(email)
        finally:
            await manager.close()

    click.echo("=== AUTHENTICATE YOUR GOOGLE ACCOUNT ===")
    click.echo(f"Account: {email}")
    click.echo("Browser will open for Google consent...")
    click.echo("")

    try:
        asyncio.run(_authorize())
    except GSuiteAuthError as e:
        click.echo(f"❌ Authentication failed: {e}")
        sys.exit(1)

    click.echo(f"✓ Authentication completed for {email}")
    click.echo(f"Token stored at: {manager.store.path_for(email)}")


@main.command()
@click.pass_obj
def status(settings: Settings) -> None:
    """Show the credential state of every configured account."""
    manager = _load_manager(settings)

    async def _collect() -> list[tuple[str, str]]:
        rows = []
        for account in manager.registry.list():
            try:
                state = (await manager.get_state(account.email)).value
            except GSuiteAuthError as e:
                state = f"{e.kind}: {e}"
            rows.append((account.email, state))
        return rows

    rows = asyncio.run(_collect())
    if not rows:
        click.echo("No accounts configured.")
        return

    click.echo("Accounts:")
    for email, state in rows:
        click.echo(f"  {email}: {state}")


@main.command()
@click.argument("email")
@click.pass_obj
def logout(settings: Settings, email: str) -> None:
    """Delete the stored tokens of EMAIL."""
    manager = _load_manager(settings)
    try:
        manager.registry.validate(email)
        deleted = manager.store.delete(email)
    except GSuiteAuthError as e:
        click.echo(f"❌ {e}")
        sys.exit(1)

    if deleted:
        click.echo(f"✓ Removed stored credentials for {email}")
    else:
        click.echo(f"No stored credentials for {email}")


if __name__ == "__main__":
    main()
