"""Allow-list of Google accounts a tool call may act on.

The accounts file is read once at startup:

    {
        "accounts": [
            {"email": "a@example.com", "account_type": "personal", "extra_info": "..."}
        ]
    }

A bare JSON list of account objects is accepted as well.
"""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from gsuite_mcp.auth.models import Account
from gsuite_mcp.errors import AccountNotConfigured, ConfigError

logger = logging.getLogger(__name__)


class AccountRegistry:
    """Loaded, immutable set of allow-listed accounts.

    Attributes:
        accounts_path: File the accounts were loaded from, if any.
    """

    def __init__(self, accounts: list[Account], accounts_path: Path | None = None) -> None:
        self.accounts_path = accounts_path
        self._accounts = list(accounts)
        self._by_email: dict[str, Account] = {}
        for account in self._accounts:
            if account.email in self._by_email:
                raise ConfigError(
                    f"Duplicate account email in accounts file: {account.email}",
                    path=str(accounts_path) if accounts_path else None,
                )
            self._by_email[account.email] = account

    @classmethod
    def load(cls, accounts_path: Path) -> "AccountRegistry":
        """Parse the accounts file.

        Args:
            accounts_path: Path to the accounts JSON file.

        Returns:
            A registry holding the accounts in file order.

        Raises:
            ConfigError: If the file is missing, is not valid JSON, or an
                entry is malformed (for example missing ``email``).
        """
        try:
            raw = json.loads(accounts_path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigError(f"Accounts file not found: {accounts_path}", str(accounts_path)) from e
        except OSError as e:
            raise ConfigError(f"Cannot read accounts file {accounts_path}: {e}", str(accounts_path)) from e
        except json.JSONDecodeError as e:
            raise ConfigError(
                f"Accounts file {accounts_path} is not valid JSON: {e.msg} (line {e.lineno})",
                str(accounts_path),
            ) from e

        accounts = cls._parse_entries(raw, accounts_path)
        logger.info("Loaded %d account(s) from %s", len(accounts), accounts_path)
        return cls(accounts, accounts_path)

    @staticmethod
    def _parse_entries(raw: Any, accounts_path: Path) -> list[Account]:
        entries = raw.get("accounts") if isinstance(raw, dict) else raw
        if not isinstance(entries, list):
            raise ConfigError(
                f"Accounts file {accounts_path} must contain an 'accounts' list",
                str(accounts_path),
            )

        accounts = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict) or not entry.get("email"):
                raise ConfigError(
                    f"Account entry {index} in {accounts_path} is missing 'email'",
                    str(accounts_path),
                )
            try:
                accounts.append(Account.model_validate(entry))
            except ValidationError as e:
                raise ConfigError(
                    f"Account entry {index} in {accounts_path} is invalid: {e}",
                    str(accounts_path),
                ) from e
        return accounts

    def validate(self, user_id: str) -> Account:
        """Return the account whose email exactly matches ``user_id``.

        Raises:
            AccountNotConfigured: If no such account was loaded.
        """
        account = self._by_email.get(user_id)
        if account is None:
            raise AccountNotConfigured(user_id)
        return account

    def list(self) -> list[Account]:
        """Accounts in load order."""
        return list(self._accounts)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._by_email

    def __len__(self) -> int:
        return len(self._accounts)
