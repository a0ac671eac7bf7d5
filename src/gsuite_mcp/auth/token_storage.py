"""Per-account OAuth token storage.

Each allow-listed account gets its own JSON record inside the credentials
directory:

    <credentials_dir>/.oauth2.<slug>.<digest>.json

``slug`` is a readable, filesystem-safe rendering of the email and ``digest``
is derived from the exact email, so two accounts never share a file, even on
case-insensitive filesystems.

Records are written atomically (temp file in the same directory, then
``os.replace``), so a concurrent reader sees either the previous record or the
new one, never a partial write.
"""

import hashlib
import json
import logging
import os
import re
import tempfile
from pathlib import Path

from pydantic import ValidationError

from gsuite_mcp.auth.models import (
    CredentialState,
    StoredCredentialRecord,
    TokenMetadata,
    TokenSet,
)
from gsuite_mcp.errors import StorageError

logger = logging.getLogger(__name__)

# Relative, so it resolves against the working directory when used
DEFAULT_CREDENTIALS_DIR = Path(".gsuite-mcp")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9@._+-]")


def record_filename(email: str) -> str:
    """Derive the record file name for an account email.

    Args:
        email: Account email, compared case-sensitively.

    Returns:
        File name such as ``.oauth2.a@x.com.1f0c...json``.
    """
    slug = _UNSAFE_CHARS.sub("_", email)
    digest = hashlib.sha256(email.encode("utf-8")).hexdigest()[:16]
    return f".oauth2.{slug}.{digest}.json"


class CredentialStore:
    """JSON file storage with one record per account.

    Attributes:
        credentials_dir: Directory holding the record files.

    Example:
        ```python
        store = CredentialStore(Path(".gsuite-mcp"))
        store.write("a@example.com", token)
        record = store.read("a@example.com")
        ```
    """

    def __init__(self, credentials_dir: Path | None = None) -> None:
        """Initialize credential storage.

        Args:
            credentials_dir: Directory for record files. Created with 0700
                permissions if it does not exist yet.
        """
        self.credentials_dir = credentials_dir or DEFAULT_CREDENTIALS_DIR
        self._ensure_credentials_dir()

    def _ensure_credentials_dir(self) -> None:
        self.credentials_dir.mkdir(parents=True, mode=0o700, exist_ok=True)

    def path_for(self, email: str) -> Path:
        """Path of the record file for ``email``."""
        return self.credentials_dir / record_filename(email)

    def read(self, email: str) -> StoredCredentialRecord | None:
        """Read the stored record for an account.

        Args:
            email: Account email.

        Returns:
            The stored record, or None if the account has no record yet.

        Raises:
            StorageError: If a record exists but cannot be read or parsed.
        """
        path = self.path_for(email)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(
                f"Stored credentials at {path} could not be read: {e}", user_id=email
            ) from e

        try:
            record = StoredCredentialRecord.model_validate(data)
        except ValidationError as e:
            raise StorageError(
                f"Stored credentials at {path} are corrupted: {e.error_count()} invalid field(s)",
                user_id=email,
            ) from e

        if record.email != email:
            raise StorageError(
                f"Stored credentials at {path} belong to a different account", user_id=email
            )
        return record

    def write(
        self,
        email: str,
        token: TokenSet,
        metadata: TokenMetadata | None = None,
    ) -> StoredCredentialRecord:
        """Persist a token for an account, replacing any previous record.

        Args:
            email: Account email.
            token: Token data to store.
            metadata: Bookkeeping to store alongside. A fresh TokenMetadata is
                used when not provided.

        Returns:
            The record that was written.

        Raises:
            StorageError: If the record cannot be written.
        """
        record = StoredCredentialRecord(
            email=email,
            metadata=metadata or TokenMetadata(),
            token=token,
        )
        path = self.path_for(email)

        try:
            self._ensure_credentials_dir()
            fd, tmp_name = tempfile.mkstemp(
                dir=self.credentials_dir, prefix=f"{path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(record.model_dump_json(indent=2))
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Could not write credentials to {path}: {e}", user_id=email) from e

        logger.debug("Stored credentials for %s at %s", email, path)
        return record

    def delete(self, email: str) -> bool:
        """Delete an account's record.

        Returns:
            True if a record was deleted, False if none existed.
        """
        path = self.path_for(email)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Could not delete credentials at {path}: {e}", user_id=email) from e
        return True

    def get_status(self, email: str, buffer_seconds: float = 60) -> CredentialState:
        """Get the stored-credential state of an account.

        Raises:
            StorageError: If the record exists but is unreadable.
        """
        record = self.read(email)
        if record is None:
            return CredentialState.NO_CREDENTIALS
        if record.token.is_expired(buffer_seconds=buffer_seconds):
            return CredentialState.EXPIRED
        return CredentialState.VALID
