"""Durable storage for the single credential bundle.

Two backends share one interface:
  file:    JSON at <state dir>/tokens.json, mode 0600 on POSIX
  keyring: one entry in the system keychain via the `keyring` library

Both hold at most one bundle; save() fully replaces the previous one.
"""

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Protocol

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from tmz.errors import CredentialStorageError

logger = logging.getLogger(__name__)

SERVICE_NAME = "tmz"
KEYRING_ENTRY = "bundle"


@dataclass
class CredentialBundle:
    """Scoped access tokens issued together with one shared expiry.

    Attributes:
        skype_token: Chat service token; its claims identify the user.
        chat_token: Chat aggregator token.
        graph_token: Microsoft Graph token.
        presence_token: Presence service token.
        tenant_id: Issuing tenant (tid claim).
        user_id: Subject object id (oid claim).
        user_principal_name: Sign-in name (upn / unique_name claim).
        expires_at: Unix epoch seconds (exp claim).
    """

    skype_token: str
    chat_token: str
    graph_token: str
    presence_token: str
    tenant_id: str
    user_id: str
    user_principal_name: str
    expires_at: int

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CredentialBundle":
        """Build a bundle from stored JSON.

        Raises:
            CredentialStorageError: If a field is missing or mistyped.
        """
        names = [f.name for f in fields(cls)]
        missing = [name for name in names if name not in data]
        if missing:
            raise CredentialStorageError(
                f"stored credentials are missing fields: {', '.join(missing)}"
            )
        try:
            values = {name: data[name] for name in names}
            values["expires_at"] = int(values["expires_at"])
        except (TypeError, ValueError) as e:
            raise CredentialStorageError(f"stored credentials are malformed: {e}") from e
        return cls(**values)


class CredentialStore(Protocol):
    """Persistence for at most one CredentialBundle."""

    def load(self) -> CredentialBundle | None: ...

    def save(self, bundle: CredentialBundle) -> None: ...

    def clear(self) -> None: ...


def _decode(raw: str, source: str) -> CredentialBundle:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CredentialStorageError(f"corrupt credential data in {source}: {e}") from e
    if not isinstance(data, dict):
        raise CredentialStorageError(f"corrupt credential data in {source}")
    return CredentialBundle.from_dict(data)


class FileCredentialStore:
    """Bundle as a permission-restricted JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> CredentialBundle | None:
        """Read the stored bundle. Returns None if no file exists."""
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CredentialStorageError(f"cannot read {self._path}: {e}") from e
        return _decode(raw, str(self._path))

    def save(self, bundle: CredentialBundle) -> None:
        """Atomically replace the stored bundle.

        Written to a sibling temp file created with mode 0600, then renamed
        over the target, so readers never observe a partial file.
        """
        payload = json.dumps(bundle.to_dict(), indent=2)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=".tokens-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                if os.name == "posix":
                    os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise CredentialStorageError(f"cannot write {self._path}: {e}") from e
        logger.info("Stored credentials for %s", bundle.user_principal_name)

    def clear(self) -> None:
        """Remove the stored bundle. No-op if none is stored."""
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise CredentialStorageError(f"cannot remove {self._path}: {e}") from e
        logger.info("Cleared stored credentials")


class KeyringCredentialStore:
    """Bundle as one JSON entry in the system keychain."""

    def __init__(self, service_name: str = SERVICE_NAME) -> None:
        self._service = service_name

    def load(self) -> CredentialBundle | None:
        try:
            raw = keyring.get_password(self._service, KEYRING_ENTRY)
        except KeyringError as e:
            raise CredentialStorageError(f"keyring read failed: {e}") from e
        if raw is None:
            return None
        return _decode(raw, f"keyring service {self._service!r}")

    def save(self, bundle: CredentialBundle) -> None:
        try:
            keyring.set_password(self._service, KEYRING_ENTRY, json.dumps(bundle.to_dict()))
        except KeyringError as e:
            raise CredentialStorageError(f"keyring write failed: {e}") from e
        logger.info("Stored credentials for %s in keyring", bundle.user_principal_name)

    def clear(self) -> None:
        try:
            keyring.delete_password(self._service, KEYRING_ENTRY)
            logger.info("Cleared stored credentials from keyring")
        except PasswordDeleteError:
            logger.debug("No credentials in keyring to delete")
        except KeyringError as e:
            raise CredentialStorageError(f"keyring delete failed: {e}") from e


def get_credential_store(backend: str, tokens_file: Path) -> CredentialStore:
    """Build the configured credential store backend.

    Args:
        backend: "file" or "keyring".
        tokens_file: Location used by the file backend.
    """
    if backend == "keyring":
        return KeyringCredentialStore()
    return FileCredentialStore(tokens_file)
