from __future__ import annotations

import contextlib
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any

_LOGGER = logging.getLogger("ics_store")


class CredentialStoreError(Exception):
    """Base exception for credential persistence errors."""


class CorruptConfig(CredentialStoreError):
    """The persisted record exists but cannot be parsed."""


class PersistError(CredentialStoreError):
    """The persisted record could not be read or written."""


@dataclass(frozen=True)
class Credentials:
    identifier: str
    secret: str

    def __post_init__(self) -> None:
        if not isinstance(self.identifier, str) or not self.identifier.strip():
            raise ValueError("missing identifier")
        if not isinstance(self.secret, str) or not self.secret:
            raise ValueError("missing secret")

    def __repr__(self) -> str:
        return f"Credentials(identifier={self.identifier!r}, secret='***')"


class CredentialStore:
    def __init__(self, path: str = "/data/credentials.json"):
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    @staticmethod
    def _parse(raw: Any) -> Credentials:
        if not isinstance(raw, dict):
            raise ValueError("record must be a JSON object")
        # Older records used the hub account field names.
        return Credentials(
            identifier=raw.get("identifier", raw.get("email")),
            secret=raw.get("secret", raw.get("password")),
        )

    def _quarantine(self) -> None:
        ts = time.strftime("%Y%m%d-%H%M%S")
        target = f"{self._path}.corrupt.{ts}"
        try:
            os.replace(self._path, target)
            _LOGGER.warning("Moved corrupt credentials record to %s", target)
        except OSError as e:
            _LOGGER.warning("Could not move corrupt credentials record %s aside: %s", self._path, e)

    def load(self) -> Credentials | None:
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self._quarantine()
            raise CorruptConfig(f"{self._path}: {e}") from e
        except OSError as e:
            raise PersistError(f"{self._path}: {e}") from e

        try:
            return self._parse(raw)
        except ValueError as e:
            self._quarantine()
            raise CorruptConfig(f"{self._path}: {e}") from e

    def save(self, credentials: Credentials) -> None:
        data = {"identifier": credentials.identifier, "secret": credentials.secret}
        tmp = self._path + ".tmp"
        try:
            parent = os.path.dirname(self._path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self._path)
        except OSError as e:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
            raise PersistError(f"{self._path}: {e}") from e
        _LOGGER.debug("Saved credentials for %s to %s", credentials.identifier, self._path)
