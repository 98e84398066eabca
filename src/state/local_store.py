from __future__ import annotations

import hashlib
import json
import os
import re
from typing import Optional, Tuple

import structlog
from cryptography.fernet import Fernet, InvalidToken

from .models import VoteHistory


log = structlog.get_logger(__name__)

ENV_DIR = "CV_HISTORY_DIR"
ENV_FERNET_KEY = "CV_FERNET_KEY"

_UNSAFE = re.compile(r"[^0-9a-z]+")


class HistoryConflictError(Exception):
    """Raised when the file changed since the version the caller read."""


def _to_fernet(key: str | bytes) -> Fernet:
    if isinstance(key, str):
        key = key.encode("utf-8")
    return Fernet(key)


def _dump_history_json(history: VoteHistory) -> bytes:
    # Stable key order so equal histories encrypt the same plaintext
    return json.dumps(
        history.model_dump(mode="json"), separators=(",", ":"), sort_keys=True
    ).encode("utf-8")


def _version(ciphertext: bytes) -> str:
    return hashlib.sha256(ciphertext).hexdigest()


class LocalVoteHistoryStore:
    """
    Client-local persistence for `VoteHistory`, encrypted at rest with Fernet.

    One file per account under `directory`. Nothing leaves the machine.

    - `load(account)` returns `(history, version)`; a missing file yields
      `(VoteHistory.empty(account), None)`.
    - `save(history, expected_version=...)` only replaces the file when its
      current version still matches; `None` means "no file expected".
      Returns the new version.

    Environment variables (optional)
    - `CV_HISTORY_DIR`, `CV_FERNET_KEY`
    """

    def __init__(self, directory: str | os.PathLike, fernet_key: str | bytes) -> None:
        self._dir = os.fspath(directory)
        self._fernet = _to_fernet(fernet_key)

    @classmethod
    def from_env(cls) -> "LocalVoteHistoryStore":
        directory = os.environ.get(ENV_DIR)
        fkey = os.environ.get(ENV_FERNET_KEY)
        if not directory or not fkey:
            missing = [name for name, val in [(ENV_DIR, directory), (ENV_FERNET_KEY, fkey)] if not val]
            raise RuntimeError(
                f"Missing required environment variables for vote history store: {', '.join(missing)}"
            )
        return cls(directory, fkey)

    def path_for(self, account: str) -> str:
        name = _UNSAFE.sub("_", account.lower()).strip("_") or "default"
        return os.path.join(self._dir, f"{name}.history")

    def _read_raw(self, account: str) -> Optional[bytes]:
        try:
            with open(self.path_for(account), "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def load(self, account: str) -> Tuple[VoteHistory, Optional[str]]:
        """Read and decrypt the account's history.

        Raises:
        - ValueError if decryption fails, content is invalid or the file
          belongs to another account.
        - OSError for other filesystem issues.
        """
        body = self._read_raw(account)
        if body is None:
            return VoteHistory.empty(account), None

        try:
            decrypted = self._fernet.decrypt(body)
        except InvalidToken as ex:
            raise ValueError("Failed to decrypt vote history: invalid Fernet token") from ex
        try:
            history = VoteHistory.model_validate(json.loads(decrypted.decode("utf-8")))
        except Exception as ex:
            raise ValueError("Failed to parse decrypted vote history JSON") from ex

        if history.account is None or history.account.lower() != account.lower():
            raise ValueError(f"Vote history file does not belong to {account}")
        return history, _version(body)

    def save(self, history: VoteHistory, *, expected_version: Optional[str]) -> str:
        """Encrypt and atomically replace the account's file; returns the new version."""
        if history.account is None:
            raise ValueError("Cannot save a vote history without an account")

        current = self._read_raw(history.account)
        current_version = _version(current) if current is not None else None
        if current_version != expected_version:
            raise HistoryConflictError(
                f"Vote history for {history.account} changed since it was read"
            )

        ciphertext = self._fernet.encrypt(_dump_history_json(history))
        path = self.path_for(history.account)
        os.makedirs(self._dir, exist_ok=True)
        tmp = f"{path}.tmp"
        try:
            with open(tmp, "wb") as f:
                f.write(ciphertext)
            os.replace(tmp, path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        log.debug("vote_history_saved", votes=len(history.votes))
        return _version(ciphertext)


__all__ = ["HistoryConflictError", "LocalVoteHistoryStore"]
