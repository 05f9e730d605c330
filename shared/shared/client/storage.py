"""
Persistent client session state: access token, refresh token, expiry.

The three values are always written and cleared together.  FileTokenStore
gets that atomicity from writing a temp file and ``os.replace``-ing it over
the target.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StoredTokens:
    access_token: str
    refresh_token: str | None
    token_expiry: int  # epoch milliseconds

    def to_dict(self) -> dict:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "tokenExpiry": self.token_expiry,
        }

    @classmethod
    def from_dict(cls, data: dict) -> StoredTokens | None:
        access_token = data.get("accessToken")
        expiry = data.get("tokenExpiry")
        if not access_token or expiry is None:
            return None
        try:
            return cls(
                access_token=str(access_token),
                refresh_token=data.get("refreshToken") or None,
                token_expiry=int(expiry),
            )
        except (TypeError, ValueError):
            return None


class TokenStore(Protocol):
    def load(self) -> StoredTokens | None: ...

    def save(self, tokens: StoredTokens) -> None: ...

    def clear(self) -> None: ...


class MemoryTokenStore:
    """Process-local store; the session does not survive a restart."""

    def __init__(self, tokens: StoredTokens | None = None) -> None:
        self._tokens = tokens

    def load(self) -> StoredTokens | None:
        return self._tokens

    def save(self, tokens: StoredTokens) -> None:
        self._tokens = tokens

    def clear(self) -> None:
        self._tokens = None


class FileTokenStore:
    """JSON file store, e.g. ``~/.config/courses/session.json``."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def load(self) -> StoredTokens | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable session file %s", self.path)
            return None
        return StoredTokens.from_dict(data) if isinstance(data, dict) else None

    def save(self, tokens: StoredTokens) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(tokens.to_dict(), fh)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
