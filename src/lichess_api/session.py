from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

from .config import ClientConfig
from .locking import acquire_token_lock

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(UTC)


def _str_to_dt(s: Any, *, fallback: datetime) -> datetime:
    if isinstance(s, str) and s:
        try:
            return datetime.fromisoformat(s)
        except ValueError:
            return fallback
    return fallback


@dataclass
class TokenRecord:
    token: str
    host: str
    username: str | None = None

    created_at: datetime = field(default_factory=_now_utc)
    last_active_at: datetime = field(default_factory=_now_utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "host": self.host,
            "username": self.username,
            "created_at": self.created_at.isoformat(),
            "last_active_at": self.last_active_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenRecord | None":
        token = data.get("token")
        host = data.get("host")
        if not isinstance(token, str) or not token or not isinstance(host, str):
            return None
        now = _now_utc()
        username = data.get("username")
        return cls(
            token=token,
            host=host,
            username=username if isinstance(username, str) and username else None,
            created_at=_str_to_dt(data.get("created_at"), fallback=now),
            last_active_at=_str_to_dt(data.get("last_active_at"), fallback=now),
        )


class TokenStore:
    """Owns the token JSON file for a single project root."""

    def __init__(self, path: Path, *, lock_timeout_s: float = 10.0):
        self._path = path
        self._lock_timeout_s = lock_timeout_s

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> TokenRecord | None:
        if not self._path.exists():
            return None
        h = acquire_token_lock(self._path, timeout_s=self._lock_timeout_s)
        try:
            if not self._path.exists():
                return None
            try:
                data = json.loads(self._path.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                logger.warning("ignoring unreadable token file %s", self._path)
                return None
        finally:
            h.release()
        return TokenRecord.from_dict(data) if isinstance(data, dict) else None

    def save(self, rec: TokenRecord) -> None:
        rec.last_active_at = _now_utc()
        h = acquire_token_lock(self._path, timeout_s=self._lock_timeout_s)
        try:
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(rec.to_dict(), ensure_ascii=True, indent=2), encoding="utf-8")
            tmp.replace(self._path)
        finally:
            h.release()
        logger.debug("saved token for %s to %s", rec.username or "<unknown>", self._path)

    def clear(self) -> bool:
        if not self._path.exists():
            return False
        h = acquire_token_lock(self._path, timeout_s=self._lock_timeout_s)
        try:
            if not self._path.exists():
                return False
            self._path.unlink()
        finally:
            h.release()
        logger.debug("removed token file %s", self._path)
        return True


def token_store_for(cfg: ClientConfig) -> TokenStore:
    return TokenStore(cfg.resolved_token_path())


def resolve_token(cfg: ClientConfig, store: TokenStore, *, explicit: str | None = None) -> str | None:
    """Explicit token, then LICHESS_TOKEN, then the token store."""

    if explicit:
        return explicit
    if cfg.env_token:
        return cfg.env_token
    rec = store.load()
    return rec.token if rec is not None else None


def personal_token_url(cfg: ClientConfig, *, description: str = "lichess-api") -> str:
    params = [("scopes[]", s) for s in cfg.scopes]
    params.append(("description", description))
    return f"{cfg.host}/account/oauth/token/create?{urlencode(params)}"
