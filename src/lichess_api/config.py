from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .paths import config_path, default_token_path, dotenv_path

DEFAULT_HOST = "https://lichess.org"
DEFAULT_SCOPES = ["study:write", "study:read"]


@dataclass
class ClientConfig:
    root: Path

    host: str = DEFAULT_HOST
    timeout_s: float = 30.0
    user_agent: str = "lichess-api/0.1.0"

    # Scopes requested when creating a personal access token.
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))

    token_path: Path | None = None

    # From LICHESS_TOKEN (process env or .env); not read from YAML.
    env_token: str | None = None

    def resolved_token_path(self) -> Path:
        return self.token_path or default_token_path(self.root)


def _as_str(v: Any) -> str | None:
    return v if isinstance(v, str) and v else None


def _as_float(v: Any) -> float | None:
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)) and v > 0:
        return float(v)
    return None


def _as_str_list(v: Any) -> list[str] | None:
    if isinstance(v, list) and v and all(isinstance(x, str) and x for x in v):
        return list(v)
    return None


def _as_path(v: Any, *, base: Path) -> Path | None:
    s = _as_str(v)
    if s is None:
        return None
    p = Path(s)
    return (base / p).resolve() if not p.is_absolute() else p


def load_config(root: Path, *, environ: dict[str, str] | None = None) -> ClientConfig:
    """Load lichess.yaml and .env from `root`; missing or mistyped values fall back to defaults."""

    data: dict[str, Any] = {}
    yaml_path = config_path(root)
    if yaml_path.exists():
        loaded = yaml.safe_load(yaml_path.read_text(encoding="utf-8"))
        if isinstance(loaded, dict):
            data = loaded

    cfg = ClientConfig(root=root)

    cfg.host = (_as_str(data.get("host")) or cfg.host).rstrip("/")
    cfg.timeout_s = _as_float(data.get("timeout_s")) or cfg.timeout_s
    cfg.user_agent = _as_str(data.get("user_agent")) or cfg.user_agent
    cfg.scopes = _as_str_list(data.get("scopes")) or cfg.scopes
    cfg.token_path = _as_path(data.get("token_path"), base=root)

    env = env_with_dotenv(dotenv=load_dotenv(dotenv_path(root)), environ=environ)
    host = _as_str(env.get("LICHESS_HOST"))
    if host:
        cfg.host = host.rstrip("/")
    cfg.env_token = _as_str(env.get("LICHESS_TOKEN"))

    return cfg


def load_dotenv(path: Path) -> dict[str, str]:
    """Parse a minimal .env file (KEY=VALUE lines)."""

    if not path.exists():
        return {}

    env: dict[str, str] = {}
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        k, v = line.split("=", 1)
        k = k.strip()
        v = v.strip().strip('"').strip("'")
        if k:
            env[k] = v
    return env


def env_with_dotenv(*, dotenv: dict[str, str], environ: dict[str, str] | None = None) -> dict[str, str]:
    """Return the effective environment.

    Precedence: existing process env wins; .env values fill in missing keys.
    """

    env = dict(os.environ if environ is None else environ)
    for k, v in dotenv.items():
        env.setdefault(k, v)
    return env
