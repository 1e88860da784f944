from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import DEFAULT_HOST, DEFAULT_SCOPES
from .paths import config_path, dotenv_path


@dataclass(frozen=True)
class InitConfigResult:
    config_path: Path
    dotenv_path: Path


def _write_text(path: Path, content: str, *, overwrite: bool) -> None:
    if path.exists() and not overwrite:
        raise FileExistsError(str(path))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def init_config(*, root: Path, overwrite: bool = False) -> InitConfigResult:
    """Create lichess.yaml and a .env template under `root`."""

    cfg_path = config_path(root)
    env_path = dotenv_path(root)

    _write_text(
        cfg_path,
        "\n".join(
            [
                f"host: {DEFAULT_HOST}",
                "timeout_s: 30",
                "# Scopes requested when creating a personal access token",
                "scopes:",
                *[f"  - {s}" for s in DEFAULT_SCOPES],
                "# Where `lichess-api login` stores the token (relative to this file)",
                "token_path: .lichess/token.json",
                "",
            ]
        ),
        overwrite=overwrite,
    )

    _write_text(
        env_path,
        "\n".join(
            [
                "# Local environment for lichess-api.",
                "#",
                "# LICHESS_TOKEN=lip_...",
                "# LICHESS_HOST=https://lichess.org",
                "",
            ]
        ),
        overwrite=overwrite,
    )

    return InitConfigResult(config_path=cfg_path, dotenv_path=env_path)
