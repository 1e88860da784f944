from __future__ import annotations

from pathlib import Path

CONFIG_FILE = "lichess.yaml"


def find_project_root(start: Path | None = None) -> Path:
    """Find the project root by walking up to a directory containing lichess.yaml.

    A directory with pyproject.toml also counts, so running from a checkout
    without a config file still resolves predictably.
    """

    cur = (start or Path.cwd()).resolve()
    for p in [cur, *cur.parents]:
        if (p / CONFIG_FILE).exists() or (p / "pyproject.toml").exists():
            return p
    # Fallback: current directory.
    return cur


def config_path(root: Path) -> Path:
    return root / CONFIG_FILE


def dotenv_path(root: Path) -> Path:
    return root / ".env"


def state_dir(root: Path) -> Path:
    return root / ".lichess"


def default_token_path(root: Path) -> Path:
    return state_dir(root) / "token.json"
