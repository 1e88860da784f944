from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from filelock import FileLock, Timeout


@dataclass(frozen=True)
class LockHandle:
    lock: FileLock

    def release(self) -> None:
        if self.lock.is_locked:
            self.lock.release()


def token_lock(token_path: Path) -> FileLock:
    token_path.parent.mkdir(parents=True, exist_ok=True)
    return FileLock(str(token_path.with_name(token_path.name + ".lock")))


def acquire_token_lock(token_path: Path, *, timeout_s: float) -> LockHandle:
    lock = token_lock(token_path)
    try:
        lock.acquire(timeout=timeout_s)
    except Timeout as e:
        raise TimeoutError(f"Token store is locked: {lock.lock_file}") from e
    return LockHandle(lock=lock)
