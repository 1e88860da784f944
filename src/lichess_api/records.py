from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class RecordShapeError(ValueError):
    """A streamed record does not have the fields its call site expects."""


@dataclass(frozen=True)
class Study:
    id: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name}


def _as_object(obj: Any, *, where: str) -> dict[str, Any]:
    if not isinstance(obj, dict):
        raise RecordShapeError(f"{where}: expected object, got {type(obj).__name__}")
    return obj


def _required_str(obj: dict[str, Any], key: str, *, where: str) -> str:
    v = obj.get(key)
    if not isinstance(v, str) or not v:
        raise RecordShapeError(f"{where}: missing string field {key!r}")
    return v


def study_from_record(obj: Any) -> Study:
    """Map a `/api/study/by/{username}` record: {"id": ..., "name": ...}."""

    o = _as_object(obj, where="study")
    return Study(id=_required_str(o, "id", where="study"), name=_required_str(o, "name", where="study"))


def study_from_broadcast_round(obj: Any) -> Study:
    """Map a `/api/broadcast/my-rounds` record: {"round": {"id": ..., "name": ...}, ...}."""

    o = _as_object(obj, where="broadcast")
    rnd = _as_object(o.get("round"), where="broadcast.round")
    return Study(
        id=_required_str(rnd, "id", where="broadcast.round"),
        name=_required_str(rnd, "name", where="broadcast.round"),
    )


def extract_username(account: Any) -> str | None:
    if not isinstance(account, dict):
        return None
    for key in ("username", "id"):
        v = account.get(key)
        if isinstance(v, str) and v:
            return v
    return None
