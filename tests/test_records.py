from __future__ import annotations

import pytest

from lichess_api.records import (
    RecordShapeError,
    Study,
    extract_username,
    study_from_broadcast_round,
    study_from_record,
)


def test_study_from_record_reads_top_level_fields() -> None:
    obj = {"id": "abcd1234", "name": "Najdorf prep", "createdAt": 1700000000000}
    assert study_from_record(obj) == Study(id="abcd1234", name="Najdorf prep")


def test_study_from_broadcast_round_reads_nested_round() -> None:
    obj = {"tour": {"id": "t1", "name": "Club Open"}, "round": {"id": "r1", "name": "Round 1"}}
    assert study_from_broadcast_round(obj) == Study(id="r1", name="Round 1")


def test_shape_errors_name_the_missing_field() -> None:
    with pytest.raises(RecordShapeError, match="'name'"):
        study_from_record({"id": "x"})

    with pytest.raises(RecordShapeError, match="broadcast.round"):
        study_from_broadcast_round({"tour": {"id": "t1"}})

    with pytest.raises(RecordShapeError, match="expected object"):
        study_from_record(["id", "name"])


def test_extract_username() -> None:
    assert extract_username({"id": "bob", "username": "Bob"}) == "Bob"
    assert extract_username({"id": "bob"}) == "bob"
    assert extract_username({}) is None
    assert extract_username("Bob") is None
