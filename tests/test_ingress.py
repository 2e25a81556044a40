from __future__ import annotations

import json

import pytest

from simrelay.ingress import FORMAT_ERROR, InvalidMessage, error_frame, parse_inbound


def _message(**data) -> str:
    base = {"simNum": 2, "pilot-name": "Ana", "car": "GT3", "track": "Spa"}
    base.update(data)
    return json.dumps({"type": "simulator-update", "data": base})


def test_valid_message_parses() -> None:
    sample = parse_inbound(_message(bestTime=88000, event="Cup A", carData={"abs": 2}))
    assert sample.sim_num == 2
    assert sample.pilot_name == "Ana"
    assert sample.candidate_lap == 88000
    assert sample.car_data == {"abs": 2}


def test_bytes_are_accepted() -> None:
    assert parse_inbound(_message().encode()).track == "Spa"


@pytest.mark.parametrize(
    "raw",
    [
        json.dumps({"type": "hello", "data": {"simNum": 1}}),
        json.dumps({"type": "simulator-update"}),
        json.dumps({"type": "simulator-update", "data": {}}),
        json.dumps({"type": "simulator-update", "data": [1, 2]}),
        json.dumps([1, 2, 3]),
    ],
)
def test_wrong_envelope(raw: str) -> None:
    with pytest.raises(InvalidMessage) as exc_info:
        parse_inbound(raw)
    assert str(exc_info.value) == FORMAT_ERROR


def test_invalid_json() -> None:
    with pytest.raises(InvalidMessage, match="Invalid JSON"):
        parse_inbound("{nope")


@pytest.mark.parametrize(
    "overrides",
    [
        {"simNum": 0},
        {"simNum": 4},
        {"simNum": "2"},
        {"pilot-name": 7},
        {"car": None},
        {"track": ["Spa"]},
    ],
)
def test_invalid_required_fields(overrides: dict) -> None:
    with pytest.raises(InvalidMessage, match="Required fields"):
        parse_inbound(_message(**overrides))


def test_missing_required_field() -> None:
    raw = json.dumps({"type": "simulator-update", "data": {"simNum": 1, "car": "GT3", "track": "Spa"}})
    with pytest.raises(InvalidMessage, match="pilot-name"):
        parse_inbound(raw)


def test_sim_num_bound_is_configurable() -> None:
    assert parse_inbound(_message(simNum=5), max_sim_num=8).sim_num == 5
    with pytest.raises(InvalidMessage, match=r"simNum \(1-8\)"):
        parse_inbound(_message(simNum=9), max_sim_num=8)


def test_error_frame() -> None:
    assert json.loads(error_frame("bad")) == {"type": "error", "message": "bad"}


@pytest.mark.parametrize(
    "extra",
    [
        {"gear": "N"},
        {"lapData": {"lapTime": "1:31.000", "sectorTimes": "n/a"}},
        {"position": None, "fuel": "unknown"},
    ],
)
def test_off_type_optional_fields_do_not_reject_the_sample(extra: dict) -> None:
    sample = parse_inbound(_message(**extra))
    assert sample.pilot_name == "Ana"
    for key, value in extra.items():
        assert sample.to_wire()[key] == value
