"""Parsing and validation of producer messages arriving on /input."""
from __future__ import annotations

import json

from pydantic import ValidationError

from simrelay.config import MAX_SIM_NUM, MIN_SIM_NUM
from simrelay.models import TelemetrySample

FORMAT_ERROR = "Invalid format. Expected: {type: 'simulator-update', data: {...}}"


class InvalidMessage(ValueError):
    """A producer message that must be answered with an error frame."""


def _data_error(max_sim_num: int, detail: str = "") -> InvalidMessage:
    reason = f"Invalid data. Required fields: simNum ({MIN_SIM_NUM}-{max_sim_num}), pilot-name, car, track"
    if detail:
        reason = f"{reason} ({detail})"
    return InvalidMessage(reason)


def _describe(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err["loc"])
    return f"{loc}: {err['msg']}"


def parse_inbound(raw: str | bytes, max_sim_num: int = MAX_SIM_NUM) -> TelemetrySample:
    """Turn one /input frame into a TelemetrySample or raise InvalidMessage."""
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidMessage("Invalid JSON") from None

    if not isinstance(message, dict) or message.get("type") != "simulator-update":
        raise InvalidMessage(FORMAT_ERROR)
    data = message.get("data")
    if not isinstance(data, dict) or not data:
        raise InvalidMessage(FORMAT_ERROR)

    try:
        sample = TelemetrySample.model_validate(data)
    except ValidationError as exc:
        raise _data_error(max_sim_num, _describe(exc)) from None

    if not MIN_SIM_NUM <= sample.sim_num <= max_sim_num:
        raise _data_error(max_sim_num, f"simNum {sample.sim_num} out of range")
    return sample


def error_frame(reason: str) -> str:
    return json.dumps({"type": "error", "message": reason})
