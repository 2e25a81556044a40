"""Pydantic models for telemetry samples, best-lap records and server stats."""
from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union

from pydantic import (
    BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError,
    field_validator, model_validator,
)

ConnectionRole = Literal["producer", "consumer"]
Number = Union[int, float]


def utcnow_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a trailing Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_iso(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def later_iso(candidate: str, previous: str) -> str:
    """``candidate`` unless ``previous`` is a parseable instant after it.

    Offsets and missing fractions are compared as instants, not as text.
    """
    before = _parse_iso(previous)
    after = _parse_iso(candidate)
    if before is not None and after is not None and before > after:
        return previous
    return candidate


# ── Telemetry ─────────────────────────────────────────────────────────────────

class LapData(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    lap_time: Optional[Number] = Field(None, alias="lapTime")          # ms
    sector_times: list[Number] = Field(default_factory=list, alias="sectorTimes")
    is_valid: Optional[bool] = Field(None, alias="isValid")


# Optional telemetry: an off-type value is relayed untouched but reads as None.
_RELAYED_FIELDS = (
    "lap_data", "current_lap", "laps", "speed_now", "rpm", "max_rpm", "gear",
    "gas", "brake", "fuel", "max_fuel", "position", "session_time_left",
    "best_lap", "best_time", "event", "car_data",
)


class TelemetrySample(BaseModel):
    """One pilot's instantaneous state as sent by a simulator.

    Only ``simNum``, ``pilot-name``, ``car`` and ``track`` are validated
    strictly. Everything else is read leniently and relayed exactly as the
    producer sent it (``wire_data``), unknown keys included.
    Simulator-specific payloads go in ``carData``. The sample is frozen so the
    broadcast and reconcile paths share it safely.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    sim_num: StrictInt = Field(alias="simNum")
    pilot_name: StrictStr = Field(alias="pilot-name")
    car: StrictStr
    track: StrictStr
    lap_data: Optional[LapData] = Field(None, alias="lapData")
    current_lap: Optional[int] = Field(None, alias="currentLap")
    laps: Optional[int] = None
    speed_now: Optional[Number] = Field(None, alias="speedNow")
    rpm: Optional[Number] = None
    max_rpm: Optional[Number] = Field(None, alias="maxRpm")
    gear: Optional[int] = None
    gas: Optional[Number] = None        # 0-1
    brake: Optional[Number] = None      # 0-1
    fuel: Optional[Number] = None
    max_fuel: Optional[Number] = Field(None, alias="maxFuel")
    position: Optional[int] = None
    session_time_left: Optional[Number] = Field(None, alias="sessionTimeLeft")  # ms
    best_lap: Optional[Number] = Field(None, alias="bestLap")
    best_time: Optional[Number] = Field(None, alias="bestTime")
    event: Optional[str] = None
    car_data: Optional[dict[str, Any]] = Field(None, alias="carData")
    wire_data: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)

    @model_validator(mode="before")
    @classmethod
    def _keep_wire_data(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {**data, "wire_data": copy.deepcopy(data)}
        return data

    @field_validator(*_RELAYED_FIELDS, mode="wrap")
    @classmethod
    def _none_when_off_type(cls, value: Any, handler: Any) -> Any:
        try:
            return handler(value)
        except ValidationError:
            return None

    @property
    def candidate_lap(self) -> Optional[Number]:
        """Best-lap value to reconcile: ``bestLap`` unless missing or zero, else ``bestTime``."""
        return self.best_lap or self.best_time

    def to_wire(self) -> dict[str, Any]:
        """The sample exactly as the producer sent it."""
        return copy.deepcopy(self.wire_data)


# ── Best-lap persistence ──────────────────────────────────────────────────────

class BestLapRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pilot_name: str = Field(alias="pilotName")
    best_lap_time: Number = Field(alias="bestLapTime")
    car: str
    track: str
    timestamp: str                      # ISO-8601
    sim_num: int = Field(alias="simNum")


class EventTable(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_name: str = Field(alias="eventName")
    created_at: str = Field(alias="createdAt")
    last_updated: str = Field(alias="lastUpdated")
    pilots: dict[str, BestLapRecord] = Field(default_factory=dict)

    @classmethod
    def new(cls, event_name: str) -> "EventTable":
        now = utcnow_iso()
        return cls(event_name=event_name, created_at=now, last_updated=now)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


# ── Reporting ─────────────────────────────────────────────────────────────────

class ServerStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    producers: int = Field(alias="inputClients")
    consumers: int = Field(alias="outputClients")
    total_messages: int = Field(alias="totalMessages")
    uptime: int                         # seconds
    active_simulators: list[int] = Field(default_factory=list, alias="activeSimulators")
