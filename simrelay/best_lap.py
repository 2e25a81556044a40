"""
Best-lap reconciliation.

Producers resend their full state every tick, including an unchanged best
lap, so each (event, pilot) pair remembers the last candidate it evaluated.
The same candidate inside the throttle window is dropped before the store is
touched; anything else is compared with the stored record and, if strictly
faster, replaces it and schedules a debounced write.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from simrelay.config import DEFAULT_EVENT_NAME, RECONCILE_THROTTLE_MS
from simrelay.models import BestLapRecord, Number, TelemetrySample, later_iso, utcnow_iso
from simrelay.storage import EventStore

log = logging.getLogger(__name__)


class BestLapReconciler:
    def __init__(
        self,
        store: EventStore,
        throttle_ms: int = RECONCILE_THROTTLE_MS,
        default_event: str = DEFAULT_EVENT_NAME,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.throttle_s = throttle_ms / 1000.0
        self.default_event = default_event
        self._clock = clock
        # (event, pilot) → (last evaluated candidate, clock time)
        self._ledger: dict[tuple[str, str], tuple[Number, float]] = {}

    def _throttled(self, key: tuple[str, str], candidate: Number, now: float) -> bool:
        last = self._ledger.get(key)
        if last is None:
            return False
        last_lap, last_at = last
        return now - last_at < self.throttle_s and last_lap == candidate

    async def reconcile(self, sample: TelemetrySample) -> Optional[BestLapRecord]:
        """Record ``sample``'s best lap if it improves the pilot's record.

        Returns the new record when one was stored, otherwise None.
        """
        event_name = sample.event or self.default_event
        candidate = sample.candidate_lap
        if not candidate or candidate <= 0:
            return None

        key = (event_name, sample.pilot_name)
        now = self._clock()
        if self._throttled(key, candidate, now):
            log.debug("Throttled %s/%s (lap %s unchanged)", event_name, sample.pilot_name, candidate)
            return None
        self._ledger[key] = (candidate, now)

        # Nothing awaits between this read and the put below.
        table = await self.store.get_or_create(event_name)

        existing = table.pilots.get(sample.pilot_name)
        if existing is not None and candidate >= existing.best_lap_time:
            log.debug(
                "Lap %s for %s is not better than %s",
                candidate, sample.pilot_name, existing.best_lap_time,
            )
            return None

        stamp = utcnow_iso()
        record = BestLapRecord(
            pilot_name=sample.pilot_name,
            best_lap_time=candidate,
            car=sample.car,
            track=sample.track,
            timestamp=stamp,
            sim_num=sample.sim_num,
        )
        table = table.model_copy(update={
            "pilots": {**table.pilots, sample.pilot_name: record},
            "last_updated": later_iso(stamp, table.last_updated),
        })
        self.store.put(event_name, table)
        log.info(
            "New best lap for %s in %r: %s (was %s)",
            sample.pilot_name, event_name, candidate,
            existing.best_lap_time if existing else "N/A",
        )
        return record

    def forget(self, event_name: Optional[str] = None) -> None:
        """Drop throttle history for one event, or all of it."""
        if event_name is None:
            self._ledger.clear()
        else:
            self._ledger = {k: v for k, v in self._ledger.items() if k[0] != event_name}
