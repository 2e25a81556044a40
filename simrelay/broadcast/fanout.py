"""
Broadcast fan-out: one producer sample → every open consumer.

The outbound message is serialized once and the same string is handed to
each consumer handle. Handles queue it for their own writer, so a slow
consumer never holds up the producer.
"""
from __future__ import annotations

import json
import logging

from simrelay.broadcast.connections import ConnectionRegistry
from simrelay.models import ServerStats, TelemetrySample, utcnow_iso

log = logging.getLogger(__name__)


class Broadcaster:
    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry
        self.message_count = 0

    def distribute(self, sample: TelemetrySample) -> int:
        """Send ``sample`` to all writable consumers. Returns how many got it."""
        payload = json.dumps({
            "type": "simulator-update",
            "data": sample.to_wire(),
            "timestamp": utcnow_iso(),
        })
        sent = 0
        for conn in self.registry.connections("consumer"):
            if not conn.handle.writable:
                continue
            try:
                conn.handle.send(payload)
            except Exception:
                log.exception("Failed to send to consumer %s", conn.id)
                continue
            conn.touch()
            sent += 1

        self.message_count += 1
        log.debug("Simulator %d update sent to %d consumer(s)", sample.sim_num, sent)
        return sent

    def stats(self) -> ServerStats:
        return self.registry.stats(total_messages=self.message_count)
