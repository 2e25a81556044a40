"""
WebSocket adapter used by the connection registry.

Each socket gets its own outbound asyncio.Queue drained by a writer task, the
same one-queue-per-client shape as a pub/sub fan-out: ``send`` only enqueues,
so broadcasting never awaits a slow client and frames leave in enqueue order.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

log = logging.getLogger(__name__)


class QueuedWebSocket:
    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket
        self._outbox: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._closed = False
        self._close_notified = False
        self._close_callbacks: list[Callable[[], None]] = []
        self._error_callbacks: list[Callable[[BaseException], None]] = []

    # ── ConnectionHandle ─────────────────────────────────────────────────────

    @property
    def writable(self) -> bool:
        return (
            not self._closed
            and self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )

    def send(self, payload: str) -> None:
        if self._closed:
            raise RuntimeError("connection is closed")
        self._outbox.put_nowait(payload)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._outbox.put_nowait(None)

    def on_close(self, callback: Callable[[], None]) -> None:
        self._close_callbacks.append(callback)

    def on_error(self, callback: Callable[[BaseException], None]) -> None:
        self._error_callbacks.append(callback)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def _notify_close(self) -> None:
        if self._close_notified:
            return
        self._close_notified = True
        for cb in list(self._close_callbacks):
            cb()

    def _notify_error(self, exc: BaseException) -> None:
        for cb in list(self._error_callbacks):
            cb(exc)

    async def _drain(self) -> None:
        while True:
            payload = await self._outbox.get()
            if payload is None:
                break
            try:
                await self._ws.send_text(payload)
            except Exception as exc:
                self._notify_error(exc)
                return
        if self._ws.client_state == WebSocketState.CONNECTED and \
                self._ws.application_state == WebSocketState.CONNECTED:
            try:
                await self._ws.close()
            except RuntimeError as exc:
                log.debug("Close after disconnect: %s", exc)

    async def serve(self, on_message: Optional[Callable[[str], None]] = None) -> None:
        """Pump the socket until the peer goes away.

        Incoming frames go to ``on_message``; consumers don't send anything
        meaningful so theirs are dropped.
        """
        writer = asyncio.create_task(self._drain())
        try:
            while True:
                message = await self._ws.receive()
                if message["type"] == "websocket.disconnect":
                    break
                text = message.get("text")
                if text is None and message.get("bytes") is not None:
                    text = message["bytes"].decode("utf-8", errors="replace")
                if text is not None and on_message is not None:
                    on_message(text)
        except Exception as exc:
            self._notify_error(exc)
        finally:
            self._notify_close()
            self.close()
            await writer
