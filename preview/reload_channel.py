"""One-shot reload notification channels.

A browser tab opens ``/@reload`` as a WebSocket. The server answers the
upgrade, waits for the first relevant filesystem change, sends a single text
frame and closes. There is no ping/pong: the page script simply reconnects
after acting on a notification, so every channel is short lived and needs no
liveness protocol.

``/@events`` offers the same contract over a one-shot ``text/event-stream``
response for clients that cannot use WebSockets.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import enum
import hashlib
import logging
from typing import Mapping, Optional

from aiohttp import web

from .broadcast_hub import BroadcastHub, Subscription
from .errors import HubClosedError, ProtocolError

logger = logging.getLogger(__name__)

WEBSOCKET_MAGIC = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"
RELOAD_MESSAGE = "reload"
SHUTDOWN_MESSAGE = "shutdown"
UPDATE_EVENT = b"event: update\ndata: {}\n\n"
SHUTDOWN_EVENT = b"event: shutdown\ndata: {}\n\n"


def websocket_accept_token(key: str) -> str:
    """Turn a ``Sec-WebSocket-Key`` into its ``Sec-WebSocket-Accept`` value."""
    digest = hashlib.sha1((key + WEBSOCKET_MAGIC).encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_upgrade(headers: Mapping[str, str]) -> str:
    """Check the upgrade request headers and return the client key.

    Raises:
        ProtocolError: if the request is not a WebSocket upgrade or has no key.
    """
    if headers.get("Upgrade", "").strip().lower() != "websocket":
        raise ProtocolError("Expected 'Upgrade: websocket' header")

    key = headers.get("Sec-WebSocket-Key", "").strip()
    if not key:
        raise ProtocolError("Expected 'Sec-WebSocket-Key' header")
    return key


class ChannelState(enum.Enum):
    AWAITING_UPGRADE = "awaiting-upgrade"
    HANDSHAKING = "handshaking"
    OPEN = "open"
    NOTIFYING = "notifying"
    CLOSED = "closed"


class ReloadChannel:
    """Serve one reload WebSocket connection from upgrade to close."""

    def __init__(self, hub: BroadcastHub, request: web.Request) -> None:
        self.hub = hub
        self.request = request
        self.state = ChannelState.AWAITING_UPGRADE

    def _transition(self, state: ChannelState) -> None:
        logger.debug("reload channel %s -> %s", self.state.value, state.value)
        self.state = state

    async def run(self) -> web.WebSocketResponse:
        try:
            key = validate_upgrade(self.request.headers)
        except ProtocolError as exc:
            logger.debug("websocket accept failed: %s", exc.message)
            self._transition(ChannelState.CLOSED)
            raise

        self._transition(ChannelState.HANDSHAKING)
        # Subscribe before switching protocols so no change made while the
        # client finishes its handshake is missed.
        with self.hub.subscribe() as subscription:
            ws = web.WebSocketResponse(protocols=("ping",))
            try:
                await ws.prepare(self.request)
            except web.HTTPException as exc:
                self._transition(ChannelState.CLOSED)
                raise ProtocolError(exc.text or "Invalid websocket handshake") from exc

            logger.debug("accepted websocket (accept=%s)", websocket_accept_token(key))
            self._transition(ChannelState.OPEN)

            message = await self._wait_for_change(subscription, ws)
            if message is not None and not ws.closed:
                self._transition(ChannelState.NOTIFYING)
                try:
                    await ws.send_str(message)
                    logger.debug("sent ws frame: %r", message)
                except ConnectionResetError:
                    logger.debug("client went away before the notification was sent")

        await ws.close()
        self._transition(ChannelState.CLOSED)
        return ws

    async def _wait_for_change(
        self, subscription: Subscription, ws: web.WebSocketResponse
    ) -> Optional[str]:
        """Return the frame to send, or ``None`` if the client disconnected first."""
        change_task = asyncio.ensure_future(subscription.wait())
        disconnect_task = asyncio.ensure_future(self._drain(ws))
        try:
            await asyncio.wait({change_task, disconnect_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (change_task, disconnect_task):
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        if change_task.cancelled():
            logger.debug("reload client disconnected before any change")
            return None

        try:
            event = change_task.result()
        except HubClosedError:
            return SHUTDOWN_MESSAGE

        logger.debug("subscriber received an event: %s", event)
        return RELOAD_MESSAGE

    @staticmethod
    async def _drain(ws: web.WebSocketResponse) -> None:
        # Incoming messages are ignored; the loop ends when the client closes.
        async for _ in ws:
            pass


class EventStreamChannel:
    """Serve one reload notification as a server-sent event."""

    def __init__(self, hub: BroadcastHub, request: web.Request, poll_interval: float = 1.0) -> None:
        self.hub = hub
        self.request = request
        self.poll_interval = poll_interval

    def _client_gone(self) -> bool:
        transport = self.request.transport
        return transport is None or transport.is_closing()

    async def run(self) -> web.StreamResponse:
        with self.hub.subscribe() as subscription:
            response = web.StreamResponse(
                headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
            )
            response.content_type = "text/event-stream"
            await response.prepare(self.request)

            payload = await self._wait_for_change(subscription)
            if payload is None:
                return response

            try:
                await response.write(payload)
                await response.write_eof()
            except ConnectionResetError:
                logger.debug("event stream client went away before the notification was sent")
        return response

    async def _wait_for_change(self, subscription: Subscription) -> Optional[bytes]:
        # Transports give no callback on close, so poll between short waits.
        while not self._client_gone():
            try:
                event = await subscription.wait(timeout=self.poll_interval)
            except HubClosedError:
                return SHUTDOWN_EVENT
            if event is not None:
                logger.debug("event stream received an event: %s", event)
                return UPDATE_EVENT
        logger.debug("event stream client disconnected before any change")
        return None
