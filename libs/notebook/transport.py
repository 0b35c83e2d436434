"""In-process message channel between the sandbox and the host.

Each direction is a FIFO ``asyncio.Queue``; delivery order within a direction
is the order of ``post`` calls. Messages are serialized to wire dicts on
``post`` so that neither side ever holds a reference to the other side's
model objects.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from libs.notebook.protocol import Message

logger = logging.getLogger(__name__)

_CLOSED = object()


class ChannelEndpoint:
    """One side of a :class:`MessageChannel`."""

    def __init__(self, name: str, inbox: asyncio.Queue[Any], outbox: asyncio.Queue[Any]) -> None:
        self.name = name
        self._inbox = inbox
        self._outbox = outbox
        self._closed = False

    def post(self, message: Message | dict[str, Any]) -> None:
        """Send a message to the peer (never blocks)."""
        if self._closed:
            logger.warning("channel_post_after_close", extra={"endpoint": self.name})
            return
        wire = message.to_wire() if isinstance(message, Message) else dict(message)
        self._outbox.put_nowait(wire)

    async def receive(self) -> dict[str, Any] | None:
        """Wait for the next message; returns None once the peer has closed."""
        item = await self._inbox.get()
        if item is _CLOSED:
            return None
        return item

    def receive_nowait(self) -> dict[str, Any] | None:
        """Return the next queued message, or None if nothing is queued."""
        try:
            item = self._inbox.get_nowait()
        except asyncio.QueueEmpty:
            return None
        return None if item is _CLOSED else item

    def close(self) -> None:
        """Stop sending; the peer's ``receive`` returns None after draining."""
        if not self._closed:
            self._closed = True
            self._outbox.put_nowait(_CLOSED)


class MessageChannel:
    """A pair of connected endpoints: ``channel.sandbox`` and ``channel.host``."""

    def __init__(self) -> None:
        to_host: asyncio.Queue[Any] = asyncio.Queue()
        to_sandbox: asyncio.Queue[Any] = asyncio.Queue()
        self.sandbox = ChannelEndpoint("sandbox", inbox=to_sandbox, outbox=to_host)
        self.host = ChannelEndpoint("host", inbox=to_host, outbox=to_sandbox)
