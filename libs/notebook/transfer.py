"""Sandbox side of the bulk transfer protocol.

Two paths move result bytes to the host:

* **direct export**: the whole buffer in one ``exportData`` message; the host
  asks the user where to save it;
* **chunked export**: ``saveFileStart``, then the buffer as ordered
  ``saveFileChunk`` slices of at most ``chunk_size`` bytes, then
  ``saveFileEnd``. The sender sleeps briefly between chunks so the sandbox
  loop stays responsive. That is pacing only; the host never signals
  readiness, and ordering is the host write queue's job.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from typing import Literal

from config.settings import ONE_MIB
from libs.notebook.protocol import (
    ExportDataMessage,
    SaveFileChunkMessage,
    SaveFileEndMessage,
    SaveFileStartMessage,
)
from libs.notebook.transport import ChannelEndpoint

logger = logging.getLogger(__name__)

CHUNK_SIZE = ONE_MIB

ExportFormat = Literal["csv", "parquet"]


def iter_chunks(buffer: bytes, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield consecutive slices of ``buffer`` no longer than ``chunk_size``."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    view = memoryview(buffer)
    for offset in range(0, len(view), chunk_size):
        yield bytes(view[offset : offset + chunk_size])


class TransferProtocol:
    """Sends result buffers to the host over the sandbox endpoint."""

    def __init__(
        self,
        endpoint: ChannelEndpoint,
        chunk_size: int = CHUNK_SIZE,
        pacing_seconds: float = 0.01,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._endpoint = endpoint
        self._chunk_size = chunk_size
        self._pacing_seconds = pacing_seconds

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    async def send_chunked(self, name: str, buffer: bytes) -> int:
        """Stream ``buffer`` to the host as ``name``; returns the chunk count."""
        self._endpoint.post(SaveFileStartMessage(name=name))
        chunks = 0
        for chunk in iter_chunks(buffer, self._chunk_size):
            self._endpoint.post(SaveFileChunkMessage(name=name, data=chunk))
            chunks += 1
            await asyncio.sleep(self._pacing_seconds)
        self._endpoint.post(SaveFileEndMessage(name=name))
        logger.info(
            "chunked_transfer_sent",
            extra={"target": name, "size": len(buffer), "chunks": chunks},
        )
        return chunks

    def send_direct(self, data: bytes, file_format: ExportFormat, default_name: str) -> None:
        """Hand a complete export buffer to the host in one message."""
        self._endpoint.post(
            ExportDataMessage(data=data, format=file_format, default_name=default_name)
        )
        logger.info(
            "direct_export_sent",
            extra={"format": file_format, "size": len(data), "default_name": default_name},
        )
