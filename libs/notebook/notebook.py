"""Sandbox composition root and message pump."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from config.settings import Settings, get_settings
from libs.common.exceptions import ProtocolError
from libs.common.logging import LogContext, generate_session_id
from libs.notebook.broker import FileAccessBroker
from libs.notebook.diagnostics import DiagnosticsChannel
from libs.notebook.protocol import (
    FileAccessDeniedMessage,
    FileAccessGrantedMessage,
    LoadDataMessage,
    ReadyMessage,
    RequestRefreshMessage,
    parse_host_message,
)
from libs.notebook.scheduler import CellScheduler
from libs.notebook.session import EngineFactory, NotebookSession
from libs.notebook.transfer import TransferProtocol
from libs.notebook.transport import ChannelEndpoint

logger = logging.getLogger(__name__)


class Notebook:
    """
    Sandbox side of a notebook: session, scheduler, broker and transfer wired
    to one channel endpoint.

    ``serve`` consumes host messages until the channel closes. ``loadData``
    starts a bootstrap in the background so that broker responses arriving
    while the bootstrap cells run are still dispatched.
    """

    def __init__(
        self,
        endpoint: ChannelEndpoint,
        settings: Settings | None = None,
        engine_factory: EngineFactory | None = None,
        diagnostics: DiagnosticsChannel | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.endpoint = endpoint
        self.session_id = generate_session_id()
        self.diagnostics = diagnostics or DiagnosticsChannel()
        self.broker = FileAccessBroker(endpoint)
        self.transfer = TransferProtocol(
            endpoint,
            chunk_size=self.settings.chunk_size_bytes,
            pacing_seconds=self.settings.chunk_pacing_seconds,
        )
        self.session = NotebookSession(self.settings, engine_factory)
        self.scheduler = CellScheduler(
            self.session,
            self.broker,
            self.transfer,
            self.diagnostics,
            endpoint,
            self.settings,
        )
        self._tasks: set[asyncio.Task[Any]] = set()

    def start(self) -> None:
        """Announce readiness; the host answers with ``loadData``."""
        self.endpoint.post(ReadyMessage())

    def request_refresh(self) -> None:
        self.endpoint.post(RequestRefreshMessage())

    async def serve(self) -> None:
        with LogContext(self.session_id):
            self.start()
            while True:
                raw = await self.endpoint.receive()
                if raw is None:
                    break
                self.handle_message(raw)
        logger.info("notebook_channel_closed")

    def handle_message(self, raw: dict[str, Any]) -> None:
        try:
            message = parse_host_message(raw)
        except ProtocolError as exc:
            self.diagnostics.report("protocol", str(exc), endpoint=self.endpoint.name)
            return

        if isinstance(message, LoadDataMessage):
            logger.info(
                "notebook_load_received",
                extra={"file_path": message.file_path, "size": len(message.data)},
            )
            self._spawn(self.scheduler.bootstrap(message))
        elif isinstance(message, FileAccessGrantedMessage):
            self.broker.handle_granted(message)
        elif isinstance(message, FileAccessDeniedMessage):
            self.broker.handle_denied(message)

    async def wait_bootstrapped(self) -> None:
        await self.scheduler.wait_bootstrapped()

    async def close(self) -> None:
        """Cancel background work and terminate the engine."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.broker.reject_all("Notebook closed")
        await self.session.teardown()
        self.endpoint.close()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "notebook_task_failed",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
