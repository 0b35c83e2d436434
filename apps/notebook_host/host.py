"""
Host-side message dispatcher for one notebook.

Messages from the sandbox are handled in arrival order. File mutations
(``saveFileStart``/``saveFileChunk``/``saveFileEnd``) are put on the write
queue synchronously during dispatch, which is what keeps the chunks of one
transfer, and transfers relative to each other, in order. Everything that
waits on the user or the disk (access prompts, reads, export dialogs) runs
as a tracked background task so dispatch never blocks.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

from apps.notebook_host.filesystem import DestinationFileSystem, append_chunk
from apps.notebook_host.permission_store import ConfigurationStore, PermissionStore
from apps.notebook_host.prompts import AccessDecision, HostPrompter
from apps.notebook_host.write_queue import WriteQueue
from libs.common.exceptions import ConfigurationError, ProtocolError
from libs.notebook.diagnostics import DiagnosticsChannel
from libs.notebook.protocol import (
    CopyToClipboardMessage,
    ExportDataMessage,
    FileAccessDeniedMessage,
    FileAccessGrantedMessage,
    LoadDataMessage,
    OpenUrlMessage,
    ReadyMessage,
    RequestFileAccessMessage,
    RequestRefreshMessage,
    SaveFileChunkMessage,
    SaveFileEndMessage,
    SaveFileStartMessage,
    UpdateConfigurationMessage,
    parse_sandbox_message,
)
from libs.notebook.transport import ChannelEndpoint

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def build_load_payload(document: Path, data: bytes) -> LoadDataMessage:
    """Describe a source document the way the sandbox expects it."""
    return LoadDataMessage(
        file_name=_WHITESPACE.sub("_", document.stem),
        file_path=str(document),
        extension=document.suffix.lower(),
        data=data,
    )


def denial_reason(file_path: str) -> str:
    return f"User denied access to {file_path}"


class NotebookHost:
    """
    Serves one notebook sandbox.

    Attributes:
        document: Source file pushed to the sandbox on ``ready`` and
            ``requestRefresh`` (None if nothing is open)
        filesystem: Destination for chunked and direct exports
    """

    def __init__(
        self,
        endpoint: ChannelEndpoint,
        prompter: HostPrompter,
        configuration: ConfigurationStore,
        filesystem: DestinationFileSystem,
        document: Path | None = None,
        write_queue: WriteQueue | None = None,
        diagnostics: DiagnosticsChannel | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.prompter = prompter
        self.configuration = configuration
        self.permissions = PermissionStore(configuration)
        self.filesystem = filesystem
        self.document = Path(document).resolve() if document is not None else None
        self.diagnostics = diagnostics or DiagnosticsChannel()
        self.write_queue = write_queue or WriteQueue(diagnostics=self.diagnostics)
        self._tasks: set[asyncio.Task[Any]] = set()

    async def serve(self) -> None:
        while True:
            raw = await self.endpoint.receive()
            if raw is None:
                break
            self.dispatch(raw)
        logger.info("host_channel_closed")

    def dispatch(self, raw: dict[str, Any]) -> None:
        try:
            message = parse_sandbox_message(raw)
        except ProtocolError as exc:
            self.diagnostics.report("protocol", str(exc), endpoint=self.endpoint.name)
            return

        match message:
            case ReadyMessage() | RequestRefreshMessage():
                if self.document is not None:
                    self._spawn(self.push_data(self.document))
            case RequestFileAccessMessage():
                self._spawn(self.handle_file_access(message))
            case ExportDataMessage():
                self._spawn(self.handle_export(message))
            case SaveFileStartMessage():
                self.write_queue.enqueue(
                    lambda: self._start_save(message.name), f"saveFileStart:{message.name}"
                )
            case SaveFileChunkMessage():
                self.write_queue.enqueue(
                    lambda: self._append_save(message.name, message.data),
                    f"saveFileChunk:{message.name}",
                )
            case SaveFileEndMessage():
                self.write_queue.enqueue(
                    lambda: self._end_save(message.name), f"saveFileEnd:{message.name}"
                )
            case CopyToClipboardMessage():
                self._spawn(self.prompter.write_clipboard(message.value))
            case OpenUrlMessage():
                self._spawn(self.prompter.open_external(message.url))
            case UpdateConfigurationMessage():
                self._update_configuration(message.key, message.value)

    async def push_data(self, document: Path) -> None:
        """Read ``document`` and send it to the sandbox as ``loadData``."""
        try:
            data = await asyncio.to_thread(document.read_bytes)
        except OSError as exc:
            logger.error("host_document_read_failed", extra={"file_path": str(document)})
            await self.prompter.show_error(f"Failed to read {document}: {exc}")
            return
        self.endpoint.post(build_load_payload(document, data))
        logger.info("host_document_pushed", extra={"file_path": str(document), "size": len(data)})

    async def handle_file_access(self, message: RequestFileAccessMessage) -> None:
        file_path = message.file_path
        if not self.permissions.allow_external_file_access:
            try:
                decision = await self.prompter.ask_file_access(file_path)
            except Exception as exc:
                logger.warning(
                    "host_file_access_prompt_failed",
                    extra={"file_path": file_path, "error": repr(exc)},
                )
                self._deny(message, f"Access prompt failed for {file_path}: {exc!r}")
                return
            logger.info(
                "host_file_access_decision",
                extra={"file_path": file_path, "decision": decision.value},
            )
            if decision is AccessDecision.DENY:
                self._deny(message, denial_reason(file_path))
                return
            if decision is AccessDecision.ALLOW_AND_REMEMBER:
                try:
                    self.permissions.remember_allow()
                except ConfigurationError as exc:
                    self.diagnostics.report("configuration", str(exc), key="allowExternalFileAccess")

        try:
            data = await asyncio.to_thread(Path(file_path).read_bytes)
        except OSError as exc:
            self._deny(message, str(exc))
            return
        self.endpoint.post(
            FileAccessGrantedMessage(request_id=message.request_id, file_path=file_path, data=data)
        )

    async def handle_export(self, message: ExportDataMessage) -> None:
        chosen = await self.prompter.ask_save_path(message.default_name)
        if chosen is None:
            logger.info("host_export_cancelled", extra={"default_name": message.default_name})
            return
        try:
            path = self._resolve_export_path(chosen)
        except Exception as exc:
            await self.prompter.show_error(f"Failed to export: {exc}")
            return

        async def _write() -> None:
            try:
                await self.filesystem.write(path, message.data)
            except Exception as exc:
                await self.prompter.show_error(f"Failed to export: {exc}")
                raise
            await self.prompter.show_info(f"Successfully exported to {chosen}")

        await self.write_queue.enqueue(_write, f"exportData:{chosen}")

    async def drain(self) -> None:
        """Wait for background handlers and queued writes to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.write_queue.drain()

    def _resolve_export_path(self, chosen: str) -> str:
        if self.filesystem.is_local and Path(chosen).is_absolute():
            return chosen
        return self.filesystem.resolve(chosen)

    def _deny(self, message: RequestFileAccessMessage, reason: str) -> None:
        self.endpoint.post(
            FileAccessDeniedMessage(
                request_id=message.request_id, file_path=message.file_path, error=reason
            )
        )

    def _update_configuration(self, key: str, value: Any) -> None:
        try:
            self.configuration.update(key, value)
        except ConfigurationError as exc:
            self.diagnostics.report("configuration", str(exc), key=key)

    async def _start_save(self, name: str) -> None:
        await self.filesystem.write(self.filesystem.resolve(name), b"")

    async def _append_save(self, name: str, data: bytes) -> None:
        await append_chunk(self.filesystem, self.filesystem.resolve(name), data)

    async def _end_save(self, name: str) -> None:
        self.filesystem.resolve(name)
        await self.prompter.show_info(f"Saved {name} to project root.")

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
            logger.error("host_task_failed", exc_info=(type(exc), exc, exc.__traceback__))
            self.diagnostics.report("host", str(exc))
