"""
Global FIFO queue of host file mutations.

Every save-start, save-chunk, save-end and direct-export write is appended
here at dispatch time, in arrival order. Each operation starts only after the
previous one has settled, whether it succeeded or failed, so one bad write
never wedges the writes behind it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from libs.notebook.diagnostics import DiagnosticsChannel

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]
ErrorHandler = Callable[[str, BaseException], None]


class WriteQueue:
    """
    Serializes asynchronous file operations.

    Attributes:
        diagnostics: Channel that receives failed operations (optional)
    """

    def __init__(
        self,
        diagnostics: DiagnosticsChannel | None = None,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self.diagnostics = diagnostics
        self._on_error = on_error
        self._tail: asyncio.Task[Any] | None = None
        self._pending = 0
        self._completed = 0
        self._failed = 0

    @property
    def pending(self) -> int:
        return self._pending

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def failed(self) -> int:
        return self._failed

    def enqueue(self, operation: Operation, label: str = "write") -> asyncio.Task[Any]:
        """Append an operation; it runs after everything enqueued before it.

        Must be called from the event loop thread. The returned task never
        raises; failures are logged and reported instead.
        """
        previous = self._tail
        task = asyncio.get_running_loop().create_task(self._run(previous, operation, label))
        self._tail = task
        self._pending += 1
        return task

    async def drain(self) -> None:
        """Wait until every operation enqueued so far has settled."""
        while self._tail is not None and not self._tail.done():
            await asyncio.wait({self._tail})

    async def _run(
        self, previous: asyncio.Task[Any] | None, operation: Operation, label: str
    ) -> Any:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        try:
            result = await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._failed += 1
            self._report(label, exc)
            return None
        else:
            self._completed += 1
            return result
        finally:
            self._pending -= 1

    def _report(self, label: str, exc: BaseException) -> None:
        logger.error(
            "write_queue_operation_failed",
            extra={"operation": label, "error": str(exc)},
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        if self._on_error is not None:
            try:
                self._on_error(label, exc)
            except Exception:
                logger.exception("write_queue_error_handler_failed", extra={"operation": label})
        if self.diagnostics is not None:
            self.diagnostics.report("write_queue", str(exc), operation=label)
