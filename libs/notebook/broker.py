"""Sandbox side of the file access broker.

The sandbox cannot read host files. When a query needs one, the broker sends
``requestFileAccess`` across the boundary and waits for the host's decision.
Every request carries its own id, and responses are matched by id only, so
two in-flight requests for the same path each get their own answer.
"""

from __future__ import annotations

import asyncio
import itertools
import logging

from libs.common.exceptions import FileAccessDeniedError
from libs.notebook.protocol import (
    FileAccessDeniedMessage,
    FileAccessGrantedMessage,
    RequestFileAccessMessage,
)
from libs.notebook.transport import ChannelEndpoint

logger = logging.getLogger(__name__)


class FileAccessBroker:
    """Correlates outbound access requests with host decisions."""

    def __init__(self, endpoint: ChannelEndpoint) -> None:
        self._endpoint = endpoint
        self._ids = itertools.count(1)
        self._pending: dict[int, tuple[str, asyncio.Future[bytes]]] = {}
        self._owners: dict[int, str] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def request_access(self, file_path: str, owner: str | None = None) -> bytes:
        """Ask the host for ``file_path``'s bytes.

        ``owner`` tags the request so ``cancel`` can release it without an
        answer from the host.

        Raises:
            FileAccessDeniedError: If the user denied access or the host could
                not read the file
        """
        request_id = next(self._ids)
        future: asyncio.Future[bytes] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (file_path, future)
        if owner is not None:
            self._owners[request_id] = owner
        logger.info(
            "file_access_requested", extra={"request_id": request_id, "file_path": file_path}
        )
        self._endpoint.post(RequestFileAccessMessage(request_id=request_id, file_path=file_path))
        try:
            return await future
        finally:
            self._pending.pop(request_id, None)
            self._owners.pop(request_id, None)

    def handle_granted(self, message: FileAccessGrantedMessage) -> None:
        future = self._take(message.request_id, message.file_path)
        if future is not None:
            logger.info(
                "file_access_granted",
                extra={"request_id": message.request_id, "size": len(message.data)},
            )
            future.set_result(message.data)

    def handle_denied(self, message: FileAccessDeniedMessage) -> None:
        future = self._take(message.request_id, message.file_path)
        if future is not None:
            logger.info(
                "file_access_denied",
                extra={"request_id": message.request_id, "reason": message.error},
            )
            future.set_exception(FileAccessDeniedError(message.file_path, message.error))

    def reject_all(self, reason: str) -> int:
        """Fail every outstanding request (used when the session is torn down)."""
        rejected = 0
        for file_path, future in list(self._pending.values()):
            if not future.done():
                future.set_exception(FileAccessDeniedError(file_path, reason))
                rejected += 1
        return rejected

    def cancel(self, owner: str, reason: str) -> int:
        """Fail the outstanding requests tagged with ``owner``.

        A late host answer for a cancelled request is logged as unmatched.
        """
        cancelled = 0
        for request_id, request_owner in list(self._owners.items()):
            if request_owner != owner:
                continue
            file_path, future = self._pending[request_id]
            if not future.done():
                future.set_exception(FileAccessDeniedError(file_path, reason))
                cancelled += 1
        if cancelled:
            logger.info("file_access_cancelled", extra={"owner": owner, "count": cancelled})
        return cancelled

    def _take(self, request_id: int, file_path: str) -> asyncio.Future[bytes] | None:
        entry = self._pending.get(request_id)
        if entry is None or entry[1].done():
            logger.warning(
                "file_access_response_unmatched",
                extra={"request_id": request_id, "file_path": file_path},
            )
            return None
        expected_path, future = entry
        if expected_path != file_path:
            logger.warning(
                "file_access_response_path_mismatch",
                extra={"request_id": request_id, "expected": expected_path, "got": file_path},
            )
            return None
        return future
