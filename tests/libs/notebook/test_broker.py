"""Tests for the sandbox file access broker."""

import asyncio

import pytest

from libs.common.exceptions import FileAccessDeniedError
from libs.notebook.broker import FileAccessBroker
from libs.notebook.protocol import FileAccessDeniedMessage, FileAccessGrantedMessage
from libs.notebook.transport import MessageChannel


@pytest.fixture
def channel() -> MessageChannel:
    return MessageChannel()


async def _next_request(channel: MessageChannel) -> dict:
    request = await channel.host.receive()
    assert request is not None
    assert request["type"] == "requestFileAccess"
    return request


class TestFileAccessBroker:
    @pytest.mark.asyncio
    async def test_grant_resolves_with_bytes(self, channel: MessageChannel) -> None:
        broker = FileAccessBroker(channel.sandbox)
        pending = asyncio.create_task(broker.request_access("/d/other.csv"))

        request = await _next_request(channel)
        broker.handle_granted(
            FileAccessGrantedMessage(
                request_id=request["requestId"], file_path="/d/other.csv", data=b"a,b\n"
            )
        )

        assert await pending == b"a,b\n"
        assert broker.pending_count == 0

    @pytest.mark.asyncio
    async def test_denial_raises_with_reason(self, channel: MessageChannel) -> None:
        broker = FileAccessBroker(channel.sandbox)
        pending = asyncio.create_task(broker.request_access("/d/secret.csv"))

        request = await _next_request(channel)
        broker.handle_denied(
            FileAccessDeniedMessage(
                request_id=request["requestId"],
                file_path="/d/secret.csv",
                error="User denied access to /d/secret.csv",
            )
        )

        with pytest.raises(FileAccessDeniedError) as exc_info:
            await pending
        assert exc_info.value.file_path == "/d/secret.csv"
        assert str(exc_info.value) == "User denied access to /d/secret.csv"

    @pytest.mark.asyncio
    async def test_concurrent_requests_for_same_path(self, channel: MessageChannel) -> None:
        """Each request gets its own answer even when the paths are equal."""
        broker = FileAccessBroker(channel.sandbox)
        first = asyncio.create_task(broker.request_access("/d/x.csv"))
        second = asyncio.create_task(broker.request_access("/d/x.csv"))

        first_request = await _next_request(channel)
        second_request = await _next_request(channel)
        assert first_request["requestId"] != second_request["requestId"]

        broker.handle_denied(
            FileAccessDeniedMessage(
                request_id=second_request["requestId"], file_path="/d/x.csv", error="no"
            )
        )
        broker.handle_granted(
            FileAccessGrantedMessage(
                request_id=first_request["requestId"], file_path="/d/x.csv", data=b"1"
            )
        )

        assert await first == b"1"
        with pytest.raises(FileAccessDeniedError):
            await second

    @pytest.mark.asyncio
    async def test_unknown_or_mismatched_response_dropped(self, channel: MessageChannel) -> None:
        broker = FileAccessBroker(channel.sandbox)
        pending = asyncio.create_task(broker.request_access("/d/x.csv"))
        request = await _next_request(channel)

        broker.handle_granted(FileAccessGrantedMessage(request_id=999, file_path="/d/x.csv", data=b""))
        broker.handle_granted(
            FileAccessGrantedMessage(
                request_id=request["requestId"], file_path="/d/other.csv", data=b""
            )
        )
        await asyncio.sleep(0)

        assert not pending.done()
        assert broker.pending_count == 1
        broker.reject_all("Session restarted")
        with pytest.raises(FileAccessDeniedError, match="Session restarted"):
            await pending

    @pytest.mark.asyncio
    async def test_reject_all_counts(self, channel: MessageChannel) -> None:
        broker = FileAccessBroker(channel.sandbox)
        tasks = [asyncio.create_task(broker.request_access(f"/d/{i}.csv")) for i in range(2)]
        await asyncio.sleep(0)

        assert broker.reject_all("closed") == 2
        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(result, FileAccessDeniedError) for result in results)
        assert broker.pending_count == 0

    @pytest.mark.asyncio
    async def test_cancel_only_fails_owned_requests(self, channel: MessageChannel) -> None:
        broker = FileAccessBroker(channel.sandbox)
        owned = asyncio.create_task(broker.request_access("/d/a.csv", owner="cell-1"))
        other = asyncio.create_task(broker.request_access("/d/b.csv", owner="cell-2"))
        await _next_request(channel)
        second_request = await _next_request(channel)

        assert broker.cancel("cell-1", "Execution cancelled") == 1
        with pytest.raises(FileAccessDeniedError, match="Execution cancelled"):
            await owned
        assert broker.cancel("cell-1", "Execution cancelled") == 0

        broker.handle_granted(
            FileAccessGrantedMessage(
                request_id=second_request["requestId"], file_path="/d/b.csv", data=b"b"
            )
        )
        assert await other == b"b"
        assert broker.pending_count == 0
