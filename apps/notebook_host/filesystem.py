"""
Destination filesystems for exported results.

A local filesystem appends chunks in place. A virtual filesystem (remote
workspaces, in-memory stores) has no append primitive, so a chunk is written
by reading the current content, concatenating and rewriting the whole file.
That makes a chunked transfer quadratic in its size there; accepted.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Protocol, runtime_checkable

from libs.common.exceptions import TransferError

logger = logging.getLogger(__name__)


@runtime_checkable
class DestinationFileSystem(Protocol):
    """Byte-level file access used by the host write queue."""

    is_local: bool

    def resolve(self, name: str) -> str: ...

    async def read(self, path: str) -> bytes: ...

    async def write(self, path: str, data: bytes) -> None: ...


@runtime_checkable
class AppendableFileSystem(DestinationFileSystem, Protocol):
    """A destination that can extend a file in place."""

    async def append(self, path: str, data: bytes) -> None: ...


def validate_destination_name(name: str) -> str:
    """Reject names that could escape the destination root.

    Raises:
        TransferError: If the name is empty, absolute, contains a ``..``
            segment or control characters
    """
    if not name or not name.strip():
        raise TransferError("Empty destination name rejected")
    if any(ord(ch) < 32 for ch in name):
        raise TransferError(f"Unsafe characters in destination name: {name!r}")
    if PurePosixPath(name).is_absolute() or PureWindowsPath(name).is_absolute() or name[0] in "\\/":
        raise TransferError(f"Absolute destination rejected: {name}")
    if PureWindowsPath(name).drive:
        raise TransferError(f"Absolute destination rejected: {name}")
    for segment in name.replace("\\", "/").split("/"):
        if segment == "..":
            raise TransferError(f"Path traversal rejected: {name}")
    return name


class LocalFileSystem:
    """Files under a root directory on the local disk."""

    is_local = True

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def resolve(self, name: str) -> str:
        validate_destination_name(name)
        target = (self.root / name).resolve()
        if not target.is_relative_to(self.root):
            raise TransferError(f"Destination not under {self.root}: {name}")
        return str(target)

    async def read(self, path: str) -> bytes:
        return await asyncio.to_thread(Path(path).read_bytes)

    async def write(self, path: str, data: bytes) -> None:
        await asyncio.to_thread(self._write, Path(path), data)

    async def append(self, path: str, data: bytes) -> None:
        await asyncio.to_thread(self._append, Path(path), data)

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    @staticmethod
    def _append(path: Path, data: bytes) -> None:
        with path.open("ab") as handle:
            handle.write(data)


class MemoryFileSystem:
    """Virtual filesystem keeping whole files in memory; no append primitive."""

    is_local = False

    def __init__(self, root: str = "/workspace") -> None:
        self.root = PurePosixPath(root)
        self.files: dict[str, bytes] = {}

    def resolve(self, name: str) -> str:
        validate_destination_name(name)
        return str(self.root / name.replace("\\", "/"))

    async def read(self, path: str) -> bytes:
        try:
            return self.files[path]
        except KeyError:
            raise FileNotFoundError(path) from None

    async def write(self, path: str, data: bytes) -> None:
        self.files[path] = bytes(data)


async def append_chunk(fs: DestinationFileSystem, path: str, data: bytes) -> None:
    """Append ``data`` to ``path`` using the cheapest primitive ``fs`` offers."""
    if isinstance(fs, AppendableFileSystem):
        await fs.append(path, data)
        return
    existing = await fs.read(path)
    await fs.write(path, existing + data)
