"""Message protocol between the notebook sandbox and its host.

Messages travel as plain dicts with a ``type`` tag and camelCase keys, the
shape a structured-clone transport would carry. Each side validates what it
receives against a discriminated union before acting on it, since the other
side is on the far end of a trust boundary.

Sandbox → host:
    ready, requestRefresh, requestFileAccess, exportData, saveFileStart,
    saveFileChunk, saveFileEnd, copyToClipboard, openUrl, updateConfiguration

Host → sandbox:
    loadData, fileAccessGranted, fileAccessDenied
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from libs.common.exceptions import ProtocolError


class Message(BaseModel):
    """Base class for protocol messages (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


# =============================================================================
# Sandbox → host
# =============================================================================


class ReadyMessage(Message):
    type: Literal["ready"] = "ready"


class RequestRefreshMessage(Message):
    type: Literal["requestRefresh"] = "requestRefresh"


class RequestFileAccessMessage(Message):
    type: Literal["requestFileAccess"] = "requestFileAccess"
    request_id: int = Field(ge=1)
    file_path: str = Field(min_length=1)


class ExportDataMessage(Message):
    type: Literal["exportData"] = "exportData"
    data: bytes
    format: Literal["csv", "parquet"]
    default_name: str = Field(min_length=1)


class SaveFileStartMessage(Message):
    type: Literal["saveFileStart"] = "saveFileStart"
    name: str = Field(min_length=1)


class SaveFileChunkMessage(Message):
    type: Literal["saveFileChunk"] = "saveFileChunk"
    name: str = Field(min_length=1)
    data: bytes


class SaveFileEndMessage(Message):
    type: Literal["saveFileEnd"] = "saveFileEnd"
    name: str = Field(min_length=1)


class CopyToClipboardMessage(Message):
    type: Literal["copyToClipboard"] = "copyToClipboard"
    value: str


class OpenUrlMessage(Message):
    type: Literal["openUrl"] = "openUrl"
    url: str = Field(min_length=1)


class UpdateConfigurationMessage(Message):
    type: Literal["updateConfiguration"] = "updateConfiguration"
    key: str = Field(min_length=1)
    value: Any = None


# =============================================================================
# Host → sandbox
# =============================================================================


class LoadDataMessage(Message):
    type: Literal["loadData"] = "loadData"
    file_name: str
    file_path: str
    extension: str
    data: bytes


class FileAccessGrantedMessage(Message):
    type: Literal["fileAccessGranted"] = "fileAccessGranted"
    request_id: int
    file_path: str
    data: bytes


class FileAccessDeniedMessage(Message):
    type: Literal["fileAccessDenied"] = "fileAccessDenied"
    request_id: int
    file_path: str
    error: str


SandboxMessage = Annotated[
    ReadyMessage
    | RequestRefreshMessage
    | RequestFileAccessMessage
    | ExportDataMessage
    | SaveFileStartMessage
    | SaveFileChunkMessage
    | SaveFileEndMessage
    | CopyToClipboardMessage
    | OpenUrlMessage
    | UpdateConfigurationMessage,
    Field(discriminator="type"),
]

HostMessage = Annotated[
    LoadDataMessage | FileAccessGrantedMessage | FileAccessDeniedMessage,
    Field(discriminator="type"),
]

_SANDBOX_ADAPTER: TypeAdapter[SandboxMessage] = TypeAdapter(SandboxMessage)
_HOST_ADAPTER: TypeAdapter[HostMessage] = TypeAdapter(HostMessage)


def _describe(raw: Any) -> str:
    if isinstance(raw, dict):
        return str(raw.get("type", "<untyped>"))
    return type(raw).__name__


def parse_sandbox_message(raw: Any) -> SandboxMessage:
    """Validate a message received by the host.

    Raises:
        ProtocolError: If the payload is not a known, well-formed message
    """
    try:
        return _SANDBOX_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise ProtocolError(
            f"Invalid sandbox message '{_describe(raw)}': {exc.error_count()} validation error(s)"
        ) from exc


def parse_host_message(raw: Any) -> HostMessage:
    """Validate a message received by the sandbox.

    Raises:
        ProtocolError: If the payload is not a known, well-formed message
    """
    try:
        return _HOST_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise ProtocolError(
            f"Invalid host message '{_describe(raw)}': {exc.error_count()} validation error(s)"
        ) from exc
