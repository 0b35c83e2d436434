"""User-facing decisions and notifications raised by the host."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from enum import StrEnum
from typing import Protocol

import click

logger = logging.getLogger(__name__)


class AccessDecision(StrEnum):
    """Answer to an external file access prompt."""

    ALLOW = "allow"
    ALLOW_AND_REMEMBER = "allow_and_remember"
    DENY = "deny"


class HostPrompter(Protocol):
    """Everything the host asks of, or tells, the user."""

    async def ask_file_access(self, file_path: str) -> AccessDecision: ...

    async def ask_save_path(self, default_name: str) -> str | None: ...

    async def show_info(self, message: str) -> None: ...

    async def show_error(self, message: str) -> None: ...

    async def write_clipboard(self, text: str) -> None: ...

    async def open_external(self, url: str) -> None: ...


_CHOICES = {
    "a": AccessDecision.ALLOW,
    "r": AccessDecision.ALLOW_AND_REMEMBER,
    "d": AccessDecision.DENY,
}


class ConsolePrompter:
    """Terminal prompts via click; blocking calls run on a worker thread.

    Clipboard writes are echoed, since a terminal has no clipboard to own.
    """

    def __init__(self, assume_allow: bool = False) -> None:
        self.assume_allow = assume_allow

    async def ask_file_access(self, file_path: str) -> AccessDecision:
        if self.assume_allow:
            return AccessDecision.ALLOW
        answer = await asyncio.to_thread(
            click.prompt,
            f"The notebook wants to read {file_path}. [a]llow, allow and [r]emember, [d]eny",
            type=click.Choice(sorted(_CHOICES)),
            default="d",
        )
        return _CHOICES[answer]

    async def ask_save_path(self, default_name: str) -> str | None:
        answer = await asyncio.to_thread(
            click.prompt, "Save export as (empty to cancel)", default=default_name
        )
        answer = answer.strip()
        return answer or None

    async def show_info(self, message: str) -> None:
        click.echo(message)

    async def show_error(self, message: str) -> None:
        click.secho(message, fg="red", err=True)

    async def write_clipboard(self, text: str) -> None:
        click.echo(text)

    async def open_external(self, url: str) -> None:
        opened = await asyncio.to_thread(webbrowser.open, url)
        if not opened:
            logger.warning("open_url_failed", extra={"url": url})
