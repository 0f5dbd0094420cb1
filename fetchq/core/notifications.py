"""
Desktop notifications for terminal job transitions.
"""

import asyncio
import logging
import shutil
import sys
from typing import Protocol

log = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(self, title: str, body: str) -> None: ...


class LogNotifier:
    """Writes notifications to the log. Used where no desktop service exists."""

    async def notify(self, title: str, body: str) -> None:
        log.info(f"[bold]{title}[/bold] {body}")


class SystemNotifier:
    """Shows notifications through ``notify-send`` or ``osascript``."""

    def __init__(self):
        self._fallback = LogNotifier()

    @staticmethod
    def _command(title: str, body: str) -> list[str] | None:
        if sys.platform == "darwin" and (osascript := shutil.which("osascript")):
            script = f"display notification {_quote(body)} with title {_quote(title)}"
            return [osascript, "-e", script]
        if notify_send := shutil.which("notify-send"):
            return [notify_send, "--app-name=fetchq", title, body]
        return None

    async def notify(self, title: str, body: str) -> None:
        command = self._command(title, body)
        if command is None:
            await self._fallback.notify(title, body)
            return
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await process.wait()
        except OSError as e:
            log.debug(f"Desktop notification failed: {e}")
            await self._fallback.notify(title, body)


def _quote(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def default_notifier() -> Notifier:
    if sys.platform == "darwin" or shutil.which("notify-send"):
        return SystemNotifier()
    return LogNotifier()
