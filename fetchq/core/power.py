"""
Keeps the machine awake while downloads are running.
"""

import asyncio
import logging
import os
import shutil
import sys
from contextlib import suppress

log = logging.getLogger(__name__)

# SetThreadExecutionState flags
_ES_CONTINUOUS = 0x80000000
_ES_SYSTEM_REQUIRED = 0x00000001


def _inhibitor_command() -> list[str] | None:
    if sys.platform == "darwin":
        if caffeinate := shutil.which("caffeinate"):
            return [caffeinate, "-i"]
        return None
    if inhibit := shutil.which("systemd-inhibit"):
        return [
            inhibit,
            "--what=idle:sleep",
            "--who=fetchq",
            "--why=Downloads in progress",
            "--mode=block",
            "sleep",
            "infinity",
        ]
    return None


class PowerSaveBlocker:
    """
    Prevents system sleep while engaged. Uses SetThreadExecutionState on Windows,
    ``caffeinate`` on macOS and ``systemd-inhibit`` on Linux; on other systems
    only the engaged state is tracked.
    """

    def __init__(self):
        self.engaged = False
        self._process: asyncio.subprocess.Process | None = None

    async def update(self, should_block: bool) -> bool:
        """Engages or releases the blocker. Returns True when the state changed."""
        if should_block == self.engaged:
            return False
        if should_block:
            await self._engage()
        else:
            await self._release()
        self.engaged = should_block
        return True

    async def _engage(self) -> None:
        if os.name == "nt":
            import ctypes

            ctypes.windll.kernel32.SetThreadExecutionState(
                _ES_CONTINUOUS | _ES_SYSTEM_REQUIRED
            )
            return
        command = _inhibitor_command()
        if command is None:
            log.debug("No sleep inhibitor available on this system.")
            return
        try:
            self._process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            log.warning(f"[yellow]Could not start sleep inhibitor: {e}[/yellow]")
            self._process = None

    async def _release(self) -> None:
        if os.name == "nt":
            import ctypes

            ctypes.windll.kernel32.SetThreadExecutionState(_ES_CONTINUOUS)
            return
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return
        with suppress(ProcessLookupError):
            process.terminate()
        await process.wait()

    async def close(self) -> None:
        await self.update(False)
