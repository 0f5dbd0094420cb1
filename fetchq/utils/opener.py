"""
Reveals finished downloads in the platform file manager.
"""

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path

log = logging.getLogger(__name__)


def build_reveal_command(target: Path) -> list[str] | None:
    """Returns the command that opens ``target`` (or its folder) in a file manager."""
    path_text = str(target)

    if os.name == "nt":
        if target.is_file():
            return ["explorer", f"/select,{path_text}"]
        return ["explorer", path_text]

    if sys.platform == "darwin":
        if target.is_file():
            return ["open", "-R", path_text]
        return ["open", path_text]

    folder = str(target.parent if target.is_file() else target)
    if opener := shutil.which("xdg-open"):
        return [opener, folder]
    if gio := shutil.which("gio"):
        return [gio, "open", folder]
    return None


def reveal_in_folder(target: Path) -> bool:
    """Opens the file manager at ``target``. Returns False when that is not possible."""
    target = target.expanduser()
    command = build_reveal_command(target)
    if command is None:
        log.debug(f"No file manager command available to reveal '{target}'.")
        return False
    try:
        subprocess.Popen(command, close_fds=True)  # noqa: S603
        return True
    except (OSError, ValueError) as e:
        log.warning(f"Failed to open '{target}': {e}")
        return False
