"""
Utilities for locating the application data directory and sandboxing output paths.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path

from pathvalidate import sanitize_filename

from fetchq.exceptions import ValidationError

APP_DIR_NAME = "fetchq"
DOWNLOADS_DIR_NAME = "MediaDownloader"
SUBDIR_MAX_CHARS = 80

_UNSAFE_PART_PATTERN = re.compile(r"[^\w.-]+")


def get_data_dir() -> Path:
    """Resolves the per-user data directory, honouring $FETCHQ_HOME."""
    if override := os.getenv("FETCHQ_HOME"):
        return Path(override).expanduser()
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / APP_DIR_NAME


def default_downloads_root() -> Path:
    return Path("~/Downloads").expanduser() / DOWNLOADS_DIR_NAME


@dataclass(frozen=True)
class AppPaths:
    """Locations of every file the engine persists."""

    data_dir: Path

    @property
    def settings_file(self) -> Path:
        return self.data_dir / "settings.json"

    @property
    def history_file(self) -> Path:
        return self.data_dir / "history.json"

    @property
    def queue_file(self) -> Path:
        return self.data_dir / "queue.json"

    @property
    def archive_file(self) -> Path:
        return self.data_dir / "archive.txt"

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def binaries_dir(self) -> Path:
        return self.data_dir / "binaries"

    @classmethod
    def default(cls) -> "AppPaths":
        return cls(get_data_dir())


def sanitize_part(name: str) -> str:
    """
    Reduces a caller-supplied directory name to a single safe path component:
    runs of non-word characters become '_', and the result is length-capped.
    """
    cleaned = _UNSAFE_PART_PATTERN.sub("_", str(name or ""))[:SUBDIR_MAX_CHARS]
    if cleaned.strip(".") == "":
        return ""
    return sanitize_filename(cleaned, replacement_text="_", platform="universal")


def resolve_downloads_root(root_override: str) -> Path:
    override = (root_override or "").strip()
    return Path(override).expanduser() if override else default_downloads_root()


def resolve_output_dir(downloads_root: Path, subdir: str) -> Path:
    """
    Joins a sanitized subdirectory onto the downloads root.

    Raises:
        ValidationError: If the result would fall outside the root.
    """
    root = downloads_root.resolve()
    target = (root / sanitize_part(subdir)).resolve()
    if target != root and root not in target.parents:
        raise ValidationError(
            f"Output directory '{subdir}' escapes the downloads root.",
            reason="output_dir",
        )
    return target
