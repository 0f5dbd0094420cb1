"""
Locates the external fetch worker (yt-dlp) and transcoder (ffmpeg) executables.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from fetchq.models.settings import Settings
from fetchq.utils.paths import AppPaths

log = logging.getLogger(__name__)

_EXE_SUFFIX = ".exe" if os.name == "nt" else ""
YTDLP_NAME = f"yt-dlp{_EXE_SUFFIX}"
FFMPEG_NAME = f"ffmpeg{_EXE_SUFFIX}"


@dataclass(frozen=True)
class BinaryLocations:
    """Resolved executable paths; None marks a missing dependency."""

    binaries_dir: Path
    ytdlp: Path | None
    ffmpeg: Path | None

    def report(self) -> dict[str, str | None]:
        return {
            "yt-dlp": str(self.ytdlp) if self.ytdlp else None,
            "ffmpeg": str(self.ffmpeg) if self.ffmpeg else None,
        }


def resolve_binaries_dir(settings: Settings, paths: AppPaths) -> Path:
    configured = settings.binaries_dir.strip()
    return Path(configured).expanduser() if configured else paths.binaries_dir


def _find_executable(binaries_dir: Path, name: str, use_system: bool) -> Path | None:
    candidate = binaries_dir / name
    if candidate.is_file():
        return candidate
    if use_system and (found := shutil.which(name)):
        log.debug(f"Using '{name}' from PATH: {found}")
        return Path(found)
    return None


def resolve_binaries(settings: Settings, paths: AppPaths) -> BinaryLocations:
    """
    Looks in the binaries directory first and, when ``use_system_binaries`` is
    set, falls back to PATH. Resolution happens on every start so a binary
    installed while the engine runs is picked up.
    """
    binaries_dir = resolve_binaries_dir(settings, paths)
    return BinaryLocations(
        binaries_dir=binaries_dir,
        ytdlp=_find_executable(binaries_dir, YTDLP_NAME, settings.use_system_binaries),
        ffmpeg=_find_executable(
            binaries_dir, FFMPEG_NAME, settings.use_system_binaries
        ),
    )
