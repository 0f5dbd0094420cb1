"""
Translates Settings and a DownloadRequest into the fetch worker's command line.
Caller-supplied free-form flags are never passed through.
"""

from pathlib import Path

from pathvalidate import sanitize_filename

from fetchq.models.request import DownloadRequest
from fetchq.models.settings import DEFAULT_FILENAME_TEMPLATE, Settings

PROGRESS_TEMPLATE = "download:%(progress)j"

TEMPLATE_PLACEHOLDERS = {
    "{title}": "%(title)s",
    "{id}": "%(id)s",
    "{ext}": "%(ext)s",
    "{uploader}": "%(uploader)s",
    "{resolution}": "%(height)sp",
}


def normalize_filename_template(template: str) -> str:
    """
    Makes a user filename template safe for the output option: path separators
    and reserved characters become '_', and ``{title}``-style placeholders are
    mapped to the worker's ``%(title)s`` syntax unless that syntax is already used.
    """
    cleaned = sanitize_filename(
        (template or "").strip(), replacement_text="_", platform="universal"
    )
    if not cleaned:
        return DEFAULT_FILENAME_TEMPLATE
    if "%(" in cleaned:
        return cleaned
    for placeholder, replacement in TEMPLATE_PLACEHOLDERS.items():
        cleaned = cleaned.replace(placeholder, replacement)
    return cleaned


def requires_transcoder(request: DownloadRequest, settings: Settings) -> bool:
    """Audio extraction and subtitle embedding both need ffmpeg."""
    subtitles = settings.subtitles
    return request.is_audio or (subtitles.enabled and subtitles.embed)


def build_arguments(
    request: DownloadRequest,
    settings: Settings,
    output_dir: Path,
    archive_file: Path,
    ffmpeg: Path | None = None,
) -> list[str]:
    """Returns the worker arguments (without the executable), URL last."""
    args: list[str] = []
    if ffmpeg is not None:
        args += ["--ffmpeg-location", str(ffmpeg.parent)]
    args += ["--progress-template", PROGRESS_TEMPLATE, "--newline"]

    if settings.skip_existing:
        args.append("--no-overwrites")
    if settings.use_download_archive:
        args += ["--download-archive", str(archive_file)]
    if settings.limit_rate_kib > 0:
        args += ["--limit-rate", f"{settings.limit_rate_kib}K"]
    if settings.proxy_enabled and settings.proxy_url:
        args += ["--proxy", settings.proxy_url]
    args += ["-N", str(max(1, settings.connections))]

    if request.is_audio:
        args += [
            "-f",
            "bestaudio",
            "--extract-audio",
            "--audio-format",
            request.audio_format,
        ]
    else:
        args += ["-f", request.format]

    template = normalize_filename_template(settings.filename_template)
    args += ["-o", str(output_dir / template)]

    subtitles = settings.subtitles
    if subtitles.enabled:
        args.append("--write-subs")
        if subtitles.languages:
            args += ["--sub-langs", subtitles.languages]
        if subtitles.embed:
            args.append("--embed-subs")

    if settings.playlist_items:
        args += ["--yes-playlist", "--playlist-items", settings.playlist_items]

    args.append(request.url)
    return args
