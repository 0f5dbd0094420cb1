"""
Pydantic model for the engine settings.
Provides validation, legacy key aliases and the merge-with-defaults step used at load time.
"""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

CURRENT_SETTINGS_VERSION = 1
DEFAULT_FILENAME_TEMPLATE = "%(title)s.%(ext)s"
MAX_CONCURRENT_LIMIT = 16

_PLAYLIST_ITEMS_PATTERN = re.compile(r"^[\d\s,:\-]*$")


class SubtitleOptions(BaseModel):
    """Subtitle download options."""

    model_config = ConfigDict(
        validate_assignment=True,
        str_strip_whitespace=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    enabled: bool = False
    embed: bool = False
    languages: str = ""


class Settings(BaseModel):
    """A validated, versioned settings model for the engine."""

    model_config = ConfigDict(
        validate_assignment=True,
        str_strip_whitespace=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    version: int = CURRENT_SETTINGS_VERSION

    # Scheduling
    max_concurrent: int = 3
    pause_new_jobs: bool = False
    max_queue_size: int = 1000
    resume_queued_on_startup: bool = True

    # Network policy
    limit_rate_kib: int = 0
    proxy_url: str = ""
    proxy_enabled: bool = True
    connections: int = 3

    # Output
    downloads_root_dir: str = ""
    filename_template: str = DEFAULT_FILENAME_TEMPLATE
    skip_existing: bool = True
    use_download_archive: bool = True
    subtitles: SubtitleOptions = Field(default_factory=SubtitleOptions)
    playlist_items: str = ""

    # External executables
    binaries_dir: str = ""
    use_system_binaries: bool = True

    # Effects
    open_on_complete: bool = False
    notifications_enabled: bool = True
    prevent_sleep_while_downloading: bool = True

    @field_validator("max_concurrent")
    @classmethod
    def validate_max_concurrent(cls, v: int) -> int:
        """Ensures a reasonable number of simultaneous jobs."""
        if v < 1 or v > MAX_CONCURRENT_LIMIT:
            raise ValueError(
                f"Max concurrent jobs must be between 1 and {MAX_CONCURRENT_LIMIT}."
            )
        return v

    @field_validator("limit_rate_kib", "max_queue_size")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Value cannot be negative (use 0 for unlimited).")
        return v

    @field_validator("connections")
    @classmethod
    def validate_connections(cls, v: int) -> int:
        return max(1, v)

    @field_validator("playlist_items")
    @classmethod
    def validate_playlist_items(cls, v: str) -> str:
        """Accepts yt-dlp item specs such as '1-25,30,40-'."""
        if not _PLAYLIST_ITEMS_PATTERN.match(v):
            raise ValueError(
                "Playlist items may only contain digits, ',', '-' and ':'."
            )
        return v.replace(" ", "")

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        if v > CURRENT_SETTINGS_VERSION:
            raise ValueError(
                f"Settings version {v} is newer than supported "
                f"version {CURRENT_SETTINGS_VERSION}."
            )
        return CURRENT_SETTINGS_VERSION

    def to_json_dict(self) -> dict[str, Any]:
        """Returns the camelCase snapshot written to settings.json."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def persisted_keys(cls) -> set[str]:
        """Returns the set of top-level keys expected in settings.json."""
        return {field.alias or name for name, field in cls.model_fields.items()}


def normalize_keys(changes: dict[str, Any]) -> dict[str, Any]:
    """
    Maps camelCase or snake_case keys onto field names, recursing into subtitles.
    Unknown keys are dropped.
    """
    by_alias = {field.alias: name for name, field in Settings.model_fields.items()}
    normalized: dict[str, Any] = {}
    for key, value in changes.items():
        name = key if key in Settings.model_fields else by_alias.get(key)
        if name is None:
            continue
        if name == "subtitles" and isinstance(value, dict):
            sub_alias = {
                field.alias: sub_name
                for sub_name, field in SubtitleOptions.model_fields.items()
            }
            value = {
                (k if k in SubtitleOptions.model_fields else sub_alias.get(k, k)): v
                for k, v in value.items()
            }
        normalized[name] = value
    return normalized


def merge_with_defaults(
    overrides: dict[str, Any] | None, base: Settings | None = None
) -> Settings:
    """
    Builds a validated Settings object from defaults (or ``base``) plus overrides.

    Nested subtitle options are merged key by key so a partial override does not
    reset the other subtitle fields.

    Raises:
        pydantic.ValidationError: If the merged values are invalid.
    """
    merged = (base or Settings()).model_dump()
    for name, value in normalize_keys(overrides or {}).items():
        if name == "subtitles" and isinstance(value, dict):
            merged["subtitles"] = {**merged["subtitles"], **value}
        else:
            merged[name] = value
    return Settings.model_validate(merged)
