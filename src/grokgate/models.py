"""
Pydantic models for the proxy's stored settings.

Stored JSON is merged onto the defaults as an untyped tree first (see
merge.py); these models are the typed projection applied afterwards.
Projection is total: unknown keys are dropped and any value that fails
validation is replaced by a fallback. The fallback is that field's default, or
the same field of `context={"fallback": <model>}` when one is passed (saves
pass the current settings so a bad update keeps the stored value).
"""

from __future__ import annotations

import logging
import math
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    computed_field,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────────────────

CF_COOKIE_PREFIX = "cf_clearance="
DEFAULT_MAX_RETRY = 3
DEFAULT_RETRY_CODES: tuple[int, ...] = (401, 429, 403)


def strip_cf_prefix(value: str) -> str:
    """Return the bare cookie value: trimmed, with one `cf_clearance=` removed."""
    trimmed = value.strip()
    if not trimmed:
        return ""
    if trimmed.startswith(CF_COOKIE_PREFIX):
        return trimmed[len(CF_COOKIE_PREFIX):]
    return trimmed


def is_integer(value: Any) -> bool:
    """Integral numbers only; bools are not integers here."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def normalize_max_retry(value: Any) -> int:
    """
    Non-negative whole retry count.
    Anything that is not a finite number (strings and bools included) becomes
    the default; fractions are floored.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_MAX_RETRY
    if not math.isfinite(value):
        return DEFAULT_MAX_RETRY
    return max(0, math.floor(value))


def normalize_retry_codes(value: Any) -> list[int]:
    """Integer codes, deduplicated in first-seen order; never empty."""
    if not isinstance(value, (list, tuple)):
        return list(DEFAULT_RETRY_CODES)
    codes: list[int] = []
    for code in value:
        if not is_integer(code):
            continue
        code = int(code)
        if code not in codes:
            codes.append(code)
    return codes or list(DEFAULT_RETRY_CODES)


# ── Models ────────────────────────────────────────────────────────────────────


class ImageMode(str, Enum):
    """How generated images are handed back to clients."""
    URL = "url"
    BASE64 = "base64"


class _SettingsModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    @field_validator("*", mode="wrap")
    @classmethod
    def _fall_back(cls, value: Any, handler, info: ValidationInfo) -> Any:
        try:
            return handler(value)
        except ValidationError:
            fallback = (info.context or {}).get("fallback")
            logger.debug("Invalid value for %s.%s, using fallback", cls.__name__, info.field_name)
            if isinstance(fallback, cls):
                return getattr(fallback, info.field_name)
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)


class GlobalSettings(_SettingsModel):
    """Proxy-wide settings (the `global` row)."""
    base_url: str = ""
    log_level: str = "INFO"
    image_mode: ImageMode = ImageMode.URL
    admin_username: str = "admin"
    admin_password: str = "admin"
    image_cache_max_size_mb: int = 512
    video_cache_max_size_mb: int = 1024


class GrokSettings(_SettingsModel):
    """
    Upstream provider settings (the `grok` row).

    `retry_codes` is held once; `retry_status_codes` is the legacy name for the
    same list. It is accepted on input when `retry_codes` is missing and is
    always written back out alongside it.
    """
    api_key: str = ""
    # Bare value, never with the `cf_clearance=` prefix
    cf_clearance: str = ""
    x_statsig_id: str = ""
    dynamic_statsig: bool = True
    filtered_tags: str = "xaiartifact,xai:tool_usage_card"
    show_thinking: bool = True
    video_poster_preview: bool = False
    temporary: bool = False
    # Seconds
    stream_first_response_timeout: float = 30.0
    stream_chunk_timeout: float = 120.0
    stream_total_timeout: float = 600.0
    max_retry: int = DEFAULT_MAX_RETRY
    retry_codes: list[int] = Field(default_factory=lambda: list(DEFAULT_RETRY_CODES))

    @model_validator(mode="before")
    @classmethod
    def _adopt_legacy_retry_codes(cls, data: Any) -> Any:
        if (
            isinstance(data, Mapping)
            and not isinstance(data.get("retry_codes"), list)
            and isinstance(data.get("retry_status_codes"), list)
        ):
            data = dict(data)
            data["retry_codes"] = data["retry_status_codes"]
        return data

    @field_validator("cf_clearance", mode="before")
    @classmethod
    def _strip_cookie_prefix(cls, value: Any) -> Any:
        return strip_cf_prefix(value) if isinstance(value, str) else value

    @field_validator("max_retry", mode="before")
    @classmethod
    def _coerce_max_retry(cls, value: Any) -> int:
        return normalize_max_retry(value)

    @field_validator("retry_codes", mode="before")
    @classmethod
    def _filter_retry_codes(cls, value: Any) -> Any:
        return normalize_retry_codes(value) if isinstance(value, (list, tuple)) else value

    @computed_field  # type: ignore[prop-decorator]
    @property
    def retry_status_codes(self) -> list[int]:
        return list(self.retry_codes)


class SettingsBundle(BaseModel):
    """Both settings rows, always fully populated."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    global_: GlobalSettings = Field(alias="global")
    grok: GrokSettings


class SettingsUpdate(BaseModel):
    """Partial overrides accepted by save_settings()."""
    global_config: Optional[dict[str, Any]] = None
    grok_config: Optional[dict[str, Any]] = None


DEFAULT_GLOBAL_SETTINGS = GlobalSettings()
DEFAULT_GROK_SETTINGS = GrokSettings()
