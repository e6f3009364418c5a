"""
Settings loading and saving.

Two rows are stored: "global" and "grok". Loading is a two-stage pipeline:
  1. Parse the stored JSON (bad JSON counts as `{}`) and deep-merge it onto
     the defaults as a plain tree (retry codes excepted, see
     load_grok_settings).
  2. Project the merged tree onto the typed model, which fills gaps, drops
     unknown keys and normalizes the cookie and retry fields.

There is no in-memory cache: every call reads (and every save rewrites) both
rows through the repository.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional, Union

from .db import SettingsRepository, SettingsRow, now_ms
from .merge import deep_merge
from .models import (
    CF_COOKIE_PREFIX,
    DEFAULT_GLOBAL_SETTINGS,
    DEFAULT_GROK_SETTINGS,
    GlobalSettings,
    GrokSettings,
    SettingsBundle,
    SettingsUpdate,
    strip_cf_prefix,
)

logger = logging.getLogger(__name__)

GLOBAL_KEY = "global"
GROK_KEY = "grok"

__all__ = [
    "GLOBAL_KEY",
    "GROK_KEY",
    "get_settings",
    "load_global_settings",
    "load_grok_settings",
    "normalize_cf_cookie",
    "save_settings",
    "strip_cf_prefix",
]


# ── Cookie helpers ────────────────────────────────────────────────────────────


def normalize_cf_cookie(value: str) -> str:
    """Cookie header form of a bare or prefixed value; "" stays ""."""
    cleaned = strip_cf_prefix(value)
    return f"{CF_COOKIE_PREFIX}{cleaned}" if cleaned else ""


# ── Loaders ───────────────────────────────────────────────────────────────────


def _without_retry_codes(tree: dict[str, Any]) -> dict[str, Any]:
    return {key: val for key, val in tree.items() if key not in ("retry_codes", "retry_status_codes")}


def _parse_json(raw: Optional[str], key: str) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError as exc:
        logger.warning("Stored %s settings are not valid JSON, ignoring them: %s", key, exc)
        return {}


def load_global_settings(raw: Optional[str] = None) -> GlobalSettings:
    """Full GlobalSettings from stored JSON text (or None). Never raises."""
    parsed = _parse_json(raw, GLOBAL_KEY)
    merged = deep_merge(DEFAULT_GLOBAL_SETTINGS.model_dump(mode="json"), parsed)
    return GlobalSettings.model_validate(merged)


def load_grok_settings(raw: Optional[str] = None) -> GrokSettings:
    """
    Full GrokSettings from stored JSON text (or None). Never raises.

    Retry codes are not merged from the defaults: GrokSettings resolves the
    legacy `retry_status_codes` name itself and defaults them when neither
    name is stored.
    """
    parsed = _parse_json(raw, GROK_KEY)
    merged = deep_merge(_without_retry_codes(DEFAULT_GROK_SETTINGS.model_dump(mode="json")), parsed)
    return GrokSettings.model_validate(merged)


# ── Store ─────────────────────────────────────────────────────────────────────


async def get_settings(repo: SettingsRepository) -> SettingsBundle:
    """Read both rows; missing rows load as defaults."""
    global_row = await repo.first(GLOBAL_KEY)
    grok_row = await repo.first(GROK_KEY)
    logger.debug(
        "Loaded settings rows (global: %s, grok: %s)",
        "stored" if global_row else "missing",
        "stored" if grok_row else "missing",
    )
    return SettingsBundle(
        global_=load_global_settings(global_row.value if global_row else None),
        grok=load_grok_settings(grok_row.value if grok_row else None),
    )


def _next_grok(current: GrokSettings, update: Mapping[str, Any]) -> GrokSettings:
    merged: dict[str, Any] = {**_without_retry_codes(current.model_dump(mode="json")), **update}
    if "retry_codes" not in update and "retry_status_codes" not in update:
        merged["retry_codes"] = current.retry_codes

    incoming_cookie = update.get("cf_clearance")
    if not isinstance(incoming_cookie, str):
        incoming_cookie = current.cf_clearance
    merged["cf_clearance"] = strip_cf_prefix(incoming_cookie)

    return GrokSettings.model_validate(merged, context={"fallback": current})


async def save_settings(
    repo: SettingsRepository,
    updates: Union[SettingsUpdate, Mapping[str, Any]],
) -> SettingsBundle:
    """
    Apply partial updates and rewrite both rows.

    Each update object is shallow-merged onto the current settings, so a
    nested value supplied by the caller replaces the stored one whole. Both
    rows are always written, with the same timestamp. A field whose update
    value fails validation keeps its current value. Returns the bundle that
    was persisted.

    Concurrent saves are last-writer-wins per row.
    """
    if not isinstance(updates, SettingsUpdate):
        updates = SettingsUpdate.model_validate(updates)

    current = await get_settings(repo)

    next_global = GlobalSettings.model_validate(
        {**current.global_.model_dump(mode="json"), **(updates.global_config or {})},
        context={"fallback": current.global_},
    )
    next_grok = _next_grok(current.grok, updates.grok_config or {})

    now = now_ms()
    await repo.upsert(
        [
            SettingsRow(GLOBAL_KEY, next_global.model_dump_json(), now),
            SettingsRow(GROK_KEY, next_grok.model_dump_json(), now),
        ]
    )
    logger.info("Saved settings (%s, %s)", GLOBAL_KEY, GROK_KEY)
    return SettingsBundle(global_=next_global, grok=next_grok)
