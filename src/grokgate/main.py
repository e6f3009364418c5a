"""
grokgate CLI entry point.

Commands
--------
  grokgate settings show                         — print both settings rows
  grokgate settings set grok.max_retry=5 ...     — update fields and save
  grokgate cookie                                — print the cf_clearance cookie header
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from .db import DEFAULT_DB_FILE, SQLiteSettingsRepository, format_ms
from .models import SettingsBundle
from .settings import (
    GLOBAL_KEY,
    GROK_KEY,
    get_settings,
    load_global_settings,
    normalize_cf_cookie,
    save_settings,
)

# ── Typer app ─────────────────────────────────────────────────────────────────

app = typer.Typer(
    name="grokgate",
    help="Inspect and edit the stored settings of the grokgate proxy.",
    no_args_is_help=True,
    add_completion=False,
)
settings_app = typer.Typer(help="Show or change stored settings.", no_args_is_help=True)
app.add_typer(settings_app, name="settings")

console = Console()
err_console = Console(stderr=True)

DbOption = typer.Option(DEFAULT_DB_FILE, "--db", help="Path to the settings database.")

# Shown masked by `settings show`
SECRET_FIELDS = {"admin_password", "api_key", "cf_clearance"}

_SECTIONS = {"global": "global_config", "grok": "grok_config"}


def _configure_logging(level_name: str) -> None:
    level = logging.getLevelName(str(level_name).upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger("grokgate").setLevel(level)


def _mask(value: Any) -> str:
    text = str(value)
    if not text:
        return ""
    if len(text) <= 4:
        return "****"
    return text[:2] + "…" + text[-2:]


def _parse_assignment(raw: str) -> tuple[str, str, Any]:
    """
    Split `section.field=value`. The value is read as JSON when it parses
    (numbers, booleans, lists), otherwise kept as a plain string.
    """
    target, sep, value_text = raw.partition("=")
    section, dot, field = target.strip().partition(".")
    if not sep or not dot or not field or section not in _SECTIONS:
        raise typer.BadParameter(
            f"expected global.<field>=<value> or grok.<field>=<value>, got {raw!r}"
        )
    try:
        value = json.loads(value_text)
    except ValueError:
        value = value_text
    return _SECTIONS[section], field, value


def _build_updates(assignments: list[str]) -> dict[str, dict[str, Any]]:
    updates: dict[str, dict[str, Any]] = {}
    for raw in assignments:
        section, field, value = _parse_assignment(raw)
        updates.setdefault(section, {})[field] = value
    return updates


def _settings_table(title: str, values: dict[str, Any], updated_at: Optional[int]) -> Table:
    caption = f"updated {format_ms(updated_at)}" if updated_at is not None else "defaults"
    table = Table(title=title, caption=caption, show_header=True, header_style="bold")
    table.add_column("Field")
    table.add_column("Value")
    for key, value in values.items():
        shown = _mask(value) if key in SECRET_FIELDS else json.dumps(value, ensure_ascii=False)
        table.add_row(key, shown)
    return table


# ── Async bodies ──────────────────────────────────────────────────────────────


async def _apply_stored_log_level(repo: SQLiteSettingsRepository) -> None:
    # Only the global row is read, so the level is in place before any other work
    row = await repo.first(GLOBAL_KEY)
    _configure_logging(load_global_settings(row.value if row else None).log_level)


async def _show(db: Path) -> tuple[SettingsBundle, dict[str, Optional[int]]]:
    async with SQLiteSettingsRepository(db) as repo:
        await _apply_stored_log_level(repo)
        bundle = await get_settings(repo)
        stamps: dict[str, Optional[int]] = {}
        for key in (GLOBAL_KEY, GROK_KEY):
            row = await repo.first(key)
            stamps[key] = row.updated_at if row else None
    return bundle, stamps


async def _set(db: Path, updates: dict[str, dict[str, Any]]) -> SettingsBundle:
    async with SQLiteSettingsRepository(db) as repo:
        await _apply_stored_log_level(repo)
        return await save_settings(repo, updates)


async def _load(db: Path) -> SettingsBundle:
    async with SQLiteSettingsRepository(db) as repo:
        await _apply_stored_log_level(repo)
        return await get_settings(repo)


# ── Commands ──────────────────────────────────────────────────────────────────


@settings_app.command("show")
def show(db: Path = DbOption) -> None:
    """Print the effective settings (stored overrides on top of defaults)."""
    bundle, stamps = asyncio.run(_show(db))
    console.print(_settings_table("global", bundle.global_.model_dump(mode="json"), stamps[GLOBAL_KEY]))
    console.print(_settings_table("grok", bundle.grok.model_dump(mode="json"), stamps[GROK_KEY]))


@settings_app.command("set")
def set_(
    assignments: list[str] = typer.Argument(..., help="section.field=value pairs."),
    db: Path = DbOption,
) -> None:
    """Update individual fields and rewrite both settings rows."""
    try:
        updates = _build_updates(assignments)
    except typer.BadParameter as exc:
        err_console.print(f"[bold red]✗ {exc}[/bold red]")
        raise typer.Exit(1)

    asyncio.run(_set(db, updates))
    changed = sum(len(fields) for fields in updates.values())
    console.print(f"[green]✓ Saved {changed} field(s).[/green]")


@app.command()
def cookie(db: Path = DbOption) -> None:
    """Print the stored cf_clearance value in cookie-header form."""
    bundle = asyncio.run(_load(db))
    header = normalize_cf_cookie(bundle.grok.cf_clearance)
    if not header:
        err_console.print("[yellow]No cf_clearance stored.[/yellow]")
        raise typer.Exit(1)
    console.print(header, highlight=False, soft_wrap=True)


if __name__ == "__main__":
    app()
