"""Render stored sessions for humans."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, Optional

from rich.console import Console
from rich.table import Table

from ..models import SessionState, SessionStatus

_STATE_STYLES = {
    SessionState.IDLE: "cyan",
    SessionState.RUNNING: "yellow",
    SessionState.COMPLETED: "green",
    SessionState.FAILED: "red",
}


def format_age(hours: float) -> str:
    seconds = max(0.0, hours * 3600)
    if seconds < 60:
        return f"{int(seconds)}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m"
    if seconds < 86400:
        return f"{seconds / 3600:.1f}h"
    return f"{seconds / 86400:.1f}d"


def build_status_table(rows: Iterable[SessionStatus], *, now: Optional[datetime] = None) -> Table:
    table = Table(title="Browser sessions", header_style="bold")
    table.add_column("Session")
    table.add_column("Status")
    table.add_column("Alive")
    table.add_column("Profile")
    table.add_column("Queries", justify="right")
    table.add_column("Last used", justify="right")
    table.add_column("Created")
    table.add_column("Last prompt", overflow="ellipsis", max_width=40)
    for row in rows:
        item = row.descriptor
        style = _STATE_STYLES.get(item.status, "white")
        table.add_row(
            item.session_id,
            f"[{style}]{item.status.value}[/{style}]",
            "yes" if row.alive else "[dim]no[/dim]",
            item.profile_name or "-",
            str(item.query_count),
            format_age(item.age_hours(now)),
            item.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            item.last_prompt_preview or "",
        )
    return table


def render_status(
    rows: list[SessionStatus],
    *,
    hours: float,
    include_all: bool,
    show_examples: bool,
    console: Optional[Console] = None,
    now: Optional[datetime] = None,
) -> None:
    console = console or Console()
    scope = "stored sessions" if include_all or math.isinf(hours) else f"sessions used in the last {hours:g}h"
    if not rows:
        console.print(f"No {scope}.")
    else:
        console.print(build_status_table(rows, now=now))
        console.print(f"[dim]Showing {len(rows)} of {scope}.[/dim]")
    if show_examples:
        console.print("[dim]Reuse a running browser by passing its session id as session_id.[/dim]")
        console.print("[dim]Purge idle sessions with delete_sessions_older_than(hours=24).[/dim]")
