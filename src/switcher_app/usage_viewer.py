# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Live usage viewer TUI.

Shows every saved account with both quota windows, refreshed in place
by the background usage poller. Ctrl+C exits.
"""

import asyncio
import logging
import os
import time
from datetime import datetime
from typing import Iterable, Optional, Set

from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape as rich_escape
from rich.table import Table
from rich.text import Text

from codex_switcher.core.config import load_config
from codex_switcher.core.errors import ParseError
from codex_switcher.core.types import AuthMode, StoredAccount, UsageWindow
from codex_switcher.manager import AccountManager
from codex_switcher.usage.poller import CredentialExpired, PollEvent, PollStatus


# =============================================================================
# DISPLAY CONFIGURATION
# =============================================================================

TABLE_ACCOUNT_WIDTH = 28
WINDOW_BAR_WIDTH = 10

# Account status icons and colors: (icon, label, color)
STATUS_DISPLAY = {
    "ok": (":white_check_mark:", "OK", "green"),
    "stale": (":warning:", "Stale", "yellow"),
    "expired": (":no_entry:", "Expired", "red"),
    "exhausted": (":stopwatch:", "Exhausted", "red"),
    "pending": (":hourglass:", "Pending", "dim"),
    "unsupported": (":heavy_minus_sign:", "API key", "dim"),
}

# =============================================================================


def clear_screen():
    """Clear the terminal screen."""
    os.system("cls" if os.name == "nt" else "clear")


def format_time_ago(timestamp: Optional[float], now: Optional[float] = None) -> str:
    """Format timestamp as relative time (e.g., '5 min ago')."""
    if not timestamp:
        return "Never"
    delta = (now if now is not None else time.time()) - timestamp
    if delta < 60:
        return f"{int(max(delta, 0))}s ago"
    elif delta < 3600:
        return f"{int(delta / 60)} min ago"
    elif delta < 86400:
        return f"{int(delta / 3600)}h ago"
    return f"{int(delta / 86400)}d ago"


def format_duration(seconds: int) -> str:
    """Format seconds as a short human-readable duration."""
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        return f"{seconds // 60}m"
    elif seconds < 86400:
        hours, mins = divmod(seconds // 60, 60)
        return f"{hours}h {mins}m" if mins else f"{hours}h"
    days, hours = divmod(seconds // 3600, 24)
    return f"{days}d {hours}h" if hours else f"{days}d"


def format_reset_time(resets_at: Optional[float], now: Optional[float] = None) -> str:
    """Format a reset timestamp as 'in 2h 5m (Mar 03 14:00)'."""
    if resets_at is None:
        return "-"
    now = now if now is not None else time.time()
    local = datetime.fromtimestamp(resets_at).strftime("%b %d %H:%M")
    if resets_at <= now:
        return f"now ({local})"
    return f"in {format_duration(int(resets_at - now))} ({local})"


def create_progress_bar(percent: Optional[float], width: int = WINDOW_BAR_WIDTH) -> str:
    """Create a text-based progress bar."""
    if percent is None:
        return "░" * width
    percent = max(0.0, min(100.0, percent))
    filled = int(percent / 100 * width)
    return "▓" * filled + "░" * (width - filled)


def format_window_cell(window: Optional[UsageWindow], now: Optional[float] = None) -> Text:
    if window is None:
        return Text("-", style="dim")
    used = window.used_percent
    if used >= 90:
        color = "red"
    elif used >= 50:
        color = "yellow"
    else:
        color = "green"
    return Text.from_markup(
        f"[{color}]{create_progress_bar(used)}[/{color}] {used:5.1f}%\n"
        f"[dim]{format_reset_time(window.resets_at, now)}[/dim]"
    )


def account_status(entry: StoredAccount, expired: Set[str]) -> str:
    """Pick the STATUS_DISPLAY key for an account."""
    if entry.account.auth_mode == AuthMode.API_KEY:
        return "unsupported"
    if entry.id in expired:
        return "expired"
    usage = entry.usage
    if usage is None or not usage.has_data:
        return "stale" if usage is not None and usage.is_stale else "pending"
    if usage.is_stale:
        return "stale"
    for window in (usage.short, usage.weekly):
        if window is not None and window.is_exhausted:
            return "exhausted"
    return "ok"


def build_usage_table(
    accounts: Iterable[StoredAccount],
    active_id: Optional[str],
    expired: Optional[Set[str]] = None,
    now: Optional[float] = None,
) -> Table:
    """Render all accounts as one table."""
    expired = expired or set()
    now = now if now is not None else time.time()

    table = Table(box=None, show_header=True, header_style="bold", padding=(0, 1))
    table.add_column("Account", style="cyan", min_width=TABLE_ACCOUNT_WIDTH)
    table.add_column("Plan", justify="center")
    table.add_column("5h Window")
    table.add_column("Weekly Window")
    table.add_column("Status")
    table.add_column("Updated", justify="right")

    for entry in accounts:
        name = rich_escape(entry.account.label)
        if entry.id == active_id:
            name = f"[bold green]●[/bold green] {name}"
        icon, label, color = STATUS_DISPLAY[account_status(entry, expired)]
        status = f"{icon} [{color}]{label}[/{color}]"
        usage = entry.usage
        if usage is not None and usage.is_stale:
            status += f"\n[dim]since {format_time_ago(usage.stale_since, now)}[/dim]"

        table.add_row(
            Text.from_markup(name),
            entry.account.plan_type or "-",
            format_window_cell(usage.short if usage else None, now),
            format_window_cell(usage.weekly if usage else None, now),
            Text.from_markup(status),
            format_time_ago(usage.fetched_at if usage else None, now),
        )
    return table


class UsageViewer:
    """Live table of every account's quota windows."""

    def __init__(self, manager: Optional[AccountManager] = None):
        self.console = Console()
        self.manager = manager or AccountManager()
        self.expired: Set[str] = set()
        self.last_cycle: Optional[float] = None

    def on_event(self, event):
        if isinstance(event, CredentialExpired):
            self.expired.add(event.account_id)
        elif isinstance(event, PollEvent):
            if event.status == PollStatus.UPDATED:
                self.expired.discard(event.account_id)
            self.last_cycle = event.timestamp

    def render(self):
        now = time.time()
        header = Text.from_markup(
            "[bold cyan]:chart_with_upwards_trend: Codex Usage[/bold cyan]  |  "
            f"Last poll: {format_time_ago(self.last_cycle, now)}  |  "
            f"Every {self.manager.poller.interval:.0f}s  |  [dim]Ctrl+C to exit[/dim]"
        )
        accounts = self.manager.list_accounts()
        if not accounts:
            body = Text("No accounts saved. Add one with codex-switcher.", style="yellow")
        else:
            body = build_usage_table(accounts, self.manager.active_id, self.expired, now)
        return Group(Text("━" * 78), header, Text("━" * 78), body)

    async def run(self):
        """Main viewer loop."""
        try:
            await self.manager.initialize()
        except ParseError as e:
            self.console.print(f"[red]{rich_escape(str(e))}[/red]")
            return

        self.manager.poller.add_listener(self.on_event)
        self.manager.start_polling()
        try:
            with Live(self.render(), console=self.console, refresh_per_second=1) as live:
                while True:
                    await asyncio.sleep(1)
                    live.update(self.render())
        finally:
            self.manager.poller.remove_listener(self.on_event)
            await self.manager.shutdown()


def run_usage_viewer():
    """Entry point for the usage viewer (`codex-usage`)."""
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    clear_screen()
    viewer = UsageViewer(AccountManager(config))
    try:
        asyncio.run(viewer.run())
    except KeyboardInterrupt:
        viewer.console.print("\n[bold yellow]Exiting usage viewer.[/bold yellow]")


if __name__ == "__main__":
    run_usage_viewer()
