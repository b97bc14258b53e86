# src/codex_switcher/credential_tool.py

import asyncio
import logging
import os
import time
import webbrowser
from typing import List, Optional

from rich.console import Console
from rich.markup import escape as rich_escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from .acquisition.oauth import OAuthAcquisition
from .core.config import load_config
from .core.errors import (
    AcquisitionCancelledError,
    ConflictError,
    DuplicateError,
    OAuthError,
    OAuthTimeoutError,
    ParseError,
    SwitcherError,
)
from .core.types import AuthMode, StoredAccount, UsageWindow
from .manager import AccountManager
from .usage.poller import PollStatus
from .utils.paths import get_codex_auth_file

lib_logger = logging.getLogger("codex_switcher")

console = Console()


def clear_screen(subtitle: str = "Codex Account Switcher"):
    """
    Clear the terminal and print the header panel.

    Uses the native clear command (cls on Windows, clear elsewhere).
    """
    os.system("cls" if os.name == "nt" else "clear")
    console.print(
        Panel(
            f"[bold cyan]{subtitle}[/bold cyan]",
            title="--- Codex Switcher ---",
        )
    )


def _format_window(window: Optional[UsageWindow]) -> str:
    if window is None:
        return "[dim]-[/dim]"
    remaining = window.remaining_percent
    if remaining <= 10:
        color = "red"
    elif remaining < 50:
        color = "yellow"
    else:
        color = "green"
    text = f"[{color}]{window.used_percent:.0f}% used[/{color}]"
    seconds = window.seconds_until_reset()
    if seconds is not None:
        hours, rem = divmod(int(seconds), 3600)
        text += f" [dim](resets {hours}h {rem // 60}m)[/dim]"
    return text


def _display_accounts(manager: AccountManager):
    """Print the account table with the latest known usage."""
    accounts = manager.list_accounts()
    if not accounts:
        console.print(
            Panel(
                "[yellow]No accounts saved yet.[/yellow] Add one with OAuth or import an auth.json.",
                title="Accounts",
                expand=False,
            )
        )
        return

    active_id = manager.active_id
    table = Table(title="Accounts", show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Account")
    table.add_column("Plan")
    table.add_column("5h Window")
    table.add_column("Weekly")
    table.add_column("Status")

    for i, entry in enumerate(accounts, 1):
        marker = "[bold green]● [/bold green]" if entry.id == active_id else "  "
        name = rich_escape(entry.account.label)
        if entry.account.label != entry.id:
            name += f" [dim]({rich_escape(entry.id)})[/dim]"

        if entry.account.auth_mode == AuthMode.API_KEY:
            table.add_row(
                str(i), marker + name, "API key", "[dim]-[/dim]", "[dim]-[/dim]",
                "[dim]n/a[/dim]",
            )
            continue

        usage = entry.usage
        status = "[dim]never polled[/dim]"
        if usage is not None:
            status = (
                f"[yellow]stale[/yellow] [dim]{rich_escape(usage.error or '')}[/dim]"
                if usage.is_stale
                else "[green]ok[/green]"
            )
        table.add_row(
            str(i),
            marker + name,
            entry.account.plan_type or "-",
            _format_window(usage.short if usage else None),
            _format_window(usage.weekly if usage else None),
            status,
        )

    console.print(table)


def _choose_account(manager: AccountManager, verb: str) -> Optional[StoredAccount]:
    accounts = manager.list_accounts()
    if not accounts:
        console.print("[bold yellow]No accounts saved.[/bold yellow]")
        return None

    _display_accounts(manager)
    choice = Prompt.ask(
        Text.from_markup(
            f"[bold]Select account to {verb} or type [red]'b'[/red] to go back[/bold]"
        ),
        choices=[str(i) for i in range(1, len(accounts) + 1)] + ["b"],
        show_choices=False,
    )
    if choice.lower() == "b":
        return None
    return accounts[int(choice) - 1]


async def _add_oauth_account(manager: AccountManager):
    clear_screen("Add Account (OAuth)")
    if OAuthAcquisition.is_pending():
        console.print("[bold red]Another login is already waiting for its callback.[/bold red]")
        return

    label = Prompt.ask("Label for this account (blank to use the email)", default="")
    activate = Confirm.ask("Activate it once logged in?", default=True)

    def show_url(url: str):
        console.print(
            Panel(
                "1. Sign in with the ChatGPT account to add.\n"
                "2. The browser returns here automatically once you approve.",
                title="ChatGPT Login",
                style="bold blue",
            )
        )
        console.print(f"[bold]URL:[/bold] [link={url}]{rich_escape(url)}[/link]\n")
        try:
            webbrowser.open(url)
        except webbrowser.Error as e:
            lib_logger.warning(f"Failed to open browser automatically: {e}")

    acquisition = manager.oauth_acquisition(on_url=show_url, label=label or None)
    try:
        with console.status(
            "[bold green]Waiting for the login to complete in the browser...[/bold green]",
            spinner="dots",
        ):
            entry = await manager.add_account(acquisition, activate=activate)
    except (OAuthTimeoutError, AcquisitionCancelledError, ConflictError, OAuthError) as e:
        console.print(Panel(str(e), style="bold red", title="Login failed", expand=False))
        return

    console.print(
        Panel(
            f"Saved [cyan]{rich_escape(entry.account.label)}[/cyan]"
            + (" and made it active" if activate else ""),
            style="bold green",
            title="Success",
            expand=False,
        )
    )


async def _import_account(manager: AccountManager):
    clear_screen("Import auth.json")
    default_path = str(get_codex_auth_file())
    path = Prompt.ask("Path to auth.json", default=default_path)
    label = Prompt.ask("Label for this account (blank to use the email)", default="")

    try:
        acquisition = manager.import_acquisition(path, label=label or None)
        entry = await manager.add_account(acquisition)
    except ParseError as e:
        console.print(Panel(str(e), style="bold red", title="Import failed", expand=False))
        return
    except DuplicateError as e:
        if not Confirm.ask(
            f"Account [cyan]{rich_escape(e.account_id)}[/cyan] already exists. Replace its credential?"
        ):
            console.print("[dim]Import cancelled.[/dim]")
            return
        acquisition = manager.import_acquisition(path, label=label or None, overwrite=True)
        entry = await manager.add_account(acquisition)

    console.print(
        Panel(
            f"Imported [cyan]{rich_escape(entry.account.label)}[/cyan]",
            style="bold green",
            title="Success",
            expand=False,
        )
    )
    if manager.active_id != entry.id and Confirm.ask("Activate it now?", default=False):
        await manager.switch(entry.id)
        console.print(f"[green]Now using {rich_escape(entry.id)}[/green]")


async def _switch_account(manager: AccountManager):
    clear_screen("Switch Account")
    entry = _choose_account(manager, "activate")
    if entry is None:
        return
    result = await manager.switch(entry.id)
    if result.healed:
        console.print("[yellow]auth.json had drifted and was rewritten.[/yellow]")
    elif not result.changed:
        console.print(f"[dim]{rich_escape(entry.id)} is already active.[/dim]")
    else:
        console.print(
            Panel(
                f"Codex CLI now uses [cyan]{rich_escape(entry.account.label)}[/cyan]",
                style="bold green",
                title="Switched",
                expand=False,
            )
        )


async def _deactivate(manager: AccountManager):
    if manager.active_id is None:
        console.print("[bold yellow]No account is active.[/bold yellow]")
        return
    if not Confirm.ask(
        f"Log the Codex CLI out of [cyan]{rich_escape(manager.active_id)}[/cyan]? "
        "(auth.json will be deleted)"
    ):
        return
    previous = await manager.deactivate()
    console.print(f"[green]Deactivated {rich_escape(previous or '')}[/green]")


async def _remove_account(manager: AccountManager):
    clear_screen("Remove Account")
    entry = _choose_account(manager, "remove")
    if entry is None:
        return
    warning = ""
    if entry.id == manager.active_id:
        warning = " It is active; the Codex CLI will be logged out."
    if not Confirm.ask(
        f"[bold red]Remove[/bold red] [cyan]{rich_escape(entry.id)}[/cyan]?{warning}"
    ):
        console.print("[dim]Removal cancelled.[/dim]")
        return
    await manager.remove_account(entry.id)
    console.print(
        Panel(
            f"Removed [cyan]{rich_escape(entry.id)}[/cyan]",
            style="bold green",
            title="Success",
            expand=False,
        )
    )


async def _refresh_usage(manager: AccountManager):
    with console.status("Refreshing usage...", spinner="dots"):
        events = await manager.refresh_all_usage()
    failed: List[str] = [
        f"{rich_escape(e.account_id)}: {rich_escape(e.error or '')}"
        for e in events
        if e.status == PollStatus.STALE
    ]
    updated = sum(1 for e in events if e.status == PollStatus.UPDATED)
    console.print(f"[green]Updated {updated} account(s)[/green]")
    for line in failed:
        console.print(f"[yellow]  {line}[/yellow]")


async def main(clear_on_start=True):
    """Interactive account manager."""
    manager = AccountManager()
    try:
        await manager.initialize()
    except ParseError as e:
        console.print(Panel(str(e), style="bold red", title="Catalog error"))
        return

    if clear_on_start:
        clear_screen()

    actions = {
        "1": _add_oauth_account,
        "2": _import_account,
        "3": _switch_account,
        "4": _deactivate,
        "5": _remove_account,
        "6": _refresh_usage,
    }

    try:
        while True:
            clear_screen()
            _display_accounts(manager)

            console.print(
                Panel(
                    Text.from_markup(
                        "1. Add Account (ChatGPT login)\n"
                        "2. Import auth.json\n"
                        "3. Switch Account\n"
                        "4. Deactivate\n"
                        "5. Remove Account\n"
                        "6. Refresh Usage"
                    ),
                    title="Choose action",
                    style="bold blue",
                )
            )

            choice = Prompt.ask(
                Text.from_markup(
                    "[bold]Please select an option or type [red]'q'[/red] to quit[/bold]"
                ),
                choices=list(actions) + ["q"],
                show_choices=False,
            )
            if choice.lower() == "q":
                break

            try:
                await actions[choice](manager)
            except SwitcherError as e:
                console.print(f"[bold red]Error: {rich_escape(str(e))}[/bold red]")

            console.print("\n[dim]Press Enter to return to main menu...[/dim]")
            input()
    finally:
        await manager.shutdown()


def run_credential_tool(from_launcher=False):
    """
    Entry point for the account menu (`codex-switcher`).

    Args:
        from_launcher: If True, skip the startup banner
    """
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not from_launcher:
        os.system("cls" if os.name == "nt" else "clear")
        _start_time = time.time()
        print("━" * 70)
        print("Codex Account Switcher")
        print("━" * 70)
        with console.status("Loading saved accounts...", spinner="dots"):
            time.sleep(0.2)
        print(f"✓ Ready in {time.time() - _start_time:.2f}s")

    try:
        asyncio.run(main(clear_on_start=not from_launcher))
        clear_screen()
    except KeyboardInterrupt:
        console.print("\n[bold yellow]Exiting switcher.[/bold yellow]")
