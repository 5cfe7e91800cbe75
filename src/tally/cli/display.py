"""Rich rendering for the tally CLI.

Accepts an optional :class:`~rich.console.Console` so tests can capture
output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tally.ledger.history import HistoryPage
    from tally.tools.base import ToolDefinition

_TRUNCATE_LEN = 300


def _truncate(text: str, limit: int = _TRUNCATE_LEN) -> str:
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + " ..."


class ChatDisplay:
    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    # ── Streaming ─────────────────────────────────────────────

    def chunk(self, text: str) -> None:
        """Write answer text as it arrives, without line breaks of our own."""
        self._console.print(text, end="", markup=False, highlight=False)

    def complete(self) -> None:
        self._console.print()

    def error(self, message: str) -> None:
        self._console.print()
        self._console.print(Panel(message, title="Error", border_style="red"))

    # ── Listings ──────────────────────────────────────────────

    def history(self, page: HistoryPage) -> None:
        if not page.items:
            self._console.print("[dim]No conversation history.[/dim]")
            return
        for turn in page.items:
            stamp = turn.created_at.strftime("%Y-%m-%d %H:%M")
            self._console.print(f"[bold cyan]You[/bold cyan] [dim]{stamp}[/dim]")
            self._console.print(_truncate(turn.user_message), markup=False)
            self._console.print("[bold green]Assistant[/bold green]")
            self._console.print(_truncate(turn.assistant_response), markup=False)
            self._console.print()
        self._console.print(
            f"[dim]Page {page.page}/{max(page.total_pages, 1)} "
            f"({page.total} turns)[/dim]"
        )

    def tools(self, tools: Sequence[ToolDefinition]) -> None:
        table = Table(title="Ledger tools")
        table.add_column("Name", style="bold")
        table.add_column("Writes", justify="center")
        table.add_column("Parameters")
        table.add_column("Description")
        for tool in tools:
            params = ", ".join(
                f"{name}*" if spec.required else name
                for name, spec in tool.parameters.items()
            )
            table.add_row(
                tool.name,
                "yes" if tool.mutating else "",
                params or "-",
                tool.description,
            )
        self._console.print(table)
