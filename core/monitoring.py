"""Cycle report rendering.

Turns a finalized :class:`~core.analytics.CycleReport` into a Rich summary
panel plus a per-identity table, and provides the cosmetic cooldown
countdown shown between cycles.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.analytics import CycleReport, IdentityOutcome
from core.utils import mask_address

logger = logging.getLogger(__name__)


def _rate_style(rate: float) -> str:
    if rate >= 80:
        return "green"
    if rate >= 50:
        return "yellow"
    return "red"


class CycleReportRenderer:
    """Rich renderer used as the cycle runner's reporting sink."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def render_summary_panel(self, report: CycleReport) -> Panel:
        """Render the aggregate counters of *report*."""
        text = Text()

        text.append("Identities: ", style="bold")
        ok = report.identities_processed - report.identities_failed
        text.append(f"{ok} processed", style="green")
        text.append(" / ")
        text.append(
            f"{report.identities_failed} failed",
            style="red" if report.identities_failed else "green",
        )
        text.append(f" / {report.identities_processed} total\n")

        text.append("Operations: ", style="bold")
        text.append(f"{report.successful_ops}/{report.total_ops} ")
        text.append(
            f"({report.success_rate:.1f}% success)\n",
            style=_rate_style(report.success_rate),
        )

        for category, total in report.category_totals.items():
            done = report.category_successes.get(category, 0)
            text.append(f"  {category}: ", style="cyan")
            text.append(f"{done}/{total}\n")

        duration = report.duration_seconds
        text.append("Duration: ", style="bold")
        text.append(f"{duration:.0f}s" if duration is not None else "running")

        return Panel(
            text,
            title=f"Cycle {report.cycle_number} Summary",
            border_style="cyan",
        )

    def render_identity_table(self, report: CycleReport) -> Table:
        """One row per identity, one column per operation category."""
        table = Table(title="Wallet Details", box=box.ROUNDED)
        table.add_column("Wallet", style="cyan", no_wrap=True)
        for category in report.category_totals:
            table.add_column(category, justify="center")
        table.add_column("Status", justify="center")

        for outcome in report.outcomes:
            row = [mask_address(outcome.address)]
            summary = outcome.summary()
            attempts = outcome.category_attempts()
            for category in report.category_totals:
                row.append(self._format_cell(summary.get(category), attempts.get(category, 0)))
            row.append(self._format_status(outcome))
            table.add_row(*row)

        return table

    @staticmethod
    def _format_cell(value: Any, attempts: int) -> str:
        if value is None:
            return "[dim]-[/dim]"
        if isinstance(value, bool):
            return "[green]OK[/green]" if value else "[red]FAIL[/red]"
        style = "green" if value == attempts else ("yellow" if value else "red")
        return f"[{style}]{value}/{attempts}[/{style}]"

    @staticmethod
    def _format_status(outcome: IdentityOutcome) -> str:
        if outcome.failed:
            return "[red]ERROR[/red]"
        if outcome.total_ops and outcome.successful_ops == outcome.total_ops:
            return "[green]OK[/green]"
        return "[yellow]PARTIAL[/yellow]"

    def render(self, report: CycleReport) -> None:
        """Print the full report to the console."""
        self.console.print(
            "\n[bold cyan]Interaction Results Summary[/bold cyan]",
        )
        self.console.print(
            f"[dim]Finished: "
            f"{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}[/dim]\n",
        )
        self.console.print(self.render_summary_panel(report))
        self.console.print()
        if report.outcomes:
            self.console.print(self.render_identity_table(report))
        for outcome in report.outcomes:
            if outcome.failed:
                logger.error(
                    "Wallet %s failed: %s",
                    mask_address(outcome.address), outcome.error,
                )

    __call__ = render


async def countdown(
    seconds: float,
    wait: Optional[Callable[[float], Awaitable[Any]]] = None,
    console: Optional[Console] = None,
    stopped: Optional[Callable[[], bool]] = None,
) -> None:
    """Wait *seconds* while showing a once-per-second status line.

    Purely cosmetic: the total wait equals *seconds* regardless of how
    the display behaves.  Returns as soon as *stopped* reports true.
    """
    wait = wait or asyncio.sleep
    console = console or Console()
    stopped = stopped or (lambda: False)
    remaining = int(seconds)
    with console.status("") as status:
        while remaining > 0 and not stopped():
            status.update(
                f"[yellow]Waiting for next cycle in: "
                f"{remaining // 60}m {remaining % 60}s[/yellow]"
            )
            await wait(1)
            remaining -= 1
    leftover = seconds - int(seconds)
    if leftover > 0 and not stopped():
        await wait(leftover)
