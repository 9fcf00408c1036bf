import io

import pytest
from rich.console import Console
from unittest.mock import AsyncMock

from core.analytics import CycleReport, IdentityOutcome, OperationResult
from core.monitoring import CycleReportRenderer, countdown
from core.retry import OperationStatus

ADDR_1 = "0x1111111111111111111111111111111111111111"
ADDR_2 = "0x2222222222222222222222222222222222222222"


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=200, force_terminal=False)


@pytest.fixture
def report():
    report = CycleReport(cycle_number=2, started_at=0.0)
    report.record(IdentityOutcome(
        address=ADDR_1,
        results=(
            OperationResult("auth", "auth", OperationStatus.SUCCESS),
            OperationResult("transfer_1", "transfer", OperationStatus.SUCCESS),
            OperationResult("transfer_2", "transfer", OperationStatus.DECLINED),
        ),
    ))
    report.record(IdentityOutcome(address=ADDR_2, error="connect failed"))
    return report.finalize(now=42.0)


class TestCycleReportRenderer:
    def test_render_output(self, console, report):
        renderer = CycleReportRenderer(console)
        renderer(report)
        output = console.file.getvalue()
        assert "Cycle 2 Summary" in output
        assert "Wallet Details" in output
        assert "0x1111...1111" in output
        assert "2/3" in output
        assert "ERROR" in output
        assert "PARTIAL" in output

    def test_format_cell(self):
        assert "OK" in CycleReportRenderer._format_cell(True, 1)
        assert "FAIL" in CycleReportRenderer._format_cell(False, 1)
        assert "3/3" in CycleReportRenderer._format_cell(3, 3)
        assert "-" in CycleReportRenderer._format_cell(None, 0)

    def test_status_ok(self):
        outcome = IdentityOutcome(
            address=ADDR_1,
            results=(OperationResult("auth", "auth", OperationStatus.SUCCESS),),
        )
        assert "OK" in CycleReportRenderer._format_status(outcome)

    def test_empty_report(self, console):
        CycleReportRenderer(console).render(CycleReport().finalize())
        assert "Cycle 1 Summary" in console.file.getvalue()


class TestCountdown:
    @pytest.mark.asyncio
    async def test_total_wait_matches(self, console):
        wait = AsyncMock()
        await countdown(3.5, wait=wait, console=console)
        waits = [c.args[0] for c in wait.await_args_list]
        assert waits == [1, 1, 1, 0.5]
        assert sum(waits) == pytest.approx(3.5)

    @pytest.mark.asyncio
    async def test_stops_early(self, console):
        state = {"stopped": False}

        async def wait(seconds):
            state["stopped"] = True

        wait_mock = AsyncMock(side_effect=wait)
        await countdown(1800.5, wait=wait_mock, console=console, stopped=lambda: state["stopped"])
        assert wait_mock.await_count == 1
