"""Cycle scheduling engine for the DeFi interaction farm.

:class:`CycleRunner` drives the farm as an explicit state machine::

    IDLE --start--> RUNNING_CYCLE --all identities done--> COOLDOWN
                          ^                                   |
                          +------ cycle interval elapsed -----+

Within a cycle identities are processed strictly one at a time, in list
order.  For each identity the runner selects a proxy, opens a fresh
connection, builds the protocol's plan, runs it through the
:class:`~core.sequencer.OperationSequencer`, feeds the result back into the
:class:`~core.proxy_manager.ProxyPool` and records it in the
:class:`~core.analytics.CycleReport`.  Nothing that goes wrong for one
identity stops the cycle.

Classes:
    CycleState: States of the runner.
    CycleRunner: Main orchestration engine.
"""

import asyncio
import inspect
import logging
import random
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

from core.analytics import CycleReport, IdentityOutcome
from core.config import TimingConfig
from core.proxy_manager import ProxyPool
from core.sequencer import OperationPlan, OperationSequencer
from core.utils import mask_address
from core.wallet_manager import NoCredentialsError

logger = logging.getLogger(__name__)

ConnectFn = Callable[[Any, Optional[str]], Awaitable[Any]]
PlanFactory = Callable[[Any, Any], Any]
Reporter = Callable[[CycleReport], Any]
WaitFn = Callable[[float], Awaitable[Any]]


class CycleState(Enum):
    """States of :class:`CycleRunner`."""

    IDLE = "idle"
    RUNNING_CYCLE = "running_cycle"
    COOLDOWN = "cooldown"


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class CycleRunner:
    """
    Central orchestration engine for the farm.

    Iterates all identities once per cycle, aggregates their outcomes and
    cools down between cycles until :meth:`stop` is called.
    """

    def __init__(
        self,
        identities: Sequence[Any],
        proxy_pool: ProxyPool,
        sequencer: OperationSequencer,
        connect: ConnectFn,
        build_plan: PlanFactory,
        timing: TimingConfig,
        reporter: Optional[Reporter] = None,
        sleep: Optional[WaitFn] = None,
        cooldown_wait: Optional[WaitFn] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the runner.

        Args:
            identities: Ordered identity handles (must not be empty).
            proxy_pool: Pool used for per-identity proxy selection.
            sequencer: Runs one identity's plan.
            connect: ``async (identity, proxy) -> connection``; may raise.
            build_plan: ``(identity, connection) -> OperationPlan``
                (sync or async).
            timing: Inter-identity delay and cycle interval.
            reporter: Sink receiving each finalized report; failures are
                logged and ignored.
            sleep: Wait used for inter-identity pacing (defaults to
                :func:`asyncio.sleep`).
            cooldown_wait: Wait used for the inter-cycle cooldown
                (defaults to :meth:`sleep_unless_stopped`).
            rng: Random source for delay sampling.

        Raises:
            NoCredentialsError: If *identities* is empty.
        """
        if not identities:
            raise NoCredentialsError("No identities to process")
        self.identities = list(identities)
        self.proxy_pool = proxy_pool
        self.sequencer = sequencer
        self.connect = connect
        self.build_plan = build_plan
        self.timing = timing
        self.reporter = reporter
        self._sleep = sleep or asyncio.sleep
        self._cooldown_wait = cooldown_wait or self.sleep_unless_stopped
        self._rng = rng

        self.state = CycleState.IDLE
        self.cycle_number = 0
        self.current_report: Optional[CycleReport] = None
        self._stop_event = asyncio.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Signal the loop to end after the current step."""
        self._stop_event.set()

    async def sleep_unless_stopped(self, seconds: float) -> None:
        """Sleep up to *seconds*, returning early once stopped."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass  # Sleep completed

    async def _process_identity(self, index: int, identity: Any) -> IdentityOutcome:
        total = len(self.identities)
        address = getattr(identity, "address", str(identity))
        proxy = self.proxy_pool.select()
        logger.info(f"[{index + 1}/{total}] Wallet {mask_address(address)}")

        connection = None
        try:
            connection = await self.connect(identity, proxy)
            plan: OperationPlan = await _maybe_await(self.build_plan(identity, connection))
            outcome = await self.sequencer.run(identity, proxy, plan)
        except Exception as e:
            logger.error(f"Error processing wallet {index + 1}: {e}")
            outcome = IdentityOutcome(address=address, error=str(e) or type(e).__name__, proxy=proxy)
        finally:
            close = getattr(connection, "close", None)
            if close is not None:
                try:
                    await _maybe_await(close())
                except Exception as e:
                    logger.warning(f"Failed to close connection for wallet {index + 1}: {e}")

        self.proxy_pool.feedback(proxy, outcome.succeeded)
        return outcome

    async def run_cycle(self) -> CycleReport:
        """Process every identity once and return the finalized report."""
        self.state = CycleState.RUNNING_CYCLE
        self.cycle_number += 1
        report = CycleReport(cycle_number=self.cycle_number)
        self.current_report = report
        logger.info(f"=== STARTING CYCLE {self.cycle_number} ===")

        total = len(self.identities)
        for index, identity in enumerate(self.identities):
            if self.stopped:
                logger.info("Stop requested, ending cycle early")
                break
            report.record(await self._process_identity(index, identity))
            if index < total - 1:
                await self._sleep(self.timing.inter_identity_delay.sample(self._rng))

        report.finalize()
        logger.info(
            f"Cycle {self.cycle_number} complete: "
            f"{report.successful_ops}/{report.total_ops} operations succeeded"
        )
        if self.reporter is not None:
            try:
                await _maybe_await(self.reporter(report))
            except Exception as e:
                logger.warning(f"Failed to render cycle report: {e}")
        self.current_report = None
        return report

    async def cooldown(self) -> None:
        self.state = CycleState.COOLDOWN
        logger.info(
            f"Next cycle in {self.timing.cycle_interval_minutes} minutes"
        )
        await self._cooldown_wait(self.timing.cycle_interval_seconds)

    async def run_forever(self, max_cycles: Optional[int] = None) -> None:
        """Run cycles until stopped (or *max_cycles* completed).

        The cooldown after the final cycle of a bounded run is skipped.
        """
        logger.info(
            f"Cycle runner started: {len(self.identities)} wallets, "
            f"{len(self.proxy_pool)} proxies"
        )
        completed = 0
        try:
            while not self.stopped:
                await self.run_cycle()
                completed += 1
                if max_cycles is not None and completed >= max_cycles:
                    break
                if self.stopped:
                    break
                await self.cooldown()
        finally:
            self.state = CycleState.IDLE
        logger.info(f"Cycle runner stopped after {completed} cycle(s)")
