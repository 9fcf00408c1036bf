"""Per-identity operation sequencing.

Protocol code never subclasses anything here.  It assembles an
:class:`OperationPlan` (an ordered list of named, fallible callbacks) with
:class:`PlanBuilder`, and :class:`OperationSequencer` runs that plan for
one identity:

1. Log a balance snapshot (failures swallowed).
2. Run each operation through the :class:`~core.retry.RetryExecutor`.
3. Record every outcome; an exhausted operation is logged and recorded
   as ``FAILED`` and the next operation still runs.
4. Sleep a random ``inter_operation_delay`` between operations.
5. Log a closing balance snapshot.

The sequencer holds no state between calls.
"""

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from core.analytics import IdentityOutcome, OperationResult
from core.config import DelayRange
from core.retry import OperationStatus, RetryExecutor
from core.utils import mask_address, mask_proxy

logger = logging.getLogger(__name__)

BalanceProbe = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class PlannedOperation:
    """One step of a plan.

    Attributes:
        name: Unique, human-readable step name.
        fn: No-argument callable (sync or async) returning ``True``,
            ``False`` / ``OperationStatus``, or raising.
        category: Aggregation bucket; defaults to *name*.
    """

    name: str
    fn: Callable[[], Any]
    category: str = ""

    def __post_init__(self) -> None:
        if not self.category:
            object.__setattr__(self, "category", self.name)


@dataclass
class OperationPlan:
    """Ordered operations plus an optional balance snapshot hook."""

    operations: List[PlannedOperation] = field(default_factory=list)
    balance_probe: Optional[BalanceProbe] = None

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self):
        return iter(self.operations)


class PlanBuilder:
    """Fluent assembler for :class:`OperationPlan`.

    Usage::

        plan = (
            PlanBuilder()
            .add("auth", api.authenticate)
            .repeat("transfer", 3, lambda i: partial(transfer, i))
            .with_balance_probe(get_balances)
            .build()
        )
    """

    def __init__(self) -> None:
        self._operations: List[PlannedOperation] = []
        self._balance_probe: Optional[BalanceProbe] = None

    def add(
        self,
        name: str,
        fn: Callable[[], Any],
        category: Optional[str] = None,
    ) -> "PlanBuilder":
        if any(op.name == name for op in self._operations):
            raise ValueError(f"Duplicate operation name: {name}")
        self._operations.append(
            PlannedOperation(name=name, fn=fn, category=category or name)
        )
        return self

    def repeat(
        self,
        category: str,
        count: int,
        factory: Callable[[int], Callable[[], Any]],
    ) -> "PlanBuilder":
        """Add *count* operations named ``<category>_<n>`` (1-based).

        *factory* receives the zero-based index and returns the
        callback for that step.
        """
        for index in range(count):
            self.add(f"{category}_{index + 1}", factory(index), category)
        return self

    def with_balance_probe(self, probe: BalanceProbe) -> "PlanBuilder":
        self._balance_probe = probe
        return self

    def build(self) -> OperationPlan:
        return OperationPlan(
            operations=list(self._operations),
            balance_probe=self._balance_probe,
        )


class OperationSequencer:
    """Run an :class:`OperationPlan` for one identity."""

    def __init__(
        self,
        executor: RetryExecutor,
        inter_operation_delay: DelayRange,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.executor = executor
        self.inter_operation_delay = inter_operation_delay
        self._sleep = sleep or asyncio.sleep
        self._rng = rng

    async def _snapshot(self, plan: OperationPlan, label: str, address: str) -> None:
        if plan.balance_probe is None:
            return
        try:
            balance = plan.balance_probe()
            if inspect.isawaitable(balance):
                balance = await balance
            logger.info("%s balance %s: %s", label, mask_address(address), balance)
        except Exception as e:
            logger.warning(
                "Failed to fetch %s balance for %s: %s",
                label.lower(), mask_address(address), e,
            )

    async def run(
        self,
        identity: Any,
        proxy: Optional[str],
        plan: OperationPlan,
    ) -> IdentityOutcome:
        """Execute *plan* in order for *identity*.

        Args:
            identity: Credential handle; only its ``address`` is read.
            proxy: Proxy the identity's connection uses (for logging and
                for the returned outcome).
            plan: Operations to run.

        Returns:
            A frozen :class:`IdentityOutcome` with one result per
            operation, in plan order.
        """
        address = getattr(identity, "address", str(identity))
        logger.info(
            "Processing %s via %s (%d operations)",
            mask_address(address), mask_proxy(proxy), len(plan),
        )
        await self._snapshot(plan, "Initial", address)

        results: List[OperationResult] = []
        operations = plan.operations
        for index, step in enumerate(operations):
            try:
                value = await self.executor.execute(step.name, step.fn)
                status = OperationStatus.from_value(value)
                results.append(OperationResult(step.name, step.category, status))
                if status is OperationStatus.SUCCESS:
                    logger.info("%s completed", step.name)
                else:
                    logger.warning("%s %s", step.name, status.value)
            except Exception as e:
                logger.error("%s gave up: %s", step.name, e)
                results.append(
                    OperationResult(
                        step.name, step.category, OperationStatus.FAILED, str(e),
                    )
                )

            if index < len(operations) - 1:
                await self._sleep(self.inter_operation_delay.sample(self._rng))

        await self._snapshot(plan, "Final", address)

        outcome = IdentityOutcome(
            address=address, results=tuple(results), proxy=proxy,
        )
        logger.info(
            "%s finished: %d/%d operations succeeded",
            mask_address(address), outcome.successful_ops, outcome.total_ops,
        )
        return outcome
