import random
from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, MagicMock

from core.config import DelayRange, RetryPolicy
from core.retry import OperationStatus, RetryExecutor
from core.sequencer import OperationSequencer, PlanBuilder, PlannedOperation

ADDRESS = "0x1111111111111111111111111111111111111111"


@pytest.fixture
def identity():
    return SimpleNamespace(address=ADDRESS)


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def sequencer(sleep):
    executor = RetryExecutor(RetryPolicy(max_retries=3, base_delay_ms=2000), sleep=sleep)
    return OperationSequencer(
        executor,
        DelayRange(min_ms=2000, max_ms=5000),
        sleep=sleep,
        rng=random.Random(1),
    )


class TestPlanBuilder:
    def test_add_and_repeat(self):
        plan = (
            PlanBuilder()
            .add("auth", lambda: True)
            .repeat("transfer", 3, lambda i: (lambda: i))
            .build()
        )
        assert [op.name for op in plan] == ["auth", "transfer_1", "transfer_2", "transfer_3"]
        assert [op.category for op in plan] == ["auth", "transfer", "transfer", "transfer"]
        assert plan.operations[2].fn() == 1
        assert plan.balance_probe is None

    def test_duplicate_name_rejected(self):
        builder = PlanBuilder().add("auth", lambda: True)
        with pytest.raises(ValueError, match="Duplicate"):
            builder.add("auth", lambda: True)

    def test_category_defaults_to_name(self):
        assert PlannedOperation("stake", lambda: True).category == "stake"

    def test_build_returns_copy(self):
        builder = PlanBuilder().add("a", lambda: True)
        plan = builder.build()
        builder.add("b", lambda: True)
        assert len(plan) == 1


class TestOperationSequencer:
    @pytest.mark.asyncio
    async def test_all_success(self, sequencer, identity, sleep):
        ops = [AsyncMock(return_value=True) for _ in range(3)]
        plan = PlanBuilder().add("a", ops[0]).add("b", ops[1]).add("c", ops[2]).build()

        outcome = await sequencer.run(identity, None, plan)

        assert outcome.address == ADDRESS
        assert outcome.total_ops == 3
        assert outcome.successful_ops == 3
        # Delays only between operations
        assert sleep.await_count == 2
        for call in sleep.await_args_list:
            assert 2.0 <= call.args[0] <= 5.0

    @pytest.mark.asyncio
    async def test_exhausted_operation_does_not_stop_plan(self, sequencer, identity):
        op1 = AsyncMock(return_value=True)
        op2 = AsyncMock(side_effect=ConnectionError("rpc down"))
        op3 = AsyncMock(return_value=True)
        plan = PlanBuilder().add("op1", op1).add("op2", op2).add("op3", op3).build()

        outcome = await sequencer.run(identity, "http://1.1.1.1:80", plan)

        assert op2.await_count == 4
        op3.assert_awaited_once()
        statuses = [r.status for r in outcome.results]
        assert statuses == [
            OperationStatus.SUCCESS, OperationStatus.FAILED, OperationStatus.SUCCESS,
        ]
        assert outcome.results[1].error == "rpc down"
        assert outcome.proxy == "http://1.1.1.1:80"
        assert not outcome.failed

    @pytest.mark.asyncio
    async def test_decline_recorded(self, sequencer, identity):
        declined = AsyncMock(return_value=False)
        plan = PlanBuilder().add("transfer_1", declined, "transfer").build()

        outcome = await sequencer.run(identity, None, plan)

        declined.assert_awaited_once()
        assert outcome.results[0].status is OperationStatus.DECLINED
        assert outcome.summary() == {"transfer": False}

    @pytest.mark.asyncio
    async def test_balance_probe_failure_swallowed(self, sequencer, identity):
        probe = AsyncMock(side_effect=RuntimeError("no balance"))
        plan = PlanBuilder().add("a", AsyncMock(return_value=True)).with_balance_probe(probe).build()

        outcome = await sequencer.run(identity, None, plan)

        assert probe.await_count == 2
        assert outcome.successful_ops == 1

    @pytest.mark.asyncio
    async def test_balance_probe_sync(self, sequencer, identity):
        probe = MagicMock(return_value={"native": "1 ETH"})
        plan = PlanBuilder().add("a", lambda: True).with_balance_probe(probe).build()
        await sequencer.run(identity, None, plan)
        assert probe.call_count == 2

    @pytest.mark.asyncio
    async def test_empty_plan(self, sequencer, identity, sleep):
        outcome = await sequencer.run(identity, None, PlanBuilder().build())
        assert outcome.total_ops == 0
        sleep.assert_not_called()
