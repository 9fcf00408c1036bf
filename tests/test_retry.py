import logging

import pytest
from unittest.mock import AsyncMock, MagicMock

from core.config import RetryPolicy
from core.retry import OperationStatus, RetryExecutor


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def executor(sleep):
    return RetryExecutor(RetryPolicy(max_retries=3, base_delay_ms=2000), sleep=sleep)


class TestOperationStatus:
    def test_from_value(self):
        assert OperationStatus.from_value(True) is OperationStatus.SUCCESS
        assert OperationStatus.from_value({"tx": "0x1"}) is OperationStatus.SUCCESS
        assert OperationStatus.from_value(False) is OperationStatus.DECLINED
        assert OperationStatus.from_value(None) is OperationStatus.DECLINED
        assert OperationStatus.from_value(OperationStatus.FAILED) is OperationStatus.FAILED


class TestRetryExecutor:
    @pytest.mark.asyncio
    async def test_success_first_try(self, executor, sleep):
        op = AsyncMock(return_value=True)
        assert await executor.execute("auth", op) is True
        op.assert_awaited_once()
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_sync_operation(self, executor):
        op = MagicMock(return_value=True)
        assert await executor.execute("sync", op) is True
        op.assert_called_once()

    @pytest.mark.asyncio
    async def test_decline_not_retried(self, executor, sleep):
        op = AsyncMock(return_value=False)
        assert await executor.execute("transfer_1", op) is False
        assert op.await_count == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_errors(self, executor, sleep):
        op = AsyncMock(side_effect=[ConnectionError("reset"), TimeoutError("slow"), True])
        assert await executor.execute("faucet", op) is True
        assert op.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [4.0, 8.0]

    @pytest.mark.asyncio
    async def test_permanent_failure_raises_terminal_error(self, executor, sleep, caplog):
        errors = [RuntimeError(f"boom {i}") for i in range(10)]
        op = AsyncMock(side_effect=errors)

        with caplog.at_level(logging.WARNING, logger="core.retry"):
            with pytest.raises(RuntimeError, match="boom 3"):
                await executor.execute("stake", op)

        assert op.await_count == 4
        # 2**k * base for k = 1..3
        assert [c.args[0] for c in sleep.await_args_list] == [4.0, 8.0, 16.0]
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        error_logs = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(warnings) == 3
        assert len(error_logs) == 1

    @pytest.mark.asyncio
    async def test_zero_retries(self, sleep):
        executor = RetryExecutor(RetryPolicy(max_retries=0), sleep=sleep)
        op = AsyncMock(side_effect=ValueError("nope"))
        with pytest.raises(ValueError):
            await executor.execute("once", op)
        assert op.await_count == 1
        sleep.assert_not_called()
