import pytest

from core.analytics import CycleReport, IdentityOutcome, OperationResult
from core.retry import OperationStatus

S, D, F = OperationStatus.SUCCESS, OperationStatus.DECLINED, OperationStatus.FAILED


def outcome(*results, error=None, address="0xabc"):
    return IdentityOutcome(
        address=address,
        results=tuple(OperationResult(name, cat, status) for name, cat, status in results),
        error=error,
    )


class TestIdentityOutcome:
    def test_counts(self):
        o = outcome(("auth", "auth", S), ("transfer_1", "transfer", S),
                    ("transfer_2", "transfer", D), ("transfer_3", "transfer", F))
        assert o.total_ops == 4
        assert o.successful_ops == 2
        assert o.category_attempts() == {"auth": 1, "transfer": 3}
        assert o.category_successes() == {"auth": 1, "transfer": 1}
        assert o.summary() == {"auth": True, "transfer": 1}

    def test_succeeded_rules(self):
        assert outcome(("a", "a", S)).succeeded
        assert outcome(("a", "a", D)).succeeded
        assert outcome(("a", "a", F), ("b", "b", D)).succeeded
        assert not outcome(("a", "a", F), ("b", "b", F)).succeeded
        assert not outcome(error="connect failed").succeeded
        assert outcome().succeeded

    def test_immutable(self):
        o = outcome(("a", "a", S))
        with pytest.raises(AttributeError):
            o.error = "late"


class TestCycleReport:
    def test_record_aggregates(self):
        report = CycleReport(cycle_number=3)
        report.record(outcome(("auth", "auth", S), ("transfer_1", "transfer", S)))
        report.record(outcome(("auth", "auth", F), ("transfer_1", "transfer", S)))
        report.record(outcome(error="boom"))

        assert report.identities_processed == 3
        assert report.identities_failed == 1
        assert report.total_ops == 4
        assert report.successful_ops == 3
        assert report.category_totals == {"auth": 2, "transfer": 2}
        assert report.category_successes == {"auth": 1, "transfer": 2}
        assert report.success_rate == pytest.approx(75.0)

    def test_empty_report(self):
        report = CycleReport()
        assert report.success_rate == 0.0
        assert report.duration_seconds is None

    def test_finalize(self):
        report = CycleReport(started_at=100.0)
        report.finalize(now=160.0)
        assert report.duration_seconds == 60.0
        # Finalize is idempotent
        report.finalize(now=999.0)
        assert report.finished_at == 160.0
        with pytest.raises(RuntimeError):
            report.record(outcome(("a", "a", S)))
