"""Tests for the batch job runner.

Covers:
- Shared-secret check on external triggers
- Per-job lock: an overlapping trigger is skipped
- Job failures reported without stopping "all"
- Summaries of the real passes against the test database
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from placement_guard.check_ins.models import CheckInRunResult, DispatchResult, MaterializeResult
from placement_guard.errors import InvalidInputError, UnauthorizedTriggerError
from placement_guard.expiry.models import ExpiryRunResult, ExpiryWarningResult
from placement_guard.jobs import BatchJobRunner
from placement_guard.payments.models import ReminderRunResult


@pytest.fixture
def passes(now):
    check_ins = Mock()
    check_ins.run.return_value = CheckInRunResult(
        materialize=MaterializeResult(introductions_scanned=2, created=3),
        dispatch=DispatchResult(run_started_at=now, run_finished_at=now, due=0),
    )
    expiry = Mock()
    expiry.run.return_value = ExpiryRunResult(warning=ExpiryWarningResult(expiring=1), expired=2)
    payments = Mock()
    payments.send_reminders.return_value = ReminderRunResult(overdue=4, sent=3, suppressed=1)
    return check_ins, expiry, payments


@pytest.fixture
def runner(passes):
    return BatchJobRunner(*passes, trigger_secret="s3cret")


class TestTrigger:
    def test_valid_secret_runs_job(self, runner, passes, now):
        result = runner.trigger("expiry", "s3cret", now=now)

        assert len(result.results) == 1
        assert result.results[0].summary == {"expiring": 1, "expired": 2}
        passes[1].run.assert_called_once_with(now)

    @pytest.mark.parametrize("secret", [None, "", "wrong"])
    def test_bad_secret_rejected(self, runner, passes, secret):
        with pytest.raises(UnauthorizedTriggerError):
            runner.trigger("expiry", secret)
        passes[1].run.assert_not_called()

    def test_unset_secret_rejects_every_trigger(self, passes):
        runner = BatchJobRunner(*passes, trigger_secret=None)

        with pytest.raises(UnauthorizedTriggerError):
            runner.trigger("expiry", "anything")

    def test_unknown_job(self, runner):
        with pytest.raises(InvalidInputError):
            runner.trigger("reindex", "s3cret")


class TestRun:
    def test_all_runs_every_job_in_order(self, runner, now):
        result = runner.run("all", now=now)

        assert [r.job for r in result.results] == ["check-ins", "expiry", "payment-reminders"]
        assert result.results[0].summary == {
            "materialized": 3,
            "due": 0,
            "sent": 0,
            "skipped": 0,
            "failed": 0,
        }
        assert result.results[2].summary == {"overdue": 4, "sent": 3, "suppressed": 1, "failed": 0}
        assert not result.had_errors
        assert len({r.run_id for r in result.results}) == 3

    def test_failing_job_does_not_stop_the_rest(self, runner, passes, now):
        passes[0].run.side_effect = RuntimeError("database is locked")

        result = runner.run("all", now=now)

        assert result.had_errors
        assert result.results[0].error_message == "database is locked"
        assert not result.results[1].had_errors
        passes[2].send_reminders.assert_called_once()

    def test_overlapping_run_is_skipped(self, runner, passes):
        runner._locks["payment-reminders"].acquire()
        try:
            result = runner.run("payment-reminders")
        finally:
            runner._locks["payment-reminders"].release()

        assert result.skipped
        passes[2].send_reminders.assert_not_called()

    def test_lock_released_after_failure(self, runner, passes):
        passes[1].run.side_effect = RuntimeError("boom")
        runner.run("expiry")

        passes[1].run.side_effect = None
        result = runner.run("expiry")

        assert not result.skipped
        assert not result.had_errors


class TestWiredJobs:
    def test_check_in_job_dispatches_due_check_ins(self, services, introduced, gateway, now):
        result = services.jobs.trigger("check-ins", "s3cret", now=now + timedelta(days=30))

        summary = result.results[0].summary
        assert summary["due"] == 1
        assert summary["sent"] == 1
        assert gateway.send_check_in.call_count == 1

    def test_expiry_job_expires_lapsed_introductions(self, services, introduced, now):
        result = services.jobs.run("expiry", now=now + timedelta(days=400))

        assert result.results[0].summary == {"expiring": 0, "expired": 1}
