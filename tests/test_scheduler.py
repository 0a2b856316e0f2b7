from datetime import date

from recurrence import JobReport
from scheduler import SchedulerManager


def test_start_respects_disabled_setting(monkeypatch):
    manager = SchedulerManager()
    monkeypatch.setattr(manager.settings, "scheduler_enabled", False)
    calls = []
    manager.run_jobs = lambda source="manual", today=None: calls.append(source)

    manager.start()
    assert not manager.scheduler.running
    assert calls == []


def test_run_job_logs_and_swallows_failures(caplog):
    manager = SchedulerManager()

    def boom(source="manual", today=None):
        raise RuntimeError("database unavailable")

    manager.run_jobs = boom
    manager._run_job("hourly_safety_net")
    assert "source=hourly_safety_net aborted" in caplog.text


def test_job_report_as_dict():
    report = JobReport("recurring_expense_job", date(2024, 4, 15), [3], 1, [7])
    assert report.as_dict() == {
        "job": "recurring_expense_job",
        "run_date": "2024-04-15",
        "materialized": [3],
        "skipped": 1,
        "failed": [7],
    }
