"""
tests/test_scheduler.py

Scheduled refresh job: runs the collector and never raises into APScheduler.
"""

from adpulse.scheduler import jobs
from conftest import FakeSource, run


class _Exploding:
    async def refresh_all(self):
        raise RuntimeError("database gone")


def test_job_returns_report(monkeypatch, make_collector, store):
    collector = make_collector(FakeSource())
    monkeypatch.setattr(jobs, "get_collector", lambda: collector)

    report = run(jobs.refresh_cache_job())

    assert report.succeeded == 4
    assert collector.last_report is report
    assert len(store.list_current()) == 4


def test_job_swallows_errors(monkeypatch):
    monkeypatch.setattr(jobs, "get_collector", lambda: _Exploding())
    assert run(jobs.refresh_cache_job()) is None


def test_disabled_scheduler_does_not_start(monkeypatch):
    monkeypatch.setattr(jobs.settings, "scheduler_enabled", False)
    jobs.start_scheduler()
    assert not jobs.scheduler.running
