"""Tests for the background scheduler wiring."""
from marketship.jobs import logistics_jobs
from marketship.jobs.scheduler import get_job_status, run_job, shutdown_scheduler, start_scheduler


class TestScheduler:
    async def test_registers_sync_and_purge_jobs(self):
        start_scheduler()
        try:
            jobs = {job["id"]: job for job in get_job_status()}
        finally:
            shutdown_scheduler()

        assert set(jobs) == {"sync_logistics", "purge_estimate_cache"}
        assert "interval" in jobs["sync_logistics"]["trigger"]
        assert "cron" in jobs["purge_estimate_cache"]["trigger"]

    async def test_run_job_contains_failures(self, monkeypatch):
        async def failing_sync():
            raise RuntimeError("carrier outage")

        monkeypatch.setattr(logistics_jobs, "sync_logistics", failing_sync)

        assert await run_job("sync_logistics") is None

    async def test_run_job_invokes_job_body(self, monkeypatch):
        calls = []

        async def purge():
            calls.append("purge")
            return 3

        monkeypatch.setattr(logistics_jobs, "purge_estimate_cache", purge)

        await run_job("purge_estimate_cache")

        assert calls == ["purge"]
