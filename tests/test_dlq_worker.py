"""
Tests for the DLQ worker: scheduler job configuration, the job wrapper and
the command line entry point.
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from clca_bridge.models.dlq import DLQProcessResult
from clca_bridge.workers import dlq_worker
from clca_bridge.workers.dlq_worker import JOB_ID, create_scheduler, process_dlq_job


class TestProcessDLQJob:
    @pytest.mark.asyncio
    async def test_returns_batch_result(self):
        dlq = MagicMock()
        dlq.process_dlq = AsyncMock(return_value=DLQProcessResult(processed=2, succeeded=2))

        result = await process_dlq_job(dlq)

        assert result.succeeded == 2

    @pytest.mark.asyncio
    async def test_swallows_unexpected_errors(self):
        dlq = MagicMock()
        dlq.process_dlq = AsyncMock(side_effect=RuntimeError("boom"))

        assert await process_dlq_job(dlq) is None


class TestCreateScheduler:
    @pytest.mark.asyncio
    async def test_single_serial_job(self, dlq):
        scheduler = create_scheduler(dlq, interval_seconds=30)
        scheduler.start(paused=True)
        try:
            job = scheduler.get_job(JOB_ID)

            assert job is not None
            assert job.max_instances == 1
            assert job.coalesce is True
            assert job.trigger.interval == timedelta(seconds=30)
            assert job.args == (dlq,)
            assert len(scheduler.get_jobs()) == 1
        finally:
            scheduler.shutdown(wait=False)


class TestMain:
    def test_once_flag_and_interval(self, monkeypatch):
        run = AsyncMock()
        monkeypatch.setattr(dlq_worker, "_run", run)
        monkeypatch.setattr(dlq_worker, "configure_structured_logging", MagicMock())

        dlq_worker.main(["--once", "--interval", "15"])

        run.assert_awaited_once_with(True, 15.0)

    @pytest.mark.asyncio
    async def test_run_once_prints_result(self, capsys):
        await dlq_worker._run(once=True, interval=None)

        assert json.loads(capsys.readouterr().out) == {
            "processed": 0,
            "succeeded": 0,
            "failed": 0,
            "exhausted": 0,
        }
