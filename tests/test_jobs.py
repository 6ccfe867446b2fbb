# tests/test_jobs.py
import asyncio

import pytest

from stackprobe.exceptions import JobAlreadyRunningError
from stackprobe.jobs import JobTracker


class TestJobTracker:
    """Tests for the in-process background job registry."""

    @pytest.mark.asyncio
    async def test_submit_and_wait(self):
        tracker = JobTracker()
        results = []

        async def work():
            await asyncio.sleep(0)
            results.append("done")

        tracker.submit("render:1", work())
        assert tracker.is_running("render:1")
        await tracker.wait("render:1")

        assert results == ["done"]
        assert not tracker.is_running("render:1")
        assert tracker.running() == []

    @pytest.mark.asyncio
    async def test_duplicate_key_rejected(self):
        tracker = JobTracker()
        gate = asyncio.Event()

        tracker.submit("probe:1", gate.wait())
        with pytest.raises(JobAlreadyRunningError):
            tracker.submit("probe:1", gate.wait())

        gate.set()
        await tracker.wait()

    @pytest.mark.asyncio
    async def test_key_reusable_after_finish(self):
        tracker = JobTracker()

        async def noop():
            return None

        tracker.submit("render:1", noop())
        await tracker.wait("render:1")
        tracker.submit("render:1", noop())
        await tracker.wait()

    @pytest.mark.asyncio
    async def test_failed_job_frees_key(self):
        tracker = JobTracker()

        async def boom():
            raise RuntimeError("render exploded")

        task = tracker.submit("render:1", boom())
        await tracker.wait("render:1")

        assert task.done()
        assert isinstance(task.exception(), RuntimeError)
        assert not tracker.is_running("render:1")

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_jobs(self):
        tracker = JobTracker()
        task = tracker.submit("render:1", asyncio.sleep(60))

        await tracker.shutdown()

        assert task.cancelled()
        assert tracker.running() == []

    @pytest.mark.asyncio
    async def test_wait_for_unknown_key(self):
        await JobTracker().wait("missing")
