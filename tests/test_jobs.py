"""
Unit tests for the in-memory job registry.
"""

import re
import threading
from datetime import timedelta

import pytest

from automix.jobs import (
    COMPLETE,
    FAILED,
    PENDING,
    PROCESSING,
    JobManager,
    MixResult,
    TrackEntry,
    generate_job_id,
)


@pytest.fixture
def jobs():
    return JobManager()


def sample_result(name="Automix-Test"):
    return MixResult(
        mix_name=name,
        mix_url=f"/mixes/{name}.mp3",
        tracklist=[TrackEntry(1, "A", "Song", 124.0, "8A", 6), TrackEntry(2, "B", "Tune", 125.0, "9A", 7)],
        duration=612.345,
        transition_count=1,
        harmonic_percentage=100,
    )


class TestJobIds:
    def test_format(self):
        assert re.fullmatch(r"mix-\d{13}-[0-9a-z]{6}", generate_job_id())

    def test_unique(self, jobs):
        ids = {jobs.create("p", 3).job_id for _ in range(200)}
        assert len(ids) == 200


class TestLifecycle:
    """pending -> processing -> complete | failed"""

    def test_created_pending(self, jobs):
        job = jobs.create("deep house", 8)
        assert job.status == PENDING
        assert job.progress == 0
        assert job.track_count == 8
        assert jobs.get(job.job_id).prompt == "deep house"

    def test_update_moves_to_processing(self, jobs):
        job_id = jobs.create("p", 3).job_id
        jobs.update(job_id, 20, "Selecting tracks...")
        job = jobs.get(job_id)
        assert job.status == PROCESSING
        assert job.progress == 20
        assert job.progress_message == "Selecting tracks..."

    def test_progress_never_decreases(self, jobs):
        job_id = jobs.create("p", 3).job_id
        jobs.update(job_id, 40, "a")
        jobs.update(job_id, 30, "b")
        assert jobs.get(job_id).progress == 40

    def test_progress_capped_below_100(self, jobs):
        job_id = jobs.create("p", 3).job_id
        jobs.update(job_id, 100, "almost")
        assert jobs.get(job_id).progress == 99

    def test_complete(self, jobs):
        job_id = jobs.create("p", 3).job_id
        jobs.update(job_id, 50, "rendering")
        jobs.complete(job_id, sample_result())
        job = jobs.get(job_id)
        assert job.status == COMPLETE
        assert job.progress == 100
        assert job.completed_at is not None

    def test_fail(self, jobs):
        job_id = jobs.create("p", 3).job_id
        jobs.fail(job_id, "Render timeout")
        job = jobs.get(job_id)
        assert job.status == FAILED
        assert job.error == "Render timeout"
        assert job.progress_message == "Error: Render timeout"

    def test_terminal_is_final(self, jobs):
        """No update, complete or fail changes a terminal job."""
        job_id = jobs.create("p", 3).job_id
        jobs.fail(job_id, "first")
        jobs.update(job_id, 80, "late update")
        jobs.complete(job_id, sample_result())
        jobs.fail(job_id, "second")
        job = jobs.get(job_id)
        assert job.status == FAILED
        assert job.error == "first"
        assert job.progress == 0

    def test_unknown_job(self, jobs):
        assert jobs.get("mix-0-nothing") is None
        jobs.update("mix-0-nothing", 10, "x")
        jobs.fail("mix-0-nothing", "x")
        assert len(jobs) == 0

    def test_snapshots_are_copies(self, jobs):
        job = jobs.create("p", 3)
        job.status = COMPLETE
        assert jobs.get(job.job_id).status == PENDING


class TestStatusPayload:
    def test_pending_payload(self, jobs):
        payload = jobs.create("p", 3).to_status_dict()
        assert payload["status"] == "pending"
        assert payload["progress"] == 0
        assert "result" not in payload
        assert "error" not in payload

    def test_complete_payload(self, jobs):
        job_id = jobs.create("p", 3).job_id
        jobs.complete(job_id, sample_result())
        payload = jobs.get(job_id).to_status_dict()
        result = payload["result"]
        assert result["mixName"] == "Automix-Test"
        assert result["mixUrl"] == "/mixes/Automix-Test.mp3"
        assert result["duration"] == 612.3
        assert result["transitionCount"] == 1
        assert result["harmonicPercentage"] == 100
        assert result["tracklist"][0] == {
            "position": 1, "artist": "A", "title": "Song", "bpm": 124.0, "key": "8A", "energy": 6,
        }
        assert payload["completedAt"]

    def test_failed_payload(self, jobs):
        job_id = jobs.create("p", 3).job_id
        jobs.fail(job_id, "boom")
        payload = jobs.get(job_id).to_status_dict()
        assert payload["status"] == "failed"
        assert payload["error"] == "boom"
        assert "result" not in payload


class TestHousekeeping:
    def test_list_recent(self, jobs):
        first = jobs.create("one", 3).job_id
        second = jobs.create("two", 3).job_id
        jobs.update(first, 10, "touched")
        jobs._jobs[second].updated_at -= timedelta(seconds=5)
        recent = jobs.list_recent(limit=1)
        assert [j.job_id for j in recent] == [first]
        assert len(jobs.list_recent()) == 2
        assert second in {j.job_id for j in jobs.list_recent()}

    def test_cleanup_drops_old_terminal_jobs(self, jobs):
        old_done = jobs.create("old", 3).job_id
        old_running = jobs.create("running", 3).job_id
        fresh_done = jobs.create("fresh", 3).job_id
        jobs.fail(old_done, "x")
        jobs.update(old_running, 10, "working")
        jobs.fail(fresh_done, "y")

        # Age two of them past the retention window
        for job_id in (old_done, old_running):
            jobs._jobs[job_id].updated_at -= timedelta(hours=48)

        assert jobs.cleanup(max_age_hours=24) == 1
        assert jobs.get(old_done) is None
        assert jobs.get(old_running) is not None
        assert jobs.get(fresh_done) is not None


class TestConcurrency:
    def test_parallel_updates(self, jobs):
        """Concurrent reporters leave the job consistent and monotone."""
        job_id = jobs.create("p", 3).job_id

        def report(start):
            for p in range(start, 99, 4):
                jobs.update(job_id, p, f"{p}%")

        threads = [threading.Thread(target=report, args=(s,)) for s in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert jobs.get(job_id).progress == 98
        assert jobs.get(job_id).status == PROCESSING


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
