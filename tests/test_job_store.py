"""Tests for the SQLite job store."""
import threading

import pytest

from renderqueue.core.types import RenderJob, RenderJobStatus, RenderType
from renderqueue.exceptions import JobStoreError
from renderqueue.persistence.job_store import JobStore


class TestAddAndGet:
    """Tests for inserting and reading jobs."""

    def test_add_assigns_storage_key_and_queued_time(self, store, make_job):
        """Test that add sets id, queued_at and last_updated_at."""
        job = store.add(make_job())

        assert job.id is not None
        assert job.queued_at is not None
        assert job.last_updated_at is not None

    def test_get_round_trips_all_fields(self, store, make_job):
        """Test that every persisted field comes back unchanged."""
        job = make_job(
            RenderType.INTERPOLATION,
            render_settings='{"rife": {"multiplier": 4}}',
            is_two_stage=True,
            intermediate_path="/tmp/intermediate.mp4",
            selected_video_tracks="0,2",
            selected_audio_tracks="1",
            in_point=10,
            out_point=250,
            frame_rate=23.976,
            max_retries=5,
        )
        store.add(job)

        loaded = store.get(job.job_id)

        assert loaded is not None
        assert loaded.render_type == RenderType.INTERPOLATION
        assert loaded.is_two_stage is True
        assert loaded.render_settings == '{"rife": {"multiplier": 4}}'
        assert loaded.selected_video_tracks == "0,2"
        assert loaded.in_point == 10
        assert loaded.out_point == 250
        assert loaded.frame_rate == pytest.approx(23.976)
        assert loaded.max_retries == 5
        assert loaded.status == RenderJobStatus.PENDING

    def test_get_missing_returns_none(self, store):
        """Test that an unknown id is not an error."""
        assert store.get("does-not-exist") is None

    def test_duplicate_job_id_rejected(self, store, make_job):
        """Test that the external identifier is unique."""
        job = make_job()
        store.add(job)

        duplicate = RenderJob(job_id=job.job_id, source_path="a.mlt", output_path="b.mp4")
        with pytest.raises(JobStoreError):
            store.add(duplicate)

    def test_persists_across_instances(self, db_path, make_job):
        """Test that jobs survive reopening the database."""
        first = JobStore(db_path)
        job = first.add(make_job())
        first.close()

        second = JobStore(db_path)
        try:
            assert second.get(job.job_id) is not None
        finally:
            second.close()


class TestQueries:
    """Tests for status filters and ordering."""

    def test_get_all_newest_first(self, store, make_job):
        """Test that get_all orders by creation time descending."""
        jobs = [store.add(make_job()) for _ in range(3)]

        ids = [j.job_id for j in store.get_all()]

        assert ids == [j.job_id for j in reversed(jobs)]

    def test_get_by_status_oldest_first(self, store, make_job):
        """Test filtering by one status."""
        first = store.add(make_job())
        second = store.add(make_job())
        done = store.add(make_job())
        done.status = RenderJobStatus.COMPLETED
        store.update(done)

        pending = store.get_by_status(RenderJobStatus.PENDING)

        assert [j.job_id for j in pending] == [first.job_id, second.job_id]

    def test_get_by_status_accepts_several(self, store, make_job):
        """Test filtering by a set of statuses."""
        failed = store.add(make_job())
        failed.status = RenderJobStatus.FAILED
        store.update(failed)
        dead = store.add(make_job())
        dead.status = RenderJobStatus.DEAD_LETTER
        store.update(dead)
        store.add(make_job())

        result = store.get_by_status((RenderJobStatus.FAILED, RenderJobStatus.DEAD_LETTER))

        assert {j.job_id for j in result} == {failed.job_id, dead.job_id}

    def test_get_active(self, store, make_job):
        """Test that active means pending, running or paused."""
        statuses = [
            RenderJobStatus.PENDING,
            RenderJobStatus.RUNNING,
            RenderJobStatus.PAUSED,
            RenderJobStatus.COMPLETED,
            RenderJobStatus.CANCELLED,
        ]
        for status in statuses:
            job = store.add(make_job())
            job.status = status
            store.update(job)

        active = {j.status for j in store.get_active()}

        assert active == {
            RenderJobStatus.PENDING,
            RenderJobStatus.RUNNING,
            RenderJobStatus.PAUSED,
        }

    def test_count_by_status(self, store, make_job):
        """Test per-status counts."""
        store.add(make_job())
        store.add(make_job())
        job = store.add(make_job())
        job.status = RenderJobStatus.FAILED
        store.update(job)

        counts = store.count_by_status()

        assert counts[RenderJobStatus.PENDING] == 2
        assert counts[RenderJobStatus.FAILED] == 1
        assert RenderJobStatus.RUNNING not in counts


class TestUpdates:
    """Tests for full updates, compare-and-set and progress writes."""

    def test_update_missing_job_returns_false(self, store, make_job):
        """Test that updating an unknown job is a logged no-op."""
        assert store.update(make_job()) is False

    def test_compare_and_set_rejects_stale_status(self, store, make_job):
        """Test that expected_status guards the write."""
        job = store.add(make_job())
        job.status = RenderJobStatus.CANCELLED
        assert store.update(job) is True

        job.status = RenderJobStatus.COMPLETED
        assert store.update(job, expected_status=RenderJobStatus.RUNNING) is False
        assert store.get(job.job_id).status == RenderJobStatus.CANCELLED

    def test_update_progress_only_touches_running_jobs(self, store, make_job):
        """Test that progress for a non-running job is dropped."""
        job = store.add(make_job())

        assert store.update_progress(job.job_id, 50.0, 120) is False

        store.claim(job.job_id, 1, "host")
        assert store.update_progress(job.job_id, 50.0, 120) is True

        loaded = store.get(job.job_id)
        assert loaded.progress_percentage == 50.0
        assert loaded.current_frame == 120

    def test_update_progress_clamps_percentage(self, store, make_job):
        """Test that stored progress stays within 0-100."""
        job = store.add(make_job())
        store.claim(job.job_id, 1, "host")

        store.update_progress(job.job_id, 140.0, 10)

        assert store.get(job.job_id).progress_percentage == 100.0

    def test_delete(self, store, make_job):
        """Test deleting existing and missing jobs."""
        job = store.add(make_job())

        assert store.delete(job.job_id) is True
        assert store.delete(job.job_id) is False
        assert store.get(job.job_id) is None

    def test_delete_by_status(self, store, make_job):
        """Test bulk deletion of finished jobs."""
        for status in (RenderJobStatus.COMPLETED, RenderJobStatus.CANCELLED, RenderJobStatus.PENDING):
            job = store.add(make_job())
            job.status = status
            store.update(job)

        removed = store.delete_by_status((RenderJobStatus.COMPLETED, RenderJobStatus.CANCELLED))

        assert removed == 2
        assert [j.status for j in store.get_all()] == [RenderJobStatus.PENDING]


class TestClaim:
    """Tests for atomic claiming."""

    def test_claim_next_pending_takes_oldest(self, store, make_job):
        """Test that the oldest pending job is claimed with ownership."""
        first = store.add(make_job())
        store.add(make_job())

        claimed = store.claim_next_pending(100, "render-box")

        assert claimed.job_id == first.job_id
        assert claimed.status == RenderJobStatus.RUNNING
        assert claimed.process_id == 100
        assert claimed.machine_name == "render-box"
        assert claimed.started_at is not None

    def test_claim_next_pending_empty(self, store):
        """Test that an empty queue yields None."""
        assert store.claim_next_pending(1, "host") is None

    def test_claim_specific_job_only_when_pending(self, store, make_job):
        """Test claiming one job by id."""
        job = store.add(make_job())

        assert store.claim(job.job_id, 1, "host") is not None
        assert store.claim(job.job_id, 2, "host") is None

    def test_concurrent_claims_hand_out_one_job_once(self, db_path, make_job):
        """Test that two racing claimers never both get the single pending job."""
        setup = JobStore(db_path)
        setup.add(make_job())
        setup.close()

        stores = [JobStore(db_path), JobStore(db_path)]
        barrier = threading.Barrier(2)
        results = [None, None]

        def claim(index):
            barrier.wait()
            results[index] = stores[index].claim_next_pending(index + 1, "host")

        threads = [threading.Thread(target=claim, args=(i,)) for i in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        for s in stores:
            s.close()

        claimed = [r for r in results if r is not None]
        assert len(claimed) == 1
        assert results.count(None) == 1

    def test_get_crashed_matches_other_processes_on_this_machine(self, store, make_job):
        """Test crash detection by ownership."""
        stale = store.add(make_job())
        store.claim(stale.job_id, 111, "render-box")
        mine = store.add(make_job())
        store.claim(mine.job_id, 222, "render-box")
        remote = store.add(make_job())
        store.claim(remote.job_id, 333, "other-box")

        crashed = store.get_crashed(222, "render-box")

        assert [j.job_id for j in crashed] == [stale.job_id]
