"""End-to-end restore tests: snapshot, mutate, restore, crash, resume."""

import shutil
from datetime import timedelta
from pathlib import Path

import pytest

from conftest import read_tree, write_tree
from snapback import sync
from snapback.errors import BusyError, NotFoundError, ProviderError, RestoreError
from snapback.log import read_logs
from snapback.models import RestoreStatus, utcnow


def _mutate(job):
    (job / "a.txt").write_text("alpha, edited after the snapshot")
    (job / "b.txt").unlink()
    (job / "c.txt").write_text("new file")
    write_tree(job, {"scratch/tmp.dat": "scratch"})


class TestRestore:

    def test_restore_round_trip(self, restorer, volume, provider):
        job = volume / "jobs" / "job1"
        original = read_tree(job)
        snap = restorer.create_snapshot("Before edits")
        _mutate(job)

        result = restorer.restore(snap.id, job)

        assert read_tree(job) == original
        assert not (job / "scratch").exists()
        assert result.ok
        assert snap.id not in provider.snapshots
        assert restorer.manager.metadata.get(snap.id) is None
        assert restorer.state.read() is None

    def test_restore_leaves_other_jobs_alone(self, restorer, volume):
        snap = restorer.create_snapshot()
        (volume / "jobs" / "job2" / "readme.txt").write_text("job two, edited")

        restorer.restore(snap.id, volume / "jobs" / "job1")

        assert (volume / "jobs" / "job2" / "readme.txt").read_text() == "job two, edited"

    def test_restore_deleted_job_folder(self, restorer, volume):
        job = volume / "jobs" / "job1"
        original = read_tree(job)
        snap = restorer.create_snapshot()
        shutil.rmtree(job)

        restorer.restore(snap.id, job)

        assert read_tree(job) == original

    def test_default_description(self, restorer):
        snap = restorer.create_snapshot()
        assert snap.description.startswith("Snapshot ")

    def test_state_written_before_sync(self, restorer, volume, monkeypatch):
        job = volume / "jobs" / "job1"
        snap = restorer.create_snapshot("Before edits")
        seen = []
        real_sync = sync.smart_sync

        def spy(source, target):
            seen.append(restorer.state.get_pending_restore())
            return real_sync(source, target)

        monkeypatch.setattr("snapback.orchestrator.smart_sync", spy)
        restorer.restore(snap.id, job)

        (pending,) = seen
        assert pending.snapshot_id == snap.id
        assert pending.target_path == str(job.resolve())
        assert pending.snapshot_description == "Before edits"

    def test_partial_failure_is_not_fatal(self, restorer, volume, monkeypatch):
        job = volume / "jobs" / "job1"
        snap = restorer.create_snapshot()
        _mutate(job)
        (job / "locked.txt").write_text("held open by another process")
        real_remove = sync._remove

        def flaky(path, kind):
            if Path(path).name == "locked.txt":
                raise PermissionError(13, "in use", str(path))
            return real_remove(path, kind)

        monkeypatch.setattr(sync, "_remove", flaky)

        result = restorer.restore(snap.id, job)

        assert [Path(f.path).name for f in result.failures] == ["locked.txt"]
        assert (job / "b.txt").read_text() == "bravo"
        assert not (job / "c.txt").exists()
        assert restorer.state.read() is None
        complete = [e for e in read_logs() if e["event"] == "restore_complete"]
        assert len(complete[-1]["partial_failures"]) == 1

    def test_unknown_snapshot_writes_no_record(self, restorer, volume):
        job = volume / "jobs" / "job1"

        with pytest.raises(NotFoundError):
            restorer.restore("gone", job)

        assert restorer.state.read() is None
        assert read_logs()[-1]["event"] == "restore_failed"

    def test_folder_missing_from_snapshot(self, restorer, volume):
        snap = restorer.create_snapshot()
        new_job = volume / "jobs" / "job3"
        new_job.mkdir()

        with pytest.raises(NotFoundError) as exc:
            restorer.restore(snap.id, new_job)

        assert str(new_job.resolve()) in str(exc.value)
        assert restorer.state.read() is None
        assert snap.id in restorer.manager.provider.snapshots

    def test_snapshot_delete_failure_marks_failed(self, restorer, volume, provider):
        job = volume / "jobs" / "job1"
        snap = restorer.create_snapshot()
        provider.fail_delete.add(snap.id)

        with pytest.raises(ProviderError):
            restorer.restore(snap.id, job)

        assert restorer.state.read().status is RestoreStatus.FAILED

    def test_refuses_target_holding_state(self, restorer, home):
        snap_id = "snap1"
        with pytest.raises(RestoreError):
            restorer.restore(snap_id, home)
        assert restorer.state.read() is None

    def test_refuses_volume_root(self, restorer, volume):
        snap = restorer.create_snapshot()
        with pytest.raises(RestoreError, match="whole volume"):
            restorer.restore(snap.id, volume)
        assert restorer.state.read() is None
        assert snap.id in restorer.manager.provider.snapshots

    def test_busy_rejects_second_operation(self, restorer, volume):
        snap = restorer.create_snapshot()
        restorer._busy.acquire()
        try:
            assert restorer.is_busy
            with pytest.raises(BusyError):
                restorer.restore(snap.id, volume / "jobs" / "job1")
            with pytest.raises(BusyError):
                restorer.create_snapshot()
        finally:
            restorer._busy.release()
        assert not restorer.is_busy
        assert restorer.state.read() is None


class TestCrashRecovery:

    def test_interrupted_restore_resumes_to_same_state(self, restorer, volume):
        job = volume / "jobs" / "job1"
        original = read_tree(job)
        snap = restorer.create_snapshot("Before edits")
        _mutate(job)

        # Crash after begin() and part of the sync
        restorer.state.begin(snap.id, job.resolve(), "Before edits")
        (job / "b.txt").write_text("bravo")

        pending = restorer.check_pending_restore()
        assert pending.snapshot_id == snap.id
        assert pending.target_path == str(job.resolve())

        result = restorer.resume_restore()

        assert read_tree(job) == original
        assert result.ok
        assert restorer.check_pending_restore() is None
        assert restorer.state.read() is None

    def test_rejected_restore_keeps_pending_record(self, restorer, volume):
        snap = restorer.create_snapshot("Before edits")
        job1 = volume / "jobs" / "job1"
        interrupted = restorer.state.begin(snap.id, job1.resolve(), "Before edits")

        with pytest.raises(NotFoundError):
            restorer.restore("typo", volume / "jobs" / "job2")
        with pytest.raises(RestoreError):
            restorer.restore(snap.id, volume)

        assert restorer.check_pending_restore() == interrupted

    def test_abandon_marks_failed(self, restorer, volume):
        snap = restorer.create_snapshot()
        restorer.state.begin(snap.id, volume / "jobs" / "job1", None)

        abandoned = restorer.abandon_restore()

        assert abandoned.snapshot_id == snap.id
        assert restorer.check_pending_restore() is None
        assert restorer.last_restore().status is RestoreStatus.FAILED
        assert snap.id in restorer.manager.provider.snapshots

    def test_abandon_without_pending(self, restorer):
        assert restorer.abandon_restore() is None

    def test_resume_without_pending(self, restorer):
        with pytest.raises(RestoreError):
            restorer.resume_restore()


class TestSnapshots:

    def test_load_sweeps_expired(self, restorer, provider, volume):
        old = provider.add(volume, utcnow() - timedelta(days=2))
        fresh = restorer.create_snapshot()

        survivors, failures = restorer.load_snapshots()

        assert [s.id for s in survivors] == [fresh.id]
        assert failures == []
        assert old.id not in provider.snapshots

    def test_sweep_keeps_snapshot_of_pending_restore(self, restorer, provider, volume):
        needed = provider.add(volume, utcnow() - timedelta(days=2))
        stale = provider.add(volume, utcnow() - timedelta(days=2))
        restorer.state.begin(needed.id, volume / "jobs" / "job1")

        survivors, failures = restorer.load_snapshots()

        assert [s.id for s in survivors] == [needed.id]
        assert failures == []
        assert needed.id in provider.snapshots
        assert stale.id not in provider.snapshots

    def test_delete_snapshot_twice(self, restorer):
        snap = restorer.create_snapshot()
        restorer.delete_snapshot(snap.id)
        restorer.delete_snapshot(snap.id)
        assert restorer.list_snapshots() == []

    def test_delete_all_snapshots(self, restorer):
        restorer.create_snapshot("one")
        restorer.create_snapshot("two")

        deleted, failures = restorer.delete_all_snapshots()

        assert len(deleted) == 2
        assert failures == []
        assert restorer.list_snapshots() == []

    def test_audit_log(self, restorer):
        snap = restorer.create_snapshot("Before edits")
        restorer.delete_snapshot(snap.id)

        events = [(e["event"], e["snapshot"]) for e in read_logs()]
        assert events == [("snapshot_create", snap.id), ("snapshot_delete", snap.id)]


class TestJobs:

    def test_list_jobs(self, restorer):
        assert [p.name for p in restorer.list_jobs()] == ["job1", "job2"]

    def test_job_path(self, restorer, volume, tmp_path):
        assert restorer.job_path("job1") == (volume / "jobs" / "job1").resolve()
        assert restorer.job_path(str(tmp_path / "x")) == (tmp_path / "x").resolve()

    def test_preview_restore(self, restorer, volume):
        job = volume / "jobs" / "job1"
        snap = restorer.create_snapshot()
        _mutate(job)
        before = read_tree(job)

        changes = restorer.preview_restore(snap.id, job)

        assert {str(rel) for rel, _ in changes} == {"a.txt", "b.txt", "c.txt", "scratch"}
        assert read_tree(job) == before
