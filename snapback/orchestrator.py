import os
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path

from snapback.cloudwatch import CloudWatchTracer
from snapback.config import load_config
from snapback.errors import AccessDenied, BusyError, NotFoundError, RestoreError
from snapback.lifecycle import SnapshotManager
from snapback.log import write_log
from snapback.provider import create_provider
from snapback.restore_state import RestoreStateManager
from snapback.sync import plan, smart_sync
from snapback.tracing import Heartbeat, StageTimer


class Restorer:
    """Front-end facing operations: snapshots, restore, and crash recovery.

    Blocking work (provider calls, sync) runs on a single-worker pool while
    the caller waits with a heartbeat. A busy flag keeps at most one restore
    or snapshot creation in flight; a second caller gets BusyError.

    Restore sequence:
        resolve snapshot folder  →  begin()  →  smart_sync  →  delete snapshot
        →  mark_completed()
    Once begin() has run, any exception calls mark_failed() before it
    propagates. Failures while resolving write no record at all.
    """

    def __init__(self, config=None, provider=None, manager=None, state=None, console=None):
        self.config = config if config is not None else load_config()
        self.volume = self.config.get("volume", "/")
        self.jobs_root = Path(self.config.get("jobs_root") or Path.home() / "jobs")
        self.console = console
        self.manager = manager or SnapshotManager(
            provider or create_provider(self.config),
            ttl=timedelta(hours=float(self.config.get("snapshot_ttl_hours", 24))),
        )
        self.state = state or RestoreStateManager()
        self.trace_id = uuid.uuid4().hex[:8]
        self.tracer = CloudWatchTracer.from_config(self.config, self.trace_id)

        self._busy = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="snapback")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self._executor.shutdown(wait=True)

    @property
    def is_busy(self):
        return self._busy.locked()

    @contextmanager
    def _exclusive(self, what):
        if not self._busy.acquire(blocking=False):
            raise BusyError(f"Cannot {what}: another snapshot operation is in progress")
        try:
            yield
        finally:
            self._busy.release()

    def _run_blocking(self, label, fn, *args):
        """Run fn on the worker pool and wait for it, printing a heartbeat."""
        future = self._executor.submit(fn, *args)
        heartbeat = Heartbeat(self.console, label)
        heartbeat.start()
        try:
            return future.result()
        finally:
            heartbeat.stop()

    def _log(self, event, **fields):
        write_log({"event": event, "volume": self.volume, "trace_id": self.trace_id, **fields})

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def create_snapshot(self, description=None):
        description = description or f"Snapshot {datetime.now():%Y-%m-%d %H:%M:%S}"
        with self._exclusive("create a snapshot"):
            timer = StageTimer(self.console)
            snapshot = self._run_blocking(
                "creating snapshot", self.manager.create, self.volume, description
            )
            elapsed = timer.mark("create")
        self._log("snapshot_create", snapshot=snapshot.id, description=description)
        self.tracer.emit("snapshot", "create", elapsed_ms=elapsed * 1000, snapshot=snapshot.id)
        return snapshot

    def list_snapshots(self):
        return self.manager.list(self.volume)

    def load_snapshots(self):
        """List snapshots after sweeping expired ones. Returns (survivors, failures).

        The snapshot an interrupted restore needs is kept even if expired.
        """
        pending = self.check_pending_restore()
        keep = {pending.snapshot_id} if pending else set()
        survivors, failures = self.manager.expire_and_sweep(self.volume, keep=keep)
        for snapshot, error in failures:
            self._log("sweep_failed", snapshot=snapshot.id, error=str(error))
        self._log("sweep", kept=len(survivors), failed=len(failures))
        self.tracer.emit("snapshot", "sweep", kept=len(survivors), failed=len(failures))
        return survivors, failures

    def delete_snapshot(self, snapshot_id):
        with self._exclusive("delete a snapshot"):
            self._run_blocking("deleting snapshot", self.manager.delete, snapshot_id)
        self._log("snapshot_delete", snapshot=snapshot_id)
        self.tracer.emit("snapshot", "delete", snapshot=snapshot_id)

    def delete_all_snapshots(self):
        """Delete every snapshot of the volume. Returns (deleted, failures)."""
        with self._exclusive("delete snapshots"):
            deleted, failures = self._run_blocking(
                "deleting snapshots", self.manager.delete_all, self.volume
            )
        for snapshot in deleted:
            self._log("snapshot_delete", snapshot=snapshot.id)
        for snapshot, error in failures:
            self._log("snapshot_delete_failed", snapshot=snapshot.id, error=str(error))
        return deleted, failures

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def list_jobs(self):
        """Job folders directly under jobs_root, by name."""
        if not self.jobs_root.is_dir():
            return []
        return sorted(p for p in self.jobs_root.iterdir() if p.is_dir())

    def job_path(self, name_or_path):
        """A bare job name resolves under jobs_root; anything path-like is taken as given."""
        candidate = Path(name_or_path)
        if candidate.is_absolute() or len(candidate.parts) > 1 or str(name_or_path).startswith("."):
            return candidate.resolve()
        return (self.jobs_root / candidate).resolve()

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def _check_target(self, target):
        state_dir = self.state.path.resolve().parent
        if target == state_dir or target in state_dir.parents:
            raise RestoreError(
                f"Refusing to restore {target}: it contains snapback's own state in {state_dir}"
            )
        if target == Path(self.volume).resolve():
            raise RestoreError(
                f"Refusing to restore the whole volume {target}. Restore a job folder instead."
            )

    def _check_source(self, snapshot_id, source, target):
        try:
            with os.scandir(source):
                pass
        except (FileNotFoundError, NotADirectoryError):
            raise NotFoundError(
                f"Folder not found in snapshot: {source}\n\n"
                f"Target folder: {target}\n"
                f"Snapshot: {snapshot_id}\n\n"
                "Make sure the snapshot was created successfully and hasn't expired."
            )
        except PermissionError as e:
            raise AccessDenied(
                "Cannot access snapshot path. Make sure snapback is running as root.\n\n"
                f"Path: {source}\n"
                f"Error: {e}"
            ) from e

    def _sync(self, source, target):
        try:
            return smart_sync(source, target)
        except PermissionError as e:
            raise AccessDenied(
                f"Permission denied during restore: {e}\n\n"
                f"Snapshot path: {source}\n"
                f"Target folder: {target}\n\n"
                "Make sure snapback is running as root."
            ) from e
        except OSError as e:
            raise RestoreError(
                f"Restore failed: {e}\n\n"
                f"Snapshot path: {source}\n"
                f"Target folder: {target}"
            ) from e

    def _run_restore(self, snapshot_id, target_path, description):
        target = Path(target_path).resolve()
        timer = StageTimer(self.console)

        # A rejected request must leave any existing restore record untouched
        try:
            self._check_target(target)
            source = self.manager.folder_path(snapshot_id, self.volume, target)
            self._check_source(snapshot_id, source, target)
        except Exception as e:
            self._log("restore_failed", snapshot=snapshot_id, target=str(target), error=str(e))
            self.tracer.emit("restore", "failed", snapshot=snapshot_id, error=str(e))
            raise
        self.tracer.emit("stage", "resolve", elapsed_ms=timer.mark("resolve") * 1000)

        self.state.begin(snapshot_id, target, description)
        self._log("restore_start", snapshot=snapshot_id, target=str(target))
        self.tracer.emit("restore", "start", snapshot=snapshot_id, target=str(target))

        try:
            result = self._run_blocking("syncing", self._sync, source, target)
            self.tracer.emit("stage", "sync", elapsed_ms=timer.mark("sync") * 1000)

            self._run_blocking("deleting snapshot", self.manager.delete, snapshot_id)
            self.tracer.emit("stage", "delete", elapsed_ms=timer.mark("delete") * 1000)

            self.state.mark_completed()
        except Exception as e:
            self.state.mark_failed()
            self._log("restore_failed", snapshot=snapshot_id, target=str(target), error=str(e))
            self.tracer.emit("restore", "failed", snapshot=snapshot_id, error=str(e))
            raise

        partial = [str(f) for f in result.failures]
        self._log(
            "restore_complete",
            snapshot=snapshot_id,
            target=str(target),
            restored=result.restored,
            overwritten=result.overwritten,
            deleted=result.deleted,
            partial_failures=partial,
        )
        self.tracer.emit(
            "restore", "complete",
            elapsed_ms=timer.total * 1000,
            snapshot=snapshot_id,
            changes=result.changes,
            partial_failures=len(partial),
        )
        return result

    def restore(self, snapshot_id, target_path):
        """Restore target_path to its state in the snapshot, then delete the snapshot.

        Returns the SyncResult. Files that couldn't be deleted are listed in
        result.failures; that is not an error.
        """
        with self._exclusive("restore"):
            description = self.manager.metadata.get(snapshot_id)
            return self._run_restore(snapshot_id, target_path, description)

    def preview_restore(self, snapshot_id, target_path):
        """List the (relative_path, DiffDecision) changes a restore would make."""
        target = Path(target_path).resolve()
        source = self.manager.folder_path(snapshot_id, self.volume, target)
        self._check_source(snapshot_id, source, target)
        return list(plan(source, target))

    # ------------------------------------------------------------------
    # Crash recovery
    # ------------------------------------------------------------------

    def check_pending_restore(self):
        """The interrupted restore found on disk, or None."""
        return self.state.get_pending_restore()

    def last_restore(self):
        """Whatever restore record is on disk, pending or failed."""
        return self.state.read()

    def resume_restore(self):
        """Re-run the interrupted restore with its original snapshot and target."""
        with self._exclusive("resume a restore"):
            pending = self.state.get_pending_restore()
            if pending is None:
                raise RestoreError("No interrupted restore to resume")
            return self._run_restore(
                pending.snapshot_id, pending.target_path, pending.snapshot_description
            )

    def abandon_restore(self):
        """Give up on the interrupted restore. Returns it, or None if there was none."""
        with self._exclusive("abandon a restore"):
            pending = self.state.get_pending_restore()
            if pending is None:
                return None
            self.state.mark_failed()
        self._log("restore_abandon", snapshot=pending.snapshot_id, target=pending.target_path)
        self.tracer.emit("restore", "abandon", snapshot=pending.snapshot_id)
        return pending
