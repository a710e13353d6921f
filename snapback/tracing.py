"""Stage timing and progress for long-running operations.

Stage timing:
    StageTimer wraps orchestrator stages (resolve, sync, delete) and prints
    elapsed time after each. Prints nothing when built without a console.

Heartbeat:
    Prints elapsed seconds while blocking work runs on the worker pool, so a
    several-minute sync over a large job folder doesn't look like a hang.
"""

import threading
import time


def format_duration(seconds):
    """'2m 5s' past a minute, '3.250s' past a second, '120ms' below."""
    if seconds >= 60:
        m, s = divmod(int(seconds), 60)
        return f"{m}m {s}s"
    if seconds >= 1:
        return f"{seconds:.3f}s"
    return f"{int(seconds * 1000)}ms"


class StageTimer:
    """Records elapsed wall-clock time per named stage.

    Usage:
        t = StageTimer(console)
        resolve_snapshot()
        t.mark("resolve")       # prints "  resolve  0.1s"
        smart_sync(...)
        t.mark("sync")          # prints "  sync  41.7s"
    """

    def __init__(self, console=None):
        self.console = console
        self._t0 = time.time()
        self._stage_start = self._t0
        self.stages = {}

    def mark(self, label):
        elapsed = time.time() - self._stage_start
        self._stage_start = time.time()
        self.stages[label] = elapsed
        if self.console:
            self.console.print(f"  [dim]{label}  {elapsed:.1f}s[/dim]")
        return elapsed

    @property
    def total(self):
        return time.time() - self._t0


class Heartbeat:
    """Prints elapsed seconds every `interval` seconds until stopped.

        heartbeat = Heartbeat(console, "syncing")
        heartbeat.start()
        future.result()
        heartbeat.stop()
    """

    def __init__(self, console, label, interval=5):
        self.console = console
        self.label = label
        self.interval = interval
        self._stop = threading.Event()
        self._thread = None
        self._t0 = None

    def start(self):
        if self.console is None:
            return
        self._t0 = time.time()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self):
        """No-op if already stopped."""
        self._stop.set()

    def _run(self):
        while not self._stop.wait(timeout=self.interval):
            elapsed = int(time.time() - self._t0)
            self.console.print(
                f"  [dim]{self.label}...  {elapsed}s[/dim]",
                highlight=False,
            )
