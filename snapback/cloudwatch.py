"""Optional CloudWatch Logs tracing for snapback operations.

Each Restorer gets a tracer bound to one log stream
(<log_group>/<YYYY/MM/DD>/<trace_id>), so every restore on every workstation
can be queried from one place with CloudWatch Insights.

Activated when `cloudwatch_log_group` is set in the config and boto3 is
installed (`pip install -e ".[aws]"`). Otherwise the tracer is inert.

Span types:
    stage:    resolve, sync, delete (elapsed_ms)
    restore:  start, complete, failed, abandon
    snapshot: create, delete, sweep

Query for one run:
    filter trace_id = "abc12345" | sort @timestamp asc
"""

import json
import threading
import time
from datetime import datetime, timezone


class CloudWatchTracer:

    def __init__(self, client=None, log_group=None, log_stream=None, trace_id=""):
        self._client = client
        self.log_group = log_group
        self.log_stream = log_stream
        self.trace_id = trace_id
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config, trace_id):
        """Build a tracer. Inert if no log group is configured or boto3 is missing."""
        log_group = config.get("cloudwatch_log_group", "")
        if not log_group:
            return cls(trace_id=trace_id)
        log_stream = f"{datetime.now().strftime('%Y/%m/%d')}/{trace_id}"
        try:
            import boto3
            client = boto3.client("logs")
        except Exception:
            return cls(trace_id=trace_id)
        tracer = cls(client, log_group, log_stream, trace_id)
        tracer._ensure()
        return tracer

    @property
    def enabled(self):
        return self._client is not None

    def emit(self, span_type, name, elapsed_ms=None, **meta):
        """Send one span. Never raises."""
        if not self._client:
            return
        event = {
            "trace_id": self.trace_id,
            "span_type": span_type,
            "name": name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if elapsed_ms is not None:
            event["elapsed_ms"] = round(elapsed_ms)
        event.update(meta)
        with self._lock:
            try:
                self._client.put_log_events(
                    logGroupName=self.log_group,
                    logStreamName=self.log_stream,
                    logEvents=[{"timestamp": int(time.time() * 1000),
                                "message": json.dumps(event, default=str)}],
                )
            except Exception:
                pass

    def _ensure(self):
        """Create the log group and stream if they don't already exist."""
        for create, kwargs in [
            (self._client.create_log_group, {"logGroupName": self.log_group}),
            (self._client.create_log_stream, {"logGroupName": self.log_group,
                                              "logStreamName": self.log_stream}),
        ]:
            try:
                create(**kwargs)
            except Exception:
                pass  # ResourceAlreadyExistsException or no permissions
