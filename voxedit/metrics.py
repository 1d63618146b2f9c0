"""
Thread-safe JSONL event log with batched writes.

Usage:
    metrics = MetricsWriter(config.metrics_file)
    metrics.log("utterance", session_id=sid, chars=42)
"""

import json
import time
import threading
from queue import Queue, Empty
from pathlib import Path
from typing import Any, List, Optional


class MetricsWriter:
    """
    Appends one JSON object per event to a file.

    log() only enqueues; a daemon thread drains the queue in batches, so
    callers on the audio or websocket threads never touch the disk.
    """

    def __init__(self, metrics_file: Path):
        self.metrics_file = metrics_file
        self._queue: "Queue[dict]" = Queue()
        self._shutdown = threading.Event()
        self._writer_thread = threading.Thread(target=self._writer_loop, daemon=True)
        self._writer_thread.start()

    def log(self, event: str, **fields: Any) -> None:
        """Queue an event for writing. Non-blocking, dropped after shutdown."""
        if self._shutdown.is_set():
            return
        self._queue.put({"ts": time.time(), "event": event, **fields})

    def _writer_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                batch = [self._queue.get(timeout=1.0)]
            except Empty:
                continue
            batch.extend(self._drain())
            self._write_entries(batch)

    def _drain(self) -> List[dict]:
        entries = []
        while True:
            try:
                entries.append(self._queue.get_nowait())
            except Empty:
                return entries

    def _write_entries(self, entries: List[dict]) -> None:
        if not entries:
            return
        try:
            self.metrics_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.metrics_file, "a") as f:
                for entry in entries:
                    f.write(json.dumps(entry, default=str) + "\n")
        except Exception as e:
            print(f"[Metrics] Failed to write {len(entries)} events: {e}")

    def flush(self) -> None:
        """Write anything still queued."""
        self._write_entries(self._drain())

    def shutdown(self) -> None:
        """Stop the writer thread and flush."""
        self._shutdown.set()
        self._writer_thread.join(timeout=2.0)
        self.flush()


# Global instance (initialized lazily)
_metrics: Optional[MetricsWriter] = None


def get_metrics(metrics_file: Path) -> MetricsWriter:
    """Get or create the global metrics writer."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsWriter(metrics_file)
    return _metrics


# Typed helpers so every call site logs the same fields

def log_session_start(
    metrics: MetricsWriter,
    session_id: str,
    provider: str,
    trailing_silence_ms: int,
) -> None:
    metrics.log(
        "session_start",
        session_id=session_id,
        provider=provider,
        trailing_silence_ms=trailing_silence_ms,
    )


def log_utterance(
    metrics: MetricsWriter,
    session_id: str,
    text: str,
    latency_ms: float,
    outcome: str,  # "resolved" | "empty" | "error" | "cancelled"
) -> None:
    metrics.log(
        "utterance",
        session_id=session_id,
        text=text[:200],
        latency_ms=latency_ms,
        outcome=outcome,
    )


def log_classification(
    metrics: MetricsWriter,
    route_type: str,
    provider: str,
    latency_ms: float,
) -> None:
    metrics.log(
        "classification",
        route_type=route_type,
        provider=provider,
        latency_ms=latency_ms,
    )


def log_apply(
    metrics: MetricsWriter,
    document: str,
    added: int,
    removed: int,
    moved: int,
) -> None:
    metrics.log(
        "apply",
        document=document,
        added=added,
        removed=removed,
        moved=moved,
    )


def log_session_complete(
    metrics: MetricsWriter,
    session_id: str,
    total_duration_ms: float,
) -> None:
    metrics.log(
        "session_complete",
        session_id=session_id,
        total_duration_ms=total_duration_ms,
    )
