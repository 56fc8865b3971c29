"""
Request Performance Logging

Records timing and milestone events for a request as structured log records.
Every record carries ``request_id``, ``operation``, ``phase`` and
``duration_ms`` in the ``extra`` mapping so that a JSON formatter or log
shipper can index them.

A session groups the timed operations of one request and emits a summary
(count / total / average per operation) when it ends.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

logger = logging.getLogger("rag.perf")


def generate_request_id() -> str:
    """Return an opaque correlation token for one request."""
    return f"req_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


@dataclass
class _TimingSession:
    request_id: str
    started: float
    timings: List[tuple] = field(default_factory=list)


@dataclass
class Timing:
    """Filled in when the timed block exits."""
    operation: str
    duration_ms: float = 0.0
    status: str = "pending"


class PerformanceLogger:
    """
    Logs per-request milestones and operation durations.

    Safe to share across concurrent tasks: sessions are keyed by request id
    and never mutated by more than one request.
    """

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger
        self._sessions: Dict[str, _TimingSession] = {}

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(self, request_id: str) -> None:
        self._sessions[request_id] = _TimingSession(request_id, time.perf_counter())
        self._emit(request_id, "session-start", "start", 0.0)

    def end_session(self, request_id: str) -> Optional[Dict[str, Dict[str, float]]]:
        """
        Close a session and log the per-operation summary.

        Returns the summary, or None if the session was never started.
        """
        session = self._sessions.pop(request_id, None)
        if session is None:
            return None

        summary: Dict[str, Dict[str, float]] = {}
        for operation, duration_ms in session.timings:
            entry = summary.setdefault(operation, {"count": 0, "total_ms": 0.0, "avg_ms": 0.0})
            entry["count"] += 1
            entry["total_ms"] += duration_ms
            entry["avg_ms"] = entry["total_ms"] / entry["count"]

        total_ms = (time.perf_counter() - session.started) * 1000
        self._emit(
            request_id,
            "session-end",
            "end",
            total_ms,
            {"total_operations": len(session.timings), "operation_summary": summary},
        )
        return summary

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def milestone(self, request_id: str, operation: str, **metadata: Any) -> None:
        """Log a point-in-time event without a duration."""
        self._emit(request_id, operation, "milestone", 0.0, metadata)

    @asynccontextmanager
    async def timed(
        self,
        request_id: str,
        operation: str,
        **metadata: Any,
    ) -> AsyncIterator[Timing]:
        """
        Time the enclosed block.

        The end record carries ``status`` ``success`` or ``error`` (with the
        error message); exceptions are re-raised unchanged.
        """
        timing = Timing(operation=operation)
        started = time.perf_counter()
        self._emit(request_id, operation, "start", 0.0, metadata)
        try:
            yield timing
        except BaseException as exc:
            timing.status = "error"
            timing.duration_ms = (time.perf_counter() - started) * 1000
            self._finish(request_id, timing, {**metadata, "error": str(exc) or type(exc).__name__})
            raise
        timing.status = "success"
        timing.duration_ms = (time.perf_counter() - started) * 1000
        self._finish(request_id, timing, metadata)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _finish(self, request_id: str, timing: Timing, metadata: Dict[str, Any]) -> None:
        session = self._sessions.get(request_id)
        if session is not None:
            session.timings.append((timing.operation, timing.duration_ms))
        self._emit(
            request_id,
            timing.operation,
            "end",
            timing.duration_ms,
            {**metadata, "status": timing.status},
        )

    def _emit(
        self,
        request_id: str,
        operation: str,
        phase: str,
        duration_ms: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._log.info(
            "%s %s (%s) %.1fms",
            request_id,
            operation,
            phase,
            duration_ms,
            extra={
                "request_id": request_id,
                "operation": operation,
                "phase": phase,
                "duration_ms": round(duration_ms, 3),
                "metadata": metadata or {},
            },
        )


# Process-wide instance; tests may construct their own.
performance_logger = PerformanceLogger()
