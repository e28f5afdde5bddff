"""Per-run diagnostic event channel.

Every component receives the channel of the run it serves; nothing is
published through module-level state.  Events are mirrored to the standard
logging tree and fanned out to any subscribed asyncio queues, so a caller can
stream progress while the run is in flight.

Event envelope::

    {
      "event": "<kind>",
      "data": {"run_id": ..., "stage": ..., "timestamp": "<ISO 8601>", "message": ..., ...}
    }
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional

logger = logging.getLogger(__name__)

# Event kinds that close a subscriber stream.
STOP_EVENTS = frozenset({"run_complete", "run_failed"})


@dataclass(slots=True)
class PipelineEvent:
    """A single diagnostic record."""

    stage: str
    kind: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def envelope(self, run_id: str) -> Dict[str, Any]:
        return {
            "event": self.kind,
            "data": {
                "run_id": run_id,
                "stage": self.stage,
                "timestamp": self.timestamp,
                "message": self.message,
                **self.data,
            },
        }


class EventChannel:
    """Collects events, warnings and stage timings for one pipeline run."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self.events: List[PipelineEvent] = []
        self.warnings: List[str] = []
        self.timings: Dict[str, int] = {}
        self._subscribers: List[asyncio.Queue] = []

    def emit(self, stage: str, kind: str, message: str, **data: Any) -> PipelineEvent:
        """Record an event and forward it to the log and to subscribers."""
        event = PipelineEvent(stage=stage, kind=kind, message=message, data=data)
        self.events.append(event)
        level = logging.WARNING if kind == "warning" else logging.INFO
        logger.log(level, "[%s] %s: %s", self.run_id, stage, message)
        envelope = event.envelope(self.run_id)
        for queue in list(self._subscribers):
            queue.put_nowait(envelope)
        return event

    def warn(self, stage: str, message: str, **data: Any) -> None:
        """Record a human-readable degradation surfaced in the result."""
        self.warnings.append(message)
        self.emit(stage, "warning", message, **data)

    def record_timing(self, stage: str, started: float) -> int:
        """Store elapsed milliseconds since ``started`` (a ``perf_counter`` value)."""
        elapsed_ms = int(round((time.perf_counter() - started) * 1000))
        self.timings[stage] = elapsed_ms
        self.emit(stage, "timing", f"{stage} finished in {elapsed_ms} ms", elapsed_ms=elapsed_ms)
        return elapsed_ms

    def events_of(self, kind: str, stage: Optional[str] = None) -> List[PipelineEvent]:
        return [
            event for event in self.events if event.kind == kind and (stage is None or event.stage == stage)
        ]

    async def subscribe(self) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield event envelopes until the run completes or fails."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            while True:
                envelope = await queue.get()
                yield envelope
                if envelope["event"] in STOP_EVENTS:
                    break
        finally:
            self._subscribers.remove(queue)

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [event.envelope(self.run_id) for event in self.events]
