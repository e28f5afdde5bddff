"""Node abstractions shared by concrete pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Protocol

from ..events import EventChannel
from ..types import RunState
from ..utils.run_logger import RunLogger


class Node(Protocol):
    """A pipeline stage that reads the run state and returns a partial update."""

    name: str
    timing_key: str

    def should_run(self, state: RunState) -> bool:
        ...

    async def run(self, state: RunState) -> Dict[str, Any]:
        ...


@dataclass(slots=True)
class BaseNode:
    """Convenience base for stages needing prompt logging and diagnostics."""

    name: str
    run_id: str
    logger: RunLogger
    events: EventChannel

    def log_prompt(self, prompt: str, suffix: str = "") -> None:
        self.logger.log_prompt(self.run_id, self.name, prompt, suffix)

    def log_response(self, response: object, suffix: str = "") -> None:
        self.logger.log_response(self.run_id, self.name, response, suffix)

    def emit(self, message: str, **data: Any) -> None:
        self.events.emit(self.name, "info", message, **data)

    def warn(self, message: str, **data: Any) -> None:
        self.events.warn(self.name, message, **data)
