"""Optional motion-analysis stage for reference videos."""

from __future__ import annotations

import json
from typing import Any, Dict, Sequence

from ..errors import ConfigurationError
from ..services.base import VisionModel
from ..types import FileInput, MotionPhysics, PipelineMode, RunState
from ..utils.prompts import extract_json_object, load_prompt
from .base import BaseNode


class AnalyzeMotion(BaseNode):
    """Extracts spring and velocity hints from the videos listed in ``extract_physics``."""

    timing_key = "physics"

    def __init__(self, run_id: str, logger, events, vision: VisionModel) -> None:
        super().__init__(name="AnalyzeMotion", run_id=run_id, logger=logger, events=events)
        self._vision = vision

    def should_run(self, state: RunState) -> bool:
        strategy = state["strategy"]
        return strategy.mode is not PipelineMode.GENERATE and bool(strategy.execution_plan.extract_physics)

    async def run(self, state: RunState) -> Dict[str, Any]:
        files = state["request"].files
        videos = [files[index] for index in state["strategy"].execution_plan.extract_physics]
        return {"physics": await self.analyze(videos)}

    async def analyze(self, videos: Sequence[FileInput]) -> MotionPhysics:
        prompt = load_prompt("motion")
        self.log_prompt(prompt)
        try:
            raw = await self._vision.analyze_motion(videos, prompt)
        except ConfigurationError:
            raise
        except Exception as err:
            self.warn(f"Motion analysis failed: {err}")
            return MotionPhysics()
        self.log_response({"raw": raw})

        payload = extract_json_object(raw)
        try:
            data = json.loads(payload) if payload else None
        except json.JSONDecodeError:
            data = None
        motions = data.get("component_motions") if isinstance(data, dict) else None
        if not isinstance(motions, list):
            self.warn("Motion analysis returned no usable component motions.")
            return MotionPhysics()
        return MotionPhysics(component_motions=[item for item in motions if isinstance(item, dict)])
