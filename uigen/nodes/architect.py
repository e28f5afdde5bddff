"""Optional structure-design stage producing a component tree for the builder."""

from __future__ import annotations

import json
from typing import Any, Dict, Sequence

from ..errors import ConfigurationError
from ..services.base import CodeModel
from ..types import ComponentStructure, PipelineMode, RunState, VisualManifest
from ..utils.prompts import extract_json_object, json_block, load_prompt
from .base import BaseNode

LAYOUT_STRATEGIES = {"flex", "grid", "absolute"}


class DesignStructure(BaseNode):
    timing_key = "architect"

    def __init__(self, run_id: str, logger, events, code_model: CodeModel) -> None:
        super().__init__(name="DesignStructure", run_id=run_id, logger=logger, events=events)
        self._code_model = code_model

    def should_run(self, state: RunState) -> bool:
        return state["strategy"].mode is not PipelineMode.GENERATE and bool(state.get("manifests"))

    async def run(self, state: RunState) -> Dict[str, Any]:
        structure = await self.design(state.get("manifests") or [], state["request"].instructions)
        return {"structure": structure}

    async def design(self, manifests: Sequence[VisualManifest], instructions: str) -> ComponentStructure:
        prompt = load_prompt(
            "architect",
            {
                "instructions": instructions or "(none)",
                "manifests": json_block([manifest.to_dict() for manifest in manifests]),
            },
        )
        self.log_prompt(prompt)
        try:
            raw = await self._code_model.design_structure(prompt)
        except ConfigurationError:
            raise
        except Exception as err:
            self.warn(f"Structure design failed: {err}")
            return ComponentStructure()
        self.log_response({"raw": raw})

        payload = extract_json_object(raw)
        try:
            data = json.loads(payload) if payload else None
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            self.warn("Structure design returned unparseable output; continuing without a structure tree.")
            return ComponentStructure()
        layout = data.get("layout_strategy")
        tree = data.get("tree")
        return ComponentStructure(
            layout_strategy=layout if layout in LAYOUT_STRATEGIES else "flex",
            tree=[item for item in tree if isinstance(item, dict)] if isinstance(tree, list) else [],
        )
