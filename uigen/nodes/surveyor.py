"""Surveyor stage: reconstructs a visual manifest from a reference image."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..autofix import auto_fix_tree
from ..errors import ConfigurationError, ParseError
from ..services.base import AssetStorage, VisionModel
from ..types import (
    CanvasConfig,
    FileInput,
    ImageRef,
    PipelineMode,
    RunState,
    ThemeSpec,
    UINode,
    VisualManifest,
)
from ..utils.imaging import enhance, measure
from ..utils.prompts import extract_json_object, load_prompt
from .base import BaseNode


def parse_layout(raw: str) -> Tuple[UINode, List[str]]:
    """Decode the vision model's answer into a tree and its asset-needs list."""
    payload = extract_json_object(raw)
    if payload is None:
        raise ParseError("no JSON object in vision response", raw)
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ParseError(f"invalid JSON: {exc.msg}", raw) from exc
    if not isinstance(data, Mapping):
        raise ParseError("vision response is not an object", raw)

    tree = data.get("dom_tree")
    if isinstance(tree, list):
        tree = {"type": "div", "id": "root", "bounds": {"top": 0, "left": 0, "width": 100, "height": 100}, "children": tree}
    if not isinstance(tree, Mapping) or not tree:
        raise ParseError("vision response has no dom_tree", raw)

    assets = data.get("assets_needed") or data.get("assets") or []
    return UINode.from_dict(tree), [str(item) for item in assets if isinstance(item, (str, int, float))]


class SurveyLayout(BaseNode):
    """Measures, enhances and analyses each reference image marked for measurement."""

    timing_key = "surveyor"

    def __init__(
        self,
        run_id: str,
        logger,
        events,
        vision: VisionModel,
        storage: AssetStorage,
        *,
        min_image_dimension: int = 1920,
        fallback_canvas: Optional[CanvasConfig] = None,
    ) -> None:
        super().__init__(name="SurveyLayout", run_id=run_id, logger=logger, events=events)
        self._vision = vision
        self._storage = storage
        self._min_image_dimension = min_image_dimension
        self._fallback_canvas = fallback_canvas or CanvasConfig.fallback()

    def should_run(self, state: RunState) -> bool:
        strategy = state["strategy"]
        return strategy.mode is not PipelineMode.GENERATE and bool(strategy.execution_plan.measure_pixels)

    async def run(self, state: RunState) -> Dict[str, Any]:
        request = state["request"]
        indices = state["strategy"].execution_plan.measure_pixels
        manifests = await asyncio.gather(*(self.survey_layout(request.files[index], index) for index in indices))
        return {"manifests": list(manifests)}

    def _fallback(self) -> CanvasConfig:
        return CanvasConfig(
            width=self._fallback_canvas.width, height=self._fallback_canvas.height, source="fallback"
        )

    async def survey_layout(self, file: FileInput, file_index: int) -> VisualManifest:
        original = file.data
        width, height = await asyncio.to_thread(measure, original)
        if width > 0 and height > 0:
            canvas = CanvasConfig(width=width, height=height, source="measured")
            image, upscaled = await asyncio.to_thread(enhance, original, self._min_image_dimension)
            mime_type = "image/png" if upscaled else file.mime_type
            if upscaled:
                self.emit(f"Upscaled file {file_index} from {width}x{height} for analysis", file_index=file_index)
        else:
            canvas = self._fallback()
            image, mime_type = original, file.mime_type
            self.warn(f"Could not measure file {file_index} ({file.filename}); using fallback canvas.")

        image_ref = await self._store_original(original, file, file_index)

        prompt = load_prompt(
            "surveyor",
            {"width": canvas.width, "height": canvas.height, "aspect_ratio": f"{canvas.aspect_ratio:.4f}"},
        )
        self.log_prompt(prompt, suffix=str(file_index))

        try:
            raw = await self._vision.analyze_layout(image, mime_type, prompt)
        except ConfigurationError:
            raise
        except Exception as err:
            self.warn(
                f"DOM structure could not be extracted from file {file_index}: vision request failed ({err}).",
                file_index=file_index,
            )
            return VisualManifest(file_index=file_index, canvas=self._fallback(), original_image_ref=image_ref)
        self.log_response({"raw": raw}, suffix=str(file_index))

        try:
            tree, assets = parse_layout(raw)
        except ParseError as err:
            self.warn(
                f"DOM structure could not be extracted from file {file_index} ({err}); using the fallback canvas.",
                file_index=file_index,
            )
            return VisualManifest(file_index=file_index, canvas=self._fallback(), original_image_ref=image_ref)

        report = auto_fix_tree(tree)
        if report.converted:
            self.emit(f"Auto-fix flagged {len(report.converted)} node(s) for cropping", nodes=report.converted)
        for note in report.skipped:
            self.emit(f"Auto-fix skipped: {note}")

        return VisualManifest(
            file_index=file_index,
            canvas=canvas,
            original_image_ref=image_ref,
            global_theme=ThemeSpec(dom_tree=report.tree, assets=assets),
        )

    async def _store_original(self, data: bytes, file: FileInput, file_index: int) -> Optional[ImageRef]:
        try:
            url = await self._storage.store(data, file.mime_type, f"reference_{file_index}")
        except (OSError, ValueError) as err:
            self.warn(f"Could not store reference image {file_index}: {err}")
            return None
        return ImageRef(file_uri=url, mime_type=file.mime_type)
