"""Router stage: classifies a request into a routing strategy."""

from __future__ import annotations

import json
import re
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from ..errors import CatastrophicFailure, ConfigurationError, ParseError
from ..services.base import CodeModel
from ..types import (
    ExecutionPlan,
    GeneratedAssetRequest,
    PipelineInput,
    PipelineMode,
    RoutingStrategy,
    RunState,
)
from ..utils.prompts import extract_json_object, json_block, load_prompt
from .base import BaseNode

REFERENCE_INTENT = (
    "use this photo",
    "using this photo",
    "use this image",
    "using this image",
    "use this picture",
    "use this as",
    "based on this photo",
    "as a texture",
    "as the background",
    "as background",
    "inspired by this",
)
REPLICATE_INTENT = (
    "replicate",
    "recreate",
    "clone",
    "copy this",
    "pixel perfect",
    "pixel-perfect",
    "exactly",
    "match this",
    "same as",
    "this layout",
    "this design",
    "this screenshot",
)
MATERIALS = (
    "wood",
    "glass",
    "marble",
    "metal",
    "stone",
    "paper",
    "fabric",
    "leather",
    "cloud",
    "water",
    "fire",
    "neon",
    "velvet",
    "concrete",
    "gold",
    "crystal",
    "sand",
)
ASSET_TARGETS = ("button", "hero", "card", "background")

_WORD = re.compile(r"[a-z]+")


def _contains_any(text: str, phrases: Tuple[str, ...]) -> bool:
    return any(phrase in text for phrase in phrases)


def _materials_in(text: str) -> List[str]:
    words = set(_WORD.findall(text))
    found: List[str] = []
    for material in MATERIALS:
        if any(word == material or word.startswith(material) for word in words):
            found.append(material)
    return found


def _targets_in(text: str) -> List[str]:
    return [target for target in ASSET_TARGETS if target in text]


def heuristic_strategy(request: PipelineInput) -> RoutingStrategy:
    """Rule-based classification; always available and side-effect free."""
    text = request.instructions.lower()
    has_code = bool(request.current_code and request.current_code.strip())
    has_files = bool(request.files)

    if has_files:
        mode = PipelineMode.MERGE if has_code else PipelineMode.CREATE
    else:
        mode = PipelineMode.EDIT if has_code else PipelineMode.GENERATE

    reference_intent = _contains_any(text, REFERENCE_INTENT)
    replicate_intent = _contains_any(text, REPLICATE_INTENT)
    materials = _materials_in(text)
    targets = _targets_in(text) or ["background"]

    plan = ExecutionPlan(preserve_existing_code=has_code)
    roles: List[str] = []
    assets: Dict[str, GeneratedAssetRequest] = {}

    for index, item in enumerate(request.files):
        if item.is_video:
            plan.extract_physics.append(index)
            roles.append("motion_reference")
            continue
        if not item.is_image:
            roles.append("unused")
            continue
        material_only = reference_intent and not replicate_intent
        if not material_only:
            plan.measure_pixels.append(index)
        if reference_intent:
            for target in targets:
                name = f"{target}_bg"
                assets.setdefault(
                    name,
                    GeneratedAssetRequest(
                        name=name,
                        description=f"Surface texture for the {target} derived from {item.filename}",
                        vibe=", ".join(materials),
                        type="texture",
                        source="reference_image",
                    ),
                )
        roles.append("material_reference" if material_only else "layout_reference")

    if materials:
        for target in targets:
            name = f"{target}_bg"
            assets.setdefault(
                name,
                GeneratedAssetRequest(
                    name=name,
                    description=f"{' and '.join(materials)} texture for the {target}",
                    vibe=", ".join(materials),
                    type="texture",
                    source="text_only",
                ),
            )

    plan.generate_assets = list(assets.values())
    if has_code:
        base_source: Optional[str] = "codebase"
    elif plan.measure_pixels:
        base_source = f"file_{plan.measure_pixels[0]}"
    else:
        base_source = None
    return RoutingStrategy(mode=mode, base_source=base_source, file_roles=roles, execution_plan=plan)


def sanitize_strategy(strategy: RoutingStrategy, request: PipelineInput) -> RoutingStrategy:
    """Drop plan entries that do not match the supplied files and code."""
    files = request.files
    plan = strategy.execution_plan
    has_code = bool(request.current_code and request.current_code.strip())

    mode = strategy.mode
    if not files:
        mode = PipelineMode.EDIT if has_code else PipelineMode.GENERATE
    elif mode in {PipelineMode.EDIT, PipelineMode.MERGE} and not has_code:
        mode = PipelineMode.CREATE

    measure = [index for index in plan.measure_pixels if 0 <= index < len(files) and files[index].is_image]
    physics = [index for index in plan.extract_physics if 0 <= index < len(files) and files[index].is_video]
    seen: set[str] = set()
    assets: List[GeneratedAssetRequest] = []
    for asset in plan.generate_assets:
        if asset.name in seen:
            continue
        if asset.source == "reference_image" and not any(item.is_image for item in files):
            asset = replace(asset, source="text_only")
        seen.add(asset.name)
        assets.append(asset)

    if mode is PipelineMode.GENERATE:
        measure, physics, assets = [], [], []

    return RoutingStrategy(
        mode=mode,
        base_source=strategy.base_source,
        file_roles=list(strategy.file_roles),
        execution_plan=ExecutionPlan(
            measure_pixels=measure,
            extract_physics=physics,
            preserve_existing_code=plan.preserve_existing_code and has_code,
            generate_assets=assets,
        ),
    )


class RouteRequest(BaseNode):
    """Selects the execution strategy before any other stage starts."""

    timing_key = "router"

    def __init__(self, run_id: str, logger, events, code_model: CodeModel, use_model: bool = False) -> None:
        super().__init__(name="RouteRequest", run_id=run_id, logger=logger, events=events)
        self._code_model = code_model
        self._use_model = use_model

    def should_run(self, state: RunState) -> bool:
        return True

    async def run(self, state: RunState) -> Dict[str, Any]:
        return {"strategy": await self.route(state["request"])}

    async def route(self, request: PipelineInput) -> RoutingStrategy:
        heuristic = heuristic_strategy(request)
        if not self._use_model:
            strategy = sanitize_strategy(heuristic, request)
            self.log_response(strategy.to_dict())
            self._announce(strategy)
            return strategy

        prompt = self._build_prompt(request, heuristic)
        self.log_prompt(prompt)
        try:
            raw = await self._code_model.plan_route(prompt)
        except ConfigurationError:
            raise
        except Exception as err:
            raise CatastrophicFailure("router", f"routing model unavailable: {err}") from err
        self.log_response({"raw": raw})

        try:
            strategy = self._parse(raw, heuristic.mode)
        except ParseError as err:
            self.warn(f"Router response could not be parsed ({err}); using rule-based routing.")
            strategy = heuristic
        strategy = sanitize_strategy(strategy, request)
        self._announce(strategy)
        return strategy

    def _announce(self, strategy: RoutingStrategy) -> None:
        plan = strategy.execution_plan
        self.emit(
            f"mode={strategy.mode.value} measure={plan.measure_pixels} physics={plan.extract_physics} "
            f"assets={[asset.name for asset in plan.generate_assets]}",
            mode=strategy.mode.value,
        )

    @staticmethod
    def _parse(raw: str, default_mode: PipelineMode) -> RoutingStrategy:
        payload = extract_json_object(raw)
        if payload is None:
            raise ParseError("no JSON object in router response", raw)
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ParseError(f"invalid JSON: {exc.msg}", raw) from exc
        if not isinstance(data, dict):
            raise ParseError("router response is not an object", raw)
        return RoutingStrategy.from_dict(data, default_mode)

    @staticmethod
    def _build_prompt(request: PipelineInput, heuristic: RoutingStrategy) -> str:
        files = [
            {"index": index, "filename": item.filename, "mimeType": item.mime_type}
            for index, item in enumerate(request.files)
        ]
        return load_prompt(
            "router",
            {
                "instructions": request.instructions.strip() or "(none)",
                "files": json_block(files),
                "has_code": "yes" if request.current_code else "no",
                "heuristic_plan": json_block(heuristic.to_dict()),
            },
        )
