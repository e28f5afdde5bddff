"""Healing loop: render, compare against the reference and patch until good enough.

State machine::

    RENDER -> COMPARE -> DECIDE -> PATCH -> RENDER ...
                           |
                           +-> STOP_CONVERGED | STOP_ITERATION_CAP

Render/compare/patch failures move to STOP_HALTED and the last built files
are returned.  Builder re-invocations never exceed ``max_iterations``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..errors import ConfigurationError
from ..services.base import FidelityScorer, Renderer
from ..types import (
    CANVAS_BOUNDS,
    AppFile,
    Bounds,
    ExecutionPlan,
    HealingContext,
    HealingIteration,
    PipelineMode,
    RegionDiscrepancy,
    RoutingStrategy,
    RunState,
    UINode,
    VisualManifest,
)
from .base import BaseNode
from .builder import APP_PATH, AssembleCode, BuildRequest

# Regions reported back to the builder per patch.
MAX_PATCH_REGIONS = 3


class HealState(str, Enum):
    RENDER = "render"
    COMPARE = "compare"
    DECIDE = "decide"
    PATCH = "patch"
    STOP_CONVERGED = "stop_converged"
    STOP_ITERATION_CAP = "stop_iteration_cap"
    STOP_HALTED = "stop_halted"

    @property
    def is_terminal(self) -> bool:
        return self.value.startswith("stop_")


@dataclass(slots=True)
class HealingOutcome:
    files: List[AppFile]
    final_state: HealState
    rebuilds: int = 0
    iterations: List[HealingIteration] = field(default_factory=list)

    @property
    def fidelity(self) -> Optional[float]:
        return self.iterations[-1].fidelity if self.iterations else None


def region_boxes(root: UINode) -> List[Tuple[str, Bounds]]:
    """Canvas-absolute boxes of the root's direct children."""
    if root.bounds is None or not root.children:
        return []
    root_box = root.bounds.within(CANVAS_BOUNDS)
    regions: List[Tuple[str, Bounds]] = []
    for child in root.children:
        if child.id and child.bounds is not None and child.bounds.is_valid():
            regions.append((child.id, child.bounds.within(root_box)))
    return regions


def heal_strategy(strategy: RoutingStrategy) -> RoutingStrategy:
    """Strategy used for patch rebuilds: edit the current code in place."""
    plan = strategy.execution_plan
    return RoutingStrategy(
        mode=PipelineMode.EDIT,
        base_source="codebase",
        file_roles=list(strategy.file_roles),
        execution_plan=ExecutionPlan(
            measure_pixels=list(plan.measure_pixels),
            extract_physics=list(plan.extract_physics),
            preserve_existing_code=True,
            generate_assets=list(plan.generate_assets),
        ),
    )


class HealCode(BaseNode):
    timing_key = "healing"

    def __init__(
        self,
        run_id: str,
        logger,
        events,
        builder: AssembleCode,
        renderer: Renderer,
        scorer: FidelityScorer,
        *,
        max_iterations: int = 2,
        target_fidelity: float = 95.0,
    ) -> None:
        super().__init__(name="HealCode", run_id=run_id, logger=logger, events=events)
        self._builder = builder
        self._renderer = renderer
        self._scorer = scorer
        self._max_iterations = max(0, max_iterations)
        self._target = target_fidelity

    def should_run(self, state: RunState) -> bool:
        manifests = state.get("manifests") or []
        if not manifests or not state.get("files"):
            return False
        first = manifests[0]
        files = state["request"].files
        has_reference = 0 <= first.file_index < len(files) and files[first.file_index].is_image
        return first.dom_tree is not None and has_reference

    async def run(self, state: RunState) -> Dict[str, Any]:
        manifest = state["manifests"][0]
        reference = state["request"].files[manifest.file_index].data
        outcome = await self.heal(
            state["files"], AssembleCode.request_from_state(state), manifest, reference
        )
        return {"files": outcome.files, "fidelity": outcome.fidelity}

    async def heal(
        self,
        files: Sequence[AppFile],
        build_request: BuildRequest,
        manifest: VisualManifest,
        reference: bytes,
    ) -> HealingOutcome:
        outcome = HealingOutcome(files=list(files), final_state=HealState.RENDER)
        regions = region_boxes(manifest.dom_tree) if manifest.dom_tree is not None else []
        screenshot = b""
        score = 0.0
        per_region: Mapping[str, float] = {}
        state = HealState.RENDER

        while not state.is_terminal:
            if state is HealState.RENDER:
                try:
                    screenshot = await self._renderer.render(outcome.files, build_request.assets, manifest.canvas)
                except Exception as err:
                    self.warn(f"Screenshot capture failed on iteration {outcome.rebuilds}, stopping healing: {err}")
                    state = HealState.STOP_HALTED
                    continue
                state = HealState.COMPARE

            elif state is HealState.COMPARE:
                try:
                    score, per_region = await self._scorer.score(reference, screenshot, regions)
                except Exception as err:
                    self.warn(f"Fidelity comparison failed on iteration {outcome.rebuilds}, stopping healing: {err}")
                    state = HealState.STOP_HALTED
                    continue
                outcome.iterations.append(
                    HealingIteration(iteration=outcome.rebuilds, screenshot=screenshot, fidelity=score)
                )
                self.emit(
                    f"Iteration {outcome.rebuilds}: fidelity {score:.1f}% (target {self._target:.1f}%)",
                    iteration=outcome.rebuilds,
                    fidelity=score,
                )
                state = HealState.DECIDE

            elif state is HealState.DECIDE:
                if score >= self._target:
                    state = HealState.STOP_CONVERGED
                elif outcome.rebuilds >= self._max_iterations:
                    state = HealState.STOP_ITERATION_CAP
                else:
                    state = HealState.PATCH

            elif state is HealState.PATCH:
                context = self._patch_context(outcome.rebuilds + 1, score, per_region, manifest.dom_tree)
                outcome.iterations[-1].context = context
                outcome.rebuilds += 1
                try:
                    patched = await self._builder.assemble_code(
                        self._patch_request(build_request, outcome.files, context),
                        suffix=f"heal{outcome.rebuilds}",
                    )
                except ConfigurationError:
                    raise
                except Exception as err:
                    self.warn(f"Healing rebuild {outcome.rebuilds} failed, keeping previous files: {err}")
                    state = HealState.STOP_HALTED
                    continue
                outcome.files = patched
                state = HealState.RENDER

        outcome.final_state = state
        self._summarize(outcome)
        return outcome

    def _summarize(self, outcome: HealingOutcome) -> None:
        self.emit(
            f"Healing stopped in state {outcome.final_state.value} after {outcome.rebuilds} rebuild(s)",
            final_state=outcome.final_state.value,
            rebuilds=outcome.rebuilds,
        )
        if outcome.rebuilds and outcome.iterations:
            first, last = outcome.iterations[0].fidelity, outcome.iterations[-1].fidelity
            self.warn(
                f"Healing loop applied {outcome.rebuilds} fix pass(es); fidelity {first:.1f}% -> {last:.1f}%."
            )

    def _patch_context(
        self, iteration: int, score: float, per_region: Mapping[str, float], root: Optional[UINode]
    ) -> HealingContext:
        styles_by_id: Dict[str, Mapping[str, Any]] = {}
        if root is not None:
            styles_by_id = {node.id: node.styles for node, _ in root.walk() if node.id}
        worst = sorted(
            ((node_id, value) for node_id, value in per_region.items() if value < self._target),
            key=lambda item: item[1],
        )[:MAX_PATCH_REGIONS]
        return HealingContext(
            iteration=iteration,
            previous_fidelity=score,
            target_fidelity=self._target,
            discrepancies=[
                RegionDiscrepancy(node_id=node_id, score=value, styles=styles_by_id.get(node_id, {}))
                for node_id, value in worst
            ],
        )

    @staticmethod
    def _patch_request(base: BuildRequest, files: Sequence[AppFile], context: HealingContext) -> BuildRequest:
        current_app = next((item.content for item in files if item.path == APP_PATH), "")
        return replace(base, strategy=heal_strategy(base.strategy), current_code=current_app, healing=context)
