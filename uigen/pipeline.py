"""Pipeline orchestration for the UI code generator."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List
from uuid import uuid4

from langchain_core.runnables import RunnableLambda
from langgraph.graph import END, START, StateGraph

from .config import PipelineConfig
from .events import EventChannel
from .nodes.architect import DesignStructure
from .nodes.base import Node
from .nodes.builder import AssembleCode
from .nodes.extractor import ExtractAssets
from .nodes.healing import HealCode
from .nodes.live_edit import LiveEdit
from .nodes.motion import AnalyzeMotion
from .nodes.photographer import PhotographAssets
from .nodes.router import RouteRequest
from .nodes.surveyor import SurveyLayout
from .services.base import AssetStorage, CodeModel, FidelityScorer, ImageGenerator, Renderer, VisionModel
from .services.deepseek import DeepSeekClient
from .services.fidelity import PixelFidelityScorer
from .services.jimeng import JimengClient
from .services.qwen import QwenClient
from .services.renderer import PlaywrightRenderer
from .services.storage import LocalAssetStorage
from .types import CanvasConfig, LiveEditResult, PipelineInput, PipelineResult, RunState
from .utils.run_logger import RunLogger

logger = logging.getLogger(__name__)

# Stages that fan out after routing and join before extraction.
BRANCH_STAGES = ("SurveyLayout", "AnalyzeMotion", "PhotographAssets")
BLOCKING_STAGES = {"SurveyLayout", "PhotographAssets", "AssembleCode", "HealCode"}
# Longest string kept when tracing state snapshots.
_TRACE_STRING_LIMIT = 240


class UICodeGenerator:
    """High-level facade exposing the end-to-end generation flow.

    Collaborators default to the vendor clients configured by ``config`` and
    may be injected explicitly (tests pass offline fakes).
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        vision: VisionModel | None = None,
        code_model: CodeModel | None = None,
        image_generator: ImageGenerator | None = None,
        storage: AssetStorage | None = None,
        renderer: Renderer | None = None,
        scorer: FidelityScorer | None = None,
    ) -> None:
        self.config = config or PipelineConfig.from_env()
        self.logger = RunLogger(base_dir=self.config.runs_dir)
        use_mock = self.config.enable_mock_generation

        self.vision = vision or QwenClient(
            api_key=self.config.qwen_api_key,
            api_url=self.config.qwen_api_url,
            model=self.config.vision_model,
            use_mock=use_mock,
        )
        self.code_model = code_model or DeepSeekClient(
            api_key=self.config.deepseek_api_key,
            api_url=self.config.deepseek_api_url,
            model=self.config.code_model,
            use_mock=use_mock,
        )
        self.image_generator = image_generator or JimengClient(
            api_key=self.config.jimeng_api_key,
            api_secret=self.config.jimeng_api_secret,
            api_url=self.config.jimeng_api_url,
            use_mock=use_mock,
        )
        self.storage = storage or LocalAssetStorage(self.config.assets_dir, base_url=self.config.asset_base_url)
        self.renderer = renderer or PlaywrightRenderer(use_mock=use_mock, timeout_ms=self.config.render_timeout_ms)
        self.scorer = scorer or PixelFidelityScorer()

    def run(self, request: PipelineInput, *, deadline_sec: float | None = None) -> PipelineResult:
        """Synchronous wrapper around :meth:`arun`."""
        return asyncio.run(self.arun(request, deadline_sec=deadline_sec))

    async def arun(
        self,
        request: PipelineInput,
        *,
        deadline_sec: float | None = None,
        events: EventChannel | None = None,
    ) -> PipelineResult:
        """Execute the pipeline and return the result.

        Raises :class:`~uigen.errors.ConfigurationError` or
        :class:`~uigen.errors.CatastrophicFailure` for fatal conditions and
        :class:`TimeoutError` when ``deadline_sec`` elapses.
        """
        self.config.validate()
        events = events or EventChannel(self._new_run_id())
        nodes = self._build_nodes(run_id=events.run_id, events=events)
        app = self._build_graph(nodes, events).compile()

        timeout = deadline_sec if deadline_sec is not None else self.config.request_timeout_sec
        events.emit("pipeline", "run_started", f"{len(request.files)} file(s), code={'yes' if request.current_code else 'no'}")
        try:
            invocation = app.ainvoke({"request": request})
            final: RunState = await asyncio.wait_for(invocation, timeout) if timeout else await invocation
        except Exception as err:
            events.emit("pipeline", "run_failed", f"{type(err).__name__}: {err}")
            raise

        events.emit("pipeline", "run_complete", f"{len(final.get('files') or [])} file(s) generated")
        result = PipelineResult(
            files=list(final.get("files") or []),
            strategy=final["strategy"],
            manifests=list(final.get("manifests") or []),
            physics=final.get("physics"),
            warnings=list(events.warnings),
            step_timings=dict(events.timings),
            events=events.as_dicts(),
        )
        self.logger.log_response(events.run_id, "PipelineResult", result.to_dict())
        return result

    async def alive_edit(self, current_code: str, selected_data_id: str, instruction: str) -> LiveEditResult:
        """Edit one ``data-id`` element of already generated code."""
        events = EventChannel(self._new_run_id())
        editor = LiveEdit(run_id=events.run_id, logger=self.logger, events=events, code_model=self.code_model)
        return await editor.live_edit(current_code, selected_data_id, instruction)

    def live_edit(self, current_code: str, selected_data_id: str, instruction: str) -> LiveEditResult:
        return asyncio.run(self.alive_edit(current_code, selected_data_id, instruction))

    def _build_nodes(self, *, run_id: str, events: EventChannel) -> Dict[str, Node]:
        """Construct node instances wired with the current services."""
        config = self.config
        common = {"run_id": run_id, "logger": self.logger, "events": events}
        builder = AssembleCode(**common, code_model=self.code_model, attach_image=config.builder_attach_image)

        nodes: List[Node] = [
            RouteRequest(**common, code_model=self.code_model, use_model=config.router_use_model),
            SurveyLayout(
                **common,
                vision=self.vision,
                storage=self.storage,
                min_image_dimension=config.min_image_dimension,
                fallback_canvas=CanvasConfig.fallback(config.fallback_canvas_width, config.fallback_canvas_height),
            ),
            PhotographAssets(
                **common,
                generator=self.image_generator,
                storage=self.storage,
                concurrency=config.generation_concurrency,
            ),
            ExtractAssets(**common, storage=self.storage, concurrency=config.extraction_concurrency),
            builder,
        ]
        if config.enable_motion:
            nodes.append(AnalyzeMotion(**common, vision=self.vision))
        if config.enable_structure:
            nodes.append(DesignStructure(**common, code_model=self.code_model))
        if config.enable_healing:
            nodes.append(
                HealCode(
                    **common,
                    builder=builder,
                    renderer=self.renderer,
                    scorer=self.scorer,
                    max_iterations=config.max_heal_iterations,
                    target_fidelity=config.target_fidelity,
                )
            )
        return {node.name: node for node in nodes}

    def _build_graph(self, nodes: Dict[str, Node], events: EventChannel) -> StateGraph:
        """Wire route -> fan-out -> barrier -> extract -> [structure] -> build -> [heal]."""
        graph = StateGraph(RunState)

        for node in nodes.values():

            async def _call(state: RunState, *, _node: Node = node) -> Dict[str, Any]:
                return await self._invoke_node(_node, state, events)

            graph.add_node(
                node.name,
                RunnableLambda(_call, name=node.name),
                metadata={"kind": node.timing_key, "may_block": node.name in BLOCKING_STAGES},
            )

        graph.add_edge(START, "RouteRequest")
        branches = [name for name in BRANCH_STAGES if name in nodes]
        for name in branches:
            graph.add_edge("RouteRequest", name)
        graph.add_edge(branches, "ExtractAssets")

        tail = "ExtractAssets"
        if "DesignStructure" in nodes:
            graph.add_edge(tail, "DesignStructure")
            tail = "DesignStructure"
        graph.add_edge(tail, "AssembleCode")

        heal = nodes.get("HealCode")
        if heal is None:
            graph.add_edge("AssembleCode", END)
        else:
            graph.add_conditional_edges(
                "AssembleCode",
                lambda state: "heal" if heal.should_run(state) else "end",
                {"heal": "HealCode", "end": END},
            )
            graph.add_edge("HealCode", END)
        return graph

    async def _invoke_node(self, node: Node, state: RunState, events: EventChannel) -> Dict[str, Any]:
        """Execute a node, recording its timing and tracing its IO."""
        if not node.should_run(state):
            events.emit(node.name, "skipped", f"{node.name} skipped")
            return {}

        self._trace_step(node.name, "input", state)
        started = time.perf_counter()
        update = await node.run(state)
        events.record_timing(node.timing_key, started)
        self._trace_step(node.name, "output", update)
        return update

    def _trace_step(self, step: str, direction: str, payload: Any) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        prefix = ">>" if direction == "input" else "<<"
        body = json.dumps(self._snapshot(payload), ensure_ascii=False, indent=2, default=str)
        logger.debug("[%s] %s %s:\n%s", step, prefix, direction, body)

    def _snapshot(self, value: Any) -> Any:
        """Return a compact serialisable view of ``value`` for tracing."""
        if hasattr(value, "to_dict"):
            value = value.to_dict()
        elif is_dataclass(value) and not isinstance(value, type):
            value = asdict(value)
        if isinstance(value, dict):
            return {k: self._snapshot(v) for k, v in value.items() if not self._is_empty(v)}
        if isinstance(value, (list, tuple)):
            return [self._snapshot(item) for item in value if not self._is_empty(item)]
        if isinstance(value, bytes):
            return f"<{len(value)} bytes>"
        if isinstance(value, str) and len(value) > _TRACE_STRING_LIMIT:
            return value[:_TRACE_STRING_LIMIT] + f"... <{len(value)} chars>"
        return value

    @staticmethod
    def _is_empty(value: Any) -> bool:
        if value is None:
            return True
        if isinstance(value, (str, bytes)) and value == "":
            return True
        if isinstance(value, (list, tuple, set, dict)) and len(value) == 0:
            return True
        return False

    @staticmethod
    def _new_run_id() -> str:
        """Return a sortable unique run identifier."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        return f"{stamp}-{uuid4().hex[:6]}"
