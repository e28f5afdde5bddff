"""Builder stage: synthesizes the React source files."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..errors import CatastrophicFailure, ConfigurationError
from ..services.base import CodeModel
from ..types import (
    AppFile,
    AssetMap,
    ComponentStructure,
    HealingContext,
    MotionPhysics,
    PipelineMode,
    RoutingStrategy,
    RunState,
    VisualManifest,
    merge_asset_maps,
)
from ..utils.prompts import json_block, load_prompt, strip_code_fences
from .base import BaseNode

APP_PATH = "/src/App.tsx"
STYLES_PATH = "/src/styles.css"
INDEX_PATH = "/src/index.tsx"
DEFAULT_STYLES = "/* Generated styles */"
INDEX_SOURCE = """import React from 'react';
import { createRoot } from 'react-dom/client';
import App from './App';
import './styles.css';

createRoot(document.getElementById('root')!).render(<App />);
"""

_FILE_MARKER = re.compile(r"^\s*-{3}\s*FILE:\s*([\w./-]+)\s*-{3}\s*$", re.MULTILINE)
_HEX_COLOR = re.compile(r"#(?:[0-9a-fA-F]{6}|[0-9a-fA-F]{3})\b")


@dataclass(slots=True)
class BuildRequest:
    """Everything the code model needs for one synthesis call."""

    strategy: RoutingStrategy
    instructions: str = ""
    manifests: Sequence[VisualManifest] = ()
    assets: AssetMap = field(default_factory=dict)
    structure: Optional[ComponentStructure] = None
    physics: Optional[MotionPhysics] = None
    current_code: Optional[str] = None
    app_context: Optional[Mapping[str, Any]] = None
    image: Optional[Tuple[bytes, str]] = None
    healing: Optional[HealingContext] = None

    @property
    def is_generate(self) -> bool:
        return self.strategy.mode is PipelineMode.GENERATE

    @property
    def lacks_layout_tree(self) -> bool:
        return bool(self.manifests) and all(manifest.dom_tree is None for manifest in self.manifests)


def parse_builder_output(raw: str) -> List[AppFile]:
    """Split the model answer on ``--- FILE: name ---`` markers.

    Always returns ``App.tsx``, ``styles.css`` and ``index.tsx``; other
    marked files are kept under ``/src``.
    """
    sections: Dict[str, str] = {}
    markers = list(_FILE_MARKER.finditer(raw))
    if not markers:
        sections["App.tsx"] = strip_code_fences(raw)
    for position, marker in enumerate(markers):
        end = markers[position + 1].start() if position + 1 < len(markers) else len(raw)
        name = marker.group(1).strip().lstrip("./")
        if name.startswith("src/"):
            name = name[len("src/"):]
        sections[name] = strip_code_fences(raw[marker.end():end])

    app = sections.pop("App.tsx", "").strip()
    styles = sections.pop("styles.css", "").strip() or DEFAULT_STYLES
    sections.pop("index.tsx", None)

    files = [AppFile(path=APP_PATH, content=app + "\n" if app else ""), AppFile(path=STYLES_PATH, content=styles + "\n")]
    files.extend(AppFile(path=f"/src/{name}", content=body.strip() + "\n") for name, body in sections.items() if body.strip())
    files.append(AppFile(path=INDEX_PATH, content=INDEX_SOURCE))
    return files


def literal_colors(manifests: Iterable[VisualManifest]) -> List[str]:
    """Hex colours captured in manifest styles, in first-seen order."""
    colors: List[str] = []
    for manifest in manifests:
        tree = manifest.dom_tree
        if tree is None:
            continue
        for node, _ in tree.walk():
            values: List[Any] = list(node.styles.values())
            for state_styles in node.interaction_states.values():
                values.extend(state_styles.values())
            for value in values:
                if not isinstance(value, str):
                    continue
                for color in _HEX_COLOR.findall(value):
                    if color.lower() not in colors:
                        colors.append(color.lower())
    return colors


class AssembleCode(BaseNode):
    """Builds the prompt, calls the code model and parses the returned files."""

    timing_key = "builder"

    def __init__(self, run_id: str, logger, events, code_model: CodeModel, *, attach_image: bool = False) -> None:
        super().__init__(name="AssembleCode", run_id=run_id, logger=logger, events=events)
        self._code_model = code_model
        self._attach_image = attach_image

    def should_run(self, state: RunState) -> bool:
        return True

    async def run(self, state: RunState) -> Dict[str, Any]:
        return {"files": await self.assemble_code(self.request_from_state(state))}

    @staticmethod
    def request_from_state(state: RunState) -> BuildRequest:
        request = state["request"]
        strategy = state["strategy"]
        manifests = state.get("manifests") or []
        image: Optional[Tuple[bytes, str]] = None
        if strategy.mode is not PipelineMode.GENERATE:
            source = next(
                (request.files[manifest.file_index] for manifest in manifests),
                next((item for item in request.files if item.is_image), None),
            )
            if source is not None:
                image = (source.data, source.mime_type)
        return BuildRequest(
            strategy=strategy,
            instructions=request.instructions,
            manifests=manifests,
            assets=merge_asset_maps(state.get("generated_assets") or {}, state.get("extracted_assets") or {}),
            structure=state.get("structure"),
            physics=state.get("physics"),
            current_code=request.current_code,
            app_context=request.app_context,
            image=image,
        )

    async def assemble_code(self, request: BuildRequest, suffix: str = "") -> List[AppFile]:
        if request.is_generate:
            request = replace(request, manifests=(), image=None, physics=None, structure=None, assets={})
        if not self._attach_image and request.image is not None:
            if request.lacks_layout_tree:
                self.warn(
                    "No layout tree was extracted and the code model does not accept images; "
                    "building without any visual reference."
                )
            request = replace(request, image=None)
        prompt = self.build_prompt(request)
        self.log_prompt(prompt, suffix=suffix)

        try:
            raw = await self._code_model.generate_code(prompt, request.image)
        except ConfigurationError:
            raise
        except Exception as err:
            raise CatastrophicFailure("builder", f"code model unavailable: {err}") from err
        self.log_response({"raw": raw}, suffix=suffix)

        files = parse_builder_output(raw or "")
        if not files[0].content.strip():
            raise CatastrophicFailure("builder", "code model returned no App.tsx content")
        self._audit(request, files)
        return files

    def _audit(self, request: BuildRequest, files: Sequence[AppFile]) -> None:
        output = "\n".join(item.content for item in files).lower()
        missing_colors = [color for color in literal_colors(request.manifests) if color not in output]
        if missing_colors:
            self.warn(
                f"Generated code omits {len(missing_colors)} literal colour(s) from the manifest: "
                + ", ".join(missing_colors[:8]),
                colors=missing_colors,
            )
        missing_assets = [name for name, url in request.assets.items() if url.lower() not in output]
        if missing_assets:
            self.warn(
                f"Generated code does not reference {len(missing_assets)} asset(s): " + ", ".join(missing_assets),
                assets=missing_assets,
            )

    @staticmethod
    def build_prompt(request: BuildRequest) -> str:
        sections: List[str] = []

        if request.assets:
            sections.append(
                "### ASSETS\nUse these exact URLs. Keys are node ids (crops) or asset names (generated).\n"
                + json_block(request.assets)
            )

        sections.append("### INSTRUCTIONS\n" + (request.instructions.strip() or "(none)"))

        if request.app_context:
            sections.append("### APP CONTEXT\n" + json_block(dict(request.app_context)))

        if request.is_generate:
            sections.append("### MODE\nGENERATE: no reference image. Design from the instructions and app context.")
        else:
            if request.structure is not None and request.structure.tree:
                sections.append("### STRUCTURE\n" + json_block(request.structure.to_dict()))
            if request.manifests:
                sections.append(
                    "### MANIFESTS\nCopy every style value literally.\n"
                    + json_block([manifest.to_dict() for manifest in request.manifests])
                )
                if request.lacks_layout_tree and request.image is not None:
                    sections.append(
                        "### REFERENCE\nThe layout tree is unavailable; reproduce the attached reference image directly."
                    )
                elif request.lacks_layout_tree:
                    sections.append(
                        "### REFERENCE\nThe layout tree is unavailable and no image is attached; "
                        "build from the instructions and the canvas size."
                    )
            if request.physics is not None and request.physics.component_motions:
                sections.append("### PHYSICS\n" + json_block(request.physics.to_dict()))
            else:
                sections.append("### PHYSICS\nSTATIC: no motion data. Use plain CSS transitions only.")

        healing = request.healing
        if healing is not None:
            regions = [
                {"id": item.node_id, "fidelity": item.score, "styles": dict(item.styles)}
                for item in healing.discrepancies
            ]
            sections.append(
                "### HEALING CONTEXT\n"
                f"Iteration {healing.iteration}: previous fidelity {healing.previous_fidelity:.1f}% "
                f"(target {healing.target_fidelity:.1f}%).\n"
                f"{healing.summary()}\n"
                "Fix only these regions; keep every other element unchanged.\n" + json_block(regions)
            )

        preserve = request.strategy.execution_plan.preserve_existing_code or request.strategy.mode in {
            PipelineMode.EDIT,
            PipelineMode.MERGE,
        }
        if preserve and request.current_code:
            sections.append(
                f"### EXISTING CODE ({request.strategy.mode.value})\n"
                "Modify this code; preserve what the instructions do not ask to change.\n"
                f"```tsx\n{request.current_code.strip()}\n```"
            )

        return load_prompt("builder", {"sections": "\n\n".join(sections)}).strip()
