"""Core data models used across the UI generation pipeline.

Records mirror the JSON wire shapes exchanged with callers and with the
vision/code models.  ``from_dict`` helpers are lenient (model output is noisy);
``to_dict`` helpers emit the camelCase wire keys.
"""

from __future__ import annotations

import base64
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, TypedDict

VOID_ELEMENT_TYPES = frozenset({"img", "input", "br", "hr"})
VISUAL_CATEGORIES = frozenset(
    {"photograph", "logo", "brand_icon", "decorative_graphic", "simple_icon", "ui_chrome"}
)


class PipelineMode(str, Enum):
    """Execution modes selected by the router."""

    CREATE = "CREATE"
    MERGE = "MERGE"
    EDIT = "EDIT"
    GENERATE = "GENERATE"

    @classmethod
    def parse(cls, value: Any, default: "PipelineMode") -> "PipelineMode":
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return default


def _as_number(value: Any) -> Optional[float]:
    """Coerce model-supplied numbers (``12``, ``"12.5"``, ``"12%"``) to float."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip().rstrip("%"))
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


@dataclass(slots=True, frozen=True)
class Bounds:
    """Box expressed in percentages (0-100) of a containing box."""

    top: float
    left: float
    width: float
    height: float

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Bounds"]:
        if not isinstance(data, Mapping):
            return None
        values = [_as_number(data.get(key)) for key in ("top", "left", "width", "height")]
        if any(value is None for value in values):
            return None
        return cls(*values)  # type: ignore[arg-type]

    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0

    def within(self, parent: "Bounds") -> "Bounds":
        """Translate this parent-relative box into the coordinate space of ``parent``'s container."""
        return Bounds(
            top=parent.top + self.top * parent.height / 100.0,
            left=parent.left + self.left * parent.width / 100.0,
            width=self.width * parent.width / 100.0,
            height=self.height * parent.height / 100.0,
        )

    def to_pixels(self, width: int, height: int) -> Tuple[int, int, int, int]:
        """Return a ``(left, top, right, bottom)`` pixel box clamped to the image."""
        left = max(0, min(width, int(round(self.left * width / 100.0))))
        top = max(0, min(height, int(round(self.top * height / 100.0))))
        right = max(left, min(width, int(round((self.left + self.width) * width / 100.0))))
        bottom = max(top, min(height, int(round((self.top + self.height) * height / 100.0))))
        return left, top, right, bottom

    def to_dict(self) -> Dict[str, float]:
        return {"top": self.top, "left": self.left, "width": self.width, "height": self.height}


CANVAS_BOUNDS = Bounds(top=0.0, left=0.0, width=100.0, height=100.0)


@dataclass(slots=True, frozen=True)
class IconSpec:
    """Symbolic or vector icon attached to a node."""

    name: Optional[str] = None
    svg_path: Optional[str] = None
    view_box: Optional[str] = None
    fill: Optional[str] = None
    color: Optional[str] = None
    position: Optional[str] = None
    size: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["IconSpec"]:
        icon = cls(
            name=_opt_str(data.get("iconName")),
            svg_path=_opt_str(data.get("svgPath") or data.get("iconSvgPath")),
            view_box=_opt_str(data.get("viewBox") or data.get("iconViewBox")),
            fill=_opt_str(data.get("fill")),
            color=_opt_str(data.get("iconColor")),
            position=_opt_str(data.get("iconPosition")),
            size=_opt_str(data.get("iconSize")),
        )
        return icon if any(getattr(icon, name) for name in cls.__slots__) else None

    def to_dict(self) -> Dict[str, str]:
        pairs = {
            "iconName": self.name,
            "svgPath": self.svg_path,
            "viewBox": self.view_box,
            "fill": self.fill,
            "iconColor": self.color,
            "iconPosition": self.position,
            "iconSize": self.size,
        }
        return {key: value for key, value in pairs.items() if value}


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _str_mapping(value: Any) -> Dict[str, Any]:
    if not isinstance(value, Mapping):
        return {}
    return {str(key): item for key, item in value.items()}


@dataclass(slots=True, frozen=True)
class UINode:
    """One element of the reconstructed visual tree.

    Nodes are immutable; transforms such as the auto-fix pass build new trees
    with :func:`dataclasses.replace`.  Void element types never carry a
    ``children`` tuple.
    """

    id: Optional[str]
    type: str = "div"
    bounds: Optional[Bounds] = None
    styles: Mapping[str, Any] = field(default_factory=dict)
    interaction_states: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    text: Optional[str] = None
    visual_category: Optional[str] = None
    has_custom_visual: bool = False
    has_image: bool = False
    extraction_action: Optional[str] = None
    extraction_bounds: Optional[Bounds] = None
    icon: Optional[IconSpec] = None
    children: Optional[Tuple["UINode", ...]] = None

    def __post_init__(self) -> None:
        if self.is_void and self.children is not None:
            raise ValueError(f"Void element <{self.type}> cannot have children (node {self.id!r}).")

    @property
    def is_void(self) -> bool:
        return self.type.lower() in VOID_ELEMENT_TYPES

    @property
    def extraction_source(self) -> Optional[Bounds]:
        return self.extraction_bounds or self.bounds

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UINode":
        node_type = _opt_str(data.get("type")) or "div"
        children: Optional[Tuple[UINode, ...]] = None
        raw_children = data.get("children")
        if node_type.lower() not in VOID_ELEMENT_TYPES and isinstance(raw_children, list):
            children = tuple(cls.from_dict(child) for child in raw_children if isinstance(child, Mapping))

        category = _opt_str(data.get("visualCategory"))
        if category and category not in VISUAL_CATEGORIES:
            category = None

        raw_id = data.get("id")
        node_id = raw_id.strip() if isinstance(raw_id, str) and raw_id.strip() else None

        return cls(
            id=node_id,
            type=node_type,
            bounds=Bounds.from_dict(data.get("bounds")),
            styles=_str_mapping(data.get("styles")),
            interaction_states={
                key: _str_mapping(value) for key, value in _str_mapping(data.get("interactionStates")).items()
            },
            text=_opt_str(data.get("text")),
            visual_category=category,
            has_custom_visual=bool(data.get("hasCustomVisual")),
            has_image=bool(data.get("hasImage")),
            extraction_action=_opt_str(data.get("extractionAction")),
            extraction_bounds=Bounds.from_dict(data.get("extractionBounds")),
            icon=IconSpec.from_dict(data),
            children=children,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type}
        if self.id is not None:
            payload["id"] = self.id
        if self.bounds is not None:
            payload["bounds"] = self.bounds.to_dict()
        payload["styles"] = dict(self.styles)
        if self.interaction_states:
            payload["interactionStates"] = {key: dict(value) for key, value in self.interaction_states.items()}
        if self.text is not None:
            payload["text"] = self.text
        if self.visual_category:
            payload["visualCategory"] = self.visual_category
        if self.has_custom_visual:
            payload["hasCustomVisual"] = True
        if self.has_image:
            payload["hasImage"] = True
        if self.extraction_action:
            payload["extractionAction"] = self.extraction_action
        if self.extraction_bounds is not None:
            payload["extractionBounds"] = self.extraction_bounds.to_dict()
        if self.icon is not None:
            payload.update(self.icon.to_dict())
        if self.children is not None:
            payload["children"] = [child.to_dict() for child in self.children]
        return payload

    def with_children(self, children: Tuple["UINode", ...]) -> "UINode":
        return replace(self, children=children)

    def walk(self, container: Optional[Bounds] = CANVAS_BOUNDS) -> Iterator[Tuple["UINode", Optional[Bounds]]]:
        """Yield ``(node, container_box)`` pairs depth-first.

        ``container_box`` is the canvas-absolute box this node's own bounds are
        relative to, or ``None`` when an ancestor has no usable bounds.
        """
        yield self, container
        if not self.children:
            return
        own_box = self.bounds.within(container) if container is not None and self.bounds is not None else None
        for child in self.children:
            yield from child.walk(own_box)


@dataclass(slots=True)
class CanvasConfig:
    """Pixel dimensions of the reference image."""

    width: int
    height: int
    source: str = "measured"

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 0.0

    @classmethod
    def fallback(cls, width: int = 1440, height: int = 900) -> "CanvasConfig":
        return cls(width=width, height=height, source="fallback")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "source": self.source,
            "aspectRatio": round(self.aspect_ratio, 6),
        }


@dataclass(slots=True)
class ImageRef:
    """Reference to an image held by asset storage."""

    file_uri: str
    mime_type: str = "image/png"

    def to_dict(self) -> Dict[str, str]:
        return {"fileUri": self.file_uri, "mimeType": self.mime_type}


@dataclass(slots=True)
class ThemeSpec:
    dom_tree: Optional[UINode] = None
    assets: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.dom_tree is not None:
            payload["dom_tree"] = self.dom_tree.to_dict()
        if self.assets:
            payload["assets"] = list(self.assets)
        return payload


@dataclass(slots=True)
class VisualManifest:
    """Structured description of one reference image."""

    file_index: int
    canvas: CanvasConfig
    original_image_ref: Optional[ImageRef] = None
    global_theme: ThemeSpec = field(default_factory=ThemeSpec)
    measured_components: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def dom_tree(self) -> Optional[UINode]:
        return self.global_theme.dom_tree

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "file_index": self.file_index,
            "canvas": self.canvas.to_dict(),
            "global_theme": self.global_theme.to_dict(),
            "measured_components": list(self.measured_components),
        }
        if self.original_image_ref is not None:
            payload["originalImageRef"] = self.original_image_ref.to_dict()
        return payload


_TARGET_ELEMENTS = (("button", "button"), ("hero", "hero section"), ("card", "card"))


@dataclass(slots=True)
class GeneratedAssetRequest:
    """Decorative asset the photographer should synthesize."""

    name: str
    description: str
    vibe: str = ""
    type: str = "texture"
    source: str = "text_only"

    @property
    def target_element(self) -> str:
        lowered = self.name.lower()
        for keyword, element in _TARGET_ELEMENTS:
            if keyword in lowered:
                return element
        return "background"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["GeneratedAssetRequest"]:
        name = _opt_str(data.get("name"))
        if not name:
            return None
        asset_type = _opt_str(data.get("type")) or "texture"
        source = _opt_str(data.get("source")) or "text_only"
        return cls(
            name=name,
            description=_opt_str(data.get("description")) or name.replace("_", " "),
            vibe=_opt_str(data.get("vibe")) or "",
            type=asset_type if asset_type in {"texture", "image", "icon"} else "texture",
            source=source if source in {"text_only", "reference_image"} else "text_only",
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "description": self.description,
            "vibe": self.vibe,
            "type": self.type,
            "source": self.source,
        }


@dataclass(slots=True)
class ExecutionPlan:
    measure_pixels: List[int] = field(default_factory=list)
    extract_physics: List[int] = field(default_factory=list)
    preserve_existing_code: bool = False
    generate_assets: List[GeneratedAssetRequest] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "measure_pixels": list(self.measure_pixels),
            "extract_physics": list(self.extract_physics),
            "preserve_existing_code": self.preserve_existing_code,
            "generate_assets": [asset.to_dict() for asset in self.generate_assets],
        }


@dataclass(slots=True)
class RoutingStrategy:
    """Execution plan produced once by the router; read-only afterwards."""

    mode: PipelineMode
    base_source: Optional[str] = None
    file_roles: List[str] = field(default_factory=list)
    execution_plan: ExecutionPlan = field(default_factory=ExecutionPlan)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], default_mode: PipelineMode = PipelineMode.CREATE) -> "RoutingStrategy":
        plan = data.get("execution_plan")
        plan = plan if isinstance(plan, Mapping) else {}
        assets = plan.get("generate_assets")
        requests = [
            request
            for request in (
                GeneratedAssetRequest.from_dict(item) for item in (assets if isinstance(assets, list) else [])
                if isinstance(item, Mapping)
            )
            if request is not None
        ]
        roles = data.get("file_roles")
        return cls(
            mode=PipelineMode.parse(data.get("mode"), default_mode),
            base_source=_opt_str(data.get("base_source")),
            file_roles=[str(role) for role in roles] if isinstance(roles, list) else [],
            execution_plan=ExecutionPlan(
                measure_pixels=_index_list(plan.get("measure_pixels")),
                extract_physics=_index_list(plan.get("extract_physics")),
                preserve_existing_code=bool(plan.get("preserve_existing_code")),
                generate_assets=requests,
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "base_source": self.base_source,
            "file_roles": list(self.file_roles),
            "execution_plan": self.execution_plan.to_dict(),
        }


def _index_list(value: Any) -> List[int]:
    if not isinstance(value, list):
        return []
    indices: List[int] = []
    for item in value:
        if isinstance(item, bool):
            continue
        if isinstance(item, int) and item not in indices:
            indices.append(item)
    return indices


@dataclass(slots=True)
class MotionPhysics:
    component_motions: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"component_motions": list(self.component_motions)}


@dataclass(slots=True)
class ComponentStructure:
    layout_strategy: str = "flex"
    tree: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"layout_strategy": self.layout_strategy, "tree": list(self.tree)}


@dataclass(slots=True)
class AppFile:
    path: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "content": self.content}


@dataclass(slots=True)
class FileInput:
    """A reference file supplied by the caller (base64 or data URL)."""

    filename: str
    mime_type: str
    base64: str

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")

    @property
    def data(self) -> bytes:
        payload = self.base64
        if payload.startswith("data:") and "," in payload:
            payload = payload.split(",", 1)[1]
        return base64.b64decode(payload)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FileInput":
        return cls(
            filename=str(data.get("filename") or "upload"),
            mime_type=str(data.get("mimeType") or data.get("mime_type") or "application/octet-stream"),
            base64=str(data.get("base64") or ""),
        )


@dataclass(slots=True, frozen=True)
class PipelineInput:
    """Caller request; never mutated by the pipeline."""

    files: Tuple[FileInput, ...] = ()
    instructions: str = ""
    current_code: Optional[str] = None
    app_context: Optional[Mapping[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineInput":
        files = data.get("files") or []
        context = data.get("appContext")
        return cls(
            files=tuple(FileInput.from_dict(item) for item in files if isinstance(item, Mapping)),
            instructions=str(data.get("instructions") or ""),
            current_code=data.get("currentCode") or None,
            app_context=dict(context) if isinstance(context, Mapping) else None,
        )


@dataclass(slots=True)
class PipelineResult:
    """Terminal artifact returned to the caller."""

    files: List[AppFile]
    strategy: RoutingStrategy
    manifests: List[VisualManifest] = field(default_factory=list)
    physics: Optional[MotionPhysics] = None
    warnings: List[str] = field(default_factory=list)
    step_timings: Dict[str, int] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)

    def file(self, path: str) -> Optional[AppFile]:
        return next((item for item in self.files if item.path == path), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": [item.to_dict() for item in self.files],
            "strategy": self.strategy.to_dict(),
            "manifests": [manifest.to_dict() for manifest in self.manifests],
            "physics": self.physics.to_dict() if self.physics else None,
            "warnings": list(self.warnings),
            "stepTimings": dict(self.step_timings),
        }


@dataclass(slots=True)
class RegionDiscrepancy:
    node_id: str
    score: float
    styles: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class HealingContext:
    """Patch context handed to the builder on a healing rebuild."""

    iteration: int
    previous_fidelity: float
    target_fidelity: float
    discrepancies: List[RegionDiscrepancy] = field(default_factory=list)

    @property
    def modified_component_ids(self) -> List[str]:
        return [item.node_id for item in self.discrepancies]

    def summary(self) -> str:
        if not self.discrepancies:
            return "Overall layout drift; no single region dominates."
        parts = [f"{item.node_id} ({item.score:.1f}%)" for item in self.discrepancies]
        return "Lowest-fidelity regions: " + ", ".join(parts)


@dataclass(slots=True)
class HealingIteration:
    iteration: int
    screenshot: bytes
    fidelity: float
    context: Optional[HealingContext] = None


@dataclass(slots=True)
class LiveEditResult:
    success: bool
    updated_code: str
    error: Optional[str] = None


AssetMap = Dict[str, str]


def merge_asset_maps(generated: Mapping[str, str], extracted: Mapping[str, str]) -> AssetMap:
    """Combine asset maps; extracted crops override generated assets on key collision."""
    merged: AssetMap = dict(generated)
    merged.update(extracted)
    return merged


class RunState(TypedDict, total=False):
    """Graph state threaded between pipeline nodes.

    Each key has a single writer; parallel branches write disjoint keys.
    """

    request: PipelineInput
    strategy: RoutingStrategy
    manifests: List[VisualManifest]
    physics: Optional[MotionPhysics]
    generated_assets: AssetMap
    extracted_assets: AssetMap
    structure: Optional[ComponentStructure]
    files: List[AppFile]
    fidelity: Optional[float]
