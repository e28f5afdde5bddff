"""Deterministic corrections applied to vision-model trees before extraction.

The vision model tends to describe logos and photographs symbolically
(``iconName: "Logo"``) or to emit unusable vector paths.  The pass below turns
such nodes into crop candidates so the extractor copies the real pixels.
It is a pure transform: the input tree is never modified and running it on
its own output changes nothing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from .types import CANVAS_BOUNDS, Bounds, UINode

logger = logging.getLogger(__name__)

CROP_CATEGORIES = frozenset({"logo", "brand_icon", "decorative_graphic"})
# Canvas share (percent, either axis) above which a broken icon is cropped.
MIN_ICON_CROP_PERCENT = 4.0
MIN_SVG_PATH_LENGTH = 10

_DRAW_COMMAND = re.compile(r"[LlHhVvCcSsQqTtAaZz]")


def is_valid_svg_path(path: Optional[str]) -> bool:
    """A usable path starts with a move command and draws at least one segment."""
    if not path:
        return False
    text = path.strip()
    if len(text) < MIN_SVG_PATH_LENGTH or text[0] not in "Mm":
        return False
    return bool(_DRAW_COMMAND.search(text[1:]))


def _has_background_url(node: UINode) -> bool:
    for key in ("backgroundImage", "background"):
        value = node.styles.get(key)
        if isinstance(value, str) and "url(" in value:
            return True
    return False


@dataclass(slots=True)
class AutoFixReport:
    tree: UINode
    converted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def auto_fix_tree(root: UINode) -> AutoFixReport:
    """Return a corrected copy of ``root`` plus notes on what changed."""
    report = AutoFixReport(tree=root)
    report.tree = _fix(root, CANVAS_BOUNDS, report)
    return report


def _fix(node: UINode, container: Optional[Bounds], report: AutoFixReport) -> UINode:
    fixed = _fix_node(node, container, report)
    if not node.children:
        return fixed
    own_box = node.bounds.within(container) if container is not None and node.bounds is not None else None
    children = tuple(_fix(child, own_box, report) for child in node.children)
    return replace(fixed, children=children)


def _fix_node(node: UINode, container: Optional[Bounds], report: AutoFixReport) -> UINode:
    label = node.id or f"<{node.type}>"
    reason = _crop_reason(node, container)
    if reason is None:
        return node

    source = node.extraction_source
    if source is None:
        message = f"{reason} on {label} has no bounds; cannot crop"
        logger.info("[auto-fix] %s", message)
        report.skipped.append(message)
        return node

    if node.has_custom_visual and node.extraction_action == "crop" and node.extraction_bounds is not None:
        return node

    logger.info("[auto-fix] %s -> crop (node: %s)", reason, label)
    report.converted.append(label)
    return replace(node, has_custom_visual=True, extraction_action="crop", extraction_bounds=source)


def _crop_reason(node: UINode, container: Optional[Bounds]) -> Optional[str]:
    if node.visual_category in CROP_CATEGORIES:
        return f"visual category {node.visual_category!r}"

    icon = node.icon
    if icon is not None and icon.name and not is_valid_svg_path(icon.svg_path):
        absolute = _absolute_box(node, container)
        if absolute is not None and (
            absolute.width >= MIN_ICON_CROP_PERCENT or absolute.height >= MIN_ICON_CROP_PERCENT
        ):
            return f"icon {icon.name!r} without usable vector path"

    if node.type.lower() == "img":
        return "image element"
    if node.has_image:
        return "image flag"
    if _has_background_url(node):
        return "background image url"
    return None


def _absolute_box(node: UINode, container: Optional[Bounds]) -> Optional[Bounds]:
    source = node.extraction_source
    if source is None or container is None:
        return None
    return source.within(container)


def crop_candidates(root: UINode) -> List[Tuple[UINode, Optional[Bounds]]]:
    """Nodes flagged for extraction with their canvas-absolute extraction box."""
    candidates: List[Tuple[UINode, Optional[Bounds]]] = []
    for node, container in root.walk():
        if not (node.has_custom_visual and node.extraction_action == "crop"):
            continue
        source = node.extraction_source
        box = source.within(container) if source is not None and container is not None else None
        candidates.append((node, box))
    return candidates
