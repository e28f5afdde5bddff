"""Utilities for loading reusable prompt templates."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Mapping

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
_PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")
_FENCE_PATTERN = re.compile(r"^```[\w-]*\s*\n?|\n?```\s*$")


def load_prompt(name: str, variables: Mapping[str, object] | None = None) -> str:
    """Return the rendered prompt text for ``name`` using optional placeholders.

    Unknown placeholders are left untouched so templates can carry literal
    ``{{ ... }}`` examples.
    """
    path = PROMPTS_DIR / f"{name}.txt"
    template = path.read_text(encoding="utf-8")
    if not variables:
        return template

    if not isinstance(variables, Mapping):
        raise TypeError("variables must be a mapping of placeholder -> value")

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = variables[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER_PATTERN.sub(_replace, template)


def json_block(value: Any) -> str:
    """Render ``value`` as indented JSON for embedding into a prompt."""
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def strip_code_fences(text: str) -> str:
    """Remove a leading and trailing markdown fence, if present."""
    return _FENCE_PATTERN.sub("", text.strip()).strip()


def extract_json_object(text: str) -> str | None:
    """Return the outermost ``{...}`` substring of ``text``."""
    cleaned = strip_code_fences(text)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        return None
    return cleaned[start : end + 1]


__all__ = ["load_prompt", "json_block", "strip_code_fences", "extract_json_object", "PROMPTS_DIR"]
