"""Per-run persistence of model prompts and responses."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .files import ensure_dir, write_json, write_text


@dataclass(slots=True)
class StepLogPaths:
    prompt_path: Path
    response_path: Path


class RunLogger:
    """Persists prompts and responses under ``runs/<run_id>``.

    A stage may log several calls (one per manifest, one per healing pass);
    ``suffix`` keeps them apart.
    """

    def __init__(self, base_dir: str | Path = "runs") -> None:
        self._base_dir = ensure_dir(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def step_paths(self, run_id: str, step_name: str, suffix: str = "") -> StepLogPaths:
        """Return the paths used for logging a specific step."""
        run_root = ensure_dir(self._base_dir / run_id)
        stem = f"{step_name}-{suffix}" if suffix else step_name
        return StepLogPaths(
            prompt_path=run_root / f"{stem}-prompt.txt",
            response_path=run_root / f"{stem}-response.json",
        )

    def log_prompt(self, run_id: str, step_name: str, prompt: str, suffix: str = "") -> None:
        write_text(self.step_paths(run_id, step_name, suffix).prompt_path, prompt)

    def log_response(self, run_id: str, step_name: str, response: Any, suffix: str = "") -> None:
        write_json(self.step_paths(run_id, step_name, suffix).response_path, response)
