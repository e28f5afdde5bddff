"""Configuration containers for the UI generation pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import ClassVar, List

from .errors import ConfigurationError


def _int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _bool(key: str, default: bool) -> bool:
    return os.getenv(key, "true" if default else "false").strip().lower() == "true"


def _opt_float(key: str) -> float | None:
    value = os.getenv(key)
    return float(value) if value else None


@dataclass(slots=True)
class PipelineConfig:
    """Static configuration applied to every pipeline run."""

    env_prefix: ClassVar[str] = "UIGEN_"

    assets_dir: str = "assets"
    runs_dir: str = "runs"
    asset_base_url: str | None = None
    enable_mock_generation: bool = True

    qwen_api_key: str | None = None
    qwen_api_url: str | None = None
    deepseek_api_key: str | None = None
    deepseek_api_url: str | None = None
    jimeng_api_key: str | None = None
    jimeng_api_secret: str | None = None
    jimeng_api_url: str | None = None

    vision_model: str = "qwen-vl-max"
    code_model: str = "deepseek-chat"
    router_use_model: bool = False
    builder_attach_image: bool = False

    min_image_dimension: int = 1920
    fallback_canvas_width: int = 1440
    fallback_canvas_height: int = 900

    enable_healing: bool = True
    max_heal_iterations: int = 2
    target_fidelity: float = 95.0
    enable_structure: bool = False
    enable_motion: bool = False

    extraction_concurrency: int = 8
    generation_concurrency: int = 1
    request_timeout_sec: float | None = None
    render_timeout_ms: int = 30000

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create a config object populated from environment variables."""
        prefix = cls.env_prefix
        return cls(
            assets_dir=os.getenv(f"{prefix}ASSETS_DIR", "assets"),
            runs_dir=os.getenv(f"{prefix}RUNS_DIR", "runs"),
            asset_base_url=os.getenv(f"{prefix}ASSET_BASE_URL"),
            enable_mock_generation=_bool(f"{prefix}ENABLE_MOCKS", True),
            qwen_api_key=os.getenv("QWEN_API_KEY"),
            qwen_api_url=os.getenv("QWEN_API_URL"),
            deepseek_api_key=os.getenv("DEEPSEEK_API_KEY"),
            deepseek_api_url=os.getenv("DEEPSEEK_API_URL"),
            jimeng_api_key=os.getenv("JIMENG_API_KEY"),
            jimeng_api_secret=os.getenv("JIMENG_API_SECRET"),
            jimeng_api_url=os.getenv("JIMENG_API_URL"),
            vision_model=os.getenv(f"{prefix}VISION_MODEL", "qwen-vl-max"),
            code_model=os.getenv(f"{prefix}CODE_MODEL", "deepseek-chat"),
            router_use_model=_bool(f"{prefix}ROUTER_USE_MODEL", False),
            builder_attach_image=_bool(f"{prefix}BUILDER_ATTACH_IMAGE", False),
            min_image_dimension=_int(f"{prefix}MIN_IMAGE_DIMENSION", 1920),
            fallback_canvas_width=_int(f"{prefix}FALLBACK_CANVAS_WIDTH", 1440),
            fallback_canvas_height=_int(f"{prefix}FALLBACK_CANVAS_HEIGHT", 900),
            enable_healing=_bool(f"{prefix}ENABLE_HEALING", True),
            max_heal_iterations=_int(f"{prefix}MAX_HEAL_ITERATIONS", 2),
            target_fidelity=_float(f"{prefix}TARGET_FIDELITY", 95.0),
            enable_structure=_bool(f"{prefix}ENABLE_STRUCTURE", False),
            enable_motion=_bool(f"{prefix}ENABLE_MOTION", False),
            extraction_concurrency=_int(f"{prefix}EXTRACTION_CONCURRENCY", 8),
            generation_concurrency=_int(f"{prefix}GENERATION_CONCURRENCY", 1),
            request_timeout_sec=_opt_float(f"{prefix}REQUEST_TIMEOUT_SEC"),
            render_timeout_ms=_int(f"{prefix}RENDER_TIMEOUT_MS", 30000),
        )

    def missing_credentials(self) -> List[str]:
        """Return the names of credentials required by live (non-mock) clients."""
        if self.enable_mock_generation:
            return []
        required = {
            "QWEN_API_KEY": self.qwen_api_key,
            "DEEPSEEK_API_KEY": self.deepseek_api_key,
            "JIMENG_API_KEY": self.jimeng_api_key,
        }
        return [name for name, value in required.items() if not value]

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` when the config cannot serve a run."""
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(f"Missing credentials for live generation: {', '.join(missing)}")
        if self.max_heal_iterations < 0:
            raise ConfigurationError("max_heal_iterations must be >= 0")
        if not 0 <= self.target_fidelity <= 100:
            raise ConfigurationError("target_fidelity must be within 0-100")
        if self.extraction_concurrency < 1 or self.generation_concurrency < 1:
            raise ConfigurationError("concurrency limits must be >= 1")
