"""UI code generator package.

This package turns screenshots, recordings and natural-language instructions
into React source files through a graph of orchestrated nodes.
"""

from .config import PipelineConfig  # noqa: F401
from .pipeline import UICodeGenerator  # noqa: F401
from .types import FileInput, PipelineInput, PipelineResult  # noqa: F401

__all__ = ["UICodeGenerator", "PipelineConfig", "PipelineInput", "PipelineResult", "FileInput"]
