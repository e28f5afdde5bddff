"""Exception hierarchy distinguishing recoverable from fatal pipeline failures."""

from __future__ import annotations


class UIGenError(RuntimeError):
    """Base class for pipeline errors."""


class ConfigurationError(UIGenError):
    """A required credential or capability is missing.

    Never recovered by stage-level fallbacks.
    """


class ParseError(UIGenError):
    """Model output could not be decoded into the expected structure."""

    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class RenderFailure(UIGenError):
    """Rendering or scoring a candidate failed inside the healing loop."""


class CatastrophicFailure(UIGenError):
    """A mandatory stage could not produce its artifact."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage


__all__ = [
    "UIGenError",
    "ConfigurationError",
    "ParseError",
    "RenderFailure",
    "CatastrophicFailure",
]
