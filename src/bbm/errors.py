"""Exception taxonomy for engine orchestration.

Every error carries the pipeline ``stage`` that failed and, where available,
the raw ``output`` text so a failure can be diagnosed without re-running the
engine.
"""
from __future__ import annotations

__all__ = [
    "BlackBoxError",
    "SpawnError",
    "EngineIOError",
    "ParseError",
    "ProtocolError",
    "RenderError",
    "ConsistencyWarning",
]


class BlackBoxError(Exception):
    """Base class of all orchestration failures."""

    def __init__(self, message: str, *, stage: str | None = None, output: str | None = None):
        super().__init__(message)
        self.stage = stage
        self.output = output

    def __str__(self) -> str:
        msg = super().__str__()
        if self.stage:
            msg = f"[{self.stage}] {msg}"
        return msg


class SpawnError(BlackBoxError):
    """The engine executable is missing or cannot be executed."""


class EngineIOError(BlackBoxError, OSError):
    """Pipe or filesystem failure while talking to the engine."""


class ParseError(BlackBoxError, ValueError):
    """Engine output could not be decoded into results."""


class ProtocolError(BlackBoxError):
    """The interactive engine did not follow its console protocol."""


class RenderError(BlackBoxError):
    """The input template is missing or failed to render."""


class ConsistencyWarning(UserWarning):
    """Parsed results disagree with the input structure (non-fatal)."""
