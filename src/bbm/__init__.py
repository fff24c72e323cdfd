"""bbm: run user-supplied compute engines as black-box chemical models.

A model directory holds a run script, an input template and optional
settings. :class:`~bbm.domain.blackbox.BlackBoxModel` renders a molecule into
input text, hands it to the engine in a private scratch directory and parses
the engine output back into a :class:`~bbm.adapters.results.ComputedResult`.
"""
from __future__ import annotations

__version__ = "0.3.0"

from bbm.adapters.results import ComputedResult
from bbm.domain.blackbox import BlackBoxModel
from bbm.errors import (
    BlackBoxError,
    ConsistencyWarning,
    EngineIOError,
    ParseError,
    ProtocolError,
    RenderError,
    SpawnError,
)
from bbm.io.molecule import Molecule

__all__ = [
    "__version__",
    "BlackBoxModel",
    "ComputedResult",
    "Molecule",
    "BlackBoxError",
    "SpawnError",
    "EngineIOError",
    "ParseError",
    "ProtocolError",
    "RenderError",
    "ConsistencyWarning",
]
