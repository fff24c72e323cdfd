"""Console protocols of interactive engines.

An interactive engine stays alive between evaluations. After each step it
prints free-form console text followed by a sentinel line announcing it waits
for new positions on stdin. A protocol knows the sentinel, how to write
positions and how to extract energy and forces from the text of one step.

Console formats drift between engine releases, so protocols are registered
under ``name@version``; ``get_protocol("vasp")`` picks the newest registered
version, ``get_protocol("vasp@5.4")`` pins one.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Tuple

from bbm.io.molecule import Molecule

__all__ = [
    "InteractiveProtocol",
    "register_protocol",
    "get_protocol",
    "available_protocols",
]

Forces = List[Tuple[float, float, float]]


class InteractiveProtocol(ABC):
    name: str = ""
    version: str = ""
    sentinel: str = ""

    @property
    def ident(self) -> str:
        return f"{self.name}@{self.version}"

    def is_sentinel(self, line: str) -> bool:
        return line.startswith(self.sentinel)

    @abstractmethod
    def format_positions(self, mol: Molecule) -> List[str]:
        """Lines written to the engine's stdin to start the next step."""
        raise NotImplementedError

    @abstractmethod
    def scan(self, text: str) -> Tuple[float, Forces]:
        """Energy and per-atom forces from the console text of one step.

        Raises ``ProtocolError`` if the text does not follow the format.
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.ident}>"


_REGISTRY: Dict[str, type] = {}


def _version_key(version: str) -> tuple:
    key = []
    for part in version.split("."):
        key.append((0, int(part), "") if part.isdigit() else (1, 0, part))
    return tuple(key)


def register_protocol(cls: type) -> type:
    """Class decorator adding an :class:`InteractiveProtocol` to the registry."""
    if not (cls.name and cls.version and cls.sentinel):
        raise ValueError(f"{cls.__name__} must define name, version and sentinel")
    _REGISTRY[f"{cls.name}@{cls.version}"] = cls
    return cls


def available_protocols() -> List[str]:
    return sorted(_REGISTRY)


def get_protocol(ident: str) -> InteractiveProtocol:
    """Instantiate the protocol registered as ``name`` or ``name@version``."""
    # built-in protocols register on import
    from bbm.adapters import vasp  # noqa: F401

    name, _, version = ident.partition("@")
    if version:
        cls = _REGISTRY.get(f"{name}@{version}")
    else:
        candidates = [c for c in _REGISTRY.values() if c.name == name]
        cls = max(candidates, key=lambda c: _version_key(c.version)) if candidates else None
    if cls is None:
        known = ", ".join(available_protocols()) or "none"
        raise KeyError(f"unknown interactive protocol {ident!r} (known: {known})")
    return cls()
