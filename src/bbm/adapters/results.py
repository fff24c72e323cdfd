"""Result dataclasses for structured engine outcomes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from bbm.io.molecule import Molecule

__all__ = [
    "ComputedResult",
    "Vector3",
]

Vector3 = Tuple[float, float, float]


@dataclass(slots=True)
class ComputedResult:
    """Properties computed by an engine for one structure.

    Every field is independently optional. Parsed results are never partially
    populated: a field is either fully decoded or ``None``.
    """
    energy: Optional[float] = None
    forces: Optional[List[Vector3]] = None
    dipole: Optional[Vector3] = None
    structure: Optional[Molecule] = None
    force_constants: Optional[List[Vector3]] = None

    def is_empty(self) -> bool:
        """True when neither energy nor forces are available."""
        return self.energy is None and self.forces is None

    def to_text(self) -> str:
        from bbm.io.model_properties import format_result
        return format_result(self)

    @classmethod
    def from_text(cls, text: str) -> "ComputedResult":
        from bbm.io.model_properties import parse_one
        return parse_one(text)

    def to_dict(self) -> dict:
        """JSON-friendly mapping (structure and force constants are skipped)."""
        return {
            "energy": self.energy,
            "forces": [list(f) for f in self.forces] if self.forces is not None else None,
            "dipole": list(self.dipole) if self.dipole is not None else None,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "ComputedResult":
        forces = payload.get("forces")
        dipole = payload.get("dipole")
        return cls(
            energy=payload.get("energy"),
            forces=[tuple(float(x) for x in f) for f in forces] if forces is not None else None,
            dipole=tuple(float(x) for x in dipole) if dipole is not None else None,
        )

    def __str__(self) -> str:
        return self.to_text()
