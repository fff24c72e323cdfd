"""Minimal molecule model used for rendering inputs and reading results.

Positions are Cartesian (Angstrom) in an ``(n, 3)`` numpy array. Periodic
structures carry a ``(3, 3)`` cell whose rows are the lattice vectors.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import ase.io
from ase import Atoms
import numpy as np

__all__ = ["Molecule", "read_xyz_frames"]

logger = logging.getLogger(__name__)

# gchemol-style lattice vector records inside plain xyz blocks
LATTICE_SYMBOL = "TV"


@dataclass(eq=False)
class Molecule:
    """A list of atoms with positions and an optional lattice."""
    symbols: List[str]
    positions: np.ndarray
    cell: Optional[np.ndarray] = None
    title: str = ""
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        self.symbols = [str(s) for s in self.symbols]
        self.positions = np.asarray(self.positions, dtype=float).reshape(-1, 3)
        if len(self.symbols) != len(self.positions):
            raise ValueError(
                f"number of symbols ({len(self.symbols)}) != number of positions ({len(self.positions)})"
            )
        if self.cell is not None:
            self.cell = np.asarray(self.cell, dtype=float).reshape(3, 3)

    # -- basic accessors ----------------------------------------------------

    @property
    def natoms(self) -> int:
        return len(self.symbols)

    def __len__(self) -> int:
        return self.natoms

    @property
    def is_periodic(self) -> bool:
        return self.cell is not None

    def copy(self) -> "Molecule":
        return Molecule(
            symbols=list(self.symbols),
            positions=self.positions.copy(),
            cell=None if self.cell is None else self.cell.copy(),
            title=self.title,
            metadata=dict(self.metadata),
        )

    def scaled_positions(self) -> np.ndarray:
        """Fractional coordinates; requires a cell."""
        if self.cell is None:
            raise ValueError("scaled positions require a lattice")
        return np.linalg.solve(self.cell.T, self.positions.T).T

    def set_scaled_positions(self, scaled: Sequence[Sequence[float]]) -> None:
        if self.cell is None:
            raise ValueError("scaled positions require a lattice")
        scaled = np.asarray(scaled, dtype=float).reshape(-1, 3)
        self.positions = scaled @ self.cell

    def element_types(self) -> list[tuple[str, int]]:
        """(symbol, count) pairs in order of first appearance."""
        counts: dict[str, int] = {}
        for s in self.symbols:
            counts[s] = counts.get(s, 0) + 1
        return list(counts.items())

    # -- plain xyz records ----------------------------------------------------

    @classmethod
    def from_pxyz_lines(cls, lines: Iterable[str], unit_factor: float = 1.0, title: str = "") -> "Molecule":
        """Build from ``symbol x y z`` lines; ``TV x y z`` lines define the cell.

        Columns beyond the fourth are ignored. ``unit_factor`` scales every
        coordinate, including lattice vectors.
        """
        symbols: list[str] = []
        positions: list[list[float]] = []
        lattice: list[list[float]] = []
        for line in lines:
            parts = line.split()
            if not parts:
                continue
            if len(parts) < 4:
                raise ValueError(f"expect 'symbol x y z': {line!r}")
            xyz = [float(v) * unit_factor for v in parts[1:4]]
            if parts[0].upper() == LATTICE_SYMBOL:
                lattice.append(xyz)
            else:
                symbols.append(parts[0])
                positions.append(xyz)
        cell = None
        if lattice:
            if len(lattice) != 3:
                raise ValueError(f"expect 3 lattice vectors, found {len(lattice)}")
            cell = np.array(lattice)
        return cls(symbols=symbols, positions=np.array(positions).reshape(-1, 3), cell=cell, title=title)

    def to_pxyz_lines(self, fmt: str = "{:20.12E}") -> list[str]:
        lines = []
        for s, (x, y, z) in zip(self.symbols, self.positions):
            lines.append(f"{s:<4} {fmt.format(x)} {fmt.format(y)} {fmt.format(z)}")
        if self.cell is not None:
            for (x, y, z) in self.cell:
                lines.append(f"{LATTICE_SYMBOL:<4} {fmt.format(x)} {fmt.format(y)} {fmt.format(z)}")
        return lines

    # -- ase interop ------------------------------------------------------------

    @classmethod
    def from_ase_atoms(cls, atoms) -> "Molecule":
        """Create a Molecule from an ASE Atoms object.

        The lattice is kept only for periodic structures. ``atoms.info`` is
        copied into ``metadata``; its ``title`` entry becomes the title.
        """
        metadata = dict(atoms.info) if atoms.info else {}
        title = metadata.pop("title", "")
        if not isinstance(title, str):
            # a bare comment word parses as {word: True}
            title = ""
        cell = atoms.cell.array.copy() if atoms.pbc.any() else None
        return cls(
            symbols=atoms.get_chemical_symbols(),
            positions=atoms.get_positions(),
            cell=cell,
            title=title,
            metadata=metadata,
        )

    def to_ase_atoms(self) -> Atoms:
        atoms = Atoms(
            symbols=self.symbols,
            positions=self.positions,
            cell=self.cell,
            pbc=self.cell is not None,
        )
        atoms.info.update(self.metadata)
        if self.title:
            atoms.info["title"] = self.title
        return atoms

    def write_xyz(self, path: str | Path, append: bool = False) -> Path:
        """Write as an extended xyz frame (lattice and title in the comment line)."""
        path = Path(path)
        ase.io.write(str(path), self.to_ase_atoms(), format="extxyz", append=append)
        return path

    def __repr__(self) -> str:
        periodic = ", periodic" if self.is_periodic else ""
        return f"Molecule({self.title!r}, natoms={self.natoms}{periodic})"


def read_xyz_frames(path: str | Path) -> List[Molecule]:
    """Read every frame of a (multi-frame, extended) xyz file with ASE."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"structure file not found: {path}")
    try:
        images = ase.io.read(str(path), index=":", format="extxyz")
    except (OSError, ValueError, IndexError) as e:
        raise ValueError(f"{path}: cannot read structures: {e}") from e
    mols = [Molecule.from_ase_atoms(atoms) for atoms in images]
    logger.debug("read %d frame(s) from %s", len(mols), path)
    return mols
