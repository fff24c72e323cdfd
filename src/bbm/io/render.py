"""Render engine input text from a jinja2 template.

The template sees a single ``molecule`` object::

    {{ molecule.title }}
    {{ molecule.number_of_atoms }}
    {% for atom in molecule.atoms %}
    {{ atom.symbol }} {{ "%.8f"|format(atom.x) }} {{ "%.8f"|format(atom.y) }} {{ "%.8f"|format(atom.z) }}
    {% endfor %}

Periodic molecules also expose ``molecule.unit_cell`` (``va``, ``vb``,
``vc``) and fractional ``fx``/``fy``/``fz`` per atom.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import jinja2

from bbm.errors import RenderError
from bbm.io.molecule import Molecule

__all__ = ["TemplateRenderer", "molecule_context"]

logger = logging.getLogger(__name__)


def molecule_context(mol: Molecule) -> dict:
    """Plain-data view of ``mol`` used as template context."""
    scaled = mol.scaled_positions() if mol.cell is not None else None
    atoms = []
    for i, (symbol, (x, y, z)) in enumerate(zip(mol.symbols, mol.positions)):
        atom = {"index": i + 1, "symbol": symbol, "x": float(x), "y": float(y), "z": float(z)}
        if scaled is not None:
            fx, fy, fz = scaled[i]
            atom.update(fx=float(fx), fy=float(fy), fz=float(fz))
        atoms.append(atom)
    unit_cell = None
    if mol.cell is not None:
        va, vb, vc = (tuple(float(v) for v in row) for row in mol.cell)
        unit_cell = {"va": va, "vb": vb, "vc": vc}
    return {
        "title": mol.title,
        "number_of_atoms": mol.natoms,
        "atoms": atoms,
        "unit_cell": unit_cell,
        "element_types": mol.element_types(),
    }


class TemplateRenderer:
    def __init__(self, tpl_file: str | Path):
        self.tpl_file = Path(tpl_file)
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(self.tpl_file.parent)),
            undefined=jinja2.StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self._template: jinja2.Template | None = None

    def _load(self) -> jinja2.Template:
        if self._template is None:
            try:
                self._template = self._env.get_template(self.tpl_file.name)
            except jinja2.TemplateNotFound as e:
                raise RenderError(f"template file not found: {self.tpl_file}", stage="render") from e
            except jinja2.TemplateSyntaxError as e:
                raise RenderError(f"{self.tpl_file}:{e.lineno}: {e.message}", stage="render") from e
            logger.debug("loaded template %s", self.tpl_file)
        return self._template

    def render(self, mol: Molecule) -> str:
        template = self._load()
        try:
            return template.render(molecule=molecule_context(mol))
        except jinja2.TemplateError as e:
            raise RenderError(f"failed to render {self.tpl_file.name}: {e}", stage="render") from e

    def render_bunch(self, mols: Iterable[Molecule]) -> str:
        """Rendered inputs of all molecules concatenated in order."""
        return "".join(self.render(m) for m in mols)

    def __repr__(self) -> str:
        return f"TemplateRenderer({str(self.tpl_file)!r})"
