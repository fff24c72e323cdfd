"""Helpers for driving VASP in interactive mode.

With ``INTERACTIVE = .TRUE.`` VASP reads new positions from stdin after every
ionic step. Its console output for one step looks like::

    RMM:  22    -0.870187496108E+03   -0.18821E+00   -0.15766E-01 20316   0.597E-01
    FORCES:
         0.2084558     0.2221942    -0.1762308
        -0.1742340     0.2172782     0.2304866
       1 F= -.84780990E+02 E0= -.84775142E+02  d E =-.847810E+02  mag=     3.2666
    POSITIONS: reading from stdin
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Tuple

from bbm.adapters.protocols import Forces, InteractiveProtocol, register_protocol
from bbm.errors import ProtocolError
from bbm.io.molecule import Molecule

__all__ = [
    "VaspInteractiveProtocol",
    "scan_energy_and_forces",
    "update_incar_for_interactive",
    "MANDATORY_INCAR_PARAMS",
]

logger = logging.getLogger(__name__)

FORCES_TAG = "FORCES:"
SENTINEL = "POSITIONS: reading from stdin"

#    1 F= -.85097948E+02 E0= -.85096866E+02  d E =-.850979E+02  mag=     2.9646
_ENERGY_RE = re.compile(r"^\s*\d+\s+F=\s*(\S+)\s+E0=\s*(\S+)")

MANDATORY_INCAR_PARAMS = [
    "POTIM = 0",
    "NELM = 200",
    # large enough for any interactive session
    "NSW = 99999",
    # energy and forces are printed on every ionic step
    "NWRITE = 1",
    "IBRION = -1",
    "ISYM = 0",
    "INTERACTIVE = .TRUE.",
]


# a force row, including fortran overflow fields such as ********
_NUMERIC_FIELD_RE = re.compile(r"^[-+0-9.EeDd*]+$")


def _xyz(line: str, text: str) -> Tuple[float, float, float] | None:
    """Parse one force row; None once the FORCES: block has ended."""
    parts = line.split()
    if len(parts) < 3 or not all(_NUMERIC_FIELD_RE.match(p) for p in parts[:3]):
        return None
    try:
        x, y, z = (float(p) for p in parts[:3])
    except ValueError:
        raise ProtocolError(f"vasp stdout: invalid force line: {line!r}", stage="scan", output=text) from None
    return (x, y, z)


def scan_energy_and_forces(text: str) -> Tuple[float, Forces]:
    """Extract (energy, forces) from the console text of one ionic step.

    Forces are the numeric lines right after ``FORCES:``; the energy is the
    ``E0=`` value of the first ``<step> F= ... E0= ...`` line after them.
    """
    lines = text.splitlines()
    start = next((i for i, line in enumerate(lines) if line.startswith(FORCES_TAG)), None)
    if start is None:
        raise ProtocolError("vasp stdout: no FORCES: block found", stage="scan", output=text)
    if start > 0:
        # last SCF step, for reference
        logger.debug("%s", lines[start - 1])

    forces: Forces = []
    pos = start + 1
    while pos < len(lines):
        xyz = _xyz(lines[pos], text)
        if xyz is None:
            break
        forces.append(xyz)
        pos += 1
    if not forces:
        raise ProtocolError("vasp stdout: empty FORCES: block", stage="scan", output=text)

    for line in lines[pos:]:
        m = _ENERGY_RE.match(line)
        if m is None:
            continue
        try:
            energy = float(m.group(2))
        except ValueError:
            raise ProtocolError(f"vasp stdout: invalid energy line: {line!r}", stage="scan", output=text) from None
        return energy, forces
    raise ProtocolError("vasp stdout: no 'F= ... E0=' energy line after FORCES:", stage="scan", output=text)


@register_protocol
class VaspInteractiveProtocol(InteractiveProtocol):
    name = "vasp"
    version = "5.4"
    sentinel = SENTINEL

    def format_positions(self, mol: Molecule) -> List[str]:
        """Scaled positions for periodic structures, Cartesian otherwise."""
        coords = mol.scaled_positions() if mol.cell is not None else mol.positions
        return [f"{x:19.16f} {y:19.16f} {z:19.16f}" for x, y, z in coords]

    def scan(self, text: str) -> Tuple[float, Forces]:
        return scan_energy_and_forces(text)


def _incar_tag(line: str) -> str | None:
    s = line.strip()
    if s.startswith("#") or "=" not in s:
        return None
    return s.split("=", 1)[0].strip().upper()


def update_incar_for_interactive(path: str | Path) -> Path:
    """Rewrite an INCAR so VASP runs in interactive mode.

    User lines setting any mandatory tag are dropped, then the mandatory
    parameters are appended. Undecodable bytes are replaced.
    """
    path = Path(path)
    logger.info("Update INCAR for interactive calculation ...")
    text = path.read_bytes().decode("utf-8", errors="replace")
    mandatory_tags = {p.split("=", 1)[0].strip() for p in MANDATORY_INCAR_PARAMS}

    kept = []
    for line in text.splitlines():
        tag = _incar_tag(line)
        if tag in mandatory_tags:
            logger.debug("dropping user setting: %s", line.strip())
            continue
        kept.append(line)
    kept.append("# Mandatory parameters for interactive VASP calculation:")
    kept.extend(MANDATORY_INCAR_PARAMS)
    path.write_text("\n".join(kept) + "\n")
    return path
