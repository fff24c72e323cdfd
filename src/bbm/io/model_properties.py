"""Reader and writer for the line-oriented model properties format.

A stream holds one or more documents, each introduced by a version marker::

    @model_properties_format_version 0.1
    @structure
    C    0.0 0.0 0.0
    H    0.0 0.0 1.1

    @energy unit_factor=27.211386
    -0.329336
    @forces
    0.1 0.0 0.0
    ...

Blank lines and ``#`` comments are ignored everywhere. A section header may
carry ``unit_factor=<float>``, which scales every number in that section.
Unknown sections are skipped with a warning.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from bbm.adapters.results import ComputedResult
from bbm.errors import ParseError
from bbm.io.molecule import Molecule

__all__ = [
    "FORMAT_VERSION",
    "VERSION_MARKER",
    "SectionHeader",
    "parse_all",
    "parse_one",
    "format_result",
]

logger = logging.getLogger(__name__)

FORMAT_VERSION = "0.1"
VERSION_MARKER = "@model_properties_format_version"
HEADER_CHAR = "@"
NUMBER_FORMAT = "{:20.12E}"

KNOWN_SECTIONS = ("structure", "energy", "forces", "dipole")


@dataclass(frozen=True)
class SectionHeader:
    name: str
    unit_factor: float = 1.0

    @classmethod
    def parse(cls, line: str) -> "SectionHeader":
        """Parse ``@name [unit_factor=X] [other=...]``.

        Unrelated ``key=value`` modifiers are ignored.
        """
        line = line.strip()
        if not line.startswith(HEADER_CHAR):
            raise ParseError(f"invalid model properties section header: {line!r}", stage="parse")
        parts = line[1:].split()
        if not parts:
            raise ParseError(f"section header without a name: {line!r}", stage="parse")
        unit_factor = 1.0
        for token in parts[1:]:
            key, sep, value = token.partition("=")
            if sep and key == "unit_factor":
                try:
                    unit_factor = float(value)
                except ValueError:
                    raise ParseError(f"invalid unit_factor in header: {line!r}", stage="parse") from None
        return cls(parts[0], unit_factor)


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------

def _content_lines(text: str) -> Iterator[str]:
    for raw in text.splitlines():
        line = raw.strip()
        if line and not line.startswith("#"):
            yield line


def _split_documents(lines: Iterable[str]) -> List[List[str]]:
    documents: List[List[str]] = []
    current: Optional[List[str]] = None
    skipped = 0
    for line in lines:
        if line.startswith(VERSION_MARKER):
            version = line[len(VERSION_MARKER):].strip()
            if version != FORMAT_VERSION:
                logger.warning("model properties format version %r, expected %s", version, FORMAT_VERSION)
            current = []
            documents.append(current)
        elif current is None:
            skipped += 1
        else:
            current.append(line)
    if skipped:
        logger.warning("ignored %d line(s) before the first %s marker", skipped, VERSION_MARKER)
    return documents


def _collect_sections(lines: List[str]) -> Dict[str, List[str]]:
    """Group lines under their most recent header.

    Two states: outside any section (lines are dropped with a warning) and
    inside a section keyed by its header text.
    """
    sections: Dict[str, List[str]] = {}
    current: Optional[str] = None
    for line in lines:
        if line.startswith(HEADER_CHAR):
            current = " ".join(line.split())
            sections.setdefault(current, [])
        elif current is None:
            logger.warning("data line outside any section ignored: %r", line)
        else:
            sections[current].append(line)
    return sections


def _floats(line: str, factor: float, expect: Optional[int] = None, what: str = "values") -> List[float]:
    parts = line.split()
    if expect is not None and len(parts) != expect:
        raise ParseError(f"expect {expect} {what}: {line!r}", stage="parse")
    try:
        return [float(p) * factor for p in parts]
    except ValueError:
        raise ParseError(f"invalid number in {what} line: {line!r}", stage="parse") from None


def _vector(line: str, factor: float, what: str) -> Tuple[float, float, float]:
    x, y, z = _floats(line, factor, expect=3, what=what)
    return (x, y, z)


def _single_line(header: SectionHeader, lines: List[str]) -> str:
    if len(lines) != 1:
        raise ParseError(
            f"expect exactly one line in @{header.name} section, found {len(lines)}", stage="parse"
        )
    return lines[0]


def _parse_document(lines: List[str]) -> ComputedResult:
    sections = _collect_sections(lines)
    if not sections:
        logger.warning("Collected no results. Please check if the stream is clean!")
        logger.debug("suspicious part: %r", lines)

    result = ComputedResult()
    for raw_header, body in sections.items():
        header = SectionHeader.parse(raw_header)
        factor = header.unit_factor
        if header.name == "energy":
            line = _single_line(header, body)
            result.energy = _floats(line, factor, expect=1, what="energy")[0]
        elif header.name == "forces":
            result.forces = [_vector(line, factor, "xyz forces") for line in body]
        elif header.name == "dipole":
            result.dipole = _vector(_single_line(header, body), factor, "dipole")
        elif header.name == "structure":
            try:
                result.structure = Molecule.from_pxyz_lines(body, unit_factor=factor)
            except ValueError as e:
                raise ParseError(f"invalid @structure section: {e}", stage="parse") from e
        else:
            logger.warning("ignored record: %r", raw_header)
    return result


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_all(text: str) -> List[ComputedResult]:
    """Parse every document in ``text``, in stream order.

    Raises
    ------
    ParseError
        On an empty stream, a stream without any version marker, or a
        malformed section. The raw text is attached as ``output``.
    """
    if not text or not text.strip():
        raise ParseError("Attempt to parse empty string!", stage="parse", output=text)
    documents = _split_documents(_content_lines(text))
    if not documents:
        raise ParseError(f"no {VERSION_MARKER} line found", stage="parse", output=text)
    results = []
    for doc in documents:
        try:
            results.append(_parse_document(doc))
        except ParseError as e:
            if e.output is None:
                e.output = text
            raise
    return results


def parse_one(text: str) -> ComputedResult:
    """Return the last document in ``text``; intermediate ones are discarded."""
    return parse_all(text)[-1]


def _fmt_row(values: Iterable[float]) -> str:
    return " ".join(NUMBER_FORMAT.format(v) for v in values)


def format_result(result: ComputedResult) -> str:
    """Serialize one result as a document. Only populated fields are written."""
    out = [f"{VERSION_MARKER} {FORMAT_VERSION}"]
    if result.structure is not None:
        out.append("@structure")
        out.extend(result.structure.to_pxyz_lines(NUMBER_FORMAT))
        out.append("")
    if result.energy is not None:
        out.append("@energy")
        out.append(NUMBER_FORMAT.format(result.energy))
    if result.forces is not None:
        out.append("@forces")
        out.extend(_fmt_row(f) for f in result.forces)
    if result.dipole is not None:
        out.append("@dipole")
        out.append(_fmt_row(result.dipole))
    return "\n".join(out) + "\n"
