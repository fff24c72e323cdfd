import logging

import pytest

from bbm.adapters.results import ComputedResult
from bbm.errors import ParseError
from bbm.io.model_properties import SectionHeader, format_result, parse_all, parse_one
from bbm.io.molecule import Molecule

SAMPLE = """\
@model_properties_format_version 0.1
@structure
C   -0.000000   -0.000000    0.000000
H    0.000000    0.000000    1.089000
H    1.026719    0.000000   -0.363000

@energy unit_factor=1.0
-0.329336
@forces
0.1 0.2 0.3
-0.1 -0.2 -0.3
0.0 0.0 0.0
@dipole
0.5 0.0 -0.5
"""

SPECIAL = """\
# engine banner
@model_properties_format_version 0.1
@energy
0.0
@forces unit_factor=-1 test=2
-0.10525500903260E-03 0.0 0.0
"""


def test_header_parsing():
    h = SectionHeader.parse("@forces ")
    assert h.name == "forces"
    assert h.unit_factor == 1.0
    assert SectionHeader.parse("@forces unit_factor=1").unit_factor == 1.0
    assert SectionHeader.parse("@forces unit_factor=-1 test=2").unit_factor == -1.0


def test_header_rejects_plain_line():
    with pytest.raises(ParseError):
        SectionHeader.parse("forces")
    with pytest.raises(ParseError):
        SectionHeader.parse("@energy unit_factor=abc")


def test_parse_sample():
    r = parse_one(SAMPLE)
    assert r.energy == pytest.approx(-0.329336)
    assert r.forces == [(0.1, 0.2, 0.3), (-0.1, -0.2, -0.3), (0.0, 0.0, 0.0)]
    assert r.dipole == (0.5, 0.0, -0.5)
    assert r.structure.natoms == 3
    assert r.structure.symbols == ["C", "H", "H"]
    assert r.structure.positions[1][2] == pytest.approx(1.089)


def test_parse_special_unit_factor():
    r = parse_one(SPECIAL)
    assert r.energy == 0.0
    assert r.forces[0][0] == 0.10525500903260E-03
    assert r.dipole is None and r.structure is None


def test_unit_factor_negates_section():
    plain = parse_one("@model_properties_format_version 0.1\n@forces\n1.0 -2.0 3.5\n")
    negated = parse_one("@model_properties_format_version 0.1\n@forces unit_factor=-1\n1.0 -2.0 3.5\n")
    assert negated.forces == [tuple(-v for v in plain.forces[0])]


def test_multiple_documents_last_wins():
    text = "".join(
        f"@model_properties_format_version 0.1\n@energy\n{-(i + 0.5)}\n" for i in range(4)
    )
    all_results = parse_all(text)
    assert [r.energy for r in all_results] == [-0.5, -1.5, -2.5, -3.5]
    assert parse_one(text).energy == -3.5


@pytest.mark.parametrize("text", ["", "   \n\n", "# only a comment\n\n# another\n"])
def test_empty_or_comment_only_stream_fails(text):
    with pytest.raises(ParseError):
        parse_one(text)


def test_stream_without_marker_fails():
    with pytest.raises(ParseError) as exc:
        parse_all("@energy\n-1.0\n")
    assert exc.value.output == "@energy\n-1.0\n"


def test_lines_before_marker_ignored(caplog):
    caplog.set_level(logging.WARNING)
    r = parse_one("engine says hello\n@model_properties_format_version 0.1\n@energy\n-2.0\n")
    assert r.energy == -2.0
    assert any("before the first" in m for m in caplog.messages)


def test_energy_with_two_lines_fails_with_raw_text():
    text = "@model_properties_format_version 0.1\n@energy\n-1.0\n-2.0\n"
    with pytest.raises(ParseError) as exc:
        parse_one(text)
    assert exc.value.output == text
    assert exc.value.stage == "parse"


def test_forces_need_three_columns():
    with pytest.raises(ParseError):
        parse_one("@model_properties_format_version 0.1\n@forces\n1.0 2.0\n")


def test_dipole_needs_one_line():
    with pytest.raises(ParseError):
        parse_one("@model_properties_format_version 0.1\n@dipole\n1 2 3\n4 5 6\n")


def test_unknown_section_is_ignored(caplog):
    caplog.set_level(logging.WARNING)
    r = parse_one("@model_properties_format_version 0.1\n@stress\n1 2 3\n@energy\n-1.0\n")
    assert r.energy == -1.0
    assert any("stress" in m for m in caplog.messages)


def test_structure_with_lattice_vectors():
    text = (
        "@model_properties_format_version 0.1\n@structure\n"
        "Si 0.0 0.0 0.0\nSi 1.3 1.3 1.3\n"
        "TV 5.4 0.0 0.0\nTV 0.0 5.4 0.0\nTV 0.0 0.0 5.4\n"
    )
    mol = parse_one(text).structure
    assert mol.natoms == 2
    assert mol.cell[2][2] == pytest.approx(5.4)


def test_round_trip_preserves_values():
    mol = Molecule(["O", "H"], [[0.0, 0.0, 0.0], [0.0, 0.0, 0.97]])
    r = ComputedResult(
        energy=-76.123456789012,
        forces=[(1.5e-3, -2.25e-4, 0.0), (-1.5e-3, 2.25e-4, 0.0)],
        dipole=(0.0, 0.0, 1.85),
        structure=mol,
    )
    text = format_result(r)
    back = parse_one(text)
    assert back.energy == pytest.approx(r.energy, rel=1e-12)
    assert [v for f in back.forces for v in f] == pytest.approx([v for f in r.forces for v in f])
    assert back.dipole == pytest.approx(r.dipole)
    assert back.structure.natoms == 2
    # serializing the parsed result again is byte-identical
    assert format_result(back) == text


def test_format_only_populated_fields():
    text = format_result(ComputedResult(energy=-1.0))
    assert text == "@model_properties_format_version 0.1\n@energy\n -1.000000000000E+00\n"


def test_result_helpers():
    assert ComputedResult().is_empty()
    assert not ComputedResult(forces=[(0.0, 0.0, 0.0)]).is_empty()
    r = ComputedResult.from_text(SAMPLE)
    payload = r.to_dict()
    assert set(payload) == {"energy", "forces", "dipole"}
    again = ComputedResult.from_dict(payload)
    assert again.forces == r.forces and again.structure is None
    assert str(again) == again.to_text()
