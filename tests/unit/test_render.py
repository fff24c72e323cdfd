from pathlib import Path

import pytest

from bbm.errors import RenderError
from bbm.io.render import TemplateRenderer, molecule_context


def _renderer(tmp_path: Path, text: str, name: str = "input.tpl") -> TemplateRenderer:
    (tmp_path / name).write_text(text)
    return TemplateRenderer(tmp_path / name)


def test_render_xyz_like_input(tmp_path, water, input_template):
    out = _renderer(tmp_path, input_template).render(water)
    lines = out.splitlines()
    assert lines[0] == "3"
    assert lines[1] == "title: water"
    assert lines[2] == "O 0.00000000 0.00000000 0.11900000"
    assert len(lines) == 5
    assert out.endswith("\n")


def test_render_bunch_concatenates_in_order(tmp_path, water, methane, input_template):
    r = _renderer(tmp_path, input_template)
    out = r.render_bunch([water, methane])
    assert out == r.render(water) + r.render(methane)


def test_periodic_context(periodic_h2):
    ctx = molecule_context(periodic_h2)
    assert ctx["unit_cell"]["va"] == (5.0, 0.0, 0.0)
    assert ctx["atoms"][0]["index"] == 1
    assert ctx["atoms"][1]["fz"] == pytest.approx(0.348)
    assert ctx["element_types"] == [("H", 2)]


def test_non_periodic_context_has_no_cell(water):
    ctx = molecule_context(water)
    assert ctx["unit_cell"] is None
    assert "fx" not in ctx["atoms"][0]


def test_element_types_in_template(tmp_path, methane):
    text = "{% for sym, n in molecule.element_types %}{{ sym }}{{ n }} {% endfor %}\n"
    assert _renderer(tmp_path, text).render(methane) == "C1 H4 \n"


def test_missing_template(tmp_path, water):
    with pytest.raises(RenderError) as exc:
        TemplateRenderer(tmp_path / "nope.tpl").render(water)
    assert exc.value.stage == "render"


def test_undefined_variable_is_an_error(tmp_path, water):
    with pytest.raises(RenderError):
        _renderer(tmp_path, "{{ molecule.charge }}\n").render(water)


def test_syntax_error(tmp_path, water):
    with pytest.raises(RenderError):
        _renderer(tmp_path, "{% for a in molecule.atoms %}\n").render(water)
