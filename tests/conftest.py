import os, stat, pytest
from pathlib import Path

import numpy as np

from bbm.io.molecule import Molecule


# Rendered input: "<natoms>", "title: <title>", then "<symbol> x y z" lines.
INPUT_TEMPLATE = """{{ molecule.number_of_atoms }}
title: {{ molecule.title }}
{% for atom in molecule.atoms %}
{{ atom.symbol }} {{ "%.8f"|format(atom.x) }} {{ "%.8f"|format(atom.y) }} {{ "%.8f"|format(atom.z) }}
{% endfor %}
"""

# One-shot engine: one result document per input block. Energy is -natoms,
# forces are the negated coordinates. Engine env vars are recorded in cwd.
ONESHOT_ENGINE = r"""#!/usr/bin/env bash
set -euo pipefail
printf '%s\n' "${BBM_TPL_DIR:-}" > tpl_dir.txt
printf '%s\n' "${BBM_JOB_DIR:-}" > job_dir.txt
echo "# one-shot shim engine"
awk '
function emit(   j) {
  print "@model_properties_format_version 0.1"
  print "@structure"
  for (j = 1; j <= n; j++) printf "%s %s %s %s\n", sym[j], x[j], y[j], z[j]
  print ""
  print "@energy"
  printf "%.8f\n", -1.0 * n
  print "@forces"
  for (j = 1; j <= n; j++) printf "%.8f %.8f %.8f\n", -x[j], -y[j], -z[j]
}
NF == 0 && state != 1 { next }
state == 0 { n = $1; i = 0; state = (n > 0) ? 1 : 0; next }
state == 1 { state = 2; next }
state == 2 { i++; sym[i] = $1; x[i] = $2; y[i] = $3; z[i] = $4; if (i == n) { emit(); state = 0 } }
'
"""

# Prints a single one-atom document whatever the input is.
SINGLE_DOC_ENGINE = r"""#!/usr/bin/env bash
cat > /dev/null
cat <<EOF
@model_properties_format_version 0.1
@structure
He 0.0 0.0 0.0

@energy
-1.5
EOF
"""

# One-shot engine that leaves a background helper running after it exits.
FORKING_ENGINE = ONESHOT_ENGINE.replace(
    "set -euo pipefail\n",
    "set -euo pipefail\necho $$ > engine.pid\n"
    "sleep 300 >/dev/null 2>&1 </dev/null &\necho $! > helper.pid\n",
    1,
)

FAILING_ENGINE = r"""#!/usr/bin/env bash
cat > /dev/null
echo "partial output"
exit 3
"""

GARBAGE_ENGINE = r"""#!/usr/bin/env bash
cat > /dev/null
echo "this is not a result document"
"""

# Interactive engine mimicking VASP with INTERACTIVE = .TRUE.: the first step
# is evaluated from input.txt, later steps read natoms position lines from
# stdin. The energy of step k is -k.
INTERACTIVE_ENGINE = r"""#!/usr/bin/env bash
set -u
n=$(head -n 1 input.txt)
echo $$ > engine.pid
step=1
emit() {
  echo " RMM:   7    -0.593198855580E+03    0.91447E-04"
  echo "FORCES:"
  for ((i = 0; i < n; i++)); do
    echo "     0.1000000     0.2000000    -0.${step}000000"
  done
  echo "   ${step} F= -.${step}0000000E+01 E0= -.${step}0000000E+01  d E =-.100000E+01  mag=     0.0000"
  echo "POSITIONS: reading from stdin"
}
emit
while true; do
  for ((i = 0; i < n; i++)); do
    if ! read -r line; then exit 0; fi
    echo "$line" >> positions.log
  done
  step=$((step + 1))
  emit
done
"""

# Interactive engine that exits before announcing the sentinel.
BROKEN_INTERACTIVE_ENGINE = r"""#!/usr/bin/env bash
echo "FORCES:"
echo "     0.1 0.2 0.3"
exit 0
"""

LOGGING_CONTROL = r"""#!/usr/bin/env bash
echo "$1 $2" >> control.log
echo "ok $1"
"""

SIGNAL_CONTROL = r"""#!/usr/bin/env bash
set -e
echo "$1 $2" >> control.log
case "$1" in
  pause)  kill -STOP -- -"$2" ;;
  resume) kill -CONT -- -"$2" ;;
  *) exit 2 ;;
esac
"""

FAILING_CONTROL = r"""#!/usr/bin/env bash
echo "cannot $1" >&2
exit 1
"""

ENGINES = {
    "oneshot": ONESHOT_ENGINE,
    "forking": FORKING_ENGINE,
    "single": SINGLE_DOC_ENGINE,
    "failing": FAILING_ENGINE,
    "garbage": GARBAGE_ENGINE,
    "interactive": INTERACTIVE_ENGINE,
    "broken-interactive": BROKEN_INTERACTIVE_ENGINE,
}

CONTROLS = {
    "logging": LOGGING_CONTROL,
    "signal": SIGNAL_CONTROL,
    "failing": FAILING_CONTROL,
}


def write_executable(path: Path, text: str) -> Path:
    path.write_text(text)
    os.chmod(path, os.stat(path).st_mode | stat.S_IEXEC)
    return path


@pytest.fixture
def make_model(tmp_path):
    """Factory creating a model directory with a shim engine.

    ``engine`` selects the run script, ``control`` an optional interactive
    control script (enables interactive mode), ``toml`` extra bbm.toml text.
    """
    counter = {"n": 0}

    def _make(engine="oneshot", control=None, toml="", scratch_root=None):
        counter["n"] += 1
        d = tmp_path / f"model{counter['n']}"
        d.mkdir()
        write_executable(d / "submit.sh", ENGINES[engine])
        (d / "input.tpl").write_text(INPUT_TEMPLATE)
        lines = ["[blackbox]"]
        if control:
            write_executable(d / "interact.sh", CONTROLS[control])
            lines.append('int_file = "interact.sh"')
        root = scratch_root if scratch_root is not None else tmp_path / "scratch"
        lines.append(f'scr_dir = "{root}"')
        lines.append("[process]")
        lines.append("terminate_grace_s = 0.5")
        (d / "bbm.toml").write_text("\n".join(lines) + "\n" + toml)
        return d

    return _make


@pytest.fixture
def water():
    return Molecule(
        symbols=["O", "H", "H"],
        positions=[[0.0, 0.0, 0.119], [0.0, 0.763, -0.477], [0.0, -0.763, -0.477]],
        title="water",
    )


@pytest.fixture
def methane():
    return Molecule(
        symbols=["C", "H", "H", "H", "H"],
        positions=[
            [0.0, 0.0, 0.0],
            [0.629, 0.629, 0.629],
            [-0.629, -0.629, 0.629],
            [-0.629, 0.629, -0.629],
            [0.629, -0.629, -0.629],
        ],
        title="methane",
    )


@pytest.fixture
def periodic_h2():
    return Molecule(
        symbols=["H", "H"],
        positions=[[1.0, 1.0, 1.0], [1.0, 1.0, 1.74]],
        cell=np.diag([5.0, 5.0, 5.0]),
        title="h2 in a box",
    )


@pytest.fixture
def input_template():
    return INPUT_TEMPLATE
