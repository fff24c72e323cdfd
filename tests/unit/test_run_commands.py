import logging
import subprocess

import pytest

from bbm.cli.run_commands import run_command


def test_run_command_logs_through_module_logger(tmp_path, caplog):
    caplog.set_level(logging.DEBUG, logger="bbm.cli.run_commands")
    out = run_command(["bash", "-c", 'echo "hello $GREETING"; echo note >&2'], cwd=tmp_path, env={"GREETING": "bbm"})
    assert out == "hello bbm\n"
    records = [r for r in caplog.records if r.name == "bbm.cli.run_commands"]
    messages = [r.getMessage() for r in records]
    assert "hello bbm" in messages
    assert "note" in messages
    assert any(m.startswith("Executing command: bash -c") for m in messages)


def test_run_command_failure(tmp_path, caplog):
    caplog.set_level(logging.DEBUG, logger="bbm.cli.run_commands")
    with pytest.raises(subprocess.CalledProcessError) as exc:
        run_command(["bash", "-c", "echo out; echo oops >&2; exit 5"], cwd=tmp_path)
    assert exc.value.returncode == 5
    assert exc.value.output == "out\n"
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert errors and errors[0].name == "bbm.cli.run_commands"
    assert "code 5" in errors[0].getMessage()
    assert "stderr: oops" in errors[0].getMessage()
