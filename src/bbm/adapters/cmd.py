"""Standalone bash scripts that reproduce an engine invocation.

Useful for running a model by hand, locally or on a remote host, with the
same working directory and environment the orchestrator would use.
"""
from __future__ import annotations

import logging
import os
import shlex
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

__all__ = ["Cmd"]

logger = logging.getLogger(__name__)


@dataclass
class Cmd:
    cmd: str
    wrk_dir: Path
    env_vars: Dict[str, str] = field(default_factory=dict)

    def bash_script(self) -> str:
        wrk_dir = shlex.quote(os.fspath(self.wrk_dir))
        export_env = "".join(
            f"export {var}={shlex.quote(str(value))}\n" for var, value in self.env_vars.items()
        )
        return f"#! /usr/bin/env bash\ncd {wrk_dir}\n{export_env}\n\n{self.cmd}\n"

    def generate_bash_script(self, path: str | Path) -> Path:
        """Write the script to ``path`` and mark it executable."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.bash_script())
        mode = path.stat().st_mode
        path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        logger.info("Wrote bash script: %s", path)
        return path
