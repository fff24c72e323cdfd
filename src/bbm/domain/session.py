"""One long-lived interactive engine process driven across many evaluations.

The first :meth:`InteractiveSession.submit` writes the rendered input into
the working directory and starts the run script; the engine performs its
first evaluation from that input. Every later call resumes the engine through
the control script, writes the new positions to its stdin and reads console
output up to the protocol sentinel. The engine is paused again before the
call returns.

Losing the engine is terminal: any protocol or pipe failure closes the
session and later calls raise :class:`~bbm.errors.ProtocolError`.
"""
from __future__ import annotations

import enum
import logging
import subprocess
from pathlib import Path
from typing import Callable, Mapping

from bbm.adapters.process import TERMINATE_GRACE_S, ProcessHandle
from bbm.adapters.protocols import InteractiveProtocol
from bbm.adapters.results import ComputedResult
from bbm.cli.run_commands import run_command
from bbm.cli.safe_run import register, unregister
from bbm.errors import BlackBoxError, EngineIOError, ProtocolError, SpawnError
from bbm.io.molecule import Molecule

__all__ = ["InteractiveSession", "SessionState"]

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    NOT_STARTED = "not-started"
    RUNNING = "running"
    CLOSED = "closed"


class InteractiveSession:
    def __init__(
        self,
        run_file: Path,
        working_dir: Path,
        render: Callable[[Molecule], str],
        protocol: InteractiveProtocol,
        env_vars: Mapping[str, str] | None = None,
        control_script: Path | None = None,
        input_file: str = "input.txt",
        terminate_grace: float = TERMINATE_GRACE_S,
    ):
        self.run_file = Path(run_file)
        self.working_dir = Path(working_dir)
        self.protocol = protocol
        self.control_script = Path(control_script) if control_script else None
        self.input_file = input_file
        self.terminate_grace = terminate_grace
        self._render = render
        self._env = dict(env_vars or {})
        self._handle: ProcessHandle | None = None
        self._state = SessionState.NOT_STARTED
        self._steps = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._handle.pid if self._handle is not None else None

    @property
    def steps(self) -> int:
        """Number of evaluations answered by the engine so far."""
        return self._steps

    # ------------------------------------------------------------------
    # control script
    # ------------------------------------------------------------------
    def _control(self, action: str, pid: int | None = None) -> str:
        if pid is None:
            pid = self.pid
        if self.control_script is None or pid is None:
            return ""
        logger.debug("%s process group %d using %s", action.capitalize(), pid, self.control_script)
        try:
            out = run_command(
                [str(self.control_script), action, str(pid)], cwd=self.working_dir, env=self._env
            )
        except subprocess.CalledProcessError as e:
            raise ProtocolError(
                f"control script {self.control_script.name} {action} {pid} exited with status {e.returncode}",
                stage=f"control-{action}",
                output=e.output,
            ) from e
        except OSError as e:
            raise SpawnError(f"cannot run control script {self.control_script}: {e}", stage=f"control-{action}") from e
        if out:
            logger.debug("control script %s output: %r", action, out)
        return out

    # ------------------------------------------------------------------
    # evaluation
    # ------------------------------------------------------------------
    def _start(self, mol: Molecule) -> None:
        text = self._render(mol)
        inp = self.working_dir / self.input_file
        try:
            inp.write_text(text)
        except OSError as e:
            raise EngineIOError(f"cannot write engine input {inp}: {e}", stage="write") from e
        logger.debug("wrote rendered input to %s", inp)
        self._handle = ProcessHandle.spawn(self.run_file, self.working_dir, env_vars=self._env)
        self._state = SessionState.RUNNING
        # closed before the handle at interpreter exit, so resume runs first
        register(self)
        logger.info("Started interactive engine %s (pid=%d, protocol=%s)", self.run_file, self._handle.pid, self.protocol.ident)

    def _feed_positions(self, mol: Molecule) -> None:
        self._control("resume")
        logger.debug("input positions")
        self._handle.write_lines(self.protocol.format_positions(mol))

    def _read_step(self) -> str:
        lines = []
        while True:
            line = self._handle.read_line()
            if line is None:
                raise ProtocolError(
                    f"engine closed stdout before announcing {self.protocol.sentinel!r}",
                    stage="read",
                    output="\n".join(lines),
                )
            if self.protocol.is_sentinel(line):
                return "\n".join(lines) + "\n"
            lines.append(line)

    def submit(self, mol: Molecule) -> ComputedResult:
        """Evaluate ``mol`` and return its energy and forces."""
        if self._state is SessionState.CLOSED:
            raise ProtocolError("interactive session is closed", stage="submit")
        try:
            if self._state is SessionState.NOT_STARTED:
                self._start(mol)
            else:
                self._feed_positions(mol)
            logger.debug("recv outputs ...")
            text = self._read_step()
            energy, forces = self.protocol.scan(text)
            if len(forces) != mol.natoms:
                raise ProtocolError(
                    f"engine returned forces for {len(forces)} atoms, expected {mol.natoms}",
                    stage="scan",
                    output=text,
                )
            self._control("pause")
        except (ProtocolError, EngineIOError, SpawnError):
            self.close()
            raise
        self._steps += 1
        return ComputedResult(energy=energy, forces=forces)

    # ------------------------------------------------------------------
    # teardown
    # ------------------------------------------------------------------
    def close(self) -> None:
        """Resume (if paused) and terminate the engine. Idempotent."""
        if self._state is SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED
        unregister(self)
        handle, self._handle = self._handle, None
        if handle is None:
            return
        if self.control_script is not None and handle.is_running():
            # a suspended engine would block termination
            try:
                self._control("resume", handle.pid)
            except BlackBoxError as e:
                logger.error("found errors when resume processes: %s", e)
        handle.terminate(self.terminate_grace)

    def __enter__(self) -> "InteractiveSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"InteractiveSession({self.run_file.name!r}, {self._state.value}, pid={self.pid})"
