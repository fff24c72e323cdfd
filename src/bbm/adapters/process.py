"""Engine process adapter.

:class:`ProcessHandle` owns one spawned engine process and its pipes. Two
modes of use:

* one-shot: :meth:`ProcessHandle.write_and_collect` feeds the whole input,
  closes stdin and reads stdout to completion;
* streaming: :meth:`ProcessHandle.write_line` / :meth:`ProcessHandle.read_line`
  talk to a long-lived engine line by line.

The engine is started in its own session, so its process group id equals its
pid and termination signals reach helpers the run script forks (``mpirun``
and friends). Teardown sends SIGTERM to the group, waits a bounded grace
period, escalates to SIGKILL and finally kills surviving descendants found by
``psutil``. It never raises and never blocks indefinitely.
"""
from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Iterable, Mapping

import psutil

from bbm.cli.safe_run import register, unregister
from bbm.errors import EngineIOError, SpawnError

__all__ = [
    "ProcessHandle",
    "engine_environment",
    "ENV_TPL_DIR",
    "ENV_JOB_DIR",
    "TERMINATE_GRACE_S",
]

logger = logging.getLogger(__name__)

# Names are part of the external contract with engine run scripts
ENV_TPL_DIR = "BBM_TPL_DIR"
ENV_JOB_DIR = "BBM_JOB_DIR"

TERMINATE_GRACE_S = 1.0


def engine_environment(tpl_dir: str | os.PathLike, job_dir: str | os.PathLike | None = None) -> dict[str, str]:
    """Environment variables exported to every engine process.

    ``BBM_TPL_DIR`` points at the directory holding the active template,
    ``BBM_JOB_DIR`` at the directory the orchestrator was invoked from.
    """
    return {
        ENV_TPL_DIR: str(tpl_dir),
        ENV_JOB_DIR: str(job_dir if job_dir is not None else os.getcwd()),
    }


def _signal_group(pid: int, sig: int) -> bool:
    try:
        os.killpg(pid, sig)
        return True
    except ProcessLookupError:
        return False
    except PermissionError as e:
        logger.warning("Not permitted to signal process group %d: %s", pid, e)
        return False


def _group_alive(pgid: int) -> bool:
    try:
        os.killpg(pgid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True


class ProcessHandle:
    """A spawned engine process with optional stdin/stdout pipes."""

    def __init__(self, proc: subprocess.Popen, working_dir: Path, executable: Path):
        self._proc = proc
        self.working_dir = Path(working_dir)
        self.executable = Path(executable)
        self._closed = False
        register(self)

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------
    @classmethod
    def spawn(
        cls,
        executable: str | os.PathLike,
        working_dir: str | os.PathLike,
        env_vars: Mapping[str, str] | None = None,
        capture_stdin: bool = True,
        capture_stdout: bool = True,
        args: Iterable[str] = (),
    ) -> "ProcessHandle":
        """Start ``executable`` inside ``working_dir``.

        Raises
        ------
        SpawnError
            If the executable is missing or cannot be executed.
        """
        exe = Path(executable)
        env = dict(os.environ)
        env.update({k: str(v) for k, v in (env_vars or {}).items()})
        cmdline = [str(exe), *[str(a) for a in args]]
        try:
            proc = subprocess.Popen(
                cmdline,
                cwd=str(working_dir),
                env=env,
                stdin=subprocess.PIPE if capture_stdin else subprocess.DEVNULL,
                stdout=subprocess.PIPE if capture_stdout else None,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnError(f"Failed to run script: {exe}: {e}", stage="spawn") from e
        logger.debug("spawned %s (pid=%d, cwd=%s)", exe, proc.pid, working_dir)
        return cls(proc, Path(working_dir), exe)

    # ------------------------------------------------------------------
    # properties
    # ------------------------------------------------------------------
    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._proc.poll()

    @property
    def closed(self) -> bool:
        return self._closed

    def is_running(self) -> bool:
        return self._proc.poll() is None

    # ------------------------------------------------------------------
    # one-shot I/O
    # ------------------------------------------------------------------
    def write_and_collect(self, text: str) -> str:
        """Feed ``text`` to stdin, close it and return all of stdout.

        Undecodable bytes are replaced, not fatal. A non-zero exit status is
        reported as :class:`EngineIOError` carrying the collected output.
        """
        try:
            stdout, _ = self._proc.communicate(text)
        except (BrokenPipeError, OSError, ValueError) as e:
            raise EngineIOError(f"engine communication failed: {e}", stage="communicate") from e
        stdout = stdout or ""
        code = self._proc.returncode
        if code != 0:
            raise EngineIOError(
                f"calling script {self.executable} failed with exit status {code}",
                stage="communicate",
                output=stdout,
            )
        return stdout

    # ------------------------------------------------------------------
    # streaming I/O
    # ------------------------------------------------------------------
    def write_line(self, line: str) -> None:
        self.write_lines([line])

    def write_lines(self, lines: Iterable[str]) -> None:
        """Write lines to stdin and flush once all of them are written."""
        stream = self._proc.stdin
        if stream is None:
            raise EngineIOError("stdin of engine process is not captured", stage="write")
        try:
            for line in lines:
                stream.write(line if line.endswith("\n") else line + "\n")
            stream.flush()
        except (BrokenPipeError, ValueError, OSError) as e:
            raise EngineIOError(f"Failed to write to stdin of pid {self.pid}: {e}", stage="write") from e

    def read_line(self) -> str | None:
        """Return the next stdout line without its newline, or None at EOF."""
        stream = self._proc.stdout
        if stream is None:
            raise EngineIOError("stdout of engine process is not captured", stage="read")
        try:
            line = stream.readline()
        except (OSError, ValueError) as e:
            raise EngineIOError(f"Failed to read stdout of pid {self.pid}: {e}", stage="read") from e
        if line == "":
            return None
        return line.rstrip("\r\n")

    # ------------------------------------------------------------------
    # teardown
    # ------------------------------------------------------------------
    def _descendants(self) -> list[psutil.Process]:
        try:
            return psutil.Process(self.pid).children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return []

    def terminate(self, grace: float = TERMINATE_GRACE_S) -> None:
        """Best-effort shutdown of the process group; idempotent, never raises."""
        if self._closed:
            return
        self._closed = True
        unregister(self)
        try:
            self._terminate(grace)
        except Exception:
            logger.exception("Error while terminating engine process %d", self.pid)
        finally:
            self._close_pipes()

    close = terminate

    def _wait_group(self, timeout: float) -> bool:
        """Reap the leader and wait until no member of its group is left."""
        deadline = time.monotonic() + timeout
        while True:
            leader_done = self._proc.poll() is not None
            if leader_done and not _group_alive(self.pid):
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.02)

    def _terminate(self, grace: float) -> None:
        proc = self._proc
        pgid = proc.pid
        descendants = self._descendants()
        leader_running = proc.poll() is None
        if leader_running:
            logger.info("Force to kill child process: %d", pgid)
        # the group outlives its leader while backgrounded helpers run
        if _signal_group(pgid, signal.SIGTERM):
            # a stopped group only acts on SIGTERM once continued
            _signal_group(pgid, signal.SIGCONT)
            if not self._wait_group(grace):
                logger.warning("process group %d still alive %.1fs after SIGTERM; sending SIGKILL", pgid, grace)
                _signal_group(pgid, signal.SIGKILL)
                if not self._wait_group(grace):
                    logger.error("process group %d did not exit after SIGKILL; giving up", pgid)
                    return
        if leader_running:
            logger.info("Done (exit status %s)", proc.returncode)
        # helpers that left the process group
        _, alive = psutil.wait_procs(descendants, timeout=0.1)
        for p in alive:
            try:
                logger.debug("killing leftover descendant pid=%d", p.pid)
                p.kill()
            except psutil.NoSuchProcess:
                pass

    def _close_pipes(self) -> None:
        for stream in (self._proc.stdin, self._proc.stdout):
            if stream is None:
                continue
            try:
                stream.close()
            except (OSError, ValueError):
                pass

    def __enter__(self) -> "ProcessHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.terminate()

    def __del__(self):
        try:
            self.terminate()
        except Exception:  # pragma: no cover - interpreter shutdown
            pass

    def __repr__(self) -> str:
        state = "closed" if self._closed else ("running" if self.is_running() else "exited")
        return f"ProcessHandle(pid={self.pid}, {state}, exe={str(self.executable)!r})"
