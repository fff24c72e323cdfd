import logging
import os
import subprocess

logger = logging.getLogger(__name__)


def run_command(command, cwd=None, env=None, log_level=logging.DEBUG):
    """
    Runs a helper program (list or string) with logging and error handling.

    Used for short-lived helpers such as interactive control scripts; the
    engine itself is driven through :class:`bbm.adapters.process.ProcessHandle`.

    Parameters
    ----------
    command : list[str] or str
        Command to execute. Prefer a list of args (safer).
    cwd : str or Path, optional
        Working directory in which to execute the command.
    env : dict, optional
        Extra environment variables layered over ``os.environ``.
    log_level : int, optional
        Level used for the captured stdout lines.

    Returns
    -------
    str
        Standard output of the command.

    Raises
    ------
    subprocess.CalledProcessError
        If the command exits with a non-zero status.
    FileNotFoundError, PermissionError
        If the executable cannot be started.
    """
    if isinstance(command, (list, tuple)):
        command = [str(c) for c in command]
        log_cmd = " ".join(command)
        shell = False
    elif isinstance(command, str):
        log_cmd = command
        shell = True
    else:
        raise TypeError("command must be str or list, not %r" % type(command))

    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update({k: str(v) for k, v in env.items()})

    logger.debug("Executing command: %s", log_cmd)
    completed = subprocess.run(
        command,
        shell=shell,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        cwd=cwd,
        env=full_env,
    )
    for line in completed.stdout.splitlines():
        logger.log(log_level, "%s", line.rstrip())
    for line in completed.stderr.splitlines():
        logger.debug("%s", line.rstrip())

    if completed.returncode != 0:
        stderr_text = completed.stderr.strip() or None
        logger.error(
            "Command exited with code %d: %s%s",
            completed.returncode,
            log_cmd,
            f" | stderr: {stderr_text}" if stderr_text else "",
        )
        raise subprocess.CalledProcessError(
            completed.returncode, log_cmd, output=completed.stdout, stderr=completed.stderr
        )
    return completed.stdout
