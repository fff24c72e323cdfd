"""Central logging infrastructure for bbm.

Design goals:
    * Single active file handler per run (CLI invocation or test).
    * Optional console (stderr) emission without duplication.
    * Logging setup errors are non-fatal; a broken log file must never abort
      an engine run.

Environment variables:
    BBM_LOG_LEVEL   Override root log level (default: INFO).

Public API:
    setup_logging(path, also_console=True, suppress_initial_message=False)
    log_run_header(command)
    reset_logging()
"""
from __future__ import annotations

import logging
import os
import subprocess
from logging.handlers import WatchedFileHandler
from pathlib import Path

_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def _version() -> str:
    try:
        from bbm import __version__
    except Exception:  # pragma: no cover
        return "unknown"
    return __version__


class ResilientWatchedFileHandler(WatchedFileHandler):
    """WatchedFileHandler that recreates a deleted log directory.

    Scratch and tmp directories are routinely removed while the handler is
    still attached to the root logger. Retry exactly once after recreating
    the parent directory; remaining failures are dropped.
    """

    def emit(self, record):  # type: ignore[override]
        try:
            super().emit(record)
            return
        except FileNotFoundError:
            try:
                Path(getattr(self, "baseFilename", ".")).parent.mkdir(parents=True, exist_ok=True)
            except OSError:
                pass
            try:
                super().emit(record)
            except Exception:
                pass


def _is_console(h: logging.Handler) -> bool:
    return isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)


def setup_logging(log_path=None, also_console: bool = True, suppress_initial_message: bool = False) -> None:
    """Configure the root logger for the current invocation.

    Parameters
    ----------
    log_path : str | Path | None
        Destination log file. ``None`` configures console output only.
    also_console : bool, default True
        Ensure exactly one stderr handler. When False existing console
        handlers are removed.
    suppress_initial_message : bool, default False
        Skip the "Logging initialized" line.

    Behaviour
    ---------
    * File handlers pointing elsewhere are closed and removed.
    * A handler already bound to ``log_path`` is kept (idempotent).
    * An already more verbose root level (e.g. DEBUG) is not downgraded.
    """
    root = logging.getLogger()
    env_level = os.getenv("BBM_LOG_LEVEL", "INFO").upper()
    desired_level = getattr(logging, env_level, logging.INFO)
    if root.level > desired_level or root.level == logging.NOTSET:
        root.setLevel(desired_level)
    effective_level = logging.getLevelName(root.level)

    path = Path(log_path).resolve() if log_path else None
    existing_same = False
    for h in [h for h in root.handlers if isinstance(h, logging.FileHandler)]:
        existing = Path(getattr(h, "baseFilename", ""))
        if path is not None and existing.parent.exists() and existing.resolve() == path:
            existing_same = True
            continue
        root.removeHandler(h)
        h.close()

    if also_console:
        if not any(_is_console(h) for h in root.handlers):
            ch = logging.StreamHandler()
            ch.setLevel(root.level)
            ch.setFormatter(logging.Formatter(_FORMAT))
            root.addHandler(ch)
    else:
        for h in [h for h in root.handlers if _is_console(h)]:
            root.removeHandler(h)
            h.close()

    if path is not None and not existing_same:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:  # pragma: no cover
            logging.warning("Could not create log directory for %s: %s", path, e)
        fh = ResilientWatchedFileHandler(path, mode="a", encoding="utf-8", delay=False)
        fh.setLevel(root.level)
        fh.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(fh)
        if not suppress_initial_message:
            root.info(f"Logging initialized. Log file: {path} (level={effective_level})")


def _git_commit_short() -> str:
    try:
        out = subprocess.check_output(["git", "rev-parse", "--short", "HEAD"], stderr=subprocess.DEVNULL, timeout=1)
        return out.decode().strip()
    except Exception:  # pragma: no cover
        return ""


def log_run_header(command: str) -> str:
    """Emit ``bbm <version> | cmd=<command> | git=<short-hash>`` and return it.

    The git part is omitted when repository metadata is unavailable.
    """
    parts = [f"bbm {_version()}", f"cmd={command}"]
    commit = _git_commit_short()
    if commit:
        parts.append(f"git={commit}")
    header = " | ".join(parts)
    logging.getLogger().info(header)
    return header


def reset_logging() -> None:
    """Remove and close all handlers of the root logger and known children."""
    logging.shutdown()
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for logger_name in list(logging.Logger.manager.loggerDict):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
            handler.close()
        logger.filters = []


__all__ = ["setup_logging", "log_run_header", "reset_logging", "ResilientWatchedFileHandler"]
