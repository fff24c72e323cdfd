"""Scratch directory management.

Each orchestrator owns at most one uniquely named scratch directory. It is
created lazily, reused across calls (multi-step jobs such as optimisations
expect engine files to persist between steps) and removed on teardown unless
it was explicitly kept for inspection.
"""
from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from bbm.cli.safe_run import register, unregister
from bbm.errors import EngineIOError

__all__ = ["ScratchSpace", "SCRATCH_PREFIX"]

logger = logging.getLogger(__name__)

SCRATCH_PREFIX = "bbm-"


class ScratchSpace:
    """A uniquely named working directory, optionally nested under ``root``.

    Use as a context manager or call :meth:`cleanup` explicitly. Cleanup is
    idempotent and never raises.
    """

    def __init__(self, path: Path, root: Path | None = None):
        self._path = Path(path)
        self.root = root
        self.keep = False
        self._removed = False

    @classmethod
    def create(cls, root: str | os.PathLike | None = None, prefix: str = SCRATCH_PREFIX) -> "ScratchSpace":
        """Create a fresh directory below ``root`` (system tmp dir when None).

        Raises
        ------
        EngineIOError
            If ``root`` cannot be created or no temporary directory can be made.
        """
        root_path: Path | None = None
        if root is not None:
            # Expand env vars and user (~); allow ${USER} etc.
            root_path = Path(os.path.expanduser(os.path.expandvars(str(root))))
            try:
                root_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise EngineIOError(f"cannot create scratch root {root_path}: {e}", stage="scratch") from e
            logger.debug("set scratch root directory as: %s", root_path)
        else:
            logger.debug("scratch root directory is not set, use the system default.")
        try:
            path = tempfile.mkdtemp(prefix=prefix, dir=str(root_path) if root_path else None)
        except OSError as e:
            raise EngineIOError(f"cannot create scratch directory: {e}", stage="scratch") from e
        logger.info("Created scratch directory: %s", path)
        space = cls(Path(path).resolve(), root=root_path)
        register(space)
        return space

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_dir()

    def into_kept(self) -> Path:
        """Disable removal and return the path for failure inspection."""
        self.keep = True
        logger.info("Directory for scratch files: %s", self._path)
        return self._path

    def cleanup(self) -> None:
        """Recursively remove the directory unless it is kept.

        Removal failures are logged, never propagated.
        """
        if self._removed:
            return
        self._removed = True
        unregister(self)
        if self.keep:
            logger.info("Keeping scratch directory: %s", self._path)
            return
        if not self._path.is_dir():
            logger.debug("Scratch directory already removed: %s", self._path)
            return
        try:
            shutil.rmtree(self._path)
            logger.info("Removed scratch directory: %s", self._path)
        except Exception as e:
            logger.error("Failed to remove scratch directory '%s': %s", self._path, e)

    close = cleanup

    def __enter__(self) -> "ScratchSpace":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def __del__(self):
        try:
            self.cleanup()
        except Exception:  # pragma: no cover - interpreter shutdown
            pass

    def __fspath__(self) -> str:
        return str(self._path)

    def __repr__(self) -> str:
        return f"ScratchSpace({str(self._path)!r}, keep={self.keep})"
