"""
Ensure engine processes and scratch directories are released even when a run
is interrupted (Ctrl+C) or terminated (SIGTERM).

Every resource with a ``close()`` method (process handles, scratch spaces)
registers itself on creation and unregisters when closed. On interpreter
exit, or on a signal once :func:`install_signal_handlers` has been called,
the remaining registrations are closed in LIFO order, so a process is
terminated before the scratch directory it runs in is removed.

Typical usage:

    from bbm.cli.safe_run import ensure_finalized

    with ensure_finalized(BlackBoxModel.from_dir(model_dir)) as model:
        ... do the work ...

Cleanup is idempotent and safe to call multiple times.
"""
from __future__ import annotations

import atexit
import logging
import signal
import sys
import threading
import traceback
import weakref
from contextlib import contextmanager
from typing import List, Optional

logger = logging.getLogger(__name__)


class _Registry:
    """Holds a stack of weak references to closable resources."""
    __slots__ = ("_refs", "_lock")

    def __init__(self) -> None:
        self._refs: List[weakref.ref] = []
        self._lock = threading.RLock()

    def push(self, obj) -> None:
        with self._lock:
            self._refs.append(weakref.ref(obj))

    def discard(self, obj) -> None:
        with self._lock:
            self._refs = [r for r in self._refs if r() is not None and r() is not obj]

    def pop_all(self) -> list:
        with self._lock:
            live = [r() for r in self._refs]
            self._refs.clear()
        return [o for o in reversed(live) if o is not None]

    def snapshot(self) -> list:
        with self._lock:
            return [o for o in (r() for r in self._refs) if o is not None]

    def is_empty(self) -> bool:
        return not self.snapshot()


_registry = _Registry()


def register(obj) -> None:
    """Track ``obj`` (anything with ``close()``) for finalization at exit."""
    _registry.push(obj)


def unregister(obj) -> None:
    _registry.discard(obj)


def live_resources() -> list:
    return _registry.snapshot()


def _close_one(obj, reason: str) -> None:
    try:
        logger.debug("[bbm] finalize %r (reason=%s)", obj, reason)
        obj.close()
    except Exception:
        # Avoid raising exceptions during interpreter shutdown; print a brief report.
        try:
            sys.stderr.write(f"[bbm] WARNING: closing {obj!r} raised during cleanup.\n")
            traceback.print_exc()
        except Exception:
            pass


def cleanup(reason: str = "atexit") -> None:
    """Close every registered resource, newest first."""
    for obj in _registry.pop_all():
        _close_one(obj, reason)


def _signal_handler(signum, frame):  # type: ignore[no-untyped-def]
    name = {getattr(signal, k): k for k in ("SIGINT", "SIGTERM")}.get(signum, str(signum))
    cleanup(reason=name)
    # Re-raise default behavior after cleanup for proper exit status
    signal.signal(signum, signal.SIG_DFL)
    try:
        signal.raise_signal(signum)
    except Exception:
        sys.exit(1)


def install_signal_handlers() -> None:
    """Finalize registered resources on SIGINT/SIGTERM (main thread only)."""
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _signal_handler)
        except (ValueError, OSError) as e:
            logger.debug("cannot install handler for %s: %s", sig, e)


@contextmanager
def ensure_finalized(obj, reason: Optional[str] = None):
    """Yield ``obj`` and close it when the block exits, whatever the outcome."""
    register(obj)
    try:
        yield obj
    finally:
        unregister(obj)
        _close_one(obj, reason or "context-exit")


# Register atexit cleanup once on import
atexit.register(cleanup)

__all__ = [
    "register",
    "unregister",
    "live_resources",
    "cleanup",
    "install_signal_handlers",
    "ensure_finalized",
]
