"""Small helpers to log the relevant subset of a loaded model configuration.

Kept free of config imports so any layer may use them without cycles.
"""
from __future__ import annotations
from typing import Any, Iterable, Callable
import os
import logging

StepLogFn = Callable[[str], None]


def _extract(obj: Any, path: str) -> Any:
    cur = obj
    for part in path.split('.'):
        if cur is None:
            return None
        if hasattr(cur, part):
            cur = getattr(cur, part)
        elif isinstance(cur, dict):
            cur = cur.get(part)
        else:
            return None
    return cur


def log_relevant_config(tag: str, cfg: Any, fields: Iterable[str], log_fn: StepLogFn | None = None) -> dict[str, Any]:
    """Log selected dotted attribute paths from ``cfg`` and return them.

    ``BBM_LOG_TABLE_MODE`` selects the layout: ``line`` (one line),
    ``table`` (aligned rows, default) or ``both``.
    """
    summary: dict[str, Any] = {f: _extract(cfg, f) for f in fields}
    emit = log_fn or logging.info
    mode = os.environ.get('BBM_LOG_TABLE_MODE', 'table').lower()

    if mode in {'both', 'line', ''}:
        emit(f"[{tag}][cfg] " + ", ".join(f"{k}={v!r}" for k, v in summary.items()))

    if mode in {'both', 'table'} and summary:
        k_width = min(max(len(k) for k in summary), 40)
        emit(f"[{tag}][cfg] ── configuration summary ──")
        for k, v in summary.items():
            key = (k[:37] + '...') if len(k) > 40 else k
            emit(f"[{tag}][cfg] {key.ljust(k_width)} : {v!r}")
    return summary


__all__ = [
    'log_relevant_config',
]
