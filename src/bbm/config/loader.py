"""Model directory configuration loader.

A model directory contains the engine run script, the input template and
optional settings. Sources are merged lowest precedence first:

1. built-in defaults (dataclass schema below)
2. legacy ``.env`` (``BBM_RUN_FILE``, ``BBM_TPL_FILE``, ``BBM_SCR_DIR``, ``BBM_INT_FILE``)
3. ``bbm.toml`` in the model directory
4. an explicit extra TOML file (``config_path``)
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, is_dataclass, fields
from pathlib import Path
import typing as t

try:
    import tomllib  # py>=3.11
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore

from bbm.config.legacy import DotEnvParser

SETTINGS_TOML = "bbm.toml"
SETTINGS_DOTENV = ".env"

# -----------------
# Dataclass schema
# -----------------

@dataclass
class BlackBoxSection:
    run_file: str = "submit.sh"
    tpl_file: str = "input.tpl"
    scr_dir: str | None = None
    # Control script for pausing/resuming a long-lived engine; enables interactive mode
    int_file: str | None = None

@dataclass
class InteractiveSection:
    protocol: str = "vasp"
    input_file: str = "input.txt"

@dataclass
class ProcessSection:
    terminate_grace_s: float = 1.0

@dataclass
class ModelConfig:
    model_dir: Path
    blackbox: BlackBoxSection = field(default_factory=BlackBoxSection)
    interactive: InteractiveSection = field(default_factory=InteractiveSection)
    process: ProcessSection = field(default_factory=ProcessSection)
    sources: list[Path] = field(default_factory=list)

    # Resolved paths --------------------------------------------------------

    @property
    def run_file(self) -> Path:
        return self.model_dir / self.blackbox.run_file

    @property
    def tpl_file(self) -> Path:
        return self.model_dir / self.blackbox.tpl_file

    @property
    def tpl_dir(self) -> Path:
        return self.tpl_file.parent

    @property
    def scratch_root(self) -> Path | None:
        if not self.blackbox.scr_dir:
            return None
        raw = os.path.expanduser(os.path.expandvars(self.blackbox.scr_dir))
        return self.model_dir / raw

    @property
    def control_script(self) -> Path | None:
        if not self.blackbox.int_file:
            return None
        return self.model_dir / self.blackbox.int_file

    @property
    def interactive_mode(self) -> bool:
        return self.control_script is not None


# -----------------
# Helpers
# -----------------

def _load_toml(path: Path) -> dict:
    with path.open("rb") as f:
        return tomllib.load(f)


def _deep_merge(base: dict, override: dict) -> dict:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _merge_into_dataclass(section, payload: dict):
    """Recursively merge a dict into a (possibly nested) dataclass instance."""
    for k, v in payload.items():
        if not hasattr(section, k):
            logging.getLogger(__name__).warning("[config] unknown setting %r ignored", k)
            continue
        current = getattr(section, k)
        if is_dataclass(current) and isinstance(v, dict):
            _merge_into_dataclass(current, v)
        else:
            if v is not None:
                setattr(section, k, v)


def _flatten_dataclass(obj, prefix: str = ""):
    """Yield (key_path, value) for leaf attributes of nested dataclasses.

    Field order is preserved to keep dumps stable across runs.
    """
    if is_dataclass(obj):
        for f in fields(obj):
            val = getattr(obj, f.name)
            key = f"{prefix}.{f.name}" if prefix else f.name
            if is_dataclass(val):
                yield from _flatten_dataclass(val, key)
            else:
                yield key, val
    else:
        yield prefix or "value", obj


def dump_config(cfg: ModelConfig, log_fn=print, header: bool = True):
    """Log all config settings (flattened) with a stable ordering.

    Format: [config] section.key = value
    """
    if header:
        log_fn("[config] -- begin full config dump --")
    for key, val in _flatten_dataclass(cfg):
        log_fn(f"[config] {key} = {val}")
    if header:
        log_fn("[config] -- end full config dump --")


# -----------------
# Loader
# -----------------

def load_config(
    model_dir: t.Union[str, Path],
    config_path: t.Union[str, Path, None] = None,
) -> ModelConfig:
    logger = logging.getLogger(__name__)
    try:
        root = Path(model_dir).resolve(strict=True)
    except FileNotFoundError:
        raise FileNotFoundError(f"invalid model directory: {model_dir}") from None
    if not root.is_dir():
        raise NotADirectoryError(f"invalid model directory: {root}")

    data: dict = {}
    sources: list[Path] = []

    dotenv = root / SETTINGS_DOTENV
    if dotenv.is_file():
        data = _deep_merge(data, DotEnvParser(str(dotenv)).as_payload())
        sources.append(dotenv)

    tomls = [root / SETTINGS_TOML]
    if config_path:
        provided = Path(config_path).resolve()
        if not provided.is_file():
            raise FileNotFoundError(f"config file not found: {provided}")
        tomls.append(provided)
    for p in tomls:
        if p.is_file() and p not in sources:
            data = _deep_merge(data, _load_toml(p))
            sources.append(p)

    cfg = ModelConfig(model_dir=root)
    for section_name in ("blackbox", "interactive", "process"):
        payload = data.get(section_name, {})
        if isinstance(payload, dict):
            _merge_into_dataclass(getattr(cfg, section_name), payload)
    for key in data:
        if key not in ("blackbox", "interactive", "process"):
            logger.warning("[config] unknown section [%s] ignored", key)
    cfg.sources = sources

    if not sources:
        logger.debug("[config] no settings file in %s; using defaults", root)
    return cfg


__all__ = [
    "ModelConfig",
    "BlackBoxSection",
    "InteractiveSection",
    "ProcessSection",
    "load_config",
    "dump_config",
]
