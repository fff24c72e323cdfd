"""Universal black-box model driven by user scripts.

Usage::

    from bbm import BlackBoxModel

    with BlackBoxModel.from_dir("/share/apps/mopac/sp") as bbm:
        result = bbm.compute(mol)
        results = bbm.compute_bunch(mols)

A model directory provides a run script (``submit.sh``), an input template
(``input.tpl``) and optional ``.env`` / ``bbm.toml`` settings. When an
interactive control script is configured, a single engine process is kept
alive across calls; otherwise every call runs the script once, feeding the
rendered input on stdin and parsing the result documents it prints.
"""
from __future__ import annotations

import logging
import os
import warnings
from pathlib import Path
from typing import Iterable, List, Optional

from bbm.adapters.process import ProcessHandle, engine_environment
from bbm.adapters.protocols import get_protocol
from bbm.adapters.results import ComputedResult
from bbm.cli.safe_run import register, unregister
from bbm.config.loader import ModelConfig, load_config
from bbm.domain.session import InteractiveSession
from bbm.errors import BlackBoxError, ConsistencyWarning, ParseError
from bbm.infra.step_logging import log_relevant_config
from bbm.io.model_properties import parse_all, parse_one
from bbm.io.molecule import Molecule
from bbm.io.render import TemplateRenderer
from bbm.scratch.manager import ScratchSpace

__all__ = ["BlackBoxModel"]

logger = logging.getLogger(__name__)

_LOGGED_FIELDS = [
    "model_dir",
    "run_file",
    "tpl_file",
    "scratch_root",
    "control_script",
    "interactive.protocol",
    "interactive.input_file",
    "process.terminate_grace_s",
]


class BlackBoxModel:
    """Compute molecular properties with an external engine."""

    def __init__(self, config: ModelConfig, renderer: Optional[TemplateRenderer] = None):
        self.config = config
        self.renderer = renderer or TemplateRenderer(config.tpl_file)
        self.protocol = get_protocol(config.interactive.protocol) if config.interactive_mode else None
        self._scratch: ScratchSpace | None = None
        self._session: InteractiveSession | None = None
        self._n_evaluations = 0
        self._closed = False
        if not config.run_file.is_file():
            logger.warning("run script not found: %s", config.run_file)
        log_relevant_config("bbm", config, _LOGGED_FIELDS, log_fn=logger.info)
        register(self)

    @classmethod
    def from_dir(
        cls,
        model_dir: str | os.PathLike,
        config_path: str | os.PathLike | None = None,
        renderer: Optional[TemplateRenderer] = None,
    ) -> "BlackBoxModel":
        """Construct a model from the settings found in ``model_dir``."""
        return cls(load_config(model_dir, config_path), renderer=renderer)

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------
    @property
    def interactive(self) -> bool:
        return self.config.interactive_mode

    @property
    def number_of_evaluations(self) -> int:
        """Completed single-structure computations."""
        return self._n_evaluations

    @property
    def scratch_dir(self) -> Path | None:
        return self._scratch.path if self._scratch is not None else None

    def _ensure_scratch(self) -> ScratchSpace:
        # re-use the same scratch directory for multi-step calculations
        if self._scratch is None:
            self._scratch = ScratchSpace.create(self.config.scratch_root)
        return self._scratch

    def _engine_env(self) -> dict[str, str]:
        return engine_environment(self.config.tpl_dir)

    def keep_scratch_files(self) -> Path | None:
        """Keep the scratch directory for inspection and return its path."""
        if self._scratch is None:
            logger.warning("No temp dir found.")
            return None
        return self._scratch.into_kept()

    # ------------------------------------------------------------------
    # rendering
    # ------------------------------------------------------------------
    def render_input(self, mol: Molecule) -> str:
        return self.renderer.render(mol)

    def render_input_bunch(self, mols: Iterable[Molecule]) -> str:
        return self.renderer.render_bunch(mols)

    # ------------------------------------------------------------------
    # compute
    # ------------------------------------------------------------------
    def _call(self, text: str) -> str:
        """Run the script once with ``text`` on stdin and return its stdout."""
        if self._closed:
            raise BlackBoxError("BlackBoxModel is closed", stage="closed")
        scratch = self._ensure_scratch()
        logger.debug("calling script file: %s", self.config.run_file)
        with ProcessHandle.spawn(self.config.run_file, scratch.path, env_vars=self._engine_env()) as proc:
            return proc.write_and_collect(text)

    def _interactive_session(self) -> InteractiveSession:
        if self._closed:
            raise BlackBoxError("BlackBoxModel is closed", stage="closed")
        if self._session is None:
            scratch = self._ensure_scratch()
            self._session = InteractiveSession(
                run_file=self.config.run_file,
                working_dir=scratch.path,
                render=self.render_input,
                protocol=self.protocol,
                env_vars=self._engine_env(),
                control_script=self.config.control_script,
                input_file=self.config.interactive.input_file,
                terminate_grace=self.config.process.terminate_grace_s,
            )
        return self._session

    @staticmethod
    def _check_consistency(mol: Molecule, result: ComputedResult) -> None:
        if result.structure is not None and result.structure.natoms != mol.natoms:
            msg = (
                f"computed structure has {result.structure.natoms} atoms, "
                f"input structure has {mol.natoms}"
            )
            logger.warning(msg)
            warnings.warn(msg, ConsistencyWarning, stacklevel=3)

    def compute(self, mol: Molecule) -> ComputedResult:
        """Compute the properties of one molecule."""
        if self.interactive:
            logger.debug("interactive mode enabled")
            result = self._interactive_session().submit(mol)
        else:
            output = self._call(self.render_input(mol))
            result = parse_one(output)
        self._check_consistency(mol, result)
        self._n_evaluations += 1
        return result

    def compute_bunch(self, mols: Iterable[Molecule]) -> List[ComputedResult]:
        """Compute many molecules in a single engine invocation.

        The engine must print one result document per input structure, in
        input order.
        """
        mols = list(mols)
        if self.interactive:
            raise BlackBoxError("bunch computation is not supported in interactive mode", stage="bunch")
        if not mols:
            return []
        output = self._call(self.render_input_bunch(mols))
        results = parse_all(output)
        if len(results) != len(mols):
            raise ParseError(
                f"expected {len(mols)} result documents, engine printed {len(results)}",
                stage="parse",
                output=output,
            )
        for mol, result in zip(mols, results):
            self._check_consistency(mol, result)
        return results

    # ------------------------------------------------------------------
    # teardown
    # ------------------------------------------------------------------
    def close(self) -> None:
        """Stop the interactive engine (if any) and remove scratch files. Idempotent."""
        if self._closed:
            return
        self._closed = True
        unregister(self)
        if self._session is not None:
            self._session.close()
        if self._scratch is not None:
            self._scratch.cleanup()

    def __enter__(self) -> "BlackBoxModel":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __del__(self):
        try:
            self.close()
        except Exception:  # pragma: no cover - interpreter shutdown
            pass

    def __repr__(self) -> str:
        mode = "interactive" if self.interactive else "one-shot"
        return f"BlackBoxModel({str(self.config.model_dir)!r}, {mode}, n={self._n_evaluations})"
