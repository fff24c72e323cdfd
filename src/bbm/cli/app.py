import argparse
import json
import logging
import sys
from pathlib import Path

from bbm.adapters.cmd import Cmd
from bbm.adapters.process import engine_environment
from bbm.adapters.vasp import update_incar_for_interactive
from bbm.cli.safe_run import ensure_finalized, install_signal_handlers
from bbm.config.loader import dump_config, load_config
from bbm.domain.blackbox import BlackBoxModel
from bbm.errors import BlackBoxError
from bbm.infra.logging import log_run_header, setup_logging
from bbm.io.molecule import read_xyz_frames

DESCRIPTIONS = {
    'compute': 'Compute properties of every frame in an xyz file and print result documents (or JSON).',
    'render': 'Render the model input template for every frame in an xyz file.',
    'script': 'Write a bash script that runs the model run script with the engine environment.',
    'vasp-incar': 'Patch an INCAR file with the parameters required by interactive VASP.',
    'config': 'Print the resolved model configuration.',
}


def _cmd_compute(args) -> int:
    mols = list(read_xyz_frames(args.structure))
    if not mols:
        logging.error(f"no structures found in {args.structure}")
        return 1
    with ensure_finalized(BlackBoxModel.from_dir(args.model, args.config)) as bbm:
        try:
            if args.bunch:
                results = bbm.compute_bunch(mols)
            else:
                results = [bbm.compute(m) for m in mols]
        except BlackBoxError as e:
            logging.error(f"computation failed: {e}")
            if e.output:
                logging.debug(f"engine output:\n{e.output}")
            if args.keep:
                bbm.keep_scratch_files()
            return 1
        if args.keep:
            bbm.keep_scratch_files()
        logging.info(f"number of evaluations: {bbm.number_of_evaluations}")
    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        for r in results:
            sys.stdout.write(r.to_text())
    return 0


def _cmd_render(args) -> int:
    with ensure_finalized(BlackBoxModel.from_dir(args.model, args.config)) as bbm:
        for mol in read_xyz_frames(args.structure):
            sys.stdout.write(bbm.render_input(mol))
    return 0


def _cmd_script(args) -> int:
    cfg = load_config(args.model, args.config)
    workdir = Path(args.workdir).resolve() if args.workdir else Path.cwd()
    env = engine_environment(cfg.tpl_dir, Path.cwd())
    cmd = Cmd(cmd=str(cfg.run_file), wrk_dir=workdir, env_vars=env)
    cmd.generate_bash_script(args.out)
    return 0


def _cmd_vasp_incar(args) -> int:
    update_incar_for_interactive(args.incar)
    return 0


def _cmd_config(args) -> int:
    cfg = load_config(args.model, args.config)
    dump_config(cfg, log_fn=print)
    return 0


HANDLERS = {
    'compute': _cmd_compute,
    'render': _cmd_render,
    'script': _cmd_script,
    'vasp-incar': _cmd_vasp_incar,
    'config': _cmd_config,
}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser("bbm")
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_cmd(name: str, model: bool = True):
        sp = sub.add_parser(name, help=DESCRIPTIONS[name], description=DESCRIPTIONS[name])
        if model:
            sp.add_argument("--model", required=True, help="Path to the model directory")
            sp.add_argument("--config", help="Optional extra bbm.toml (highest precedence)")
        sp.add_argument("--log", help="Optional log file")
        return sp

    sp = add_cmd('compute')
    sp.add_argument("structure", help="xyz file (one or more frames)")
    sp.add_argument("--bunch", action="store_true", help="Compute all frames in one engine call")
    sp.add_argument("--keep", action="store_true", help="Keep the scratch directory")
    sp.add_argument("--json", action="store_true", help="Print results as JSON")

    sp = add_cmd('render')
    sp.add_argument("structure", help="xyz file (one or more frames)")

    sp = add_cmd('script')
    sp.add_argument("--out", required=True, help="Path of the bash script to write")
    sp.add_argument("--workdir", help="Working directory of the script (default: cwd)")

    sp = add_cmd('vasp-incar', model=False)
    sp.add_argument("incar", help="INCAR file to update in place")

    add_cmd('config')
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log, also_console=True, suppress_initial_message=args.log is None)
    log_run_header(args.cmd)
    install_signal_handlers()
    try:
        return HANDLERS[args.cmd](args)
    except (FileNotFoundError, NotADirectoryError, KeyError, ValueError) as e:
        logging.error(f"{args.cmd} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
