"""Command-line interface for PhenoEvo.

Usage:
    phenoevo run --config configs/default.yaml --output results/traj.bin
    phenoevo run --config params.yaml --seed 7 --saves-per-file 10
    phenoevo run --config params.yaml --initial results/final.bin
    phenoevo inspect results/traj.bin --config params.yaml --every 10
    phenoevo count results/ '^traj.*\\.bin$'
"""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from pathlib import Path
from typing import List, Optional

import yaml
from tqdm import tqdm

from phenoevo import __version__
from phenoevo.config import (
    SimulationConfig,
    config_to_dict,
    load_config,
    save_config,
)
from phenoevo.engine import SimulationEngine
from phenoevo.errors import PhenoEvoError
from phenoevo.trajectory import (
    iter_frames,
    load_frame_file,
    save_frame_file,
    summarize_frame,
)
from phenoevo.utils import (
    config_hash,
    file_sha256,
    regex_count,
    setup_logging,
    timer,
)

logger = logging.getLogger("phenoevo")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phenoevo",
        description="Stochastic phenotype evolution in a switching environment.",
    )
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default=None,
                        help="DEBUG, INFO, WARNING or ERROR "
                             "(default: from config, else INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="run a simulation and write a trajectory")
    run.add_argument("--config", required=True, type=Path,
                     help="parameter YAML file")
    run.add_argument("--scenario", type=Path, default=None,
                     help="optional YAML merged over --config")
    run.add_argument("--output", type=Path, default=None,
                     help="trajectory file (default: output.directory/"
                          "output.trajectory_name)")
    run.add_argument("--seed", type=int, default=None,
                     help="override simulation.seed (fixed policy)")
    run.add_argument("--entropy", action="store_true",
                     help="seed from OS entropy instead of a fixed seed")
    run.add_argument("--steps-per-save", type=int, default=None)
    run.add_argument("--saves-per-file", type=int, default=None)
    run.add_argument("--initial", type=Path, default=None,
                     help="resume from a single-frame state file")
    run.add_argument("--save-final", type=Path, default=None,
                     help="write the final state to a single-frame file")
    run.add_argument("--write-config", type=Path, default=None,
                     help="write the resolved parameters as YAML")
    run.add_argument("--append", action="store_true",
                     help="append frames to an existing trajectory")
    run.add_argument("--no-progress", action="store_true",
                     help="disable the progress bar")

    inspect = sub.add_parser("inspect", help="summarize a trajectory file")
    inspect.add_argument("trajectory", type=Path)
    inspect.add_argument("--config", required=True, type=Path,
                         help="parameter YAML the trajectory was written with")
    inspect.add_argument("--every", type=int, default=1,
                         help="print every N-th frame")

    count = sub.add_parser("count", help="count directory entries matching a regex")
    count.add_argument("directory", type=Path)
    count.add_argument("pattern")

    return parser


def _overrides(args: argparse.Namespace) -> dict:
    sim = {}
    if args.seed is not None:
        sim['seed'] = args.seed
        sim['seed_policy'] = 'fixed'
    if args.entropy:
        sim['seed_policy'] = 'entropy'
    if args.steps_per_save is not None:
        sim['steps_per_save'] = args.steps_per_save
    if args.saves_per_file is not None:
        sim['saves_per_file'] = args.saves_per_file
    return {'simulation': sim} if sim else {}


def _configure_logging(args: argparse.Namespace,
                       config: Optional[SimulationConfig] = None) -> None:
    level = args.log_level
    show_location = True
    if config is not None:
        level = level or config.logging.level
        show_location = config.logging.show_location
    setup_logging(level or "INFO", show_location=show_location)


def cmd_run(args: argparse.Namespace) -> int:
    _configure_logging(args)
    config = load_config(args.config, scenario_path=args.scenario,
                         sweep_overrides=_overrides(args))
    _configure_logging(args, config)
    params_hash = config_hash(
        yaml.safe_dump(config_to_dict(config), sort_keys=False)
    )
    logger.info("parameters loaded from %s (config hash %s)",
                args.config, params_hash)

    if args.write_config is not None:
        save_config(config, args.write_config)
        logger.info("resolved parameters written to %s", args.write_config)

    output = args.output or config.output.trajectory_path
    engine = SimulationEngine(config)
    if args.initial is not None:
        engine.load_state(load_frame_file(args.initial, config.model.n_phe))
    else:
        engine.initialize()

    saves = config.simulation.saves_per_file
    with tqdm(total=saves, unit="frame", disable=args.no_progress,
              leave=False) as bar:
        def _progress(n_saved: int, n_total: int) -> None:
            bar.update(1)

        with timer("run"):
            n_frames = engine.run(output, progress_callback=_progress,
                                  append=args.append)

    logger.info("wrote %d frames to %s (sha256 %s, config hash %s)",
                n_frames, output, file_sha256(output), params_hash)
    if args.save_final is not None:
        save_frame_file(args.save_final, engine.snapshot)
        logger.info("final state written to %s", args.save_final)
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    _configure_logging(args)
    config = load_config(args.config)
    if args.every < 1:
        raise ValueError(f"--every must be >= 1, got {args.every}")
    n_frames = 0
    for i, snap in enumerate(iter_frames(args.trajectory, config.model.n_phe)):
        n_frames += 1
        if i % args.every == 0:
            print(json.dumps({'frame': i, **summarize_frame(snap, config.model.n_phe)}))
    logger.info("%d frames in %s", n_frames, args.trajectory)
    return 0


def cmd_count(args: argparse.Namespace) -> int:
    _configure_logging(args)
    print(regex_count(args.directory, args.pattern))
    return 0


_COMMANDS = {
    'run': cmd_run,
    'inspect': cmd_inspect,
    'count': cmd_count,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return _COMMANDS[args.command](args)
    except (PhenoEvoError, OSError, ValueError, re.error) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
