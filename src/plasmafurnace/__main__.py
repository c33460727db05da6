"""
Command-line interface.

    python -m plasmafurnace run config.json -o result.h5
    python -m plasmafurnace sweep config.json --parameter torches.0.power --min 50 --max 150 --steps 3
    python -m plasmafurnace materials
"""
import argparse
import json
import logging
import sys
from typing import Optional, Sequence

from plasmafurnace.controller.engine import SimulationEngine
from plasmafurnace.controller.parametric import ParametricParameter, ParametricStudy
from plasmafurnace.errors import SimulationError
from plasmafurnace.logging_config import setup_logging
from plasmafurnace.model.io import IOManager
from plasmafurnace.model.materials import MaterialLibrary
from plasmafurnace.model.state import RunStatus

logger = logging.getLogger("plasmafurnace.cli")

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="plasmafurnace",
        description="Transient heat transfer in an axisymmetric plasma furnace.",
    )
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", default=None, help="Also write the log to this file")
    parser.add_argument("--materials", default=None, help="JSON file with additional materials")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one simulation")
    run.add_argument("config", help="Run configuration (JSON)")
    run.add_argument("-o", "--output", default="result.h5", help="HDF5 result file")
    run.add_argument("--plot", default=None, help="Save a plot of the final snapshot (PNG)")
    run.add_argument("--csv", default=None, help="Export every snapshot as CSV into this directory")

    sweep = sub.add_parser("sweep", help="Run a parametric sweep")
    sweep.add_argument("config", help="Base run configuration (JSON)")
    sweep.add_argument("--parameter", required=True, help="Dotted parameter path, e.g. torches.0.power")
    sweep.add_argument("--min", type=float, required=True, dest="min_value")
    sweep.add_argument("--max", type=float, required=True, dest="max_value")
    sweep.add_argument("--steps", type=int, default=3)

    sub.add_parser("materials", help="List the available materials")
    return parser


def _load_library(path: Optional[str]) -> MaterialLibrary:
    library = MaterialLibrary()
    if path:
        library.load_json(path)
    return library


def _run(args: argparse.Namespace, library: MaterialLibrary) -> int:
    config = IOManager.load_config(args.config)
    engine = SimulationEngine(config, library=library)
    result = engine.run()
    IOManager.save_result(result, args.output, config=config)
    if args.plot and result.snapshots:
        # Imported late, matplotlib is slow to load
        from plasmafurnace.view.plots import plot_snapshot
        plot_snapshot(result, filename=args.plot)
    if args.csv and result.snapshots:
        IOManager.export_results_csv(result, args.csv)

    meta = result.metadata
    print(
        f"{result.status}: t={meta.final_time:.3f}/{meta.requested_time:.3f} s, "
        f"{meta.steps_completed} steps, T = {meta.min_temperature:.1f}..{meta.max_temperature:.1f} K"
    )
    if result.failure is not None:
        print(f"Failure: {result.failure.reason}", file=sys.stderr)
    return EXIT_OK if result.status == RunStatus.COMPLETED else EXIT_RUN_FAILED


def _sweep(args: argparse.Namespace, library: MaterialLibrary) -> int:
    config = IOManager.load_config(args.config)
    parameter = ParametricParameter(args.parameter, args.min_value, args.max_value, args.steps)
    study = ParametricStudy.from_parameter(config, parameter, library=library)
    study.run()
    print(json.dumps(study.summary(), indent=2))
    completed = all(row["status"] == RunStatus.COMPLETED.value for row in study.summary())
    return EXIT_OK if completed else EXIT_RUN_FAILED


def _materials(library: MaterialLibrary) -> int:
    for material in library:
        print(
            f"{material.name:<20} rho={material.density:g} kg/m³  "
            f"alpha(500 K)={material.diffusivity(500.0):.3e} m²/s  "
            f"range {material.min_temperature:g}-{material.max_temperature:g} K"
        )
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(level=getattr(logging, args.log_level), log_file=args.log_file)

    try:
        library = _load_library(args.materials)
        if args.command == "run":
            return _run(args, library)
        if args.command == "sweep":
            return _sweep(args, library)
        return _materials(library)
    except (SimulationError, FileNotFoundError) as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
