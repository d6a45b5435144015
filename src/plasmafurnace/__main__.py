"""Command-line interface."""
import argparse
import logging
import time

from plasmafurnace.controller.metrics import session_metrics
from plasmafurnace.controller.parametric import predefined_study, run_parametric_study
from plasmafurnace.controller.session import create_session
from plasmafurnace.logging_config import setup_logging
from plasmafurnace.model.geometry import GeometryConfig
from plasmafurnace.model.materials import MaterialLibrary
from plasmafurnace.model.parameters import SimulationParameters
from plasmafurnace.model.study import ParametricStudyResult
from plasmafurnace.model.torches import PlasmaTorch

logger = logging.getLogger("plasmafurnace.cli")


def _simulate(args: argparse.Namespace) -> None:
    geometry = GeometryConfig(radius=args.radius, height=args.height, nr=args.nr, ntheta=1, nz=args.nz)
    parameters = SimulationParameters(
        geometry=geometry,
        material=MaterialLibrary().get_material(args.material),
        torches=(PlasmaTorch(id="torch-1", position=(0.0, 0.0, args.height / 2), power=args.power),),
        time_step=args.dt,
        total_time=args.total_time,
    )
    session = create_session(parameters)
    last = None
    for last in session.run(record_interval=max(1, parameters.num_steps // 10)):
        pass
    if last is not None:
        metrics = session_metrics(session, last)
        logger.info(
            f"t = {last.time:.1f} s: T max {metrics.max_temperature:.1f} K, "
            f"T avg {metrics.avg_temperature:.1f} K, melt fraction {metrics.melt_fraction:.3f}"
        )


def _study(args: argparse.Namespace) -> None:
    study = run_parametric_study(predefined_study(args.study))
    for item in study:
        if isinstance(item, ParametricStudyResult):
            best = item.best_configuration
            if best is not None:
                logger.info(f"Best: {best.parameter_values} -> {item.config.target_metric} = {best.target_metric_value:.4g}")
            logger.info(f"Sensitivity: {item.sensitivity_analysis}")
        else:
            logger.info(f"Run {item.simulation_id} {item.status.value}: {item.parameter_values}")


def main() -> None:
    parser = argparse.ArgumentParser(prog="plasmafurnace", description="Plasma furnace heat transfer simulation.")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file", default=None)
    parser.add_argument("--study", default=None, help="Run a predefined parametric study instead of one simulation.")
    parser.add_argument("--material", default="Steel")
    parser.add_argument("--power", type=float, default=100e3, help="Torch power in W.")
    parser.add_argument("--radius", type=float, default=0.5)
    parser.add_argument("--height", type=float, default=1.0)
    parser.add_argument("--nr", type=int, default=10)
    parser.add_argument("--nz", type=int, default=20)
    parser.add_argument("--dt", type=float, default=1.0)
    parser.add_argument("--total-time", type=float, default=60.0)
    args = parser.parse_args()

    setup_logging(args.log_level, args.log_file)

    start = time.perf_counter()
    if args.study:
        _study(args)
    else:
        _simulate(args)
    logger.info(f"Finished in {time.perf_counter() - start:.2f} s.")


if __name__ == "__main__":
    main()
