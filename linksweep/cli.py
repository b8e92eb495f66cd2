import logging
from pathlib import Path
from typing import Optional

import typer

from .config import settings
from .errors import ConfigurationError
from .Models import PropagationModel, PropagationModelSpec
from .Sweep import DistanceSweep

app = typer.Typer(help="Move two wifi nodes apart until the UDP throughput between them drops to zero")


def _models_help():
    return ", ".join(f"{m.value}={m.fullname}" for m in PropagationModel)


@app.command()
def sweep(
    model: int = typer.Option(0, help=f"index of propagation loss model ({_models_help()})"),
    increment: float = typer.Option(settings.DISTANCE_INCREMENT_M, help="increment distance by this number [m]"),
    time: float = typer.Option(settings.SIMULATION_TIME_S, help="simulation time [s]"),
    output_dir: str = typer.Option(".", help="directory for the result file"),
    max_distance: Optional[float] = typer.Option(None, help="stop beyond this distance even if the link is up [m]"),
    max_iterations: Optional[int] = typer.Option(None, help="stop after this many iterations even if the link is up"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="log every frame decision"),
):
    """
    Run a distance sweep for one propagation loss model.
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(levelname)s %(message)s")

    try:
        spec = PropagationModelSpec.from_ordinal(model, settings)
        out = Path(output_dir).expanduser()
        if not out.is_dir():
            raise ConfigurationError(f"Output directory not found: {out}")
        distance_sweep = DistanceSweep(spec, increment, time, settings, output_dir=str(out),
                                       max_distance=max_distance, max_iterations=max_iterations)
    except ConfigurationError as e:
        raise typer.BadParameter(str(e))

    rows = distance_sweep.run()
    print(f"{len(rows)} rows written to {distance_sweep.result_file.path}")


if __name__ == "__main__":
    app()
