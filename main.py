"""
Wall distance solver - entry point.

Usage:
    uv run python main.py
    uv run python main.py degree=1 n_refinements=5
"""

import logging
import sys
from pathlib import Path

import hydra
from omegaconf import DictConfig, OmegaConf

sys.path.insert(0, str(Path(__file__).parent / "src"))

from walldist import Parameters, WallDistanceProblem  # noqa: E402

log = logging.getLogger(__name__)


@hydra.main(version_base="1.3", config_path="conf", config_name="config")
def main(cfg: DictConfig) -> None:
    params = Parameters(**OmegaConf.to_container(cfg, resolve=True))
    params.output_dir = hydra.utils.to_absolute_path(params.output_dir)

    problem = WallDistanceProblem(params)
    problem.run()

    control = problem.control
    log.info(
        f"Done: {control.iterations} iter, residual={control.residual:.3e}, "
        f"time={control.wall_time_seconds:.2f}s"
    )


if __name__ == "__main__":
    main()
