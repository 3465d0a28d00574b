"""Entry point for Step 1: aggregate reference labels into coarse cell types."""

from __future__ import annotations

import argparse
from pathlib import Path

from .. import config
from ..aggregation import run_step1_aggregate
from ..utils.io import ensure_dirs
from ..utils.logging import get_logger, set_log_file

LOGGER = get_logger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Step 1: aggregate fine cell-type labels")
    parser.add_argument("--input", type=Path, default=config.METADATA_H5AD, help="h5ad store or metadata CSV/TSV")
    args = parser.parse_args(argv)

    ensure_dirs(config.DEFAULT_OUTPUT_SUBDIRS.values())
    set_log_file(config.DEFAULT_OUTPUT_SUBDIRS["celltype"] / "step01_aggregate_celltypes.log")
    LOGGER.info("Running Step 1 cell-type aggregation on %s", args.input)
    output = run_step1_aggregate(args.input)
    LOGGER.info("Completed Step 1; annotated metadata at %s", output)


if __name__ == "__main__":
    main()
