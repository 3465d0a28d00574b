"""Entry point for Step 3: genotype calls versus malignant tiers."""

from __future__ import annotations

import argparse
from pathlib import Path

from .. import config
from ..genotype import run_step3_genotype
from ..utils.io import ensure_dirs
from ..utils.logging import get_logger, set_log_file

LOGGER = get_logger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Step 3: cross-reference genotype calls with tier-I labels")
    parser.add_argument("--metadata", type=Path, default=None, help="output of step 2 (h5ad or CSV)")
    parser.add_argument("--calls", type=Path, default=config.GENOTYPE_CALLS_CSV)
    parser.add_argument("--min-umi", type=int, default=config.MIN_GENOTYPE_UMI)
    args = parser.parse_args(argv)

    ensure_dirs(config.DEFAULT_OUTPUT_SUBDIRS.values())
    set_log_file(config.DEFAULT_OUTPUT_SUBDIRS["genotype"] / "step03_genotype_integration.log")
    LOGGER.info("Running Step 3 genotype integration")
    association = run_step3_genotype(args.metadata, args.calls, args.min_umi)
    LOGGER.info("Completed Step 3 for %d mutations", len(association))


if __name__ == "__main__":
    main()
