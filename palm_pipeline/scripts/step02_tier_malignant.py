"""Entry point for Step 2: tier-I malignant cell labelling."""

from __future__ import annotations

import argparse
from pathlib import Path

from .. import config
from ..tiering import TieringConfig, run_step2_tiering
from ..utils.io import ensure_dirs
from ..utils.logging import get_logger, set_log_file

LOGGER = get_logger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Step 2: label tier-I malignant cells")
    parser.add_argument(
        "--purity-threshold",
        type=float,
        default=config.PURITY_THRESHOLD,
        help="minimum non-healthy fraction (exclusive) of a qualifying cluster",
    )
    parser.add_argument(
        "--expansion-log2-threshold",
        type=float,
        default=config.EXPANSION_LOG2_THRESHOLD,
        help="minimum log2 expansion (exclusive) over the pooled healthy baseline",
    )
    parser.add_argument("--input", type=Path, default=None, help="output of step 1 (h5ad or CSV)")
    args = parser.parse_args(argv)

    ensure_dirs(config.DEFAULT_OUTPUT_SUBDIRS.values())
    set_log_file(config.DEFAULT_OUTPUT_SUBDIRS["tiering"] / "step02_tier_malignant.log")
    cfg = TieringConfig(
        purity_threshold=args.purity_threshold,
        expansion_log2_threshold=args.expansion_log2_threshold,
    )
    LOGGER.info("Running Step 2 malignant tiering")
    result = run_step2_tiering(cfg, args.input)
    LOGGER.info("Completed Step 2; %d tier-I malignant cells", int(result.obs["tier1_malignant"].sum()))


if __name__ == "__main__":
    main()
