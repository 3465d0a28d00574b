"""Central configuration for the PALM bone-marrow scRNA-seq tiering workflow."""

from __future__ import annotations

from pathlib import Path

# Repository layout ---------------------------------------------------------
REPO_ROOT = Path(__file__).resolve().parent.parent
INPUT_DIR = REPO_ROOT / "data"
OUTPUT_DIR = REPO_ROOT / "python_outputs"
TIMINGS_DIR = OUTPUT_DIR / "timings"

METADATA_H5AD = INPUT_DIR / "palm_cohort.h5ad"
GENOTYPE_CALLS_CSV = INPUT_DIR / "genotype_calls.csv"

# Ensure lazily created folders are discoverable without touching the FS at import time.
DEFAULT_OUTPUT_SUBDIRS = {
    "celltype": OUTPUT_DIR / "1-celltype",
    "tiering": OUTPUT_DIR / "2-tiering",
    "genotype": OUTPUT_DIR / "3-genotype",
    "timings": TIMINGS_DIR,
}

# Metadata columns ----------------------------------------------------------
CELL_KEY = "cell_id"
SAMPLE_KEY = "sample_id"
BARCODE_KEY = "barcode"
CLUSTER_KEY = "cluster_id"
FINE_CELLTYPE_KEY = "fine_cell_type"
COARSE_CELLTYPE_KEY = "aggregated_cell_type"

# Cohort --------------------------------------------------------------------
HEALTHY_CONTROL_SAMPLES = ("hBM1", "hBM2", "hBM3")
HEALTHY_POOL_LABEL = "hBM"

# Tiering defaults (picked from the valleys of the purity histogram and the
# log2-expansion density across the cohort)
PURITY_THRESHOLD = 0.9
EXPANSION_LOG2_THRESHOLD = 2.0

# Genotype integration ------------------------------------------------------
MIN_GENOTYPE_UMI = 1
