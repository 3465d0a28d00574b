"""Aggregation of fine reference cell-type labels into coarse compartments."""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Iterator, Mapping

import pandas as pd

from . import config
from .errors import AggregationMapError, MissingAnnotationError, UnmappedCellTypeError
from .proportions import composition_table
from .utils.celltypes import AGGREGATION_MAP, CoarseCellType
from .utils.io import ensure_dirs, load_cell_metadata, save_table, write_metadata_store
from .utils.logging import get_logger, time_block

LOGGER = get_logger(__name__)

AggregationMap = Mapping[CoarseCellType, Iterable[str]]


def invert_aggregation_map(mapping: AggregationMap = AGGREGATION_MAP) -> Dict[str, CoarseCellType]:
    """Return the fine -> coarse lookup, rejecting maps that are not a partition."""
    counts = Counter(label for labels in mapping.values() for label in labels)
    duplicated = [label for label, n in counts.items() if n > 1]
    if duplicated:
        raise AggregationMapError(duplicated)
    return {
        label: CoarseCellType.from_label(coarse)
        for coarse, labels in mapping.items()
        for label in labels
    }


def aggregate_labels(labels: Iterable[str], mapping: AggregationMap = AGGREGATION_MAP) -> Iterator[CoarseCellType]:
    """Yield the coarse label of each fine label.

    Unmapped labels raise :class:`UnmappedCellTypeError` once reached.
    """
    lookup = invert_aggregation_map(mapping)
    for label in labels:
        try:
            yield lookup[label]
        except KeyError:
            raise UnmappedCellTypeError([label]) from None


def observed_partition(
    labels: Iterable[str], mapping: AggregationMap = AGGREGATION_MAP
) -> Dict[CoarseCellType, FrozenSet[str]]:
    """Restrict the map to the fine labels actually observed."""
    observed = set(labels)
    partition = {
        CoarseCellType.from_label(coarse): frozenset(observed.intersection(fine))
        for coarse, fine in mapping.items()
    }
    return {coarse: fine for coarse, fine in partition.items() if fine}


def aggregate_cell_types(
    obs: pd.DataFrame,
    mapping: AggregationMap = AGGREGATION_MAP,
    *,
    fine_key: str = config.FINE_CELLTYPE_KEY,
    coarse_key: str = config.COARSE_CELLTYPE_KEY,
) -> pd.DataFrame:
    """Return a copy of ``obs`` with the coarse cell type added as a categorical column.

    Every fine label present must be covered by ``mapping``; all offending
    labels are reported together.
    """
    if fine_key not in obs.columns:
        raise MissingAnnotationError(fine_key)
    fine = obs[fine_key]
    n_missing = int(fine.isna().sum())
    if n_missing:
        raise MissingAnnotationError(fine_key, n_missing)

    lookup = invert_aggregation_map(mapping)
    fine = fine.astype(str)
    unmapped = set(fine.unique()) - set(lookup)
    if unmapped:
        raise UnmappedCellTypeError(unmapped)

    out = obs.copy()
    coarse = fine.map({label: coarse.value for label, coarse in lookup.items()})
    out[coarse_key] = pd.Categorical(coarse, categories=[member.value for member in CoarseCellType])

    partition = observed_partition(fine.unique(), mapping)
    LOGGER.info(
        "Aggregated %d fine labels into %d coarse cell types over %d cells",
        fine.nunique(),
        len(partition),
        len(out),
    )
    return out


def run_step1_aggregate(input_path: Path | None = None) -> Path:
    input_path = input_path or config.METADATA_H5AD
    out_dir = config.DEFAULT_OUTPUT_SUBDIRS["celltype"]
    ensure_dirs([out_dir])
    timings_file = config.DEFAULT_OUTPUT_SUBDIRS["timings"] / "step01_aggregate_celltypes.jsonl"

    with time_block("load_cell_metadata", write_jsonl=timings_file):
        obs = load_cell_metadata(input_path)
    with time_block("aggregate_cell_types", write_jsonl=timings_file):
        annotated = aggregate_cell_types(obs)
    with time_block("composition_table", write_jsonl=timings_file):
        composition = composition_table(annotated, config.SAMPLE_KEY)
        save_table(composition, out_dir / "composition_sample.csv")
    with time_block("write_metadata_store", write_jsonl=timings_file):
        return write_metadata_store(annotated, input_path, out_dir, "palm_celltype")
