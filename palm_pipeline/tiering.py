"""Rule-based tiering of malignant cells.

A cell is labelled tier-I malignant when three independent criteria agree:

1. its coarse cell type belongs to the malignant-candidate compartments,
2. its cluster is dominated by cells from non-healthy samples (purity), and
3. its coarse cell type is expanded in its sample relative to the pooled
   healthy-control baseline (``hBM``).

Every function here is a pure transformation of the metadata table: inputs
are never modified and new columns are returned on a copy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import FrozenSet, Iterable, Tuple

import numpy as np
import pandas as pd

from . import config
from .aggregation import AggregationMap, aggregate_cell_types
from .errors import DegenerateExpansionError, EmptyGroupError, MissingAnnotationError
from .proportions import celltype_frequencies
from .utils.celltypes import AGGREGATION_MAP, MALIGNANT_CANDIDATE_TYPES, CoarseCellType
from .utils.io import ensure_dirs, load_cell_metadata, save_table, write_metadata_store
from .utils.logging import get_logger, time_block

LOGGER = get_logger(__name__)

IS_HEALTHY = "is_healthy_sample"
TYPE_PASS = "type_pass"
CLUSTER_PASS = "cluster_purity_pass"
CLUSTER_PASS_ALIAS = "clustermethod_pass"
EXPANSION_PASS = "expansion_pass"
TIER1 = "tier1_malignant"
TIER1_BROAD = "tier1_broad"

FLAG_COLUMNS = (IS_HEALTHY, TYPE_PASS, CLUSTER_PASS, CLUSTER_PASS_ALIAS, EXPANSION_PASS, TIER1, TIER1_BROAD)


class SampleSource(str, Enum):
    HEALTHY = "healthy"
    NON_HEALTHY = "non_healthy"


@dataclass(frozen=True, slots=True)
class TieringConfig:
    """Parameters of the tiering heuristic.

    Attributes
    ----------
    healthy_samples:
        Sample ids of the healthy-control bone marrows. They form the
        non-healthy/healthy partition and are pooled into ``pool_label``
        for the expansion baseline.
    candidate_types:
        Coarse cell types in which malignant cells are searched for.
    purity_threshold:
        A cluster qualifies when its non-healthy fraction is strictly above
        this value.
    expansion_log2_threshold:
        A (sample, cell type) pair qualifies when its log2 expansion over
        the healthy pool is strictly above this value.
    """

    healthy_samples: Tuple[str, ...] = config.HEALTHY_CONTROL_SAMPLES
    candidate_types: FrozenSet[CoarseCellType] = MALIGNANT_CANDIDATE_TYPES
    purity_threshold: float = config.PURITY_THRESHOLD
    expansion_log2_threshold: float = config.EXPANSION_LOG2_THRESHOLD
    pool_label: str = config.HEALTHY_POOL_LABEL
    sample_key: str = config.SAMPLE_KEY
    cluster_key: str = config.CLUSTER_KEY
    coarse_key: str = config.COARSE_CELLTYPE_KEY

    def __post_init__(self) -> None:
        if not 0.0 <= self.purity_threshold <= 1.0:
            raise ValueError(f"purity_threshold must be in [0, 1], got {self.purity_threshold}")
        if not np.isfinite(self.expansion_log2_threshold):
            raise ValueError(f"expansion_log2_threshold must be finite, got {self.expansion_log2_threshold}")
        healthy = tuple(str(sample) for sample in self.healthy_samples)
        if not healthy:
            raise ValueError("At least one healthy-control sample is required")
        object.__setattr__(self, "healthy_samples", healthy)
        object.__setattr__(
            self,
            "candidate_types",
            frozenset(CoarseCellType.from_label(label) for label in self.candidate_types),
        )

    @property
    def candidate_labels(self) -> FrozenSet[str]:
        return frozenset(member.value for member in self.candidate_types)


@dataclass(slots=True)
class TieringResult:
    obs: pd.DataFrame
    cluster_purity: pd.DataFrame
    expansion: pd.DataFrame
    saturation_value: float
    config: TieringConfig = field(default_factory=TieringConfig)

    def summary(self) -> pd.DataFrame:
        return summarize_tiers(self.obs, sample_key=self.config.sample_key)

    def sensitivity(self) -> pd.DataFrame:
        return filter_sensitivity(self.obs)


def _require_columns(obs: pd.DataFrame, keys: Iterable[str]) -> None:
    for key in keys:
        if key not in obs.columns:
            raise MissingAnnotationError(key)
        n_missing = int(obs[key].isna().sum())
        if n_missing:
            raise MissingAnnotationError(key, n_missing)


def _fraction(numerator: pd.Series, denominator: pd.Series, kind: str) -> pd.Series:
    empty = denominator[denominator == 0]
    if not empty.empty:
        raise EmptyGroupError(kind, empty.index[0])
    return numerator / denominator


def healthy_mask(obs: pd.DataFrame, cfg: TieringConfig) -> pd.Series:
    samples = obs[cfg.sample_key].astype(str)
    absent = sorted(set(cfg.healthy_samples) - set(samples.unique()))
    if absent:
        LOGGER.warning("Healthy-control samples not present in metadata: %s", absent)
    return samples.isin(cfg.healthy_samples).rename(IS_HEALTHY)


def type_membership(obs: pd.DataFrame, cfg: TieringConfig) -> pd.Series:
    """Filter 1: coarse cell type within the malignant-candidate set."""
    coarse = obs[cfg.coarse_key].astype(str)
    for label in coarse.unique():
        CoarseCellType.from_label(label)
    return coarse.isin(cfg.candidate_labels).rename(TYPE_PASS)


def cluster_purity(obs: pd.DataFrame, cfg: TieringConfig) -> pd.DataFrame:
    """Per-cluster counts of healthy and non-healthy cells and the non-healthy fraction."""
    if obs.empty:
        raise EmptyGroupError("table")
    is_healthy = obs[cfg.sample_key].astype(str).isin(cfg.healthy_samples)
    sources = np.where(is_healthy, SampleSource.HEALTHY.value, SampleSource.NON_HEALTHY.value)
    frame = pd.DataFrame({cfg.cluster_key: obs[cfg.cluster_key].to_numpy(), "source": sources})
    counts = (
        frame.groupby([cfg.cluster_key, "source"], observed=True)
        .size()
        .unstack("source", fill_value=0)
        .reindex(columns=[SampleSource.HEALTHY.value, SampleSource.NON_HEALTHY.value], fill_value=0)
    )
    purity = pd.DataFrame(
        {
            "healthy_cells": counts[SampleSource.HEALTHY.value],
            "non_healthy_cells": counts[SampleSource.NON_HEALTHY.value],
        }
    )
    purity["total_cells"] = purity["healthy_cells"] + purity["non_healthy_cells"]
    purity["non_healthy_fraction"] = _fraction(purity["non_healthy_cells"], purity["total_cells"], "cluster")
    purity["qualifies"] = purity["non_healthy_fraction"] > cfg.purity_threshold
    purity.columns.name = None
    return purity


def qualifying_clusters(purity: pd.DataFrame, threshold: float) -> pd.Index:
    return purity.index[purity["non_healthy_fraction"] > threshold]


def expansion_table(obs: pd.DataFrame, cfg: TieringConfig) -> Tuple[pd.DataFrame, float]:
    """Expansion of every observed (non-healthy sample, coarse type) pair over the healthy pool.

    Pairs whose type is absent from the pool have an undefined ratio; they
    are saturated to the largest finite expansion of the same run and marked
    in the ``saturated`` column. Returns the table and the saturation value
    (``nan`` when there is no finite expansion and nothing to saturate).
    """
    freqs = celltype_frequencies(
        obs,
        sample_key=cfg.sample_key,
        celltype_key=cfg.coarse_key,
        healthy_samples=cfg.healthy_samples,
        pool_label=cfg.pool_label,
    )
    baseline = freqs.loc[cfg.pool_label]
    patients = freqs.drop(index=cfg.pool_label)

    table = patients.rename_axis(index=cfg.sample_key, columns=None).reset_index().melt(
        id_vars=cfg.sample_key, var_name=cfg.coarse_key, value_name="frequency"
    )
    table = table[table["frequency"] > 0].reset_index(drop=True)
    table["healthy_frequency"] = table[cfg.coarse_key].map(baseline).astype(float)

    with np.errstate(divide="ignore"):
        ratio = table["frequency"].to_numpy() / table["healthy_frequency"].to_numpy()
    undefined = ~np.isfinite(ratio)
    finite = ratio[~undefined]
    if undefined.any() and finite.size == 0:
        pairs = table.loc[undefined, [cfg.sample_key, cfg.coarse_key]].itertuples(index=False, name=None)
        raise DegenerateExpansionError(pairs)
    saturation = float(finite.max()) if finite.size else float("nan")
    if undefined.any():
        LOGGER.info(
            "Saturating %d expansions absent from %s to the maximum finite expansion %.3f",
            int(undefined.sum()),
            cfg.pool_label,
            saturation,
        )
        ratio = np.where(undefined, saturation, ratio)

    table["expansion"] = ratio
    table["log2_expansion"] = np.log2(ratio)
    table["saturated"] = undefined
    table["qualifies"] = table["log2_expansion"] > cfg.expansion_log2_threshold
    return table, saturation


def qualifying_pairs(expansion: pd.DataFrame, threshold: float, cfg: TieringConfig) -> pd.MultiIndex:
    selected = expansion[expansion["log2_expansion"] > threshold]
    return pd.MultiIndex.from_frame(
        selected[[cfg.sample_key, cfg.coarse_key]].astype(str)
    )


def combine_filters(type_pass: pd.Series, cluster_pass: pd.Series, expansion_pass: pd.Series) -> pd.Series:
    return (type_pass.astype(bool) & cluster_pass.astype(bool) & expansion_pass.astype(bool)).rename(TIER1)


def tier_malignant_cells(obs: pd.DataFrame, cfg: TieringConfig | None = None) -> TieringResult:
    """Evaluate the three filters over the whole cohort and return the annotated copy."""
    cfg = cfg or TieringConfig()
    _require_columns(obs, [cfg.sample_key, cfg.cluster_key, cfg.coarse_key])
    if obs.empty:
        raise EmptyGroupError("table")
    overwritten = [col for col in FLAG_COLUMNS if col in obs.columns]
    if overwritten:
        LOGGER.warning("Replacing existing flag columns: %s", overwritten)

    is_healthy = healthy_mask(obs, cfg)
    type_pass = type_membership(obs, cfg)

    purity = cluster_purity(obs, cfg)
    clusters = qualifying_clusters(purity, cfg.purity_threshold)
    cluster_pass = obs[cfg.cluster_key].isin(clusters).rename(CLUSTER_PASS)
    LOGGER.info(
        "%d/%d clusters exceed non-healthy fraction %.2f",
        len(clusters),
        len(purity),
        cfg.purity_threshold,
    )

    expansion, saturation = expansion_table(obs, cfg)
    pairs = qualifying_pairs(expansion, cfg.expansion_log2_threshold, cfg)
    cell_pairs = pd.MultiIndex.from_arrays(
        [obs[cfg.sample_key].astype(str), obs[cfg.coarse_key].astype(str)]
    )
    expansion_pass = pd.Series(cell_pairs.isin(pairs), index=obs.index, name=EXPANSION_PASS)
    LOGGER.info(
        "%d/%d (sample, cell type) pairs exceed log2 expansion %.2f",
        len(pairs),
        len(expansion),
        cfg.expansion_log2_threshold,
    )

    out = obs.copy()
    out[IS_HEALTHY] = is_healthy
    out[TYPE_PASS] = type_pass
    out[CLUSTER_PASS] = cluster_pass
    out[CLUSTER_PASS_ALIAS] = cluster_pass
    out[EXPANSION_PASS] = expansion_pass
    out[TIER1] = combine_filters(type_pass, cluster_pass, expansion_pass)
    out[TIER1_BROAD] = type_pass

    LOGGER.info(
        "Filter pass counts: type=%d cluster=%d expansion=%d; tier1_broad=%d tier1_malignant=%d",
        int(type_pass.sum()),
        int(cluster_pass.sum()),
        int(expansion_pass.sum()),
        int(out[TIER1_BROAD].sum()),
        int(out[TIER1].sum()),
    )
    return TieringResult(
        obs=out,
        cluster_purity=purity,
        expansion=expansion,
        saturation_value=saturation,
        config=cfg,
    )


def annotate_and_tier(
    obs: pd.DataFrame,
    cfg: TieringConfig | None = None,
    mapping: AggregationMap = AGGREGATION_MAP,
    *,
    fine_key: str = config.FINE_CELLTYPE_KEY,
) -> TieringResult:
    """Aggregate fine labels (unless already aggregated) and run the tiering."""
    cfg = cfg or TieringConfig()
    if cfg.coarse_key not in obs.columns:
        obs = aggregate_cell_types(obs, mapping, fine_key=fine_key, coarse_key=cfg.coarse_key)
    return tier_malignant_cells(obs, cfg)


def summarize_tiers(obs: pd.DataFrame, *, sample_key: str = config.SAMPLE_KEY) -> pd.DataFrame:
    """Per-sample counts of each filter and of both tier labels, with a cohort total row."""
    flags = [TYPE_PASS, CLUSTER_PASS, EXPANSION_PASS, TIER1_BROAD, TIER1]
    grouped = obs.groupby(obs[sample_key].astype(str))
    summary = grouped[flags].sum().astype(int)
    summary.insert(0, "n_cells", grouped.size())
    summary.loc["total"] = summary.sum()
    summary.index.name = sample_key
    return summary.reset_index()


def filter_sensitivity(obs: pd.DataFrame) -> pd.DataFrame:
    """How many broad-tier cells each stricter filter removes.

    ``fraction_of_broad`` is ``nan`` when no cell passes the type filter.
    """
    broad = obs[TIER1_BROAD].astype(bool)
    cluster_pass = obs[CLUSTER_PASS].astype(bool)
    expansion_pass = obs[EXPANSION_PASS].astype(bool)
    n_broad = int(broad.sum())
    removed = {
        "cluster_purity": int((broad & ~cluster_pass).sum()),
        "expansion": int((broad & ~expansion_pass).sum()),
        "cluster_purity+expansion": int((broad & ~(cluster_pass & expansion_pass)).sum()),
    }
    table = pd.DataFrame(
        {"filter": list(removed), "cells_removed": list(removed.values())}
    )
    table["n_broad"] = n_broad
    table["n_strict"] = int(obs[TIER1].astype(bool).sum())
    if n_broad:
        table["fraction_of_broad"] = table["cells_removed"] / n_broad
        strictest = max(("cluster_purity", "expansion"), key=removed.get)
        LOGGER.info(
            "Strict label keeps %d/%d broad cells (%.2f%% change); most restrictive filter: %s",
            table["n_strict"].iloc[0],
            n_broad,
            100 * removed["cluster_purity+expansion"] / n_broad,
            strictest,
        )
    else:
        LOGGER.warning("No cell passes the cell-type filter; sensitivity fractions undefined")
        table["fraction_of_broad"] = np.nan
    return table


def _default_tiering_input() -> Path:
    out_dir = config.DEFAULT_OUTPUT_SUBDIRS["celltype"]
    for candidate in (out_dir / "palm_celltype.h5ad", out_dir / "palm_celltype_metadata.csv"):
        if candidate.exists():
            return candidate
    raise FileNotFoundError("Run step01_aggregate_celltypes.py first to create palm_celltype.h5ad")


def run_step2_tiering(cfg: TieringConfig | None = None, input_path: Path | None = None) -> TieringResult:
    cfg = cfg or TieringConfig()
    input_path = input_path or _default_tiering_input()
    out_dir = config.DEFAULT_OUTPUT_SUBDIRS["tiering"]
    ensure_dirs([out_dir])
    timings_file = config.DEFAULT_OUTPUT_SUBDIRS["timings"] / "step02_tier_malignant.jsonl"
    LOGGER.info(
        "Tiering with purity > %.2f and log2 expansion > %.2f (healthy: %s)",
        cfg.purity_threshold,
        cfg.expansion_log2_threshold,
        ", ".join(cfg.healthy_samples),
    )

    with time_block("load_cell_metadata", write_jsonl=timings_file):
        obs = load_cell_metadata(input_path)
    with time_block("tier_malignant_cells", write_jsonl=timings_file):
        result = annotate_and_tier(obs, cfg)
    with time_block("write_tables", write_jsonl=timings_file):
        save_table(result.cluster_purity, out_dir / "cluster_purity.csv", index=True)
        save_table(result.expansion, out_dir / "expansion.csv")
        save_table(result.summary(), out_dir / "tier_summary.csv")
        save_table(result.sensitivity(), out_dir / "filter_sensitivity.csv")
    with time_block("write_metadata_store", write_jsonl=timings_file):
        write_metadata_store(result.obs, input_path, out_dir, "palm_tiered")
    return result
