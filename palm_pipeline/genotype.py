"""Cross-reference of per-cell mutation genotypes with the malignant tiers.

Genotype calls come from an external genotyping-of-transcriptomes pipeline:
one row per (cell, mutation) with a MUT/WT/ambiguous call and the UMIs
supporting each allele. They are joined onto the tiered metadata by sample
and cell barcode.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

import numpy as np
import pandas as pd

from . import config
from .errors import MissingAnnotationError
from .statistics import fisher_association, two_by_two
from .tiering import TIER1
from .utils.io import ensure_dirs, load_cell_metadata, save_table
from .utils.logging import get_logger, time_block

LOGGER = get_logger(__name__)

MUTATION_KEY = "mutation"
GENOTYPE_KEY = "genotype"
UMI_MUT_KEY = "umi_mut"
UMI_WT_KEY = "umi_wt"

_AMBIGUOUS_ALIASES = {"AMB", "AMBIGUOUS", "NA", "NAN"}


class Genotype(str, Enum):
    MUT = "MUT"
    WT = "WT"
    AMBIGUOUS = "AMB"

    @classmethod
    def parse(cls, value: str) -> "Genotype":
        token = str(value).strip().upper()
        if token in _AMBIGUOUS_ALIASES:
            return cls.AMBIGUOUS
        try:
            return cls(token)
        except ValueError:
            raise ValueError(f"Unknown genotype call: {value!r}") from None


def normalise_calls(
    calls: pd.DataFrame,
    *,
    sample_key: str = config.SAMPLE_KEY,
    barcode_key: str = config.BARCODE_KEY,
) -> pd.DataFrame:
    required = [sample_key, barcode_key, MUTATION_KEY, GENOTYPE_KEY, UMI_MUT_KEY, UMI_WT_KEY]
    missing = [col for col in required if col not in calls.columns]
    if missing:
        raise MissingAnnotationError(missing[0])
    out = calls.copy()
    unknown = sorted(
        {value for value in out[GENOTYPE_KEY].astype(str).unique() if _try_parse(value) is None}
    )
    if unknown:
        raise ValueError(f"Unknown genotype calls: {unknown}")
    out[GENOTYPE_KEY] = out[GENOTYPE_KEY].astype(str).map(lambda value: Genotype.parse(value).value)
    out[sample_key] = out[sample_key].astype(str)
    out[barcode_key] = out[barcode_key].astype(str)
    out[UMI_MUT_KEY] = out[UMI_MUT_KEY].fillna(0).astype(int)
    out[UMI_WT_KEY] = out[UMI_WT_KEY].fillna(0).astype(int)
    return out


def _try_parse(value: str) -> Genotype | None:
    try:
        return Genotype.parse(value)
    except ValueError:
        return None


def load_genotype_calls(path: Path, **keys: str) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Genotype calls not found: {path}")
    sep = "\t" if path.suffix.lower() in {".tsv", ".txt"} else ","
    calls = normalise_calls(pd.read_csv(path, sep=sep), **keys)
    LOGGER.info(
        "Loaded %d genotype calls for %d mutations from %s",
        len(calls),
        calls[MUTATION_KEY].nunique(),
        path,
    )
    return calls


def filter_supported_calls(calls: pd.DataFrame, min_umi: int = config.MIN_GENOTYPE_UMI) -> pd.DataFrame:
    support = calls[UMI_MUT_KEY] + calls[UMI_WT_KEY]
    kept = calls[support >= min_umi].copy()
    LOGGER.info("Retained %d of %d calls with >= %d supporting UMIs", len(kept), len(calls), min_umi)
    return kept


def join_genotypes(
    obs: pd.DataFrame,
    calls: pd.DataFrame,
    *,
    sample_key: str = config.SAMPLE_KEY,
    barcode_key: str = config.BARCODE_KEY,
    cell_key: str = config.CELL_KEY,
) -> pd.DataFrame:
    """Attach cell metadata to every genotype call (one row per cell and mutation).

    Calls without a matching cell are dropped and counted in the log.
    """
    for key in (sample_key, barcode_key):
        if key not in obs.columns:
            raise MissingAnnotationError(key)
    index_name = obs.index.name or cell_key
    if index_name in obs.columns:
        cells = obs.reset_index(drop=True)
    else:
        cells = obs.rename_axis(index_name).reset_index()
    cells[sample_key] = cells[sample_key].astype(str)
    cells[barcode_key] = cells[barcode_key].astype(str)

    joined = calls.merge(
        cells,
        on=[sample_key, barcode_key],
        how="left",
        validate="many_to_one",
        indicator=True,
    )
    unmatched = joined["_merge"] == "left_only"
    if unmatched.any():
        LOGGER.warning("Dropping %d genotype calls with no matching cell", int(unmatched.sum()))
    joined = joined[~unmatched].drop(columns="_merge").reset_index(drop=True)
    LOGGER.info("Joined %d genotype calls onto %d cells", len(joined), joined[index_name].nunique())
    return joined


def _mutant_fraction(n_mut: int, n_wt: int) -> float:
    informative = n_mut + n_wt
    return n_mut / informative if informative else np.nan


def mutation_tier_association(joined: pd.DataFrame, *, tier_key: str = TIER1) -> pd.DataFrame:
    """Per mutation: genotype counts, mutant fraction inside/outside the tier and Fisher test."""
    if tier_key not in joined.columns:
        raise MissingAnnotationError(tier_key)
    rows = []
    for mutation, group in joined.groupby(MUTATION_KEY, sort=True):
        genotype = group[GENOTYPE_KEY]
        informative = group[genotype != Genotype.AMBIGUOUS.value]
        is_mut = informative[GENOTYPE_KEY] == Genotype.MUT.value
        in_tier = informative[tier_key].astype(bool)
        table = two_by_two(is_mut, in_tier)
        result = fisher_association(table, label=str(mutation), comparison=f"MUT_vs_WT_by_{tier_key}")
        rows.append(
            {
                MUTATION_KEY: mutation,
                "n_profiled": len(group),
                "n_mut": int(is_mut.sum()),
                "n_wt": int((~is_mut).sum()),
                "n_ambiguous": int((genotype == Genotype.AMBIGUOUS.value).sum()),
                "mut_fraction_tier1": _mutant_fraction(table[0, 0], table[1, 0]),
                "mut_fraction_other": _mutant_fraction(table[0, 1], table[1, 1]),
                "odds_ratio": result.odds_ratio,
                "pvalue": result.pvalue,
                "significance": result.significance_label,
            }
        )
    return pd.DataFrame(rows)


def mutant_fraction_by_celltype(
    joined: pd.DataFrame,
    *,
    sample_key: str = config.SAMPLE_KEY,
    celltype_key: str = config.COARSE_CELLTYPE_KEY,
) -> pd.DataFrame:
    """MUT/WT counts and mutant fraction per sample, mutation and coarse cell type."""
    frame = joined[[sample_key, MUTATION_KEY, celltype_key, GENOTYPE_KEY]].copy()
    frame[celltype_key] = frame[celltype_key].astype(str)
    counts = (
        frame.groupby([sample_key, MUTATION_KEY, celltype_key, GENOTYPE_KEY])
        .size()
        .unstack(GENOTYPE_KEY, fill_value=0)
        .reindex(columns=[member.value for member in Genotype], fill_value=0)
    )
    counts.columns = ["n_mut", "n_wt", "n_ambiguous"]
    counts["mut_fraction"] = [
        _mutant_fraction(n_mut, n_wt) for n_mut, n_wt in zip(counts["n_mut"], counts["n_wt"])
    ]
    return counts.reset_index()


def _default_tiered_metadata() -> Path:
    out_dir = config.DEFAULT_OUTPUT_SUBDIRS["tiering"]
    for candidate in (out_dir / "palm_tiered.h5ad", out_dir / "palm_tiered_metadata.csv"):
        if candidate.exists():
            return candidate
    raise FileNotFoundError("Run step02_tier_malignant.py first to create palm_tiered.h5ad")


def run_step3_genotype(
    metadata_path: Path | None = None,
    calls_path: Path | None = None,
    min_umi: int = config.MIN_GENOTYPE_UMI,
) -> pd.DataFrame:
    metadata_path = metadata_path or _default_tiered_metadata()
    calls_path = calls_path or config.GENOTYPE_CALLS_CSV
    out_dir = config.DEFAULT_OUTPUT_SUBDIRS["genotype"]
    ensure_dirs([out_dir])
    timings_file = config.DEFAULT_OUTPUT_SUBDIRS["timings"] / "step03_genotype_integration.jsonl"

    with time_block("load_inputs", write_jsonl=timings_file):
        obs = load_cell_metadata(metadata_path)
        calls = filter_supported_calls(load_genotype_calls(calls_path), min_umi)
    with time_block("join_genotypes", write_jsonl=timings_file):
        joined = join_genotypes(obs, calls)
    with time_block("association_tables", write_jsonl=timings_file):
        association = mutation_tier_association(joined)
        save_table(association, out_dir / "mutation_tier1_association.csv")
        save_table(mutant_fraction_by_celltype(joined), out_dir / "mutant_fraction_by_celltype.csv")
    save_table(joined, out_dir / "genotype_joined.csv")
    return association
