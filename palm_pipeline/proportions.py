"""Cell composition tables per sample and for the pooled healthy baseline."""

from __future__ import annotations

from typing import Iterable

import pandas as pd

from . import config
from .errors import EmptyGroupError, MissingAnnotationError
from .utils.logging import get_logger

LOGGER = get_logger(__name__)


def composition_table(
    obs: pd.DataFrame,
    groupby: str,
    celltype_key: str = config.COARSE_CELLTYPE_KEY,
) -> pd.DataFrame:
    """Long table of cell counts and within-group frequencies per cell type."""
    for key in (groupby, celltype_key):
        if key not in obs.columns:
            raise MissingAnnotationError(key)
    if obs.empty:
        raise EmptyGroupError("table")
    counts = obs.groupby([groupby, celltype_key], observed=True).size().reset_index(name="count")
    totals = counts.groupby(groupby, observed=True)["count"].transform("sum")
    counts["frequency"] = counts["count"] / totals
    return counts


def pool_healthy_samples(
    samples: pd.Series,
    healthy_samples: Iterable[str] = config.HEALTHY_CONTROL_SAMPLES,
    pool_label: str = config.HEALTHY_POOL_LABEL,
) -> pd.Series:
    """Relabel every healthy-control sample as the pooled pseudo-sample."""
    samples = samples.astype(str)
    healthy = set(healthy_samples)
    if pool_label in set(samples.unique()) - healthy:
        raise ValueError(f"Sample id {pool_label!r} collides with the healthy pool label")
    is_healthy = samples.isin(healthy)
    if not is_healthy.any():
        raise EmptyGroupError("healthy pool", pool_label)
    return samples.where(~is_healthy, pool_label)


def celltype_frequencies(
    obs: pd.DataFrame,
    *,
    sample_key: str = config.SAMPLE_KEY,
    celltype_key: str = config.COARSE_CELLTYPE_KEY,
    healthy_samples: Iterable[str] = config.HEALTHY_CONTROL_SAMPLES,
    pool_label: str = config.HEALTHY_POOL_LABEL,
) -> pd.DataFrame:
    """Wide sample x cell-type frequency matrix with healthy samples pooled.

    Rows are the non-healthy samples plus ``pool_label``; columns are the
    observed cell types; absent combinations hold ``0.0``.
    """
    if sample_key not in obs.columns:
        raise MissingAnnotationError(sample_key)
    if celltype_key not in obs.columns:
        raise MissingAnnotationError(celltype_key)
    frame = pd.DataFrame(
        {
            sample_key: pool_healthy_samples(obs[sample_key], healthy_samples, pool_label),
            celltype_key: obs[celltype_key].astype(str),
        },
        index=obs.index,
    )
    table = composition_table(frame, sample_key, celltype_key)
    wide = table.pivot(index=sample_key, columns=celltype_key, values="frequency").fillna(0.0)
    wide.columns.name = celltype_key
    LOGGER.info(
        "Computed %s frequencies for %d samples (healthy pooled as %s)",
        celltype_key,
        wide.shape[0],
        pool_label,
    )
    return wide
