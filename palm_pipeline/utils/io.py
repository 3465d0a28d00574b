"""Input/output helpers for the cell metadata store."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import anndata as ad
import pandas as pd

from .. import config
from .logging import get_logger

LOGGER = get_logger(__name__)

_DELIMITERS = {".csv": ",", ".tsv": "\t", ".txt": "\t"}


def ensure_dirs(paths: Iterable[Path]) -> None:
    for path in paths:
        path.mkdir(parents=True, exist_ok=True)


def read_cell_store(path: Path) -> ad.AnnData:
    if not path.exists():
        raise FileNotFoundError(f"AnnData store not found: {path}")
    LOGGER.info("Loading AnnData from %s", path)
    return ad.read_h5ad(path)


def load_cell_metadata(path: Path, *, cell_key: str = config.CELL_KEY) -> pd.DataFrame:
    """Load the per-cell metadata table from an ``.h5ad`` store or a delimited file.

    For AnnData stores the ``obs`` frame is returned (a copy, indexed by cell).
    Delimited files are indexed by ``cell_key`` when that column is present.
    """
    if not path.exists():
        raise FileNotFoundError(f"Cell metadata not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".h5ad":
        obs = read_cell_store(path).obs.copy()
    elif suffix in _DELIMITERS:
        obs = pd.read_csv(path, sep=_DELIMITERS[suffix])
        if cell_key in obs.columns:
            obs = obs.set_index(cell_key)
    else:
        raise ValueError(f"Unsupported metadata format: {suffix}")
    if obs.index.name is None:
        obs.index.name = cell_key
    LOGGER.info("Loaded metadata for %d cells from %s", len(obs), path)
    return obs


def with_metadata(adata: ad.AnnData, obs: pd.DataFrame) -> ad.AnnData:
    """Return a copy of ``adata`` whose ``obs`` is replaced by ``obs``.

    The annotated table must describe exactly the same cells; rows are
    aligned on the cell index.
    """
    if len(obs) != adata.n_obs or not obs.index.isin(adata.obs_names).all():
        raise ValueError(
            f"Annotated metadata ({len(obs)} rows) does not match the AnnData cells ({adata.n_obs})"
        )
    annotated = adata.copy()
    annotated.obs = obs.loc[adata.obs_names].copy()
    return annotated


def save_table(df: pd.DataFrame, path: Path, *, index: bool = False) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=index)
    LOGGER.info("Saved %d rows to %s", len(df), path)
    return path


def write_metadata_store(obs: pd.DataFrame, source: Path, out_dir: Path, stem: str) -> Path:
    """Persist annotated metadata next to the format it was read from.

    AnnData sources get a new ``<stem>.h5ad`` with the annotated ``obs``; the
    metadata is always written as ``<stem>_metadata.csv`` as well. Returns
    the primary output path.
    """
    ensure_dirs([out_dir])
    csv_path = save_table(obs, out_dir / f"{stem}_metadata.csv", index=True)
    if source.suffix.lower() != ".h5ad":
        return csv_path
    h5ad_path = out_dir / f"{stem}.h5ad"
    with_metadata(read_cell_store(source), obs).write_h5ad(h5ad_path)
    LOGGER.info("Saved annotated AnnData to %s", h5ad_path)
    return h5ad_path
