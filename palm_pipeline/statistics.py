"""Statistical helpers for genotype-phenotype contingency tables."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy import stats


@dataclass(slots=True)
class AssociationTestResult:
    label: str
    odds_ratio: float
    pvalue: float
    comparison: str

    @property
    def significance_label(self) -> str:
        if np.isnan(self.pvalue) or self.pvalue > 0.05:
            return "ns"
        if self.pvalue > 0.01:
            return "*"
        if self.pvalue > 0.001:
            return "**"
        return "****"


def two_by_two(row_mask: pd.Series, col_mask: pd.Series) -> np.ndarray:
    """Counts of ``[[row & col, row & ~col], [~row & col, ~row & ~col]]``."""
    row_mask = row_mask.astype(bool)
    col_mask = col_mask.astype(bool)
    return np.array(
        [
            [int((row_mask & col_mask).sum()), int((row_mask & ~col_mask).sum())],
            [int((~row_mask & col_mask).sum()), int((~row_mask & ~col_mask).sum())],
        ]
    )


def fisher_association(table: np.ndarray, *, label: str, comparison: str) -> AssociationTestResult:
    """Two-sided Fisher exact test on a 2x2 table."""
    table = np.asarray(table)
    if table.shape != (2, 2):
        raise ValueError(f"Expected a 2x2 contingency table, got shape {table.shape}")
    stat, pval = stats.fisher_exact(table, alternative="two-sided")
    return AssociationTestResult(label=label, odds_ratio=float(stat), pvalue=float(pval), comparison=comparison)
