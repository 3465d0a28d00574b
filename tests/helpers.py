"""Synthetic cohort builders shared by the tests."""

import pandas as pd


def build_obs(groups, *, with_barcodes=False):
    """Expand ``(sample, cluster, coarse_type, n_cells)`` tuples into a metadata table."""
    rows = []
    for sample, cluster, coarse, n_cells in groups:
        for _ in range(n_cells):
            rows.append({"sample_id": sample, "cluster_id": cluster, "aggregated_cell_type": coarse})
    obs = pd.DataFrame(rows)
    obs.index = pd.Index([f"cell{i:04d}" for i in range(len(obs))], name="cell_id")
    if with_barcodes:
        obs["barcode"] = [f"BC{i:04d}" for i in range(len(obs))]
    return obs


def truth_table_cohort():
    """Cohort whose cells cover every (type, cluster, expansion) pass/fail combination.

    Healthy pool: 60 cells, Erythroid and T_CD4 at 0.1 each, B at 0.8, all in
    the mixed cluster. P1 is 50% Erythroid / 50% T_CD4 (5x expansion); P2
    matches the healthy frequencies. Cluster ``pure`` holds only patient
    cells; cluster ``mixed`` is below 0.9 non-healthy.
    """
    groups = []
    for sample in ("hBM1", "hBM2", "hBM3"):
        groups += [
            (sample, "mixed", "Erythroid", 2),
            (sample, "mixed", "T_CD4", 2),
            (sample, "mixed", "B", 16),
        ]
    groups += [
        ("P1", "pure", "Erythroid", 5),
        ("P1", "mixed", "Erythroid", 5),
        ("P1", "pure", "T_CD4", 5),
        ("P1", "mixed", "T_CD4", 5),
        ("P2", "pure", "Erythroid", 1),
        ("P2", "mixed", "Erythroid", 1),
        ("P2", "pure", "T_CD4", 1),
        ("P2", "mixed", "T_CD4", 1),
        ("P2", "mixed", "B", 16),
    ]
    return build_obs(groups)
