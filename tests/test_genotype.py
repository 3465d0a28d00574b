"""Unit tests for the genotype-phenotype integration."""

import numpy as np
import pandas as pd
import pytest

from palm_pipeline.errors import MissingAnnotationError
from palm_pipeline.genotype import (
    Genotype,
    filter_supported_calls,
    join_genotypes,
    load_genotype_calls,
    mutant_fraction_by_celltype,
    mutation_tier_association,
    normalise_calls,
)
from palm_pipeline.statistics import fisher_association, two_by_two

from helpers import build_obs


def _calls(rows):
    return pd.DataFrame(rows, columns=["sample_id", "barcode", "mutation", "genotype", "umi_mut", "umi_wt"])


class TestGenotypeParsing:
    """Tests for genotype call normalisation."""

    @pytest.mark.parametrize(
        "raw, expected",
        [("MUT", Genotype.MUT), ("wt", Genotype.WT), (" Ambiguous ", Genotype.AMBIGUOUS), ("AMB", Genotype.AMBIGUOUS)],
    )
    def test_parse(self, raw, expected):
        assert Genotype.parse(raw) is expected

    def test_unknown_call(self):
        calls = _calls([("P1", "BC1", "DNMT3A", "HET", 1, 1)])
        with pytest.raises(ValueError, match="HET"):
            normalise_calls(calls)

    def test_missing_column(self):
        calls = _calls([("P1", "BC1", "DNMT3A", "MUT", 1, 0)]).drop(columns="umi_wt")
        with pytest.raises(MissingAnnotationError):
            normalise_calls(calls)

    def test_load_from_csv(self, tmp_path):
        path = tmp_path / "calls.csv"
        path.write_text(
            "sample_id,barcode,mutation,genotype,umi_mut,umi_wt\n"
            "P1,BC1,DNMT3A,mut,3,0\n"
            "P1,BC2,DNMT3A,NA,0,0\n"
        )
        calls = load_genotype_calls(path)
        assert list(calls["genotype"]) == ["MUT", "AMB"]

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_genotype_calls(tmp_path / "absent.csv")

    def test_umi_filter(self):
        calls = normalise_calls(
            _calls([("P1", "BC1", "DNMT3A", "MUT", 2, 0), ("P1", "BC2", "DNMT3A", "WT", 0, 1), ("P1", "BC3", "DNMT3A", "AMB", 0, 0)])
        )
        assert list(filter_supported_calls(calls, min_umi=1)["barcode"]) == ["BC1", "BC2"]
        assert list(filter_supported_calls(calls, min_umi=2)["barcode"]) == ["BC1"]


class TestJoinAndAssociation:
    """Tests for joining calls onto tiered metadata."""

    def setup_method(self):
        obs = build_obs([("P1", "pure", "Erythroid", 5), ("P1", "mixed", "HSPC", 6)], with_barcodes=True)
        obs["tier1_malignant"] = [True] * 5 + [False] * 6
        self.obs = obs
        rows = []
        genotypes = ["MUT", "MUT", "MUT", "MUT", "WT"] + ["MUT", "WT", "WT", "WT", "WT", "WT"]
        for barcode, genotype in zip(obs["barcode"], genotypes):
            rows.append(("P1", barcode, "DNMT3A_R882H", genotype, 2, 1))
        rows.append(("P1", "BC0004", "TP53_R248Q", "AMB", 1, 1))
        rows.append(("P1", "BC9999", "DNMT3A_R882H", "MUT", 5, 0))
        self.calls = normalise_calls(_calls(rows))

    def test_join_drops_unmatched_calls(self):
        joined = join_genotypes(self.obs, self.calls)
        assert len(joined) == len(self.calls) - 1
        assert "BC9999" not in set(joined["barcode"])
        assert joined["cell_id"].nunique() == 11

    def test_join_requires_barcodes(self):
        with pytest.raises(MissingAnnotationError):
            join_genotypes(self.obs.drop(columns="barcode"), self.calls)

    def test_association_table(self):
        joined = join_genotypes(self.obs, self.calls)
        table = mutation_tier_association(joined).set_index("mutation")
        row = table.loc["DNMT3A_R882H"]
        assert row["n_profiled"] == 11
        assert row["n_mut"] == 5
        assert row["n_wt"] == 6
        assert row["mut_fraction_tier1"] == pytest.approx(4 / 5)
        assert row["mut_fraction_other"] == pytest.approx(1 / 6)

        amb = table.loc["TP53_R248Q"]
        assert amb["n_ambiguous"] == 1
        assert np.isnan(amb["mut_fraction_tier1"])

    def test_celltype_fractions(self):
        joined = join_genotypes(self.obs, self.calls)
        table = mutant_fraction_by_celltype(joined)
        row = table[(table["mutation"] == "DNMT3A_R882H") & (table["aggregated_cell_type"] == "HSPC")].iloc[0]
        assert row["n_mut"] == 1
        assert row["n_wt"] == 5
        assert row["mut_fraction"] == pytest.approx(1 / 6)


class TestFisherAssociation:
    """Tests for the contingency helpers."""

    def test_two_by_two(self):
        rows = pd.Series([True, True, False, False])
        cols = pd.Series([True, False, True, True])
        assert two_by_two(rows, cols).tolist() == [[1, 1], [2, 0]]

    def test_fisher_pvalue(self):
        result = fisher_association(np.array([[4, 1], [0, 5]]), label="DNMT3A", comparison="MUT_vs_WT")
        assert result.pvalue == pytest.approx(10 / 210)
        assert result.significance_label == "*"

    def test_rejects_wrong_shape(self):
        with pytest.raises(ValueError):
            fisher_association(np.ones((2, 3)), label="x", comparison="y")
