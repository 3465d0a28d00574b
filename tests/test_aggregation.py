"""Unit tests for cell-type aggregation.

Tests verify:
- Coverage of every fine label in the reference vocabulary
- Partition property of the aggregation map
- Unmapped labels are reported, not dropped
"""

import pandas as pd
import pytest

from palm_pipeline.aggregation import (
    aggregate_cell_types,
    aggregate_labels,
    invert_aggregation_map,
    observed_partition,
)
from palm_pipeline.errors import AggregationMapError, MissingAnnotationError, UnmappedCellTypeError
from palm_pipeline.utils.celltypes import AGGREGATION_MAP, MALIGNANT_CANDIDATE_TYPES, CoarseCellType


class TestAggregationMap:
    """Tests for the static vocabulary."""

    def test_map_is_disjoint(self):
        """No fine label should belong to two coarse labels."""
        lookup = invert_aggregation_map()
        assert len(lookup) == sum(len(labels) for labels in AGGREGATION_MAP.values())

    def test_every_coarse_type_has_labels(self):
        assert set(AGGREGATION_MAP) == set(CoarseCellType)
        assert all(AGGREGATION_MAP[coarse] for coarse in CoarseCellType)

    def test_candidate_set_has_seven_types(self):
        assert len(MALIGNANT_CANDIDATE_TYPES) == 7
        assert CoarseCellType.T_CD4 not in MALIGNANT_CANDIDATE_TYPES

    def test_duplicate_label_rejected(self):
        """A fine label under two coarse labels breaks the partition."""
        bad = {CoarseCellType.B: {"Naive B"}, CoarseCellType.PLASMA: {"Naive B", "Plasma Cell"}}
        with pytest.raises(AggregationMapError) as excinfo:
            invert_aggregation_map(bad)
        assert excinfo.value.labels == ["Naive B"]

    def test_from_label_rejects_unknown(self):
        with pytest.raises(ValueError):
            CoarseCellType.from_label("Granulocyte")


class TestAggregateCellTypes:
    """Tests for aggregate_cell_types."""

    def setup_method(self):
        self.fine = ["HSC", "CD14 Mono", "CD4 Naive", "Late Erythroid", "HSC"]
        self.obs = pd.DataFrame(
            {"fine_cell_type": self.fine},
            index=pd.Index([f"c{i}" for i in range(len(self.fine))], name="cell_id"),
        )

    def test_adds_coarse_column(self):
        out = aggregate_cell_types(self.obs)
        assert list(out["aggregated_cell_type"].astype(str)) == [
            "HSPC",
            "Monocyte",
            "T_CD4",
            "Erythroid",
            "HSPC",
        ]

    def test_input_not_modified(self):
        aggregate_cell_types(self.obs)
        assert "aggregated_cell_type" not in self.obs.columns

    def test_full_vocabulary_covered(self):
        """Every reference label should map to a non-null coarse label."""
        fine = sorted(label for labels in AGGREGATION_MAP.values() for label in labels)
        obs = pd.DataFrame({"fine_cell_type": fine})
        out = aggregate_cell_types(obs)
        assert out["aggregated_cell_type"].notna().all()

    def test_unmapped_labels_reported(self):
        obs = self.obs.copy()
        obs.loc["c1", "fine_cell_type"] = "Doublet"
        obs.loc["c2", "fine_cell_type"] = "Ambient"
        with pytest.raises(UnmappedCellTypeError) as excinfo:
            aggregate_cell_types(obs)
        assert excinfo.value.labels == ["Ambient", "Doublet"]
        assert isinstance(excinfo.value, KeyError)
        assert "Doublet" in str(excinfo.value)

    def test_labels_are_case_sensitive(self):
        obs = pd.DataFrame({"fine_cell_type": ["hsc"]})
        with pytest.raises(UnmappedCellTypeError):
            aggregate_cell_types(obs)

    def test_missing_fine_labels(self):
        obs = self.obs.copy()
        obs.loc["c0", "fine_cell_type"] = None
        with pytest.raises(MissingAnnotationError) as excinfo:
            aggregate_cell_types(obs)
        assert excinfo.value.column == "fine_cell_type"
        assert excinfo.value.n_missing == 1

    def test_missing_column(self):
        with pytest.raises(MissingAnnotationError):
            aggregate_cell_types(self.obs.rename(columns={"fine_cell_type": "label"}))

    def test_observed_partition_matches_observed_labels(self):
        partition = observed_partition(self.fine)
        union = set().union(*partition.values())
        assert union == set(self.fine)
        assert sum(len(labels) for labels in partition.values()) == len(union)


class TestAggregateLabels:
    """Tests for the streaming label mapper."""

    def test_maps_stream(self):
        assert list(aggregate_labels(["MkP", "pDC"])) == [CoarseCellType.MK_PROGENITOR, CoarseCellType.DENDRITIC]

    def test_unmapped_label_raises(self):
        with pytest.raises(UnmappedCellTypeError) as excinfo:
            list(aggregate_labels(["MkP", "Unknown"]))
        assert excinfo.value.labels == ["Unknown"]
