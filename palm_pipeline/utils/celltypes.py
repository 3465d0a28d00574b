"""Bone-marrow cell-type vocabularies used to aggregate reference labels."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet


class CoarseCellType(str, Enum):
    """Manually curated coarse compartments of the bone-marrow reference."""

    HSPC = "HSPC"
    EARLY_MYELOID = "Early_Myeloid"
    LATE_MYELOID = "Late_Myeloid"
    MONOCYTE = "Monocyte"
    EO_BASO_MAST = "EoBasoMast"
    ERYTHROID = "Erythroid"
    MK_PROGENITOR = "MkP"
    DENDRITIC = "DC"
    B_PROGENITOR = "B_Progenitor"
    B = "B"
    PLASMA = "Plasma"
    T_CD4 = "T_CD4"
    T_CD8 = "T_CD8"
    NK = "NK"
    T_OTHER = "T_Other"
    STROMAL = "Stromal"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_label(cls, label: "str | CoarseCellType") -> "CoarseCellType":
        if isinstance(label, cls):
            return label
        for member in cls:
            if member.value == label:
                return member
        raise ValueError(f"Unknown coarse cell type: {label!r}")


# Ordered coarse -> fine mapping (reference-projection labels, exact match)
AGGREGATION_MAP: Dict[CoarseCellType, FrozenSet[str]] = {
    CoarseCellType.HSPC: frozenset({"HSC", "MPP-MkEry", "MPP-MyLy", "LMPP", "Cycling Progenitor"}),
    CoarseCellType.EARLY_MYELOID: frozenset({"Early GMP", "CMP", "Myeloid Progenitor"}),
    CoarseCellType.LATE_MYELOID: frozenset({"Late GMP", "Promyelocyte", "Myelocyte", "Neutrophil"}),
    CoarseCellType.MONOCYTE: frozenset({"Monocyte Progenitor", "CD14 Mono", "CD16 Mono"}),
    CoarseCellType.EO_BASO_MAST: frozenset({"EoBasoMast Progenitor", "Eosinophil", "Basophil", "Mast Cell"}),
    CoarseCellType.ERYTHROID: frozenset({"BFU-E", "CFU-E", "Early Erythroid", "Late Erythroid"}),
    CoarseCellType.MK_PROGENITOR: frozenset({"MEP", "MkP", "Megakaryocyte"}),
    CoarseCellType.DENDRITIC: frozenset({"Pre-DC", "cDC1", "cDC2", "pDC"}),
    CoarseCellType.B_PROGENITOR: frozenset({"CLP", "Pre-pro-B", "Pro-B", "Pre-B"}),
    CoarseCellType.B: frozenset({"Immature B", "Naive B", "Memory B"}),
    CoarseCellType.PLASMA: frozenset({"Plasma Cell"}),
    CoarseCellType.T_CD4: frozenset({"CD4 Naive", "CD4 Memory", "Treg"}),
    CoarseCellType.T_CD8: frozenset({"CD8 Naive", "CD8 Effector", "CD8 Memory"}),
    CoarseCellType.NK: frozenset({"NK", "CD56 bright NK"}),
    CoarseCellType.T_OTHER: frozenset({"gdT", "MAIT"}),
    CoarseCellType.STROMAL: frozenset({"Stromal", "Endothelial"}),
}

# Compartments in which the disease clone can plausibly reside
MALIGNANT_CANDIDATE_TYPES: FrozenSet[CoarseCellType] = frozenset(
    {
        CoarseCellType.HSPC,
        CoarseCellType.EARLY_MYELOID,
        CoarseCellType.LATE_MYELOID,
        CoarseCellType.MONOCYTE,
        CoarseCellType.EO_BASO_MAST,
        CoarseCellType.ERYTHROID,
        CoarseCellType.MK_PROGENITOR,
    }
)
