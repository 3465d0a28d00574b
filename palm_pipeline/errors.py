"""Exceptions raised when the cohort metadata breaks the tiering data contract."""

from __future__ import annotations

from typing import Iterable


class PalmPipelineError(Exception):
    """Base class for all fatal pipeline errors."""


class UnmappedCellTypeError(PalmPipelineError, KeyError):
    """Fine cell-type labels that no coarse label claims."""

    def __init__(self, labels: Iterable[str]):
        self.labels = sorted(str(label) for label in labels)
        super().__init__(f"Fine cell-type labels missing from the aggregation map: {self.labels}")

    def __str__(self) -> str:
        return self.args[0]


class AggregationMapError(PalmPipelineError, ValueError):
    """The aggregation map is not a partition of the fine vocabulary."""

    def __init__(self, labels: Iterable[str]):
        self.labels = sorted(str(label) for label in labels)
        super().__init__(f"Fine labels assigned to more than one coarse label: {self.labels}")


class EmptyGroupError(PalmPipelineError, ZeroDivisionError):
    """A frequency was requested over a group that holds no cells."""

    def __init__(self, kind: str, key: object = None):
        self.kind = kind
        self.key = key
        detail = f" {key!r}" if key is not None else ""
        super().__init__(f"Cannot compute a fraction over an empty {kind}{detail}")


class MissingAnnotationError(PalmPipelineError, ValueError):
    """A required metadata column is absent or incomplete."""

    def __init__(self, column: str, n_missing: int | None = None):
        self.column = column
        self.n_missing = n_missing
        if n_missing is None:
            message = f"Required metadata column {column!r} not found"
        else:
            message = f"Metadata column {column!r} has {n_missing} missing values"
        super().__init__(message)


class DegenerateExpansionError(PalmPipelineError, ValueError):
    """No finite expansion is available to saturate undefined ratios."""

    def __init__(self, pairs: Iterable[tuple[str, str]]):
        self.pairs = list(pairs)
        super().__init__(
            "Every observed (sample, cell type) pair is absent from the healthy pool; "
            f"no finite expansion to saturate with: {self.pairs}"
        )
