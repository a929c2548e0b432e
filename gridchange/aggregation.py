# gridchange/aggregation.py

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import pandas as pd

from gridchange.classifier import TypeChangeClassifier, category_value, is_present
from gridchange.constants import TYPE_COL, COLUMN_NAMES


Records = Union[pd.DataFrame, Iterable[Mapping[str, Any]]]


@dataclass(frozen=True)
class CategoryCount:
    category: str
    before: int
    after: int

    @property
    def delta(self) -> int:
        return self.after - self.before

    @property
    def delta_label(self) -> str:
        return f"+{self.delta}" if self.delta > 0 else str(self.delta)


@dataclass
class TransitionMatrix:
    """Before-type x after-type cell counts for one region query."""
    row_categories: List[str] = field(default_factory=list)
    col_categories: List[str] = field(default_factory=list)
    matrix: List[List[int]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(sum(row) for row in self.matrix)

    def count(self, before: str, after: str) -> int:
        try:
            return self.matrix[self.row_categories.index(before)][self.col_categories.index(after)]
        except ValueError:
            return 0

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame(self.matrix, index=self.row_categories, columns=self.col_categories, dtype=int)
        df.index.name = "before"
        df.columns.name = "after"
        return df


@dataclass
class AggregationResult:
    counts_table: List[CategoryCount]
    matrix: Optional[TransitionMatrix] = None

    def counts_frame(self, before_label: str = COLUMN_NAMES['before'],
                     after_label: str = COLUMN_NAMES['after']) -> pd.DataFrame:
        """Counts table as displayed: category, before, after, signed delta."""
        rows = [{
            COLUMN_NAMES['category']: c.category,
            before_label: c.before,
            after_label: c.after,
            COLUMN_NAMES['delta']: c.delta_label,
        } for c in self.counts_table]
        return pd.DataFrame(rows, columns=[COLUMN_NAMES['category'], before_label, after_label, COLUMN_NAMES['delta']])


def _present_values(frame: pd.DataFrame, col: str) -> pd.Series:
    """Column as strings with absent categories turned into NaN."""
    if col not in frame.columns:
        return pd.Series(index=frame.index, dtype=object)
    s = frame[col]
    return s.where(s.map(is_present)).map(category_value)


class TransitionAggregator:
    """
    Pure aggregation over already-filtered records and features:
    per-category yearly counts, their comparison, and the transition matrix.
    """

    def __init__(self, classifier: Optional[TypeChangeClassifier] = None):
        self.classifier = classifier or TypeChangeClassifier()

    @staticmethod
    def count_by_category(records: Records, type_col: str = TYPE_COL) -> Dict[str, int]:
        """Tally `type` values; absent or empty categories are never keyed."""
        if isinstance(records, pd.DataFrame):
            values = _present_values(records, type_col).dropna()
            return {str(k): int(v) for k, v in values.value_counts(sort=False).items()}

        counts: Dict[str, int] = {}
        for rec in records:
            key = rec.get(type_col)
            if not is_present(key):
                continue
            key = str(key)
            counts[key] = counts.get(key, 0) + 1
        return counts

    @staticmethod
    def compare_counts(before_counts: Mapping[str, int], after_counts: Mapping[str, int]) -> List[CategoryCount]:
        categories = sorted(set(before_counts) | set(after_counts))
        return [
            CategoryCount(cat, int(before_counts.get(cat, 0)), int(after_counts.get(cat, 0)))
            for cat in categories
        ]

    def build_transition_matrix(self, features: pd.DataFrame) -> TransitionMatrix:
        before = _present_values(features, self.classifier.before_col)
        after = _present_values(features, self.classifier.after_col)

        rows = sorted(before.dropna().unique().tolist())
        cols = sorted(after.dropna().unique().tolist())

        both = before.notna() & after.notna()
        if rows and cols and both.any():
            tab = pd.crosstab(before[both], after[both]).reindex(index=rows, columns=cols, fill_value=0)
            matrix = tab.astype(int).values.tolist()
        else:
            matrix = [[0] * len(cols) for _ in rows]

        return TransitionMatrix(row_categories=rows, col_categories=cols, matrix=matrix)
