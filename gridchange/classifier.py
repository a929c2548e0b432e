# gridchange/classifier.py

from typing import Any, Mapping, Optional

import pandas as pd

from gridchange.constants import (
    CHANGED_COL, DEFAULT_BEFORE_YEAR, DEFAULT_AFTER_YEAR, MISSING_TYPE_LABEL,
)


def is_present(value: Any) -> bool:
    """A category is present unless it is None, NaN or an empty string."""
    if value is None:
        return False
    if isinstance(value, float) and pd.isna(value):
        return False
    return str(value).strip() != ""


def category_value(value: Any) -> Optional[str]:
    """Category in the string form used by counts and matrix axes, or None."""
    return str(value) if is_present(value) else None


def as_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "y", "t")
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return False
    return bool(value)


def change_label(type_before: Optional[str], type_after: Optional[str]) -> str:
    """Hover text for a changed cell, e.g. '중심지 I → 중심지 II'."""
    before = str(type_before) if is_present(type_before) else MISSING_TYPE_LABEL
    after = str(type_after) if is_present(type_after) else MISSING_TYPE_LABEL
    return f"{before} → {after}"


class TypeChangeClassifier:
    """
    Decides whether a grid cell counts as changed, and whether a change
    involves a given category in either year.
    """

    def __init__(self,
                 before_col: str = f"type_{DEFAULT_BEFORE_YEAR}",
                 after_col: str = f"type_{DEFAULT_AFTER_YEAR}",
                 changed_col: str = CHANGED_COL):
        self.before_col = before_col
        self.after_col = after_col
        self.changed_col = changed_col

    def is_any_change(self, feature: Mapping[str, Any]) -> bool:
        return as_flag(feature.get(self.changed_col))

    def is_change_of_category(self, feature: Mapping[str, Any], category: str) -> bool:
        if not self.is_any_change(feature):
            return False
        return (category_value(feature.get(self.before_col)) == category
                or category_value(feature.get(self.after_col)) == category)

    def change_mask(self, frame: pd.DataFrame) -> pd.Series:
        if self.changed_col not in frame.columns:
            return pd.Series(False, index=frame.index)
        return frame[self.changed_col].map(as_flag).astype(bool)

    def category_mask(self, frame: pd.DataFrame, category: str) -> pd.Series:
        m = self.change_mask(frame)
        hit = pd.Series(False, index=frame.index)
        for col in (self.before_col, self.after_col):
            if col in frame.columns:
                hit |= frame[col].map(category_value) == category
        return m & hit

    def label_for(self, feature: Mapping[str, Any]) -> str:
        return change_label(feature.get(self.before_col), feature.get(self.after_col))
