# gridchange/regions.py

import enum
from dataclasses import dataclass
from typing import List, Optional, Tuple, Mapping, Any

import pandas as pd

from gridchange.constants import (
    ALL, SIDO_COL, SGG_COL, NATIONWIDE_VIEW, PROVINCE_ZOOM, MUNICIPALITY_ZOOM,
)


class UnresolvableSelectionError(ValueError):
    """Raised when a province/municipality choice cannot be resolved."""


class Scope(enum.Enum):
    NATIONWIDE = "national"
    PROVINCE = "sido"
    MUNICIPALITY = "sgg"


def _is_unset(value: Optional[str]) -> bool:
    return value is None or value == "" or value == ALL


@dataclass(frozen=True)
class Selection:
    """
    Region selection driving every filter and aggregate call.
    `sido` / `sgg` are None when unset; use `from_values` to build one from
    dropdown values where "all" means unset.
    """
    scope: Scope = Scope.NATIONWIDE
    sido: Optional[str] = None
    sgg: Optional[str] = None

    def __post_init__(self):
        if self.scope is Scope.NATIONWIDE and (self.sido is not None or self.sgg is not None):
            raise UnresolvableSelectionError("Nationwide selection cannot name a province or municipality.")
        if self.scope is Scope.PROVINCE and (self.sido is None or self.sgg is not None):
            raise UnresolvableSelectionError("Province selection needs a province and no municipality.")
        if self.scope is Scope.MUNICIPALITY and (self.sido is None or self.sgg is None):
            raise UnresolvableSelectionError("Municipality selection needs both province and municipality.")

    @classmethod
    def from_values(cls, sido: Optional[str], sgg: Optional[str] = None) -> "Selection":
        """Derive the scope from dropdown values ("all" / None = unset)."""
        if _is_unset(sido):
            if not _is_unset(sgg):
                raise UnresolvableSelectionError(
                    f"Municipality '{sgg}' was chosen without a province."
                )
            return cls()
        if _is_unset(sgg):
            return cls(Scope.PROVINCE, sido=sido)
        return cls(Scope.MUNICIPALITY, sido=sido, sgg=sgg)

    @property
    def label(self) -> str:
        if self.scope is Scope.NATIONWIDE:
            return "Nationwide"
        if self.scope is Scope.PROVINCE:
            return self.sido
        return f"{self.sido} {self.sgg}"


class RegionMatcher:
    """
    Three-way scope rule shared by the change map and the yearly records.
    Only exact string equality on SIDO_NM / SGG_NM.
    """

    @staticmethod
    def matches(record: Mapping[str, Any], selection: Selection) -> bool:
        if selection.scope is Scope.NATIONWIDE:
            return True
        if record.get(SIDO_COL) != selection.sido:
            return False
        if selection.scope is Scope.PROVINCE:
            return True
        return record.get(SGG_COL) == selection.sgg

    @staticmethod
    def mask(frame: pd.DataFrame, selection: Selection) -> pd.Series:
        """Vectorized `matches` over a (Geo)DataFrame."""
        if selection.scope is Scope.NATIONWIDE or frame.empty:
            return pd.Series(True, index=frame.index)
        if SIDO_COL not in frame.columns:
            return pd.Series(False, index=frame.index)
        m = frame[SIDO_COL] == selection.sido
        if selection.scope is Scope.MUNICIPALITY:
            if SGG_COL not in frame.columns:
                return pd.Series(False, index=frame.index)
            m &= frame[SGG_COL] == selection.sgg
        return m

    @classmethod
    def filter(cls, frame: pd.DataFrame, selection: Selection) -> pd.DataFrame:
        return frame[cls.mask(frame, selection)]


class RegionDirectory:
    """
    Province/municipality mapping with centroids, used for the dropdowns and
    to resolve a selection to a map view. Not involved in aggregation.
    """

    def __init__(self, frame: Optional[pd.DataFrame] = None):
        self.frame = frame if frame is not None else pd.DataFrame(columns=[SIDO_COL, SGG_COL])

    @property
    def loaded(self) -> bool:
        return not self.frame.empty

    def provinces(self) -> List[str]:
        """Distinct provinces in mapping order."""
        return self.frame[SIDO_COL].dropna().astype(str).drop_duplicates().tolist()

    def municipalities(self, sido: Optional[str]) -> List[str]:
        if _is_unset(sido):
            return []
        sub = self.frame[self.frame[SIDO_COL] == sido]
        return sub[SGG_COL].dropna().astype(str).tolist()

    def _find(self, sido: str, sgg: Optional[str] = None) -> Optional[pd.Series]:
        m = self.frame[SIDO_COL] == sido
        if sgg is not None:
            m &= self.frame[SGG_COL] == sgg
        rows = self.frame[m]
        if rows.empty:
            return None
        return rows.iloc[0]

    def validate(self, selection: Selection) -> None:
        """Reject province/municipality pairs that are not in the mapping."""
        if selection.scope is Scope.NATIONWIDE:
            return
        if self._find(selection.sido, selection.sgg) is None:
            raise UnresolvableSelectionError(
                f"Region not found: {selection.label}"
            )

    def resolve_view(self, selection: Selection) -> Tuple[float, float, int]:
        """Returns (lat, lon, zoom) for the selection."""
        if selection.scope is Scope.NATIONWIDE:
            return NATIONWIDE_VIEW
        row = self._find(selection.sido, selection.sgg)
        if row is None:
            raise UnresolvableSelectionError(f"Region not found: {selection.label}")
        if selection.scope is Scope.PROVINCE:
            return float(row["lat_sido"]), float(row["lon_sido"]), PROVINCE_ZOOM
        return float(row["lat_sgg"]), float(row["lon_sgg"]), MUNICIPALITY_ZOOM
