"""
Unit tests for gridchange.regions module.

Covers the three-way scope rule, Selection construction from dropdown
values, and the region mapping directory.
"""

import pytest
import pandas as pd

from gridchange.regions import (
    RegionMatcher, RegionDirectory, Selection, Scope, UnresolvableSelectionError,
)


SEOUL_GANGNAM = {"SIDO_NM": "Seoul", "SGG_NM": "Gangnam"}


class TestRegionMatcher:
    """Scope matching on single records."""

    def test_nationwide_always_matches(self):
        assert RegionMatcher.matches(SEOUL_GANGNAM, Selection())
        assert RegionMatcher.matches({"SIDO_NM": "Busan", "SGG_NM": "Haeundae"}, Selection())

    def test_province_scope(self):
        assert RegionMatcher.matches(SEOUL_GANGNAM, Selection(Scope.PROVINCE, sido="Seoul"))
        assert not RegionMatcher.matches(SEOUL_GANGNAM, Selection(Scope.PROVINCE, sido="Busan"))

    def test_municipality_scope_needs_exact_pair(self):
        assert RegionMatcher.matches(SEOUL_GANGNAM, Selection(Scope.MUNICIPALITY, sido="Seoul", sgg="Gangnam"))
        assert not RegionMatcher.matches(SEOUL_GANGNAM, Selection(Scope.MUNICIPALITY, sido="Seoul", sgg="Jongno"))
        assert not RegionMatcher.matches(SEOUL_GANGNAM, Selection(Scope.MUNICIPALITY, sido="Busan", sgg="Gangnam"))

    def test_no_partial_matching(self):
        assert not RegionMatcher.matches(SEOUL_GANGNAM, Selection(Scope.PROVINCE, sido="Seo"))
        assert not RegionMatcher.matches(SEOUL_GANGNAM, Selection(Scope.PROVINCE, sido="seoul"))

    def test_series_record(self):
        """Rows coming out of a DataFrame match the same way."""
        row = pd.Series(SEOUL_GANGNAM)
        assert RegionMatcher.matches(row, Selection(Scope.MUNICIPALITY, sido="Seoul", sgg="Gangnam"))

    def test_mask_agrees_with_matches(self):
        df = pd.DataFrame([
            {"SIDO_NM": "Seoul", "SGG_NM": "Gangnam"},
            {"SIDO_NM": "Seoul", "SGG_NM": "Jongno"},
            {"SIDO_NM": "Busan", "SGG_NM": "Gangnam"},
        ])
        selections = [
            Selection(),
            Selection(Scope.PROVINCE, sido="Seoul"),
            Selection(Scope.MUNICIPALITY, sido="Seoul", sgg="Gangnam"),
        ]
        for sel in selections:
            expected = [RegionMatcher.matches(r, sel) for r in df.to_dict(orient="records")]
            assert RegionMatcher.mask(df, sel).tolist() == expected

    def test_filter_missing_region_column_matches_nothing(self):
        df = pd.DataFrame({"type": ["A", "B"]})
        assert RegionMatcher.filter(df, Selection(Scope.PROVINCE, sido="Seoul")).empty
        assert len(RegionMatcher.filter(df, Selection())) == 2


class TestSelection:
    """Selection built from dropdown values."""

    def test_all_means_nationwide(self):
        assert Selection.from_values("all", "all").scope is Scope.NATIONWIDE
        assert Selection.from_values(None).scope is Scope.NATIONWIDE

    def test_province(self):
        sel = Selection.from_values("Seoul", "all")
        assert sel.scope is Scope.PROVINCE
        assert sel.sido == "Seoul"
        assert sel.sgg is None

    def test_municipality(self):
        sel = Selection.from_values("Seoul", "Gangnam")
        assert sel.scope is Scope.MUNICIPALITY
        assert sel.label == "Seoul Gangnam"

    def test_municipality_without_province_is_rejected(self):
        with pytest.raises(UnresolvableSelectionError):
            Selection.from_values("all", "Gangnam")

    def test_inconsistent_scope_fields_rejected(self):
        with pytest.raises(UnresolvableSelectionError):
            Selection(Scope.PROVINCE)
        with pytest.raises(UnresolvableSelectionError):
            Selection(Scope.NATIONWIDE, sido="Seoul")

    def test_unresolvable_is_value_error(self):
        assert issubclass(UnresolvableSelectionError, ValueError)


class TestRegionDirectory:
    """Dropdown population and view resolution."""

    def test_provinces_keep_mapping_order(self, region_frame):
        directory = RegionDirectory(region_frame)
        assert directory.provinces() == ["서울특별시", "부산광역시"]

    def test_municipalities(self, region_frame):
        directory = RegionDirectory(region_frame)
        assert directory.municipalities("서울특별시") == ["강남구", "종로구"]
        assert directory.municipalities("all") == []
        assert directory.municipalities("없는도") == []

    def test_resolve_view_zoom_levels(self, region_frame):
        directory = RegionDirectory(region_frame)
        assert directory.resolve_view(Selection()) == (37.5665, 126.9780, 7)
        assert directory.resolve_view(Selection.from_values("부산광역시")) == (35.20, 129.05, 10)
        assert directory.resolve_view(Selection.from_values("서울특별시", "종로구")) == (37.59, 126.98, 12)

    def test_validate_rejects_pair_from_other_province(self, region_frame):
        directory = RegionDirectory(region_frame)
        directory.validate(Selection.from_values("서울특별시", "강남구"))
        with pytest.raises(UnresolvableSelectionError):
            directory.validate(Selection.from_values("부산광역시", "강남구"))

    def test_empty_directory(self):
        directory = RegionDirectory()
        assert not directory.loaded
        assert directory.provinces() == []
        with pytest.raises(UnresolvableSelectionError):
            directory.resolve_view(Selection.from_values("서울특별시"))
