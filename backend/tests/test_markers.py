"""Tests for backend/munipal/pipeline/markers.py — raw-text marker registry.

Covers:
  - has_marker: case sensitivity per marker, empty raw text
  - extract_numeric_marker: reading period, bin count, absent, non-numeric marker
  - registry completeness
"""

import pytest

from munipal.pipeline.markers import MARKERS, Marker, extract_numeric_marker, has_marker
from munipal.pipeline.models import ParsedBill


def _bill(text: str) -> ParsedBill:
    return ParsedBill(raw_text=text)


class TestHasMarker:

    def test_business_rates_case_insensitive(self):
        assert has_marker(_bill("PROPERTY RATES BUSINESS"), Marker.BUSINESS_RATES)
        assert has_marker(_bill("property rates business"), Marker.BUSINESS_RATES)

    def test_residential_rates(self):
        assert has_marker(_bill("Property Rates Residential  R 954.47"), Marker.RESIDENTIAL_RATES)
        assert not has_marker(_bill("Property Rates Business"), Marker.RESIDENTIAL_RATES)

    def test_estimated_reading_with_spacing(self):
        assert has_marker(_bill("Meter 123  Type:   Estimated"), Marker.ESTIMATED_READING)
        assert not has_marker(_bill("Type: Actual"), Marker.ESTIMATED_READING)

    def test_rebate_marker_is_case_sensitive(self):
        assert has_marker(_bill("Less rates on first R300 000"), Marker.RESIDENTIAL_REBATE)
        assert not has_marker(_bill("LESS RATES ON FIRST R300 000"), Marker.RESIDENTIAL_REBATE)

    def test_interest_marker_is_case_sensitive(self):
        assert has_marker(_bill("Interest on Arrears  R 1 200.00"), Marker.INTEREST_ON_ARREARS)
        assert not has_marker(_bill("interest on arrears"), Marker.INTEREST_ON_ARREARS)

    def test_sewer_per_living_unit_needs_both_phrases(self):
        text = "Sewer charge per unit\nResidential living unit x 4"
        assert has_marker(_bill(text), Marker.SEWER_PER_LIVING_UNIT)
        assert not has_marker(_bill("Sewer charge per month"), Marker.SEWER_PER_LIVING_UNIT)

    def test_sewer_stand_size(self):
        assert has_marker(_bill("Sewer monthly charge based on stand size"), Marker.SEWER_STAND_SIZE)

    @pytest.mark.parametrize("marker", list(Marker))
    def test_empty_raw_text(self, marker):
        assert has_marker(_bill(""), marker) is False


class TestExtractNumericMarker:

    def test_reading_period_days(self):
        text = "Reading period 2025/07/10 - 2025/08/12 = 33 days"
        assert extract_numeric_marker(_bill(text), Marker.READING_PERIOD_DAYS) == 33

    def test_bin_count(self):
        assert extract_numeric_marker(_bill("Refuse 6-bin service"), Marker.BIN_COUNT) == 6

    def test_absent_returns_none(self):
        assert extract_numeric_marker(_bill("no period here"), Marker.READING_PERIOD_DAYS) is None

    def test_non_numeric_marker_raises(self):
        with pytest.raises(ValueError):
            extract_numeric_marker(_bill("Property Rates Business"), Marker.BUSINESS_RATES)


class TestRegistry:

    def test_every_marker_defined(self):
        assert set(MARKERS) == set(Marker)

    def test_numeric_markers_capture_a_group(self):
        for marker, definition in MARKERS.items():
            if definition.numeric:
                assert definition.pattern.groups >= 1, marker
