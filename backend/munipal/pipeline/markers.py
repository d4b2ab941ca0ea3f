"""Marker registry — every raw-text pattern the engine relies on.

The CoJ statement layout is matched through this one enumerable table
instead of regular expressions scattered through the analyzers.  Each
marker defines:
  - pattern: compiled regex searched against ``bill.raw_text``
  - numeric: whether group 1 captures an integer value
  - description: what the marker means on the statement

If the upstream document layout changes, only this table needs updating.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from munipal.pipeline.models import ParsedBill


class Marker(str, Enum):
    BUSINESS_RATES = "business_rates"
    RESIDENTIAL_RATES = "residential_rates"
    ESTIMATED_READING = "estimated_reading"
    READING_PERIOD_DAYS = "reading_period_days"
    SEWER_STAND_SIZE = "sewer_stand_size"
    SEWER_PER_LIVING_UNIT = "sewer_per_living_unit"
    RESIDENTIAL_REBATE = "residential_rebate"
    BIN_COUNT = "bin_count"
    INTEREST_ON_ARREARS = "interest_on_arrears"


@dataclass(frozen=True)
class MarkerDefinition:
    pattern: re.Pattern
    description: str
    numeric: bool = False


MARKERS: dict[Marker, MarkerDefinition] = {
    Marker.BUSINESS_RATES: MarkerDefinition(
        re.compile(r'property rates business', re.IGNORECASE),
        "Rates levied on the business category",
    ),
    Marker.RESIDENTIAL_RATES: MarkerDefinition(
        re.compile(r'property rates residential', re.IGNORECASE),
        "Rates levied on the residential category",
    ),
    Marker.ESTIMATED_READING: MarkerDefinition(
        re.compile(r'type:\s*estimated', re.IGNORECASE),
        "Meter reading type printed as Estimated",
    ),
    Marker.READING_PERIOD_DAYS: MarkerDefinition(
        re.compile(r'Reading period.*?=\s*(\d+)\s*days', re.IGNORECASE),
        "Length of the meter-reading period in days",
        numeric=True,
    ),
    Marker.SEWER_STAND_SIZE: MarkerDefinition(
        re.compile(r'sewer monthly charge based on stand size', re.IGNORECASE),
        "Sewerage billed on stand size",
    ),
    Marker.SEWER_PER_LIVING_UNIT: MarkerDefinition(
        re.compile(r'^(?=.*sewer charge per)(?=.*living unit)', re.IGNORECASE | re.DOTALL),
        "Sewerage billed per living unit",
    ),
    # Case-sensitive: the rebate line is printed exactly like this
    Marker.RESIDENTIAL_REBATE: MarkerDefinition(
        re.compile(r'Less rates on first R300'),
        "R300,000 residential valuation rebate applied",
    ),
    Marker.BIN_COUNT: MarkerDefinition(
        re.compile(r'(\d+)-bin', re.IGNORECASE),
        "Number of refuse bins on the service",
        numeric=True,
    ),
    Marker.INTEREST_ON_ARREARS: MarkerDefinition(
        re.compile(r'Interest on Arrears'),
        "Interest levied on the outstanding balance",
    ),
}


def has_marker(bill: ParsedBill, marker: Marker) -> bool:
    """True when the marker's pattern occurs in the bill's raw text."""
    text = bill.raw_text or ""
    if not text:
        return False
    return MARKERS[marker].pattern.search(text) is not None


def extract_numeric_marker(bill: ParsedBill, marker: Marker) -> int | None:
    """Return the integer captured by a numeric marker, or None if absent."""
    definition = MARKERS[marker]
    if not definition.numeric:
        raise ValueError(f"Marker {marker.value} does not capture a number")
    text = bill.raw_text or ""
    match = definition.pattern.search(text)
    if not match:
        return None
    try:
        return int(match.group(1))
    except (TypeError, ValueError):
        return None
