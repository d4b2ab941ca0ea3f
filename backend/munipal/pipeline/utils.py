"""Shared helpers for the bill pipeline."""

from munipal.config import DEFAULT_BILLING_DAYS
from munipal.pipeline.markers import Marker, extract_numeric_marker
from munipal.pipeline.models import ParsedBill, ServiceType

SERVICE_LABELS = {
    ServiceType.ELECTRICITY: "Electricity",
    ServiceType.WATER: "Water",
    ServiceType.SEWERAGE: "Sewerage/Sanitation",
    ServiceType.REFUSE: "Refuse",
    ServiceType.RATES: "Property Rates",
    ServiceType.SUNDRY: "Business Services",
    ServiceType.OTHER: "Other Charges",
}


def format_rand(cents: int | float | None) -> str:
    """Format integer cents as rand, e.g. 123456 → "R1,234.56"."""
    if cents is None:
        return ""
    sign = "-" if cents < 0 else ""
    return f"{sign}R{abs(cents) / 100:,.2f}"


def billing_days(bill: ParsedBill) -> int:
    """Days in the reading period.

    Order: "Reading period … = N days" on the statement, then the parser's
    ``billing_days``, then the 30-day default.
    """
    days = extract_numeric_marker(bill, Marker.READING_PERIOD_DAYS)
    if days and days > 0:
        return days
    if bill.billing_days and bill.billing_days > 0:
        return bill.billing_days
    return DEFAULT_BILLING_DAYS
