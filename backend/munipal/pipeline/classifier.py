"""Property classifier - infers residential/business use from the bill.

Text-primary: the rates section of a CoJ statement names the rating
category ("Property Rates Business" / "Property Rates Residential").  When
neither heading survives parsing, the rate-in-rand used for the rates line
is the fallback signal: business is ~0.0238, residential ~0.0095.
"""

import logging

from munipal.config import CLASSIFICATION_RATE_THRESHOLD, TRACE_ENABLED
from munipal.pipeline.markers import Marker, has_marker
from munipal.pipeline.models import (
    ParsedBill,
    PropertyClassification,
    RatesMetadata,
    ServiceType,
)

logger = logging.getLogger(__name__)


def classify(bill: ParsedBill) -> PropertyClassification:
    """Classify the property on a bill.

    Priority (first match wins):
      1. both business and residential rate headings → MIXED
      2. one heading only → BUSINESS / RESIDENTIAL
      3. rates line ``rate_used`` above the threshold → BUSINESS, else RESIDENTIAL
      4. UNKNOWN
    """
    business = has_marker(bill, Marker.BUSINESS_RATES)
    residential = has_marker(bill, Marker.RESIDENTIAL_RATES)

    if business and residential:
        result = PropertyClassification.MIXED
    elif business:
        result = PropertyClassification.BUSINESS
    elif residential:
        result = PropertyClassification.RESIDENTIAL
    else:
        result = _classify_from_rate(bill)

    if TRACE_ENABLED:
        logger.debug(
            f"[TRACE] CLASSIFY account={bill.account_number} business_marker={business} "
            f"residential_marker={residential} → {result.value}"
        )
    return result


def _classify_from_rate(bill: ParsedBill) -> PropertyClassification:
    rates_item = bill.find_item(ServiceType.RATES)
    if rates_item is None or not isinstance(rates_item.metadata, RatesMetadata):
        return PropertyClassification.UNKNOWN
    rate_used = rates_item.metadata.rate_used
    if not rate_used:
        return PropertyClassification.UNKNOWN
    if rate_used > CLASSIFICATION_RATE_THRESHOLD:
        return PropertyClassification.BUSINESS
    return PropertyClassification.RESIDENTIAL
