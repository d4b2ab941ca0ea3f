"""Per-service insight analyzers: rule-based, never throw on missing data.

We don't re-derive the municipality's arithmetic here.  Each analyzer looks
for something the account holder can act on:
  - estimated meter readings
  - consumption well above typical household usage (possible leaks)
  - business vs residential rating and the R300,000 residential rebate
  - refuse arrangements, arrears and interest

Every analyzer has the signature ``(bill, classification) -> list[Insight]``
and is independent of the others, so they can run in any order.  A missing
line item, metadata field or text marker simply yields no insight.
"""

import logging

from munipal.config import (
    ARREARS_CRITICAL_CENTS,
    BUSINESS_BIN_PRICE_CENTS,
    BUSINESS_BIN_THRESHOLD,
    BUSINESS_RATE_FACTOR,
    ELECTRICITY_RESIDENTIAL_DAILY_KWH,
    MISSING_REBATE_SAVINGS_CENTS,
    RATES_DIFFERENCE_THRESHOLD_CENTS,
    RESIDENTIAL_EXEMPTION_CENTS,
    RESIDENTIAL_RATE_FACTOR,
    TRACE_ENABLED,
    WATER_PER_UNIT_DAILY_KL,
    WATER_RESIDENTIAL_DAILY_KL,
)
from munipal.pipeline.markers import Marker, extract_numeric_marker, has_marker
from munipal.pipeline.models import (
    ActionType,
    ElectricityMetadata,
    Insight,
    InsightService,
    ParsedBill,
    PropertyClassification,
    RefuseMetadata,
    ServiceType,
    Severity,
    SewerageMetadata,
)
from munipal.pipeline.utils import billing_days, format_rand

logger = logging.getLogger(__name__)


def _trace(msg: str):
    """Emit a trace-level debug message when MUNIPAL_TRACE is enabled."""
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


def _make_insight(service: InsightService, severity: Severity, title: str,
                  finding: str, implication: str, action: str,
                  savings_potential: int | None = None,
                  action_type: ActionType = ActionType.NONE) -> Insight:
    return Insight(
        service=service,
        severity=severity,
        title=title,
        finding=finding,
        implication=implication,
        action=action,
        savings_potential=savings_potential,
        action_type=action_type,
    )


# ═══════════════════════════════════════════════════
# 1. PROPERTY VALUATION
# ═══════════════════════════════════════════════════

def analyze_property_valuation(bill: ParsedBill,
                               classification: PropertyClassification) -> list[Insight]:
    """A R0 valuation means the property is not being rated at all."""
    if bill.municipal_valuation != 0:
        return []
    return [_make_insight(
        InsightService.RATES, Severity.CRITICAL,
        "Property has R0 municipal valuation",
        "Your property shows a market value of R0.00 on the municipal valuation roll.",
        "You are not being charged property rates now, but once the roll is corrected "
        "you may receive a backdated bill covering several years.",
        "Contact CoJ Valuations to confirm the property is correctly valued. Fixing it "
        "now avoids a large backdated bill later.",
        action_type=ActionType.CONTACT_VALUATIONS,
    )]


# ═══════════════════════════════════════════════════
# 2. ELECTRICITY
# ═══════════════════════════════════════════════════

def analyze_electricity(bill: ParsedBill,
                        classification: PropertyClassification) -> list[Insight]:
    """Estimated readings, high residential consumption, multiple meters."""
    item = bill.find_item(ServiceType.ELECTRICITY)
    if item is None:
        return []

    insights = []
    meta = item.metadata if isinstance(item.metadata, ElectricityMetadata) else None
    meters = meta.meters if meta else ()

    estimated = any(m.is_estimated for m in meters) or has_marker(bill, Marker.ESTIMATED_READING)
    _trace(f"ELECTRICITY estimated={estimated} meters={len(meters)} quantity={item.quantity}")
    if estimated:
        insights.append(_make_insight(
            InsightService.ELECTRICITY, Severity.ACTION_REQUIRED,
            "Electricity meter reading is ESTIMATED",
            "City Power did not read your meter this period. The consumption shown is "
            "an estimate based on historical usage.",
            "When an actual reading is taken the account is corrected: a large catch-up "
            "bill if you used more, a credit if you used less.",
            "Request an actual meter reading from City Power (0860 562 874) and keep "
            "recent bills for comparison.",
            action_type=ActionType.REQUEST_METER_READING,
        ))

    consumption = item.quantity
    if consumption and consumption > 0:
        days = billing_days(bill)
        daily_avg = consumption / days
        _trace(f"ELECTRICITY daily_avg={daily_avg:.2f} kWh over {days} days")
        if (classification == PropertyClassification.RESIDENTIAL
                and daily_avg > ELECTRICITY_RESIDENTIAL_DAILY_KWH):
            insights.append(_make_insight(
                InsightService.ELECTRICITY, Severity.ATTENTION,
                "Higher than typical residential consumption",
                f"Your daily average of {daily_avg:.1f} kWh is above typical residential "
                f"usage (15-35 kWh/day).",
                "This could indicate inefficient appliances, a geyser fault, or a meter "
                "attributed to the wrong property.",
                "Review your usage patterns, consider an energy audit, and confirm the "
                "meter number belongs to your property.",
            ))

    if len(meters) > 1:
        insights.append(_make_insight(
            InsightService.ELECTRICITY, Severity.INFO,
            f"Property has {len(meters)} electricity meters",
            f"Your bill shows {len(meters)} separate meters.",
            "Each meter may be on a different tariff (residential vs commercial).",
            "Check which area each meter serves and that commercial meters only "
            "supply commercial use.",
        ))

    return insights


# ═══════════════════════════════════════════════════
# 3. WATER
# ═══════════════════════════════════════════════════

def analyze_water(bill: ParsedBill,
                  classification: PropertyClassification) -> list[Insight]:
    """Demand-levy-only accounts, leaks, high per-unit usage."""
    item = bill.find_item(ServiceType.WATER)
    if item is None:
        return []

    consumption = item.quantity
    if not consumption or consumption <= 0:
        if item.amount > 0:
            return [_make_insight(
                InsightService.WATER, Severity.INFO,
                "Water charges are demand levy only",
                f"No water consumption recorded, but you are paying "
                f"{format_rand(item.amount)} in demand levies.",
                "This is normal for prepaid water meters or properties with no consumption.",
                "No action needed unless you expected consumption to be recorded.",
            )]
        return []

    insights = []
    units = bill.units
    days = billing_days(bill)
    daily_avg = consumption / days
    per_unit_daily = daily_avg / units
    _trace(f"WATER daily_avg={daily_avg:.2f} kL per_unit={per_unit_daily:.2f} units={units}")

    if (classification == PropertyClassification.RESIDENTIAL
            and daily_avg > WATER_RESIDENTIAL_DAILY_KL):
        insights.append(_make_insight(
            InsightService.WATER, Severity.ATTENTION,
            "Higher than typical water consumption",
            f"Your daily average of {daily_avg:.1f} kL is above typical residential "
            f"usage (0.5-1.5 kL/day).",
            "This could indicate a leak, a running toilet, or a faulty meter.",
            "Close all taps and check whether the meter still turns. Inspect for "
            "visible leaks or call a plumber.",
        ))

    if units > 1 and per_unit_daily > WATER_PER_UNIT_DAILY_KL:
        insights.append(_make_insight(
            InsightService.WATER, Severity.ATTENTION,
            "High water usage per unit",
            f"With {units} units, you are averaging {per_unit_daily:.2f} kL/day per unit.",
            "Typical multi-unit usage is 0.5-1.0 kL/day per unit. Higher usage "
            "suggests leaks or meter problems.",
            "Inspect common areas for leaks and consider sub-metering to find "
            "high-usage units.",
        ))

    return insights


# ═══════════════════════════════════════════════════
# 4. SEWERAGE
# ═══════════════════════════════════════════════════

def analyze_sewerage(bill: ParsedBill,
                     classification: PropertyClassification) -> list[Insight]:
    """Informational only: which billing method applies."""
    item = bill.find_item(ServiceType.SEWERAGE)
    if item is None:
        return []

    method = item.metadata.method if isinstance(item.metadata, SewerageMetadata) else None

    if has_marker(bill, Marker.SEWER_STAND_SIZE) or method == "stand_size":
        return [_make_insight(
            InsightService.SEWERAGE, Severity.INFO,
            "Sewerage based on stand size",
            "Your sewerage charge is calculated from your stand size, not water consumption.",
            "This is the standard residential method; the charge is fixed regardless of usage.",
            "No action needed. This is normal for residential properties.",
        )]

    if has_marker(bill, Marker.SEWER_PER_LIVING_UNIT) or method == "per_unit":
        units = bill.units
        return [_make_insight(
            InsightService.SEWERAGE, Severity.INFO,
            f"Sewerage for {units} living units",
            f"Your sewerage is charged per living unit ({units} units on record).",
            "If the unit count is wrong you may be over- or under-charged.",
            f"Verify that {units} units is correct for your property.",
        )]

    return []


# ═══════════════════════════════════════════════════
# 5. PROPERTY RATES
# ═══════════════════════════════════════════════════

def estimate_monthly_rates(valuation: int) -> tuple[float, float]:
    """Estimated monthly (business, residential) rates for a valuation in cents.

    Residential excludes the first R300,000 of value.  Display/estimate only:
    this is not an authoritative recomputation of the bill.
    """
    business = valuation * BUSINESS_RATE_FACTOR / 12
    residential = max(0, valuation - RESIDENTIAL_EXEMPTION_CENTS) * RESIDENTIAL_RATE_FACTOR / 12
    return business, residential


def analyze_rates(bill: ParsedBill,
                  classification: PropertyClassification) -> list[Insight]:
    """Business-vs-residential rating and the missing R300,000 rebate."""
    item = bill.find_item(ServiceType.RATES)
    if item is None:
        return []

    insights = []
    valuation = bill.municipal_valuation or 0

    if classification == PropertyClassification.BUSINESS and valuation > 0:
        business, residential = estimate_monthly_rates(valuation)
        difference = business - residential
        _trace(f"RATES valuation={valuation} business={business:.0f} "
               f"residential={residential:.0f} diff={difference:.0f}")
        if difference > RATES_DIFFERENCE_THRESHOLD_CENTS:
            savings = round(difference)
            insights.append(_make_insight(
                InsightService.RATES, Severity.ATTENTION,
                "Business rates are significantly higher than residential",
                f"Your property is rated as BUSINESS ({BUSINESS_RATE_FACTOR:.7f}), about "
                f"2.5x the residential rate.",
                f"If the property qualifies as residential you could save approximately "
                f"{format_rand(savings)}/month.",
                "Review the property's zoning and use. If it is used residentially, apply "
                "to CoJ for reclassification.",
                savings_potential=savings,
                action_type=ActionType.APPLY_RECLASSIFICATION,
            ))

    if classification == PropertyClassification.RESIDENTIAL:
        rebate_shown = has_marker(bill, Marker.RESIDENTIAL_REBATE)
        _trace(f"RATES residential valuation={valuation} rebate_shown={rebate_shown}")
        if not rebate_shown and valuation > RESIDENTIAL_EXEMPTION_CENTS:
            insights.append(_make_insight(
                InsightService.RATES, Severity.ACTION_REQUIRED,
                "R300,000 residential rebate may be missing",
                "Your bill does not show the standard R300,000 residential property rebate.",
                "The first R300,000 of a residential property's value is exempt from rates, "
                "worth about R238/month.",
                "Contact CoJ to confirm the property is registered as a residential primary "
                "residence.",
                savings_potential=MISSING_REBATE_SAVINGS_CENTS,
                action_type=ActionType.REQUEST_REBATE,
            ))

    return insights


# ═══════════════════════════════════════════════════
# 6. REFUSE
# ═══════════════════════════════════════════════════

def analyze_refuse(bill: ParsedBill,
                   classification: PropertyClassification) -> list[Insight]:
    """Missing refuse on business accounts, large bin allocations."""
    item = bill.find_item(ServiceType.REFUSE)
    is_business = classification == PropertyClassification.BUSINESS

    if item is None:
        if is_business:
            return [_make_insight(
                InsightService.REFUSE, Severity.INFO,
                "No refuse charges on this bill",
                "Your bill does not include Pikitup refuse charges.",
                "You may have a private waste removal contract, or refuse is billed separately.",
                "Verify that your waste removal arrangement is in order.",
            )]
        return []

    bins = extract_numeric_marker(bill, Marker.BIN_COUNT)
    if bins is None and isinstance(item.metadata, RefuseMetadata):
        bins = item.metadata.bins
    bins = bins or 1
    _trace(f"REFUSE bins={bins} business={is_business}")

    if is_business and bins >= BUSINESS_BIN_THRESHOLD:
        return [_make_insight(
            InsightService.REFUSE, Severity.INFO,
            f"Commercial refuse: {bins} bins",
            f"You are paying for {bins} refuse bins at {format_rand(BUSINESS_BIN_PRICE_CENTS)} each.",
            "Check that this matches the waste the property actually generates.",
            "Review your bin allocation and request fewer bins if you generate less waste.",
        )]
    return []


# ═══════════════════════════════════════════════════
# 7. WHOLE BILL
# ═══════════════════════════════════════════════════

def analyze_overall_bill(bill: ParsedBill,
                         classification: PropertyClassification) -> list[Insight]:
    """Arrears and interest on arrears."""
    insights = []
    arrears = bill.previous_balance or 0
    if arrears > ARREARS_CRITICAL_CENTS:
        insights.append(_make_insight(
            InsightService.GENERAL, Severity.CRITICAL,
            "Significant arrears on account",
            f"Your account shows {format_rand(arrears)} in previous balance.",
            "Large arrears can lead to service disconnection or legal action.",
            "Contact CoJ about a payment arrangement and apply for the Debt Relief "
            "Programme if eligible.",
        ))

    if has_marker(bill, Marker.INTEREST_ON_ARREARS):
        insights.append(_make_insight(
            InsightService.GENERAL, Severity.ATTENTION,
            "Interest being charged on arrears",
            "Your account is accruing interest on outstanding amounts.",
            "Interest compounds monthly; paying down arrears saves future interest.",
            "Prioritise paying off arrears to stop interest accumulating.",
        ))

    return insights


# ═══════════════════════════════════════════════════
# MAIN ENTRY POINT
# ═══════════════════════════════════════════════════

ANALYZERS = [
    ("Property valuation", analyze_property_valuation),
    ("Electricity", analyze_electricity),
    ("Water", analyze_water),
    ("Sewerage", analyze_sewerage),
    ("Rates", analyze_rates),
    ("Refuse", analyze_refuse),
    ("Whole bill", analyze_overall_bill),
]


def run_analyzers(bill: ParsedBill,
                  classification: PropertyClassification) -> list[Insight]:
    """Run every analyzer and return a flat list of insights.

    Analyzers are pure and independent; one failing is logged and skipped so
    the rest of the analysis still comes back.
    """
    insights = []
    for label, fn in ANALYZERS:
        try:
            results = fn(bill, classification)
            if results:
                logger.info(f"Analyzer [{label}]: {len(results)} insight(s) generated")
            insights.extend(results)
        except Exception as e:
            logger.error(f"Analyzer [{label}] failed: {e}")

    logger.info(f"Insight engine: {len(insights)} total insights generated")
    if TRACE_ENABLED:
        for i in insights:
            _trace(f"RESULT {i.service.value} severity={i.severity.value} title={i.title}")
    return insights
