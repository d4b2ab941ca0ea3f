"""Tariff calculator — applies a TariffRule's pricing to one line item.

Deterministic and pure: same rule + line item + bill in, same breakdown out.
Rates are cents per unit and may be fractional; every amount that leaves this
module is rounded to whole cents.

Two kinds of failure are distinguished so the verification engine can say
*why* a charge could not be checked:
  - MalformedTariffError: the rule itself is unusable (band without a rate,
    inverted, overlapping or gapped bands, unknown fixed-charge frequency,
    no pricing at all)
  - MissingInputError: the bill lacks what the pricing needs (no quantity,
    no kVA reading, no valuation)
"""

import logging
from dataclasses import dataclass

from munipal.config import TRACE_ENABLED, VAT_EXEMPT_SERVICES, WINTER_MONTHS
from munipal.pipeline.models import (
    Band,
    BandedPricing,
    CalculationBreakdown,
    CalculationLine,
    DemandPricing,
    ElectricityMetadata,
    FixedCharge,
    FlatRatePricing,
    LineItem,
    ParsedBill,
    RatesPricing,
    TariffRule,
    TimeOfUsePricing,
)
from munipal.pipeline.utils import billing_days

logger = logging.getLogger(__name__)


class MalformedTariffError(ValueError):
    """The stored pricing structure cannot be evaluated."""


class MissingInputError(ValueError):
    """The bill does not carry the inputs this pricing structure needs."""


@dataclass(frozen=True)
class BandedCalculation:
    amount: int
    lines: tuple[CalculationLine, ...]


def _trace(msg: str):
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


# ═══════════════════════════════════════════════════
# TIERED BANDS
# ═══════════════════════════════════════════════════

def _validated_bands(bands) -> list[Band]:
    """Sort bands and check they tile [0, ∞) with no overlap and no gap."""
    if not bands:
        raise MalformedTariffError("Banded pricing has no bands")
    ordered = sorted(bands, key=lambda b: b.min_units)
    if ordered[0].min_units != 0:
        raise MalformedTariffError(f"First band starts at {ordered[0].min_units}, not 0")
    for i, band in enumerate(ordered):
        if band.rate is None:
            raise MalformedTariffError(f"Band {i + 1} ({band.min_units}+) has no rate")
        if band.max_units is not None and band.max_units <= band.min_units:
            raise MalformedTariffError(
                f"Band {i + 1} has max {band.max_units} not above min {band.min_units}"
            )
        if band.max_units is None and i != len(ordered) - 1:
            raise MalformedTariffError(f"Band {i + 1} is unbounded but is not the last band")
        if i + 1 < len(ordered):
            following = ordered[i + 1]
            if band.max_units > following.min_units:
                raise MalformedTariffError(
                    f"Bands {i + 1} and {i + 2} overlap ({band.max_units} > {following.min_units})"
                )
            if band.max_units < following.min_units:
                raise MalformedTariffError(
                    f"Gap between bands {i + 1} and {i + 2} "
                    f"({band.max_units} to {following.min_units})"
                )
    return ordered


def compute_banded(quantity: float, bands, scale: float = 1.0) -> BandedCalculation:
    """Sum quantity-in-band × rate over ascending ``[min, max)`` bands.

    Bands must start at 0 and be contiguous.  ``scale`` multiplies the band
    limits, used to pro-rate monthly bands to the actual reading period.  A
    quantity beyond a bounded last band is rejected rather than left uncharged.
    """
    if quantity is None or quantity < 0:
        raise MissingInputError(f"Cannot band a quantity of {quantity!r}")

    ordered = _validated_bands(bands)
    top = ordered[-1].max_units
    if top is not None and quantity > top * scale:
        raise MalformedTariffError(f"Band table ends at {top * scale:g}, quantity is {quantity:g}")

    exact_total = 0.0
    lines = []
    for band in ordered:
        lower = band.min_units * scale
        upper = band.max_units * scale if band.max_units is not None else None
        if quantity <= lower:
            break
        in_band = (min(quantity, upper) if upper is not None else quantity) - lower
        if in_band <= 0:
            continue
        charge = in_band * band.rate
        exact_total += charge
        label = band.description or (
            f"{band.min_units:g}-{band.max_units:g}" if band.max_units is not None
            else f"{band.min_units:g}+"
        )
        lines.append(CalculationLine(label=label, amount=round(charge),
                                     quantity=round(in_band, 4), rate=band.rate))

    return BandedCalculation(amount=round(exact_total), lines=tuple(lines))


# ═══════════════════════════════════════════════════
# PRICING VARIANTS
# ═══════════════════════════════════════════════════

def _require_quantity(item: LineItem) -> float:
    if item.quantity is None:
        # The parser may only have captured the per-step breakdown
        if isinstance(item.metadata, ElectricityMetadata) and item.metadata.charges:
            total = sum(c.units for c in item.metadata.charges)
            _trace(f"{item.service_type.value} quantity from step charges: {total:g}")
            return total
        raise MissingInputError(f"{item.service_type.value} line has no consumption quantity")
    if item.quantity < 0:
        raise MissingInputError(f"{item.service_type.value} line has a negative quantity")
    return item.quantity


def _banded(pricing: BandedPricing, item: LineItem, bill: ParsedBill) -> list[CalculationLine]:
    quantity = _require_quantity(item)
    scale = 1.0
    if pricing.billing_period_days:
        scale = billing_days(bill) / pricing.billing_period_days
    result = compute_banded(quantity, pricing.bands, scale)
    return list(result.lines)


def _flat(pricing: FlatRatePricing, item: LineItem, bill: ParsedBill) -> list[CalculationLine]:
    if pricing.rate is None:
        raise MalformedTariffError("Flat-rate pricing has no rate")
    quantity = _require_quantity(item)
    return [CalculationLine(label=f"{quantity:g} {pricing.unit}",
                            amount=round(quantity * pricing.rate),
                            quantity=quantity, rate=pricing.rate)]


def _demand(pricing: DemandPricing, item: LineItem, bill: ParsedBill) -> list[CalculationLine]:
    if pricing.energy_rate is None or pricing.rate_per_kva is None:
        raise MalformedTariffError("Demand pricing needs both an energy rate and a kVA rate")
    quantity = _require_quantity(item)
    meta = item.metadata if isinstance(item.metadata, ElectricityMetadata) else None
    if meta is None or meta.demand_kva is None:
        raise MissingInputError("Demand tariff but no kVA demand reading on the bill")
    return [
        CalculationLine(label="Energy", amount=round(quantity * pricing.energy_rate),
                        quantity=quantity, rate=pricing.energy_rate),
        CalculationLine(label="Demand (kVA)", amount=round(meta.demand_kva * pricing.rate_per_kva),
                        quantity=meta.demand_kva, rate=pricing.rate_per_kva),
    ]


def _time_of_use(pricing: TimeOfUsePricing, item: LineItem,
                 bill: ParsedBill) -> list[CalculationLine]:
    meta = item.metadata if isinstance(item.metadata, ElectricityMetadata) else None
    if meta is None or meta.time_of_use is None:
        raise MissingInputError("Time-of-use tariff but no peak/standard/off-peak split on the bill")
    if bill.bill_date is None:
        raise MissingInputError("Time-of-use tariff needs the bill date to pick the season")

    winter = bill.bill_date.month in WINTER_MONTHS
    rates = pricing.winter if winter else pricing.summer
    season = "winter" if winter else "summer"
    if rates is None:
        raise MalformedTariffError(f"Time-of-use pricing has no {season} rates")

    usage = meta.time_of_use
    return [
        CalculationLine(label=f"Peak ({season})", amount=round(usage.peak * rates.peak),
                        quantity=usage.peak, rate=rates.peak),
        CalculationLine(label=f"Standard ({season})", amount=round(usage.standard * rates.standard),
                        quantity=usage.standard, rate=rates.standard),
        CalculationLine(label=f"Off-peak ({season})", amount=round(usage.off_peak * rates.off_peak),
                        quantity=usage.off_peak, rate=rates.off_peak),
    ]


def _rates(pricing: RatesPricing, item: LineItem, bill: ParsedBill) -> list[CalculationLine]:
    if pricing.rate_in_rand is None:
        raise MalformedTariffError("Rates pricing has no rate in the rand")
    valuation = bill.municipal_valuation
    if not valuation:
        raise MissingInputError("Property valuation is not on the bill")

    threshold = sum(r.amount for r in pricing.rebates if r.type == "threshold")
    assessable = max(0, valuation - threshold)
    annual = assessable * pricing.rate_in_rand
    for rebate in pricing.rebates:
        if rebate.type == "percentage":
            annual *= 1 - rebate.amount / 100
        elif rebate.type == "fixed":
            annual -= rebate.amount
        elif rebate.type != "threshold":
            raise MalformedTariffError(f"Unknown rebate type {rebate.type!r}")
    annual = max(0.0, annual)

    return [CalculationLine(label="Property rates (annual / 12)", amount=round(annual / 12),
                            quantity=assessable, rate=pricing.rate_in_rand)]


_CALCULATORS = {
    BandedPricing: _banded,
    FlatRatePricing: _flat,
    DemandPricing: _demand,
    TimeOfUsePricing: _time_of_use,
    RatesPricing: _rates,
}


def _fixed_charge_line(charge: FixedCharge, days: int) -> CalculationLine:
    if charge.frequency == "monthly":
        amount, quantity = charge.amount, 1
    elif charge.frequency == "daily":
        amount, quantity = charge.amount * days, days
    elif charge.frequency == "annual":
        amount, quantity = charge.amount / 12, 1 / 12
    else:
        raise MalformedTariffError(
            f"Fixed charge {charge.name!r} has unknown frequency {charge.frequency!r}"
        )
    return CalculationLine(label=charge.name, amount=round(amount),
                           quantity=quantity, rate=charge.amount)


def vat_fraction(rule: TariffRule) -> float:
    """VAT rate as a fraction; stored rules use either 0.15 or 15."""
    rate = rule.vat_rate or 0.0
    return rate / 100 if rate > 1 else rate


# ═══════════════════════════════════════════════════
# MAIN ENTRY POINT
# ═══════════════════════════════════════════════════

def calculate_expected_charge(rule: TariffRule, item: LineItem,
                              bill: ParsedBill) -> CalculationBreakdown:
    """Expected billed amount for ``item`` under ``rule``.

    Raises MalformedTariffError / MissingInputError; callers convert those
    into CANNOT_VERIFY findings.
    """
    pricing = rule.pricing
    calculator = _CALCULATORS.get(type(pricing))
    if calculator is None:
        raise MalformedTariffError(f"Rule {rule.id} has no usable pricing structure")

    lines = calculator(pricing, item, bill)
    if pricing.fixed_charges:
        days = billing_days(bill)
        lines.extend(_fixed_charge_line(c, days) for c in pricing.fixed_charges)

    subtotal = sum(line.amount for line in lines)
    vat_rate = 0.0 if item.service_type.value in VAT_EXEMPT_SERVICES else vat_fraction(rule)
    vat_amount = round(subtotal * vat_rate) if vat_rate > 0 and not rule.vat_inclusive else 0

    _trace(f"CALC rule={rule.id} kind={pricing.kind} lines={len(lines)} "
           f"subtotal={subtotal} vat={vat_amount}")
    return CalculationBreakdown(
        lines=tuple(lines),
        subtotal=subtotal,
        vat_amount=vat_amount,
        total=subtotal + vat_amount,
        tariff_rule_id=rule.id,
        financial_year=rule.financial_year,
        customer_category=rule.customer_category,
        vat_rate=vat_rate,
    )
