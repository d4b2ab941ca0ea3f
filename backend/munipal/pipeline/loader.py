"""Boundary conversion: JSON-shaped dicts → bill and tariff dataclasses.

Everything that crosses into the engine goes through here.  Keys may be
camelCase (as the PDF parser and the tariff admin export them) or
snake_case.  Type violations fail fast with BillContractError /
TariffRuleError so the analyzers never see a wrong-typed field.

Pricing structures come in two shapes:
  - tagged:  {"type": "banded", "bands": [...], "fixedCharges": [...]}
  - legacy:  {"energyCharges": {"bands": [...]}}, {"consumptionCharges": ...},
             {"rateInRand": ..., "rebates": [...]} as stored by older extractions
"""

import logging
import re
from datetime import date, datetime
from typing import Any

from munipal.pipeline.models import (
    Band,
    BandedPricing,
    DemandPricing,
    ElectricityMetadata,
    FixedCharge,
    FlatRatePricing,
    GenericMetadata,
    LineItem,
    MeterReading,
    ParsedBill,
    PropertyInfo,
    RatesMetadata,
    RatesPricing,
    Rebate,
    RefuseMetadata,
    ServiceType,
    SewerageMetadata,
    StepCharge,
    TariffRule,
    TimeOfUseConsumption,
    TimeOfUsePricing,
    TouRates,
    WaterMetadata,
)
from munipal.pipeline.tariff_calculator import MalformedTariffError

logger = logging.getLogger(__name__)


class BillContractError(ValueError):
    """A bill payload does not satisfy the ParsedBill contract."""


class TariffRuleError(ValueError):
    """A tariff rule payload is missing identity fields or has wrong types."""


_CAMEL_RE = re.compile(r'_([a-z])')


def _camel(key: str) -> str:
    return _CAMEL_RE.sub(lambda m: m.group(1).upper(), key)


def _get(data: dict, key: str, default: Any = None) -> Any:
    """Read a snake_case key, falling back to its camelCase spelling."""
    if key in data:
        return data[key]
    return data.get(_camel(key), default)


# ═══════════════════════════════════════════════════
# FIELD COERCION
# ═══════════════════════════════════════════════════

def _cents(value: Any, name: str, error=BillContractError) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise error(f"{name} must be integer cents, got a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise error(f"{name} must be integer cents, got {value!r}")


def _number(value: Any, name: str, error=BillContractError) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise error(f"{name} must be a number, got {value!r}")
    return value


def _int(value: Any, name: str, error=BillContractError) -> int | None:
    number = _number(value, name, error)
    if number is None:
        return None
    if isinstance(number, float) and not number.is_integer():
        raise error(f"{name} must be a whole number, got {value!r}")
    return int(number)


def _date(value: Any, name: str, error=BillContractError) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass
    raise error(f"{name} must be an ISO date, got {value!r}")


def _str(value: Any, name: str, error=BillContractError) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise error(f"{name} must be a string, got {value!r}")
    return value


def _service_type(value: Any, error=BillContractError) -> ServiceType:
    if isinstance(value, ServiceType):
        return value
    try:
        return ServiceType(str(value).strip().lower())
    except ValueError:
        raise error(f"Unknown service type {value!r}") from None


# ═══════════════════════════════════════════════════
# BILL
# ═══════════════════════════════════════════════════

def _meters(raw: Any) -> tuple[MeterReading, ...]:
    if not raw:
        return ()
    if not isinstance(raw, list):
        raise BillContractError("metadata.meters must be a list")
    meters = []
    for m in raw:
        if not isinstance(m, dict):
            raise BillContractError("Each meter reading must be an object")
        meters.append(MeterReading(
            consumption=_number(_get(m, "consumption"), "meter.consumption"),
            type=_str(_get(m, "type"), "meter.type") or "",
            meter_number=str(_get(m, "meter_number") or ""),
        ))
    return tuple(meters)


def _step_charges(raw: Any) -> tuple[StepCharge, ...]:
    if not raw:
        return ()
    if not isinstance(raw, list) or not all(isinstance(c, dict) for c in raw):
        raise BillContractError("metadata.charges must be a list of objects")
    return tuple(
        StepCharge(step=_int(_get(c, "step"), "charge.step") or i + 1,
                   units=_number(_get(c, "units", c.get("kWh")), "charge.units") or 0,
                   rate=_number(_get(c, "rate"), "charge.rate") or 0)
        for i, c in enumerate(raw)
    )


def metadata_from_dict(service_type: ServiceType, raw: Any):
    """Pick the typed metadata variant for a service."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise BillContractError("Line item metadata must be an object")

    if service_type == ServiceType.ELECTRICITY:
        tou = _get(raw, "time_of_use")
        return ElectricityMetadata(
            meters=_meters(_get(raw, "meters")),
            charges=_step_charges(_get(raw, "charges")),
            demand_kva=_number(_get(raw, "demand_kva"), "metadata.demandKva"),
            time_of_use=TimeOfUseConsumption(
                peak=_number(_get(tou, "peak"), "timeOfUse.peak") or 0,
                standard=_number(_get(tou, "standard"), "timeOfUse.standard") or 0,
                off_peak=_number(_get(tou, "off_peak"), "timeOfUse.offPeak") or 0,
            ) if isinstance(tou, dict) else None,
        )
    if service_type == ServiceType.WATER:
        return WaterMetadata(meters=_meters(_get(raw, "meters")))
    if service_type == ServiceType.SEWERAGE:
        return SewerageMetadata(method=_str(_get(raw, "method"), "metadata.method"))
    if service_type == ServiceType.RATES:
        return RatesMetadata(rate_used=_number(_get(raw, "rate_used"), "metadata.rateUsed"))
    if service_type == ServiceType.REFUSE:
        return RefuseMetadata(bins=_int(_get(raw, "bins"), "metadata.bins"))
    return GenericMetadata(values=dict(raw))


def line_item_from_dict(raw: Any) -> LineItem:
    if not isinstance(raw, dict):
        raise BillContractError("Each line item must be an object")
    service_type = _service_type(_get(raw, "service_type"))
    amount = _cents(_get(raw, "amount"), "lineItem.amount")
    if amount is None:
        raise BillContractError("lineItem.amount is required")
    return LineItem(
        service_type=service_type,
        amount=amount,
        description=_str(_get(raw, "description"), "lineItem.description") or "",
        quantity=_number(_get(raw, "quantity"), "lineItem.quantity"),
        unit_price=_number(_get(raw, "unit_price"), "lineItem.unitPrice"),
        tariff_code=_str(_get(raw, "tariff_code"), "lineItem.tariffCode"),
        is_estimated=bool(_get(raw, "is_estimated", False)),
        metadata=metadata_from_dict(service_type, _get(raw, "metadata")),
    )


def bill_from_dict(payload: Any) -> ParsedBill:
    """Build a ParsedBill from the parser's JSON output."""
    if not isinstance(payload, dict):
        raise BillContractError("Bill payload must be an object")

    raw_items = _get(payload, "line_items") or []
    if not isinstance(raw_items, list):
        raise BillContractError("lineItems must be a list")

    prop = _get(payload, "property_info")
    property_info = None
    if prop is not None:
        if not isinstance(prop, dict):
            raise BillContractError("propertyInfo must be an object")
        property_info = PropertyInfo(
            address=_str(_get(prop, "address"), "propertyInfo.address"),
            stand_size=_number(_get(prop, "stand_size"), "propertyInfo.standSize"),
            units=_int(_get(prop, "units"), "propertyInfo.units"),
            property_type=_str(_get(prop, "property_type"), "propertyInfo.propertyType"),
            municipal_valuation=_cents(_get(prop, "municipal_valuation"),
                                       "propertyInfo.municipalValuation"),
        )

    raw_text = _get(payload, "raw_text") or ""
    if not isinstance(raw_text, str):
        raise BillContractError("rawText must be a string")

    account = _get(payload, "account_number")
    return ParsedBill(
        line_items=tuple(line_item_from_dict(i) for i in raw_items),
        raw_text=raw_text,
        account_number=str(account) if account is not None else None,
        bill_date=_date(_get(payload, "bill_date"), "billDate"),
        due_date=_date(_get(payload, "due_date"), "dueDate"),
        period_start=_date(_get(payload, "period_start"), "periodStart"),
        period_end=_date(_get(payload, "period_end"), "periodEnd"),
        billing_days=_int(_get(payload, "billing_days"), "billingDays"),
        total_due=_cents(_get(payload, "total_due"), "totalDue"),
        previous_balance=_cents(_get(payload, "previous_balance"), "previousBalance"),
        current_charges=_cents(_get(payload, "current_charges"), "currentCharges"),
        vat_amount=_cents(_get(payload, "vat_amount"), "vatAmount"),
        property_info=property_info,
    )


# ═══════════════════════════════════════════════════
# PRICING STRUCTURES
# ═══════════════════════════════════════════════════

def _p_number(value: Any, name: str) -> float | None:
    return _number(value, name, MalformedTariffError)


def _fixed_charges(raw: Any) -> tuple[FixedCharge, ...]:
    if not raw:
        return ()
    if not isinstance(raw, list):
        raise MalformedTariffError("fixedCharges must be a list")
    charges = []
    for c in raw:
        if not isinstance(c, dict):
            raise MalformedTariffError("Each fixed charge must be an object")
        amount = _p_number(_get(c, "amount"), "fixedCharge.amount")
        if amount is None:
            raise MalformedTariffError(f"Fixed charge {_get(c, 'name')!r} has no amount")
        charges.append(FixedCharge(
            name=str(_get(c, "name") or "Fixed charge"),
            amount=amount,
            frequency=str(_get(c, "frequency") or "monthly"),
        ))
    return tuple(charges)


def _bands(raw: Any, unit: str = "") -> tuple[Band, ...]:
    """Bands in the tagged form (minUnits/maxUnits/rate) or legacy
    per-unit spellings (minKwh/ratePerKwh, minKl/ratePerKl)."""
    if not isinstance(raw, list) or not raw:
        raise MalformedTariffError("Banded pricing needs a non-empty bands list")
    suffix = unit.capitalize()
    bands = []
    for b in raw:
        if not isinstance(b, dict):
            raise MalformedTariffError("Each band must be an object")
        lower = _get(b, "min_units", b.get(f"min{suffix}"))
        upper = _get(b, "max_units", b.get(f"max{suffix}"))
        rate = _get(b, "rate", b.get(f"ratePer{suffix}"))
        bands.append(Band(
            min_units=_p_number(lower, "band.min") or 0,
            max_units=_p_number(upper, "band.max"),
            rate=_p_number(rate, "band.rate"),
            description=str(_get(b, "description") or ""),
        ))
    return tuple(bands)


def _tou_rates(raw: Any) -> TouRates | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise MalformedTariffError("Time-of-use season must be an object")
    values = [_p_number(_get(raw, k), f"timeOfUse.{k}") for k in ("peak", "standard", "off_peak")]
    if any(v is None for v in values):
        raise MalformedTariffError("Time-of-use season needs peak, standard and off-peak rates")
    return TouRates(*values)


def _rebates(raw: Any, scale: float = 1) -> tuple[Rebate, ...]:
    rebates = []
    for r in raw or []:
        if not isinstance(r, dict):
            raise MalformedTariffError("Each rebate must be an object")
        amount = _p_number(_get(r, "amount"), "rebate.amount") or 0
        kind = str(_get(r, "type") or "threshold")
        if kind in ("threshold", "fixed"):
            amount = amount * scale
        rebates.append(Rebate(name=str(_get(r, "name") or kind), type=kind, amount=amount))
    return tuple(rebates)


def _tagged_pricing(kind: str, raw: dict):
    fixed = _fixed_charges(_get(raw, "fixed_charges"))
    if kind == "banded":
        return BandedPricing(
            bands=_bands(_get(raw, "bands")),
            unit=str(_get(raw, "unit") or "units"),
            billing_period_days=_int(_get(raw, "billing_period_days"), "billingPeriodDays",
                                     MalformedTariffError),
            fixed_charges=fixed,
        )
    if kind == "flat_rate":
        return FlatRatePricing(rate=_p_number(_get(raw, "rate"), "rate"),
                               unit=str(_get(raw, "unit") or "units"), fixed_charges=fixed)
    if kind == "demand":
        return DemandPricing(energy_rate=_p_number(_get(raw, "energy_rate"), "energyRate"),
                             rate_per_kva=_p_number(_get(raw, "rate_per_kva"), "ratePerKva"),
                             fixed_charges=fixed)
    if kind == "time_of_use":
        return TimeOfUsePricing(summer=_tou_rates(_get(raw, "summer")),
                                winter=_tou_rates(_get(raw, "winter")), fixed_charges=fixed)
    if kind == "rates":
        return RatesPricing(rate_in_rand=_p_number(_get(raw, "rate_in_rand"), "rateInRand"),
                            rebates=_rebates(_get(raw, "rebates")), fixed_charges=fixed)
    raise MalformedTariffError(f"Unknown pricing type {kind!r}")


def _legacy_pricing(raw: dict):
    fixed = _fixed_charges(_get(raw, "fixed_charges"))
    energy = raw.get("energyCharges")
    if isinstance(energy, dict):
        if energy.get("bands"):
            return BandedPricing(
                bands=_bands(energy["bands"], "kwh"),
                unit="kWh",
                billing_period_days=_int(energy.get("billingPeriodDays"), "billingPeriodDays",
                                         MalformedTariffError),
                fixed_charges=fixed,
            )
        if energy.get("summer") or energy.get("winter"):
            return TimeOfUsePricing(summer=_tou_rates(energy.get("summer")),
                                    winter=_tou_rates(energy.get("winter")), fixed_charges=fixed)
        demand = raw.get("demandCharges")
        if isinstance(demand, dict) and demand.get("ratePerKva") is not None:
            return DemandPricing(energy_rate=_p_number(energy.get("flatRate"), "flatRate"),
                                 rate_per_kva=_p_number(demand.get("ratePerKva"), "ratePerKva"),
                                 fixed_charges=fixed)
        if energy.get("flatRate") is not None:
            return FlatRatePricing(rate=_p_number(energy["flatRate"], "flatRate"),
                                   unit="kWh", fixed_charges=fixed)
    consumption = raw.get("consumptionCharges")
    if isinstance(consumption, dict) and consumption.get("bands"):
        return BandedPricing(bands=_bands(consumption["bands"], "kl"), unit="kL",
                             fixed_charges=fixed)
    if "rateInRand" in raw:
        # Legacy rebates are quoted in rand of property value
        return RatesPricing(rate_in_rand=_p_number(raw["rateInRand"], "rateInRand"),
                            rebates=_rebates(raw.get("rebates"), scale=100),
                            fixed_charges=fixed)
    raise MalformedTariffError("Unrecognised pricing structure")


def pricing_from_dict(raw: Any):
    """Parse a stored pricing structure into its typed variant.

    Raises MalformedTariffError when the structure cannot be understood.
    """
    if not isinstance(raw, dict):
        raise MalformedTariffError("Pricing structure must be an object")
    kind = raw.get("type") or raw.get("kind")
    if kind:
        return _tagged_pricing(str(kind), raw)
    return _legacy_pricing(raw)


# ═══════════════════════════════════════════════════
# TARIFF RULE
# ═══════════════════════════════════════════════════

_REQUIRED_RULE_FIELDS = ("id", "provider", "service_type", "customer_category",
                         "financial_year", "effective_date")


def tariff_rule_from_dict(raw: Any) -> TariffRule:
    """Build a TariffRule from a knowledge-base export row.

    A rule whose pricing cannot be parsed still loads (with ``pricing=None``)
    so verification can report it as unusable instead of silently missing.
    """
    if not isinstance(raw, dict):
        raise TariffRuleError("Tariff rule must be an object")
    missing = [f for f in _REQUIRED_RULE_FIELDS if _get(raw, f) in (None, "")]
    if missing:
        raise TariffRuleError(f"Tariff rule {raw.get('id')!r} is missing {', '.join(missing)}")

    rule_id = str(_get(raw, "id"))
    pricing_raw = _get(raw, "pricing", raw.get("pricingStructure"))
    try:
        pricing = pricing_from_dict(pricing_raw)
    except MalformedTariffError as e:
        logger.warning(f"Tariff rule {rule_id}: unusable pricing structure ({e})")
        pricing = None

    confidence = _get(raw, "extraction_confidence", raw.get("confidence"))
    return TariffRule(
        id=rule_id,
        provider=str(_get(raw, "provider")),
        service_type=_service_type(_get(raw, "service_type"), TariffRuleError),
        customer_category=str(_get(raw, "customer_category")),
        financial_year=str(_get(raw, "financial_year")),
        effective_date=_date(_get(raw, "effective_date"), "effectiveDate", TariffRuleError),
        pricing=pricing,
        tariff_code=str(_get(raw, "tariff_code") or ""),
        description=str(_get(raw, "description") or ""),
        knowledge_document_id=_get(raw, "knowledge_document_id"),
        expiry_date=_date(_get(raw, "expiry_date"), "expiryDate", TariffRuleError),
        vat_rate=_number(_get(raw, "vat_rate"), "vatRate", TariffRuleError) or 0.0,
        vat_inclusive=bool(_get(raw, "vat_inclusive", False)),
        source_excerpt=str(_get(raw, "source_excerpt") or ""),
        source_page_number=_int(_get(raw, "source_page_number"), "sourcePageNumber", TariffRuleError),
        source_table_reference=_get(raw, "source_table_reference"),
        extraction_confidence=_number(confidence, "extractionConfidence", TariffRuleError),
        is_verified=bool(_get(raw, "is_verified", False)),
        is_active=bool(_get(raw, "is_active", True)),
    )
