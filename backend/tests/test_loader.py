"""Tests for backend/munipal/pipeline/loader.py — JSON boundary → dataclasses.

Covers:
  - bill_from_dict: camelCase / snake_case keys, typed metadata per service
  - BillContractError on wrong-typed fields
  - pricing_from_dict: tagged and legacy pricing shapes
  - tariff_rule_from_dict: required identity fields, unusable pricing → None
"""

from datetime import date

import pytest

from munipal.pipeline.loader import (
    BillContractError,
    TariffRuleError,
    bill_from_dict,
    line_item_from_dict,
    pricing_from_dict,
    tariff_rule_from_dict,
)
from munipal.pipeline.models import (
    BandedPricing,
    DemandPricing,
    ElectricityMetadata,
    FlatRatePricing,
    GenericMetadata,
    RatesMetadata,
    RatesPricing,
    RefuseMetadata,
    ServiceType,
    SewerageMetadata,
    TimeOfUsePricing,
    WaterMetadata,
)
from munipal.pipeline.tariff_calculator import MalformedTariffError

from conftest import electricity_rule_row, rates_rule_row, water_rule_row


def _bill_payload(**overrides) -> dict:
    payload = {
        "accountNumber": "5001234567",
        "billDate": "2025-08-15",
        "currentCharges": 158125,
        "propertyInfo": {"units": 2, "municipalValuation": 150_000_000},
        "lineItems": [
            {
                "serviceType": "electricity",
                "amount": 158125,
                "quantity": 450,
                "metadata": {"meters": [{"consumption": 450, "type": "Estimated", "meterNumber": "M1"}]},
            },
        ],
    }
    payload.update(overrides)
    return payload


# ═══════════════════════════════════════════════════
# 1. Bills
# ═══════════════════════════════════════════════════

class TestBillFromDict:

    def test_camel_case(self):
        bill = bill_from_dict(_bill_payload())
        assert bill.account_number == "5001234567"
        assert bill.bill_date == date(2025, 8, 15)
        assert bill.units == 2
        assert bill.municipal_valuation == 150_000_000
        item = bill.line_items[0]
        assert item.service_type == ServiceType.ELECTRICITY
        assert isinstance(item.metadata, ElectricityMetadata)
        assert item.metadata.meters[0].is_estimated
        assert item.metadata.meters[0].meter_number == "M1"

    def test_snake_case(self):
        bill = bill_from_dict({
            "account_number": 42,
            "previous_balance": 100,
            "line_items": [{"service_type": "WATER", "amount": 5000, "quantity": 0}],
        })
        assert bill.account_number == "42"
        assert bill.previous_balance == 100
        assert bill.line_items[0].service_type == ServiceType.WATER

    def test_whole_float_cents_accepted(self):
        bill = bill_from_dict(_bill_payload(currentCharges=158125.0))
        assert bill.current_charges == 158125
        assert isinstance(bill.current_charges, int)

    def test_datetime_string_trimmed_to_date(self):
        assert bill_from_dict(_bill_payload(billDate="2025-08-15T10:00:00Z")).bill_date == date(2025, 8, 15)

    def test_empty_payload(self):
        bill = bill_from_dict({})
        assert bill.line_items == ()
        assert bill.raw_text == ""

    @pytest.mark.parametrize("service, meta, expected", [
        ("water", {"meters": []}, WaterMetadata),
        ("sewerage", {"method": "stand_size"}, SewerageMetadata),
        ("rates", {"rateUsed": 0.0095447}, RatesMetadata),
        ("refuse", {"bins": 6}, RefuseMetadata),
        ("sundry", {"reference": "X1"}, GenericMetadata),
    ])
    def test_metadata_variant(self, service, meta, expected):
        item = line_item_from_dict({"serviceType": service, "amount": 100, "metadata": meta})
        assert isinstance(item.metadata, expected)

    def test_time_of_use_split(self):
        item = line_item_from_dict({
            "serviceType": "electricity", "amount": 100,
            "metadata": {"demandKva": 40, "timeOfUse": {"peak": 10, "standard": 20, "offPeak": 30}},
        })
        assert item.metadata.demand_kva == 40
        assert item.metadata.time_of_use.off_peak == 30

    def test_step_charges(self):
        item = line_item_from_dict({
            "serviceType": "electricity", "amount": 100,
            "metadata": {"charges": [
                {"step": 1, "kWh": 350, "rate": 2.5},
                {"units": 100, "rate": 3.0},
            ]},
        })
        assert [(c.step, c.units) for c in item.metadata.charges] == [(1, 350), (2, 100)]


class TestBillContract:

    @pytest.mark.parametrize("payload", [
        [],
        {"lineItems": "not-a-list"},
        {"lineItems": [{"serviceType": "electricity", "amount": "158.12"}]},
        {"lineItems": [{"serviceType": "electricity", "amount": 158.12}]},
        {"lineItems": [{"serviceType": "electricity"}]},
        {"lineItems": [{"serviceType": "gas", "amount": 100}]},
        {"lineItems": [{"serviceType": "water", "amount": 100, "quantity": "12"}]},
        {"lineItems": [{"serviceType": "refuse", "amount": 100, "metadata": {"bins": 2.5}}]},
        {"lineItems": [{"serviceType": "electricity", "amount": True}]},
        {"billDate": "15/08/2025"},
        {"propertyInfo": "12 Rissik St"},
        {"rawText": 123},
    ], ids=[
        "not-object", "items-not-list", "string-amount", "fractional-cents", "no-amount",
        "unknown-service", "string-quantity", "fractional-bins", "boolean-amount",
        "bad-date", "property-not-object", "raw-text-not-string",
    ])
    def test_rejected(self, payload):
        with pytest.raises(BillContractError):
            bill_from_dict(payload)


# ═══════════════════════════════════════════════════
# 2. Pricing structures
# ═══════════════════════════════════════════════════

class TestPricingFromDict:

    def test_tagged_banded(self):
        pricing = pricing_from_dict(electricity_rule_row()["pricing"])
        assert isinstance(pricing, BandedPricing)
        assert pricing.bands[-1].max_units is None
        assert pricing.fixed_charges[0].amount == 20000

    def test_legacy_water_bands(self):
        pricing = pricing_from_dict(water_rule_row()["pricingStructure"])
        assert isinstance(pricing, BandedPricing)
        assert pricing.unit == "kL"
        assert [b.rate for b in pricing.bands] == [0, 2900, 3300, 4000]

    def test_legacy_electricity_bands(self):
        pricing = pricing_from_dict({
            "energyCharges": {"bands": [
                {"minKwh": 0, "maxKwh": 500, "ratePerKwh": 250},
                {"minKwh": 500, "maxKwh": None, "ratePerKwh": 300},
            ]},
        })
        assert isinstance(pricing, BandedPricing)
        assert pricing.unit == "kWh"
        assert pricing.bands[1].min_units == 500

    def test_legacy_time_of_use(self):
        pricing = pricing_from_dict({"energyCharges": {
            "summer": {"peak": 200, "standard": 120, "offPeak": 60},
            "winter": {"peak": 300, "standard": 150, "offPeak": 80},
        }})
        assert isinstance(pricing, TimeOfUsePricing)
        assert pricing.winter.off_peak == 80

    def test_legacy_demand(self):
        pricing = pricing_from_dict({"energyCharges": {"flatRate": 100},
                                     "demandCharges": {"ratePerKva": 5000}})
        assert isinstance(pricing, DemandPricing)

    def test_legacy_flat(self):
        assert isinstance(pricing_from_dict({"energyCharges": {"flatRate": 180}}), FlatRatePricing)

    def test_legacy_rates_rebate_in_rand(self):
        pricing = pricing_from_dict({
            "rateInRand": 0.0095447,
            "rebates": [{"name": "Residential", "type": "threshold", "amount": 300_000}],
        })
        assert isinstance(pricing, RatesPricing)
        assert pricing.rebates[0].amount == 30_000_000

    def test_percentage_rebate_not_scaled(self):
        pricing = pricing_from_dict({"rateInRand": 0.01,
                                     "rebates": [{"type": "percentage", "amount": 10}]})
        assert pricing.rebates[0].amount == 10

    @pytest.mark.parametrize("raw", [
        None,
        {},
        {"type": "sliding"},
        {"type": "banded", "bands": []},
        {"type": "banded", "bands": [{"minUnits": 0, "rate": "cheap"}]},
        {"type": "time_of_use", "summer": {"peak": 1, "standard": 2}},
    ], ids=["none", "empty", "unknown-type", "no-bands", "string-rate", "partial-season"])
    def test_unusable(self, raw):
        with pytest.raises(MalformedTariffError):
            pricing_from_dict(raw)


# ═══════════════════════════════════════════════════
# 3. Tariff rules
# ═══════════════════════════════════════════════════

class TestTariffRuleFromDict:

    def test_fixture_row(self):
        rule = tariff_rule_from_dict(electricity_rule_row())
        assert rule.id == "rule-elec-res-2526"
        assert rule.service_type == ServiceType.ELECTRICITY
        assert rule.effective_date == date(2025, 7, 1)
        assert rule.extraction_confidence == 95
        assert rule.is_verified is True
        assert rule.is_active is True
        assert rule.source_table_reference == "Table A.1"

    def test_confidence_alias(self):
        row = water_rule_row(confidence=60)
        del row["extractionConfidence"]
        rule = tariff_rule_from_dict(row)
        assert rule.extraction_confidence == 60

    def test_snake_case_row(self):
        rule = tariff_rule_from_dict({
            "id": "r1", "provider": "coj", "service_type": "rates",
            "customer_category": "business", "financial_year": "2025/26",
            "effective_date": "2025-07-01", "is_active": False,
            "pricing": {"type": "rates", "rate_in_rand": 0.023862},
        })
        assert rule.is_active is False
        assert rule.pricing.rate_in_rand == 0.023862

    def test_unusable_pricing_still_loads(self):
        rule = tariff_rule_from_dict(rates_rule_row(pricing={"type": "mystery"}))
        assert rule.pricing is None

    @pytest.mark.parametrize("missing", ["id", "provider", "serviceType", "financialYear", "effectiveDate"])
    def test_missing_identity(self, missing):
        row = electricity_rule_row()
        del row[missing]
        with pytest.raises(TariffRuleError):
            tariff_rule_from_dict(row)

    def test_bad_effective_date(self):
        with pytest.raises(TariffRuleError):
            tariff_rule_from_dict(electricity_rule_row(effectiveDate="July 2025"))

    def test_unknown_service(self):
        with pytest.raises(TariffRuleError):
            tariff_rule_from_dict(electricity_rule_row(serviceType="gas"))
