"""Shared fixtures for the MUNIPAL bill-analysis test suite."""

from datetime import date

import pytest

from munipal.pipeline.knowledge_store import InMemoryTariffStore
from munipal.pipeline.loader import tariff_rule_from_dict
from munipal.pipeline.models import (
    ElectricityMetadata,
    LineItem,
    MeterReading,
    ParsedBill,
    PropertyInfo,
    RatesMetadata,
    RefuseMetadata,
    ServiceType,
)


BILL_DATE = date(2025, 8, 15)     # FY 2025/26


# ═══════════════════════════════════════════════════
# Tariff rule rows (shaped like the knowledge-base export)
# ═══════════════════════════════════════════════════

def electricity_rule_row(**overrides) -> dict:
    """City Power residential: 0-350 @ 250c, 350-500 @ 300c, 500+ @ 350c, R200 network, 15% VAT.

    450 kWh → 87 500 + 30 000 + 20 000 = 137 500 + VAT 20 625 = 158 125 cents.
    """
    row = {
        "id": "rule-elec-res-2526",
        "knowledgeDocumentId": "doc-city-power-2526",
        "provider": "city_power",
        "serviceType": "electricity",
        "tariffCode": "RES_CONVENTIONAL",
        "customerCategory": "residential",
        "financialYear": "2025/26",
        "effectiveDate": "2025-07-01",
        "vatRate": 0.15,
        "vatInclusive": False,
        "sourceExcerpt": "A.1 Residential conventional: Block 1 (0-350 kWh) 250.00c/kWh ...",
        "sourcePageNumber": 12,
        "sourceTableReference": "Table A.1",
        "extractionConfidence": 95,
        "isVerified": True,
        "pricing": {
            "type": "banded",
            "unit": "kWh",
            "bands": [
                {"minUnits": 0, "maxUnits": 350, "rate": 250.0, "description": "Block 1"},
                {"minUnits": 350, "maxUnits": 500, "rate": 300.0, "description": "Block 2"},
                {"minUnits": 500, "maxUnits": None, "rate": 350.0, "description": "Block 3"},
            ],
            "fixedCharges": [
                {"name": "Network charge", "amount": 20000, "frequency": "monthly"},
            ],
        },
    }
    row.update(overrides)
    return row


def water_rule_row(**overrides) -> dict:
    """Joburg Water residential: 0-6 free, 6-10 @ 2900c, 10-15 @ 3300c, 15+ @ 4000c, R50 levy.

    12 kL → 11 600 + 6 600 + 5 000 = 23 200 + VAT 3 480 = 26 680 cents.
    """
    row = {
        "id": "rule-water-res-2526",
        "knowledgeDocumentId": "doc-joburg-water-2526",
        "provider": "joburg_water",
        "serviceType": "water",
        "tariffCode": "WATER_RES",
        "customerCategory": "residential",
        "financialYear": "2025/26",
        "effectiveDate": "2025-07-01",
        "vatRate": 15,
        "sourceExcerpt": "Residential water step tariff 2025/26",
        "extractionConfidence": 90,
        "isVerified": True,
        "pricingStructure": {
            "consumptionCharges": {
                "bands": [
                    {"minKl": 0, "maxKl": 6, "ratePerKl": 0, "description": "Free basic water"},
                    {"minKl": 6, "maxKl": 10, "ratePerKl": 2900, "description": "Step 2"},
                    {"minKl": 10, "maxKl": 15, "ratePerKl": 3300, "description": "Step 3"},
                    {"minKl": 15, "maxKl": None, "ratePerKl": 4000, "description": "Step 4"},
                ],
            },
            "fixedCharges": [{"name": "Demand levy", "amount": 5000, "frequency": "monthly"}],
        },
    }
    row.update(overrides)
    return row


def rates_rule_row(**overrides) -> dict:
    """CoJ residential rates 0.0095447 with the R300,000 threshold rebate.

    R1.5m valuation → (150 000 000 − 30 000 000) × 0.0095447 / 12 = 95 447 cents.
    """
    row = {
        "id": "rule-rates-res-2526",
        "knowledgeDocumentId": "doc-coj-rates-2526",
        "provider": "coj",
        "serviceType": "rates",
        "tariffCode": "RATES_RES",
        "customerCategory": "residential",
        "financialYear": "2025/26",
        "effectiveDate": "2025-07-01",
        "sourceExcerpt": "Residential rate in the rand 0.0095447; first R300 000 exempt",
        "isVerified": True,
        "pricing": {
            "type": "rates",
            "rateInRand": 0.0095447,
            "rebates": [{"name": "Residential exemption", "type": "threshold", "amount": 30_000_000}],
        },
    }
    row.update(overrides)
    return row


@pytest.fixture
def electricity_rule():
    return tariff_rule_from_dict(electricity_rule_row())


@pytest.fixture
def tariff_store():
    """Store holding the residential electricity, water and rates rules for FY 2025/26."""
    return InMemoryTariffStore.from_dicts([
        electricity_rule_row(),
        water_rule_row(),
        rates_rule_row(),
    ])


# ═══════════════════════════════════════════════════
# Bills
# ═══════════════════════════════════════════════════

@pytest.fixture
def residential_bill():
    """Residential bill whose charges all match the fixture tariffs exactly."""
    return ParsedBill(
        account_number="5001234567",
        bill_date=BILL_DATE,
        raw_text=(
            "PROPERTY RATES RESIDENTIAL\n"
            "Less rates on first R300 000 of valuation\n"
            "Reading period 2025/07/10 - 2025/08/09 = 30 days\n"
        ),
        current_charges=280_252,
        vat_amount=24_105,
        property_info=PropertyInfo(address="12 Rissik Street", units=1,
                                   municipal_valuation=150_000_000),
        line_items=(
            LineItem(ServiceType.ELECTRICITY, 158_125, "Electricity", quantity=450,
                     metadata=ElectricityMetadata(meters=(MeterReading(450, "Actual"),))),
            LineItem(ServiceType.WATER, 26_680, "Water", quantity=12),
            LineItem(ServiceType.RATES, 95_447, "Property Rates",
                     metadata=RatesMetadata(rate_used=0.0095447)),
        ),
    )


@pytest.fixture
def business_bill():
    """Business property with arrears, interest, two meters and a 6-bin refuse service."""
    return ParsedBill(
        account_number="5009876543",
        bill_date=BILL_DATE,
        raw_text=(
            "Property Rates Business\n"
            "Interest on Arrears\n"
            "Refuse 6-bin commercial service\n"
        ),
        previous_balance=12_000_000,
        property_info=PropertyInfo(units=1, municipal_valuation=500_000_000),
        line_items=(
            LineItem(ServiceType.ELECTRICITY, 1_200_000, "Electricity", quantity=3000,
                     metadata=ElectricityMetadata(meters=(
                         MeterReading(2000, "Actual", "M1"),
                         MeterReading(1000, "Actual", "M2"),
                     ))),
            LineItem(ServiceType.RATES, 994_250, "Property Rates Business"),
            LineItem(ServiceType.REFUSE, 297_582, "Refuse", metadata=RefuseMetadata(bins=6)),
        ),
    )
