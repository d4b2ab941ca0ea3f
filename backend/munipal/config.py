"""Application configuration."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env from backend root (before any os.getenv calls)
load_dotenv(BASE_DIR / ".env")
TEMPLATES_DIR = BASE_DIR / "munipal" / "reports" / "templates"

# Tariff knowledge base: JSON export of active TariffRule rows.
# Leave empty to start with an empty store (every charge becomes CANNOT_VERIFY).
TARIFF_RULES_PATH = os.getenv("MUNIPAL_TARIFF_RULES_PATH", "")

# HTTP
CORS_ORIGINS = [
    o.strip() for o in os.getenv(
        "MUNIPAL_CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
    ).split(",") if o.strip()
]

# Debug trace mode: set MUNIPAL_TRACE=1 to get detailed per-check engine logs
TRACE_ENABLED = os.getenv("MUNIPAL_TRACE", "").strip().lower() in ("1", "true", "yes")

# Service → utility provider (City of Johannesburg entities)
SERVICE_PROVIDERS = {
    "electricity": "city_power",
    "water": "joburg_water",
    "sewerage": "joburg_water",
    "refuse": "pikitup",
    "rates": "coj",
}

# Property classification → tariff customer category
CLASSIFICATION_CATEGORIES = {
    "residential": "residential",
    "business": "business",
}

# ── Classification ──
CLASSIFICATION_RATE_THRESHOLD = 0.015   # rate-in-rand above this is business (~0.0238 vs ~0.0095)

# ── Consumption heuristics ──
DEFAULT_BILLING_DAYS = 30
ELECTRICITY_RESIDENTIAL_DAILY_KWH = 50.0   # typical household: 15-35 kWh/day
WATER_RESIDENTIAL_DAILY_KL = 2.0           # typical household: 0.5-1.5 kL/day
WATER_PER_UNIT_DAILY_KL = 1.5              # multi-unit: 0.5-1.0 kL/day per unit

# ── Property rates (CoJ, annual rate-in-rand; monthly = annual / 12) ──
BUSINESS_RATE_FACTOR = float(os.getenv("MUNIPAL_BUSINESS_RATE_FACTOR", "0.0238620"))
RESIDENTIAL_RATE_FACTOR = float(os.getenv("MUNIPAL_RESIDENTIAL_RATE_FACTOR", "0.0095447"))
RESIDENTIAL_EXEMPTION_CENTS = 300_000 * 100       # first R300,000 of value is exempt
RATES_DIFFERENCE_THRESHOLD_CENTS = 50_000          # R500/month
MISSING_REBATE_SAVINGS_CENTS = 23_862              # ~R238.62/month

# ── Refuse ──
BUSINESS_BIN_THRESHOLD = 5
BUSINESS_BIN_PRICE_CENTS = 49_597                  # R495.97 per bin

# ── Account ──
ARREARS_CRITICAL_CENTS = 10_000_000                # R100,000

# ── Verification ──
VAT_RATE = float(os.getenv("MUNIPAL_VAT_RATE", "0.15"))
VAT_EXEMPT_SERVICES = ("rates",)
TARIFF_TOLERANCE_PCT = 0.01                        # ±1% ...
TARIFF_TOLERANCE_MIN_CENTS = 100                   # ... or ±R1, whichever is larger
RECONCILIATION_TOLERANCE_CENTS = 100               # R1
VAT_TOLERANCE_CENTS = 500                          # R5
VERIFIED_RULE_CONFIDENCE = 95
UNVERIFIED_RULE_CONFIDENCE = 70                    # when the rule carries no extraction confidence
UNVERIFIED_CONFIDENCE_SCALE = 0.8
UNVERIFIED_CONFIDENCE_CAP = 80
ESTIMATED_IMPACT_MIN_PCT = 0.10                    # estimated readings: assume 10-30% error
ESTIMATED_IMPACT_MAX_PCT = 0.30
ESTIMATED_READING_CONFIDENCE = 75
RECONCILIATION_CONFIDENCE = {"VERIFIED": 98, "LIKELY_WRONG": 95}
VAT_CONFIDENCE = {"VERIFIED": 97, "LIKELY_WRONG": 90}
WINTER_MONTHS = (6, 7, 8)                          # high-demand season for time-of-use tariffs

# Recommendation bands
SELF_HANDLE_MAX_CENTS = 20_000                     # < R200 impact: handle it yourself

# ── Action plans ──
DISPUTE_RESPONSE_DAYS = 21                         # CoJ Credit Control Bylaw s14
RECLASSIFICATION_FOLLOW_UP_DAYS = 21
