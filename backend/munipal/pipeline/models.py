"""Bill, tariff and finding data model.

Every monetary field is an integer number of ZAR cents.  Rates and unit
prices on tariffs may be fractional cents per unit; anything that ends up on
a bill, finding or summary is rounded back to whole cents.

Line-item metadata is a tagged variant per service (``ElectricityMetadata``,
``WaterMetadata`` …) chosen at the parsing boundary (``loader.py``), so the
analyzers receive a typed shape instead of probing an open dict.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date
from enum import Enum
from typing import Any, ClassVar, Optional, Union


# ═══════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════

class ServiceType(str, Enum):
    ELECTRICITY = "electricity"
    WATER = "water"
    SEWERAGE = "sewerage"
    REFUSE = "refuse"
    RATES = "rates"
    SUNDRY = "sundry"
    OTHER = "other"


class PropertyClassification(str, Enum):
    RESIDENTIAL = "residential"
    BUSINESS = "business"
    MIXED = "mixed"
    UNKNOWN = "unknown"


class InsightService(str, Enum):
    ELECTRICITY = "electricity"
    WATER = "water"
    SEWERAGE = "sewerage"
    RATES = "rates"
    REFUSE = "refuse"
    GENERAL = "general"


class Severity(str, Enum):
    INFO = "info"
    ATTENTION = "attention"
    ACTION_REQUIRED = "action_required"
    CRITICAL = "critical"


# Report / summary ordering, most severe first
SEVERITY_ORDER = (
    Severity.CRITICAL,
    Severity.ACTION_REQUIRED,
    Severity.ATTENTION,
    Severity.INFO,
)


class FindingStatus(str, Enum):
    VERIFIED = "VERIFIED"
    LIKELY_WRONG = "LIKELY_WRONG"
    CANNOT_VERIFY = "CANNOT_VERIFY"


class CheckType(str, Enum):
    TARIFF = "tariff"
    METER = "meter"
    ARITHMETIC = "arithmetic"


class Recommendation(str, Enum):
    DO_NOTHING = "do_nothing"
    HANDLE_YOURSELF = "handle_yourself"
    LET_MUNIPAL_HANDLE = "let_munipal_handle"


class ActionType(str, Enum):
    CONTACT_VALUATIONS = "contact_valuations"           # R0 or wrong valuation
    REQUEST_METER_READING = "request_meter_reading"     # estimated readings
    APPLY_RECLASSIFICATION = "apply_reclassification"   # wrong rating category
    LODGE_DISPUTE = "lodge_dispute"                     # billing error found
    REQUEST_REBATE = "request_rebate"                   # missing rebate
    NONE = "none"


class ActionPriority(str, Enum):
    IMMEDIATE = "immediate"
    SOON = "soon"
    WHEN_CONVENIENT = "when_convenient"


ACTION_PRIORITY_ORDER = (
    ActionPriority.IMMEDIATE,
    ActionPriority.SOON,
    ActionPriority.WHEN_CONVENIENT,
)


# ═══════════════════════════════════════════════════
# LINE-ITEM METADATA (tagged per service)
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class MeterReading:
    consumption: Optional[float] = None
    type: str = ""                  # "Actual" / "Estimated" as printed on the bill
    meter_number: str = ""

    @property
    def is_estimated(self) -> bool:
        return "estimated" in self.type.lower()


@dataclass(frozen=True)
class StepCharge:
    step: int
    units: float
    rate: float                     # cents per unit


@dataclass(frozen=True)
class TimeOfUseConsumption:
    peak: float = 0.0
    standard: float = 0.0
    off_peak: float = 0.0


@dataclass(frozen=True)
class ElectricityMetadata:
    meters: tuple[MeterReading, ...] = ()
    charges: tuple[StepCharge, ...] = ()
    demand_kva: Optional[float] = None
    time_of_use: Optional[TimeOfUseConsumption] = None


@dataclass(frozen=True)
class WaterMetadata:
    meters: tuple[MeterReading, ...] = ()


@dataclass(frozen=True)
class SewerageMetadata:
    method: Optional[str] = None    # "stand_size" | "per_unit"


@dataclass(frozen=True)
class RatesMetadata:
    rate_used: Optional[float] = None


@dataclass(frozen=True)
class RefuseMetadata:
    bins: Optional[int] = None


@dataclass(frozen=True)
class GenericMetadata:
    values: dict[str, Any] = field(default_factory=dict)


LineMetadata = Union[
    ElectricityMetadata, WaterMetadata, SewerageMetadata,
    RatesMetadata, RefuseMetadata, GenericMetadata,
]


# ═══════════════════════════════════════════════════
# BILL
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class PropertyInfo:
    address: Optional[str] = None
    stand_size: Optional[float] = None
    units: Optional[int] = None
    property_type: Optional[str] = None
    municipal_valuation: Optional[int] = None


@dataclass(frozen=True)
class LineItem:
    service_type: ServiceType
    amount: int
    description: str = ""
    quantity: Optional[float] = None
    unit_price: Optional[float] = None   # cents per unit
    tariff_code: Optional[str] = None
    is_estimated: bool = False
    metadata: Optional[LineMetadata] = None


@dataclass(frozen=True)
class ParsedBill:
    """A municipal statement as produced by the PDF parser.

    ``line_items`` keeps document order, but nothing downstream depends on
    it: analyzers look items up by service type.
    """
    line_items: tuple[LineItem, ...] = ()
    raw_text: str = ""
    account_number: Optional[str] = None
    bill_date: Optional[date] = None
    due_date: Optional[date] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    billing_days: Optional[int] = None
    total_due: Optional[int] = None
    previous_balance: Optional[int] = None
    current_charges: Optional[int] = None
    vat_amount: Optional[int] = None
    property_info: Optional[PropertyInfo] = None

    def find_item(self, service_type: ServiceType) -> Optional[LineItem]:
        """First line item of the given service, or None."""
        for item in self.line_items:
            if item.service_type == service_type:
                return item
        return None

    @property
    def units(self) -> int:
        if self.property_info and self.property_info.units:
            return self.property_info.units
        return 1

    @property
    def municipal_valuation(self) -> Optional[int]:
        return self.property_info.municipal_valuation if self.property_info else None


# ═══════════════════════════════════════════════════
# TARIFF PRICING STRUCTURES
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class FixedCharge:
    name: str
    amount: int                     # cents
    frequency: str = "monthly"      # monthly | daily | annual


@dataclass(frozen=True)
class Band:
    min_units: float
    max_units: Optional[float]      # None = unbounded (last band)
    rate: Optional[float]           # cents per unit; None marks a malformed band
    description: str = ""


@dataclass(frozen=True)
class BandedPricing:
    kind: ClassVar[str] = "banded"
    bands: tuple[Band, ...] = ()
    unit: str = "units"
    billing_period_days: Optional[int] = None   # band widths are quoted per this many days
    fixed_charges: tuple[FixedCharge, ...] = ()


@dataclass(frozen=True)
class FlatRatePricing:
    kind: ClassVar[str] = "flat_rate"
    rate: Optional[float] = None
    unit: str = "units"
    fixed_charges: tuple[FixedCharge, ...] = ()


@dataclass(frozen=True)
class DemandPricing:
    kind: ClassVar[str] = "demand"
    energy_rate: Optional[float] = None
    rate_per_kva: Optional[float] = None
    fixed_charges: tuple[FixedCharge, ...] = ()


@dataclass(frozen=True)
class TouRates:
    peak: float
    standard: float
    off_peak: float


@dataclass(frozen=True)
class TimeOfUsePricing:
    kind: ClassVar[str] = "time_of_use"
    summer: Optional[TouRates] = None
    winter: Optional[TouRates] = None
    fixed_charges: tuple[FixedCharge, ...] = ()


@dataclass(frozen=True)
class Rebate:
    name: str
    type: str                       # threshold (cents of value) | percentage | fixed (cents/year)
    amount: float


@dataclass(frozen=True)
class RatesPricing:
    kind: ClassVar[str] = "rates"
    rate_in_rand: Optional[float] = None        # annual rate per rand of valuation
    rebates: tuple[Rebate, ...] = ()
    fixed_charges: tuple[FixedCharge, ...] = ()


PricingStructure = Union[
    BandedPricing, FlatRatePricing, DemandPricing, TimeOfUsePricing, RatesPricing,
]


@dataclass(frozen=True)
class TariffRule:
    """Official, dated pricing for a provider/service/category combination.

    Owned by the knowledge store; the engine only ever reads rules.
    ``pricing`` is None when the stored structure could not be parsed.
    """
    id: str
    provider: str
    service_type: ServiceType
    customer_category: str
    financial_year: str
    effective_date: date
    pricing: Optional[PricingStructure] = None
    tariff_code: str = ""
    description: str = ""
    knowledge_document_id: Optional[str] = None
    expiry_date: Optional[date] = None
    vat_rate: float = 0.0
    vat_inclusive: bool = False
    source_excerpt: str = ""
    source_page_number: Optional[int] = None
    source_table_reference: Optional[str] = None
    extraction_confidence: Optional[float] = None   # 0-100
    is_verified: bool = False
    is_active: bool = True

    def is_effective_on(self, day: date) -> bool:
        if self.effective_date > day:
            return False
        return self.expiry_date is None or day <= self.expiry_date


@dataclass(frozen=True)
class CalculationLine:
    label: str
    amount: int
    quantity: Optional[float] = None
    rate: Optional[float] = None


@dataclass(frozen=True)
class CalculationBreakdown:
    lines: tuple[CalculationLine, ...]
    subtotal: int
    vat_amount: int
    total: int
    tariff_rule_id: str
    financial_year: str
    customer_category: str
    vat_rate: float = 0.0


# ═══════════════════════════════════════════════════
# OUTPUT: INSIGHTS, FINDINGS, SUMMARIES
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class Citation:
    """Where a finding's claim comes from.

    With ``has_source`` the citation must point at a rule or knowledge
    document and carry the excerpt; without it, ``no_source_reason`` says why.
    """
    has_source: bool
    knowledge_document_id: Optional[str] = None
    tariff_rule_id: Optional[str] = None
    source_page_number: Optional[int] = None
    source_table_reference: Optional[str] = None
    excerpt: Optional[str] = None
    no_source_reason: Optional[str] = None

    def __post_init__(self):
        if self.has_source:
            if not (self.knowledge_document_id or self.tariff_rule_id) or not self.excerpt:
                raise ValueError("Sourced citation needs a document/rule reference and an excerpt")
        elif not self.no_source_reason:
            raise ValueError("Unsourced citation needs a no_source_reason")

    @classmethod
    def from_rule(cls, rule: TariffRule) -> "Citation":
        excerpt = rule.source_excerpt or rule.description or f"{rule.tariff_code} {rule.financial_year}".strip()
        return cls(
            has_source=True,
            knowledge_document_id=rule.knowledge_document_id,
            tariff_rule_id=rule.id,
            source_page_number=rule.source_page_number,
            source_table_reference=rule.source_table_reference,
            excerpt=excerpt,
        )

    @classmethod
    def unsourced(cls, reason: str) -> "Citation":
        return cls(has_source=False, no_source_reason=reason)


@dataclass(frozen=True)
class Insight:
    service: InsightService
    severity: Severity
    title: str
    finding: str        # what we found
    implication: str    # why it matters
    action: str         # what to do
    savings_potential: Optional[int] = None
    citation: Optional[Citation] = None
    action_type: ActionType = ActionType.NONE


@dataclass(frozen=True)
class MissingTariff:
    """Identity of a tariff the knowledge base lacks, for the alerting queue."""
    provider: str
    service_type: str
    financial_year: str
    customer_category: Optional[str] = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.provider, self.service_type, self.financial_year)


@dataclass(frozen=True)
class Finding:
    check_type: CheckType
    check_name: str
    status: FindingStatus
    confidence: int     # 0-100
    title: str
    explanation: str
    citation: Citation
    service_type: Optional[ServiceType] = None
    impact_min: Optional[int] = None
    impact_max: Optional[int] = None
    calculation: Optional[CalculationBreakdown] = None


@dataclass(frozen=True)
class VerificationResult:
    finding: Finding
    missing_tariff: Optional[MissingTariff] = None

    @property
    def status(self) -> FindingStatus:
        return self.finding.status

    @property
    def confidence(self) -> int:
        return self.finding.confidence

    @property
    def citation(self) -> Citation:
        return self.finding.citation


@dataclass(frozen=True)
class Summary:
    critical_count: int = 0
    action_count: int = 0
    attention_count: int = 0
    info_count: int = 0
    total_savings_potential: int = 0
    recoverable_amount: int = 0     # action_required + critical only


@dataclass(frozen=True)
class BillAnalysis:
    account_number: str
    bill_date: Optional[date]
    property_classification: PropertyClassification
    total_current_charges: int
    insights: tuple[Insight, ...]
    summary: Summary


@dataclass(frozen=True)
class FindingSummary:
    verified: int = 0
    likely_wrong: int = 0
    cannot_verify: int = 0
    total_impact_min: int = 0
    total_impact_max: int = 0


@dataclass(frozen=True)
class VerificationReport:
    findings: tuple[Finding, ...]
    summary: FindingSummary
    recommendation: Recommendation
    narrative: str
    missing_tariffs: tuple[MissingTariff, ...] = ()


# ═══════════════════════════════════════════════════
# ACTION PLANS
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class Contact:
    name: str
    phone: str
    email: str
    hours: Optional[str] = None


@dataclass(frozen=True)
class ActionStep:
    order: int
    action: str
    detail: Optional[str] = None


@dataclass(frozen=True)
class DisputeLetter:
    """Facts for one letter; the wording lives in the report templates."""
    template: str                   # "valuation_query" | "billing_dispute"
    subject: str
    recipient: str
    account_number: str
    bill_date: Optional[date]
    letter_date: date
    issues: tuple[str, ...]         # one paragraph per disputed item
    attachments: tuple[str, ...]
    deadline: str
    reference: str


@dataclass(frozen=True)
class ActionPlan:
    action_type: ActionType
    priority: ActionPriority
    title: str
    steps: tuple[ActionStep, ...]
    contacts: tuple[Contact, ...]
    reasons: tuple[str, ...]        # titles of the insights/findings behind the plan
    deadline: Optional[str] = None
    dispute_letter: Optional[DisputeLetter] = None


# ═══════════════════════════════════════════════════
# SERIALIZATION
# ═══════════════════════════════════════════════════

def to_jsonable(value: Any) -> Any:
    """Convert dataclasses/enums/dates into plain JSON-compatible values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        data = {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
        kind = getattr(type(value), "kind", None)
        if isinstance(kind, str):
            data["type"] = kind
        return data
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
