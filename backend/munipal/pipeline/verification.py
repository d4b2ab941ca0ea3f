"""Verification engine — checks billed charges against published tariffs.

No accusations without a tariff citation:
  - no matching rule            → CANNOT_VERIFY + MissingTariff for alerting
  - several rules, no tie-break → CANNOT_VERIFY ("ambiguous tariff match")
  - rule unusable / input gaps  → CANNOT_VERIFY
  - within tolerance            → VERIFIED
  - outside tolerance           → LIKELY_WRONG with an impact range

Tolerance is max(1% of the computed charge, R1) to absorb rounding on the
municipal side.  The store is injected, so tests run against an in-memory
rule list and production against whatever backs the knowledge base.
"""

import logging
from datetime import date
from typing import Optional

from munipal.config import (
    CLASSIFICATION_CATEGORIES,
    ESTIMATED_IMPACT_MAX_PCT,
    ESTIMATED_IMPACT_MIN_PCT,
    ESTIMATED_READING_CONFIDENCE,
    TARIFF_TOLERANCE_MIN_CENTS,
    TARIFF_TOLERANCE_PCT,
    TRACE_ENABLED,
    UNVERIFIED_CONFIDENCE_CAP,
    UNVERIFIED_CONFIDENCE_SCALE,
    UNVERIFIED_RULE_CONFIDENCE,
    VERIFIED_RULE_CONFIDENCE,
)
from munipal.pipeline.financial_year import (
    financial_year_bounds,
    financial_year_for,
    previous_financial_year,
)
from munipal.pipeline.knowledge_store import TariffKnowledgeStore, provider_for
from munipal.pipeline.models import (
    CheckType,
    Citation,
    ElectricityMetadata,
    Finding,
    FindingStatus,
    LineItem,
    MissingTariff,
    ParsedBill,
    PropertyClassification,
    ServiceType,
    TariffRule,
    VerificationResult,
    WaterMetadata,
)
from munipal.pipeline.tariff_calculator import (
    MalformedTariffError,
    MissingInputError,
    calculate_expected_charge,
)
from munipal.pipeline.utils import SERVICE_LABELS, format_rand

logger = logging.getLogger(__name__)

TARIFFABLE_SERVICES = (
    ServiceType.ELECTRICITY,
    ServiceType.WATER,
    ServiceType.SEWERAGE,
    ServiceType.REFUSE,
    ServiceType.RATES,
)

AMBIGUOUS_MATCH_REASON = "ambiguous tariff match"


def _trace(msg: str):
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


def tolerance_for(computed: int) -> float:
    """Allowed |billed − computed| before a charge is called wrong."""
    return max(abs(computed) * TARIFF_TOLERANCE_PCT, TARIFF_TOLERANCE_MIN_CENTS)


def rule_confidence(rule: TariffRule) -> int:
    """Finding confidence inherited from the rule's extraction confidence.

    Rules an admin has not verified are discounted and capped so a finding
    never looks more certain than the data behind it.
    """
    if rule.extraction_confidence is None:
        return VERIFIED_RULE_CONFIDENCE if rule.is_verified else UNVERIFIED_RULE_CONFIDENCE
    confidence = float(rule.extraction_confidence)
    if not rule.is_verified:
        confidence = min(confidence * UNVERIFIED_CONFIDENCE_SCALE, UNVERIFIED_CONFIDENCE_CAP)
    return int(round(max(0.0, min(100.0, confidence))))


def verification_date(bill: ParsedBill) -> date:
    """Date that selects the tariff: bill date, else period end, else today."""
    return bill.bill_date or bill.period_end or date.today()


def select_rule(rules: list[TariffRule], category: Optional[str],
                item: LineItem) -> Optional[TariffRule]:
    """Pick exactly one rule or return None when the match stays ambiguous."""
    if len(rules) == 1:
        return rules[0]
    candidates = rules
    if category:
        exact = [r for r in rules if r.customer_category == category]
        if len(exact) == 1:
            return exact[0]
        candidates = exact or rules
    if item.tariff_code:
        coded = [r for r in candidates if r.tariff_code == item.tariff_code]
        if len(coded) == 1:
            return coded[0]
    return None


class TariffVerifier:
    """Verifies line items against the rules of one knowledge store.

    Usage:
        verifier = TariffVerifier(store)
        result = verifier.verify(item, bill, PropertyClassification.RESIDENTIAL)
        results = verifier.verify_bill(bill, classification)
    """

    def __init__(self, store: TariffKnowledgeStore):
        self.store = store

    def verify(self, item: LineItem, bill: ParsedBill,
               classification: PropertyClassification) -> VerificationResult:
        service = item.service_type
        label = SERVICE_LABELS.get(service, service.value)
        provider = provider_for(service)
        if provider is None:
            return self._cannot_verify(
                item, f"{service.value}_no_provider",
                f"{label} charge cannot be tariff-checked",
                f"{label} charges are not published in a municipal tariff schedule.",
                f"No tariff provider publishes {service.value} charges.",
            )

        on_date = verification_date(bill)
        fy = financial_year_for(on_date)
        category = CLASSIFICATION_CATEGORIES.get(classification.value)
        rules = self.store.find_active_rules(provider, service, category, fy, on_date)
        _trace(f"VERIFY {service.value} provider={provider} category={category} "
               f"fy={fy} date={on_date} rules={[r.id for r in rules]}")

        if not rules:
            category_text = f" ({category})" if category else ""
            reason = (f"No active {provider} {service.value} tariff{category_text} for "
                      f"financial year {fy} in the knowledge base.")
            explanation = (f"We could not find the {provider} {service.value} tariff for {fy}. "
                           f"Your charge of {format_rand(item.amount)} cannot be verified yet.")
            prior_fy = previous_financial_year(fy)
            if self.store.find_active_rules(provider, service, category, prior_fy,
                                            financial_year_bounds(prior_fy)[1]):
                # Never priced against an older year
                explanation += (f" Only the {prior_fy} tariff is on file and it does not "
                                f"apply to a {fy} bill.")
            return self._cannot_verify(
                item, f"{service.value}_tariff_missing",
                f"{label} tariff not available",
                explanation,
                reason,
                missing=MissingTariff(provider=provider, service_type=service.value,
                                      financial_year=fy, customer_category=category),
            )

        usable = [r for r in rules if r.pricing is not None]
        if not usable:
            ids = ", ".join(r.id for r in rules)
            return self._cannot_verify(
                item, f"{service.value}_tariff_unusable",
                f"{label} tariff could not be applied",
                f"The stored {provider} {service.value} tariff for {fy} cannot be evaluated.",
                f"Tariff rule(s) {ids} have a malformed pricing structure.",
            )
        if len(usable) < len(rules):
            logger.warning(
                f"Skipping unusable tariff rule(s) for {service.value}: "
                f"{[r.id for r in rules if r.pricing is None]}"
            )
            rules = usable

        rule = select_rule(rules, category, item)
        if rule is None:
            return self._cannot_verify(
                item, f"{service.value}_tariff_ambiguous",
                f"{label} tariff match is ambiguous",
                f"{len(rules)} {provider} tariffs apply to this charge and nothing on the "
                f"bill decides between them ({', '.join(r.tariff_code or r.id for r in rules)}).",
                AMBIGUOUS_MATCH_REASON,
            )

        try:
            breakdown = calculate_expected_charge(rule, item, bill)
        except MalformedTariffError as e:
            logger.warning(f"Tariff rule {rule.id} unusable for {service.value}: {e}")
            return self._cannot_verify(
                item, f"{service.value}_tariff_unusable",
                f"{label} tariff could not be applied",
                f"The stored tariff {rule.tariff_code or rule.id} cannot be evaluated.",
                f"Tariff rule {rule.id} has a malformed pricing structure: {e}",
            )
        except MissingInputError as e:
            return self._cannot_verify(
                item, f"{service.value}_input_missing",
                f"{label} charge cannot be recalculated",
                f"The bill does not carry what the {rule.tariff_code or rule.id} tariff needs.",
                str(e),
            )

        computed = breakdown.total
        difference = item.amount - computed
        tolerance = tolerance_for(computed)
        confidence = rule_confidence(rule)
        citation = Citation.from_rule(rule)
        _trace(f"VERIFY {service.value} billed={item.amount} computed={computed} "
               f"tolerance={tolerance:.0f} confidence={confidence}")

        if abs(difference) <= tolerance:
            finding = Finding(
                check_type=CheckType.TARIFF,
                check_name=f"{service.value}_tariff_verified",
                status=FindingStatus.VERIFIED,
                confidence=confidence,
                title=f"{label} charge verified",
                explanation=(
                    f"Your {service.value} charge of {format_rand(item.amount)} matches the "
                    f"{rule.financial_year} {rule.customer_category} tariff "
                    f"({format_rand(computed)})."
                ),
                citation=citation,
                service_type=service,
                calculation=breakdown,
            )
            return VerificationResult(finding=finding)

        impact_max = abs(difference)
        impact_min = max(0, impact_max - round(tolerance))
        finding = Finding(
            check_type=CheckType.TARIFF,
            check_name=f"{service.value}_tariff_discrepancy",
            status=FindingStatus.LIKELY_WRONG,
            confidence=confidence,
            title=(f"{label} charge discrepancy detected" if difference > 0
                   else f"{label} undercharge detected"),
            explanation=(
                f"Based on the {rule.financial_year} {rule.customer_category} tariff your "
                f"{service.value} charge should be {format_rand(computed)}. "
                f"Billed: {format_rand(item.amount)}. "
                f"Difference: {format_rand(impact_max)}."
            ),
            citation=citation,
            service_type=service,
            impact_min=impact_min,
            impact_max=impact_max,
            calculation=breakdown,
        )
        return VerificationResult(finding=finding)

    def verify_bill(self, bill: ParsedBill,
                    classification: PropertyClassification) -> list[VerificationResult]:
        """Verify every tariff-able line item on the bill.

        A failure on one line item is logged and skipped so the remaining
        charges still get checked.
        """
        results = []
        for item in bill.line_items:
            if item.service_type not in TARIFFABLE_SERVICES:
                continue
            try:
                results.append(self.verify(item, bill, classification))
            except Exception as e:
                logger.error(f"Verification of {item.service_type.value} line failed: {e}")
        logger.info(f"Tariff verification: {len(results)} line item(s) checked")
        return results

    @staticmethod
    def _cannot_verify(item: LineItem, check_name: str, title: str, explanation: str,
                       reason: str, missing: Optional[MissingTariff] = None) -> VerificationResult:
        finding = Finding(
            check_type=CheckType.TARIFF,
            check_name=check_name,
            status=FindingStatus.CANNOT_VERIFY,
            confidence=0,
            title=title,
            explanation=explanation,
            citation=Citation.unsourced(reason),
            service_type=item.service_type,
        )
        return VerificationResult(finding=finding, missing_tariff=missing)


# ═══════════════════════════════════════════════════
# METER CHECK: ESTIMATED READINGS
# ═══════════════════════════════════════════════════

def _has_estimated_meter(item: LineItem) -> bool:
    if item.is_estimated:
        return True
    if isinstance(item.metadata, (ElectricityMetadata, WaterMetadata)):
        return any(m.is_estimated for m in item.metadata.meters)
    return False


def check_estimated_readings(bill: ParsedBill) -> list[Finding]:
    """One LIKELY_WRONG finding per line item billed on an estimated reading.

    Applies to every customer category.  Impact assumes a 10-30% estimation
    error on the line amount.
    """
    findings = []
    for item in bill.line_items:
        if not _has_estimated_meter(item):
            continue
        label = SERVICE_LABELS.get(item.service_type, item.service_type.value)
        findings.append(Finding(
            check_type=CheckType.METER,
            check_name="estimated_reading",
            status=FindingStatus.LIKELY_WRONG,
            confidence=ESTIMATED_READING_CONFIDENCE,
            title=f"{label} reading is estimated",
            explanation=(
                f"Your {item.service_type.value} charge is based on an estimated reading, not "
                f"an actual meter reading. Estimated readings can lead to over- or "
                f"under-billing. Request an actual meter reading."
            ),
            citation=Citation.unsourced(
                "Per CoJ Meter Reading Policy, customers are entitled to request actual "
                "readings and adjustments when estimated readings are issued."
            ),
            service_type=item.service_type,
            impact_min=round(abs(item.amount) * ESTIMATED_IMPACT_MIN_PCT),
            impact_max=round(abs(item.amount) * ESTIMATED_IMPACT_MAX_PCT),
        ))
    if findings:
        logger.info(f"Meter check: {len(findings)} estimated reading(s)")
    return findings
