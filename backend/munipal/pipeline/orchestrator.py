"""Pipeline orchestrator - coordinates one bill analysis.

  Stage 1 → Classification (text markers, rate-in-rand fallback)
  Stage 2 → Per-service insight analyzers
  Stage 3 → Verification: tariff comparison, estimated readings, arithmetic
  Stage 4 → Summaries, recommendation and narrative
  Stage 5 → Action plans from the insights and likely-wrong findings

Classification must finish before stage 2; everything after that is
independent per analyzer/check.  Nothing here writes anywhere: the caller
persists the result if it wants to.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from munipal.pipeline.actions import generate_action_plans
from munipal.pipeline.analyzers import run_analyzers
from munipal.pipeline.arithmetic import run_arithmetic_checks
from munipal.pipeline.classifier import classify
from munipal.pipeline.knowledge_store import InMemoryTariffStore, TariffKnowledgeStore
from munipal.pipeline.models import (
    ActionPlan,
    BillAnalysis,
    Finding,
    MissingTariff,
    ParsedBill,
    PropertyClassification,
    VerificationReport,
    to_jsonable,
)
from munipal.pipeline.summary import narrative, recommend, summarize_findings, summarize_insights
from munipal.pipeline.verification import TariffVerifier, check_estimated_readings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisResult:
    analysis: BillAnalysis
    verification: VerificationReport
    action_plans: tuple[ActionPlan, ...] = ()

    def to_dict(self) -> dict:
        """JSON-ready projection: ISO dates, enum values, plain lists."""
        return {
            "analysis": to_jsonable(self.analysis),
            "verification": to_jsonable(self.verification),
            "action_plans": to_jsonable(self.action_plans),
        }


def analyze_bill(bill: ParsedBill) -> BillAnalysis:
    """Classify the property and run every insight analyzer."""
    classification = classify(bill)
    insights = run_analyzers(bill, classification) if bill.line_items else []
    total = bill.current_charges
    if total is None:
        total = sum(i.amount for i in bill.line_items)
    logger.info(f"Bill {bill.account_number or '?'}: {classification.value}, "
                f"{len(insights)} insight(s)")
    return BillAnalysis(
        account_number=bill.account_number or "",
        bill_date=bill.bill_date,
        property_classification=classification,
        total_current_charges=total,
        insights=tuple(insights),
        summary=summarize_insights(insights),
    )


def _dedupe_missing(missing: list[MissingTariff]) -> tuple[MissingTariff, ...]:
    seen = set()
    unique = []
    for m in missing:
        if m.key in seen:
            continue
        seen.add(m.key)
        unique.append(m)
    return tuple(unique)


def verify_bill_charges(bill: ParsedBill, store: TariffKnowledgeStore,
                        classification: Optional[PropertyClassification] = None) -> VerificationReport:
    """Run every verification check and build the report."""
    if classification is None:
        classification = classify(bill)

    findings: list[Finding] = []
    missing: list[MissingTariff] = []

    if bill.line_items:
        verifier = TariffVerifier(store)
        check_stages = [
            ("Tariff", lambda: verifier.verify_bill(bill, classification)),
            ("Meter", lambda: check_estimated_readings(bill)),
            ("Arithmetic", lambda: run_arithmetic_checks(bill)),
        ]
        for label, stage in check_stages:
            try:
                for result in stage():
                    if isinstance(result, Finding):
                        findings.append(result)
                    else:
                        findings.append(result.finding)
                        if result.missing_tariff is not None:
                            missing.append(result.missing_tariff)
            except Exception as e:
                logger.error(f"Verification stage [{label}] failed: {e}")

    summary = summarize_findings(findings)
    report = VerificationReport(
        findings=tuple(findings),
        summary=summary,
        recommendation=recommend(summary),
        narrative=narrative(summary),
        missing_tariffs=_dedupe_missing(missing),
    )
    if report.missing_tariffs:
        logger.warning(
            "Missing tariffs: "
            + ", ".join(f"{m.provider}/{m.service_type}/{m.financial_year}"
                        for m in report.missing_tariffs)
        )
    logger.info(f"Verification: {summary.verified} verified, {summary.likely_wrong} likely wrong, "
                f"{summary.cannot_verify} cannot verify → {report.recommendation.value}")
    return report


def run_analysis(bill: ParsedBill,
                 store: Optional[TariffKnowledgeStore] = None,
                 letter_date: Optional[date] = None) -> AnalysisResult:
    """Full analysis of one bill.  With no store every charge is CANNOT_VERIFY.

    ``letter_date`` dates any dispute letters in the action plans (default today).
    """
    if store is None:
        store = InMemoryTariffStore()
    analysis = analyze_bill(bill)
    verification = verify_bill_charges(bill, store, analysis.property_classification)
    plans = generate_action_plans(analysis, verification, letter_date)
    return AnalysisResult(analysis=analysis, verification=verification,
                          action_plans=tuple(plans))
