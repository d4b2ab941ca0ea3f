"""Aggregation of insights and findings into counts, totals and a verdict.

Pure functions of their inputs.  Only entries that represent money the
account holder can get back feed the recoverable totals:
  - insights: action_required and critical
  - findings: LIKELY_WRONG
"""

from typing import Iterable

from munipal.config import SELF_HANDLE_MAX_CENTS
from munipal.pipeline.models import (
    Finding,
    FindingStatus,
    FindingSummary,
    Insight,
    Recommendation,
    Severity,
    Summary,
)

RECOVERABLE_SEVERITIES = (Severity.ACTION_REQUIRED, Severity.CRITICAL)


def summarize_insights(insights: Iterable[Insight]) -> Summary:
    insights = list(insights)
    counts = {s: 0 for s in Severity}
    for insight in insights:
        counts[insight.severity] += 1
    return Summary(
        critical_count=counts[Severity.CRITICAL],
        action_count=counts[Severity.ACTION_REQUIRED],
        attention_count=counts[Severity.ATTENTION],
        info_count=counts[Severity.INFO],
        total_savings_potential=sum(i.savings_potential or 0 for i in insights),
        recoverable_amount=sum(
            i.savings_potential or 0 for i in insights if i.severity in RECOVERABLE_SEVERITIES
        ),
    )


def summarize_findings(findings: Iterable[Finding]) -> FindingSummary:
    findings = list(findings)
    wrong = [f for f in findings if f.status == FindingStatus.LIKELY_WRONG]
    return FindingSummary(
        verified=sum(1 for f in findings if f.status == FindingStatus.VERIFIED),
        likely_wrong=len(wrong),
        cannot_verify=sum(1 for f in findings if f.status == FindingStatus.CANNOT_VERIFY),
        total_impact_min=sum(f.impact_min or 0 for f in wrong),
        total_impact_max=sum(f.impact_max or 0 for f in wrong),
    )


def recommend(summary: FindingSummary) -> Recommendation:
    """What the account holder should do about the findings.

    Nothing wrong → do nothing; under R200 at stake → worth handling
    yourself; otherwise hand the dispute over.
    """
    if summary.likely_wrong == 0:
        return Recommendation.DO_NOTHING
    if summary.total_impact_max < SELF_HANDLE_MAX_CENTS:
        return Recommendation.HANDLE_YOURSELF
    return Recommendation.LET_MUNIPAL_HANDLE


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def narrative(summary: FindingSummary) -> str:
    """One-paragraph plain-language summary of a verification run."""
    if summary.likely_wrong == 0 and summary.cannot_verify == 0:
        return "All charges on your bill appear to be correct based on current tariffs."

    sentences = []
    if summary.likely_wrong:
        sentence = f"Found {_plural(summary.likely_wrong, 'potential issue')}"
        if summary.total_impact_max > 0:
            sentence += (f" with estimated impact of R{summary.total_impact_min / 100:.0f}"
                         f" - R{summary.total_impact_max / 100:.0f}")
        sentences.append(sentence)
    if summary.cannot_verify:
        sentences.append(f"{_plural(summary.cannot_verify, 'item')} could not be verified")
    return ". ".join(sentences) + "."
