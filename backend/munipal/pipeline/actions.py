"""Action plans: what the account holder should do next.

Insights carry their own ``action_type``; findings get one from their
status and check type.  Every source with the same action type folds into
one plan, and plans come out ordered immediate → soon → when_convenient.

Plans hold facts only.  Letters are built as ``DisputeLetter`` records and
worded by ``reports.generator.render_dispute_letter``.
"""

import logging
from datetime import date
from typing import Callable, Optional, Union

from munipal.config import (
    DISPUTE_RESPONSE_DAYS,
    RECLASSIFICATION_FOLLOW_UP_DAYS,
    TRACE_ENABLED,
)
from munipal.pipeline.models import (
    ACTION_PRIORITY_ORDER,
    ActionPlan,
    ActionPriority,
    ActionStep,
    ActionType,
    BillAnalysis,
    CheckType,
    Contact,
    DisputeLetter,
    Finding,
    FindingStatus,
    Insight,
    VerificationReport,
)
from munipal.pipeline.utils import format_rand

logger = logging.getLogger(__name__)

Source = Union[Insight, Finding]


def _trace(msg: str):
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


CONTACTS = {
    "valuations": Contact("CoJ Valuations", "011-407-6111", "valuations@joburg.org.za",
                          hours="Mon-Fri 07:30-16:00"),
    "city_power": Contact("City Power", "0860-562-874", "customerservice@citypower.co.za"),
    "joburg_water": Contact("Joburg Water", "011-688-1400", "customercare@jwater.co.za"),
    "ombudsman": Contact("City Ombudsman", "011-407-6000", "ombudsman@joburg.org.za"),
}

# Which contact answers for a metered service
SERVICE_CONTACTS = {
    "electricity": "city_power",
    "water": "joburg_water",
    "sewerage": "joburg_water",
}

DISPUTE_REFERENCE = "CoJ Credit Control and Debt Collection By-law, Section 14"
VALUATION_REFERENCE = "MPRA Section 50; Prescription Act 68 of 1969"


# ═══════════════════════════════════════════════════
# SOURCES
# ═══════════════════════════════════════════════════

def action_for_finding(finding: Finding) -> ActionType:
    """A likely-wrong estimated reading asks for a real one; any other
    likely-wrong charge is disputed.  Verified and unverifiable charges
    need nothing from the account holder."""
    if finding.status != FindingStatus.LIKELY_WRONG:
        return ActionType.NONE
    if finding.check_type == CheckType.METER:
        return ActionType.REQUEST_METER_READING
    return ActionType.LODGE_DISPUTE


def _service_of(source: Source) -> Optional[str]:
    if isinstance(source, Insight):
        return source.service.value
    return source.service_type.value if source.service_type else None


def _contacts_for_services(sources: list[Source]) -> list[Contact]:
    contacts = []
    for source in sources:
        key = SERVICE_CONTACTS.get(_service_of(source) or "")
        if key and CONTACTS[key] not in contacts:
            contacts.append(CONTACTS[key])
    return contacts


def _reasons(sources: list[Source]) -> tuple[str, ...]:
    titles = []
    for source in sources:
        if source.title not in titles:
            titles.append(source.title)
    return tuple(titles)


def _steps(*entries: tuple[str, Optional[str]]) -> tuple[ActionStep, ...]:
    return tuple(ActionStep(order=n, action=action, detail=detail)
                 for n, (action, detail) in enumerate(entries, start=1))


def _account(analysis: BillAnalysis) -> str:
    return analysis.account_number or "Unknown"


# ═══════════════════════════════════════════════════
# PLAN BUILDERS
# ═══════════════════════════════════════════════════

def _valuation_plan(sources: list[Source], analysis: BillAnalysis,
                    letter_date: date) -> ActionPlan:
    valuations = CONTACTS["valuations"]
    letter = DisputeLetter(
        template="valuation_query",
        subject=f"Valuation Query - Account {_account(analysis)}",
        recipient="CoJ Valuations Department",
        account_number=_account(analysis),
        bill_date=analysis.bill_date,
        letter_date=letter_date,
        issues=_reasons(sources),
        attachments=("Copy of municipal bill showing the R0.00 valuation",),
        deadline=f"{DISPUTE_RESPONSE_DAYS} business days",
        reference=VALUATION_REFERENCE,
    )
    return ActionPlan(
        action_type=ActionType.CONTACT_VALUATIONS,
        priority=ActionPriority.IMMEDIATE,
        title="Correct property valuation",
        steps=_steps(
            (f"Call {valuations.name}", f"{valuations.phone} ({valuations.hours})"),
            ("Quote your account number", _account(analysis)),
            ("Ask them to verify the property on the valuation roll", None),
            ("Get a reference number for the query", None),
            ("Follow up in writing", valuations.email),
        ),
        contacts=(valuations,),
        reasons=_reasons(sources),
        dispute_letter=letter,
    )


def _meter_reading_plan(sources: list[Source], analysis: BillAnalysis,
                        letter_date: date) -> ActionPlan:
    contacts = _contacts_for_services(sources) or [CONTACTS["city_power"]]
    first = contacts[0]
    return ActionPlan(
        action_type=ActionType.REQUEST_METER_READING,
        priority=ActionPriority.SOON,
        title="Request actual meter reading",
        steps=_steps(
            (f"Call {first.name}", first.phone),
            ("Request an actual reading for the next bill", None),
            ("Or submit your own reading through the provider's e-Services portal", None),
            ("Photograph the meter with the date visible", None),
        ),
        contacts=tuple(contacts),
        reasons=_reasons(sources),
    )


def _reclassification_plan(sources: list[Source], analysis: BillAnalysis,
                           letter_date: date) -> ActionPlan:
    monthly = sum(s.savings_potential or 0 for s in sources if isinstance(s, Insight))
    deadline = f"Potential annual savings: {format_rand(monthly * 12)}" if monthly else None
    return ActionPlan(
        action_type=ActionType.APPLY_RECLASSIFICATION,
        priority=ActionPriority.WHEN_CONVENIENT,
        title="Apply for residential classification",
        steps=_steps(
            ("Gather proof of residential use", "Lease agreement, utility bills or an affidavit"),
            ("Visit a CoJ Customer Service Centre", None),
            ("Request reclassification from Business to Residential", None),
            ("Submit the application and keep the reference number", None),
            (f"Follow up after {RECLASSIFICATION_FOLLOW_UP_DAYS} business days", None),
        ),
        contacts=(CONTACTS["valuations"],),
        reasons=_reasons(sources),
        deadline=deadline,
    )


def _dispute_issue(finding: Finding) -> str:
    issue = f"{finding.title}: {finding.explanation}"
    if finding.impact_max:
        issue += (f" Estimated impact {format_rand(finding.impact_min)}"
                  f" - {format_rand(finding.impact_max)}.")
    return issue


def _dispute_attachments(findings: list[Finding]) -> tuple[str, ...]:
    attachments = ["Copy of the disputed bill", "Supporting calculations"]
    for f in findings:
        if not f.citation.has_source:
            continue
        where = f.citation.source_table_reference or f.citation.tariff_rule_id
        extract = f"Tariff schedule extract ({where})" if where else "Tariff schedule extract"
        if extract not in attachments:
            attachments.append(extract)
    return tuple(attachments)


def _dispute_plan(sources: list[Source], analysis: BillAnalysis,
                  letter_date: date) -> ActionPlan:
    findings = [s for s in sources if isinstance(s, Finding)]
    deadline = f"{DISPUTE_RESPONSE_DAYS} days for CoJ response (Credit Control By-law Section 14)"
    letter = DisputeLetter(
        template="billing_dispute",
        subject=f"Billing Dispute - Account {_account(analysis)}",
        recipient="CoJ Revenue Department",
        account_number=_account(analysis),
        bill_date=analysis.bill_date,
        letter_date=letter_date,
        issues=tuple(_dispute_issue(f) for f in findings),
        attachments=_dispute_attachments(findings),
        deadline=f"{DISPUTE_RESPONSE_DAYS} business days",
        reference=DISPUTE_REFERENCE,
    )
    ombudsman = CONTACTS["ombudsman"]
    return ActionPlan(
        action_type=ActionType.LODGE_DISPUTE,
        priority=ActionPriority.SOON,
        title="Lodge billing dispute",
        steps=_steps(
            ("Submit the dispute in writing", "Email creates a paper trail"),
            ("Include the account number, bill date and each disputed charge", None),
            ("Request acknowledgment of receipt", None),
            (f"Allow {DISPUTE_RESPONSE_DAYS} days for a response", "Credit Control By-law"),
            ("If there is no response, escalate", f"{ombudsman.name}: {ombudsman.email}"),
        ),
        contacts=tuple(_contacts_for_services(findings)) + (ombudsman,),
        reasons=_reasons(sources),
        deadline=deadline,
        dispute_letter=letter,
    )


def _rebate_plan(sources: list[Source], analysis: BillAnalysis,
                 letter_date: date) -> ActionPlan:
    return ActionPlan(
        action_type=ActionType.REQUEST_REBATE,
        priority=ActionPriority.WHEN_CONVENIENT,
        title="Apply for residential rebate",
        steps=_steps(
            ("Confirm the property is your primary residence", None),
            ("Visit a CoJ Customer Service Centre with proof of residence", None),
            ("Apply for the R300,000 primary residence exemption", None),
            ("Note that the rebate applies from the date of application", "It is not backdated"),
        ),
        contacts=(CONTACTS["valuations"],),
        reasons=_reasons(sources),
    )


PlanBuilder = Callable[[list[Source], BillAnalysis, date], ActionPlan]

# Every actionable type needs a builder
PLAN_BUILDERS: dict[ActionType, PlanBuilder] = {
    ActionType.CONTACT_VALUATIONS: _valuation_plan,
    ActionType.REQUEST_METER_READING: _meter_reading_plan,
    ActionType.APPLY_RECLASSIFICATION: _reclassification_plan,
    ActionType.LODGE_DISPUTE: _dispute_plan,
    ActionType.REQUEST_REBATE: _rebate_plan,
}


# ═══════════════════════════════════════════════════
# ENTRY POINT
# ═══════════════════════════════════════════════════

def generate_action_plans(analysis: BillAnalysis,
                          verification: Optional[VerificationReport] = None,
                          letter_date: Optional[date] = None) -> list[ActionPlan]:
    """One plan per action type found in the insights and findings,
    ordered by priority.  ``letter_date`` dates any letters (default today)."""
    missing = set(ActionType) - set(PLAN_BUILDERS) - {ActionType.NONE}
    if missing:
        raise ValueError(f"No plan builder for actions: {sorted(a.value for a in missing)}")

    grouped: dict[ActionType, list[Source]] = {}
    for insight in analysis.insights:
        if insight.action_type != ActionType.NONE:
            grouped.setdefault(insight.action_type, []).append(insight)
    if verification is not None:
        for finding in verification.findings:
            action = action_for_finding(finding)
            if action != ActionType.NONE:
                grouped.setdefault(action, []).append(finding)

    if letter_date is None:
        letter_date = date.today()

    plans = []
    for action_type, sources in grouped.items():
        _trace(f"PLAN {action_type.value}: {len(sources)} source(s)")
        try:
            plans.append(PLAN_BUILDERS[action_type](sources, analysis, letter_date))
        except Exception as e:
            logger.error(f"Action plan [{action_type.value}] failed: {e}")

    plans.sort(key=lambda p: ACTION_PRIORITY_ORDER.index(p.priority))
    logger.info(f"Account {_account(analysis)}: {len(plans)} action plan(s)"
                + (f" ({', '.join(p.action_type.value for p in plans)})" if plans else ""))
    return plans
