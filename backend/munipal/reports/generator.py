"""Plain-text bill report and dispute letters via Jinja2.

Renders ``bill_report.txt.j2`` from a BillAnalysis (and optionally the
VerificationReport and action plans).  Output is deterministic: fixed
section order critical → action_required → attention, then information
notes, then the verification block, then any action plans, then the
summary.  Letters render from a DisputeLetter with the template it names.
No I/O beyond reading templates.
"""

import logging

from jinja2 import ChainableUndefined, Environment, FileSystemLoader

from munipal.config import TEMPLATES_DIR
from munipal.pipeline.models import (
    SEVERITY_ORDER,
    ActionPlan,
    BillAnalysis,
    DisputeLetter,
    Recommendation,
    Severity,
    VerificationReport,
)
from munipal.pipeline.utils import format_rand

logger = logging.getLogger(__name__)

REPORT_TEMPLATE = "bill_report.txt.j2"
LETTER_TEMPLATES = {
    "valuation_query": "valuation_query.txt.j2",
    "billing_dispute": "billing_dispute.txt.j2",
}
RULE = "═" * 70
THIN_RULE = "─" * 70
DIVIDER = "─" * 50

# Every severity needs an entry: None means "rendered as an information note"
SEVERITY_TAGS = {
    Severity.CRITICAL: "CRITICAL",
    Severity.ACTION_REQUIRED: "ACTION REQUIRED",
    Severity.ATTENTION: "ATTENTION",
    Severity.INFO: None,
}

RECOMMENDATION_LABELS = {
    Recommendation.DO_NOTHING: "No action needed",
    Recommendation.HANDLE_YOURSELF: "Handle it yourself (small amount at stake)",
    Recommendation.LET_MUNIPAL_HANDLE: "Let MUNIPAL handle the dispute",
}

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=False,
    undefined=ChainableUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)
_env.filters["rand"] = format_rand


def _severity_groups(analysis: BillAnalysis) -> list[dict]:
    missing = set(Severity) - set(SEVERITY_TAGS)
    if missing:
        raise ValueError(f"No report section for severities: {sorted(s.value for s in missing)}")
    groups = []
    for severity in SEVERITY_ORDER:
        tag = SEVERITY_TAGS[severity]
        if tag is None:
            continue
        groups.append({
            "tag": tag,
            "insights": [i for i in analysis.insights if i.severity == severity],
        })
    return groups


def render_text_report(analysis: BillAnalysis,
                       verification: VerificationReport | None = None,
                       plans: list[ActionPlan] | None = None) -> str:
    """Render the operator/debug text report for one analysed bill."""
    template = _env.get_template(REPORT_TEMPLATE)
    notes = [
        i for i in analysis.insights
        if SEVERITY_TAGS.get(i.severity, "") is None
    ]
    text = template.render(
        analysis=analysis,
        verification=verification,
        plans=plans or [],
        groups=_severity_groups(analysis),
        notes=notes,
        rule=RULE,
        thin_rule=THIN_RULE,
        divider=DIVIDER,
        recommendation_labels=RECOMMENDATION_LABELS,
    )
    logger.debug(f"Rendered text report for account {analysis.account_number} "
                 f"({len(text)} chars)")
    return text


def render_dispute_letter(letter: DisputeLetter) -> str:
    """Word one letter from an action plan, ready to send."""
    name = LETTER_TEMPLATES.get(letter.template)
    if name is None:
        raise ValueError(f"No letter template for '{letter.template}'")
    text = _env.get_template(name).render(letter=letter)
    logger.debug(f"Rendered {letter.template} letter for account {letter.account_number}")
    return text
