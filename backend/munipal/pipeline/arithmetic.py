"""Arithmetic checks: internal consistency of the bill's own numbers.

Separate from tariff verification: these only ask whether the figures
printed on the bill add up, never whether the rates are right.
  1. line items sum to the stated current charges (R1 tolerance)
  2. VAT is 15% of the VAT-able base; property rates are exempt (R5 tolerance)
"""

import logging
from typing import Optional

from munipal.config import (
    RECONCILIATION_CONFIDENCE,
    RECONCILIATION_TOLERANCE_CENTS,
    VAT_CONFIDENCE,
    VAT_EXEMPT_SERVICES,
    VAT_RATE,
    VAT_TOLERANCE_CENTS,
)
from munipal.pipeline.models import (
    CheckType,
    Citation,
    Finding,
    FindingStatus,
    GenericMetadata,
    LineItem,
    ParsedBill,
)
from munipal.pipeline.utils import SERVICE_LABELS, format_rand

logger = logging.getLogger(__name__)


def check_reconciliation(bill: ParsedBill) -> Optional[Finding]:
    """Sum of line items vs the bill's current charges."""
    if not bill.line_items or bill.current_charges is None:
        return None

    totals: dict[str, int] = {}
    for item in bill.line_items:
        label = SERVICE_LABELS.get(item.service_type, item.service_type.value)
        totals[label] = totals.get(label, 0) + item.amount
    calculated = sum(totals.values())
    stated = bill.current_charges
    difference = abs(stated - calculated)

    table = "; ".join(f"{label}: {format_rand(amount)}" for label, amount in totals.items())
    figures = f"Calculated total {format_rand(calculated)}, stated total {format_rand(stated)}."

    if difference <= RECONCILIATION_TOLERANCE_CENTS:
        return Finding(
            check_type=CheckType.ARITHMETIC,
            check_name="reconciliation_verified",
            status=FindingStatus.VERIFIED,
            confidence=RECONCILIATION_CONFIDENCE["VERIFIED"],
            title="Bill arithmetic verified",
            explanation=f"All line items sum to the current charges. {table}. {figures}",
            citation=Citation.unsourced(
                "Arithmetic verification does not require an external source."
            ),
        )

    return Finding(
        check_type=CheckType.ARITHMETIC,
        check_name="reconciliation_discrepancy",
        status=FindingStatus.LIKELY_WRONG,
        confidence=RECONCILIATION_CONFIDENCE["LIKELY_WRONG"],
        title="Bill arithmetic discrepancy detected",
        explanation=(
            f"The line items do not add up to the current charges. {table}. {figures} "
            f"Discrepancy: {format_rand(difference)}. This is an arithmetic inconsistency "
            f"in the bill, not a tariff issue."
        ),
        citation=Citation.unsourced(
            "Arithmetic verification based on bill data. Customers are entitled to "
            "accurate billing per the CoJ Customer Service Charter."
        ),
        impact_min=difference,
        impact_max=difference,
    )


def _split_vat(item: LineItem) -> tuple[int, int]:
    """(base, vat) for a VAT-able line, using an explicit VAT figure when present."""
    explicit = None
    if isinstance(item.metadata, GenericMetadata):
        explicit = item.metadata.values.get("vat_amount", item.metadata.values.get("vatAmount"))
    if isinstance(explicit, int) and not isinstance(explicit, bool):
        return item.amount - explicit, explicit
    base = round(item.amount / (1 + VAT_RATE))
    return base, item.amount - base


def check_vat(bill: ParsedBill) -> Optional[Finding]:
    """Billed VAT vs VAT_RATE on the VAT-able base."""
    if bill.vat_amount is None or not bill.line_items:
        return None

    base_total = 0
    vatable, exempt = [], []
    for item in bill.line_items:
        label = SERVICE_LABELS.get(item.service_type, item.service_type.value)
        if item.service_type.value in VAT_EXEMPT_SERVICES:
            exempt.append(label)
            continue
        base, _ = _split_vat(item)
        base_total += base
        vatable.append(label)

    expected = round(base_total * VAT_RATE)
    difference = abs(bill.vat_amount - expected)
    pct = f"{VAT_RATE * 100:g}%"
    detail = (
        f"VAT-able: {', '.join(vatable) or 'none'}"
        + (f"; exempt: {', '.join(exempt)}" if exempt else "")
        + f". VAT-able base {format_rand(base_total)}, expected VAT ({pct}) "
          f"{format_rand(expected)}, billed VAT {format_rand(bill.vat_amount)}."
    )
    citation = Citation.unsourced(f"VAT rate of {pct} is standard in South Africa per SARS guidelines.")

    if difference <= VAT_TOLERANCE_CENTS:
        return Finding(
            check_type=CheckType.ARITHMETIC,
            check_name="vat_verified",
            status=FindingStatus.VERIFIED,
            confidence=VAT_CONFIDENCE["VERIFIED"],
            title="VAT correctly calculated",
            explanation=f"VAT has been applied at {pct} on applicable services. {detail}",
            citation=citation,
        )

    return Finding(
        check_type=CheckType.ARITHMETIC,
        check_name="vat_discrepancy",
        status=FindingStatus.LIKELY_WRONG,
        confidence=VAT_CONFIDENCE["LIKELY_WRONG"],
        title="VAT calculation discrepancy",
        explanation=(
            f"The billed VAT does not match {pct} of VAT-able charges. {detail} "
            f"Discrepancy: {format_rand(difference)}. Property rates are VAT-exempt."
        ),
        citation=citation,
        impact_min=difference,
        impact_max=difference,
    )


def run_arithmetic_checks(bill: ParsedBill) -> list[Finding]:
    findings = [f for f in (check_reconciliation(bill), check_vat(bill)) if f is not None]
    logger.info(f"Arithmetic checks: {len(findings)} finding(s)")
    return findings
