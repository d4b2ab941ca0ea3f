"""Tests for the plain-text bill report (Jinja2 template rendering).

Covers:
  - header and summary block
  - severity section order: critical → action required → attention
  - info insights rendered as information notes, not tagged sections
  - verification block: statuses, sources, missing tariffs, recommendation
  - deterministic output
  - exact text of a small fixed analysis
  - action plan section (only when plans are passed)
  - dispute and valuation letters
"""

from dataclasses import replace
from datetime import date

import pytest

from munipal.pipeline.knowledge_store import InMemoryTariffStore
from munipal.pipeline.models import (
    ActionPlan,
    ActionPriority,
    ActionStep,
    ActionType,
    BillAnalysis,
    Contact,
    DisputeLetter,
    Insight,
    InsightService,
    PropertyClassification,
    Severity,
)
from munipal.pipeline.orchestrator import analyze_bill, run_analysis
from munipal.pipeline.summary import summarize_insights
from munipal.reports import generator
from munipal.reports.generator import (
    DIVIDER,
    RULE,
    THIN_RULE,
    render_dispute_letter,
    render_text_report,
)


@pytest.fixture
def business_report(business_bill):
    return render_text_report(analyze_bill(business_bill))


class TestHeaderAndSummary:

    def test_header(self, business_report):
        lines = business_report.splitlines()
        assert lines[0] == RULE
        assert lines[1] == "BILL ANALYSIS: Account 5009876543"
        assert lines[2] == "Property: BUSINESS"
        assert lines[3] == "Bill Date: 2025-08-15"

    def test_critical_banner(self, business_report):
        assert "1 CRITICAL ISSUE(S) REQUIRE IMMEDIATE ATTENTION" in business_report

    def test_summary_counts(self, business_report):
        assert "Critical issues: 1" in business_report
        assert "Actions required: 0" in business_report
        assert "Items to review: 2" in business_report
        assert "Information notes: 2" in business_report
        assert "Total potential savings: R6,204.16/month" in business_report
        assert "Recoverable" not in business_report

    def test_ends_with_rule(self, business_report):
        assert business_report.rstrip("\n").endswith(RULE)


class TestSections:

    def test_severity_order(self, business_report):
        critical = business_report.index("[CRITICAL] SIGNIFICANT ARREARS ON ACCOUNT")
        attention = business_report.index("[ATTENTION] BUSINESS RATES ARE SIGNIFICANTLY HIGHER")
        notes = business_report.index("INFORMATION NOTES:")
        summary = business_report.index("SUMMARY")
        assert critical < attention < notes < summary

    def test_insight_body(self, business_report):
        assert "Finding: Your account shows R120,000.00 in previous balance." in business_report
        assert "-> ACTION: Contact CoJ about a payment arrangement" in business_report
        assert "Potential savings: R6,204.16/month" in business_report

    def test_info_insights_are_notes(self, business_report):
        assert "* Property has 2 electricity meters:" in business_report
        assert "* Commercial refuse: 6 bins:" in business_report
        assert "[INFO]" not in business_report

    def test_clean_bill_has_no_sections(self, residential_bill):
        text = render_text_report(analyze_bill(residential_bill))
        assert "[" not in text
        assert "INFORMATION NOTES" not in text
        assert "CRITICAL ISSUE(S)" not in text

    def test_deterministic(self, business_bill):
        analysis = analyze_bill(business_bill)
        assert render_text_report(analysis) == render_text_report(analysis)

    def test_every_severity_has_a_section(self, business_bill, monkeypatch):
        tags = dict(generator.SEVERITY_TAGS)
        tags.pop(next(iter(tags)))
        monkeypatch.setattr(generator, "SEVERITY_TAGS", tags)
        with pytest.raises(ValueError):
            render_text_report(analyze_bill(business_bill))


class TestVerificationBlock:

    def test_verified_bill(self, residential_bill, tariff_store):
        result = run_analysis(residential_bill, tariff_store)
        text = render_text_report(result.analysis, result.verification)
        assert "CHARGE VERIFICATION" in text
        assert "[VERIFIED] Electricity charge verified (confidence 95%)" in text
        assert "  Source: A.1 Residential conventional" in text
        assert "Recommendation: No action needed" in text
        assert "All charges on your bill appear to be correct" in text
        assert text.index("CHARGE VERIFICATION") < text.index("SUMMARY")

    def test_missing_tariffs_listed(self, residential_bill):
        result = run_analysis(residential_bill, InMemoryTariffStore())
        text = render_text_report(result.analysis, result.verification)
        assert "[CANNOT_VERIFY] Electricity tariff not available (confidence 0%)" in text
        assert "  No source: No active city_power electricity tariff" in text
        assert "Missing tariff: city_power / electricity / 2025/26" in text
        assert "3 items could not be verified." in text

    def test_without_verification(self, business_report):
        assert "CHARGE VERIFICATION" not in business_report


class TestGolden:

    def test_small_analysis(self):
        insights = (
            Insight(InsightService.WATER, Severity.ACTION_REQUIRED, "Possible water leak",
                    "Usage doubled since last month.", "Leaks are billed in full.",
                    "Check the meter overnight.", savings_potential=5000),
            Insight(InsightService.REFUSE, Severity.INFO, "Refuse included",
                    "Pikitup charges are on this bill.", "-", "-"),
        )
        analysis = BillAnalysis(
            account_number="5001234567",
            bill_date=date(2025, 8, 15),
            property_classification=PropertyClassification.RESIDENTIAL,
            total_current_charges=26_680,
            insights=insights,
            summary=summarize_insights(insights),
        )
        expected = "\n".join([
            RULE,
            "BILL ANALYSIS: Account 5001234567",
            "Property: RESIDENTIAL",
            "Bill Date: 2025-08-15",
            RULE,
            "",
            "[ACTION REQUIRED] POSSIBLE WATER LEAK",
            DIVIDER,
            "Finding: Usage doubled since last month.",
            "Why it matters: Leaks are billed in full.",
            "-> ACTION: Check the meter overnight.",
            "Potential savings: R50.00/month",
            "",
            THIN_RULE,
            "INFORMATION NOTES:",
            "* Refuse included: Pikitup charges are on this bill.",
            "",
            RULE,
            "SUMMARY",
            THIN_RULE,
            "Critical issues: 0",
            "Actions required: 1",
            "Items to review: 0",
            "Information notes: 1",
            "Total potential savings: R50.00/month",
            "Recoverable (action required + critical): R50.00/month",
            RULE,
            "",
        ])
        assert render_text_report(analysis) == expected


class TestActionPlanSection:

    def test_plan_listed(self, business_bill):
        plan = ActionPlan(
            action_type=ActionType.REQUEST_REBATE,
            priority=ActionPriority.WHEN_CONVENIENT,
            title="Apply for residential rebate",
            steps=(ActionStep(1, "Confirm primary residence"),
                   ActionStep(2, "Apply at a service centre", "Bring proof of residence")),
            contacts=(Contact("CoJ Valuations", "011-407-6111", "valuations@joburg.org.za"),),
            reasons=("R300,000 residential rebate may be missing",),
            deadline="Rebate applies from the date of application",
        )
        text = render_text_report(analyze_bill(business_bill), plans=[plan])
        assert "\n".join([
            RULE,
            "ACTION PLAN",
            THIN_RULE,
            "1. Apply for residential rebate [WHEN CONVENIENT]",
            "   1) Confirm primary residence",
            "   2) Apply at a service centre - Bring proof of residence",
            "   Contact: CoJ Valuations, 011-407-6111, valuations@joburg.org.za",
            "   Rebate applies from the date of application",
            "",
            RULE,
            "SUMMARY",
        ]) in text

    def test_report_lists_overcharge_letter(self, residential_bill, tariff_store):
        items = list(residential_bill.line_items)
        items[0] = replace(items[0], amount=170_000)
        bill = replace(residential_bill, line_items=tuple(items), current_charges=292_127)
        result = run_analysis(bill, tariff_store, date(2025, 8, 20))
        text = render_text_report(result.analysis, result.verification, list(result.action_plans))
        assert "1. Lodge billing dispute [SOON]" in text
        assert "   Letter: Billing Dispute - Account 5001234567" in text


class TestLetters:

    def test_billing_dispute(self):
        letter = DisputeLetter(
            template="billing_dispute",
            subject="Billing Dispute - Account 5001234567",
            recipient="CoJ Revenue Department",
            account_number="5001234567",
            bill_date=date(2025, 8, 15),
            letter_date=date(2025, 8, 20),
            issues=("Water charge discrepancy detected: Billed R300.00, tariff gives R266.80.",),
            attachments=("Copy of the disputed bill",),
            deadline="21 business days",
            reference="CoJ Credit Control and Debt Collection By-law, Section 14",
        )
        expected = "\n".join([
            "2025-08-20",
            "",
            "To: CoJ Revenue Department",
            "Subject: Billing Dispute - Account 5001234567",
            "",
            "Dear Sir/Madam",
            "",
            "I dispute the following charges on account 5001234567, bill dated 2025-08-15:",
            "",
            "1. Water charge discrepancy detected: Billed R300.00, tariff gives R266.80.",
            "",
            "I request that you:",
            "1. Investigate the charges listed above.",
            "2. Correct the account and issue a revised bill.",
            "3. Credit any amount overcharged.",
            "4. Hold credit control action on the disputed amount while the dispute is open.",
            "",
            "In terms of the CoJ Credit Control and Debt Collection By-law, Section 14, "
            "please respond within 21 business days.",
            "I reserve my rights under the Municipal Property Rates Act and the Consumer Protection Act.",
            "",
            "Attachments:",
            "- Copy of the disputed bill",
            "",
            "Yours faithfully",
            "",
            "Account holder, account 5001234567",
            "",
        ])
        assert render_dispute_letter(letter) == expected

    def test_valuation_query_without_bill_date(self):
        letter = DisputeLetter(
            template="valuation_query",
            subject="Valuation Query - Account 42",
            recipient="CoJ Valuations Department",
            account_number="42",
            bill_date=None,
            letter_date=date(2025, 8, 20),
            issues=("Property has R0 municipal valuation",),
            attachments=("Copy of municipal bill showing the R0.00 valuation",),
            deadline="21 business days",
            reference="MPRA Section 50; Prescription Act 68 of 1969",
        )
        text = render_dispute_letter(letter)
        assert "I am writing about account 42.\n" in text
        assert "- Property has R0 municipal valuation\n" in text
        assert "within 30 days" in text
        assert "Please respond within 21 business days." in text
        assert text.endswith("Reference: MPRA Section 50; Prescription Act 68 of 1969\n")

    def test_unknown_template(self):
        letter = DisputeLetter("complaint", "s", "r", "1", None, date(2025, 8, 20),
                               (), (), "21 business days", "ref")
        with pytest.raises(ValueError, match="No letter template"):
            render_dispute_letter(letter)
