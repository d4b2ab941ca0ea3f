#!/usr/bin/env python3
"""CLI tool to run the bill analysis on a parsed-bill JSON file.

Usage:
    python run_analysis.py <bill.json>                        # Text report
    python run_analysis.py <bill.json> --rules tariffs.json   # Verify against a tariff export
    python run_analysis.py <bill.json> --json                 # Output raw JSON
    python run_analysis.py <bill.json> --letters              # Print dispute letters only
    python run_analysis.py <bill.json> --trace                # Run with MUNIPAL_TRACE

Examples:
    python run_analysis.py samples/bill_2025_08.json --rules samples/tariffs_2025_26.json
"""

import argparse
import json
import os
import sys
from pathlib import Path

# Ensure the backend package is importable
sys.path.insert(0, str(Path(__file__).resolve().parent))


def load_json(path: str):
    p = Path(path)
    if not p.exists():
        print(f"File '{path}' not found.")
        sys.exit(1)
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        print(f"'{path}' is not valid JSON: {e}")
        sys.exit(1)


def run(bill_path: str, rules_path: str | None = None, trace: bool = False,
        output_json: bool = False, letters: bool = False) -> int:
    """Analyze one bill and print the result.  Returns the exit code."""
    if trace:
        # Must be set before munipal.config is first imported
        os.environ["MUNIPAL_TRACE"] = "1"

    import logging
    if trace:
        logging.basicConfig(level=logging.DEBUG, format="%(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    from munipal.config import TARIFF_RULES_PATH
    from munipal.pipeline.knowledge_store import InMemoryTariffStore, load_tariff_store
    from munipal.pipeline.loader import BillContractError, TariffRuleError, bill_from_dict
    from munipal.pipeline.orchestrator import run_analysis
    from munipal.reports.generator import RULE, render_dispute_letter, render_text_report

    try:
        bill = bill_from_dict(load_json(bill_path))
    except BillContractError as e:
        print(f"Invalid bill: {e}")
        return 1

    rules_path = rules_path or TARIFF_RULES_PATH
    store = InMemoryTariffStore()
    if rules_path:
        try:
            store = load_tariff_store(rules_path)
        except (OSError, json.JSONDecodeError, TariffRuleError) as e:
            print(f"Could not load tariff rules from '{rules_path}': {e}")
            return 1

    result = run_analysis(bill, store)

    if output_json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0

    if letters:
        rendered = [render_dispute_letter(p.dispute_letter)
                    for p in result.action_plans if p.dispute_letter is not None]
        print(f"\n{RULE}\n\n".join(rendered) if rendered else "No letters needed for this bill.")
        return 0

    print(render_text_report(result.analysis, result.verification, list(result.action_plans)))
    return 0


def main():
    parser = argparse.ArgumentParser(description="Run MUNIPAL bill analysis")
    parser.add_argument("bill", help="Parsed bill JSON file")
    parser.add_argument("--rules", help="Tariff rules JSON export (defaults to MUNIPAL_TARIFF_RULES_PATH)")
    parser.add_argument("--trace", action="store_true", help="Enable MUNIPAL_TRACE logging")
    parser.add_argument("--json", action="store_true", help="Output raw JSON")
    parser.add_argument("--letters", action="store_true", help="Print the dispute letters only")
    args = parser.parse_args()

    sys.exit(run(args.bill, rules_path=args.rules, trace=args.trace, output_json=args.json,
                 letters=args.letters))


if __name__ == "__main__":
    main()
