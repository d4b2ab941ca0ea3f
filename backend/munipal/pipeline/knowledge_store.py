"""Tariff knowledge store — read-only access to published tariff rules.

The verification engine never touches persistence directly: it receives an
object satisfying ``TariffKnowledgeStore`` and asks it for the active rules
matching a provider / service / category / financial year on a given date.

Rules are soft-deactivated (``is_active = False``), never removed, so a
store snapshot can always explain a past verification.
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Iterable, Optional, Protocol

from munipal.config import SERVICE_PROVIDERS
from munipal.pipeline.loader import TariffRuleError, tariff_rule_from_dict
from munipal.pipeline.models import ServiceType, TariffRule

logger = logging.getLogger(__name__)


def provider_for(service_type: ServiceType) -> Optional[str]:
    """Utility provider billing a service, or None for sundry/other."""
    return SERVICE_PROVIDERS.get(service_type.value)


class TariffKnowledgeStore(Protocol):
    def find_active_rules(
        self,
        provider: str,
        service_type: ServiceType,
        customer_category: Optional[str],
        financial_year: str,
        on_date: date,
    ) -> list[TariffRule]:
        """Active rules in force on ``on_date``; ``customer_category=None`` means any."""
        ...


class InMemoryTariffStore:
    """Tariff store over a fixed list of rules.

    Usage:
        store = InMemoryTariffStore(rules)
        store = InMemoryTariffStore.from_dicts(json.load(f)["rules"])
        rules = store.find_active_rules("city_power", ServiceType.ELECTRICITY,
                                        "residential", "2025/26", date(2025, 8, 15))
    """

    def __init__(self, rules: Iterable[TariffRule] = ()):
        self._rules: tuple[TariffRule, ...] = tuple(rules)

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def rules(self) -> tuple[TariffRule, ...]:
        return self._rules

    def find_active_rules(
        self,
        provider: str,
        service_type: ServiceType,
        customer_category: Optional[str],
        financial_year: str,
        on_date: date,
    ) -> list[TariffRule]:
        matches = [
            r for r in self._rules
            if r.is_active
            and r.provider == provider
            and r.service_type == service_type
            and (customer_category is None or r.customer_category == customer_category)
            and r.financial_year == financial_year
            and r.is_effective_on(on_date)
        ]
        # Newest effective date first
        matches.sort(key=lambda r: r.effective_date, reverse=True)
        return matches

    @classmethod
    def from_dicts(cls, rows: Iterable[dict]) -> "InMemoryTariffStore":
        """Build a store from exported rule rows, skipping rows without identity."""
        rules = []
        for row in rows:
            try:
                rules.append(tariff_rule_from_dict(row))
            except TariffRuleError as e:
                logger.warning(f"Skipping tariff rule: {e}")
        unusable = sum(1 for r in rules if r.pricing is None)
        logger.info(f"Tariff store: {len(rules)} rules loaded ({unusable} with unusable pricing)")
        return cls(rules)


def load_tariff_store(path: str | Path) -> InMemoryTariffStore:
    """Load a JSON export: a list of rules or ``{"rules": [...]}``."""
    path = Path(path)
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("rules", [])
    if not isinstance(data, list):
        raise TariffRuleError(f"{path}: expected a list of tariff rules")
    logger.info(f"Loading tariff rules from {path}")
    return InMemoryTariffStore.from_dicts(data)
