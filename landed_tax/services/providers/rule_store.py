from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from typing import Any

from landed_tax.services.types import ValuationRule


def candidate_codes(classification_code: str) -> list[str]:
    """Exact code first, then the HS hierarchy from 10 digits down to the chapter."""
    cleaned = "".join(ch for ch in classification_code if ch.isdigit())
    codes = [cleaned] if cleaned else []
    for length in (10, 8, 6, 4, 2):
        if len(cleaned) > length:
            codes.append(cleaned[:length])
    return codes


class InMemoryTaxRuleStore:
    def __init__(self, rules: dict[tuple[str, str], ValuationRule] | None = None) -> None:
        self.rules = dict(rules or {})

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> InMemoryTaxRuleStore:
        store = cls()
        for row in payload.get("rules", []):
            minimum = row.get("minimum_valuation_usd")
            store.add(
                row["destination_country"],
                ValuationRule(
                    classification_code=row["classification_code"],
                    customs_rate_percent=Decimal(str(row["customs_rate_percent"])),
                    local_tax_rate_percent=Decimal(str(row["local_tax_rate_percent"])),
                    minimum_valuation_usd=Decimal(str(minimum)) if minimum is not None else None,
                    rule_confidence=float(row.get("rule_confidence", 1.0)),
                    description=row.get("description"),
                ),
            )
        return store

    @classmethod
    def from_file(cls, path: Path) -> InMemoryTaxRuleStore:
        with path.open("r", encoding="utf-8") as handle:
            return cls.from_payload(json.load(handle))

    def add(self, destination_country: str, rule: ValuationRule) -> None:
        self.rules[(rule.classification_code, destination_country.upper())] = rule

    async def lookup(self, classification_code: str, destination_country: str) -> ValuationRule | None:
        country = destination_country.upper()
        for code in candidate_codes(classification_code):
            rule = self.rules.get((code, country))
            if rule is not None:
                return rule
        return None
