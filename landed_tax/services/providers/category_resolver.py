from __future__ import annotations

import json
from pathlib import Path

from landed_tax.services.errors import ClassificationUnavailable
from landed_tax.services.types import Classification, Item


class CategoryClassificationResolver:
    """Maps an item's declared category onto a classification code from a fixed table."""

    def __init__(self, category_codes: dict[str, str], confidence: float = 0.7) -> None:
        self.category_codes = {key.lower(): code for key, code in category_codes.items()}
        self.confidence = confidence

    @classmethod
    def from_file(cls, path: Path) -> CategoryClassificationResolver:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        return cls(payload.get("category_codes", {}), float(payload.get("category_confidence", 0.7)))

    async def resolve(self, item: Item) -> Classification:
        if not item.category:
            raise ClassificationUnavailable(item.id, "item has no category")
        code = self.category_codes.get(item.category.lower())
        if code is None:
            raise ClassificationUnavailable(item.id, f"no classification for category {item.category!r}")
        return Classification(code=code, category=item.category, confidence=self.confidence)
