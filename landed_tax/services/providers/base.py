from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol

from landed_tax.core.redis import redis_client
from landed_tax.services.types import Classification, CurrencyPair, ExchangeRate, Item, ValuationRule


@dataclass(frozen=True)
class LiveRate:
    rate: Decimal
    fetched_at: datetime


class ClassificationResolver(Protocol):
    async def resolve(self, item: Item) -> Classification: ...


class RateProvider(Protocol):
    async def fetch_live(self, pair: CurrencyPair) -> LiveRate: ...


class TaxRuleStore(Protocol):
    async def lookup(self, classification_code: str, destination_country: str) -> ValuationRule | None: ...


class RateSnapshotStore(Protocol):
    async def load(self, pair: CurrencyPair) -> ExchangeRate | None: ...

    async def save(self, rate: ExchangeRate) -> None: ...


async def redis_get_json(key: str) -> dict[str, Any] | None:
    value = await redis_client.client.get(key)
    if not value:
        return None
    return json.loads(value)


async def redis_set_json(key: str, payload: dict[str, Any], ttl_seconds: int) -> None:
    await redis_client.client.set(key, json.dumps(payload), ex=ttl_seconds)
