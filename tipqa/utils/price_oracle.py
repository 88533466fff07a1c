"""
Price oracle for the tip asset.

Quotes are advisory (they feed a tolerance-based tip check), so availability
wins over freshness: get_price() never raises. A fresh snapshot is served from
memory, a stale one triggers a single fetch attempt, and if that fails the
stale price (or, before any successful fetch, a fixed fallback) is returned.

No single-flight: concurrent callers during a miss may each issue a request.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx

from tipqa.utils.logging import get_logger

logger = get_logger(__name__, category="payments")

DEFAULT_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"
DEFAULT_TTL = timedelta(minutes=5)
DEFAULT_FALLBACK_PRICE = 3000.0


class PriceFetchError(Exception):
    """The price feed returned an error status or an unusable body."""


@dataclass(frozen=True)
class PriceSnapshot:
    price: float
    fetched_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PriceOracle:
    def __init__(
        self,
        *,
        url: str = DEFAULT_PRICE_URL,
        asset_id: str = "ethereum",
        quote_currency: str = "usd",
        ttl: timedelta = DEFAULT_TTL,
        fallback_price: float = DEFAULT_FALLBACK_PRICE,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not math.isfinite(fallback_price) or fallback_price <= 0:
            raise ValueError("fallback_price must be a positive finite number")
        self.url = url
        self.asset_id = asset_id
        self.quote_currency = quote_currency
        self.ttl = ttl
        self.fallback_price = fallback_price
        self._timeout = httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 5.0))
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._snapshot: Optional[PriceSnapshot] = None

    @property
    def snapshot(self) -> Optional[PriceSnapshot]:
        return self._snapshot

    def is_fresh(self) -> bool:
        snapshot = self._snapshot
        return snapshot is not None and self._clock() - snapshot.fetched_at < self.ttl

    async def get_price(self) -> float:
        snapshot = self._snapshot
        if snapshot is not None and self._clock() - snapshot.fetched_at < self.ttl:
            logger.debug("Using cached %s price: %s", self.asset_id, snapshot.price)
            return snapshot.price

        try:
            price = await self._fetch_price()
        except (httpx.HTTPError, httpx.InvalidURL, PriceFetchError) as exc:
            # Re-read: a concurrent caller may have refreshed meanwhile
            fallback = self._snapshot
            if fallback is not None:
                logger.warning(
                    "Price fetch failed (%s), using stale price %s from %s",
                    exc,
                    fallback.price,
                    fallback.fetched_at.isoformat(),
                )
                return fallback.price
            logger.warning(
                "Price fetch failed (%s), using fallback price %s", exc, self.fallback_price
            )
            return self.fallback_price

        self._snapshot = PriceSnapshot(price=price, fetched_at=self._clock())
        logger.info("%s price updated: %s %s", self.asset_id, price, self.quote_currency)
        return price

    async def _fetch_price(self) -> float:
        client = await self._get_client()
        response = await client.get(
            self.url,
            params={"ids": self.asset_id, "vs_currencies": self.quote_currency},
        )
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError as exc:
            raise PriceFetchError(f"Invalid JSON from price feed: {exc}") from exc

        price = None
        if isinstance(data, dict):
            asset = data.get(self.asset_id)
            if isinstance(asset, dict):
                price = asset.get(self.quote_currency)

        # bool is an int subclass; json also parses NaN and Infinity literals
        if (
            isinstance(price, bool)
            or not isinstance(price, (int, float))
            or not math.isfinite(price)
            or price <= 0
        ):
            raise PriceFetchError(f"Invalid price data from feed: {data!r}")
        return float(price)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
