"""
Market Cache - Alpha Vantage time series with a persistent TTL cache.

A lookup is served from the market_cache table while the entry is fresh
(now < expires_at). Otherwise the series is fetched, parsed into OHLCV
points, written back with a new expiry (replacing the old row) and announced
on the ChangeBus as HISTORICAL_UPDATED.

A failed refetch raises MarketDataError even when an expired entry is still
on disk; callers fall back to their own static estimates.
"""
import asyncio
import enum
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import httpx

from ..database import RecordStore
from ..errors import MarketDataError
from ..records import OHLCV, Quote
from .event_bus import ChangeBus, HistoricalUpdated, Topic

logger = logging.getLogger(__name__)

API_BASE = "https://www.alphavantage.co/query"


class Granularity(enum.Enum):
    DAILY = "daily"
    MONTHLY = "monthly"


TTLS = {
    Granularity.DAILY: timedelta(hours=24),
    Granularity.MONTHLY: timedelta(days=30),
}
QUOTE_KEY = "quote"
QUOTE_TTL = timedelta(minutes=5)

_FUNCTIONS = {
    Granularity.DAILY: ("TIME_SERIES_DAILY_ADJUSTED", {"outputsize": "full"}),
    Granularity.MONTHLY: ("TIME_SERIES_MONTHLY_ADJUSTED", {}),
}
_SERIES_KEYS = {
    Granularity.DAILY: ("Time Series (Daily)", "Daily Time Series"),
    Granularity.MONTHLY: ("Monthly Adjusted Time Series", "Monthly Time Series"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_series(data: dict, granularity: Granularity) -> List[OHLCV]:
    series = None
    for name in _SERIES_KEYS[granularity]:
        if name in data:
            series = data[name]
            break
    if not isinstance(series, dict):
        raise MarketDataError(f"Unexpected Alpha Vantage {granularity.value} response")

    points = []
    try:
        for date, row in series.items():
            adjusted = row.get("5. adjusted close")
            volume = row.get("6. volume") or row.get("5. volume")
            points.append(
                OHLCV(
                    date=date,
                    open=float(row["1. open"]),
                    high=float(row["2. high"]),
                    low=float(row["3. low"]),
                    close=float(row["4. close"]),
                    adjusted_close=float(adjusted) if adjusted else None,
                    volume=int(float(volume)) if volume else None,
                )
            )
    except (KeyError, TypeError, ValueError) as e:
        raise MarketDataError(f"Malformed {granularity.value} data point: {e}") from e

    points.sort(key=lambda p: p.date)
    return points


def parse_quote(symbol: str, data: dict) -> Quote:
    quote = data.get("Global Quote")
    if quote is None:
        quote = next((v for k, v in data.items() if k.startswith("Global Quote")), None)
    if not quote or not (quote.get("05. price") or quote.get("price")):
        raise MarketDataError("Unexpected Global Quote response")
    try:
        price = float(quote.get("05. price") or quote.get("price"))
    except ValueError as e:
        raise MarketDataError(f"Malformed quote price: {e}") from e
    return Quote(symbol=symbol, price=price, timestamp=quote.get("07. latest trading day"))


class MarketCache:
    def __init__(
        self,
        store: RecordStore,
        bus: ChangeBus,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = None,
        base_url: str = API_BASE,
        max_attempts: int = 3,
        backoff: float = 0.25,
        timeout: float = 10.0,
    ):
        self.store = store
        self.bus = bus
        self.api_key = api_key
        self.client = client
        self.clock = clock or _utcnow
        self.base_url = base_url
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.timeout = timeout
        self._in_flight: Dict[tuple, asyncio.Task] = {}

    async def get_series(self, symbol: str, granularity) -> List[OHLCV]:
        granularity = Granularity(granularity)
        symbol = symbol.upper()

        cached = await self._read_fresh(symbol, granularity.value)
        if cached is not None:
            return [OHLCV(**point) for point in cached]

        return await self._dedupe((symbol, granularity.value), lambda: self._refresh_series(symbol, granularity))

    async def get_quote(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        cached = await self._read_fresh(symbol, QUOTE_KEY)
        if cached is not None:
            return Quote(**cached)
        return await self._dedupe((symbol, QUOTE_KEY), lambda: self._refresh_quote(symbol))

    async def prune_older_than(self, days: int) -> int:
        cutoff = self.clock() - timedelta(days=days)
        removed = await self.store.execute_non_query(
            "DELETE FROM market_cache WHERE fetched_at < :cutoff", {"cutoff": cutoff.isoformat()}
        )
        logger.info("Pruned %s market cache entries older than %s days", removed, days)
        return removed

    async def _dedupe(self, key: tuple, factory):
        # Concurrent misses for the same key await one refresh task.
        # Cancelling a caller never cancels the task itself.
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._in_flight[key] = task
            task.add_done_callback(lambda t: self._refresh_done(key, t))
        return await asyncio.shield(task)

    def _refresh_done(self, key: tuple, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Refresh for %s/%s failed: %s", key[0], key[1], task.exception())

    async def _read_fresh(self, symbol: str, granularity: str):
        rows = await self.store.execute_query(
            "SELECT payload, expires_at FROM market_cache WHERE symbol = :symbol AND granularity = :granularity LIMIT 1",
            {"symbol": symbol, "granularity": granularity},
        )
        if not rows:
            return None
        expires_at = _parse_time(rows[0]["expires_at"])
        if expires_at is None or self.clock() >= expires_at:
            return None
        try:
            return json.loads(rows[0]["payload"])
        except (TypeError, ValueError):
            logger.warning("Discarding unreadable cache entry for %s/%s", symbol, granularity)
            return None

    async def _write(self, symbol: str, granularity: str, payload, ttl: timedelta) -> None:
        now = self.clock()
        await self.store.execute_non_query(
            "INSERT OR REPLACE INTO market_cache (symbol, granularity, payload, fetched_at, expires_at) "
            "VALUES (:symbol, :granularity, :payload, :fetched_at, :expires_at)",
            {
                "symbol": symbol,
                "granularity": granularity,
                "payload": json.dumps(payload),
                "fetched_at": now.isoformat(),
                "expires_at": (now + ttl).isoformat(),
            },
        )

    async def _refresh_series(self, symbol: str, granularity: Granularity) -> List[OHLCV]:
        function, extra = _FUNCTIONS[granularity]
        data = await self._fetch_json(function, symbol, extra)
        series = parse_series(data, granularity)
        await self._write(symbol, granularity.value, [p.to_dict() for p in series], TTLS[granularity])
        logger.info("Cached %s %s points for %s", len(series), granularity.value, symbol)
        self.bus.emit(Topic.HISTORICAL_UPDATED, HistoricalUpdated(symbol=symbol, granularity=granularity.value))
        return series

    async def _refresh_quote(self, symbol: str) -> Quote:
        data = await self._fetch_json("GLOBAL_QUOTE", symbol, {})
        quote = parse_quote(symbol, data)
        await self._write(symbol, QUOTE_KEY, quote.to_dict(), QUOTE_TTL)
        return quote

    async def _fetch_json(self, function: str, symbol: str, extra: dict) -> dict:
        if not self.api_key:
            raise MarketDataError("Alpha Vantage API key not configured. Set ALPHA_VANTAGE_KEY.")
        params = {"function": function, "symbol": symbol, "apikey": self.api_key, **extra}

        last_error = None
        for attempt in range(self.max_attempts):
            if attempt > 0:
                await asyncio.sleep(self.backoff * (2 ** (attempt - 1)))
            try:
                return await self._get(params)
            except MarketDataError as e:
                last_error = e
                logger.warning("Alpha Vantage %s for %s failed (attempt %s/%s): %s",
                               function, symbol, attempt + 1, self.max_attempts, e)
        raise last_error

    async def _get(self, params: dict) -> dict:
        try:
            if self.client is not None:
                response = await self.client.get(self.base_url, params=params, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(self.base_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise MarketDataError(f"Alpha Vantage HTTP error {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise MarketDataError(f"Alpha Vantage request failed: {e}") from e
        except ValueError as e:
            raise MarketDataError(f"Alpha Vantage returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise MarketDataError("Alpha Vantage returned an unexpected body")
        for field in ("Error Message", "Note", "Information"):
            if field in data:
                raise MarketDataError(f"Alpha Vantage {field}: {data[field]}")
        return data
