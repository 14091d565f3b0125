import logging
from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence

from ..errors import MarketDataError
from ..records import OHLCV
from .market_cache import Granularity, MarketCache

logger = logging.getLogger(__name__)

# Fallback annual rates when no usable history is available.
PRESET_RATES = {
    "NVDA": 0.26,
    "AAPL": 0.11,
    "MSFT": 0.18,
    "TSLA": 0.25,
    "NKE": 0.08,
    "AMZN": 0.17,
    "GOOGL": 0.16,
    "META": 0.20,
    "JPM": 0.10,
    "UNH": 0.12,
}
DEFAULT_RATE = 0.07

_DAYS_PER_YEAR = 365.25


def _as_date(value: str) -> date:
    return datetime.strptime(value[:10], "%Y-%m-%d").date()


def _years_between(start: str, end: str) -> float:
    return (_as_date(end) - _as_date(start)).days / _DAYS_PER_YEAR


def compute_cagr_from_series(series: Sequence[OHLCV]) -> Optional[float]:
    """Annualized growth between the first and last point (oldest -> newest)."""
    if not series or len(series) < 2:
        return None
    first, last = series[0].price, series[-1].price
    if not first or not last or first <= 0:
        return None
    years = _years_between(series[0].date, series[-1].date)
    if years <= 0:
        return None
    return (last / first) ** (1 / years) - 1


async def _history(market: MarketCache, symbol: str, years: int, today: date) -> List[OHLCV]:
    if years <= 1:
        daily = await market.get_series(symbol, Granularity.DAILY)
        cutoff = (today - timedelta(days=365)).isoformat()
        return [p for p in daily if p.date >= cutoff]
    monthly = await market.get_series(symbol, Granularity.MONTHLY)
    return monthly[-max(12 * years, 12):]


async def historical_cagr(market: MarketCache, symbol: str, years: int, today: date = None) -> Optional[float]:
    """
    CAGR from the price on (today - years) up to the latest price.

    Uses daily data for one year or less, monthly data otherwise. A one-year
    request that cannot get enough daily points falls back to monthly data.
    Returns None when there is not enough history.
    """
    years = max(1, int(years or 1))
    today = today or date.today()

    try:
        data = await _history(market, symbol, years, today)
    except MarketDataError as e:
        logger.warning("Historical data unavailable for %s: %s", symbol, e)
        data = []

    if len(data) < 2 and years <= 1:
        try:
            data = await _history(market, symbol, 2, today)
        except MarketDataError as e:
            logger.warning("Monthly fallback unavailable for %s: %s", symbol, e)

    if len(data) < 2:
        return None

    try:
        target = today.replace(year=today.year - years)
    except ValueError:
        # Feb 29 -> Feb 28
        target = today.replace(year=today.year - years, day=28)
    start = data[0]
    for point in data:
        if _as_date(point.date) <= target:
            start = point
        else:
            break

    end = data[-1]
    if not start.price or not end.price or start.price <= 0:
        return None
    span = _years_between(start.date, end.date)
    if span <= 0:
        return None
    return (end.price / start.price) ** (1 / span) - 1


async def project_with_historical_cagr(market: MarketCache, amount: float, symbol: str, years: int,
                                       today: date = None) -> dict:
    """Future value of `amount` after `years`, growing at the symbol's historical CAGR."""
    rate = await historical_cagr(market, symbol, years, today)
    source = "historical"
    if rate is None:
        rate = PRESET_RATES.get(symbol.upper(), DEFAULT_RATE)
        source = "preset" if symbol.upper() in PRESET_RATES else "default"
    return {
        "symbol": symbol.upper(),
        "rate": rate,
        "future_value": amount * (1 + rate) ** years,
        "source": source,
    }
