from typing import Dict

import httpx
from pymongo.database import Database

from app_logger import get_logger
from cache import TTLCache
from config import get_settings

logger = get_logger("currency")

SETTINGS = "settings"
RATES_DOC_ID = "exchangeRates"

_rates_cache = TTLCache(ttl=60 * 60)


def _fetch_rates_from_api() -> Dict[str, float]:
    settings = get_settings()
    if not settings.open_exchange_rates_api_key:
        logger.warning("No exchange rates stored and OPEN_EXCHANGE_RATES_API_KEY is not set")
        return {}
    resp = httpx.get(
        settings.open_exchange_rates_url,
        params={"app_id": settings.open_exchange_rates_api_key},
        timeout=10.0,
    )
    resp.raise_for_status()
    rates = resp.json().get("rates")
    if not isinstance(rates, dict):
        raise ValueError("Invalid exchange rate response")
    return rates


def get_exchange_rates(db: Database) -> Dict[str, float]:
    """
    USD based rates. The admin-maintained ``settings/exchangeRates`` document
    wins; otherwise rates come from Open Exchange Rates. Cached for an hour,
    and the last known rates are served when a refresh fails.
    """
    cached = _rates_cache.get("rates")
    if cached is not None:
        return cached

    try:
        doc = db[SETTINGS].find_one({"_id": RATES_DOC_ID})
        rates = doc["rates"] if doc and doc.get("rates") else _fetch_rates_from_api()
    except (httpx.HTTPError, ValueError) as e:
        logger.error("Could not refresh exchange rates: %s", e)
        return _rates_cache.last_value("rates") or {}

    if rates:
        _rates_cache.set("rates", rates)
    return rates


def set_exchange_rates(db: Database, rates: Dict[str, float]) -> Dict[str, float]:
    clean = {code.upper(): float(value) for code, value in rates.items() if float(value) > 0}
    db[SETTINGS].replace_one({"_id": RATES_DOC_ID}, {"_id": RATES_DOC_ID, "rates": clean}, upsert=True)
    _rates_cache.clear()
    return clean


def convert_currency(amount: float, from_currency: str, to_currency: str, rates: Dict[str, float]) -> float:
    if not rates:
        return amount
    src = from_currency.upper()
    dst = to_currency.upper()
    if src == dst:
        return amount
    if src != "USD" and not rates.get(src):
        logger.warning("No exchange rate for %s", src)
        return amount
    if dst != "USD" and not rates.get(dst):
        logger.warning("No exchange rate for %s", dst)
        return amount

    in_usd = amount if src == "USD" else amount / rates[src]
    return in_usd if dst == "USD" else in_usd * rates[dst]
