import httpx
import pytest

import currency
from cache import TTLCache

RATES = {"PEN": 3.75, "CLP": 950.0, "MXN": 17.0}


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_convert_through_usd():
    assert currency.convert_currency(10, "USD", "PEN", RATES) == pytest.approx(37.5)
    assert currency.convert_currency(37.5, "PEN", "USD", RATES) == pytest.approx(10)
    assert currency.convert_currency(375, "pen", "clp", RATES) == pytest.approx(95000)


def test_convert_unknown_or_same_currency_returns_amount():
    assert currency.convert_currency(10, "USD", "EUR", RATES) == 10
    assert currency.convert_currency(10, "PEN", "PEN", RATES) == 10
    assert currency.convert_currency(10, "USD", "PEN", {}) == 10


def test_stored_rates_take_priority(db, monkeypatch):
    monkeypatch.setattr(currency.httpx, "get", lambda *a, **kw: pytest.fail("should not call the API"))
    currency.set_exchange_rates(db, {"pen": 3.8, "bad": 0})
    assert currency.get_exchange_rates(db) == {"PEN": 3.8}


def test_rates_fetched_from_api_and_cached(db, monkeypatch):
    monkeypatch.setenv("OPEN_EXCHANGE_RATES_API_KEY", "oxr")
    calls = []

    def fake_get(url, params=None, timeout=None):
        calls.append(params)
        return httpx.Response(200, json={"base": "USD", "rates": RATES}, request=httpx.Request("GET", url))

    monkeypatch.setattr(currency.httpx, "get", fake_get)
    assert currency.get_exchange_rates(db) == RATES
    assert currency.get_exchange_rates(db) == RATES
    assert calls == [{"app_id": "oxr"}]


def test_no_source_means_no_rates(db, monkeypatch):
    monkeypatch.delenv("OPEN_EXCHANGE_RATES_API_KEY", raising=False)
    assert currency.get_exchange_rates(db) == {}


def test_failed_refresh_serves_stale_rates(db, monkeypatch):
    clock = Clock()
    monkeypatch.setattr(currency, "_rates_cache", TTLCache(ttl=3600, clock=clock))
    monkeypatch.setenv("OPEN_EXCHANGE_RATES_API_KEY", "oxr")

    monkeypatch.setattr(currency.httpx, "get", lambda url, **kw: httpx.Response(200, json={"rates": RATES}, request=httpx.Request("GET", url)))
    assert currency.get_exchange_rates(db) == RATES

    clock.now = 7200
    monkeypatch.setattr(currency.httpx, "get", lambda url, **kw: httpx.Response(503, request=httpx.Request("GET", url)))
    assert currency.get_exchange_rates(db) == RATES
