"""
Pytest configuration and fixtures
Fake HTTP sessions, fake upstream clients and a controllable clock; no test touches the network.
"""
import sys
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from data_provider.base import SecondaryUnavailableError
from src.config import Config

FIXED_NOW = datetime(2024, 3, 31, 8, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, invalid_json=False):
        self.status_code = status_code
        self._payload = payload
        self._invalid_json = invalid_json

    def json(self):
        if self._invalid_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


class FakeSession:
    """Replays queued responses; an Exception instance in the queue is raised instead."""

    def __init__(self, *responses):
        self._responses = list(responses)
        self.calls = []
        self.closed = False

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({'url': url, 'params': params, 'headers': headers, 'timeout': timeout})
        if not self._responses:
            raise AssertionError(f"unexpected request to {url}")
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_envelope(
    symbol="AAPL",
    price=189.5,
    long_name="Apple Inc.",
    short_name="Apple",
    currency="USD",
    timestamps=None,
    closes=None,
):
    meta = {'symbol': symbol}
    if currency is not None:
        meta['currency'] = currency
    if price is not None:
        meta['regularMarketPrice'] = price
    if long_name is not None:
        meta['longName'] = long_name
    if short_name is not None:
        meta['shortName'] = short_name

    result = {'meta': meta}
    if timestamps is not None:
        result['timestamp'] = timestamps
    if closes is not None:
        result['indicators'] = {'quote': [{'close': closes}]}
    return {'chart': {'result': [result], 'error': None}}


class FakePrimary:
    """Stands in for YahooChartFetcher.fetch_chart."""

    name = "FakePrimary"

    def __init__(self, delay=0.0, error=None, envelopes=None, errors=None):
        self.delay = delay
        self.error = error
        self.envelopes = envelopes or {}
        self.errors = errors or {}
        self.requests = []
        self._lock = threading.Lock()

    @property
    def calls(self):
        with self._lock:
            return len(self.requests)

    def fetch_chart(self, symbol, period_start, period_end):
        with self._lock:
            self.requests.append((symbol, period_start, period_end))
        if self.delay:
            time.sleep(self.delay)
        if symbol in self.errors:
            raise self.errors[symbol]
        if self.error is not None:
            raise self.error
        if symbol in self.envelopes:
            return self.envelopes[symbol]
        return make_envelope(symbol=symbol, long_name=f"{symbol} Long Name", short_name=f"{symbol} Short")


class FakeSecondary:
    """Stands in for EastmoneyNameFetcher.fetch_localized_name."""

    name = "FakeSecondary"

    def __init__(self, name="浦发银行", delay=0.0, error=None, names=None, delays=None):
        self.name_value = name
        self.delay = delay
        self.error = error
        self.names = names or {}
        self.delays = delays or {}
        self.requests = []
        self._lock = threading.Lock()

    @property
    def calls(self):
        with self._lock:
            return len(self.requests)

    def fetch_localized_name(self, secondary_id):
        with self._lock:
            self.requests.append(secondary_id)
        delay = self.delays.get(secondary_id, self.delay)
        if delay:
            time.sleep(delay)
        if self.error is not None:
            raise self.error
        name = self.names.get(secondary_id, self.name_value)
        if not name:
            raise SecondaryUnavailableError('empty', "名称为空")
        return name


@pytest.fixture
def config():
    return Config(
        yahoo_chart_base_url="https://chart.test",
        eastmoney_base_url="https://em.test",
        exchange_rate_base_url="https://fx.test",
        exchange_rate_api_key="test-key",
        primary_timeout=1.0,
        secondary_timeout=1.0,
        exchange_rate_timeout=2.0,
        primary_join_timeout=5.0,
        primary_max_attempts=2,
        primary_retry_wait_max=0.01,
        stock_info_cache_ttl=300.0,
        historical_cache_ttl=300.0,
        exchange_rate_cache_ttl=3600.0,
        cache_cleanup_interval=600.0,
        info_lookback_days=7,
        fetch_max_workers=4,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fixed_now():
    return lambda: FIXED_NOW
