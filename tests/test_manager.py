import logging
import time
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import FIXED_NOW, FakePrimary, FakeSecondary, make_envelope
from data_provider.base import (
    InstrumentNotFoundError,
    InvalidPeriodError,
    InvalidSymbolError,
    SecondaryUnavailableError,
    StockDataFetcherManager,
    UpstreamUnavailableError,
)
from data_provider.stock_types import SecondaryStatus
from data_provider.yahoo_fetcher import extract_identity

T1, T2, T3 = 1704153600, 1704240000, 1704326400


@pytest.fixture
def build(config, fixed_now):
    managers = []

    def _build(primary=None, secondary=None, **overrides):
        for key, value in overrides.items():
            setattr(config, key, value)
        manager = StockDataFetcherManager(
            primary=primary or FakePrimary(),
            secondary=secondary or FakeSecondary(),
            config=config,
            clock=fixed_now,
        )
        managers.append(manager)
        return manager

    yield _build
    for manager in managers:
        manager.shutdown()


def _pufa_primary(**kwargs):
    envelope = make_envelope(
        symbol="600000.SS",
        price=10.5,
        long_name="Shanghai Pudong Development Bank Co.,Ltd.",
        short_name="SPDB",
        currency="CNY",
    )
    return FakePrimary(envelopes={"600000.SS": envelope}, **kwargs)


def test_china_stock_uses_localized_name(build):
    primary, secondary = _pufa_primary(), FakeSecondary(name="浦发银行")
    manager = build(primary, secondary)

    info = manager.get_stock_info("600000.ss")

    assert info.symbol == "600000.SS"
    assert info.name == "浦发银行"
    assert info.current_price == Decimal("10.5")
    assert info.currency == "CNY"
    assert info.retrieved_at == FIXED_NOW
    assert secondary.requests == ["1.600000"]
    assert primary.calls == 1


def test_shenzhen_secid(build):
    secondary = FakeSecondary(name="平安银行")
    manager = build(FakePrimary(), secondary)

    assert manager.get_stock_info("000001.SZ").name == "平安银行"
    assert secondary.requests == ["0.000001"]


@pytest.mark.parametrize(
    "secondary",
    [
        FakeSecondary(name=""),
        FakeSecondary(error=SecondaryUnavailableError('error', "boom")),
        FakeSecondary(error=SecondaryUnavailableError('timeout', "slow")),
        FakeSecondary(error=RuntimeError("unexpected")),
    ],
)
def test_china_stock_falls_back_to_primary_name(build, secondary):
    manager = build(_pufa_primary(), secondary)

    info = manager.get_stock_info("600000.SS")

    assert info.name == "Shanghai Pudong Development Bank Co.,Ltd."
    assert info.current_price == Decimal("10.5")


def test_international_makes_single_upstream_call(build):
    envelope = make_envelope(symbol="AAPL")
    primary, secondary = FakePrimary(envelopes={"AAPL": envelope}), FakeSecondary()
    manager = build(primary, secondary)

    info = manager.get_stock_info("aapl")

    assert info == extract_identity(envelope, "AAPL", retrieved_at=FIXED_NOW)
    assert primary.calls == 1
    assert secondary.calls == 0


def test_info_window_uses_lookback(build, config):
    primary = FakePrimary()
    manager = build(primary)

    manager.get_stock_info("AAPL")

    symbol, start, end = primary.requests[0]
    assert symbol == "AAPL"
    assert end == FIXED_NOW
    assert (end - start).days == config.info_lookback_days


@pytest.mark.parametrize("symbol", ["CASH_USD", "cash_rmb"])
def test_cash_makes_no_upstream_calls(build, symbol):
    primary, secondary = FakePrimary(), FakeSecondary()
    manager = build(primary, secondary)

    info = manager.get_stock_info(symbol)

    assert info.current_price == Decimal("1")
    assert info.symbol == symbol.upper()
    assert primary.calls == 0
    assert secondary.calls == 0


def test_invalid_symbol_makes_no_upstream_calls(build):
    primary, secondary = FakePrimary(), FakeSecondary()
    manager = build(primary, secondary)

    with pytest.raises(InvalidSymbolError):
        manager.get_stock_info("   ")
    assert primary.calls == 0
    assert secondary.calls == 0


@pytest.mark.parametrize(
    "error",
    [InstrumentNotFoundError("no such symbol"), UpstreamUnavailableError("down", status=503)],
)
def test_primary_failure_propagates_even_when_secondary_succeeds(build, error):
    manager = build(FakePrimary(error=error), FakeSecondary(name="浦发银行"))

    with pytest.raises(type(error)):
        manager.get_stock_info("600000.SS")


def test_unexpected_primary_exception_is_wrapped(build):
    manager = build(FakePrimary(error=KeyError("meta")))

    with pytest.raises(UpstreamUnavailableError):
        manager.get_stock_info("AAPL")


def test_primary_join_timeout(build):
    manager = build(FakePrimary(delay=0.3), primary_join_timeout=0.05)

    with pytest.raises(UpstreamUnavailableError) as exc_info:
        manager.get_stock_info("AAPL")
    assert exc_info.value.timed_out


def test_slow_secondary_is_abandoned_at_deadline(build):
    primary = _pufa_primary(delay=0.05)
    secondary = FakeSecondary(name="浦发银行", delay=0.2)
    manager = build(primary, secondary, secondary_timeout=0.1)

    started = time.monotonic()
    info = manager.get_stock_info("600000.SS")
    elapsed = time.monotonic() - started

    assert info.name == "Shanghai Pudong Development Bank Co.,Ltd."
    assert elapsed < 0.2


def test_secondary_deadline_counts_from_dispatch(build):
    primary = _pufa_primary(delay=0.15)
    secondary = FakeSecondary(name="浦发银行", delay=0.3)
    manager = build(primary, secondary, secondary_timeout=0.1)

    started = time.monotonic()
    info = manager.get_stock_info("600000.SS")
    elapsed = time.monotonic() - started

    assert info.name == "Shanghai Pudong Development Bank Co.,Ltd."
    assert elapsed < 0.25


def test_upstream_calls_run_concurrently(build):
    primary = _pufa_primary(delay=0.15)
    secondary = FakeSecondary(name="浦发银行", delay=0.15)
    manager = build(primary, secondary)

    started = time.monotonic()
    info = manager.get_stock_info("600000.SS")
    elapsed = time.monotonic() - started

    assert info.name == "浦发银行"
    assert elapsed < 0.28


def test_abandoned_lookups_do_not_delay_later_requests(build):
    slow = {f"1.60000{i}": 0.5 for i in range(4)}
    primary = FakePrimary(delay=0.02)
    secondary = FakeSecondary(names={"0.000001": "平安银行"}, delays={**slow, "0.000001": 0.01})
    manager = build(primary, secondary, fetch_max_workers=4, secondary_timeout=0.1)

    for i in range(4):
        assert manager.get_stock_info(f"60000{i}.SS").name == f"60000{i}.SS Long Name"

    started = time.monotonic()
    info = manager.get_stock_info("000001.SZ")
    elapsed = time.monotonic() - started

    assert info.name == "平安银行"
    assert elapsed < 0.1


@pytest.mark.parametrize(
    "secondary, reason",
    [
        (FakeSecondary(delay=0.3), "timeout"),
        (FakeSecondary(name=""), "empty"),
        (FakeSecondary(error=SecondaryUnavailableError('error', "boom")), "error"),
    ],
)
def test_fallback_is_logged_with_reason(build, caplog, secondary, reason):
    manager = build(_pufa_primary(), secondary, secondary_timeout=0.05)

    with caplog.at_level(logging.WARNING, logger="data_provider.base"):
        info = manager.get_stock_info("600000.SS")

    assert info.name == "Shanghai Pudong Development Bank Co.,Ltd."
    warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert any("600000.SS" in msg and f"原因: {reason}" in msg for msg in warnings)


def test_localized_name_success_logs_no_warning(build, caplog):
    manager = build(_pufa_primary(), FakeSecondary(name="浦发银行"))

    with caplog.at_level(logging.WARNING, logger="data_provider.base"):
        manager.get_stock_info("600000.SS")

    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


def test_secondary_conversion_failure_is_not_fatal(build, caplog):
    primary, secondary = FakePrimary(), FakeSecondary()
    manager = build(primary, secondary)

    with caplog.at_level(logging.WARNING, logger="data_provider.base"):
        info = manager.get_stock_info("60000.SS")

    assert info.name == "60000.SS Long Name"
    assert primary.calls == 1
    assert secondary.calls == 0
    assert any("原因: error" in r.getMessage() for r in caplog.records)


def test_lookup_name_outcomes(build):
    manager = build()

    manager._secondary = FakeSecondary(name="浦发银行")
    assert manager._lookup_name("1.600000").status is SecondaryStatus.SUCCESS

    manager._secondary = FakeSecondary(name="")
    assert manager._lookup_name("1.600000").status is SecondaryStatus.EMPTY

    manager._secondary = FakeSecondary(error=SecondaryUnavailableError('timeout'))
    assert manager._lookup_name("1.600000").status is SecondaryStatus.TIMED_OUT

    manager._secondary = FakeSecondary(error=ValueError("bad"))
    assert manager._lookup_name("1.600000").status is SecondaryStatus.ERRORED


# === 历史数据 ===

def test_historical_data(build):
    envelope = make_envelope(timestamps=[T3, T1, T2], closes=[3.0, 1.0, 0])
    primary = FakePrimary(envelopes={"AAPL": envelope})
    manager = build(primary)

    series = manager.get_historical_data("aapl", "1m")

    assert [p.close for p in series] == [Decimal("1"), Decimal("3")]
    symbol, start, end = primary.requests[0]
    assert symbol == "AAPL"
    assert end == FIXED_NOW
    assert start == datetime(2024, 2, 29, 8, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("period, start", [
    ("3M", datetime(2023, 12, 31, 8, 0, tzinfo=timezone.utc)),
    ("6M", datetime(2023, 9, 30, 8, 0, tzinfo=timezone.utc)),
    ("1Y", datetime(2023, 3, 31, 8, 0, tzinfo=timezone.utc)),
])
def test_historical_period_windows(build, period, start):
    primary = FakePrimary()
    manager = build(primary)

    manager.get_historical_data("AAPL", period)

    assert primary.requests[0][1] == start


@pytest.mark.parametrize("period", ["", "2W", "5Y", "1D", None])
def test_invalid_period_fails_before_io(build, period):
    primary = FakePrimary()
    manager = build(primary)

    with pytest.raises(InvalidPeriodError):
        manager.get_historical_data("AAPL", period)
    assert primary.calls == 0


def test_cash_history_is_empty(build):
    primary = FakePrimary()
    manager = build(primary)

    assert manager.get_historical_data("CASH_USD", "1Y") == []
    assert primary.calls == 0


def test_historical_failure_propagates(build):
    manager = build(FakePrimary(error=InstrumentNotFoundError("gone")))

    with pytest.raises(InstrumentNotFoundError):
        manager.get_historical_data("AAPL", "1M")
