# -*- coding: utf-8 -*-
"""
===================================
数据源模块
===================================

- YahooChartFetcher: 主数据源（价格 / 币种 / 兜底名称 / 日线）
- EastmoneyNameFetcher: 沪深 A 股中文名称
- StockDataFetcherManager: 并发调度与合并
"""

from .base import (
    VALID_PERIODS,
    DataFetchError,
    InstrumentNotFoundError,
    InvalidFormatError,
    InvalidPeriodError,
    InvalidSymbolError,
    MalformedResponseError,
    SecondaryUnavailableError,
    StockDataFetcherManager,
    UpstreamUnavailableError,
)
from .eastmoney_fetcher import EastmoneyNameFetcher
from .stock_types import HistoricalPricePoint, SecondaryOutcome, SecondaryStatus, StockInfo
from .symbols import InstrumentCategory, classify, normalize_symbol, to_secondary_format
from .yahoo_fetcher import YahooChartFetcher, extract_identity, extract_series

__all__ = [
    'VALID_PERIODS',
    'DataFetchError',
    'InstrumentNotFoundError',
    'InvalidFormatError',
    'InvalidPeriodError',
    'InvalidSymbolError',
    'MalformedResponseError',
    'SecondaryUnavailableError',
    'UpstreamUnavailableError',
    'StockDataFetcherManager',
    'YahooChartFetcher',
    'EastmoneyNameFetcher',
    'StockInfo',
    'HistoricalPricePoint',
    'SecondaryOutcome',
    'SecondaryStatus',
    'InstrumentCategory',
    'classify',
    'normalize_symbol',
    'to_secondary_format',
    'extract_identity',
    'extract_series',
]
