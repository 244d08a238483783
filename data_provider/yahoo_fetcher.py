# -*- coding: utf-8 -*-
"""
===================================
YahooChartFetcher - 主数据源
===================================

数据来源：Yahoo Finance v8 chart 接口
定位：价格、币种、兜底名称与日线收盘价的唯一来源

响应结构（只列出用到的字段，所有层级都可能缺失）：
    chart.result[0].meta.{symbol, currency, regularMarketPrice, longName, shortName}
    chart.result[0].timestamp[]
    chart.result[0].indicators.quote[0].close[]
    chart.error.{code, description}
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .base import (
    BaseFetcher,
    InstrumentNotFoundError,
    MalformedResponseError,
    UpstreamUnavailableError,
)
from .stock_types import HistoricalPricePoint, StockInfo
from .symbols import infer_currency

logger = logging.getLogger(__name__)


def _is_transient(exc: BaseException) -> bool:
    """网络错误、超时、429 与 5xx 才值得重试"""
    if not isinstance(exc, UpstreamUnavailableError):
        return False
    return exc.status is None or exc.status == 429 or exc.status >= 500


def _text(value: Any) -> str:
    if not isinstance(value, str):
        return ''
    return value.strip()


def _positive_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return None
    if not number.is_finite() or number <= 0:
        return None
    return number


def _first_result(envelope: Any) -> Dict[str, Any]:
    """取出 chart.result[0]，结果为空视为证券不存在"""
    if not isinstance(envelope, dict):
        raise MalformedResponseError("chart 响应不是 JSON 对象")
    chart = envelope.get('chart')
    if not isinstance(chart, dict):
        raise MalformedResponseError("chart 响应缺少 chart 字段")

    results = chart.get('result')
    if not results:
        error = chart.get('error')
        description = ''
        if isinstance(error, dict):
            description = _text(error.get('description')) or _text(error.get('code'))
        raise InstrumentNotFoundError(description or "chart 响应结果为空")
    if not isinstance(results, list) or not isinstance(results[0], dict):
        raise MalformedResponseError("chart.result 结构异常")
    return results[0]


def _close_array(result: Dict[str, Any]) -> Optional[List[Any]]:
    indicators = result.get('indicators')
    if not isinstance(indicators, dict):
        return None
    quotes = indicators.get('quote')
    if not isinstance(quotes, list) or not quotes or not isinstance(quotes[0], dict):
        return None
    closes = quotes[0].get('close')
    return closes if isinstance(closes, list) else None


def extract_series(envelope: Dict[str, Any]) -> List[HistoricalPricePoint]:
    """
    从 chart 响应中提取日线收盘价序列

    处理：
    1. 时间戳数组与收盘价数组必须等长
    2. 收盘价为 0 / 负数 / null 的点视为"无成交"占位，直接丢弃
    3. 同一时间戳保留最后一个值
    4. 按时间升序排序（不依赖上游顺序）

    Raises:
        InstrumentNotFoundError: chart.result 为空
        MalformedResponseError: 数组缺失一方或长度不一致
    """
    result = _first_result(envelope)
    timestamps = result.get('timestamp')
    closes = _close_array(result)

    if timestamps is None and closes is None:
        return []
    if not isinstance(timestamps, list) or closes is None:
        raise MalformedResponseError("chart 响应缺少 timestamp 或 close 数组")
    if len(timestamps) != len(closes):
        raise MalformedResponseError(
            f"timestamp 与 close 长度不一致: {len(timestamps)} != {len(closes)}"
        )
    if not timestamps:
        return []

    df = pd.DataFrame({'timestamp': timestamps, 'close': closes})
    df['timestamp'] = pd.to_numeric(df['timestamp'], errors='coerce').astype(float)
    df['close'] = pd.to_numeric(df['close'], errors='coerce').astype(float)

    df = df[np.isfinite(df['timestamp']) & np.isfinite(df['close'])]
    df = df[df['close'] > 0]
    df = df.drop_duplicates(subset='timestamp', keep='last')
    df = df.sort_values('timestamp', ascending=True)

    return [
        HistoricalPricePoint(
            timestamp=datetime.fromtimestamp(int(ts), tz=timezone.utc),
            close=Decimal(str(close)),
        )
        for ts, close in zip(df['timestamp'], df['close'])
    ]


def extract_identity(
    envelope: Dict[str, Any],
    requested_symbol: str,
    retrieved_at: Optional[datetime] = None,
) -> StockInfo:
    """
    从 chart 响应中提取股票信息

    名称优先级：longName > shortName > 代码（保证非空）
    币种：meta.currency 非空则使用，否则按代码后缀推断
    价格：meta.regularMarketPrice，缺失时取序列最后一个有效收盘价

    Raises:
        InstrumentNotFoundError: chart.result 为空
        MalformedResponseError: 无法得到任何有效价格
    """
    result = _first_result(envelope)
    meta = result.get('meta')
    if not isinstance(meta, dict):
        meta = {}

    symbol = _text(meta.get('symbol')).upper() or requested_symbol
    name = _text(meta.get('longName')) or _text(meta.get('shortName')) or symbol
    currency = (_text(meta.get('currency')) or infer_currency(symbol)).upper()

    price = _positive_decimal(meta.get('regularMarketPrice'))
    if price is None:
        series = extract_series(envelope)
        if series:
            price = series[-1].close
    if price is None:
        raise MalformedResponseError(f"{symbol} 响应中没有有效价格")

    return StockInfo(
        symbol=symbol,
        name=name,
        current_price=price,
        currency=currency,
        retrieved_at=retrieved_at or datetime.now(timezone.utc),
    )


class YahooChartFetcher(BaseFetcher):
    """
    Yahoo Finance chart 数据源

    一次调用对应一次 HTTP 请求；仅对瞬时错误（网络 / 超时 / 429 / 5xx）按配置重试。
    """

    name = "YahooChartFetcher"

    def __init__(self, config=None, session: Optional[requests.Session] = None):
        if config is None:
            from src.config import get_config
            config = get_config()
        super().__init__(timeout=config.primary_timeout, session=session)
        self._base_url = config.yahoo_chart_base_url
        self._max_attempts = config.primary_max_attempts
        self._retry_wait_max = config.primary_retry_wait_max

    def fetch_chart(self, symbol: str, period_start: datetime, period_end: datetime) -> Dict[str, Any]:
        """
        获取 chart 响应

        Raises:
            UpstreamUnavailableError: 网络错误 / 超时 / 非 200（404 除外）
            InstrumentNotFoundError: 404 或结果为空
            MalformedResponseError: 响应不是合法 JSON
        """
        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=0.5, min=0, max=self._retry_wait_max),
            retry=retry_if_exception(_is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._fetch_chart_once, symbol, period_start, period_end)

    def _fetch_chart_once(self, symbol: str, period_start: datetime, period_end: datetime) -> Dict[str, Any]:
        url = f"{self._base_url}/v8/finance/chart/{symbol}"
        params = {
            'period1': int(period_start.timestamp()),
            'period2': int(period_end.timestamp()),
            'interval': '1d',
        }

        logger.info(f"[Yahoo] 请求 {symbol}: {period_start:%Y-%m-%d} ~ {period_end:%Y-%m-%d}")
        response = self._get(url, params=params)

        if response.status_code == 404:
            raise InstrumentNotFoundError(f"[Yahoo] 未查询到 {symbol}")
        if response.status_code != 200:
            raise UpstreamUnavailableError(
                f"[Yahoo] {symbol} 返回状态码 {response.status_code}",
                status=response.status_code,
            )

        envelope = self._decode_json(response)
        # 提前校验结果非空，空结果不算成功
        _first_result(envelope)
        return envelope
