# -*- coding: utf-8 -*-
"""
===================================
数据源基类与管理器
===================================

设计模式：主数据源 + 名称数据源并发
- BaseFetcher: HTTP 数据源基类，统一超时与网络异常转换
- StockDataFetcherManager: 调度器，负责分类、并发拉取、合并与降级

合并策略：
1. 价格 / 币种 / 兜底名称 始终来自主数据源（Yahoo），主数据源失败则整体失败
2. 沪深 A 股额外并发请求东财中文名称，成功则覆盖名称
3. 东财超时 / 为空 / 出错时回退到主数据源名称，并记录日志
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd
import requests

from .stock_types import HistoricalPricePoint, SecondaryOutcome, SecondaryStatus, StockInfo

# 配置日志
logger = logging.getLogger(__name__)


# === 历史区间定义（月数） ===
VALID_PERIODS: Dict[str, int] = {'1M': 1, '3M': 3, '6M': 6, '1Y': 12}


class DataFetchError(Exception):
    """数据获取异常基类"""
    pass


class InvalidSymbolError(DataFetchError):
    """股票代码非法（在任何网络请求之前失败）"""
    pass


class InvalidFormatError(InvalidSymbolError):
    """代码无法转换为目标数据源格式"""
    pass


class InvalidPeriodError(DataFetchError):
    """不支持的历史区间参数"""
    pass


class InstrumentNotFoundError(DataFetchError):
    """上游数据源查询不到该证券"""
    pass


class MalformedResponseError(DataFetchError):
    """上游响应结构不符合预期"""
    pass


class UpstreamUnavailableError(DataFetchError):
    """上游不可用：网络错误、超时或非 200 状态码"""

    def __init__(self, message: str, status: Optional[int] = None, timed_out: bool = False):
        super().__init__(message)
        self.status = status
        self.timed_out = timed_out


class SecondaryUnavailableError(DataFetchError):
    """名称数据源不可用（超时 / 为空 / 出错），只会触发降级，不会向外传播"""

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason


def normalize_period(period: str) -> str:
    """'1m' -> '1M'；不支持的区间抛出 InvalidPeriodError"""
    token = (period or '').strip().upper()
    if token not in VALID_PERIODS:
        raise InvalidPeriodError(
            f"不支持的区间 {period!r}，可选值: {', '.join(VALID_PERIODS)}"
        )
    return token


def resolve_period(period: str, end: datetime) -> Tuple[str, datetime, datetime]:
    """
    解析历史区间参数

    Args:
        period: '1M' / '3M' / '6M' / '1Y'（不区分大小写）
        end: 区间结束时间

    Returns:
        (规范化后的 period, 开始时间, 结束时间)

    Raises:
        InvalidPeriodError: 不支持的区间
    """
    token = normalize_period(period)
    start = (pd.Timestamp(end) - pd.DateOffset(months=VALID_PERIODS[token])).to_pydatetime()
    return token, start, end


class BaseFetcher:
    """
    HTTP 数据源基类

    职责：
    1. 持有 requests.Session 与请求超时
    2. 把 requests 异常统一转换为 UpstreamUnavailableError
    """

    name: str = "BaseFetcher"
    headers: Dict[str, str] = {
        "User-Agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        "Accept": "application/json, text/plain, */*",
    }

    def __init__(self, timeout: float, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self._session = session if session is not None else requests.Session()

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """发起一次 GET 请求，超时由 self.timeout 强制约束"""
        try:
            return self._session.get(url, params=params, headers=self.headers, timeout=self.timeout)
        except requests.Timeout as e:
            raise UpstreamUnavailableError(
                f"[{self.name}] 请求超时 ({self.timeout}s): {e}", timed_out=True
            ) from e
        except requests.RequestException as e:
            raise UpstreamUnavailableError(f"[{self.name}] 网络错误: {e}") from e

    def _decode_json(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"[{self.name}] 响应不是合法 JSON: {e}") from e

    def close(self) -> None:
        self._session.close()


class StockDataFetcherManager:
    """
    数据源调度器（无跨调用状态）

    职责：
    1. 识别代码所属市场
    2. 并发调度主数据源与名称数据源
    3. 按合并策略输出唯一的 StockInfo

    并发模型：
    - 主数据源提交到线程池；名称请求每次独占一个守护线程，总耗时约为 max(主, 副)
    - 名称数据源的等待截止时间从派发时刻起算，主数据源先返回也不会无限等待
    - 超时的名称请求在后台自行结束，其结果被丢弃，也不会占用线程池排队
    """

    def __init__(
        self,
        primary=None,
        secondary=None,
        config=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        初始化调度器

        Args:
            primary: 主数据源（需实现 fetch_chart），默认 YahooChartFetcher
            secondary: 名称数据源（需实现 fetch_localized_name），默认 EastmoneyNameFetcher
            config: 配置对象，默认 get_config()
            clock: 返回当前 UTC 时间的函数（测试注入）
        """
        if config is None:
            from src.config import get_config
            config = get_config()
        self._config = config
        self._now = clock or (lambda: datetime.now(timezone.utc))

        self._primary = primary
        self._secondary = secondary
        if self._primary is None or self._secondary is None:
            self._init_default_fetchers()

        self._executor = ThreadPoolExecutor(
            max_workers=max(2, config.fetch_max_workers),
            thread_name_prefix="stock-fetch",
        )

    def _init_default_fetchers(self) -> None:
        """延迟创建默认数据源"""
        from .yahoo_fetcher import YahooChartFetcher
        from .eastmoney_fetcher import EastmoneyNameFetcher

        if self._primary is None:
            self._primary = YahooChartFetcher(config=self._config)
        if self._secondary is None:
            self._secondary = EastmoneyNameFetcher(config=self._config)

        logger.info(
            f"已初始化数据源: 主={getattr(self._primary, 'name', self._primary)}, "
            f"名称={getattr(self._secondary, 'name', self._secondary)}"
        )

    def get_stock_info(self, stock_code: str) -> StockInfo:
        """
        获取股票信息（未缓存）

        流程：
        1. 分类：现金伪代码直接返回固定记录
        2. 派发：主数据源必发；沪深 A 股同时派发名称请求
        3. 汇合：等待主数据源；名称请求最多等到自身截止时间
        4. 合并：主数据源失败即整体失败；名称按优先级择优

        Raises:
            InvalidSymbolError / InstrumentNotFoundError /
            UpstreamUnavailableError / MalformedResponseError
        """
        from .symbols import (
            InstrumentCategory, cash_stock_info, classify, normalize_symbol, to_secondary_format,
        )
        from .yahoo_fetcher import extract_identity

        symbol = normalize_symbol(stock_code)
        category = classify(symbol)

        if category is InstrumentCategory.CASH:
            logger.debug(f"[股票信息] {symbol} 为现金伪代码，返回固定记录")
            return cash_stock_info(symbol, self._now())

        end = self._now()
        start = end - timedelta(days=self._config.info_lookback_days)

        # Step 1: 派发主数据源
        primary_future = self._executor.submit(self._primary.fetch_chart, symbol, start, end)

        # Step 2: 沪深 A 股并发派发名称请求
        secondary_future: Optional[Future] = None
        secondary_deadline = 0.0
        outcome: Optional[SecondaryOutcome] = None
        if category in (InstrumentCategory.SHANGHAI, InstrumentCategory.SHENZHEN):
            try:
                secid = to_secondary_format(symbol)
            except InvalidSymbolError as e:
                logger.warning(f"[股票信息] {symbol} 转换东财代码失败: {e}")
                outcome = SecondaryOutcome.errored(str(e))
            else:
                secondary_deadline = time.monotonic() + self._config.secondary_timeout
                secondary_future = self._dispatch_secondary(secid)
        else:
            outcome = SecondaryOutcome.not_dispatched()

        # Step 3: 汇合
        try:
            envelope = self._join_primary(primary_future, symbol)
        except DataFetchError:
            if secondary_future is not None:
                secondary_future.cancel()
            raise

        if secondary_future is not None:
            outcome = self._join_secondary(secondary_future, secondary_deadline)

        # Step 4: 合并
        info = extract_identity(envelope, symbol, retrieved_at=end)
        return self._merge(info, outcome)

    def get_historical_data(self, stock_code: str, period: str) -> List[HistoricalPricePoint]:
        """
        获取日线收盘价序列（未缓存，仅主数据源）

        Returns:
            按时间升序排列的 HistoricalPricePoint 列表；现金伪代码返回空列表
        """
        from .symbols import is_cash_symbol, normalize_symbol
        from .yahoo_fetcher import extract_series

        symbol = normalize_symbol(stock_code)
        token, start, end = resolve_period(period, self._now())

        if is_cash_symbol(symbol):
            logger.debug(f"[历史数据] {symbol} 为现金伪代码，无历史行情")
            return []

        logger.info(f"[历史数据] 获取 {symbol} {token}: {start:%Y-%m-%d} ~ {end:%Y-%m-%d}")
        envelope = self._primary.fetch_chart(symbol, start, end)
        series = extract_series(envelope)
        logger.info(f"[历史数据] {symbol} {token} 获取成功，共 {len(series)} 条数据")
        return series

    def _join_primary(self, future: Future, symbol: str) -> Dict[str, Any]:
        try:
            return future.result(timeout=self._config.primary_join_timeout)
        except FutureTimeoutError as e:
            raise UpstreamUnavailableError(
                f"[股票信息] {symbol} 主数据源超过 {self._config.primary_join_timeout}s 未返回",
                timed_out=True,
            ) from e
        except DataFetchError as e:
            logger.error(f"[股票信息] {symbol} 主数据源失败: {e}")
            raise
        except Exception as e:
            logger.error(f"[股票信息] {symbol} 主数据源异常: {e}")
            raise UpstreamUnavailableError(f"[股票信息] {symbol}: {e}") from e

    def _join_secondary(self, future: Future, deadline: float) -> SecondaryOutcome:
        remaining = max(0.0, deadline - time.monotonic())
        try:
            return future.result(timeout=remaining)
        except FutureTimeoutError:
            # 结果到达时直接丢弃，不会影响已返回的记录
            return SecondaryOutcome.timed_out(f"超过 {self._config.secondary_timeout}s 未返回")

    def _dispatch_secondary(self, secid: str) -> Future:
        """
        在独立守护线程中发起名称请求

        派发即开始执行；被放弃的慢请求只占用自己的线程，不会阻塞后续请求。
        """
        future: Future = Future()

        def _run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            future.set_result(self._lookup_name(secid))

        threading.Thread(target=_run, name=f"stock-name-{secid}", daemon=True).start()
        return future

    def _lookup_name(self, secid: str) -> SecondaryOutcome:
        """在后台线程中执行：把名称数据源的任何结果收敛为 SecondaryOutcome"""
        try:
            name = self._secondary.fetch_localized_name(secid)
        except SecondaryUnavailableError as e:
            if e.reason == 'timeout':
                return SecondaryOutcome.timed_out(str(e))
            if e.reason == 'empty':
                return SecondaryOutcome.empty(str(e))
            return SecondaryOutcome.errored(str(e))
        except Exception as e:
            return SecondaryOutcome.errored(str(e))

        name = (name or '').strip()
        if not name:
            return SecondaryOutcome.empty("名称为空")
        return SecondaryOutcome.success(name)

    @staticmethod
    def _merge(info: StockInfo, outcome: SecondaryOutcome) -> StockInfo:
        """名称优先级：东财中文名 > 主数据源名称"""
        if outcome.usable:
            logger.info(f"[股票信息] {info.symbol} 使用东财名称: {outcome.name}")
            return info.with_name(outcome.name)

        reason = outcome.status.value
        if outcome.status is SecondaryStatus.NOT_DISPATCHED:
            logger.debug(f"[股票信息] {info.symbol} 名称回退到主数据源 (原因: {reason})")
        else:
            detail = f", {outcome.detail}" if outcome.detail else ""
            logger.warning(
                f"[股票信息] {info.symbol} 名称回退到主数据源: {info.name} (原因: {reason}{detail})"
            )
        return info

    def shutdown(self) -> None:
        """关闭线程池（不等待后台未完成的名称请求）"""
        self._executor.shutdown(wait=False)
