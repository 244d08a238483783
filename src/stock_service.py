# -*- coding: utf-8 -*-
"""
===================================
股票信息服务（带缓存）
===================================

对外只暴露两类入口，均经过缓存：
- get_stock_info(symbol): 股票基础信息，key 为代码
- get_historical_data(symbol, period): 日线收盘价序列，key 为 代码_区间

调用方（路由层等）不应绕过本服务直接访问 StockDataFetcherManager。
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import pandas as pd

from data_provider.base import VALID_PERIODS, DataFetchError, StockDataFetcherManager, normalize_period
from data_provider.stock_types import HistoricalPricePoint, StockInfo
from data_provider.symbols import normalize_symbol
from src.cache_service import CacheBackend, MemoryCache

logger = logging.getLogger(__name__)


def _history_key(symbol: str, period: str) -> str:
    return f"{symbol}_{period}"


class StockAPIService:
    """股票信息服务"""

    def __init__(
        self,
        manager: Optional[StockDataFetcherManager] = None,
        config=None,
        info_cache: Optional[CacheBackend] = None,
        history_cache: Optional[CacheBackend] = None,
    ):
        if config is None:
            from src.config import get_config
            config = get_config()
        self._config = config
        self._manager = manager or StockDataFetcherManager(config=config)
        self._info_cache = info_cache if info_cache is not None else MemoryCache(name="stock_info")
        self._history_cache = history_cache if history_cache is not None else MemoryCache(name="historical")

        self._cleanup_thread: Optional[threading.Thread] = None
        self._cleanup_stop = threading.Event()

    def get_stock_info(self, symbol: str) -> StockInfo:
        """
        获取股票信息（读穿透缓存）

        Raises:
            InvalidSymbolError: 代码为空或非法（不发起任何请求）
            InstrumentNotFoundError / UpstreamUnavailableError / MalformedResponseError
        """
        code = normalize_symbol(symbol)
        return self._info_cache.get_or_fetch(
            code,
            lambda: self._manager.get_stock_info(code),
            self._config.stock_info_cache_ttl,
        )

    def get_historical_data(self, symbol: str, period: str) -> List[HistoricalPricePoint]:
        """
        获取日线收盘价序列（读穿透缓存）

        Raises:
            InvalidSymbolError / InvalidPeriodError: 参数非法（不发起任何请求）
            InstrumentNotFoundError / UpstreamUnavailableError / MalformedResponseError
        """
        code = normalize_symbol(symbol)
        token = normalize_period(period)
        # 缓存中存不可变的 tuple，每次返回新列表
        series = self._history_cache.get_or_fetch(
            _history_key(code, token),
            lambda: tuple(self._manager.get_historical_data(code, token)),
            self._config.historical_cache_ttl,
        )
        return list(series)

    def get_historical_frame(self, symbol: str, period: str) -> pd.DataFrame:
        """历史序列的 DataFrame 形式，列为 date / close"""
        series = self.get_historical_data(symbol, period)
        return pd.DataFrame(
            {
                'date': [point.timestamp for point in series],
                'close': [float(point.close) for point in series],
            },
            columns=['date', 'close'],
        )

    def batch_get_stock_info(self, symbols: List[str]) -> List[StockInfo]:
        """
        批量获取股票信息

        每个代码独立走缓存；失败的代码记录日志后跳过，结果按输入顺序去重返回。
        """
        codes: List[str] = []
        for symbol in symbols:
            try:
                code = normalize_symbol(symbol)
            except DataFetchError as e:
                logger.warning(f"[批量查询] 跳过非法代码 {symbol!r}: {e}")
                continue
            if code not in codes:
                codes.append(code)

        if not codes:
            return []

        results: Dict[str, StockInfo] = {}
        workers = min(len(codes), self._config.fetch_max_workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="stock-batch") as executor:
            futures = {code: executor.submit(self.get_stock_info, code) for code in codes}
            for code, future in futures.items():
                try:
                    results[code] = future.result()
                except DataFetchError as e:
                    logger.warning(f"[批量查询] {code} 获取失败: {e}")

        logger.info(f"[批量查询] 完成，成功 {len(results)}/{len(codes)}")
        return [results[code] for code in codes if code in results]

    def invalidate(self, symbol: str) -> int:
        """删除某代码的信息缓存与全部区间的历史缓存，返回删除条目数"""
        code = normalize_symbol(symbol)
        removed = 1 if self._info_cache.invalidate(code) else 0

        prefix = f"{code}_"
        if isinstance(self._history_cache, MemoryCache):
            removed += self._history_cache.invalidate_where(lambda key: key.startswith(prefix))
        else:
            for token in VALID_PERIODS:
                if self._history_cache.invalidate(_history_key(code, token)):
                    removed += 1
        return removed

    def purge_expired(self) -> int:
        removed = 0
        for cache in (self._info_cache, self._history_cache):
            if isinstance(cache, MemoryCache):
                removed += cache.purge_expired()
        return removed

    def start_cache_cleanup(self, interval: Optional[float] = None) -> None:
        """启动后台线程定期清理过期条目"""
        if self._cleanup_thread is not None and self._cleanup_thread.is_alive():
            return
        interval = interval or self._config.cache_cleanup_interval
        self._cleanup_stop.clear()

        def _loop() -> None:
            while not self._cleanup_stop.wait(interval):
                removed = self.purge_expired()
                if removed:
                    logger.info(f"[Cache] 定期清理过期条目 {removed} 个")

        self._cleanup_thread = threading.Thread(target=_loop, name="stock-cache-cleanup", daemon=True)
        self._cleanup_thread.start()
        logger.info(f"[Cache] 已启动定期清理，间隔 {interval}s")

    def stop_cache_cleanup(self) -> None:
        self._cleanup_stop.set()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout=1.0)
            self._cleanup_thread = None

    def get_cache_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {}
        for key, cache in (('stock_info', self._info_cache), ('historical', self._history_cache)):
            if isinstance(cache, MemoryCache):
                stats[key] = cache.get_stats()
        return stats

    def close(self) -> None:
        self.stop_cache_cleanup()
        self._manager.shutdown()


# === 便捷函数 ===
_stock_service: Optional[StockAPIService] = None


def get_stock_service() -> StockAPIService:
    global _stock_service
    if _stock_service is None:
        _stock_service = StockAPIService()
    return _stock_service


def reset_stock_service() -> None:
    global _stock_service
    if _stock_service is not None:
        _stock_service.close()
    _stock_service = None
