# -*- coding: utf-8 -*-
"""
===================================
汇率服务
===================================

数据来源：ExchangeRate-API (GET /v6/{key}/latest/{base})

降级策略：
1. 同币种直接返回 1
2. 缓存有效则直接返回
3. 未配置 Key 或上游失败时，使用最近一次成功获取的汇率（记录警告）
4. 从未成功获取过则抛出 ExchangeRateError
"""

import logging
import threading
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import requests

from data_provider.base import BaseFetcher, DataFetchError
from src.cache_service import CacheBackend, MemoryCache

logger = logging.getLogger(__name__)

# 组合代码里人民币写作 RMB
_CURRENCY_ALIASES = {'RMB': 'CNY'}


class ExchangeRateError(DataFetchError):
    """汇率接口不可用"""
    pass


class InvalidCurrencyCodeError(ExchangeRateError):
    pass


class ExchangeRateNotFoundError(ExchangeRateError):
    pass


def normalize_currency(code: str) -> str:
    value = (code or '').strip().upper()
    if not value:
        raise InvalidCurrencyCodeError("币种代码不能为空")
    return _CURRENCY_ALIASES.get(value, value)


class ExchangeRateFetcher(BaseFetcher):
    """ExchangeRate-API latest 接口"""

    name = "ExchangeRateFetcher"

    def __init__(self, config, session: Optional[requests.Session] = None):
        super().__init__(timeout=config.exchange_rate_timeout, session=session)
        self._base_url = config.exchange_rate_base_url
        self._api_key = config.exchange_rate_api_key

    def fetch_conversion_rates(self, source: str) -> Dict[str, Any]:
        """
        获取以 source 为基准的全部汇率

        Raises:
            ExchangeRateError: 未配置 Key / 非 200 / result 不是 success / 缺少 conversion_rates
        """
        if not self._api_key:
            raise ExchangeRateError("未配置 EXCHANGE_RATE_API_KEY")

        url = f"{self._base_url}/v6/{self._api_key}/latest/{source}"
        response = self._get(url)
        if response.status_code != 200:
            raise ExchangeRateError(f"[汇率] 返回状态码 {response.status_code}")

        payload = self._decode_json(response)
        if not isinstance(payload, dict) or payload.get('result') != 'success':
            error_type = payload.get('error-type') if isinstance(payload, dict) else payload
            raise ExchangeRateError(f"[汇率] 接口返回错误: {error_type}")

        rates = payload.get('conversion_rates')
        if not isinstance(rates, dict):
            raise ExchangeRateError("[汇率] 响应缺少 conversion_rates")
        return rates


class ExchangeRateService:
    """汇率查询（带缓存与陈旧值兜底）"""

    def __init__(
        self,
        config=None,
        session: Optional[requests.Session] = None,
        cache: Optional[CacheBackend] = None,
        fetcher: Optional[ExchangeRateFetcher] = None,
    ):
        if config is None:
            from src.config import get_config
            config = get_config()
        self._config = config
        self._fetcher = fetcher or ExchangeRateFetcher(config, session=session)
        self._cache = cache if cache is not None else MemoryCache(name="exchange_rate")
        self._last_known: Dict[Tuple[str, str], Decimal] = {}
        self._last_known_lock = threading.Lock()

    def get_exchange_rate(self, from_currency: str, to_currency: str) -> Decimal:
        """
        获取 from -> to 汇率

        Raises:
            InvalidCurrencyCodeError: 币种代码为空
            ExchangeRateNotFoundError: 上游没有目标币种
            ExchangeRateError: 上游不可用且没有历史汇率可用
        """
        source = normalize_currency(from_currency)
        target = normalize_currency(to_currency)
        if source == target:
            return Decimal('1')

        key = f"{source}_{target}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            rate = self._fetch_rate(source, target)
        except ExchangeRateNotFoundError:
            raise
        except DataFetchError as e:
            stale = self._get_last_known(source, target)
            if stale is None:
                raise ExchangeRateError(f"[汇率] {key} 获取失败: {e}") from e
            logger.warning(f"[汇率] {key} 获取失败，使用上次汇率 {stale}: {e}")
            return stale

        self._cache.set(key, rate, self._config.exchange_rate_cache_ttl)
        with self._last_known_lock:
            self._last_known[(source, target)] = rate
        return rate

    def convert_amount(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        rate = self.get_exchange_rate(from_currency, to_currency)
        return Decimal(str(amount)) * rate

    def _get_last_known(self, source: str, target: str) -> Optional[Decimal]:
        with self._last_known_lock:
            return self._last_known.get((source, target))

    def _fetch_rate(self, source: str, target: str) -> Decimal:
        rates = self._fetcher.fetch_conversion_rates(source)
        if target not in rates:
            raise ExchangeRateNotFoundError(f"[汇率] 没有 {source} -> {target} 的汇率")

        rate = Decimal(str(rates[target]))
        logger.info(f"[汇率] {source} -> {target} = {rate}")
        return rate

    def close(self) -> None:
        self._fetcher.close()
