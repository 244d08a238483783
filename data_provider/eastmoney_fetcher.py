# -*- coding: utf-8 -*-
"""
===================================
EastmoneyNameFetcher - 名称数据源
===================================

数据来源：https://push2.eastmoney.com/api/qt/stock/get
覆盖：沪深 A 股（secid=1.<code> / 0.<code>）
定位：只负责中文简称（f58），失败一律降级，不影响主流程

字段：
- f57: 代码
- f58: 名称（未知证券时为空或 data 为 null）
"""

import logging
from typing import Optional

import requests

from .base import BaseFetcher, DataFetchError, SecondaryUnavailableError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

_NAME_FIELDS = "f57,f58"


class EastmoneyNameFetcher(BaseFetcher):
    """东财中文名称查询（短超时，不重试）"""

    name = "EastmoneyNameFetcher"
    headers = {
        **BaseFetcher.headers,
        "Referer": "https://quote.eastmoney.com/",
    }

    def __init__(self, config=None, session: Optional[requests.Session] = None):
        if config is None:
            from src.config import get_config
            config = get_config()
        super().__init__(timeout=config.secondary_timeout, session=session)
        self._base_url = config.eastmoney_base_url

    def fetch_localized_name(self, secondary_id: str) -> str:
        """
        查询中文名称

        Args:
            secondary_id: 东财 secid，如 '1.600000'

        Raises:
            SecondaryUnavailableError: reason 为 'timeout' / 'error' / 'empty'
        """
        url = f"{self._base_url}/api/qt/stock/get"
        params = {'secid': secondary_id, 'fields': _NAME_FIELDS}

        try:
            response = self._get(url, params=params)
        except UpstreamUnavailableError as e:
            reason = 'timeout' if e.timed_out else 'error'
            logger.debug(f"[Eastmoney] {secondary_id} 请求失败 ({reason}): {e}")
            raise SecondaryUnavailableError(reason, str(e)) from e

        if response.status_code != 200:
            raise SecondaryUnavailableError('error', f"[Eastmoney] {secondary_id} 返回状态码 {response.status_code}")

        try:
            payload = self._decode_json(response)
        except DataFetchError as e:
            raise SecondaryUnavailableError('error', str(e)) from e

        data = payload.get('data') if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise SecondaryUnavailableError('empty', f"[Eastmoney] {secondary_id} 无数据")

        name = data.get('f58')
        name = name.strip() if isinstance(name, str) else ''
        if not name:
            raise SecondaryUnavailableError('empty', f"[Eastmoney] {secondary_id} 名称为空")

        logger.debug(f"[Eastmoney] {secondary_id} -> {name}")
        return name
