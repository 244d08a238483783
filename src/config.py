# -*- coding: utf-8 -*-
"""
===================================
配置管理
===================================

所有配置从环境变量读取（启动时先加载项目根目录下的 .env）。
数值配置非法时回退到默认值并记录警告。
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _env_str(key: str, default: str) -> str:
    value = os.getenv(key)
    if value is None:
        return default
    value = value.strip()
    return value or default


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"配置 {key}={raw!r} 不是合法数字，使用默认值 {default}")
        return default
    if value <= 0:
        logger.warning(f"配置 {key}={raw!r} 必须为正数，使用默认值 {default}")
        return default
    return value


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"配置 {key}={raw!r} 不是合法整数，使用默认值 {default}")
        return default
    if value <= 0:
        logger.warning(f"配置 {key}={raw!r} 必须为正整数，使用默认值 {default}")
        return default
    return value


@dataclass
class Config:
    """服务配置"""

    # === 数据源地址 ===
    yahoo_chart_base_url: str = "https://query1.finance.yahoo.com"
    eastmoney_base_url: str = "https://push2.eastmoney.com"
    exchange_rate_base_url: str = "https://v6.exchangerate-api.com"
    exchange_rate_api_key: str = ""

    # === 超时与重试（秒） ===
    primary_timeout: float = 10.0
    secondary_timeout: float = 5.0
    exchange_rate_timeout: float = 10.0
    primary_join_timeout: float = 30.0
    primary_max_attempts: int = 2
    primary_retry_wait_max: float = 2.0

    # === 缓存（秒） ===
    stock_info_cache_ttl: float = 300.0
    historical_cache_ttl: float = 300.0
    exchange_rate_cache_ttl: float = 3600.0
    cache_cleanup_interval: float = 600.0

    # === 其他 ===
    info_lookback_days: int = 7
    fetch_max_workers: int = 8
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """从环境变量构建配置"""
        return cls(
            yahoo_chart_base_url=_env_str("YAHOO_CHART_BASE_URL", cls.yahoo_chart_base_url).rstrip('/'),
            eastmoney_base_url=_env_str("EASTMONEY_BASE_URL", cls.eastmoney_base_url).rstrip('/'),
            exchange_rate_base_url=_env_str("EXCHANGE_RATE_BASE_URL", cls.exchange_rate_base_url).rstrip('/'),
            exchange_rate_api_key=_env_str("EXCHANGE_RATE_API_KEY", ""),
            primary_timeout=_env_float("PRIMARY_TIMEOUT", cls.primary_timeout),
            secondary_timeout=_env_float("SECONDARY_TIMEOUT", cls.secondary_timeout),
            exchange_rate_timeout=_env_float("EXCHANGE_RATE_TIMEOUT", cls.exchange_rate_timeout),
            primary_join_timeout=_env_float("PRIMARY_JOIN_TIMEOUT", cls.primary_join_timeout),
            primary_max_attempts=_env_int("PRIMARY_MAX_ATTEMPTS", cls.primary_max_attempts),
            primary_retry_wait_max=_env_float("PRIMARY_RETRY_WAIT_MAX", cls.primary_retry_wait_max),
            stock_info_cache_ttl=_env_float("STOCK_INFO_CACHE_TTL", cls.stock_info_cache_ttl),
            historical_cache_ttl=_env_float("HISTORICAL_CACHE_TTL", cls.historical_cache_ttl),
            exchange_rate_cache_ttl=_env_float("EXCHANGE_RATE_CACHE_TTL", cls.exchange_rate_cache_ttl),
            cache_cleanup_interval=_env_float("CACHE_CLEANUP_INTERVAL", cls.cache_cleanup_interval),
            info_lookback_days=_env_int("INFO_LOOKBACK_DAYS", cls.info_lookback_days),
            fetch_max_workers=_env_int("FETCH_MAX_WORKERS", cls.fetch_max_workers),
            log_level=_env_str("LOG_LEVEL", cls.log_level).upper(),
        )


# === 全局配置 ===
_config: Optional[Config] = None


def get_config() -> Config:
    global _config
    if _config is None:
        load_dotenv(PROJECT_ROOT / ".env")
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    global _config
    _config = None
