# -*- coding: utf-8 -*-
"""
===================================
行情数据类型定义
===================================

- StockInfo: 统一的股票基础信息（名称 / 现价 / 币种）
- HistoricalPricePoint: 日线收盘价序列中的单个点
- SecondaryOutcome: 名称数据源（东财）调用结果，供合并步骤显式消费
"""

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class StockInfo:
    """统一股票信息"""
    symbol: str
    name: str
    current_price: Decimal
    currency: str
    retrieved_at: datetime

    def with_name(self, name: str) -> "StockInfo":
        """返回仅替换了名称的新对象"""
        return replace(self, name=name)

    def to_dict(self) -> Dict[str, Any]:
        """转换为接口返回格式"""
        return {
            'symbol': self.symbol,
            'name': self.name,
            'currentPrice': float(self.current_price),
            'currency': self.currency,
            'retrievedAt': self.retrieved_at.isoformat(),
        }


@dataclass(frozen=True)
class HistoricalPricePoint:
    """历史价格点（日线收盘）"""
    timestamp: datetime
    close: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.timestamp.isoformat(),
            'price': float(self.close),
        }


class SecondaryStatus(Enum):
    """名称数据源调用状态"""
    SUCCESS = "success"
    TIMED_OUT = "timeout"
    EMPTY = "empty"
    ERRORED = "error"
    NOT_DISPATCHED = "not-dispatched"


@dataclass(frozen=True)
class SecondaryOutcome:
    """
    名称数据源结果（tagged variant）

    只有 SUCCESS 携带 name；其余状态都意味着回退到主数据源名称。
    """
    status: SecondaryStatus
    name: Optional[str] = None
    detail: str = ""

    @classmethod
    def success(cls, name: str) -> "SecondaryOutcome":
        return cls(SecondaryStatus.SUCCESS, name=name)

    @classmethod
    def timed_out(cls, detail: str = "") -> "SecondaryOutcome":
        return cls(SecondaryStatus.TIMED_OUT, detail=detail)

    @classmethod
    def empty(cls, detail: str = "") -> "SecondaryOutcome":
        return cls(SecondaryStatus.EMPTY, detail=detail)

    @classmethod
    def errored(cls, detail: str = "") -> "SecondaryOutcome":
        return cls(SecondaryStatus.ERRORED, detail=detail)

    @classmethod
    def not_dispatched(cls) -> "SecondaryOutcome":
        return cls(SecondaryStatus.NOT_DISPATCHED)

    @property
    def usable(self) -> bool:
        return self.status is SecondaryStatus.SUCCESS and bool(self.name)
