# -*- coding: utf-8 -*-
"""
===================================
代码识别与格式转换
===================================

Yahoo Finance 代码格式：
- A股沪市：600519.SS
- A股深市：000001.SZ
- 现金伪代码：CASH_USD / CASH_RMB
- 其他（美股、港股、澳股等）：AAPL, 0700.HK, BHP.AX

东财 secid 格式：
- 沪市：1.600519
- 深市：0.000001
"""

import re
from datetime import datetime
from decimal import Decimal
from enum import Enum

from .base import InvalidFormatError, InvalidSymbolError
from .stock_types import StockInfo


class InstrumentCategory(Enum):
    SHANGHAI = "sh"
    SHENZHEN = "sz"
    INTERNATIONAL = "intl"
    CASH = "cash"


CASH_SYMBOLS = {
    'CASH_USD': ('Cash - USD (现金 - 美元)', 'USD'),
    'CASH_RMB': ('Cash - RMB (现金 - 人民币)', 'CNY'),
}

_MAINLAND_SUFFIXES = {
    '.SS': InstrumentCategory.SHANGHAI,
    '.SZ': InstrumentCategory.SHENZHEN,
}

# 东财 secid 市场前缀
_SECID_PREFIX = {
    InstrumentCategory.SHANGHAI: '1',
    InstrumentCategory.SHENZHEN: '0',
}

# 允许 ^GSPC、BRK-B、EURUSD=X 这类 Yahoo 代码
_SYMBOL_PATTERN = re.compile(r'^[A-Z0-9._\-^=]{1,20}$')


def _clean(symbol: str) -> str:
    return (symbol or '').strip().upper()


def normalize_symbol(symbol: str) -> str:
    """
    规范化并校验代码（去空格、转大写）

    Raises:
        InvalidSymbolError: 空代码或包含非法字符
    """
    code = _clean(symbol)
    if not code:
        raise InvalidSymbolError("股票代码不能为空")
    if not _SYMBOL_PATTERN.match(code):
        raise InvalidSymbolError(f"非法股票代码: {symbol!r}")
    return code


def classify(symbol: str) -> InstrumentCategory:
    """根据代码判断所属市场，无法识别的一律视为国际市场"""
    code = _clean(symbol)
    if code in CASH_SYMBOLS:
        return InstrumentCategory.CASH
    for suffix, category in _MAINLAND_SUFFIXES.items():
        if code.endswith(suffix):
            return category
    return InstrumentCategory.INTERNATIONAL


def is_china_stock(symbol: str) -> bool:
    return classify(symbol) in (InstrumentCategory.SHANGHAI, InstrumentCategory.SHENZHEN)


def is_cash_symbol(symbol: str) -> bool:
    return classify(symbol) is InstrumentCategory.CASH


def to_secondary_format(symbol: str) -> str:
    """
    转换为东财 secid

    600000.SS -> 1.600000
    000001.SZ -> 0.000001

    Raises:
        InvalidFormatError: 非 A 股代码，或代码部分不是 6 位数字
    """
    code = _clean(symbol)
    category = classify(code)
    if category not in _SECID_PREFIX:
        raise InvalidFormatError(f"{symbol!r} 不是沪深 A 股代码")

    number = code.rsplit('.', 1)[0]
    if len(number) != 6 or not number.isdigit():
        raise InvalidFormatError(f"{symbol!r} 代码部分应为 6 位数字")

    return f"{_SECID_PREFIX[category]}.{number}"


def infer_currency(symbol: str) -> str:
    """按后缀推断币种：沪深 -> CNY，其余 -> USD"""
    category = classify(symbol)
    if category is InstrumentCategory.CASH:
        return CASH_SYMBOLS[_clean(symbol)][1]
    if category in _SECID_PREFIX:
        return 'CNY'
    return 'USD'


def cash_stock_info(symbol: str, retrieved_at: datetime) -> StockInfo:
    """现金伪代码的固定记录（价格恒为 1）"""
    code = _clean(symbol)
    name, currency = CASH_SYMBOLS[code]
    return StockInfo(
        symbol=code,
        name=name,
        current_price=Decimal('1'),
        currency=currency,
        retrieved_at=retrieved_at,
    )
