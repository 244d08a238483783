# -*- coding: utf-8 -*-
"""
===================================
股票信息服务 - 命令行入口
===================================

用法：
    python main.py info 600519.SS AAPL
    python main.py history 0700.HK --period 3M
    python main.py rate USD CNY
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from data_provider.base import DataFetchError
from src.config import get_config

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def cmd_info(args) -> int:
    from src.stock_service import get_stock_service

    service = get_stock_service()
    if len(args.symbols) == 1:
        _print_json(service.get_stock_info(args.symbols[0]).to_dict())
    else:
        _print_json([info.to_dict() for info in service.batch_get_stock_info(args.symbols)])
    return 0


def cmd_history(args) -> int:
    from src.stock_service import get_stock_service

    series = get_stock_service().get_historical_data(args.symbol, args.period)
    _print_json([point.to_dict() for point in series])
    return 0


def cmd_rate(args) -> int:
    from src.exchange_rate_service import ExchangeRateService

    rate = ExchangeRateService().get_exchange_rate(args.from_currency, args.to_currency)
    _print_json({
        'from': args.from_currency.upper(),
        'to': args.to_currency.upper(),
        'rate': float(rate),
    })
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="股票信息查询")
    sub = parser.add_subparsers(dest="command", required=True)

    p_info = sub.add_parser("info", help="查询股票基础信息")
    p_info.add_argument("symbols", nargs="+", help="股票代码，如 600519.SS AAPL CASH_USD")
    p_info.set_defaults(func=cmd_info)

    p_history = sub.add_parser("history", help="查询日线收盘价")
    p_history.add_argument("symbol")
    p_history.add_argument("--period", default="1M", help="1M / 3M / 6M / 1Y")
    p_history.set_defaults(func=cmd_history)

    p_rate = sub.add_parser("rate", help="查询汇率")
    p_rate.add_argument("from_currency")
    p_rate.add_argument("to_currency")
    p_rate.set_defaults(func=cmd_rate)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(get_config().log_level)

    try:
        return args.func(args)
    except DataFetchError as e:
        logger.error(f"查询失败: {type(e).__name__}: {e}")
        return 1
    finally:
        from src.stock_service import reset_stock_service
        reset_stock_service()


if __name__ == "__main__":
    sys.exit(main())
