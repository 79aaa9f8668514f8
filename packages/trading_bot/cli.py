#!/usr/bin/env python3
"""
🤖 Gasless Trading Bot - interactive terminal

Buys a token with WETH through gasless swaps, watches take profit /
stop loss / timeout and sells back automatically.

Usage:
    gasless-bot start
    gasless-bot start --token 0x... --sl 5 --tp 20 --amount 0.01 --timeout 3600
"""
import argparse
import asyncio
import getpass
import logging
import sys
from typing import Callable, Optional

from dotenv import load_dotenv

from trading_engine import TradeError, TradingConfig

from .engine import BotSettings, TradeEngine
from .store import BotStore
from .validate import Validator, parse_float, parse_int

LOGO = r"""
   ___        ____ _     ___
  / _ \__  __/ ___| |   |_ _|
 | | | \ \/ / |   | |    | |
 | |_| |>  <| |___| |___ | |
  \___//_/\_\\____|_____|___|
"""


def ask(
    message: str,
    parse: Callable[[str], object],
    check: Callable[[object], bool],
    error: str,
    initial: Optional[str] = None,
    secret: bool = False,
):
    """Prompt until the answer parses and passes `check`"""
    value = initial
    while True:
        if value is None:
            value = getpass.getpass(f"{message} ") if secret else input(f"{message} ")
        parsed = parse(value)
        if check(parsed):
            return parsed
        print(f"❌ {error}")
        value = None


def confirm(message: str) -> bool:
    answer = input(f"{message} [y/N] ").strip().lower()
    return answer in ("y", "yes")


def collect_settings(args: argparse.Namespace) -> BotSettings:
    contract_address = ask(
        "Enter Contract Address:",
        str.strip,
        Validator.is_valid_contract_address,
        "Invalid contract address. Please enter a valid Ethereum address.",
        args.token,
    )
    private_key = ask(
        "Enter Private Key:",
        str.strip,
        Validator.is_valid_private_key,
        "Invalid private key. Please enter a valid 64-character hexadecimal string.",
        secret=True,
    )
    stop_loss = ask(
        "Enter Stop Loss Percentage (Range: 0 - 100):",
        parse_float,
        Validator.is_valid_stop_loss,
        "Invalid Stop Loss (SL). Please enter a value between 0 and 100.",
        args.sl,
    )
    take_profit = ask(
        "Enter Take Profit Percentage (Range: 0 - 1000):",
        parse_float,
        Validator.is_valid_take_profit,
        "Invalid Take Profit (TP). Please enter a value between 0 and 1000.",
        args.tp,
    )
    amount_eth = ask(
        "Enter Amount in ETH (WETH on Base):",
        parse_float,
        Validator.is_valid_eth_amount,
        "Invalid ETH amount. Please enter a positive number.",
        args.amount,
    )
    timeout = ask(
        "Enter Timeout (in seconds):",
        parse_int,
        Validator.is_valid_timeout,
        "Invalid timeout. Please enter a positive integer.",
        args.timeout,
    )
    return BotSettings(
        contract_address=contract_address,
        private_key=private_key,
        stop_loss=stop_loss,
        take_profit=take_profit,
        amount_eth=amount_eth,
        timeout=timeout,
    )


def start(args: argparse.Namespace) -> int:
    print(LOGO)
    print("👋 Welcome to the interactive terminal!\n")

    settings = collect_settings(args)
    config = TradingConfig.from_env()
    store = BotStore(db_url=args.db)

    engine = TradeEngine(settings, config, store, confirm=confirm)
    summary = asyncio.run(engine.run())

    print("\n📃 Trade Summary:")
    print("-" * 40)
    for key, value in summary.items():
        print(f"  {key:<14}: {value}")
    print("-" * 40)
    print("😊 Trade complete")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gasless-bot", description="Gasless TP/SL trading bot")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    start_parser = subparsers.add_parser("start", help="Start interactive terminal")
    start_parser.add_argument("--token", type=str, help="Token contract address")
    start_parser.add_argument("--sl", type=str, help="Stop loss percentage")
    start_parser.add_argument("--tp", type=str, help="Take profit percentage")
    start_parser.add_argument("--amount", type=str, help="Amount in ETH")
    start_parser.add_argument("--timeout", type=str, help="Timeout in seconds")
    start_parser.add_argument("--db", type=str, default=None, help="SQLAlchemy URL (default $BOT_DB_URL)")
    start_parser.set_defaults(func=start)
    return parser


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except (KeyboardInterrupt, EOFError):
        print("\n👋 Bye")
        return 0
    except TradeError as e:
        print(f"❌ [{e.error_code}] {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
