"""
Gasless Trading Bot - CLI bot on top of the trading engine.

Buys a token with WETH, monitors take profit / stop loss / timeout and
sells back, keeping users, orders and trades in a SQL database.
"""
from .database import Database, init_db
from .engine import BotSettings, InsufficientBalanceError, TradeEngine, compute_pnl
from .models import Base, User, Order, Trade
from .store import BotStore, OpenOrderExistsError, OrderNotFoundError, StoreError
from .validate import Validator

__all__ = [
    "Database",
    "init_db",
    "Base",
    "User",
    "Order",
    "Trade",
    "BotStore",
    "StoreError",
    "OpenOrderExistsError",
    "OrderNotFoundError",
    "BotSettings",
    "TradeEngine",
    "InsufficientBalanceError",
    "compute_pnl",
    "Validator",
]

__version__ = "0.1.0"
