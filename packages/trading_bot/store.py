"""
Bot Store - find/create/update of users, orders and trades.

Every method opens its own session and returns plain dicts, so callers
never hold ORM objects across awaits.
"""
from typing import Optional

from web3 import Web3

from trading_engine.exceptions import TradeError

from .database import Database, init_db
from .models import User, Order, Trade

TRADE_TYPES = ("buy", "sell")


class StoreError(TradeError):
    """Persistence rule violated."""
    error_code = "STORE"


class OpenOrderExistsError(StoreError):
    """The user already holds an open order for this token."""
    error_code = "OPEN_ORDER_EXISTS"


class OrderNotFoundError(StoreError):
    """No order with this ID."""
    error_code = "ORDER_NOT_FOUND"


class BotStore:
    """
    Persistence for the trading bot.

    Keeps at most one open (non-completed) order per (user, token) pair.
    """

    def __init__(self, db: Database = None, db_url: str = None):
        """
        Args:
            db: Existing Database instance
            db_url: SQLAlchemy URL (creates new Database if db not provided)
        """
        if db:
            self.db = db
        else:
            self.db = init_db(db_url)

    @staticmethod
    def _address(address: str) -> str:
        return Web3.to_checksum_address(address)

    @staticmethod
    def _get_order(session, order_id: int) -> Order:
        order = session.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise OrderNotFoundError(f"Order with ID {order_id} not found")
        return order

    # =========================================================================
    # Users
    # =========================================================================

    def get_or_create_user(self, wallet_address: str) -> dict:
        """
        Get the user for a wallet, creating it on first use.

        Args:
            wallet_address: Wallet address (any case)

        Returns:
            User dictionary
        """
        address = self._address(wallet_address)
        with self.db.get_session() as session:
            user = session.query(User).filter(User.wallet_address == address).first()
            if not user:
                user = User(wallet_address=address, total_pnl=0.0)
                session.add(user)
                session.flush()
            return user.to_dict()

    def get_user(self, wallet_address: str) -> Optional[dict]:
        address = self._address(wallet_address)
        with self.db.get_session() as session:
            user = session.query(User).filter(User.wallet_address == address).first()
            return user.to_dict() if user else None

    # =========================================================================
    # Orders
    # =========================================================================

    def find_open_order(self, user_id: int, token_address: str) -> Optional[dict]:
        """Return the open order of a user for a token, if any."""
        with self.db.get_session() as session:
            order = session.query(Order).filter(
                Order.user_id == user_id,
                Order.token_address == self._address(token_address),
                Order.completed == False,  # noqa: E712
            ).first()
            return order.to_dict() if order else None

    def create_order(
        self,
        user_id: int,
        token_address: str,
        amount: float,
        token_amount: int,
        decimals: int,
        tp: float,
        sl: float,
        timeout: int,
        entry_price: float = 0.0,
    ) -> dict:
        """
        Open a new order.

        Raises:
            OpenOrderExistsError: an open order already exists for the pair
        """
        token_address = self._address(token_address)
        with self.db.get_session() as session:
            existing = session.query(Order).filter(
                Order.user_id == user_id,
                Order.token_address == token_address,
                Order.completed == False,  # noqa: E712
            ).first()
            if existing:
                raise OpenOrderExistsError(
                    f"Order {existing.id} is still open for {token_address}"
                )

            order = Order(
                user_id=user_id,
                token_address=token_address,
                amount=amount,
                token_amount=str(int(token_amount)),
                decimals=decimals,
                tp=tp,
                sl=sl,
                timeout=timeout,
                entry_price=entry_price,
                pnl=0.0,
                completed=False,
            )
            session.add(order)
            session.flush()
            return order.to_dict()

    def get_order(self, order_id: int) -> dict:
        """
        Raises:
            OrderNotFoundError: If order not found
        """
        with self.db.get_session() as session:
            return self._get_order(session, order_id).to_dict()

    def set_entry_price(self, order_id: int, entry_price: float) -> dict:
        with self.db.get_session() as session:
            order = self._get_order(session, order_id)
            order.entry_price = entry_price
            return order.to_dict()

    def abandon_order(self, order_id: int) -> dict:
        """Close an open order without a sell leg (pnl left untouched)."""
        with self.db.get_session() as session:
            order = self._get_order(session, order_id)
            order.completed = True
            return order.to_dict()

    # =========================================================================
    # Trades
    # =========================================================================

    def _add_trade(
        self,
        session,
        order: Order,
        txn_hash: str,
        trade_type: str,
        eth_amount: float,
        token_amount: int,
    ) -> Trade:
        if trade_type not in TRADE_TYPES:
            raise ValueError(f"trade_type must be one of {TRADE_TYPES}, got '{trade_type}'")

        trade = Trade(
            order_id=order.id,
            txn_hash=txn_hash,
            token_address=order.token_address,
            eth_amount=eth_amount,
            token_amount=str(int(token_amount)),
            trade_type=trade_type,
        )
        session.add(trade)
        session.flush()
        return trade

    def record_trade(
        self,
        order_id: int,
        txn_hash: str,
        trade_type: str,
        eth_amount: float = 0.0,
        token_amount: int = 0,
    ) -> dict:
        """
        Record a mined trade of an order.

        Args:
            order_id: Order ID
            txn_hash: Mined transaction hash (unique)
            trade_type: "buy" or "sell"
            eth_amount: ETH side of the trade
            token_amount: Token side of the trade in base units

        Returns:
            Trade dictionary
        """
        with self.db.get_session() as session:
            order = self._get_order(session, order_id)
            return self._add_trade(session, order, txn_hash, trade_type, eth_amount, token_amount).to_dict()

    def complete_order(
        self,
        order_id: int,
        pnl: float,
        sell_txn_hash: str,
        eth_amount: float = 0.0,
        token_amount: int = 0,
    ) -> dict:
        """
        Close an order after its sell leg.

        Marks the order completed, stores its pnl, adds the pnl to the
        user's total and records the sell trade, all in one transaction.
        """
        with self.db.get_session() as session:
            order = self._get_order(session, order_id)
            if order.completed:
                raise StoreError(f"Order {order_id} is already completed")

            self._add_trade(session, order, sell_txn_hash, "sell", eth_amount, token_amount)
            order.pnl = pnl
            order.completed = True
            order.user.total_pnl = (order.user.total_pnl or 0.0) + pnl
            session.flush()
            return order.to_dict()
