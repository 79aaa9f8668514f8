"""
SQLAlchemy models for the trading bot: users, orders and their trades.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


class User(Base):
    """A wallet that trades through the bot."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(42), nullable=False, unique=True)
    total_pnl = Column(Float, default=0.0)
    created_at = Column(DateTime, default=datetime.utcnow)

    orders = relationship("Order", back_populates="user", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "wallet_address": self.wallet_address,
            "total_pnl": self.total_pnl,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<User(id={self.id}, wallet='{self.wallet_address[:8]}...', pnl={self.total_pnl})>"


class Order(Base):
    """One position: a buy leg, the monitored hold and a sell leg."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_address = Column(String(42), nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow)
    amount = Column(Float, nullable=False)  # ETH spent on the buy leg
    token_amount = Column(String(78), nullable=False)  # base units, may exceed int64
    decimals = Column(Integer, nullable=False)
    tp = Column(Float, nullable=False)
    sl = Column(Float, nullable=False)
    timeout = Column(Integer, nullable=False)
    entry_price = Column(Float, default=0.0)
    pnl = Column(Float, default=0.0)
    completed = Column(Boolean, default=False)

    user = relationship("User", back_populates="orders")
    trades = relationship(
        "Trade", back_populates="order", cascade="all, delete-orphan", order_by="Trade.id"
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "token_address": self.token_address,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "amount": self.amount,
            "token_amount": int(self.token_amount),
            "decimals": self.decimals,
            "tp": self.tp,
            "sl": self.sl,
            "timeout": self.timeout,
            "entry_price": self.entry_price,
            "pnl": self.pnl,
            "completed": self.completed,
            "trades": [t.to_dict() for t in self.trades],
        }

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, token='{self.token_address[:8]}...', completed={self.completed})>"


class Trade(Base):
    """A mined buy or sell transaction of an order."""

    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    txn_hash = Column(String(66), nullable=False, unique=True)
    token_address = Column(String(42), nullable=False)
    eth_amount = Column(Float, default=0.0)
    token_amount = Column(String(78), default="0")
    trade_type = Column(String(4), nullable=False)  # buy | sell
    timestamp = Column(DateTime, default=datetime.utcnow)

    order = relationship("Order", back_populates="trades")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "txn_hash": self.txn_hash,
            "token_address": self.token_address,
            "eth_amount": self.eth_amount,
            "token_amount": int(self.token_amount or 0),
            "trade_type": self.trade_type,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self) -> str:
        return f"<Trade(id={self.id}, type='{self.trade_type}', tx='{self.txn_hash[:10]}...')>"
