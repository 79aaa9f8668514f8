"""
Tests for BotStore persistence.
"""
import os
import tempfile

import pytest
from eth_account import Account
from sqlalchemy.exc import IntegrityError

from trading_bot.database import Database
from trading_bot.store import BotStore, OpenOrderExistsError, OrderNotFoundError, StoreError

TOKEN = "0x532f27101965dd16442E59d40670FaF5eBB142E4"


@pytest.fixture
def temp_db():
    """Create a temporary database URL for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield f"sqlite:///{os.path.join(tmpdir, 'test_bot.db')}"


@pytest.fixture
def store(temp_db):
    db = Database(temp_db)
    db.init_db()
    yield BotStore(db=db)
    db.engine.dispose()


@pytest.fixture
def user(store):
    return store.get_or_create_user(Account.create().address)


def open_order(store, user, **overrides):
    fields = dict(
        user_id=user["id"],
        token_address=TOKEN,
        amount=0.01,
        token_amount=123456789 * 10 ** 18,
        decimals=18,
        tp=20.0,
        sl=5.0,
        timeout=3600,
    )
    fields.update(overrides)
    return store.create_order(**fields)


class TestUsers:

    def test_create_user(self, store):
        address = Account.create().address
        user = store.get_or_create_user(address)

        assert user["wallet_address"] == address
        assert user["total_pnl"] == 0.0

    def test_get_existing_user(self, store):
        address = Account.create().address
        first = store.get_or_create_user(address)
        second = store.get_or_create_user(address.lower())

        assert first["id"] == second["id"]

    def test_get_user_missing(self, store):
        assert store.get_user(Account.create().address) is None


class TestOrders:

    def test_create_order(self, store, user):
        order = open_order(store, user)

        assert order["completed"] is False
        assert order["token_amount"] == 123456789 * 10 ** 18
        assert order["trades"] == []
        assert store.find_open_order(user["id"], TOKEN)["id"] == order["id"]

    def test_find_open_order_any_case(self, store, user):
        order = open_order(store, user)
        assert store.find_open_order(user["id"], TOKEN.lower())["id"] == order["id"]

    def test_one_open_order_per_token(self, store, user):
        open_order(store, user)

        with pytest.raises(OpenOrderExistsError):
            open_order(store, user)

    def test_other_token_allowed(self, store, user):
        open_order(store, user)
        other = open_order(store, user, token_address="0x4200000000000000000000000000000000000006")

        assert other["token_address"] == "0x4200000000000000000000000000000000000006"

    def test_abandon_then_reopen(self, store, user):
        order = open_order(store, user)
        abandoned = store.abandon_order(order["id"])

        assert abandoned["completed"] is True
        assert store.find_open_order(user["id"], TOKEN) is None
        assert open_order(store, user)["id"] != order["id"]

    def test_set_entry_price(self, store, user):
        order = open_order(store, user)
        assert store.set_entry_price(order["id"], 1.25)["entry_price"] == 1.25

    def test_order_not_found(self, store):
        with pytest.raises(OrderNotFoundError):
            store.get_order(999)


class TestTrades:

    def test_record_buy(self, store, user):
        order = open_order(store, user)
        trade = store.record_trade(order["id"], "0xbuy", "buy", eth_amount=0.01, token_amount=5)

        assert trade["trade_type"] == "buy"
        assert trade["token_address"] == TOKEN
        assert store.get_order(order["id"])["trades"][0]["txn_hash"] == "0xbuy"

    def test_invalid_trade_type(self, store, user):
        order = open_order(store, user)

        with pytest.raises(ValueError):
            store.record_trade(order["id"], "0xhash", "hold")

    def test_txn_hash_unique(self, store, user):
        order = open_order(store, user)
        store.record_trade(order["id"], "0xsame", "buy")

        with pytest.raises(IntegrityError):
            store.record_trade(order["id"], "0xsame", "buy")

    def test_complete_order(self, store, user):
        order = open_order(store, user)
        store.record_trade(order["id"], "0xbuy", "buy", eth_amount=0.01)

        completed = store.complete_order(order["id"], 12.5, "0xsell", eth_amount=0.012, token_amount=5)

        assert completed["completed"] is True
        assert completed["pnl"] == 12.5
        assert [t["trade_type"] for t in completed["trades"]] == ["buy", "sell"]
        assert store.get_user(user["wallet_address"])["total_pnl"] == 12.5
        assert store.find_open_order(user["id"], TOKEN) is None

    def test_pnl_accumulates(self, store, user):
        first = open_order(store, user)
        store.complete_order(first["id"], 10.0, "0xsell1")
        second = open_order(store, user)
        store.complete_order(second["id"], -4.0, "0xsell2")

        assert store.get_user(user["wallet_address"])["total_pnl"] == pytest.approx(6.0)

    def test_complete_twice(self, store, user):
        order = open_order(store, user)
        store.complete_order(order["id"], 1.0, "0xsell")

        with pytest.raises(StoreError):
            store.complete_order(order["id"], 1.0, "0xsell2")
