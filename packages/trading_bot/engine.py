"""
Trade Engine - buy, hold under TP/SL/timeout, sell

One run handles one position of one token:
    1. find or create the user, read token decimals
    2. resume the open order or buy the token with WETH (gasless)
    3. read the entry price and monitor it
    4. on take profit, stop loss or timeout sell back to WETH and book the pnl
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from web3 import Web3

from trading_engine import (
    GaslessApiClient,
    LocalWalletSigner,
    Permit2Swapper,
    PositionMonitor,
    TokenPriceFeed,
    TradeError,
    TradeOrchestrator,
    TradeOutcome,
    TradingConfig,
    NATIVE_TOKEN,
)

from .store import BotStore
from .validate import strip_key_prefix

logger = logging.getLogger(__name__)

WETH_DECIMALS = 18


class InsufficientBalanceError(TradeError):
    """Not enough WETH (even after wrapping ETH) for the buy leg"""
    error_code = "INSUFFICIENT_BALANCE"


@dataclass
class BotSettings:
    """Inputs collected by the CLI"""
    contract_address: str
    private_key: str
    stop_loss: float
    take_profit: float
    amount_eth: float
    timeout: int


def compute_pnl(entry_price: float, exit_price: float, token_amount: int, decimals: int) -> float:
    """USD pnl of holding `token_amount` base units from entry to exit"""
    return (exit_price - entry_price) * token_amount / 10 ** decimals


class TradeEngine:
    """
    Bot trade engine

    Example:
        engine = TradeEngine(settings, TradingConfig.from_env(), BotStore())
        summary = await engine.run()
    """

    def __init__(
        self,
        settings: BotSettings,
        config: TradingConfig,
        store: BotStore,
        confirm: Optional[Callable[[str], bool]] = None,
        client: Optional[GaslessApiClient] = None,
        signer: Optional[LocalWalletSigner] = None,
        price_feed: Optional[TokenPriceFeed] = None,
    ):
        """
        Args:
            settings: Position parameters
            config: Global settings
            store: Persistence
            confirm: Yes/no prompt, declines everything when omitted
            client: API client (created per run when omitted)
            signer: Wallet (built from settings.private_key when omitted)
            price_feed: USD price source (USDC quotes when omitted)
        """
        self.settings = settings
        self.config = config
        self.store = store
        self.confirm = confirm or (lambda message: False)
        self.client = client
        self.signer = signer or LocalWalletSigner(
            strip_key_prefix(settings.private_key),
            config.rpc_url,
            config.chain_id,
            config.gas_settings,
        )
        self.price_feed = price_feed
        self.token = Web3.to_checksum_address(settings.contract_address)

    async def run(self) -> Dict[str, Any]:
        """Run the whole position and return a trade summary"""
        if self.client is not None:
            return await self._run(self.client)

        async with GaslessApiClient(
            self.config.require_api_key(),
            self.config.chain_id,
            base_url=self.config.api_base_url,
            timeout=self.config.request_timeout,
        ) as client:
            return await self._run(client)

    # =========================================================================
    # Legs
    # =========================================================================

    async def _swap(self, client: GaslessApiClient, sell_token: str, buy_token: str, sell_amount: int) -> TradeOutcome:
        orchestrator = TradeOrchestrator(
            client,
            self.signer,
            poll_interval=self.config.poll_interval,
            poll_deadline=self.config.poll_deadline,
            receipt_timeout=self.config.receipt_timeout,
        )
        return await orchestrator.execute(sell_token, buy_token, sell_amount)

    async def _ensure_weth(self, client: GaslessApiClient, amount_wei: int):
        """Wrap ETH through Permit2 when the WETH balance is short"""
        weth = self.config.weth_address
        weth_balance = await self.signer.balance_of(weth)
        if weth_balance >= amount_wei:
            return

        eth_balance = await self.signer.native_balance()
        shortfall = amount_wei - weth_balance
        if weth_balance + eth_balance < amount_wei:
            raise InsufficientBalanceError(
                f"Insufficient balance: {Web3.from_wei(weth_balance, 'ether')} WETH + "
                f"{Web3.from_wei(eth_balance, 'ether')} ETH < {Web3.from_wei(amount_wei, 'ether')}"
            )

        if not self.confirm("🔄 Insufficient WETH, swap ETH for WETH?"):
            raise InsufficientBalanceError("Insufficient WETH and wrapping was declined")

        print(f"🔄 Wrapping {Web3.from_wei(shortfall, 'ether')} ETH to WETH...")
        await Permit2Swapper(client, self.signer, self.config.receipt_timeout).swap(
            NATIVE_TOKEN, weth, shortfall
        )

    async def _buy(self, client: GaslessApiClient, user_id: int, decimals: int) -> Dict[str, Any]:
        amount_wei = Web3.to_wei(Decimal(str(self.settings.amount_eth)), "ether")
        await self._ensure_weth(client, amount_wei)

        print(f"🛒 Buying {self.token} with {self.settings.amount_eth} WETH...")
        outcome = await self._swap(client, self.config.weth_address, self.token, amount_wei)

        order = self.store.create_order(
            user_id=user_id,
            token_address=self.token,
            amount=self.settings.amount_eth,
            token_amount=outcome.buy_amount,
            decimals=decimals,
            tp=self.settings.take_profit,
            sl=self.settings.stop_loss,
            timeout=self.settings.timeout,
        )
        self.store.record_trade(
            order["id"],
            outcome.tx_hash or outcome.trade_hash,
            "buy",
            eth_amount=self.settings.amount_eth,
            token_amount=outcome.buy_amount,
        )
        print(f"✅ Bought {outcome.buy_amount} base units, tx {outcome.tx_hash}")
        return self.store.get_order(order["id"])

    def _resume(self, order: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        print(
            "\n🤔 Existing incomplete order found\n"
            f"   Token Address   : {order['token_address']}\n"
            f"   Timestamp       : {order['timestamp']}\n"
            f"   Amount (ETH)    : {order['amount']}\n"
            f"   Take Profit (%) : {order['tp']}\n"
            f"   Stop Loss (%)   : {order['sl']}\n"
            f"   Timeout (sec)   : {order['timeout']}\n"
        )
        if self.confirm("Do you want to continue the previous trade?"):
            logger.info("Resuming order %s", order["id"])
            self.settings.take_profit = order["tp"]
            self.settings.stop_loss = order["sl"]
            self.settings.amount_eth = order["amount"]
            self.settings.timeout = order["timeout"]
            return order

        self.store.abandon_order(order["id"])
        logger.info("Order %s abandoned", order["id"])
        return None

    async def _sell_amount(self, order: Dict[str, Any]) -> int:
        """Bought amount, capped by what the wallet actually holds"""
        token_amount = order["token_amount"]
        held = await self.signer.balance_of(self.token)
        if held <= 0:
            raise TradeError(
                f"Wallet holds no {self.token}, order {order['id']} stays open",
                "NO_TOKEN_BALANCE",
            )
        if held < token_amount:
            logger.warning(
                "Wallet holds %s of %s bought base units, selling the balance",
                held, token_amount,
            )
            return held
        return token_amount

    # =========================================================================
    # Flow
    # =========================================================================

    async def _run(self, client: GaslessApiClient) -> Dict[str, Any]:
        user = self.store.get_or_create_user(self.signer.address)
        decimals = await self.signer.token_decimals(self.token)

        resumed = False
        order = self.store.find_open_order(user["id"], self.token)
        if order:
            order = self._resume(order)
            resumed = order is not None
        if not order:
            order = await self._buy(client, user["id"], decimals)

        feed = self.price_feed or TokenPriceFeed(
            client, self.config.usdc_address, self.config.usdc_decimals
        )

        entry_price = order["entry_price"] if resumed and order["entry_price"] else 0.0
        if not entry_price:
            entry_price = await feed.get_usd_price(self.token, decimals)
            if not entry_price:
                raise TradeError(
                    f"Could not read an entry price for {self.token}, order {order['id']} stays open",
                    "NO_ENTRY_PRICE",
                )
            self.store.set_entry_price(order["id"], entry_price)
        print(f"💵 Entry price: {entry_price} USD")

        monitor = PositionMonitor(
            lambda: feed.get_usd_price(self.token, decimals),
            entry_price=entry_price,
            take_profit_pct=self.settings.take_profit,
            stop_loss_pct=self.settings.stop_loss,
            timeout_sec=self.settings.timeout,
            interval=self.config.monitor_interval,
        )
        print(
            f"👀 Monitoring: TP {monitor.take_profit_price:.6f} / "
            f"SL {monitor.stop_loss_price:.6f} / timeout {self.settings.timeout}s"
        )
        result = await monitor.run()
        print(f"🔔 {result.event.value} at {result.price} USD")

        # buy leg may come from an earlier run
        sell_decimals = await self.signer.token_decimals(self.token)
        if sell_decimals != order["decimals"]:
            logger.warning(
                "Token decimals changed since the buy leg: %s -> %s, using on-chain value",
                order["decimals"], sell_decimals,
            )

        token_amount = await self._sell_amount(order)
        print(f"💱 Selling {token_amount} base units for WETH...")
        outcome = await self._swap(client, self.token, self.config.weth_address, token_amount)

        exit_price = result.price
        if exit_price is None:
            exit_price = await feed.get_usd_price(self.token, sell_decimals) or None
        if exit_price is None:
            logger.warning("No exit price for order %s, booking zero pnl", order["id"])
            pnl = 0.0
        else:
            pnl = compute_pnl(entry_price, exit_price, token_amount, sell_decimals)
        completed = self.store.complete_order(
            order["id"],
            pnl,
            outcome.tx_hash or outcome.trade_hash,
            eth_amount=outcome.buy_amount / 10 ** WETH_DECIMALS,
            token_amount=token_amount,
        )
        print(f"✔️  PnL for the trade: {pnl} USD")

        return {
            "order_id": completed["id"],
            "event": result.event.value,
            "entry_price": entry_price,
            "exit_price": exit_price,
            "token_amount": token_amount,
            "decimals": sell_decimals,
            "pnl": pnl,
            "buy_tx_hash": next(
                (t["txn_hash"] for t in completed["trades"] if t["trade_type"] == "buy"), None
            ),
            "sell_tx_hash": outcome.tx_hash or outcome.trade_hash,
            "resumed": resumed,
        }
