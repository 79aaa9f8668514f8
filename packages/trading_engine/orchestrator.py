"""
Trade Orchestrator - gasless swap lifecycle as one state machine

    IDLE -> PRICE_FETCHED -> QUOTE_FETCHED -> APPROVAL_RESOLVED -> SIGNED
         -> SUBMITTED -> POLLING -> {SUCCEEDED | FAILED | TIMED_OUT}

Every front-end (CLI bot, scripts) drives the same instance methods; each
call checks the current state so steps can't be skipped or reordered.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from .config import MAX_ALLOWANCE
from .exceptions import (
    ApprovalFailedError,
    InvalidStateError,
    NoLiquidityError,
    PollTimeoutError,
    TerminalFailureError,
    TradeCancelledError,
    TradeError,
)
from .gasless_api import GaslessApiClient
from .models import (
    ApprovalPlan,
    PriceQuote,
    Quote,
    SignableEnvelope,
    StatusSnapshot,
    SubmissionResult,
    TradeOutcome,
    TradeState,
    TradeStatus,
)
from .signature import split_signature
from .signer import BaseSigner

logger = logging.getLogger(__name__)


class TradeOrchestrator:
    """
    Drives one trade attempt at a time

    Example:
        async with GaslessApiClient(api_key, chain_id=8453) as api:
            orchestrator = TradeOrchestrator(api, signer)
            outcome = await orchestrator.execute(usdc, weth, 10_000_000)
            print(outcome.tx_hash)
    """

    def __init__(
        self,
        client: GaslessApiClient,
        signer: BaseSigner,
        poll_interval: float = 3.0,
        poll_deadline: float = 300.0,
        max_allowance: int = MAX_ALLOWANCE,
        receipt_timeout: float = 120.0,
    ):
        self.client = client
        self.signer = signer
        self.poll_interval = poll_interval
        self.poll_deadline = poll_deadline
        self.max_allowance = max_allowance
        self.receipt_timeout = receipt_timeout
        self.reset()

    def reset(self):
        """Forget the current attempt and go back to IDLE"""
        self.state = TradeState.IDLE
        self.price_quote: Optional[PriceQuote] = None
        self.quote: Optional[Quote] = None
        self.approval_plan: Optional[ApprovalPlan] = None
        self.approval_tx_hash: Optional[str] = None
        self.submission: Optional[SubmissionResult] = None
        self.last_status: Optional[StatusSnapshot] = None
        self._cancelled = asyncio.Event()

    def cancel(self):
        """Stop an in-flight wait_for_completion()"""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _require(self, *states: TradeState):
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidStateError(
                f"Cannot do this in state '{self.state.value}' (expected {allowed})"
            )

    # =========================================================================
    # Price / Quote
    # =========================================================================

    async def get_price(
        self,
        sell_token: str,
        buy_token: str,
        sell_amount: Optional[int] = None,
        buy_amount: Optional[int] = None,
        taker: Optional[str] = None,
    ) -> PriceQuote:
        """
        Fetch an indicative price

        Args:
            sell_token: Token to sell
            buy_token: Token to buy
            sell_amount: Amount to sell in base units
            buy_amount: Amount to buy in base units (instead of sell_amount)
            taker: Optional taker address

        Raises:
            NoLiquidityError: the pair can't be routed
        """
        self._require(TradeState.IDLE, TradeState.PRICE_FETCHED, TradeState.QUOTE_FETCHED)

        if (sell_amount is None) == (buy_amount is None):
            raise ValueError("Exactly one of sell_amount / buy_amount must be set")
        amount = sell_amount if sell_amount is not None else buy_amount
        if int(amount) <= 0:
            raise ValueError(f"Amount must be a positive integer, got {amount}")

        params: Dict[str, Any] = {
            "sellToken": sell_token,
            "buyToken": buy_token,
            "sellAmount": str(int(sell_amount)) if sell_amount is not None else None,
            "buyAmount": str(int(buy_amount)) if buy_amount is not None else None,
            self.client.endpoints.taker_param: taker,
        }
        params = {k: v for k, v in params.items() if v is not None}

        data = await self.client.get_price(params)
        price = PriceQuote.from_api(data, params)

        self.price_quote = price
        self.quote = None
        self.state = TradeState.PRICE_FETCHED

        if not price.liquidity_available:
            logger.warning("No liquidity for %s -> %s", sell_token, buy_token)
            raise NoLiquidityError(f"No liquidity available for {sell_token} -> {buy_token}")

        logger.info(
            "Price %s -> %s: sell %s buy %s",
            sell_token, buy_token, price.sell_amount, price.buy_amount,
        )
        return price

    async def get_quote(
        self,
        price_quote: Optional[PriceQuote] = None,
        taker: Optional[str] = None,
        check_approval: bool = True,
    ) -> Quote:
        """
        Fetch a firm, signable quote for the priced pair

        The quote is only valid for ~30 seconds and is never refreshed here;
        call get_price()/get_quote() again once `quote.is_expired`.
        """
        self._require(TradeState.PRICE_FETCHED)

        price_quote = price_quote or self.price_quote
        if price_quote is None or not price_quote.liquidity_available:
            raise NoLiquidityError("Cannot quote a pair without liquidity")

        taker = taker or self.signer.address
        if not taker:
            raise TradeError("A taker address is required for a firm quote")

        params = dict(price_quote.params)
        params[self.client.endpoints.taker_param] = taker
        if check_approval and self.client.endpoints.check_approval_param:
            params["checkApproval"] = "true"

        data = await self.client.get_quote(params)
        if data.get("liquidityAvailable") is False:
            raise NoLiquidityError("Liquidity disappeared between price and quote")

        quote = Quote.from_api(data, taker, params)
        if quote.trade is None:
            raise TradeError("Quote carries no trade to sign")
        if quote.trade.trade_type is None:
            logger.warning("Unknown trade type %r, signing it as sent", quote.trade.type)

        self.quote = quote
        self.state = TradeState.QUOTE_FETCHED
        return quote

    # =========================================================================
    # Approval
    # =========================================================================

    def resolve_approval(self, quote: Optional[Quote] = None) -> ApprovalPlan:
        """
        Decide how the sell token allowance gets granted

        | allowance sufficient | gasless approval | plan              |
        | yes                  | -                | NONE              |
        | no                   | yes              | SIGN_GASLESS      |
        | no                   | no               | STANDARD_ON_CHAIN |
        """
        self._require(TradeState.QUOTE_FETCHED)
        quote = quote or self.quote

        if not quote.allowance_required:
            plan = ApprovalPlan.NONE
        elif quote.gasless_approval_available:
            plan = ApprovalPlan.SIGN_GASLESS
        else:
            plan = ApprovalPlan.STANDARD_ON_CHAIN

        self.quote = quote
        self.approval_plan = plan
        self.state = TradeState.APPROVAL_RESOLVED
        logger.info("Approval plan: %s", plan.value)
        return plan

    async def run_standard_approval(self, quote: Optional[Quote] = None) -> str:
        """
        Send approve(spender, max) and wait for one confirmation

        Raises:
            ApprovalFailedError: broadcast failed, receipt timed out or reverted
        """
        self._require(TradeState.APPROVAL_RESOLVED)
        if self.approval_plan != ApprovalPlan.STANDARD_ON_CHAIN:
            raise InvalidStateError(f"Approval plan is {self.approval_plan.value}, not standard")

        quote = quote or self.quote
        spender = quote.spender
        if not spender:
            raise ApprovalFailedError("Quote does not name a spender to approve")

        token = quote.price.sell_token
        try:
            tx_hash = await self.signer.approve(token, spender, self.max_allowance)
        except TradeError:
            raise
        except Exception as e:
            raise ApprovalFailedError(f"Approve transaction failed: {e}") from e

        logger.info("Waiting for approval %s", tx_hash)
        try:
            receipt = await self.signer.wait_for_receipt(tx_hash, self.receipt_timeout)
        except Exception as e:
            raise ApprovalFailedError(f"Approval not confirmed: {e}", tx_hash) from e

        if receipt.get("status") != 1:
            raise ApprovalFailedError(f"Approval transaction reverted: {tx_hash}", tx_hash)

        self.approval_tx_hash = tx_hash
        return tx_hash

    # =========================================================================
    # Sign / Submit
    # =========================================================================

    async def _sign_envelope(self, envelope: SignableEnvelope) -> Dict[str, Any]:
        raw_signature = await self.signer.sign_typed_data(envelope.typed_data)
        signature = split_signature(raw_signature)
        return {
            "type": envelope.type,
            "eip712": envelope.eip712,
            "signature": signature.to_dict(),
        }

    async def sign_and_submit(
        self,
        quote: Optional[Quote] = None,
        approval_plan: Optional[ApprovalPlan] = None,
    ) -> SubmissionResult:
        """
        Sign the approval (gasless plan only) then the trade, and submit both

        Signatures are requested one after the other. A rejected submission
        is never retried.
        """
        self._require(TradeState.APPROVAL_RESOLVED)
        quote = quote or self.quote
        plan = approval_plan or self.approval_plan

        if plan == ApprovalPlan.STANDARD_ON_CHAIN and not self.approval_tx_hash:
            raise InvalidStateError("On-chain approval must be confirmed before signing")
        if quote.is_expired:
            logger.warning("Quote is older than its validity window, submission may be rejected")

        approval_body = None
        if plan == ApprovalPlan.SIGN_GASLESS:
            approval_body = await self._sign_envelope(quote.approval)
        trade_body = await self._sign_envelope(quote.trade)
        self.state = TradeState.SIGNED

        data = await self.client.submit(trade_body, approval_body)

        self.submission = SubmissionResult(trade_hash=data["tradeHash"], type=data.get("type"))
        self.state = TradeState.SUBMITTED
        return self.submission

    # =========================================================================
    # Status
    # =========================================================================

    async def poll_status(self, trade_hash: Optional[str] = None) -> StatusSnapshot:
        """Read the status endpoint once"""
        self._require(TradeState.SUBMITTED, TradeState.POLLING)
        trade_hash = trade_hash or self.submission.trade_hash

        self.state = TradeState.POLLING
        snapshot = StatusSnapshot.from_api(await self.client.get_status(trade_hash))
        self.last_status = snapshot

        if snapshot.status.is_success:
            self.state = TradeState.SUCCEEDED
        elif snapshot.status == TradeStatus.FAILED:
            self.state = TradeState.FAILED
        return snapshot

    async def wait_for_completion(self, trade_hash: Optional[str] = None) -> TradeOutcome:
        """
        Poll every `poll_interval` seconds until a terminal status

        Raises:
            TerminalFailureError: the service reported `failed`
            PollTimeoutError: `poll_deadline` expired first
            TradeCancelledError: cancel() was called
        """
        trade_hash = trade_hash or (self.submission.trade_hash if self.submission else None)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.poll_deadline

        while True:
            if self.cancelled:
                raise TradeCancelledError(f"Polling of {trade_hash} cancelled")

            snapshot = await self.poll_status(trade_hash)
            logger.debug("Trade %s status: %s", trade_hash, snapshot.status.value)

            if snapshot.status.is_success:
                logger.info("Trade %s confirmed in %s", trade_hash, snapshot.tx_hash)
                return TradeOutcome(
                    trade_hash=trade_hash,
                    tx_hash=snapshot.tx_hash,
                    status=snapshot.status,
                    quote=self.quote,
                    approval_tx_hash=self.approval_tx_hash,
                )
            if snapshot.status == TradeStatus.FAILED:
                raise TerminalFailureError(snapshot.reason, trade_hash)

            remaining = deadline - loop.time()
            if remaining <= 0:
                self.state = TradeState.TIMED_OUT
                raise PollTimeoutError(
                    f"Trade {trade_hash} still {snapshot.status.value} after {self.poll_deadline:g}s",
                    trade_hash,
                    snapshot.status.value,
                )

            try:
                await asyncio.wait_for(
                    self._cancelled.wait(),
                    timeout=min(self.poll_interval, remaining),
                )
            except asyncio.TimeoutError:
                continue

    # =========================================================================
    # Full lifecycle
    # =========================================================================

    async def execute(
        self,
        sell_token: str,
        buy_token: str,
        sell_amount: int,
        taker: Optional[str] = None,
    ) -> TradeOutcome:
        """Run price -> quote -> approval -> sign -> submit -> poll"""
        if self.state != TradeState.IDLE:
            self.reset()

        taker = taker or self.signer.address
        await self.get_price(sell_token, buy_token, sell_amount=sell_amount, taker=taker)
        quote = await self.get_quote(taker=taker)

        plan = self.resolve_approval(quote)
        if plan == ApprovalPlan.STANDARD_ON_CHAIN:
            await self.run_standard_approval(quote)

        submission = await self.sign_and_submit(quote, plan)
        return await self.wait_for_completion(submission.trade_hash)
