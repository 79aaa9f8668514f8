"""
Tests for the trade orchestrator state machine.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from trading_engine.config import MAX_ALLOWANCE
from trading_engine.exceptions import (
    ApprovalFailedError,
    DecodeError,
    InvalidStateError,
    NoLiquidityError,
    PollTimeoutError,
    SigningDeclinedError,
    SubmissionRejectedError,
    TerminalFailureError,
    TradeCancelledError,
    TradeError,
)
from trading_engine.gasless_api import GASLESS_V2
from trading_engine.models import (
    ApprovalPlan,
    FailureReason,
    GaslessApprovalType,
    GaslessTradeType,
    TradeState,
    TradeStatus,
)
from trading_engine.orchestrator import TradeOrchestrator

SELL = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
BUY = "0x4200000000000000000000000000000000000006"
SPENDER = "0x0000000000001fF3684f28c67538d4D072C22734"
TAKER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

TRADE_EIP712 = {
    "types": {"MetaTransaction": [{"name": "nonce", "type": "uint256"}]},
    "domain": {"name": "Settler", "chainId": 8453},
    "message": {"nonce": 1},
    "primaryType": "MetaTransaction",
}
APPROVAL_EIP712 = {
    "types": {"Permit": [{"name": "value", "type": "uint256"}]},
    "domain": {"name": "USD Coin", "chainId": 8453},
    "message": {"value": 1000000},
    "primaryType": "Permit",
}

PRICE = {
    "liquidityAvailable": True,
    "sellToken": SELL,
    "buyToken": BUY,
    "sellAmount": "1000000",
    "buyAmount": "400000000000000",
    "issues": {"allowance": None},
}


def make_quote(allowance=None, approval=None):
    quote = dict(PRICE)
    quote["issues"] = {"allowance": allowance}
    quote["trade"] = {"type": "settler_metatransaction", "eip712": TRADE_EIP712}
    quote["approval"] = approval
    return quote


GASLESS_APPROVAL = {"type": "permit", "eip712": APPROVAL_EIP712}
SHORT_ALLOWANCE = {"actual": "0", "spender": SPENDER}


@pytest.fixture
def raw_signature():
    signed = Account.create().sign_message(encode_defunct(text="trade"))
    return Web3.to_hex(signed.signature)


@pytest.fixture
def client():
    api = MagicMock()
    api.endpoints = GASLESS_V2
    api.get_price = AsyncMock(return_value=PRICE)
    api.get_quote = AsyncMock(return_value=make_quote())
    api.submit = AsyncMock(return_value={"tradeHash": "0xtrade"})
    api.get_status = AsyncMock(return_value={
        "status": "confirmed",
        "transactions": [{"hash": "0xmined", "timestamp": 1}],
    })
    return api


@pytest.fixture
def signer(raw_signature):
    wallet = MagicMock()
    wallet.address = TAKER
    wallet.sign_typed_data = AsyncMock(return_value=raw_signature)
    wallet.approve = AsyncMock(return_value="0xapprove")
    wallet.wait_for_receipt = AsyncMock(return_value={"status": 1})
    return wallet


@pytest.fixture
def orchestrator(client, signer):
    return TradeOrchestrator(client, signer, poll_interval=0, poll_deadline=5)


async def quoted(orchestrator):
    await orchestrator.get_price(SELL, BUY, sell_amount=1000000, taker=TAKER)
    return await orchestrator.get_quote()


class TestGetPrice:

    @pytest.mark.asyncio
    async def test_price_params(self, orchestrator, client):
        price = await orchestrator.get_price(SELL, BUY, sell_amount=1000000, taker=TAKER)

        assert price.buy_amount == 400000000000000
        assert orchestrator.state == TradeState.PRICE_FETCHED
        client.get_price.assert_awaited_once_with({
            "sellToken": SELL,
            "buyToken": BUY,
            "sellAmount": "1000000",
            "taker": TAKER,
        })

    @pytest.mark.asyncio
    async def test_no_liquidity_skips_quote(self, orchestrator, client):
        client.get_price.return_value = {"liquidityAvailable": False}

        with pytest.raises(NoLiquidityError):
            await orchestrator.execute(SELL, BUY, 1000000)

        client.get_quote.assert_not_awaited()
        client.submit.assert_not_awaited()
        assert orchestrator.state == TradeState.PRICE_FETCHED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amounts", [{}, {"sell_amount": 1, "buy_amount": 1}, {"sell_amount": 0}])
    async def test_exactly_one_positive_amount(self, orchestrator, client, amounts):
        with pytest.raises(ValueError):
            await orchestrator.get_price(SELL, BUY, **amounts)

        client.get_price.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_buy_amount(self, orchestrator, client):
        await orchestrator.get_price(SELL, BUY, buy_amount=5)

        params = client.get_price.await_args.args[0]
        assert params["buyAmount"] == "5"
        assert "sellAmount" not in params


class TestGetQuote:

    @pytest.mark.asyncio
    async def test_quote_before_price(self, orchestrator):
        with pytest.raises(InvalidStateError):
            await orchestrator.get_quote()

    @pytest.mark.asyncio
    async def test_quote_uses_signer_as_taker(self, orchestrator, client):
        await orchestrator.get_price(SELL, BUY, sell_amount=1000000)
        quote = await orchestrator.get_quote()

        assert quote.taker == TAKER
        assert client.get_quote.await_args.args[0]["taker"] == TAKER
        assert orchestrator.state == TradeState.QUOTE_FETCHED

    @pytest.mark.asyncio
    async def test_quote_without_trade(self, orchestrator, client):
        client.get_quote.return_value = dict(PRICE)

        await orchestrator.get_price(SELL, BUY, sell_amount=1000000)
        with pytest.raises(TradeError) as exc_info:
            await orchestrator.get_quote()

        assert "no trade" in str(exc_info.value)


class TestResolveApproval:

    @pytest.mark.asyncio
    async def test_sufficient_allowance(self, orchestrator, client):
        client.get_quote.return_value = make_quote(allowance=None, approval=GASLESS_APPROVAL)

        await quoted(orchestrator)
        assert orchestrator.resolve_approval() == ApprovalPlan.NONE
        assert orchestrator.state == TradeState.APPROVAL_RESOLVED

    @pytest.mark.asyncio
    async def test_actual_allowance_covers_amount(self, orchestrator, client):
        client.get_quote.return_value = make_quote(
            allowance={"actual": "2000000", "spender": SPENDER},
            approval=GASLESS_APPROVAL,
        )

        await quoted(orchestrator)
        assert orchestrator.resolve_approval() == ApprovalPlan.NONE

    @pytest.mark.asyncio
    async def test_gasless_approval(self, orchestrator, client):
        client.get_quote.return_value = make_quote(SHORT_ALLOWANCE, GASLESS_APPROVAL)

        await quoted(orchestrator)
        assert orchestrator.resolve_approval() == ApprovalPlan.SIGN_GASLESS

    @pytest.mark.asyncio
    async def test_standard_approval(self, orchestrator, client):
        client.get_quote.return_value = make_quote(SHORT_ALLOWANCE, None)

        await quoted(orchestrator)
        assert orchestrator.resolve_approval() == ApprovalPlan.STANDARD_ON_CHAIN

    @pytest.mark.asyncio
    async def test_unknown_approval_type_is_standard(self, orchestrator, client):
        unknown = {"type": "permit3", "eip712": APPROVAL_EIP712}
        client.get_quote.return_value = make_quote(SHORT_ALLOWANCE, unknown)

        quote = await quoted(orchestrator)

        assert quote.approval.approval_type is None
        assert orchestrator.resolve_approval() == ApprovalPlan.STANDARD_ON_CHAIN

    @pytest.mark.asyncio
    async def test_envelope_types(self, orchestrator, client):
        client.get_quote.return_value = make_quote(SHORT_ALLOWANCE, GASLESS_APPROVAL)

        quote = await quoted(orchestrator)

        assert quote.trade.trade_type == GaslessTradeType.SETTLER_METATRANSACTION
        assert quote.approval.approval_type == GaslessApprovalType.PERMIT

    @pytest.mark.asyncio
    async def test_unknown_trade_type_warns(self, orchestrator, client, caplog):
        quote = make_quote()
        quote["trade"] = {"type": "settler_v9", "eip712": TRADE_EIP712}
        client.get_quote.return_value = quote

        await quoted(orchestrator)

        assert "Unknown trade type" in caplog.text
        assert orchestrator.state == TradeState.QUOTE_FETCHED

    @pytest.mark.asyncio
    async def test_resolve_before_quote(self, orchestrator):
        with pytest.raises(InvalidStateError):
            orchestrator.resolve_approval()


class TestStandardApproval:

    @pytest.mark.asyncio
    async def test_approves_max_and_waits(self, orchestrator, client, signer):
        client.get_quote.return_value = make_quote(SHORT_ALLOWANCE, None)

        outcome = await orchestrator.execute(SELL, BUY, 1000000)

        signer.approve.assert_awaited_once_with(SELL, SPENDER, MAX_ALLOWANCE)
        signer.wait_for_receipt.assert_awaited_once()
        assert outcome.approval_tx_hash == "0xapprove"
        assert client.submit.await_args.args[1] is None

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, orchestrator, client, signer):
        client.get_quote.return_value = make_quote(SHORT_ALLOWANCE, None)
        signer.wait_for_receipt.return_value = {"status": 0}

        with pytest.raises(ApprovalFailedError) as exc_info:
            await orchestrator.execute(SELL, BUY, 1000000)

        assert exc_info.value.tx_hash == "0xapprove"
        signer.sign_typed_data.assert_not_awaited()
        client.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_receipt_timeout(self, orchestrator, client, signer):
        client.get_quote.return_value = make_quote(SHORT_ALLOWANCE, None)
        signer.wait_for_receipt.side_effect = TimeoutError("not mined")

        with pytest.raises(ApprovalFailedError):
            await orchestrator.execute(SELL, BUY, 1000000)

        client.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_submit_requires_confirmed_approval(self, orchestrator, client):
        client.get_quote.return_value = make_quote(SHORT_ALLOWANCE, None)

        await quoted(orchestrator)
        orchestrator.resolve_approval()
        with pytest.raises(InvalidStateError):
            await orchestrator.sign_and_submit()


class TestSignAndSubmit:

    @pytest.mark.asyncio
    async def test_trade_only_without_approval(self, orchestrator, client, signer):
        await quoted(orchestrator)
        orchestrator.resolve_approval()
        result = await orchestrator.sign_and_submit()

        assert result.trade_hash == "0xtrade"
        assert orchestrator.state == TradeState.SUBMITTED
        signer.sign_typed_data.assert_awaited_once_with(TRADE_EIP712)

        trade_body, approval_body = client.submit.await_args.args
        assert approval_body is None
        assert trade_body["type"] == "settler_metatransaction"
        assert trade_body["eip712"] == TRADE_EIP712
        assert set(trade_body["signature"]) == {"v", "r", "s", "recoveryParam", "signatureType"}
        assert trade_body["signature"]["signatureType"] == 2

    @pytest.mark.asyncio
    async def test_gasless_approval_signed_first(self, orchestrator, client, signer):
        client.get_quote.return_value = make_quote(SHORT_ALLOWANCE, GASLESS_APPROVAL)

        await orchestrator.execute(SELL, BUY, 1000000)

        calls = signer.sign_typed_data.await_args_list
        assert [c.args[0]["primaryType"] for c in calls] == ["Permit", "MetaTransaction"]

        trade_body, approval_body = client.submit.await_args.args
        assert approval_body["type"] == "permit"
        assert approval_body["signature"]["signatureType"] == 2
        signer.approve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_signing_declined(self, orchestrator, client, signer):
        signer.sign_typed_data.side_effect = SigningDeclinedError("user rejected")

        with pytest.raises(SigningDeclinedError):
            await orchestrator.execute(SELL, BUY, 1000000)

        client.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_signature(self, orchestrator, client, signer):
        signer.sign_typed_data.return_value = "0xdead"

        with pytest.raises(DecodeError):
            await orchestrator.execute(SELL, BUY, 1000000)

        client.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_submission_not_retried(self, orchestrator, client):
        client.submit.side_effect = SubmissionRejectedError("rejected", 400, {"reason": "bad"})

        with pytest.raises(SubmissionRejectedError):
            await orchestrator.execute(SELL, BUY, 1000000)

        assert client.submit.await_count == 1
        client.get_status.assert_not_awaited()


class TestPolling:

    @pytest.mark.asyncio
    async def test_pending_submitted_succeeded(self, orchestrator, client):
        client.get_status.side_effect = [
            {"status": "pending"},
            {"status": "submitted", "transactions": [{"hash": "0xmined", "timestamp": 1}]},
            {"status": "succeeded", "transactions": [{"hash": "0xmined", "timestamp": 2}]},
        ]

        outcome = await orchestrator.execute(SELL, BUY, 1000000)

        assert client.get_status.await_count == 3
        assert outcome.tx_hash == "0xmined"
        assert outcome.trade_hash == "0xtrade"
        assert outcome.status == TradeStatus.SUCCEEDED
        assert orchestrator.state == TradeState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_confirmed_is_success(self, orchestrator):
        outcome = await orchestrator.execute(SELL, BUY, 1000000)

        assert outcome.status == TradeStatus.CONFIRMED
        assert outcome.to_dict()["buy_amount"] == "400000000000000"

    @pytest.mark.asyncio
    async def test_failed_with_reason(self, orchestrator, client):
        client.get_status.return_value = {"status": "failed", "reason": "last_look_declined"}

        with pytest.raises(TerminalFailureError) as exc_info:
            await orchestrator.execute(SELL, BUY, 1000000)

        assert exc_info.value.reason == FailureReason.LAST_LOOK_DECLINED
        assert exc_info.value.trade_hash == "0xtrade"
        assert orchestrator.state == TradeState.FAILED

    @pytest.mark.asyncio
    async def test_misspelled_wire_reason(self, orchestrator, client):
        client.get_status.return_value = {"status": "failed", "reason": "market_maker_sigature_error"}

        with pytest.raises(TerminalFailureError) as exc_info:
            await orchestrator.execute(SELL, BUY, 1000000)

        assert exc_info.value.reason == FailureReason.MARKET_MAKER_SIGNATURE_ERROR

    @pytest.mark.asyncio
    async def test_unknown_reason_is_internal_error(self, orchestrator, client):
        client.get_status.return_value = {"status": "failed", "reason": "something_new"}

        with pytest.raises(TerminalFailureError) as exc_info:
            await orchestrator.execute(SELL, BUY, 1000000)

        assert exc_info.value.reason == FailureReason.INTERNAL_ERROR

    @pytest.mark.asyncio
    async def test_deadline(self, client, signer):
        client.get_status.return_value = {"status": "pending"}
        orchestrator = TradeOrchestrator(client, signer, poll_interval=0.01, poll_deadline=0.05)

        with pytest.raises(PollTimeoutError) as exc_info:
            await orchestrator.execute(SELL, BUY, 1000000)

        assert exc_info.value.last_status == "pending"
        assert orchestrator.state == TradeState.TIMED_OUT
        assert client.get_status.await_count >= 2

    @pytest.mark.asyncio
    async def test_cancel_stops_polling(self, client, signer):
        orchestrator = TradeOrchestrator(client, signer, poll_interval=60, poll_deadline=600)

        def pending_then_cancel(trade_hash):
            orchestrator.cancel()
            return {"status": "pending"}

        client.get_status.side_effect = pending_then_cancel

        with pytest.raises(TradeCancelledError):
            await orchestrator.execute(SELL, BUY, 1000000)

        assert client.get_status.await_count == 1

    @pytest.mark.asyncio
    async def test_poll_before_submit(self, orchestrator):
        with pytest.raises(InvalidStateError):
            await orchestrator.poll_status("0xtrade")


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_execute_resets_finished_attempt(self, orchestrator, client):
        await orchestrator.execute(SELL, BUY, 1000000)
        await orchestrator.execute(SELL, BUY, 1000000)

        assert client.submit.await_count == 2
        assert orchestrator.state == TradeState.SUCCEEDED

    def test_reset(self, orchestrator):
        orchestrator.state = TradeState.FAILED
        orchestrator.cancel()
        orchestrator.reset()

        assert orchestrator.state == TradeState.IDLE
        assert orchestrator.quote is None
        assert not orchestrator.cancelled
