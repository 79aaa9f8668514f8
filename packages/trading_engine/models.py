"""
Trading Engine Models - dataclasses for the gasless swap lifecycle
"""
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


QUOTE_VALIDITY = timedelta(seconds=30)


class TradeState(Enum):
    """Lifecycle state of one trade attempt"""
    IDLE = "idle"
    PRICE_FETCHED = "price_fetched"
    QUOTE_FETCHED = "quote_fetched"
    APPROVAL_RESOLVED = "approval_resolved"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (TradeState.SUCCEEDED, TradeState.FAILED, TradeState.TIMED_OUT)


class ApprovalPlan(Enum):
    """How token spend gets authorized before the trade"""
    NONE = "none"
    SIGN_GASLESS = "sign_gasless"
    STANDARD_ON_CHAIN = "standard_on_chain"


class TradeStatus(Enum):
    """Status reported by the remote status endpoint"""
    PENDING = "pending"
    SUBMITTED = "submitted"
    SUCCEEDED = "succeeded"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TradeStatus.SUCCEEDED, TradeStatus.CONFIRMED, TradeStatus.FAILED)

    @property
    def is_success(self) -> bool:
        return self in (TradeStatus.SUCCEEDED, TradeStatus.CONFIRMED)


class FailureReason(Enum):
    """Closed set of failure reasons from the status endpoint"""
    TRANSACTION_SIMULATION_FAILED = "transaction_simulation_failed"
    ORDER_EXPIRED = "order_expired"
    LAST_LOOK_DECLINED = "last_look_declined"
    TRANSACTION_REVERTED = "transaction_reverted"
    # Wire value is misspelled upstream
    MARKET_MAKER_SIGNATURE_ERROR = "market_maker_sigature_error"
    INTERNAL_ERROR = "internal_error"

    @classmethod
    def _missing_(cls, value):
        if value == "market_maker_signature_error":
            return cls.MARKET_MAKER_SIGNATURE_ERROR
        return cls.INTERNAL_ERROR


class GaslessTradeType(Enum):
    """Typed-data schema of the trade envelope"""
    META_TRANSACTION = "metatransaction"
    META_TRANSACTION_V2 = "metatransaction_v2"
    OTC_ORDER = "otc"
    SETTLER_METATRANSACTION = "settler_metatransaction"


class GaslessApprovalType(Enum):
    """Gasless approval mechanisms"""
    EXECUTE_META_TRANSACTION = "executeMetaTransaction::approve"
    PERMIT = "permit"
    DAI_PERMIT = "daiPermit"


def _to_int(value: Any) -> int:
    if value in (None, ""):
        return 0
    return int(value)


def _parse_eip712(value: Any) -> Dict[str, Any]:
    # tx-relay v1 ships the typed data as a JSON string
    if isinstance(value, str):
        return json.loads(value)
    return value or {}


@dataclass
class PriceQuote:
    """Indicative price from the price endpoint"""
    sell_token: str
    buy_token: str
    sell_amount: int
    buy_amount: int
    liquidity_available: bool
    price: Decimal = Decimal("0")
    allowance_target: Optional[str] = None
    allowance_issue: Optional[Dict[str, Any]] = None
    fees: Dict[str, Any] = field(default_factory=dict)
    sources: List[Dict[str, Any]] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    # Request parameters, reused for the quote call
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any], params: Optional[Dict[str, Any]] = None) -> "PriceQuote":
        params = params or {}
        issues = data.get("issues") or {}
        return cls(
            sell_token=data.get("sellToken") or data.get("sellTokenAddress") or params.get("sellToken", ""),
            buy_token=data.get("buyToken") or data.get("buyTokenAddress") or params.get("buyToken", ""),
            sell_amount=_to_int(data.get("sellAmount")),
            buy_amount=_to_int(data.get("buyAmount")),
            liquidity_available=bool(data.get("liquidityAvailable", _to_int(data.get("buyAmount")) > 0)),
            price=Decimal(str(data["price"])) if data.get("price") is not None else Decimal("0"),
            allowance_target=data.get("allowanceTarget"),
            allowance_issue=issues.get("allowance"),
            fees=data.get("fees") or {},
            sources=data.get("sources") or (data.get("route") or {}).get("fills", []),
            raw=data,
            params=dict(params),
        )


@dataclass
class SignableEnvelope:
    """A typed-data document the taker has to sign (trade or approval)"""
    type: str
    eip712: Dict[str, Any]
    hash: Optional[str] = None
    is_required: bool = True
    is_gasless_available: bool = True

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> Optional["SignableEnvelope"]:
        if not data:
            return None
        return cls(
            type=data.get("type", ""),
            eip712=_parse_eip712(data.get("eip712")),
            hash=data.get("hash"),
            is_required=data.get("isRequired", True),
            is_gasless_available=data.get("isGaslessAvailable", data.get("eip712") is not None),
        )

    @property
    def trade_type(self) -> Optional[GaslessTradeType]:
        """Trade schema, None when the API sent one this client does not know"""
        try:
            return GaslessTradeType(self.type)
        except ValueError:
            return None

    @property
    def approval_type(self) -> Optional[GaslessApprovalType]:
        try:
            return GaslessApprovalType(self.type)
        except ValueError:
            return None

    @property
    def typed_data(self) -> Dict[str, Any]:
        """Only the four fields a wallet needs"""
        return {
            "types": self.eip712.get("types", {}),
            "domain": self.eip712.get("domain", {}),
            "message": self.eip712.get("message", {}),
            "primaryType": self.eip712.get("primaryType", ""),
        }


@dataclass
class Quote:
    """Firm, signable quote bound to a taker"""
    price: PriceQuote
    taker: str
    trade: Optional[SignableEnvelope]
    approval: Optional[SignableEnvelope] = None
    permit2: Optional[Dict[str, Any]] = None
    transaction: Optional[Dict[str, Any]] = None
    quoted_at: datetime = field(default_factory=datetime.utcnow)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any], taker: str, params: Optional[Dict[str, Any]] = None) -> "Quote":
        return cls(
            price=PriceQuote.from_api(data, params),
            taker=taker,
            trade=SignableEnvelope.from_api(data.get("trade")),
            approval=SignableEnvelope.from_api(data.get("approval")),
            permit2=data.get("permit2"),
            transaction=data.get("transaction"),
            quoted_at=datetime.utcnow(),
            raw=data,
        )

    @property
    def valid_until(self) -> datetime:
        return self.quoted_at + QUOTE_VALIDITY

    @property
    def is_expired(self) -> bool:
        return datetime.utcnow() >= self.valid_until

    @property
    def allowance_required(self) -> bool:
        """True when the taker's allowance does not cover the sell amount"""
        issue = self.price.allowance_issue
        if issue is not None:
            actual = issue.get("actual")
            if actual is not None and self.price.sell_amount and _to_int(actual) >= self.price.sell_amount:
                return False
            return True
        # tx-relay v1 reports it on the approval object instead
        return bool(self.approval and self.approval.is_required and "isRequired" in (self.raw.get("approval") or {}))

    @property
    def gasless_approval_available(self) -> bool:
        return bool(
            self.approval
            and self.approval.is_gasless_available
            and self.approval.eip712
            and self.approval.approval_type is not None
        )

    @property
    def spender(self) -> Optional[str]:
        """Contract that needs the allowance"""
        if self.price.allowance_issue and self.price.allowance_issue.get("spender"):
            return self.price.allowance_issue["spender"]
        return self.price.allowance_target


@dataclass
class StatusSnapshot:
    """One reading of the status endpoint"""
    status: TradeStatus
    transactions: List[Dict[str, Any]] = field(default_factory=list)
    approval_transactions: List[Dict[str, Any]] = field(default_factory=list)
    reason: Optional[FailureReason] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "StatusSnapshot":
        try:
            status = TradeStatus(data.get("status"))
        except ValueError:
            # Unknown statuses are not terminal
            status = TradeStatus.PENDING
        reason = None
        if status == TradeStatus.FAILED:
            reason = FailureReason(data.get("reason") or FailureReason.INTERNAL_ERROR.value)
        return cls(
            status=status,
            transactions=data.get("transactions") or [],
            approval_transactions=data.get("approvalTransactions") or [],
            reason=reason,
            raw=data,
        )

    @property
    def tx_hash(self) -> Optional[str]:
        if not self.transactions:
            return None
        return self.transactions[0].get("hash")


@dataclass
class SubmissionResult:
    """Response of the submit endpoint"""
    trade_hash: str
    type: Optional[str] = None
    submitted_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class TradeOutcome:
    """Final result of a completed trade"""
    trade_hash: str
    tx_hash: Optional[str]
    status: TradeStatus
    quote: Optional[Quote] = None
    approval_tx_hash: Optional[str] = None
    confirmed_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def sell_amount(self) -> int:
        return self.quote.price.sell_amount if self.quote else 0

    @property
    def buy_amount(self) -> int:
        return self.quote.price.buy_amount if self.quote else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trade_hash": self.trade_hash,
            "tx_hash": self.tx_hash,
            "status": self.status.value,
            "sell_amount": str(self.sell_amount),
            "buy_amount": str(self.buy_amount),
            "approval_tx_hash": self.approval_tx_hash,
            "confirmed_at": self.confirmed_at.isoformat(),
        }
