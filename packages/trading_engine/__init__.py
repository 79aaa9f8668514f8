"""
Gasless Swap Engine - Trading Engine
====================================

Gasless ERC-20 swaps through the 0x settlement service: the relayer pays
gas, the taker only signs EIP-712 typed data.

Quick Start:
------------

    from trading_engine import GaslessApiClient, LocalWalletSigner, TradeOrchestrator

    signer = LocalWalletSigner(private_key, "https://mainnet.base.org", 8453)

    async with GaslessApiClient(api_key, chain_id=8453) as api:
        orchestrator = TradeOrchestrator(api, signer)
        outcome = await orchestrator.execute(usdc, weth, 10_000_000)
        print(f"Mined: {outcome.tx_hash}")

    # Watch a position
    from trading_engine import PositionMonitor, TokenPriceFeed

    feed = TokenPriceFeed(api, usdc)
    monitor = PositionMonitor(lambda: feed.get_usd_price(token, 18), entry_price=1.25,
                              take_profit_pct=10, stop_loss_pct=5, timeout_sec=3600)
    result = await monitor.run()

Supported APIs:
---------------
- Gasless API v2 (GASLESS_V2, default)
- tx-relay v1 (TX_RELAY_V1)
"""

# Version
__version__ = "0.1.0"

from .config import (
    TradingConfig,
    GasSettings,
    DEFAULT_CHAIN_ID,
    DEFAULT_WETH_ADDRESS,
    DEFAULT_USDC_ADDRESS,
    MAX_ALLOWANCE,
    NATIVE_TOKEN,
)

from .exceptions import (
    TradeError,
    ConfigError,
    DecodeError,
    NoLiquidityError,
    ApprovalFailedError,
    SigningDeclinedError,
    GaslessApiError,
    SubmissionRejectedError,
    PollTimeoutError,
    TerminalFailureError,
    TradeCancelledError,
    InvalidStateError,
    MonitorStoppedError,
)

from .signature import (
    Signature,
    SignatureType,
    pad_hex,
    split_signature,
    join_signature,
)

from .models import (
    TradeState,
    ApprovalPlan,
    TradeStatus,
    FailureReason,
    GaslessTradeType,
    GaslessApprovalType,
    PriceQuote,
    SignableEnvelope,
    Quote,
    StatusSnapshot,
    SubmissionResult,
    TradeOutcome,
)

from .gasless_api import (
    ApiEndpoints,
    GaslessApiClient,
    GASLESS_V2,
    TX_RELAY_V1,
)

from .signer import BaseSigner, LocalWalletSigner
from .orchestrator import TradeOrchestrator
from .monitor import MonitorEvent, MonitorResult, PositionMonitor
from .pricing import TokenPriceFeed
from .permit2 import Permit2Swapper, append_signature


__all__ = [
    # Version
    "__version__",

    # Config
    "TradingConfig",
    "GasSettings",
    "DEFAULT_CHAIN_ID",
    "DEFAULT_WETH_ADDRESS",
    "DEFAULT_USDC_ADDRESS",
    "MAX_ALLOWANCE",
    "NATIVE_TOKEN",

    # Exceptions
    "TradeError",
    "ConfigError",
    "DecodeError",
    "NoLiquidityError",
    "ApprovalFailedError",
    "SigningDeclinedError",
    "GaslessApiError",
    "SubmissionRejectedError",
    "PollTimeoutError",
    "TerminalFailureError",
    "TradeCancelledError",
    "InvalidStateError",
    "MonitorStoppedError",

    # Signature codec
    "Signature",
    "SignatureType",
    "pad_hex",
    "split_signature",
    "join_signature",

    # Models
    "TradeState",
    "ApprovalPlan",
    "TradeStatus",
    "FailureReason",
    "GaslessTradeType",
    "GaslessApprovalType",
    "PriceQuote",
    "SignableEnvelope",
    "Quote",
    "StatusSnapshot",
    "SubmissionResult",
    "TradeOutcome",

    # API
    "ApiEndpoints",
    "GaslessApiClient",
    "GASLESS_V2",
    "TX_RELAY_V1",

    # Lifecycle
    "BaseSigner",
    "LocalWalletSigner",
    "TradeOrchestrator",
    "MonitorEvent",
    "MonitorResult",
    "PositionMonitor",
    "TokenPriceFeed",
    "Permit2Swapper",
    "append_signature",
]
