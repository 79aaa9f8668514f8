"""
Trading Engine Exceptions - every failure the swap lifecycle can surface
"""
from typing import Optional


class TradeError(Exception):
    """Base class for failures of a single trade attempt"""
    error_code = "TRADE_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        if error_code:
            self.error_code = error_code


class ConfigError(TradeError):
    """Missing or invalid configuration"""
    error_code = "CONFIG"


class DecodeError(TradeError, ValueError):
    """Raw signature could not be decoded"""
    error_code = "DECODE"


class NoLiquidityError(TradeError):
    """The price endpoint reported no liquidity for the pair"""
    error_code = "NO_LIQUIDITY"


class ApprovalFailedError(TradeError):
    """On-chain approve() reverted or was not mined in time"""
    error_code = "APPROVAL_FAILED"

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class SigningDeclinedError(TradeError):
    """The wallet refused to sign"""
    error_code = "SIGNING_DECLINED"


class GaslessApiError(TradeError):
    """Error returned by the remote quoting/settlement API"""
    error_code = "API_ERROR"

    def __init__(self, message: str, status_code: int = 0, error_code: str = ""):
        super().__init__(message, error_code or None)
        self.status_code = status_code


class SubmissionRejectedError(GaslessApiError):
    """Submit endpoint answered non-2xx or without a trade hash"""
    error_code = "SUBMISSION_REJECTED"

    def __init__(self, message: str, status_code: int = 0, detail: Optional[dict] = None):
        super().__init__(message, status_code, "SUBMISSION_REJECTED")
        self.detail = detail or {}


class PollTimeoutError(TradeError):
    """Status polling deadline expired before a terminal status"""
    error_code = "POLL_TIMEOUT"

    def __init__(self, message: str, trade_hash: str = "", last_status: Optional[str] = None):
        super().__init__(message)
        self.trade_hash = trade_hash
        self.last_status = last_status


class TerminalFailureError(TradeError):
    """The remote service reported the trade as failed"""
    error_code = "TERMINAL_FAILURE"

    def __init__(self, reason, trade_hash: str = ""):
        super().__init__(f"Trade {trade_hash or '?'} failed: {getattr(reason, 'value', reason)}")
        self.reason = reason
        self.trade_hash = trade_hash


class TradeCancelledError(TradeError):
    """The trade flow was cancelled by its caller"""
    error_code = "CANCELLED"


class InvalidStateError(TradeError):
    """Lifecycle operation called out of order"""
    error_code = "INVALID_STATE"


class MonitorStoppedError(TradeError):
    """The position monitor already stopped"""
    error_code = "MONITOR_STOPPED"
