"""
Trading Engine Config - environment driven settings
"""
import os
from dataclasses import dataclass, field
from typing import Optional

from .exceptions import ConfigError


# Base mainnet defaults
DEFAULT_CHAIN_ID = 8453
DEFAULT_RPC_URL = "https://mainnet.base.org"
DEFAULT_WETH_ADDRESS = "0x4200000000000000000000000000000000000006"
DEFAULT_USDC_ADDRESS = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
DEFAULT_API_BASE_URL = "https://api.0x.org"

NATIVE_TOKEN = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
MAX_ALLOWANCE = 2**256 - 1


@dataclass
class GasSettings:
    """Gas configuration for on-chain transactions"""
    max_gas_price_gwei: float = 100.0
    max_priority_fee_gwei: float = 2.0
    approve_gas_limit: int = 100000
    use_eip1559: bool = True


@dataclass
class TradingConfig:
    """Global settings shared by the engine and the bot"""
    api_key: Optional[str] = None
    api_base_url: str = DEFAULT_API_BASE_URL
    chain_id: int = DEFAULT_CHAIN_ID
    rpc_url: str = DEFAULT_RPC_URL

    weth_address: str = DEFAULT_WETH_ADDRESS
    usdc_address: str = DEFAULT_USDC_ADDRESS
    usdc_decimals: int = 6

    # Timeouts (seconds)
    request_timeout: float = 30.0
    poll_interval: float = 3.0
    poll_deadline: float = 300.0
    monitor_interval: float = 5.0
    receipt_timeout: float = 120.0

    gas_settings: GasSettings = field(default_factory=GasSettings)

    @classmethod
    def from_env(cls) -> "TradingConfig":
        """Build config from environment variables (call load_dotenv() first)"""
        return cls(
            api_key=os.environ.get("ZERO_EX_API_KEY") or None,
            api_base_url=os.environ.get("ZERO_EX_BASE_URL", DEFAULT_API_BASE_URL),
            chain_id=int(os.environ.get("CHAIN_ID", str(DEFAULT_CHAIN_ID))),
            rpc_url=os.environ.get("RPC_URL", DEFAULT_RPC_URL),
            weth_address=os.environ.get("WETH_ADDRESS", DEFAULT_WETH_ADDRESS),
            usdc_address=os.environ.get("USDC_ADDRESS", DEFAULT_USDC_ADDRESS),
            poll_interval=float(os.environ.get("POLL_INTERVAL_SEC", "3")),
            poll_deadline=float(os.environ.get("POLL_DEADLINE_SEC", "300")),
            monitor_interval=float(os.environ.get("MONITOR_INTERVAL_SEC", "5")),
        )

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigError("missing ZERO_EX_API_KEY.")
        return self.api_key
