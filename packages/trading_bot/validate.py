"""
Input validation for the interactive bot prompts.
"""
import math
import re
from typing import Optional

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
PRIVATE_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


def parse_float(value: str) -> Optional[float]:
    """Parse a user-typed number, None if it isn't one."""
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return None if math.isnan(number) else number


def parse_int(value: str) -> Optional[int]:
    try:
        return int(str(value).strip(), 10)
    except ValueError:
        return None


def strip_key_prefix(private_key: str) -> str:
    key = private_key.strip()
    if key[:2] in ("0x", "0X"):
        return key[2:]
    return key


class Validator:
    """Format and range checks for every CLI input."""

    @staticmethod
    def is_valid_contract_address(address: str) -> bool:
        return bool(ADDRESS_PATTERN.match(address or ""))

    @staticmethod
    def is_valid_private_key(private_key: str) -> bool:
        """64 hex characters, an optional 0x prefix is allowed."""
        return bool(PRIVATE_KEY_PATTERN.match(strip_key_prefix(private_key or "")))

    @staticmethod
    def is_valid_stop_loss(sl: Optional[float]) -> bool:
        return sl is not None and 0 < sl <= 100

    @staticmethod
    def is_valid_take_profit(tp: Optional[float]) -> bool:
        return tp is not None and 0 < tp <= 1000

    @staticmethod
    def is_valid_eth_amount(amount: Optional[float]) -> bool:
        return amount is not None and math.isfinite(amount) and amount > 0

    @staticmethod
    def is_valid_timeout(timeout: Optional[int]) -> bool:
        return isinstance(timeout, int) and not isinstance(timeout, bool) and timeout > 0
