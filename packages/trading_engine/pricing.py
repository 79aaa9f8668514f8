"""
Token Price Feed - USD price of one whole token, quoted against USDC
"""
import logging

from .exceptions import TradeError
from .gasless_api import GaslessApiClient

logger = logging.getLogger(__name__)


class TokenPriceFeed:
    """
    Prices tokens through the Permit2 price endpoint

    `get_usd_price` returns 0.0 instead of raising, the position monitor
    treats 0 as a failed read and retries on its next tick.
    """

    def __init__(self, client: GaslessApiClient, usdc_address: str, usdc_decimals: int = 6):
        self.client = client
        self.usdc_address = usdc_address
        self.usdc_decimals = usdc_decimals

    async def get_usd_price(self, token: str, decimals: int) -> float:
        """Price of 10**decimals base units of `token` in USDC"""
        params = {
            "sellToken": token,
            "buyToken": self.usdc_address,
            "sellAmount": str(10 ** decimals),
        }
        try:
            data = await self.client.get_swap_price(params)
        except TradeError as e:
            logger.warning("Price request for %s failed: %s", token, e)
            return 0.0

        if data.get("liquidityAvailable") is False or not data.get("buyAmount"):
            logger.warning("No USDC liquidity for %s", token)
            return 0.0

        return int(data["buyAmount"]) / 10 ** self.usdc_decimals
