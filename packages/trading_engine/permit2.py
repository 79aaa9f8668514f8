"""
Permit2 Swapper - self-broadcast swaps through the Permit2 swap endpoints

Used when the taker pays gas itself, e.g. wrapping ETH into WETH before a
gasless trade.
"""
import logging
from typing import Any, Dict

from web3 import Web3

from .config import MAX_ALLOWANCE
from .exceptions import ApprovalFailedError, NoLiquidityError, TradeError
from .gasless_api import GaslessApiClient
from .signer import LocalWalletSigner

logger = logging.getLogger(__name__)


def append_signature(calldata: str, signature: str) -> str:
    """Append `uint256(len(signature)) ++ signature` to transaction calldata"""
    sig_bytes = Web3.to_bytes(hexstr=signature)
    data = Web3.to_bytes(hexstr=calldata)
    return Web3.to_hex(data + len(sig_bytes).to_bytes(32, "big") + sig_bytes)


class Permit2Swapper:
    """Price -> quote -> approve -> sign permit -> send -> wait"""

    def __init__(self, client: GaslessApiClient, signer: LocalWalletSigner, receipt_timeout: float = 120.0):
        self.client = client
        self.signer = signer
        self.receipt_timeout = receipt_timeout

    def _build_tx(self, transaction: Dict[str, Any], data: str) -> Dict[str, Any]:
        tx = {
            "from": self.signer.address,
            "to": Web3.to_checksum_address(transaction["to"]),
            "data": data,
            "value": int(transaction.get("value") or 0),
        }
        if transaction.get("gas"):
            tx["gas"] = int(transaction["gas"])
        if transaction.get("gasPrice"):
            tx["gasPrice"] = int(transaction["gasPrice"])
        return tx

    async def swap(self, sell_token: str, buy_token: str, sell_amount: int) -> str:
        """
        Execute the swap on-chain

        Returns:
            Mined transaction hash

        Raises:
            NoLiquidityError: the pair can't be routed
            ApprovalFailedError: the allowance approve() reverted
            TradeError: the swap transaction reverted
        """
        params = {
            "sellToken": sell_token,
            "buyToken": buy_token,
            "sellAmount": str(sell_amount),
            "taker": self.signer.address,
        }

        price = await self.client.get_swap_price(params)
        if not price.get("liquidityAvailable", False):
            raise NoLiquidityError(f"No liquidity available for {sell_token} -> {buy_token}")

        quote = await self.client.get_swap_quote(params)

        allowance_issue = (quote.get("issues") or {}).get("allowance")
        if allowance_issue:
            spender = allowance_issue["spender"]
            logger.info("Approving %s for %s", sell_token, spender)
            approve_hash = await self.signer.approve(sell_token, spender, MAX_ALLOWANCE)
            receipt = await self.signer.wait_for_receipt(approve_hash, self.receipt_timeout)
            if receipt.get("status") != 1:
                raise ApprovalFailedError(f"Approval transaction reverted: {approve_hash}", approve_hash)

        transaction = quote["transaction"]
        data = transaction["data"]
        eip712 = (quote.get("permit2") or {}).get("eip712")
        if eip712:
            signature = await self.signer.sign_typed_data(eip712)
            data = append_signature(data, signature)

        tx_hash = await self.signer.send_transaction(self._build_tx(transaction, data))
        logger.info("Permit2 swap sent: %s", tx_hash)

        receipt = await self.signer.wait_for_receipt(tx_hash, self.receipt_timeout)
        if receipt.get("status") != 1:
            raise TradeError(f"Swap transaction reverted: {tx_hash}", "SWAP_REVERTED")
        return tx_hash
