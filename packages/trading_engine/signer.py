"""
Wallet Signer - typed-data signatures and on-chain transactions

The orchestrator only talks to `BaseSigner`; `LocalWalletSigner` is the
private-key implementation used by the CLI bot and the headless flows.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .config import GasSettings, MAX_ALLOWANCE, NATIVE_TOKEN
from .exceptions import SigningDeclinedError

logger = logging.getLogger(__name__)


ERC20_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_spender", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]


class BaseSigner(ABC):
    """Wallet capability consumed by the trade orchestrator"""

    @property
    @abstractmethod
    def address(self) -> str:
        """Taker address"""

    @abstractmethod
    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        """Sign an EIP-712 document, return the 65-byte signature as 0x hex"""

    @abstractmethod
    async def approve(self, token: str, spender: str, amount: int = MAX_ALLOWANCE) -> str:
        """Broadcast ERC20 approve(spender, amount), return the tx hash"""

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120.0) -> Dict[str, Any]:
        """Block until the transaction is mined"""


class LocalWalletSigner(BaseSigner):
    """
    Private-key signer backed by eth_account and a web3 HTTP provider

    Example:
        signer = LocalWalletSigner(private_key, "https://mainnet.base.org", 8453)
        signature = await signer.sign_typed_data(quote.trade.typed_data)
    """

    def __init__(
        self,
        private_key: str,
        rpc_url: str,
        chain_id: int,
        gas_settings: Optional[GasSettings] = None,
    ):
        if not private_key.startswith("0x"):
            private_key = "0x" + private_key
        self._account: LocalAccount = Account.from_key(private_key)
        self.chain_id = chain_id
        self.gas_settings = gas_settings or GasSettings()
        self.w3 = Web3(Web3.HTTPProvider(rpc_url))

    @property
    def address(self) -> str:
        return self._account.address

    def _erc20(self, token: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)

    # =========================================================================
    # Signing
    # =========================================================================

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        try:
            signed = self._account.sign_typed_data(full_message=typed_data)
        except Exception as e:
            raise SigningDeclinedError(f"Typed data signing failed: {e}") from e
        return Web3.to_hex(signed.signature)

    # =========================================================================
    # Reads
    # =========================================================================

    async def token_decimals(self, token: str) -> int:
        if token.lower() == NATIVE_TOKEN.lower():
            return 18
        return int(await asyncio.to_thread(self._erc20(token).functions.decimals().call))

    async def balance_of(self, token: str, owner: Optional[str] = None) -> int:
        owner = Web3.to_checksum_address(owner or self.address)
        if token.lower() == NATIVE_TOKEN.lower():
            return await asyncio.to_thread(self.w3.eth.get_balance, owner)
        return int(await asyncio.to_thread(self._erc20(token).functions.balanceOf(owner).call))

    async def native_balance(self) -> int:
        return await asyncio.to_thread(self.w3.eth.get_balance, self.address)

    # =========================================================================
    # Transactions
    # =========================================================================

    def _add_gas_price(self, tx: dict) -> dict:
        """Add EIP-1559 fees, or a legacy gas price when the chain has no base fee"""
        settings = self.gas_settings

        if settings.use_eip1559:
            base_fee = self.w3.eth.get_block("latest").get("baseFeePerGas")
            if base_fee is not None:
                max_priority = self.w3.to_wei(settings.max_priority_fee_gwei, "gwei")
                tx["maxFeePerGas"] = min(
                    base_fee * 2 + max_priority,
                    self.w3.to_wei(settings.max_gas_price_gwei, "gwei"),
                )
                tx["maxPriorityFeePerGas"] = max_priority
                return tx

        tx["gasPrice"] = min(
            self.w3.eth.gas_price,
            self.w3.to_wei(settings.max_gas_price_gwei, "gwei"),
        )
        return tx

    def _build_approve(self, token: str, spender: str, amount: int) -> dict:
        tx = self._erc20(token).functions.approve(
            Web3.to_checksum_address(spender),
            amount,
        ).build_transaction({
            "chainId": self.chain_id,
            "from": self.address,
            "nonce": self.w3.eth.get_transaction_count(self.address),
            "gas": self.gas_settings.approve_gas_limit,
        })
        tx.pop("maxFeePerGas", None)
        tx.pop("maxPriorityFeePerGas", None)
        tx.pop("gasPrice", None)
        return self._add_gas_price(tx)

    def _sign_and_send(self, tx: Dict[str, Any]) -> str:
        signed_tx = self._account.sign_transaction(tx)
        return Web3.to_hex(self.w3.eth.send_raw_transaction(signed_tx.raw_transaction))

    async def approve(self, token: str, spender: str, amount: int = MAX_ALLOWANCE) -> str:
        tx = await asyncio.to_thread(self._build_approve, token, spender, amount)
        tx_hash = await asyncio.to_thread(self._sign_and_send, tx)
        logger.info("Approve %s for %s sent: %s", token, spender, tx_hash)
        return tx_hash

    def _prepare(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        tx = dict(tx)
        tx.setdefault("chainId", self.chain_id)
        tx.setdefault("nonce", self.w3.eth.get_transaction_count(self.address))
        if "gasPrice" not in tx and "maxFeePerGas" not in tx:
            tx = self._add_gas_price(tx)
        return tx

    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        """Sign and broadcast a prepared transaction"""
        tx = await asyncio.to_thread(self._prepare, tx)
        return await asyncio.to_thread(self._sign_and_send, tx)

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120.0) -> Dict[str, Any]:
        # blocking poll, kept off the event loop
        receipt = await asyncio.to_thread(
            self.w3.eth.wait_for_transaction_receipt, tx_hash, timeout=timeout
        )
        return dict(receipt)
