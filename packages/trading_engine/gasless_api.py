"""
Gasless API Client - async wrapper around the 0x quoting/settlement service

Supports the Gasless v2 API and the legacy tx-relay v1 API. Both share the
same price -> quote -> submit -> status flow, they only differ in paths,
headers and parameter names.

Usage:
    async with GaslessApiClient(api_key, chain_id=8453) as api:
        price = await api.get_price({"sellToken": usdc, "buyToken": weth, "sellAmount": "100000"})
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .config import DEFAULT_API_BASE_URL
from .exceptions import GaslessApiError, SubmissionRejectedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiEndpoints:
    """Paths and conventions of one API flavour"""
    name: str
    price_path: str
    quote_path: str
    submit_path: str
    status_path: str
    taker_param: str = "taker"
    chain_id_in_header: bool = False
    check_approval_param: bool = False
    version: Optional[str] = "v2"


GASLESS_V2 = ApiEndpoints(
    name="gasless-v2",
    price_path="/gasless/price",
    quote_path="/gasless/quote",
    submit_path="/gasless/submit",
    status_path="/gasless/status/{trade_hash}",
)

TX_RELAY_V1 = ApiEndpoints(
    name="tx-relay-v1",
    price_path="/tx-relay/v1/swap/price",
    quote_path="/tx-relay/v1/swap/quote",
    submit_path="/tx-relay/v1/swap/submit",
    status_path="/tx-relay/v1/swap/status/{trade_hash}",
    taker_param="takerAddress",
    chain_id_in_header=True,
    check_approval_param=True,
    version=None,
)

SWAP_PERMIT2_PRICE = "/swap/permit2/price"
SWAP_PERMIT2_QUOTE = "/swap/permit2/quote"
# Permit2 swap endpoints only exist in API v2
SWAP_HEADERS = {"0x-version": "v2"}


def _error_detail(data: Any) -> str:
    if isinstance(data, dict):
        for key in ("message", "reason", "description", "error", "name"):
            if data.get(key):
                return str(data[key])
    return str(data)


class GaslessApiClient:
    """
    Thin async HTTP client for the remote quoting/settlement service

    This client does no lifecycle logic, it only maps HTTP to dicts and
    HTTP failures to typed exceptions. Nothing is retried.
    """

    def __init__(
        self,
        api_key: Optional[str],
        chain_id: int,
        endpoints: ApiEndpoints = GASLESS_V2,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_key: value of the `0x-api-key` header
            chain_id: chain every request targets
            endpoints: API flavour (GASLESS_V2 or TX_RELAY_V1)
            base_url: service root URL
            timeout: per-request timeout in seconds
            transport: custom httpx transport (tests use httpx.MockTransport)
        """
        self.api_key = api_key
        self.chain_id = chain_id
        self.endpoints = endpoints
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self._init_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self.api_key:
            headers["0x-api-key"] = self.api_key
        if self.endpoints.version:
            headers["0x-version"] = self.endpoints.version
        if self.endpoints.chain_id_in_header:
            headers["0x-chain-id"] = str(self.chain_id)
        return headers

    async def _init_client(self):
        """Initialize HTTP client"""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    async def close(self):
        """Close HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _with_chain(self, params: Dict[str, Any]) -> Dict[str, Any]:
        query = {k: v for k, v in params.items() if v is not None}
        if not self.endpoints.chain_id_in_header:
            query.setdefault("chainId", str(self.chain_id))
        return query

    async def _send(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        json_data: Optional[Dict] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        if not self._client:
            await self._init_client()

        try:
            if method == "GET":
                return await self._client.get(endpoint, params=params, headers=headers)
            return await self._client.post(endpoint, json=json_data, params=params, headers=headers)
        except httpx.TimeoutException:
            raise GaslessApiError("Request timeout", 0, "TIMEOUT")
        except httpx.RequestError as e:
            raise GaslessApiError(f"Request failed: {e}", 0, "REQUEST_ERROR")

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {"message": response.text}

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        json_data: Optional[Dict] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Make API request"""
        response = await self._send(method, endpoint, params, json_data, headers)

        if response.status_code == 429:
            raise GaslessApiError("Rate limit exceeded", 429, "RATE_LIMIT")

        data = self._decode(response)

        if response.status_code >= 400:
            raise GaslessApiError(
                f"API error ({response.status_code}): {_error_detail(data)}",
                response.status_code,
            )

        return data

    # =========================================================================
    # Gasless endpoints
    # =========================================================================

    async def get_price(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET price (indicative, no taker required)"""
        return await self._request("GET", self.endpoints.price_path, self._with_chain(params))

    async def get_quote(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET quote (firm, signable, taker required)"""
        return await self._request("GET", self.endpoints.quote_path, self._with_chain(params))

    async def submit(
        self,
        trade: Dict[str, Any],
        approval: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        POST the signed trade (and approval) bundle

        Returns:
            Response body, always containing `tradeHash`

        Raises:
            SubmissionRejectedError: non-2xx answer or no trade hash
        """
        body: Dict[str, Any] = {"trade": trade}
        if approval:
            body["approval"] = approval
        if not self.endpoints.chain_id_in_header:
            body["chainId"] = self.chain_id

        response = await self._send("POST", self.endpoints.submit_path, json_data=body)
        data = self._decode(response)

        if not 200 <= response.status_code < 300:
            detail = data if isinstance(data, dict) else {"message": str(data)}
            raise SubmissionRejectedError(
                f"Submission rejected ({response.status_code}): {_error_detail(data)}",
                response.status_code,
                detail,
            )
        if not isinstance(data, dict) or not data.get("tradeHash"):
            raise SubmissionRejectedError(
                "Submission response carries no tradeHash",
                response.status_code,
                data if isinstance(data, dict) else {},
            )

        logger.info("Submitted trade %s", data["tradeHash"])
        return data

    async def get_status(self, trade_hash: str) -> Dict[str, Any]:
        """GET execution status of a submitted trade"""
        path = self.endpoints.status_path.format(trade_hash=trade_hash)
        params = None if self.endpoints.chain_id_in_header else {"chainId": str(self.chain_id)}
        return await self._request("GET", path, params)

    # =========================================================================
    # Permit2 swap endpoints (self-broadcast path)
    # =========================================================================

    def _swap_query(self, params: Dict[str, Any]) -> Dict[str, Any]:
        query = {k: v for k, v in params.items() if v is not None}
        query.setdefault("chainId", str(self.chain_id))
        return query

    async def get_swap_price(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("GET", SWAP_PERMIT2_PRICE, self._swap_query(params), headers=SWAP_HEADERS)

    async def get_swap_quote(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("GET", SWAP_PERMIT2_QUOTE, self._swap_query(params), headers=SWAP_HEADERS)
