"""JSON-RPC chain oracle backed by the Safe contract itself."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import httpx
from eth_abi import decode, encode
from eth_utils import decode_hex, function_signature_to_4byte_selector

from safestage.core.oracle.base import ChainOracle
from safestage.core.oracle.chains import default_rpc_url
from safestage.models.staging import StageError, StageReasonCode
from safestage.models.transaction import SafeAccount, SafeTransaction

if TYPE_CHECKING:
    from safestage.core.staging.signatures import SignatureSet

logger = logging.getLogger(__name__)

_GET_TRANSACTION_HASH = function_signature_to_4byte_selector(
    "getTransactionHash(address,uint256,bytes,uint8,uint256,uint256,uint256,address,address,uint256)"
)
_NONCE = function_signature_to_4byte_selector("nonce()")
_CHECK_N_SIGNATURES = function_signature_to_4byte_selector(
    "checkNSignatures(bytes32,bytes,bytes,uint256)"
)

# JSON-RPC error code geth and most clients use for reverted eth_call.
_REVERT_ERROR_CODE = 3


class RpcError(Exception):
    """JSON-RPC error object returned by a node."""

    def __init__(self, code: int | None, message: str, data: Any = None) -> None:
        super().__init__(f"rpc error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data

    @property
    def is_revert(self) -> bool:
        return self.code == _REVERT_ERROR_CODE or "revert" in self.message.lower()


def encode_transaction_hash_call(proposal: SafeTransaction) -> bytes:
    """Calldata for ``Safe.getTransactionHash`` over ``proposal``."""
    args = encode(
        [
            "address",
            "uint256",
            "bytes",
            "uint8",
            "uint256",
            "uint256",
            "uint256",
            "address",
            "address",
            "uint256",
        ],
        [
            proposal.to,
            proposal.value,
            proposal.data_bytes,
            proposal.operation,
            proposal.safe_tx_gas,
            proposal.base_gas,
            proposal.gas_price,
            proposal.gas_token,
            proposal.refund_receiver,
            proposal.nonce,
        ],
    )
    return _GET_TRANSACTION_HASH + args


def encode_check_signatures_call(digest: bytes, signatures: SignatureSet) -> bytes:
    """Calldata for ``Safe.checkNSignatures`` requiring every bundled signature."""
    args = encode(
        ["bytes32", "bytes", "bytes", "uint256"],
        [digest, b"", signatures.bundle(), len(signatures)],
    )
    return _CHECK_N_SIGNATURES + args


class SafeRpcOracle(ChainOracle):
    """Chain oracle that calls Safe contracts through JSON-RPC ``eth_call``.

    Endpoints come from explicitly registered RPC URLs first and the
    built-in public endpoint table second (unless disabled).
    """

    def __init__(
        self,
        endpoints: dict[int, str] | None = None,
        *,
        use_default_rpcs: bool = True,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoints: dict[int, str] = dict(endpoints or {})
        self.use_default_rpcs = use_default_rpcs
        self.timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None
        self._request_ids = itertools.count(1)

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def endpoint_for(self, chain_id: int) -> str | None:
        url = self.endpoints.get(chain_id)
        if url is None and self.use_default_rpcs:
            url = default_rpc_url(chain_id)
        return url

    def supports_chain(self, chain_id: int) -> bool:
        return self.endpoint_for(chain_id) is not None

    async def register_rpc_urls(self, rpc_urls: Iterable[str]) -> dict[int, str]:
        """Resolve each RPC URL to its chain id and register it.

        A URL that cannot be resolved raises StageError(oracle_unavailable).
        """
        registered: dict[int, str] = {}
        for rpc_url in rpc_urls:
            rpc_url = rpc_url.strip()
            if not rpc_url:
                continue
            try:
                result = await self._rpc(rpc_url, "eth_chainId", [])
            except RpcError as exc:
                raise StageError(
                    StageReasonCode.ORACLE_UNAVAILABLE,
                    f"could not resolve chain id of {rpc_url}: {exc.message}",
                ) from exc
            try:
                chain_id = int(result, 16)
            except (TypeError, ValueError) as exc:
                raise StageError(
                    StageReasonCode.ORACLE_UNAVAILABLE,
                    f"could not resolve chain id of {rpc_url}: malformed eth_chainId result",
                ) from exc
            self.endpoints[chain_id] = rpc_url
            registered[chain_id] = rpc_url
            logger.info("Registered RPC endpoint for chain %d", chain_id)
        return registered

    async def _rpc(self, url: str, method: str, params: list[Any]) -> Any:
        client = await self._get_http_client()
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }
        try:
            response = await client.post(url, json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("RPC %s to %s failed: %s", method, url, exc)
            raise StageError(
                StageReasonCode.ORACLE_UNAVAILABLE,
                f"chain rpc unavailable: {exc}",
            ) from exc

        if not isinstance(body, dict):
            raise StageError(
                StageReasonCode.ORACLE_UNAVAILABLE,
                "chain rpc returned a malformed response",
            )
        error = body.get("error")
        if error is not None:
            if not isinstance(error, dict):
                raise RpcError(None, str(error))
            raise RpcError(error.get("code"), str(error.get("message", "")), error.get("data"))
        return body.get("result")

    async def _call(self, account: SafeAccount, calldata: bytes) -> bytes:
        url = self.endpoint_for(account.chain_id)
        if url is None:
            raise StageError(StageReasonCode.UNSUPPORTED_ACCOUNT, "chain id not supported")
        result = await self._rpc(
            url,
            "eth_call",
            [{"to": account.address, "data": "0x" + calldata.hex()}, "latest"],
        )
        if not isinstance(result, str):
            raise StageError(
                StageReasonCode.ORACLE_UNAVAILABLE,
                "chain rpc returned a malformed eth_call result",
            )
        return decode_hex(result)

    async def _read_word(self, account: SafeAccount, calldata: bytes, what: str) -> bytes:
        try:
            result = await self._call(account, calldata)
        except RpcError as exc:
            if exc.is_revert:
                raise StageError(
                    StageReasonCode.UNSUPPORTED_ACCOUNT,
                    f"{account.address} rejected {what}; is it a Safe?",
                ) from exc
            raise StageError(
                StageReasonCode.ORACLE_UNAVAILABLE,
                f"chain rpc error reading {what}: {exc.message}",
            ) from exc
        if len(result) < 32:
            raise StageError(
                StageReasonCode.UNSUPPORTED_ACCOUNT,
                f"no Safe contract deployed at {account.address}",
            )
        return result

    async def digest_of(self, account: SafeAccount, proposal: SafeTransaction) -> bytes:
        result = await self._read_word(
            account, encode_transaction_hash_call(proposal), "getTransactionHash"
        )
        return result[:32]

    async def current_nonce(self, account: SafeAccount) -> int:
        result = await self._read_word(account, _NONCE, "nonce")
        (nonce,) = decode(["uint256"], result[:32])
        return int(nonce)

    async def verify_threshold(
        self,
        account: SafeAccount,
        digest: bytes,
        signatures: SignatureSet,
    ) -> bool:
        try:
            await self._call(account, encode_check_signatures_call(digest, signatures))
        except RpcError as exc:
            if exc.is_revert:
                logger.info("Safe %s rejected signature bundle: %s", account, exc.message)
                return False
            raise StageError(
                StageReasonCode.ORACLE_UNAVAILABLE,
                f"chain rpc error checking signatures: {exc.message}",
            ) from exc
        return True
