"""Safe transaction proposal and account models.

Wire field names follow the Safe contract ABI (``safeTxGas``, ``_nonce``, ...)
so payloads produced by existing signer tooling validate unchanged.
"""

from __future__ import annotations

from typing import Any

from eth_utils import is_address, is_hex, to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from safestage.models.staging import StageError, StageReasonCode

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
UINT256_MAX = 2**256 - 1


def _parse_uint(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("expected an unsigned integer, got a boolean")
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return int(text, 16)
        return int(text, 10)
    return value


class SafeTransaction(BaseModel):
    """A proposed Safe transaction, without signatures."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    to: str
    value: int = Field(default=0, ge=0, le=UINT256_MAX)
    data: str = "0x"
    operation: int = Field(default=0, ge=0, le=1)
    safe_tx_gas: int = Field(default=0, ge=0, le=UINT256_MAX, alias="safeTxGas")
    base_gas: int = Field(default=0, ge=0, le=UINT256_MAX, alias="baseGas")
    gas_price: int = Field(default=0, ge=0, le=UINT256_MAX, alias="gasPrice")
    gas_token: str = Field(default=ZERO_ADDRESS, alias="gasToken")
    refund_receiver: str = Field(default=ZERO_ADDRESS, alias="refundReceiver")
    nonce: int = Field(ge=0, le=UINT256_MAX, alias="_nonce")

    @field_validator(
        "value",
        "operation",
        "safe_tx_gas",
        "base_gas",
        "gas_price",
        "nonce",
        mode="before",
    )
    @classmethod
    def _coerce_uint(cls, value: Any) -> Any:
        return _parse_uint(value)

    @field_validator("to", "gas_token", "refund_receiver")
    @classmethod
    def _checksum_address(cls, value: str) -> str:
        if not is_address(value):
            raise ValueError(f"invalid address: {value}")
        return to_checksum_address(value)

    @field_validator("data")
    @classmethod
    def _hex_data(cls, value: str) -> str:
        if not value.startswith("0x") or not is_hex(value) or len(value) % 2:
            raise ValueError("data must be 0x-prefixed, even-length hex")
        return value.lower()

    @field_serializer("value", "safe_tx_gas", "base_gas", "gas_price")
    def _serialize_uint(self, value: int) -> str:
        # uint256 amounts overflow JSON number precision in most clients
        return str(value)

    @property
    def data_bytes(self) -> bytes:
        return bytes.fromhex(self.data[2:])

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON payload shape used by signer tooling."""
        return self.model_dump(by_alias=True)


class SignedTransaction(BaseModel):
    """Request body of a stage call: one proposal plus the caller's signatures."""

    model_config = ConfigDict(extra="ignore")

    txn: SafeTransaction
    sigs: list[str] = Field(min_length=1)


class SafeAccount(BaseModel):
    """A Safe identified by chain id and contract address."""

    model_config = ConfigDict(frozen=True)

    chain_id: int
    address: str

    @property
    def key(self) -> tuple[int, str]:
        """Namespace key: chain id plus lower-cased address."""
        return (self.chain_id, self.address.lower())

    def __str__(self) -> str:
        return f"{self.chain_id}:{self.address}"


def parse_account(chain_id: int | str, address: str) -> SafeAccount:
    """Validate a (chain id, address) pair into a SafeAccount.

    Raises StageError(invalid_account) for a non-positive or non-integer
    chain id or a malformed address.
    """
    if isinstance(chain_id, bool):
        raise StageError(StageReasonCode.INVALID_ACCOUNT, "invalid chain id or safe address")
    if isinstance(chain_id, str):
        text = chain_id.strip()
        if not (text.isascii() and text.isdigit()):
            raise StageError(StageReasonCode.INVALID_ACCOUNT, "invalid chain id or safe address")
        chain_id = int(text)
    if not isinstance(chain_id, int) or chain_id < 1:
        raise StageError(StageReasonCode.INVALID_ACCOUNT, "invalid chain id or safe address")
    if not isinstance(address, str) or not is_address(address):
        raise StageError(StageReasonCode.INVALID_ACCOUNT, "invalid chain id or safe address")
    return SafeAccount(chain_id=chain_id, address=to_checksum_address(address))
