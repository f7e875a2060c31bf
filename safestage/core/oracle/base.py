"""Chain oracle interface consumed by the staging engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from safestage.models.transaction import SafeAccount, SafeTransaction

if TYPE_CHECKING:
    from safestage.core.staging.signatures import SignatureSet


class ChainOracle(ABC):
    """Read-only view of Safe contracts on chain.

    Network failures surface as StageError(oracle_unavailable); an account
    the oracle cannot serve surfaces as StageError(unsupported_account).
    Implementations never retry.
    """

    @abstractmethod
    def supports_chain(self, chain_id: int) -> bool:
        """Return True if the oracle has an endpoint for ``chain_id``."""

    @abstractmethod
    async def digest_of(self, account: SafeAccount, proposal: SafeTransaction) -> bytes:
        """Return the 32-byte Safe transaction hash of ``proposal``."""

    @abstractmethod
    async def current_nonce(self, account: SafeAccount) -> int:
        """Return the account's confirmed on-chain nonce."""

    @abstractmethod
    async def verify_threshold(
        self,
        account: SafeAccount,
        digest: bytes,
        signatures: SignatureSet,
    ) -> bool:
        """Return True if the account contract accepts the signature bundle."""

    async def close(self) -> None:
        """Release network resources."""
