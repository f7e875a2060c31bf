"""StagingService: end-to-end acceptance of signed Safe transaction proposals."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from typing import TypeVar

from safestage.core.oracle.base import ChainOracle
from safestage.core.staging.signatures import SignatureSet, recover_signatures
from safestage.core.staging.store import ProposalStore, StagedProposal
from safestage.models.staging import StageError, StageReasonCode
from safestage.models.transaction import SafeAccount, SafeTransaction, parse_account

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ORACLE_TIMEOUT = 10.0


class StagingService:
    """Stage signed proposals and expose each Safe's current staged set.

    Oracle calls are the only suspension points and each one is bounded by
    ``oracle_timeout``. Nothing is retried: a transient failure is reported
    as StageError(oracle_unavailable) and the caller decides.
    """

    def __init__(
        self,
        oracle: ChainOracle,
        store: ProposalStore | None = None,
        *,
        oracle_timeout: float = DEFAULT_ORACLE_TIMEOUT,
    ) -> None:
        self.oracle = oracle
        self.store = store or ProposalStore()
        self.oracle_timeout = oracle_timeout

    async def list_staged(self, chain_id: int | str, address: str) -> list[StagedProposal]:
        """Return the Safe's staged proposals, ascending by nonce."""
        account = parse_account(chain_id, address)
        return self.store.get(account)

    async def stage_signed(
        self,
        chain_id: int | str,
        address: str,
        proposal: SafeTransaction,
        signatures: Sequence[str],
    ) -> list[StagedProposal]:
        """Stage ``signatures`` for ``proposal`` and return the Safe's staged set.

        Raises StageError on rejection; unexpected failures are logged and
        reported as StageError(error_internal) with an opaque message.
        """
        account = self._validate_account(chain_id, address)
        try:
            return await self._stage(account, proposal, signatures)
        except StageError as exc:
            logger.info(
                "Rejected nonce %d for %s: %s (%s)",
                proposal.nonce,
                account,
                exc.reason_code.value,
                exc.message,
            )
            raise
        except Exception as exc:
            logger.exception("Unexpected failure staging nonce %d for %s", proposal.nonce, account)
            raise StageError(
                StageReasonCode.ERROR_INTERNAL,
                "unexpected error, please check server logs",
            ) from exc

    def _validate_account(self, chain_id: int | str, address: str) -> SafeAccount:
        account = parse_account(chain_id, address)
        if not self.oracle.supports_chain(account.chain_id):
            raise StageError(StageReasonCode.INVALID_ACCOUNT, "chain id not supported")
        return account

    async def _stage(
        self,
        account: SafeAccount,
        proposal: SafeTransaction,
        signatures: Sequence[str],
    ) -> list[StagedProposal]:
        digest = await self._ask(self.oracle.digest_of(account, proposal), "transaction hash")
        current_nonce = await self._ask(self.oracle.current_nonce(account), "nonce")
        incoming = recover_signatures(digest, signatures)

        async def verify(merged: SignatureSet) -> bool:
            return await self._ask(
                self.oracle.verify_threshold(account, digest, merged),
                "signature check",
            )

        staged = await self.store.stage(
            account,
            digest,
            proposal,
            incoming,
            current_nonce,
            verify,
        )
        logger.info(
            "Staged nonce %d for %s (%d staged)",
            proposal.nonce,
            account,
            len(staged),
        )
        return staged

    async def _ask(self, call: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.oracle_timeout)
        except TimeoutError as exc:
            logger.warning("Chain oracle timed out after %.1fs on %s", self.oracle_timeout, what)
            raise StageError(
                StageReasonCode.ORACLE_UNAVAILABLE,
                f"chain oracle timed out on {what}",
            ) from exc
