"""In-memory store of staged Safe transactions.

The store keeps one namespace per (chain id, Safe address). Each namespace
maps a transaction digest to its StagedProposal. Namespaces are replaced
wholesale on every commit, so readers always see a consistent snapshot
without taking the namespace lock.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from safestage.core.staging.signatures import (
    DEFAULT_MAX_SIGNATURES,
    RecoveredSignature,
    SignatureSet,
    merge_signatures,
)
from safestage.models.staging import StageError, StageReasonCode
from safestage.models.transaction import SafeAccount, SafeTransaction
from safestage.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

DEFAULT_MAX_STAGED = 100

BundleVerifier = Callable[[SignatureSet], Awaitable[bool]]


@dataclass(frozen=True)
class StagedProposal:
    """A proposal and the best signature set collected for it so far."""

    digest: bytes
    proposal: SafeTransaction
    signatures: SignatureSet

    @property
    def nonce(self) -> int:
        return self.proposal.nonce

    def to_wire(self) -> dict[str, Any]:
        return {"txn": self.proposal.to_wire(), "sigs": self.signatures.signatures}


def _by_nonce(entries: Iterable[StagedProposal]) -> list[StagedProposal]:
    return sorted(entries, key=lambda staged: staged.nonce)


class ProposalStore:
    """Process-wide staging state with per-namespace serialized writes."""

    def __init__(
        self,
        *,
        max_staged: int = DEFAULT_MAX_STAGED,
        max_signatures: int = DEFAULT_MAX_SIGNATURES,
        locks: KeyedLock | None = None,
    ) -> None:
        self.max_staged = max_staged
        self.max_signatures = max_signatures
        self._locks = locks or KeyedLock()
        self._namespaces: dict[tuple[int, str], dict[bytes, StagedProposal]] = {}

    def get(self, account: SafeAccount) -> list[StagedProposal]:
        """Return live proposals for an account, ascending by nonce."""
        entries = self._namespaces.get(account.key)
        if not entries:
            return []
        return _by_nonce(entries.values())

    def find(self, account: SafeAccount, digest: bytes) -> StagedProposal | None:
        entries = self._namespaces.get(account.key)
        if not entries:
            return None
        return entries.get(digest)

    async def stage(
        self,
        account: SafeAccount,
        digest: bytes,
        proposal: SafeTransaction,
        incoming: Sequence[RecoveredSignature],
        current_nonce: int,
        verify: BundleVerifier,
    ) -> list[StagedProposal]:
        """Admit or merge, verify, commit and garbage-collect one submission.

        Runs entirely under the namespace lock. Any StageError raised here,
        including one from ``verify``, leaves the namespace untouched.
        """
        async with self._locks.hold(account.key):
            entries = self._namespaces.get(account.key, {})
            existing = entries.get(digest)

            if existing is None:
                self._admit(entries, proposal, current_nonce)
                signatures = merge_signatures(
                    SignatureSet(), incoming, limit=self.max_signatures
                )
            elif existing.nonce < current_nonce:
                # Already executed on chain; the next commit collects it.
                raise StageError(
                    StageReasonCode.NONCE_TOO_LOW,
                    "staged nonce is lower than current safe nonce",
                )
            else:
                proposal = existing.proposal
                signatures = merge_signatures(
                    existing.signatures, incoming, limit=self.max_signatures
                )

            if not await verify(signatures):
                raise StageError(
                    StageReasonCode.INVALID_SIGNATURE_BUNDLE,
                    "invalid signature: bundle rejected by the safe contract",
                )

            staged = StagedProposal(digest=digest, proposal=proposal, signatures=signatures)
            return self._commit(account, entries, staged, current_nonce)

    def _admit(
        self,
        entries: dict[bytes, StagedProposal],
        proposal: SafeTransaction,
        current_nonce: int,
    ) -> None:
        if proposal.nonce < current_nonce:
            raise StageError(
                StageReasonCode.NONCE_TOO_LOW,
                "proposed nonce is lower than current safe nonce",
            )
        if proposal.nonce > current_nonce and not any(
            staged.nonce == proposal.nonce - 1 for staged in entries.values()
        ):
            raise StageError(
                StageReasonCode.NONCE_GAP,
                "proposed nonce is higher than current safe nonce with missing staged",
            )
        if len(entries) >= self.max_staged:
            raise StageError(
                StageReasonCode.TOO_MANY_STAGED,
                f"safe already has {len(entries)} staged transactions (limit {self.max_staged})",
            )

    def _commit(
        self,
        account: SafeAccount,
        entries: dict[bytes, StagedProposal],
        staged: StagedProposal,
        current_nonce: int,
    ) -> list[StagedProposal]:
        # Drop executed nonces and duplicate payloads staged under another digest.
        kept = {
            digest: entry
            for digest, entry in entries.items()
            if digest != staged.digest
            and entry.nonce >= current_nonce
            and entry.proposal != staged.proposal
        }
        kept[staged.digest] = staged

        collected = len(entries) + (0 if staged.digest in entries else 1) - len(kept)
        if collected:
            logger.debug("Collected %d stale staged transaction(s) for %s", collected, account)

        self._namespaces[account.key] = kept
        return _by_nonce(kept.values())

    def namespace_count(self) -> int:
        return len(self._namespaces)
