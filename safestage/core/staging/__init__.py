"""Staging engine: signature sets, the proposal store and the staging service."""

from safestage.core.staging.service import StagingService
from safestage.core.staging.signatures import (
    RecoveredSignature,
    SignatureSet,
    merge_signatures,
    recover_signer,
)
from safestage.core.staging.store import ProposalStore, StagedProposal

__all__ = [
    "ProposalStore",
    "RecoveredSignature",
    "SignatureSet",
    "StagedProposal",
    "StagingService",
    "merge_signatures",
    "recover_signer",
]
