"""Safe owner signature recovery and canonical signature sets.

A Safe verifies a concatenated signature bundle only when the owners it
recovers are strictly ascending, so staged bundles are always kept sorted
by recovered owner address.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import decode_hex, is_hex, keccak

from safestage.models.staging import StageError, StageReasonCode

SIGNATURE_LENGTH = 65
DEFAULT_MAX_SIGNATURES = 100

_ETH_SIGN_PREFIX = b"\x19Ethereum Signed Message:\n32"
_V_APPROVED_HASH = 1
_V_CONTRACT = 0
_V_ETH_SIGN_OFFSET = 4


@dataclass(frozen=True)
class RecoveredSignature:
    """A signature paired with the owner address it recovers to."""

    signature: str
    signer: str

    @property
    def raw(self) -> bytes:
        return decode_hex(self.signature)


def _malformed(message: str) -> StageError:
    return StageError(StageReasonCode.MALFORMED_SIGNATURE, message)


def recover_signer(digest: bytes, signature: str) -> RecoveredSignature:
    """Recover the owner address behind one Safe signature.

    Raises StageError(malformed_signature) when the signature cannot be
    decoded or does not recover to a public key.
    """
    if not isinstance(signature, str) or not signature.startswith("0x") or not is_hex(signature):
        raise _malformed("signature must be 0x-prefixed hex")
    raw = decode_hex(signature)
    if len(raw) != SIGNATURE_LENGTH:
        raise _malformed(f"signature must be {SIGNATURE_LENGTH} bytes, got {len(raw)}")

    v = raw[64]
    if v == _V_APPROVED_HASH:
        # Pre-approved hash: r carries the approving owner address.
        signer = "0x" + raw[12:32].hex()
        return RecoveredSignature(signature=signature.lower(), signer=signer)
    if v == _V_CONTRACT:
        raise _malformed("contract signatures are not supported")

    msg_hash = digest
    if v > 30:
        v -= _V_ETH_SIGN_OFFSET
        msg_hash = keccak(_ETH_SIGN_PREFIX + digest)
    if v not in (27, 28):
        raise _malformed(f"unsupported signature recovery id {raw[64]}")

    r = int.from_bytes(raw[0:32], "big")
    s = int.from_bytes(raw[32:64], "big")
    try:
        public_key = keys.Signature(vrs=(v - 27, r, s)).recover_public_key_from_msg_hash(msg_hash)
    except (BadSignature, ValidationError) as exc:
        raise _malformed(f"signature does not recover to an owner: {exc}") from exc

    signer = "0x" + public_key.to_canonical_address().hex()
    return RecoveredSignature(signature=signature.lower(), signer=signer)


def recover_signatures(digest: bytes, signatures: Iterable[str]) -> list[RecoveredSignature]:
    """Recover every signature up front; the first failure rejects the batch."""
    return [recover_signer(digest, signature) for signature in signatures]


@dataclass(frozen=True)
class SignatureSet:
    """Signatures for one digest, one per owner, ascending by owner address."""

    members: tuple[RecoveredSignature, ...] = ()

    def __len__(self) -> int:
        return len(self.members)

    def __iter__(self) -> Iterator[RecoveredSignature]:
        return iter(self.members)

    @property
    def signatures(self) -> list[str]:
        return [member.signature for member in self.members]

    @property
    def signers(self) -> list[str]:
        return [member.signer for member in self.members]

    def bundle(self) -> bytes:
        """Concatenated signature bytes in the order the Safe expects."""
        return b"".join(member.raw for member in self.members)

    def merge(
        self,
        incoming: Iterable[RecoveredSignature],
        *,
        limit: int = DEFAULT_MAX_SIGNATURES,
    ) -> SignatureSet:
        return merge_signatures(self, incoming, limit=limit)


def merge_signatures(
    existing: SignatureSet,
    incoming: Iterable[RecoveredSignature],
    *,
    limit: int = DEFAULT_MAX_SIGNATURES,
) -> SignatureSet:
    """Union two signature collections by owner, in canonical order.

    A signature from an owner already present is ignored, so re-submitting
    is a no-op. Raises StageError(too_many_signatures) past ``limit``.
    """
    by_signer = {member.signer: member for member in existing.members}
    for member in incoming:
        by_signer.setdefault(member.signer, member)

    if len(by_signer) > limit:
        raise StageError(
            StageReasonCode.TOO_MANY_SIGNATURES,
            f"signature set would hold {len(by_signer)} signatures (limit {limit})",
        )

    ordered = sorted(by_signer.values(), key=lambda member: member.signer)
    return SignatureSet(members=tuple(ordered))
