"""Test helpers: deterministic owner keys and an in-memory chain oracle."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from eth_keys import keys
from eth_utils import keccak

from safestage.core.oracle.base import ChainOracle
from safestage.core.staging.signatures import SignatureSet, recover_signer
from safestage.models.staging import StageError
from safestage.models.transaction import SafeAccount, SafeTransaction

SAFE_ADDRESS = "0x5afe5afe5afe5afe5afe5afe5afe5afe5afe5afe"
OTHER_SAFE_ADDRESS = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x000000000000000000000000000000000000dEaD"

OWNER_KEYS = [keys.PrivateKey(bytes([index]) * 32) for index in range(1, 8)]


def address_of(key: keys.PrivateKey) -> str:
    return "0x" + key.public_key.to_canonical_address().hex()


def sign(key: keys.PrivateKey, digest: bytes, *, eth_sign: bool = False) -> str:
    """Produce a Safe-encoded owner signature over ``digest``."""
    msg_hash = digest
    if eth_sign:
        msg_hash = keccak(b"\x19Ethereum Signed Message:\n32" + digest)
    signature = key.sign_msg_hash(msg_hash)
    v = signature.v + 27 + (4 if eth_sign else 0)
    raw = signature.r.to_bytes(32, "big") + signature.s.to_bytes(32, "big") + bytes([v])
    return "0x" + raw.hex()


def make_proposal(nonce: int, **overrides: Any) -> SafeTransaction:
    payload: dict[str, Any] = {
        "to": RECIPIENT,
        "value": "1000",
        "data": "0x",
        "operation": 0,
        "safeTxGas": "0",
        "baseGas": "0",
        "gasPrice": "0",
        "_nonce": nonce,
    }
    payload.update(overrides)
    return SafeTransaction.model_validate(payload)


def fake_digest(account: SafeAccount, proposal: SafeTransaction) -> bytes:
    payload = {
        "chain_id": account.chain_id,
        "safe": account.address.lower(),
        "txn": proposal.to_wire(),
    }
    return keccak(text=json.dumps(payload, sort_keys=True))


class FakeOracle(ChainOracle):
    """In-memory oracle mirroring Safe.checkNSignatures semantics.

    A bundle is accepted when every signature recovers to a distinct owner
    and the owners are strictly ascending.
    """

    def __init__(
        self,
        *,
        nonce: int = 0,
        owners: list[str] | None = None,
        chains: tuple[int, ...] = (1,),
    ) -> None:
        self.nonce = nonce
        self.owners = {owner.lower() for owner in (owners or [address_of(k) for k in OWNER_KEYS])}
        self.chains = chains
        self.reject_bundles = False
        self.verify_delay = 0.0
        self.nonce_delay = 0.0
        self.fail_nonce_with: BaseException | None = None
        self.fail_verify_with: BaseException | None = None
        self.gates: dict[str, asyncio.Event] = {}
        self.verified_bundles: list[list[str]] = []
        self.closed = False

    def supports_chain(self, chain_id: int) -> bool:
        return chain_id in self.chains

    async def digest_of(self, account: SafeAccount, proposal: SafeTransaction) -> bytes:
        return fake_digest(account, proposal)

    async def current_nonce(self, account: SafeAccount) -> int:
        if self.nonce_delay:
            await asyncio.sleep(self.nonce_delay)
        if self.fail_nonce_with is not None:
            raise self.fail_nonce_with
        return self.nonce

    async def verify_threshold(
        self,
        account: SafeAccount,
        digest: bytes,
        signatures: SignatureSet,
    ) -> bool:
        gate = self.gates.get(account.address.lower())
        if gate is not None:
            await gate.wait()
        if self.verify_delay:
            await asyncio.sleep(self.verify_delay)
        if self.fail_verify_with is not None:
            raise self.fail_verify_with
        self.verified_bundles.append(signatures.signatures)
        if self.reject_bundles:
            return False
        try:
            signers = [recover_signer(digest, item).signer for item in signatures.signatures]
        except StageError:
            return False
        if any(signer not in self.owners for signer in signers):
            return False
        return signers == sorted(set(signers))

    async def close(self) -> None:
        self.closed = True
