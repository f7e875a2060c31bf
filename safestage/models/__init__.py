"""Typed models for staged Safe transactions."""

from safestage.models.staging import StageError, StageReasonCode
from safestage.models.transaction import SafeAccount, SafeTransaction, SignedTransaction

__all__ = [
    "SafeAccount",
    "SafeTransaction",
    "SignedTransaction",
    "StageError",
    "StageReasonCode",
]
