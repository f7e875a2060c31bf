"""Stage outcome vocabulary shared by the core and its callers."""

from __future__ import annotations

from enum import StrEnum


class StageReasonCode(StrEnum):
    """Stable reason-code vocabulary for rejected stage attempts."""

    INVALID_ACCOUNT = "invalid_account"
    ORACLE_UNAVAILABLE = "oracle_unavailable"
    UNSUPPORTED_ACCOUNT = "unsupported_account"
    NONCE_TOO_LOW = "nonce_too_low"
    NONCE_GAP = "nonce_gap"
    TOO_MANY_STAGED = "too_many_staged"
    TOO_MANY_SIGNATURES = "too_many_signatures"
    MALFORMED_SIGNATURE = "malformed_signature"
    INVALID_SIGNATURE_BUNDLE = "invalid_signature_bundle"
    ERROR_INTERNAL = "error_internal"


# Reason codes a caller may retry without changing the request.
TRANSIENT_REASON_CODES = frozenset({StageReasonCode.ORACLE_UNAVAILABLE})


class StageError(Exception):
    """Raised when a stage attempt is rejected.

    Every rejection leaves the proposal store exactly as it was before the
    call; ``transient`` tells the caller whether a retry can succeed.
    """

    def __init__(self, reason_code: StageReasonCode, message: str) -> None:
        super().__init__(message)
        self.reason_code = reason_code
        self.message = message

    @property
    def transient(self) -> bool:
        return self.reason_code in TRANSIENT_REASON_CODES

    def to_payload(self) -> dict[str, str]:
        return {"error": self.message, "reason_code": self.reason_code.value}
