"""Error taxonomy surfaced by the sweeper core."""

from __future__ import annotations

from typing import Dict


class SweeperError(Exception):
    """Base error carrying a stable ``kind`` and a human readable message."""

    kind = "internal_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind.replace("_", " "))
        self.message = message or self.kind.replace("_", " ")

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class InvalidAddress(SweeperError):
    kind = "invalid_address"


class InvalidRequest(SweeperError):
    kind = "invalid_request"


class InsufficientBalance(SweeperError):
    kind = "insufficient_balance"


class NotOwner(SweeperError):
    kind = "not_owner"


class NotBeneficiary(SweeperError):
    kind = "not_beneficiary"


class NotFound(SweeperError):
    kind = "not_found"


class NotYetUnlocked(SweeperError):
    kind = "not_yet_unlocked"


class NotStarted(SweeperError):
    kind = "not_started"


class AlreadyRevoked(SweeperError):
    kind = "already_revoked"


class NotRevocable(SweeperError):
    kind = "not_revocable"


class NothingToClaim(SweeperError):
    kind = "nothing_to_claim"


class EmptyBatch(SweeperError):
    kind = "empty_batch"


class MissingFeePayer(SweeperError):
    kind = "missing_fee_payer"


class MissingBlockhash(SweeperError):
    kind = "missing_blockhash"


class UpstreamRateLimited(SweeperError):
    """Raised once the retry policy gives up on a throttled upstream call."""

    kind = "upstream_rate_limited"


class UpstreamUnavailable(SweeperError):
    kind = "upstream_unavailable"


__all__ = [
    "SweeperError",
    "InvalidAddress",
    "InvalidRequest",
    "InsufficientBalance",
    "NotOwner",
    "NotBeneficiary",
    "NotFound",
    "NotYetUnlocked",
    "NotStarted",
    "AlreadyRevoked",
    "NotRevocable",
    "NothingToClaim",
    "EmptyBatch",
    "MissingFeePayer",
    "MissingBlockhash",
    "UpstreamRateLimited",
    "UpstreamUnavailable",
]
