from __future__ import annotations

from typing import Optional


class ConfidentialVoteError(RuntimeError):
    """Base error for the confidential voting client."""


class WalletConnectionError(ConfidentialVoteError):
    """No wallet is available or no account is connected."""


class WalletRpcError(ConfidentialVoteError):
    """Wallet answered a JSON-RPC request with an error object."""

    def __init__(self, message: str, *, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class NetworkMismatchError(ConfidentialVoteError):
    """Active chain differs from the configured target chain."""

    def __init__(self, *, expected: int, actual: Optional[int]) -> None:
        super().__init__(f"Wrong network: expected chain {expected}, wallet is on {actual}")
        self.expected = expected
        self.actual = actual


class SessionNotInitializedError(ConfidentialVoteError):
    """Encryption session has not been initialized yet."""


class EncryptionUnavailableError(ConfidentialVoteError):
    """The HE engine could not be bootstrapped."""


class SessionInvalidatedError(ConfidentialVoteError):
    """The encryption session was reset or reconfigured after it was handed out."""


class InvalidBallotValueError(ConfidentialVoteError):
    """Vote choice outside the {YES, NO} domain."""


class MissingAccountError(ConfidentialVoteError):
    """An operation needed a voter/signer address and none was given."""


class AlreadyVotedError(ConfidentialVoteError):
    """The account already cast a ballot on this proposal."""


class InvalidProposalError(ConfidentialVoteError):
    """The ledger does not know this proposal id."""


class VotingClosedError(ConfidentialVoteError):
    """The proposal's counts are public; no further ballots are accepted."""


class AlreadyPublicError(ConfidentialVoteError):
    """Vote counts are already public for this proposal."""


class NotProposalOwnerError(ConfidentialVoteError):
    """Only the proposal owner may reveal its counts."""


class EncryptionFailedError(ConfidentialVoteError):
    """The HE engine failed to produce a ciphertext and proof."""


class DecryptionFailedError(ConfidentialVoteError):
    """Public or authorized decryption did not yield a value."""


class GasEstimationError(ConfidentialVoteError):
    """Ledger rejected a transaction during gas estimation."""

    def __init__(self, message: str, *, data: Optional[str] = None) -> None:
        super().__init__(message)
        self.data = data


class LedgerError(ConfidentialVoteError):
    """Ledger rejected a call for a reason with no dedicated error type."""


__all__ = [
    "ConfidentialVoteError",
    "WalletConnectionError",
    "WalletRpcError",
    "NetworkMismatchError",
    "SessionNotInitializedError",
    "EncryptionUnavailableError",
    "SessionInvalidatedError",
    "InvalidBallotValueError",
    "MissingAccountError",
    "AlreadyVotedError",
    "InvalidProposalError",
    "VotingClosedError",
    "AlreadyPublicError",
    "NotProposalOwnerError",
    "EncryptionFailedError",
    "DecryptionFailedError",
    "GasEstimationError",
    "LedgerError",
]
