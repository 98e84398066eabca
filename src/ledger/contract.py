"""
Boundary of the on-chain ConfidentialVoting contract.

The contract's vote accounting is a black box. Adapters implement
`VotingLedger`; reverts are raised as `LedgerRevertError` and translated into
the client's error taxonomy by `map_ledger_error`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Tuple

from common.errors import (
    AlreadyPublicError,
    AlreadyVotedError,
    ConfidentialVoteError,
    GasEstimationError,
    InvalidProposalError,
    LedgerError,
    NotProposalOwnerError,
    VotingClosedError,
)


# Custom error selectors observed from the contract
SELECTOR_INVALID_PROPOSAL = "0x4e487b71"
SELECTOR_NOT_VOTED = "0x4e487b72"
SELECTOR_CANNOT_REVEAL = "0xd0d25976"


class LedgerRevertError(Exception):
    """A ledger call reverted; `reason` is the revert string, `data` the raw revert data."""

    def __init__(self, reason: str = "", *, data: Optional[str] = None) -> None:
        super().__init__(reason or data or "execution reverted")
        self.reason = reason
        self.data = data


@dataclass(frozen=True)
class ProposalMetadata:
    description: str
    owner: Optional[str] = None


class PendingTransaction(Protocol):
    hash: str

    async def wait(self) -> Any: ...


class VotingLedger(Protocol):
    async def proposal_count(self) -> int: ...

    async def proposal(self, proposal_id: int) -> ProposalMetadata: ...

    async def create_proposal(self, description: str, *, sender: str) -> PendingTransaction: ...

    async def vote(
        self, proposal_id: int, ciphertext_handle: str, proof: str, *, sender: str
    ) -> PendingTransaction: ...

    async def make_vote_counts_public(self, proposal_id: int, *, sender: str) -> PendingTransaction: ...

    async def estimate_make_vote_counts_public(self, proposal_id: int, *, sender: str) -> int: ...

    async def has_user_voted(self, proposal_id: int, account: str) -> bool: ...

    async def get_my_vote(self, proposal_id: int, *, sender: str) -> str: ...

    async def get_encrypted_vote_count(self, proposal_id: int) -> Tuple[str, str]: ...

    async def get_public_vote_counts(self, proposal_id: int) -> Tuple[int, int, bool]: ...

    async def is_proposal_owner(self, proposal_id: int, account: str) -> bool: ...


def map_ledger_error(exc: BaseException) -> ConfidentialVoteError:
    """Translate a ledger revert into the named error it stands for."""
    if isinstance(exc, ConfidentialVoteError):
        return exc
    reason = getattr(exc, "reason", "") or str(exc)
    data = getattr(exc, "data", None) or ""
    text = reason.lower()

    if "already voted" in text:
        return AlreadyVotedError("You have already voted on this proposal")
    if "invalid proposal" in text or SELECTOR_INVALID_PROPOSAL in data:
        return InvalidProposalError("Invalid proposal ID")
    if "voting is closed" in text:
        return VotingClosedError("Voting is closed for this proposal; results are public")
    if "already public" in text:
        return AlreadyPublicError("Vote counts are already public for this proposal")
    if "not proposal owner" in text or "only owner" in text or "not the owner" in text:
        return NotProposalOwnerError("Only the proposal owner can make vote counts public")
    if SELECTOR_CANNOT_REVEAL in data:
        return GasEstimationError(
            "Vote counts cannot be made public (possibly no votes cast yet)", data=data
        )
    if SELECTOR_NOT_VOTED in data:
        return LedgerError("You have not voted on this proposal yet")
    return LedgerError(f"Ledger call failed: {reason}")


def map_gas_estimation_error(exc: BaseException) -> ConfidentialVoteError:
    """Like `map_ledger_error`, but unrecognized failures become `GasEstimationError`."""
    mapped = map_ledger_error(exc)
    if type(mapped) is LedgerError:
        reason = getattr(exc, "reason", "") or str(exc) or "unknown error"
        return GasEstimationError(
            f"Gas estimation failed: {reason}", data=getattr(exc, "data", None)
        )
    return mapped


__all__ = [
    "LedgerRevertError",
    "PendingTransaction",
    "ProposalMetadata",
    "VotingLedger",
    "map_gas_estimation_error",
    "map_ledger_error",
]
