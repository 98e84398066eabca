from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from common.models import UserVoteRecord


class VoteHistory(BaseModel):
    """
    The account's own ballots, serialized to JSON and encrypted at rest.

    Fields
    - account: wallet address the history belongs to (None before first connect).
    - votes: proposal id -> what the account voted.

    Notes
    - Ballots are secret; the store encrypts this object with Fernet before it
      leaves the process.
    - Only "yes"/"no" records are worth keeping; placeholders are recomputed.
    """

    account: Optional[str] = Field(default=None, description="Owner of this history")
    votes: Dict[int, UserVoteRecord] = Field(
        default_factory=dict,
        description="Map of proposal id to the account's recorded vote",
    )

    @classmethod
    def empty(cls, account: Optional[str] = None) -> "VoteHistory":
        return cls(account=account)

    def record(self, vote: UserVoteRecord) -> None:
        self.votes[vote.proposal_id] = vote

    def known(self) -> Dict[int, UserVoteRecord]:
        return {pid: v for pid, v in self.votes.items() if v.choice in ("yes", "no")}

    def merge(self, records: List[UserVoteRecord]) -> None:
        for r in records:
            if r.choice in ("yes", "no") or r.proposal_id not in self.votes:
                self.votes[r.proposal_id] = r
