from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import structlog

from common.models import Proposal, UserVoteRecord, VoteChoice
from fhe.decrypt import TallyDecryptor
from fhe.engine import TypedDataSigner
from ledger.contract import VotingLedger


log = structlog.get_logger(__name__)


class VoteHistoryBuilder:
    """
    Reconstructs which proposals an account voted on, and how.

    The ledger only says *whether* the account voted; the ballot content is
    recovered by authorized decryption of the account's own ciphertext.
    Records already known locally (e.g. votes cast in this session) are kept
    as-is and not decrypted again.

    When decryption is unavailable the record is "unknown"; when fetching or
    decrypting fails it is "error". Neither aborts the rest of the history.
    """

    def __init__(self, ledger: VotingLedger, decryptor: Optional[TallyDecryptor] = None) -> None:
        self._ledger = ledger
        self._decryptor = decryptor

    async def reconstruct(
        self,
        proposals: Iterable[Proposal],
        account: str,
        signer: Optional[TypedDataSigner] = None,
        known: Optional[Dict[int, UserVoteRecord]] = None,
    ) -> List[UserVoteRecord]:
        known = known or {}
        voted: List[int] = []
        for proposal in proposals:
            try:
                if await self._ledger.has_user_voted(proposal.id, account):
                    voted.append(proposal.id)
            except Exception as exc:
                log.error("vote_status_check_failed", proposal_id=proposal.id, error=str(exc))

        records: List[UserVoteRecord] = []
        for proposal_id in voted:
            if proposal_id in known:
                records.append(known[proposal_id])
                continue
            records.append(await self._recover(proposal_id, account, signer))
        return records

    async def _recover(
        self, proposal_id: int, account: str, signer: Optional[TypedDataSigner]
    ) -> UserVoteRecord:
        try:
            handle = await self._ledger.get_my_vote(proposal_id, sender=account)
            if self._decryptor is None or not self._decryptor.available or signer is None:
                log.info("vote_history_placeholder", proposal_id=proposal_id)
                return UserVoteRecord(proposal_id=proposal_id, choice="unknown")
            value = await self._decryptor.user_decrypt(handle, signer)
        except Exception as exc:
            log.warning("vote_history_recover_failed", proposal_id=proposal_id, error=str(exc))
            return UserVoteRecord(proposal_id=proposal_id, choice="error")

        label = "yes" if value == VoteChoice.YES else "no"
        return UserVoteRecord(proposal_id=proposal_id, choice=label)


__all__ = ["VoteHistoryBuilder"]
