from __future__ import annotations

import asyncio
from typing import List, Optional, Tuple

import structlog

from common.errors import SessionNotInitializedError
from common.models import Proposal
from fhe.decrypt import TallyDecryptor
from ledger.contract import VotingLedger


log = structlog.get_logger(__name__)

DEFAULT_MAX_CONCURRENCY = 8


class ProposalAggregator:
    """
    Builds the local view of every proposal from ledger state.

    Per proposal:
    - public and decryption available: decrypted counts; if decryption fails
      the proposal is still returned, with raw handles, zero counts and
      `degraded=True`.
    - otherwise: raw handles, counts as the ledger reports them.
    - metadata/counter read failure: logged and the proposal is skipped.

    Proposals load concurrently; the result is newest first.
    """

    def __init__(
        self,
        ledger: VotingLedger,
        decryptor: Optional[TallyDecryptor] = None,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._ledger = ledger
        self._decryptor = decryptor
        self._max_concurrency = max_concurrency

    @property
    def can_decrypt(self) -> bool:
        return self._decryptor is not None and self._decryptor.available

    async def load(self, count: Optional[int] = None) -> List[Proposal]:
        if count is None:
            count = int(await self._ledger.proposal_count())
        if count <= 0:
            return []

        sem = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(i: int) -> Optional[Proposal]:
            async with sem:
                return await self._load_one(i)

        # gather keeps index order regardless of completion order
        results = await asyncio.gather(*(_bounded(i) for i in range(count)))
        loaded = [p for p in results if p is not None]
        loaded.reverse()
        log.info("proposals_loaded", requested=count, loaded=len(loaded))
        return loaded

    async def decrypt_vote_counts(self, proposal_id: int) -> Tuple[int, int]:
        """Public-decrypt both tallies of a revealed proposal."""
        if self._decryptor is None:
            raise SessionNotInitializedError("No decryptor configured for this proposal list")
        enc_yes, enc_no = await self._ledger.get_encrypted_vote_count(proposal_id)
        yes = await self._decryptor.public_decrypt(enc_yes)
        no = await self._decryptor.public_decrypt(enc_no)
        return yes, no

    # --------------- Internal ---------------
    async def _load_one(self, i: int) -> Optional[Proposal]:
        try:
            meta = await self._ledger.proposal(i)
            yes, no, is_public = await self._ledger.get_public_vote_counts(i)
        except Exception as exc:
            log.error("proposal_load_failed", proposal_id=i, error=str(exc))
            return None

        proposal = Proposal(
            id=i,
            description=meta.description,
            is_public=bool(is_public),
            yes_count=int(yes),
            no_count=int(no),
        )

        if proposal.is_public and self.can_decrypt:
            try:
                dec_yes, dec_no = await self.decrypt_vote_counts(i)
            except Exception as exc:
                log.warning("proposal_decrypt_failed", proposal_id=i, error=str(exc))
                proposal.yes_count = 0
                proposal.no_count = 0
                proposal.degraded = True
                await self._attach_handles(proposal)
            else:
                proposal.yes_count = dec_yes
                proposal.no_count = dec_no
            return proposal

        await self._attach_handles(proposal)
        return proposal

    async def _attach_handles(self, proposal: Proposal) -> None:
        try:
            enc_yes, enc_no = await self._ledger.get_encrypted_vote_count(proposal.id)
        except Exception as exc:
            log.warning("encrypted_counts_unavailable", proposal_id=proposal.id, error=str(exc))
            return
        proposal.encrypted_yes_handle = enc_yes
        proposal.encrypted_no_handle = enc_no


__all__ = ["ProposalAggregator"]
