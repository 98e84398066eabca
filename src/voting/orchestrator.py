from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

import structlog

from common.config import Settings
from common.errors import (
    AlreadyPublicError,
    AlreadyVotedError,
    ConfidentialVoteError,
    NetworkMismatchError,
    NotProposalOwnerError,
    VotingClosedError,
    WalletConnectionError,
)
from common.models import EncryptedBallot, Proposal, VoteChoice
from fhe.ballot import BallotEncoder, ChoiceLike, coerce_choice
from fhe.session import EncryptionSessionManager
from ledger.contract import (
    PendingTransaction,
    VotingLedger,
    map_gas_estimation_error,
    map_ledger_error,
)

from .aggregator import ProposalAggregator


log = structlog.get_logger(__name__)


class VoteState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    ENCRYPTING = "encrypting"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    REFRESHING = "refreshing"


TransitionListener = Callable[[VoteState], None]


@dataclass
class VoteOutcome:
    proposal_id: int
    choice: VoteChoice
    ballot: EncryptedBallot
    tx_hash: str
    proposals: List[Proposal] = field(default_factory=list)


@dataclass
class RevealOutcome:
    proposal_id: int
    tx_hash: str
    decrypted_counts: Optional[Tuple[int, int]] = None
    proposals: List[Proposal] = field(default_factory=list)


class VoteOrchestrator:
    """
    Sequences ballot casting and tally revelation.

    A vote runs IDLE → VALIDATING → ENCRYPTING → SUBMITTING → CONFIRMING →
    REFRESHING → IDLE. Any failure returns to IDLE and raises the typed
    error; nothing is retried here. The refresh after confirmation is best
    effort: if it fails the outcome carries an empty proposal list.

    Preconditions are re-read from the ledger on every attempt. The ledger's
    own one-vote rule still has the final word; a revert is mapped to
    `AlreadyVotedError` like the local check.
    """

    def __init__(
        self,
        ledger: VotingLedger,
        sessions: EncryptionSessionManager,
        encoder: BallotEncoder,
        aggregator: ProposalAggregator,
        settings: Settings,
        *,
        on_transition: Optional[TransitionListener] = None,
    ) -> None:
        self._ledger = ledger
        self._sessions = sessions
        self._encoder = encoder
        self._aggregator = aggregator
        self._settings = settings
        self._on_transition = on_transition
        self._state = VoteState.IDLE

    @property
    def state(self) -> VoteState:
        return self._state

    # --------------- Public API ---------------
    async def vote(
        self,
        proposal_id: int,
        choice: ChoiceLike,
        *,
        account: Optional[str],
        chain_id: Optional[int],
    ) -> VoteOutcome:
        bound = log.bind(proposal_id=proposal_id)
        try:
            self._transition(VoteState.VALIDATING)
            vote = coerce_choice(choice)
            sender = self._check_wallet(account, chain_id, require_session=True)
            _, _, is_public = await self._call(self._ledger.get_public_vote_counts(proposal_id))
            if is_public:
                raise VotingClosedError("Voting is closed for this proposal; results are public")
            if await self._call(self._ledger.has_user_voted(proposal_id, sender)):
                raise AlreadyVotedError("You have already voted on this proposal")

            self._transition(VoteState.ENCRYPTING)
            ballot = await self._encoder.encode(vote, sender, self._settings.contract_address)

            self._transition(VoteState.SUBMITTING)
            tx = await self._call(
                self._ledger.vote(proposal_id, ballot.ciphertext_handle, ballot.proof, sender=sender)
            )
            bound.info("vote_submitted", tx_hash=tx.hash)

            self._transition(VoteState.CONFIRMING)
            await self._confirm(tx)

            self._transition(VoteState.REFRESHING)
            proposals = await self._refresh()
        except ConfidentialVoteError as exc:
            bound.warning("vote_failed", state=self._state.value, error=str(exc))
            raise
        finally:
            self._transition(VoteState.IDLE)

        bound.info("vote_confirmed", tx_hash=tx.hash)
        return VoteOutcome(
            proposal_id=proposal_id,
            choice=vote,
            ballot=ballot,
            tx_hash=tx.hash,
            proposals=proposals,
        )

    async def make_vote_counts_public(
        self,
        proposal_id: int,
        *,
        account: Optional[str],
        chain_id: Optional[int],
    ) -> RevealOutcome:
        bound = log.bind(proposal_id=proposal_id)
        try:
            self._transition(VoteState.VALIDATING)
            sender = self._check_wallet(account, chain_id, require_session=True)
            _, _, is_public = await self._call(self._ledger.get_public_vote_counts(proposal_id))
            if is_public:
                raise AlreadyPublicError("Vote counts are already public for this proposal")
            if not await self._call(self._ledger.is_proposal_owner(proposal_id, sender)):
                raise NotProposalOwnerError("Only the proposal owner can make vote counts public")
            try:
                gas = await self._ledger.estimate_make_vote_counts_public(proposal_id, sender=sender)
            except Exception as exc:
                raise map_gas_estimation_error(exc) from exc
            bound.debug("reveal_gas_estimate", gas=gas)

            self._transition(VoteState.SUBMITTING)
            tx = await self._call(self._ledger.make_vote_counts_public(proposal_id, sender=sender))
            bound.info("reveal_submitted", tx_hash=tx.hash)

            self._transition(VoteState.CONFIRMING)
            await self._confirm(tx)

            # Best effort: the reveal already succeeded on the ledger
            decrypted: Optional[Tuple[int, int]] = None
            if self._aggregator.can_decrypt:
                try:
                    decrypted = await self._aggregator.decrypt_vote_counts(proposal_id)
                except Exception as exc:
                    bound.info("reveal_decrypt_deferred", error=str(exc))

            self._transition(VoteState.REFRESHING)
            proposals = await self._refresh()
        except ConfidentialVoteError as exc:
            bound.warning("reveal_failed", state=self._state.value, error=str(exc))
            raise
        finally:
            self._transition(VoteState.IDLE)

        return RevealOutcome(
            proposal_id=proposal_id,
            tx_hash=tx.hash,
            decrypted_counts=decrypted,
            proposals=proposals,
        )

    async def create_proposal(
        self,
        description: str,
        *,
        account: Optional[str],
        chain_id: Optional[int],
    ) -> List[Proposal]:
        text = description.strip()
        if not text:
            raise ValueError("description must not be empty")
        sender = self._check_wallet(account, chain_id, require_session=False)
        tx = await self._call(self._ledger.create_proposal(text, sender=sender))
        await self._confirm(tx)
        log.info("proposal_created", tx_hash=tx.hash)
        return await self._refresh()

    # --------------- Internal ---------------
    def _transition(self, state: VoteState) -> None:
        if state is self._state:
            return
        self._state = state
        log.debug("vote_state", state=state.value)
        if self._on_transition is not None:
            self._on_transition(state)

    def _check_wallet(
        self, account: Optional[str], chain_id: Optional[int], *, require_session: bool
    ) -> str:
        if not account:
            raise WalletConnectionError("Wallet not connected")
        if require_session:
            self._sessions.require()
        if chain_id != self._settings.chain_id:
            raise NetworkMismatchError(expected=self._settings.chain_id, actual=chain_id)
        return account

    @staticmethod
    async def _call(awaitable):
        try:
            return await awaitable
        except ConfidentialVoteError:
            raise
        except Exception as exc:
            raise map_ledger_error(exc) from exc

    async def _confirm(self, tx: PendingTransaction) -> None:
        await self._call(tx.wait())

    async def _refresh(self) -> List[Proposal]:
        # Runs after confirmation; a read failure must not fail the operation
        try:
            return await self._aggregator.load()
        except Exception as exc:
            log.warning("proposals_refresh_failed", error=str(exc))
            return []


__all__ = ["VoteOrchestrator", "VoteOutcome", "RevealOutcome", "VoteState"]
