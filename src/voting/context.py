from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import structlog

from common.cache import DecryptCache
from common.config import Settings
from common.errors import (
    EncryptionUnavailableError,
    SessionInvalidatedError,
    WalletConnectionError,
    WalletRpcError,
)
from common.logging import bind_account
from common.models import Proposal, SessionConfig, UserVoteRecord
from common.wallet import JsonRpcWallet
from fhe.ballot import BallotEncoder, ChoiceLike
from fhe.decrypt import TallyDecryptor
from fhe.engine import EngineFactory
from fhe.session import EncryptionSessionManager
from ledger.contract import VotingLedger, map_ledger_error
from state.models import VoteHistory
from state.local_store import HistoryConflictError, LocalVoteHistoryStore

from .aggregator import ProposalAggregator
from .history import VoteHistoryBuilder
from .orchestrator import RevealOutcome, TransitionListener, VoteOrchestrator, VoteOutcome


log = structlog.get_logger(__name__)


def _parse_chain_id(raw: Union[int, str]) -> int:
    if isinstance(raw, int):
        return raw
    return int(raw, 16) if raw.startswith("0x") else int(raw)


class VotingContext:
    """
    One wallet session: the explicit owner of every stateful component.

    Holds the connected account and chain, the encryption session manager
    (and through it the decrypt cache), the last loaded proposals and the
    account's vote history. Account or chain changes reset the encryption
    session and reinitialize it for the new identity.

    Encryption-session failures are kept in `session_error`; they block
    voting and revealing but never read-only loads.
    """

    def __init__(
        self,
        settings: Settings,
        wallet: JsonRpcWallet,
        ledger: VotingLedger,
        engine_factory: EngineFactory,
        *,
        history_store: Optional[LocalVoteHistoryStore] = None,
        cache_clock: Callable[[], float] = time.monotonic,
        on_transition: Optional[TransitionListener] = None,
    ) -> None:
        self.settings = settings
        self.wallet = wallet
        self.ledger = ledger
        self.sessions = EncryptionSessionManager(
            engine_factory,
            cache=DecryptCache(settings.decrypt_cache_ttl, clock=cache_clock),
        )
        self.decryptor = TallyDecryptor(
            self.sessions,
            settings.contract_address,
            validity_days=settings.decrypt_validity_days,
        )
        self.encoder = BallotEncoder(self.sessions)
        self.aggregator = ProposalAggregator(ledger, self.decryptor)
        self.orchestrator = VoteOrchestrator(
            ledger,
            self.sessions,
            self.encoder,
            self.aggregator,
            settings,
            on_transition=on_transition,
        )
        self.history_builder = VoteHistoryBuilder(ledger, self.decryptor)
        self._history_store = history_store

        self.account: Optional[str] = None
        self.chain_id: Optional[int] = None
        self.proposals: List[Proposal] = []
        self.history = VoteHistory.empty()
        self._history_version: Optional[str] = None
        self.session_error: Optional[str] = None

    # --------------- Status ---------------
    @property
    def is_connected(self) -> bool:
        return self.account is not None

    @property
    def is_correct_network(self) -> bool:
        return self.chain_id == self.settings.chain_id

    @property
    def network_name(self) -> Optional[str]:
        return self.settings.network_label(self.chain_id)

    def fhe_status(self) -> Dict[str, Any]:
        return {
            "initialized": self.sessions.is_ready,
            "loading": self.sessions.is_initializing,
            "error": self.session_error,
            "sdk_available": self.sessions.is_ready and self.session_error is None,
        }

    # --------------- Wallet lifecycle ---------------
    async def connect(self) -> str:
        try:
            accounts = await self.wallet.request_accounts()
        except WalletRpcError as exc:
            raise WalletConnectionError(f"Wallet refused connection: {exc}") from exc
        if not accounts:
            raise WalletConnectionError("Wallet returned no accounts")
        chain_id = await self.wallet.chain_id()

        self._set_identity(accounts[0], chain_id)
        await self._load_history()
        await self._start_session()
        log.info("wallet_connected", network=self.network_name)
        return accounts[0]

    def disconnect(self) -> None:
        self.sessions.reset()
        self.account = None
        self.chain_id = None
        self.proposals = []
        self.history = VoteHistory.empty()
        self._history_version = None
        self.session_error = None
        bind_account(None, None)
        log.info("wallet_disconnected")

    async def handle_accounts_changed(self, accounts: Sequence[str]) -> None:
        if not accounts:
            self.disconnect()
            return
        new_account = accounts[0]
        if new_account == self.account:
            return
        log.info("wallet_account_changed")
        self.sessions.reset()
        self.proposals = []
        self._set_identity(new_account, self.chain_id)
        await self._load_history()
        await self._start_session()

    async def handle_chain_changed(self, chain_id: Union[int, str]) -> None:
        new_chain = _parse_chain_id(chain_id)
        if new_chain == self.chain_id:
            return
        log.info("wallet_chain_changed", new_chain_id=new_chain)
        self.sessions.reset()
        self.proposals = []
        self._set_identity(self.account, new_chain)
        if self.account is not None:
            await self._start_session()

    async def poll_wallet(self) -> bool:
        """
        Compare the wallet's current account/chain with what we hold and
        dispatch the change handlers. Returns True when something changed.
        """
        accounts = await self.wallet.accounts()
        current = accounts[0] if accounts else None
        if current != self.account:
            await self.handle_accounts_changed(accounts)
            return True
        if current is None:
            return False
        chain_id = await self.wallet.chain_id()
        if chain_id != self.chain_id:
            await self.handle_chain_changed(chain_id)
            return True
        return False

    async def switch_to_required_chain(self) -> None:
        await self.wallet.switch_chain(
            self.settings.chain_id,
            chain_name=self.settings.network_name,
            rpc_url=self.settings.rpc_url,
            explorer_url=self.settings.explorer_url,
        )
        await self.handle_chain_changed(await self.wallet.chain_id())

    # --------------- Voting ---------------
    async def refresh_proposals(self) -> List[Proposal]:
        self.proposals = await self.aggregator.load()
        return self.proposals

    async def vote(self, proposal_id: int, choice: ChoiceLike) -> VoteOutcome:
        outcome = await self.orchestrator.vote(
            proposal_id, choice, account=self.account, chain_id=self.chain_id
        )
        self.proposals = outcome.proposals
        self.history.record(UserVoteRecord(proposal_id=proposal_id, choice=outcome.choice.label))
        await self._save_history()
        return outcome

    async def make_vote_counts_public(self, proposal_id: int) -> RevealOutcome:
        outcome = await self.orchestrator.make_vote_counts_public(
            proposal_id, account=self.account, chain_id=self.chain_id
        )
        self.proposals = outcome.proposals
        return outcome

    async def create_proposal(self, description: str) -> List[Proposal]:
        self.proposals = await self.orchestrator.create_proposal(
            description, account=self.account, chain_id=self.chain_id
        )
        return self.proposals

    async def is_proposal_owner(self, proposal_id: int) -> bool:
        if self.account is None:
            return False
        try:
            return bool(await self.ledger.is_proposal_owner(proposal_id, self.account))
        except Exception as exc:
            raise map_ledger_error(exc) from exc

    async def refresh_vote_history(self) -> List[UserVoteRecord]:
        if self.account is None:
            raise WalletConnectionError("Wallet not connected")
        records = await self.history_builder.reconstruct(
            self.proposals,
            self.account,
            signer=self.wallet,
            known=self.history.known(),
        )
        self.history.merge(records)
        await self._save_history()
        return records

    # --------------- Internal ---------------
    def _set_identity(self, account: Optional[str], chain_id: Optional[int]) -> None:
        self.account = account
        self.chain_id = chain_id
        bind_account(account, chain_id)

    async def _start_session(self) -> None:
        if self.account is None or self.chain_id is None:
            return
        config = SessionConfig(
            account=self.account,
            chain_id=self.chain_id,
            endpoint_url=self.settings.rpc_url,
        )
        try:
            await self.sessions.acquire(config)
        except (EncryptionUnavailableError, SessionInvalidatedError) as exc:
            self.session_error = str(exc)
            log.warning("encryption_session_unavailable", error=str(exc))
        else:
            self.session_error = None

    async def _load_history(self) -> None:
        self.history = VoteHistory.empty(self.account)
        self._history_version = None
        if self._history_store is None or self.account is None:
            return
        try:
            stored, version = await asyncio.to_thread(self._history_store.load, self.account)
        except (OSError, ValueError) as exc:
            log.warning("vote_history_load_failed", error=str(exc))
            return
        self._history_version = version
        self.history = stored

    async def _save_history(self) -> None:
        if self._history_store is None or self.account is None:
            return
        store = self._history_store
        try:
            try:
                self._history_version = await asyncio.to_thread(
                    store.save, self.history, expected_version=self._history_version
                )
            except HistoryConflictError:
                # Someone else wrote since our read: merge ours onto theirs
                remote, version = await asyncio.to_thread(store.load, self.account)
                remote.merge(list(self.history.votes.values()))
                self.history = remote
                self._history_version = await asyncio.to_thread(
                    store.save, self.history, expected_version=version
                )
        except (OSError, ValueError, HistoryConflictError) as exc:
            log.warning("vote_history_save_failed", error=str(exc))


__all__ = ["VotingContext"]
