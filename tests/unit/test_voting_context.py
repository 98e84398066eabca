from __future__ import annotations

from typing import Dict, Optional

import pytest

from common.config import Settings
from common.errors import (
    MissingAccountError,
    NetworkMismatchError,
    SessionNotInitializedError,
    WalletConnectionError,
    WalletRpcError,
)
from common.models import SessionConfig, UserVoteRecord, VoteChoice
from state.local_store import HistoryConflictError
from state.models import VoteHistory
from voting.context import VotingContext

from fakes import CHAIN_ID, CONTRACT, OTHER_VOTER, VOTER, FakeClock, FakeEngineFactory, FakeLedger, FakeSigner


SETTINGS = Settings(chain_id=CHAIN_ID, contract_address=CONTRACT, rpc_url="https://rpc.example")


class FakeWallet:
    def __init__(self, accounts=(VOTER,), chain_id: int = CHAIN_ID) -> None:
        self.current = list(accounts)
        self.chain = chain_id
        self.refuse = False
        self.switch_calls = []
        self._signer = FakeSigner()

    @property
    def address(self) -> str:
        if not self.current:
            raise MissingAccountError("no account")
        return self.current[0]

    async def request_accounts(self):
        if self.refuse:
            raise WalletRpcError("User rejected the request.", code=4001)
        return list(self.current)

    async def accounts(self):
        return list(self.current)

    async def chain_id(self) -> int:
        return self.chain

    async def switch_chain(self, chain_id, *, chain_name, rpc_url="", explorer_url=""):
        self.switch_calls.append((chain_id, chain_name))
        self.chain = chain_id

    async def sign_typed_data(self, domain, types, message, *, primary_type=None):
        return await self._signer.sign_typed_data(domain, types, message, primary_type=primary_type)


class FakeHistoryStore:
    def __init__(self) -> None:
        self.histories: Dict[str, VoteHistory] = {}
        self.versions: Dict[str, str] = {}
        self.writes = 0

    @property
    def history(self) -> Optional[VoteHistory]:
        return self.histories.get(VOTER)

    def load(self, account):
        if account not in self.histories:
            return VoteHistory.empty(account), None
        stored = self.histories[account]
        if stored.account != account:
            raise ValueError("history belongs to another account")
        return stored.model_copy(deep=True), self.versions[account]

    def save(self, history, *, expected_version):
        if expected_version != self.versions.get(history.account):
            raise HistoryConflictError("version mismatch")
        self.writes += 1
        self.histories[history.account] = history.model_copy(deep=True)
        self.versions[history.account] = f"v{self.writes}"
        return self.versions[history.account]

    def put(self, key, history):
        # Unconditional write, as another client would
        self.writes += 1
        self.histories[key] = history.model_copy(deep=True)
        self.versions[key] = f"v{self.writes}"


def _context(wallet=None, *, store=None, factory=None, ledger=None):
    factory = factory or FakeEngineFactory()
    ledger = ledger or FakeLedger(factory.engine)
    ctx = VotingContext(
        SETTINGS,
        wallet or FakeWallet(),
        ledger,
        factory,
        history_store=store,
        cache_clock=FakeClock(),
    )
    return ctx, factory, ledger


@pytest.mark.asyncio
async def test_connect_starts_session_for_wallet_identity():
    ctx, factory, _ = _context()

    assert await ctx.connect() == VOTER

    assert ctx.is_connected and ctx.is_correct_network
    assert ctx.network_name == "Sepolia"
    assert factory.configs == [
        SessionConfig(account=VOTER, chain_id=CHAIN_ID, endpoint_url="https://rpc.example")
    ]
    assert ctx.fhe_status() == {
        "initialized": True,
        "loading": False,
        "error": None,
        "sdk_available": True,
    }


@pytest.mark.asyncio
async def test_connect_refused_or_empty():
    wallet = FakeWallet()
    wallet.refuse = True
    ctx, _, _ = _context(wallet)
    with pytest.raises(WalletConnectionError):
        await ctx.connect()

    ctx, _, _ = _context(FakeWallet(accounts=()))
    with pytest.raises(WalletConnectionError):
        await ctx.connect()
    assert not ctx.is_connected


@pytest.mark.asyncio
async def test_session_failure_blocks_voting_but_not_loading():
    factory = FakeEngineFactory()
    factory.fail = True
    ctx, _, ledger = _context(factory=factory)
    ledger.add("p")

    await ctx.connect()

    assert ctx.session_error is not None
    assert ctx.fhe_status()["sdk_available"] is False
    assert [p.id for p in await ctx.refresh_proposals()] == [0]
    with pytest.raises(SessionNotInitializedError):
        await ctx.vote(0, VoteChoice.YES)


@pytest.mark.asyncio
async def test_account_change_resets_and_reinitializes():
    ctx, factory, ledger = _context()
    ledger.add("p")
    await ctx.connect()
    await ctx.refresh_proposals()
    ctx.sessions.cache.put("0x" + "aa" * 32, 1)

    await ctx.handle_accounts_changed([OTHER_VOTER])

    assert ctx.account == OTHER_VOTER
    assert factory.calls == 2
    assert factory.configs[-1].account == OTHER_VOTER
    assert len(ctx.sessions.cache) == 0
    assert ctx.proposals == []
    assert ctx.sessions.is_ready


@pytest.mark.asyncio
async def test_same_account_event_is_noop():
    ctx, factory, _ = _context()
    await ctx.connect()

    await ctx.handle_accounts_changed([VOTER])

    assert factory.calls == 1


@pytest.mark.asyncio
async def test_empty_accounts_disconnects():
    ctx, _, _ = _context()
    await ctx.connect()

    await ctx.handle_accounts_changed([])

    assert not ctx.is_connected
    assert ctx.chain_id is None
    assert not ctx.sessions.is_ready
    assert ctx.network_name is None


@pytest.mark.asyncio
async def test_chain_change_accepts_hex_and_reinitializes():
    ctx, factory, _ = _context()
    await ctx.connect()

    await ctx.handle_chain_changed("0x1")

    assert ctx.chain_id == 1
    assert not ctx.is_correct_network
    assert ctx.network_name == "Chain ID 1"
    assert factory.configs[-1].chain_id == 1
    with pytest.raises(NetworkMismatchError):
        await ctx.vote(0, VoteChoice.YES)


@pytest.mark.asyncio
async def test_poll_wallet_detects_changes():
    wallet = FakeWallet()
    ctx, _, _ = _context(wallet)
    await ctx.connect()

    assert await ctx.poll_wallet() is False

    wallet.current = [OTHER_VOTER]
    assert await ctx.poll_wallet() is True
    assert ctx.account == OTHER_VOTER

    wallet.chain = 5
    assert await ctx.poll_wallet() is True
    assert ctx.chain_id == 5


@pytest.mark.asyncio
async def test_switch_to_required_chain():
    wallet = FakeWallet(chain_id=1)
    ctx, factory, _ = _context(wallet)
    await ctx.connect()
    assert not ctx.is_correct_network

    await ctx.switch_to_required_chain()

    assert wallet.switch_calls == [(CHAIN_ID, "Sepolia")]
    assert ctx.is_correct_network
    assert factory.configs[-1].chain_id == CHAIN_ID


@pytest.mark.asyncio
async def test_vote_records_and_persists_history():
    store = FakeHistoryStore()
    ctx, _, ledger = _context(store=store)
    pid = ledger.add("p")
    await ctx.connect()

    outcome = await ctx.vote(pid, "no")

    assert outcome.choice is VoteChoice.NO
    assert ctx.history.votes[pid].choice == "no"
    assert store.history.account == VOTER
    assert store.history.votes[pid].choice == "no"


@pytest.mark.asyncio
async def test_history_save_merges_after_conflict():
    store = FakeHistoryStore()
    store.put(VOTER, VoteHistory.empty(VOTER))
    ctx, _, ledger = _context(store=store)
    pid = ledger.add("p")
    await ctx.connect()

    # Another client writes after our read
    remote = VoteHistory.empty(VOTER)
    remote.record(UserVoteRecord(proposal_id=7, choice="yes"))
    store.put(VOTER, remote)

    await ctx.vote(pid, VoteChoice.YES)

    assert set(store.history.votes) == {pid, 7}
    assert set(ctx.history.votes) == {pid, 7}


@pytest.mark.asyncio
async def test_history_of_other_account_is_ignored():
    store = FakeHistoryStore()
    foreign = VoteHistory.empty(OTHER_VOTER)
    foreign.record(UserVoteRecord(proposal_id=0, choice="yes"))
    store.put(VOTER, foreign)
    ctx, _, _ = _context(store=store)

    await ctx.connect()

    assert ctx.history.account == VOTER
    assert ctx.history.votes == {}


@pytest.mark.asyncio
async def test_refresh_vote_history_recovers_past_ballots():
    first, factory, ledger = _context()
    pid = ledger.add("p")
    await first.connect()
    await first.vote(pid, VoteChoice.NO)

    # New session without local history
    second, _, _ = _context(factory=FakeEngineFactory(factory.engine), ledger=ledger)
    await second.connect()
    await second.refresh_proposals()

    records = await second.refresh_vote_history()

    assert [(r.proposal_id, r.choice) for r in records] == [(pid, "no")]
    assert second.history.votes[pid].choice == "no"


@pytest.mark.asyncio
async def test_refresh_vote_history_requires_wallet():
    ctx, _, _ = _context()
    with pytest.raises(WalletConnectionError):
        await ctx.refresh_vote_history()


@pytest.mark.asyncio
async def test_is_proposal_owner():
    ctx, _, ledger = _context()
    mine = ledger.add("mine")
    theirs = ledger.add("theirs", owner=OTHER_VOTER)

    assert await ctx.is_proposal_owner(mine) is False  # not connected
    await ctx.connect()
    assert await ctx.is_proposal_owner(mine) is True
    assert await ctx.is_proposal_owner(theirs) is False


@pytest.mark.asyncio
async def test_vote_history_recorded_when_refresh_fails(monkeypatch):
    store = FakeHistoryStore()
    ctx, _, ledger = _context(store=store)
    pid = ledger.add("p")
    await ctx.connect()

    async def _rpc_down():
        raise RuntimeError("rpc timeout")

    monkeypatch.setattr(ledger, "proposal_count", _rpc_down)

    outcome = await ctx.vote(pid, VoteChoice.YES)

    assert outcome.proposals == []
    assert ctx.history.votes[pid].choice == "yes"
    assert store.history.votes[pid].choice == "yes"
