from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from common.models import SessionConfig
from fhe.engine import EncryptedInputResult, HandleContractPair, Keypair
from ledger.contract import LedgerRevertError, ProposalMetadata


VOTER = "0xabc0000000000000000000000000000000000001"
OTHER_VOTER = "0xabc0000000000000000000000000000000000002"
CONTRACT = "0xdef0000000000000000000000000000000000009"
CHAIN_ID = 11155111


class FakeClock:
    def __init__(self, t: float = 1000.0) -> None:
        self.t = t

    def __call__(self) -> float:  # acts like time.monotonic
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


class FakeEncryptedInput:
    def __init__(self, engine: "FakeEngine", contract: str, user: str) -> None:
        self._engine = engine
        self.contract = contract
        self.user = user
        self.values: List[Tuple[int, int]] = []  # (bits, value)

    def add8(self, value: int) -> "FakeEncryptedInput":
        self.values.append((8, value))
        return self

    async def encrypt(self) -> EncryptedInputResult:
        self._engine.encrypt_calls += 1
        await asyncio.sleep(0)
        if self._engine.fail_encrypt:
            raise RuntimeError("relayer rejected input")
        handle = self._engine.register(self.values[0][1])
        raw = bytes.fromhex(handle[2:])
        # Variable-length proof: marker byte, handle, scope tail
        proof = b"\x01" + raw + self.user.encode("utf-8")[-4:]
        return EncryptedInputResult(handles=[raw], input_proof=proof)


class FakeEngine:
    """Stands in for the relayer SDK; plaintexts are kept in a registry."""

    def __init__(self) -> None:
        self.plaintexts: Dict[str, int] = {}
        self._counter = 0
        self.inputs: List[FakeEncryptedInput] = []
        self.encrypt_calls = 0
        self.public_calls: List[List[str]] = []
        self.user_calls: List[Dict[str, Any]] = []
        self.keypairs: List[Keypair] = []
        self.fail_encrypt = False
        self.fail_public = False
        self.fail_user = False
        self.drop_results = False

    def register(self, value: int) -> str:
        self._counter += 1
        handle = "0x" + hashlib.sha256(f"handle-{self._counter}".encode()).hexdigest()
        self.plaintexts[handle] = value
        return handle

    def create_encrypted_input(self, contract_address: str, user_address: str) -> FakeEncryptedInput:
        inp = FakeEncryptedInput(self, contract_address, user_address)
        self.inputs.append(inp)
        return inp

    async def public_decrypt(self, handles: Sequence[str]) -> Dict[str, int]:
        self.public_calls.append(list(handles))
        await asyncio.sleep(0)
        if self.fail_public:
            raise RuntimeError("public decryption not allowed")
        if self.drop_results:
            return {}
        return {h: self.plaintexts[h] for h in handles if h in self.plaintexts}

    async def user_decrypt(
        self,
        pairs: Sequence[HandleContractPair],
        private_key: str,
        public_key: str,
        signature: str,
        contract_addresses: Sequence[str],
        user_address: str,
        start_timestamp: str,
        duration_days: str,
    ) -> Dict[str, int]:
        self.user_calls.append(
            {
                "pairs": list(pairs),
                "private_key": private_key,
                "public_key": public_key,
                "signature": signature,
                "contracts": list(contract_addresses),
                "user_address": user_address,
                "start": start_timestamp,
                "days": duration_days,
            }
        )
        await asyncio.sleep(0)
        if self.fail_user:
            raise RuntimeError("user decryption denied")
        return {p.handle: self.plaintexts[p.handle] for p in pairs if p.handle in self.plaintexts}

    def generate_keypair(self) -> Keypair:
        n = len(self.keypairs) + 1
        kp = Keypair(public_key=f"0xpub{n:04d}", private_key=f"0xpriv{n:04d}")
        self.keypairs.append(kp)
        return kp

    def create_eip712(
        self,
        public_key: str,
        contract_addresses: Sequence[str],
        start_timestamp: str,
        duration_days: str,
    ) -> Dict[str, Any]:
        return {
            "domain": {
                "name": "Decryption",
                "version": "1",
                "chainId": CHAIN_ID,
                "verifyingContract": "0x0000000000000000000000000000000000000abc",
            },
            "types": {
                "UserDecryptRequestVerification": [
                    {"name": "publicKey", "type": "bytes"},
                    {"name": "contractAddresses", "type": "address[]"},
                    {"name": "startTimestamp", "type": "uint256"},
                    {"name": "durationDays", "type": "uint256"},
                ]
            },
            "message": {
                "publicKey": public_key,
                "contractAddresses": list(contract_addresses),
                "startTimestamp": start_timestamp,
                "durationDays": duration_days,
            },
        }


class FakeEngineFactory:
    """Counts bootstraps; `delay` keeps creations in flight across awaits."""

    def __init__(self, engine: Optional[FakeEngine] = None, *, delay: float = 0.0) -> None:
        self.engine = engine or FakeEngine()
        self.delay = delay
        self.fail = False
        self.calls = 0
        self.configs: List[SessionConfig] = []

    async def __call__(self, config: SessionConfig) -> FakeEngine:
        self.calls += 1
        self.configs.append(config)
        await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("failed to fetch public key")
        return self.engine


class FakeSigner:
    def __init__(self, address: str = VOTER) -> None:
        self._address = address
        self.calls: List[Dict[str, Any]] = []
        self.fail = False

    @property
    def address(self) -> str:
        return self._address

    async def sign_typed_data(self, domain, types, message, *, primary_type=None) -> str:
        self.calls.append(
            {"domain": domain, "types": types, "message": message, "primary_type": primary_type}
        )
        if self.fail:
            raise RuntimeError("User denied message signature")
        return "0x" + "11" * 65


@dataclass
class FakeTx:
    hash: str
    fail: bool = False
    waited: bool = False

    async def wait(self) -> Dict[str, int]:
        await asyncio.sleep(0)
        if self.fail:
            raise LedgerRevertError("transaction dropped")
        self.waited = True
        return {"status": 1}


@dataclass
class _Stored:
    description: str
    owner: str
    yes_handle: str
    no_handle: str
    is_public: bool = False
    public_yes: int = 0
    public_no: int = 0
    ballots: Dict[str, str] = field(default_factory=dict)


class FakeLedger:
    """In-memory ConfidentialVoting contract; tallies via the fake engine's registry."""

    def __init__(self, engine: FakeEngine) -> None:
        self._engine = engine
        self._proposals: List[_Stored] = []
        self._tx = 0
        self.fail_reads: Set[int] = set()
        self.fail_encrypted: Set[int] = set()
        self.estimate_error: Optional[Exception] = None
        self.fail_next_wait = False
        self.vote_calls: List[Tuple[int, str, str, str]] = []
        self.reveal_calls: List[int] = []

    def _get(self, proposal_id: int) -> _Stored:
        if proposal_id < 0 or proposal_id >= len(self._proposals):
            raise LedgerRevertError("Invalid proposal")
        return self._proposals[proposal_id]

    def _new_tx(self) -> FakeTx:
        self._tx += 1
        tx = FakeTx(hash=f"0x{self._tx:064x}", fail=self.fail_next_wait)
        self.fail_next_wait = False
        return tx

    def add(self, description: str, owner: str = VOTER) -> int:
        self._proposals.append(
            _Stored(
                description=description,
                owner=owner,
                yes_handle=self._engine.register(0),
                no_handle=self._engine.register(0),
            )
        )
        return len(self._proposals) - 1

    def cast(self, proposal_id: int, voter: str, handle: str) -> None:
        p = self._get(proposal_id)
        if p.is_public:
            raise LedgerRevertError("Voting is closed")
        if voter in p.ballots:
            raise LedgerRevertError("Already voted")
        value = self._engine.plaintexts[handle]
        p.ballots[voter] = handle
        if value == 0:
            p.yes_handle = self._engine.register(self._engine.plaintexts[p.yes_handle] + 1)
        else:
            p.no_handle = self._engine.register(self._engine.plaintexts[p.no_handle] + 1)

    # --------------- VotingLedger ---------------
    async def proposal_count(self) -> int:
        return len(self._proposals)

    async def proposal(self, proposal_id: int) -> ProposalMetadata:
        await asyncio.sleep(0)
        if proposal_id in self.fail_reads:
            raise RuntimeError("rpc timeout")
        p = self._get(proposal_id)
        return ProposalMetadata(description=p.description, owner=p.owner)

    async def create_proposal(self, description: str, *, sender: str) -> FakeTx:
        self.add(description, owner=sender)
        return self._new_tx()

    async def vote(self, proposal_id: int, ciphertext_handle: str, proof: str, *, sender: str) -> FakeTx:
        self.vote_calls.append((proposal_id, ciphertext_handle, proof, sender))
        self.cast(proposal_id, sender, ciphertext_handle)
        return self._new_tx()

    async def make_vote_counts_public(self, proposal_id: int, *, sender: str) -> FakeTx:
        p = self._get(proposal_id)
        if p.is_public:
            raise LedgerRevertError("Vote counts already public")
        p.is_public = True
        self.reveal_calls.append(proposal_id)
        return self._new_tx()

    async def estimate_make_vote_counts_public(self, proposal_id: int, *, sender: str) -> int:
        p = self._get(proposal_id)
        if self.estimate_error is not None:
            raise self.estimate_error
        if p.is_public:
            raise LedgerRevertError("Vote counts already public")
        return 52_000

    async def has_user_voted(self, proposal_id: int, account: str) -> bool:
        return account in self._get(proposal_id).ballots

    async def get_my_vote(self, proposal_id: int, *, sender: str) -> str:
        p = self._get(proposal_id)
        if sender not in p.ballots:
            raise LedgerRevertError("", data="0x4e487b72")
        return p.ballots[sender]

    async def get_encrypted_vote_count(self, proposal_id: int) -> Tuple[str, str]:
        p = self._get(proposal_id)
        if proposal_id in self.fail_encrypted:
            raise RuntimeError("rpc timeout")
        return p.yes_handle, p.no_handle

    async def get_public_vote_counts(self, proposal_id: int) -> Tuple[int, int, bool]:
        await asyncio.sleep(0)
        if proposal_id in self.fail_reads:
            raise RuntimeError("rpc timeout")
        p = self._get(proposal_id)
        return p.public_yes, p.public_no, p.is_public

    async def is_proposal_owner(self, proposal_id: int, account: str) -> bool:
        return self._get(proposal_id).owner.lower() == account.lower()
