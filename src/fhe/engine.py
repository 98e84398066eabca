"""
Boundary of the external homomorphic-encryption engine.

The engine is a black box supplied by the relayer SDK; this module only
describes the calls the voting client makes on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Protocol, Sequence, Union

from common.models import SessionConfig


ByteLike = Union[bytes, bytearray, Sequence[int], str]


@dataclass(frozen=True)
class EncryptedInputResult:
    handles: List[ByteLike]
    input_proof: ByteLike


@dataclass(frozen=True)
class Keypair:
    public_key: str
    private_key: str

    def __repr__(self) -> str:  # keep private keys out of logs and tracebacks
        return f"Keypair(public_key={self.public_key[:12]}...)"


@dataclass(frozen=True)
class HandleContractPair:
    handle: str
    contract_address: str


class EncryptedInput(Protocol):
    def add8(self, value: int) -> Any: ...

    async def encrypt(self) -> EncryptedInputResult: ...


class EncryptionEngine(Protocol):
    def create_encrypted_input(self, contract_address: str, user_address: str) -> EncryptedInput: ...

    async def public_decrypt(self, handles: Sequence[str]) -> Mapping[str, Any]: ...

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
    ) -> Mapping[str, Any]: ...

    def generate_keypair(self) -> Keypair: ...

    def create_eip712(
        self,
        public_key: str,
        contract_addresses: Sequence[str],
        start_timestamp: str,
        duration_days: str,
    ) -> Dict[str, Any]: ...


class TypedDataSigner(Protocol):
    """Wallet side of authorized decryption."""

    @property
    def address(self) -> str: ...

    async def sign_typed_data(
        self,
        domain: Dict[str, Any],
        types: Dict[str, List[Dict[str, str]]],
        message: Dict[str, Any],
        *,
        primary_type: str | None = None,
    ) -> str: ...


# Network fetch of public parameters + engine bootstrap
EngineFactory = Callable[[SessionConfig], Awaitable[EncryptionEngine]]


__all__ = [
    "EncryptedInput",
    "EncryptedInputResult",
    "EncryptionEngine",
    "EngineFactory",
    "HandleContractPair",
    "Keypair",
    "TypedDataSigner",
]
