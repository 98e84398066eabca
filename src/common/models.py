from __future__ import annotations

import re
from datetime import datetime, UTC
from enum import IntEnum
from typing import Any, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Ciphertext handles are bytes32 on the ledger
HANDLE_BYTES = 32

_HEX_RE = re.compile(r"^0x[0-9a-fA-F]*$")


class VoteChoice(IntEnum):
    """Ballot values as the ledger's euint8 enum expects them."""

    YES = 0
    NO = 1

    @property
    def label(self) -> str:
        return self.name.lower()


def is_hex_string(value: Any) -> bool:
    """True for `0x`-prefixed strings with an even number of hex digits."""
    if not isinstance(value, str) or not _HEX_RE.match(value):
        return False
    return len(value) % 2 == 0


def to_hex(data: Union[bytes, bytearray, Sequence[int], str]) -> str:
    """
    Render engine output as lowercase `0x` hex.

    Accepts raw bytes, a sequence of byte values (the engine may return
    typed arrays), or a string that is already hex.
    """
    if isinstance(data, str):
        s = data if data.startswith("0x") else f"0x{data}"
        if not is_hex_string(s):
            raise ValueError(f"not a hex string: {data[:20]!r}")
        return s.lower()
    return "0x" + bytes(data).hex()


class SessionConfig(BaseModel):
    """Identity of a cached HE engine instance; replaced, never mutated."""

    model_config = ConfigDict(frozen=True)

    account: str
    chain_id: int
    endpoint_url: str = ""


class EncryptedBallot(BaseModel):
    model_config = ConfigDict(frozen=True)

    ciphertext_handle: str = Field(..., description="bytes32 handle, lowercase 0x hex")
    proof: str = Field(..., description="input proof, lowercase 0x hex")

    @field_validator("ciphertext_handle")
    @classmethod
    def _check_handle(cls, v: str) -> str:
        if not is_hex_string(v) or v != v.lower():
            raise ValueError("ciphertext handle must be lowercase 0x hex")
        if len(v) != 2 + HANDLE_BYTES * 2:
            raise ValueError(f"ciphertext handle must be {HANDLE_BYTES} bytes")
        return v

    @field_validator("proof")
    @classmethod
    def _check_proof(cls, v: str) -> str:
        if not is_hex_string(v) or v != v.lower() or len(v) <= 2:
            raise ValueError("proof must be non-empty lowercase 0x hex")
        return v


class Proposal(BaseModel):
    """
    Local view of one ledger proposal.

    - `yes_count`/`no_count` are decrypted counts when the proposal is public
      and decryption succeeded; otherwise they are the ledger's raw public
      counters (zero until revealed).
    - `degraded` marks a public proposal whose counts could not be decrypted.
    """

    id: int = Field(..., ge=0)
    description: str
    is_public: bool = False
    yes_count: int = Field(default=0, ge=0)
    no_count: int = Field(default=0, ge=0)
    encrypted_yes_handle: Optional[str] = None
    encrypted_no_handle: Optional[str] = None
    degraded: bool = False

    @property
    def total_votes(self) -> int:
        return self.yes_count + self.no_count


VoteLabel = Literal["yes", "no", "unknown", "error"]


class UserVoteRecord(BaseModel):
    proposal_id: int = Field(..., ge=0)
    choice: VoteLabel
    voted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


__all__ = [
    "HANDLE_BYTES",
    "VoteChoice",
    "SessionConfig",
    "EncryptedBallot",
    "Proposal",
    "UserVoteRecord",
    "VoteLabel",
    "is_hex_string",
    "to_hex",
]
