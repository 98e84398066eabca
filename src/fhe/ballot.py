from __future__ import annotations

from typing import Any, Union

import structlog

from common.errors import (
    ConfidentialVoteError,
    EncryptionFailedError,
    InvalidBallotValueError,
    MissingAccountError,
)
from common.models import EncryptedBallot, VoteChoice, to_hex

from .session import EncryptionSessionManager


log = structlog.get_logger(__name__)

ChoiceLike = Union[VoteChoice, int, str]


def coerce_choice(choice: Any) -> VoteChoice:
    """
    Map a caller-supplied choice onto the two-valued ballot domain.

    Accepts `VoteChoice`, the ints 0/1 and the labels "yes"/"no". Booleans are
    rejected: `True` would otherwise silently become NO.
    """
    if isinstance(choice, bool):
        raise InvalidBallotValueError(f"Invalid vote value: {choice!r}")
    if isinstance(choice, VoteChoice):
        return choice
    if isinstance(choice, int):
        try:
            return VoteChoice(choice)
        except ValueError:
            raise InvalidBallotValueError(
                f"Invalid vote value: {choice}. Must be 0 (Yes) or 1 (No)"
            ) from None
    if isinstance(choice, str):
        label = choice.strip().upper()
        if label in VoteChoice.__members__:
            return VoteChoice[label]
    raise InvalidBallotValueError(f"Invalid vote value: {choice!r}")


class BallotEncoder:
    """
    Turns a vote choice into a ciphertext handle plus input proof.

    The input is scoped to (contract, voter) so the proof only verifies for
    that voter on that contract. The choice is appended as an 8-bit value,
    matching the ledger's euint8 ballot type.
    """

    def __init__(self, sessions: EncryptionSessionManager) -> None:
        self._sessions = sessions

    async def encode(
        self,
        choice: ChoiceLike,
        voter_address: str,
        contract_address: str,
    ) -> EncryptedBallot:
        vote = coerce_choice(choice)
        if not voter_address:
            raise MissingAccountError(
                "User address is required for encryption; connect a wallet first"
            )

        engine = self._sessions.require().engine

        try:
            buffer = engine.create_encrypted_input(contract_address, voter_address)
            buffer.add8(int(vote))
            ciphertexts = await buffer.encrypt()
        except ConfidentialVoteError:
            raise
        except Exception as exc:
            log.warning("ballot_encryption_failed", error=str(exc))
            raise EncryptionFailedError(f"Encryption failed: {exc}") from exc

        try:
            if not ciphertexts.handles:
                raise ValueError("engine returned no ciphertext handles")
            ballot = EncryptedBallot(
                ciphertext_handle=to_hex(ciphertexts.handles[0]),
                proof=to_hex(ciphertexts.input_proof),
            )
        except ValueError as exc:  # includes pydantic.ValidationError
            raise EncryptionFailedError(f"Engine returned malformed ciphertext: {exc}") from exc

        log.info("ballot_encrypted", handle=ballot.ciphertext_handle)
        return ballot


__all__ = ["BallotEncoder", "coerce_choice"]
