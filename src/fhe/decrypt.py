from __future__ import annotations

import time
from typing import Any, Callable, Mapping, Optional, Union

import structlog

from common.config import DEFAULT_DECRYPT_VALIDITY_DAYS
from common.errors import (
    DecryptionFailedError,
    SessionInvalidatedError,
    SessionNotInitializedError,
)
from common.models import HANDLE_BYTES, is_hex_string, to_hex

from .engine import HandleContractPair, TypedDataSigner
from .session import EncryptionSession, EncryptionSessionManager


log = structlog.get_logger(__name__)

USER_DECRYPT_PRIMARY_TYPE = "UserDecryptRequestVerification"

HandleLike = Union[str, bytes, bytearray]


def _normalize_handle(handle: HandleLike) -> str:
    if isinstance(handle, (bytes, bytearray)):
        handle = to_hex(handle)
    if not is_hex_string(handle):
        raise DecryptionFailedError("Encrypted value must be an even-length hex string starting with 0x")
    if len(handle) != 2 + HANDLE_BYTES * 2:
        raise DecryptionFailedError(f"Ciphertext handle must be {HANDLE_BYTES} bytes")
    return handle


def _check_current(session: EncryptionSession, handle: str) -> None:
    """Refuse results that arrive after the session was reset or reconfigured."""
    if not session.is_valid:
        log.info("decrypt_result_discarded", handle=handle)
        raise SessionInvalidatedError("Encryption session was invalidated during decryption")


def _extract(result: Mapping[str, Any], handle: str) -> int:
    """Pick the value for `handle` out of an engine result map."""
    value = None
    for key in (handle, handle.lower()):
        if key in result:
            value = result[key]
            break
    else:
        # Engine may echo handles with different casing
        lowered = {str(k).lower(): v for k, v in result.items()}
        value = lowered.get(handle.lower())
    if value is None:
        raise DecryptionFailedError(f"No value returned for handle {handle}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise DecryptionFailedError(f"Non-integer value returned for handle {handle}") from exc


class TallyDecryptor:
    """
    Public and authorized decryption of ciphertext handles.

    Both paths share the session manager's TTL cache, so a handle revealed
    once is not sent to the engine again until its entry goes stale.

    - `public_decrypt`: counts the owner has made public; no authorization.
    - `user_decrypt`: the caller's own ballot; needs an EIP-712 signature over
      a fresh ephemeral public key, valid for `validity_days` from now.
    """

    def __init__(
        self,
        sessions: EncryptionSessionManager,
        contract_address: str,
        *,
        validity_days: int = DEFAULT_DECRYPT_VALIDITY_DAYS,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._sessions = sessions
        self._contract = contract_address
        self._validity_days = validity_days
        self._wall_clock = wall_clock

    @property
    def available(self) -> bool:
        return self._sessions.is_ready

    async def public_decrypt(self, handle: HandleLike) -> int:
        h = _normalize_handle(handle)
        cached = self._sessions.cache.get(h)
        if cached is not None:
            log.debug("decrypt_cache_hit", handle=h)
            return cached

        session = self._sessions.require()
        engine = session.engine
        try:
            result = await engine.public_decrypt([h])
        except Exception as exc:
            _check_current(session, h)
            log.warning("public_decrypt_failed", handle=h, error=str(exc))
            raise DecryptionFailedError(f"Public decryption failed: {exc}") from exc

        _check_current(session, h)
        value = _extract(result, h)
        self._sessions.cache.put(h, value)
        return value

    async def user_decrypt(self, handle: HandleLike, signer: TypedDataSigner) -> int:
        h = _normalize_handle(handle)
        cached = self._sessions.cache.get(h)
        if cached is not None:
            log.debug("decrypt_cache_hit", handle=h)
            return cached

        session = self._sessions.require()
        engine = session.engine
        contracts = [self._contract]
        start = str(int(self._wall_clock()))
        duration = str(self._validity_days)

        try:
            user_address = signer.address
            # Single-use key pair; it only lives in this frame
            keypair = engine.generate_keypair()
            eip712 = engine.create_eip712(keypair.public_key, contracts, start, duration)
            signature = await signer.sign_typed_data(
                eip712["domain"],
                {USER_DECRYPT_PRIMARY_TYPE: eip712["types"][USER_DECRYPT_PRIMARY_TYPE]},
                eip712["message"],
                primary_type=USER_DECRYPT_PRIMARY_TYPE,
            )
            _check_current(session, h)
            result = await engine.user_decrypt(
                [HandleContractPair(handle=h, contract_address=self._contract)],
                keypair.private_key,
                keypair.public_key,
                signature[2:] if signature.startswith("0x") else signature,
                contracts,
                user_address,
                start,
                duration,
            )
        except (SessionInvalidatedError, SessionNotInitializedError):
            raise
        except Exception as exc:
            _check_current(session, h)
            log.warning("user_decrypt_failed", handle=h, error=str(exc))
            raise DecryptionFailedError(f"User decryption failed: {exc}") from exc

        _check_current(session, h)
        value = _extract(result, h)
        self._sessions.cache.put(h, value)
        return value

    def cached(self, handle: str) -> Optional[int]:
        return self._sessions.cache.get(handle)


__all__ = ["TallyDecryptor", "USER_DECRYPT_PRIMARY_TYPE"]
