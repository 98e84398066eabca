from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import structlog

from common.cache import DecryptCache
from common.errors import (
    EncryptionUnavailableError,
    SessionInvalidatedError,
    SessionNotInitializedError,
)
from common.models import SessionConfig

from .engine import EncryptionEngine, EngineFactory


log = structlog.get_logger(__name__)


class EncryptionSession:
    """
    Handle to the engine instance created for one `SessionConfig`.

    The handle stays tied to the generation it was created in. Once the
    manager is reset or switches config, `engine` raises
    `SessionInvalidatedError` instead of serving a stale instance.
    """

    def __init__(
        self,
        manager: "EncryptionSessionManager",
        engine: EncryptionEngine,
        config: SessionConfig,
        generation: int,
    ) -> None:
        self._manager = manager
        self._engine = engine
        self.config = config
        self.generation = generation

    @property
    def is_valid(self) -> bool:
        return self._manager.generation == self.generation

    @property
    def engine(self) -> EncryptionEngine:
        if not self.is_valid:
            raise SessionInvalidatedError(
                f"Encryption session for {self.config.account} on chain "
                f"{self.config.chain_id} was invalidated"
            )
        return self._engine


class EncryptionSessionManager:
    """
    Owns the single HE engine instance and the decrypt cache.

    - `acquire(config)` returns the instance for `config`, creating it at most
      once per config generation; concurrent callers share one creation task.
    - A config that differs in any field invalidates the current instance,
      any in-flight creation and the decrypt cache before creating anew.
    - A failed bootstrap leaves nothing behind; the next call starts over.

    One manager per caller context; nothing here is process-global.
    """

    def __init__(self, factory: EngineFactory, *, cache: Optional[DecryptCache] = None) -> None:
        self._factory = factory
        self._cache = cache if cache is not None else DecryptCache()
        self._config: Optional[SessionConfig] = None
        self._session: Optional[EncryptionSession] = None
        self._pending: Optional[asyncio.Task[EncryptionSession]] = None
        self._generation = 0
        self._last_error: Optional[str] = None

    # --------------- Introspection ---------------
    @property
    def generation(self) -> int:
        return self._generation

    @property
    def cache(self) -> DecryptCache:
        return self._cache

    @property
    def config(self) -> Optional[SessionConfig]:
        return self._config

    @property
    def is_ready(self) -> bool:
        return self._session is not None

    @property
    def is_initializing(self) -> bool:
        return self._pending is not None

    def status(self) -> Dict[str, Any]:
        return {
            "ready": self.is_ready,
            "initializing": self.is_initializing,
            "generation": self._generation,
            "account": self._config.account if self._config else None,
            "chain_id": self._config.chain_id if self._config else None,
            "error": self._last_error,
        }

    def require(self) -> EncryptionSession:
        """Current ready session, or `SessionNotInitializedError`."""
        if self._session is None:
            raise SessionNotInitializedError(
                "Encryption session not initialized; wait for initialization to complete"
            )
        return self._session

    # --------------- Lifecycle ---------------
    async def acquire(self, config: SessionConfig) -> EncryptionSession:
        if self._config is not None and self._config != config:
            log.info(
                "encryption_session_config_changed",
                old_account=self._config.account,
                new_account=config.account,
                old_chain_id=self._config.chain_id,
                new_chain_id=config.chain_id,
            )
            self._invalidate()

        if self._session is not None:
            return self._session

        if self._pending is None:
            self._config = config
            self._pending = asyncio.ensure_future(self._create(config, self._generation))

        # shield: a cancelled waiter must not cancel the shared creation
        return await asyncio.shield(self._pending)

    def reset(self) -> None:
        """Discard the instance, any in-flight creation and the decrypt cache."""
        log.info("encryption_session_reset", generation=self._generation)
        self._invalidate()
        self._config = None
        self._last_error = None

    async def reinitialize(self, config: SessionConfig) -> EncryptionSession:
        self.reset()
        return await self.acquire(config)

    # --------------- Internal ---------------
    def _invalidate(self) -> None:
        # Bumping the generation orphans the in-flight task; its waiters get
        # SessionInvalidatedError when it finishes.
        self._generation += 1
        self._session = None
        self._pending = None
        self._cache.clear()

    async def _create(self, config: SessionConfig, generation: int) -> EncryptionSession:
        log.info("encryption_session_initializing", chain_id=config.chain_id, generation=generation)
        try:
            engine = await self._factory(config)
        except Exception as exc:
            if generation == self._generation:
                self._pending = None
                self._last_error = str(exc) or exc.__class__.__name__
            log.warning("encryption_session_init_failed", error=str(exc), generation=generation)
            raise EncryptionUnavailableError(f"Failed to create encryption engine: {exc}") from exc

        if generation != self._generation:
            log.info("encryption_session_discarded", generation=generation)
            raise SessionInvalidatedError("Encryption session was invalidated during initialization")

        session = EncryptionSession(self, engine, config, generation)
        self._session = session
        self._pending = None
        self._last_error = None
        log.info("encryption_session_ready", chain_id=config.chain_id, generation=generation)
        return session


__all__ = ["EncryptionSession", "EncryptionSessionManager"]
