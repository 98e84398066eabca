from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel, Field

from .cache import DEFAULT_DECRYPT_TTL_SECONDS


# Environment variable names
ENV_CHAIN_ID = "CV_CHAIN_ID"
ENV_NETWORK_NAME = "CV_NETWORK_NAME"
ENV_RPC_URL = "CV_RPC_URL"
ENV_EXPLORER_URL = "CV_EXPLORER_URL"
ENV_CONTRACT_ADDRESS = "CV_CONTRACT_ADDRESS"
ENV_WALLET_URL = "CV_WALLET_URL"
ENV_DECRYPT_CACHE_TTL = "CV_DECRYPT_CACHE_TTL"
ENV_DECRYPT_VALIDITY_DAYS = "CV_DECRYPT_VALIDITY_DAYS"

SEPOLIA_CHAIN_ID = 11155111
DEFAULT_NETWORK_NAME = "Sepolia"
DEFAULT_CONTRACT_ADDRESS = "0x6edCAd4CfbAbd1b94fdE123297D0B981A1477807"
DEFAULT_EXPLORER_URL = "https://sepolia.etherscan.io"
DEFAULT_WALLET_URL = "http://127.0.0.1:8550"
DEFAULT_DECRYPT_VALIDITY_DAYS = 10


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise RuntimeError(f"Missing required configuration: {what}")
    return v


class Settings(BaseModel):
    """
    Client configuration.

    Only the target chain is required; voting and revelation are refused
    client-side when the wallet is on any other chain.
    """

    chain_id: int = Field(..., gt=0, description="Target chain id")
    network_name: str = DEFAULT_NETWORK_NAME
    rpc_url: str = ""
    explorer_url: str = DEFAULT_EXPLORER_URL
    contract_address: str = DEFAULT_CONTRACT_ADDRESS
    wallet_url: str = DEFAULT_WALLET_URL
    decrypt_cache_ttl: float = Field(default=DEFAULT_DECRYPT_TTL_SECONDS, gt=0)
    decrypt_validity_days: int = Field(default=DEFAULT_DECRYPT_VALIDITY_DAYS, gt=0)

    @classmethod
    def from_env(cls) -> "Settings":
        raw_chain = _require(_getenv(ENV_CHAIN_ID), ENV_CHAIN_ID)
        try:
            # Wallets report chain ids in hex; accept both forms
            chain_id = int(raw_chain, 0)
        except ValueError as ex:
            raise RuntimeError(f"Invalid {ENV_CHAIN_ID}: {raw_chain!r}") from ex

        ttl = _getenv(ENV_DECRYPT_CACHE_TTL)
        days = _getenv(ENV_DECRYPT_VALIDITY_DAYS)
        return cls(
            chain_id=chain_id,
            network_name=_getenv(ENV_NETWORK_NAME, DEFAULT_NETWORK_NAME) or DEFAULT_NETWORK_NAME,
            rpc_url=_getenv(ENV_RPC_URL, "") or "",
            explorer_url=_getenv(ENV_EXPLORER_URL, DEFAULT_EXPLORER_URL) or DEFAULT_EXPLORER_URL,
            contract_address=_getenv(ENV_CONTRACT_ADDRESS, DEFAULT_CONTRACT_ADDRESS) or DEFAULT_CONTRACT_ADDRESS,
            wallet_url=_getenv(ENV_WALLET_URL, DEFAULT_WALLET_URL) or DEFAULT_WALLET_URL,
            decrypt_cache_ttl=float(ttl) if ttl else DEFAULT_DECRYPT_TTL_SECONDS,
            decrypt_validity_days=int(days) if days else DEFAULT_DECRYPT_VALIDITY_DAYS,
        )

    def network_label(self, chain_id: Optional[int]) -> Optional[str]:
        if chain_id is None:
            return None
        return self.network_name if chain_id == self.chain_id else f"Chain ID {chain_id}"


__all__ = ["Settings", "SEPOLIA_CHAIN_ID"]
