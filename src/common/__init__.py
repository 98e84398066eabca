"""
Common utilities for the confidential voting client.

Modules:
- errors: error taxonomy shared by every layer
- models: pydantic models (ballots, proposals, session config)
- config: settings loaded from the environment
- cache: TTL cache for decrypted values
- wallet: JSON-RPC wallet client (accounts, chain, EIP-712 signing)
- logging: structlog configuration
"""

__all__ = [
    "cache",
    "config",
    "errors",
    "logging",
    "models",
    "wallet",
]
