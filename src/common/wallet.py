from __future__ import annotations

import json
from itertools import count
from typing import Any, Dict, List, Optional

import httpx
import structlog

from .errors import MissingAccountError, WalletConnectionError, WalletRpcError


log = structlog.get_logger(__name__)

# EIP-1193 / EIP-3085 error code: chain not registered in the wallet
CHAIN_NOT_ADDED = 4902
USER_REJECTED = 4001

_DOMAIN_FIELD_TYPES = {
    "name": "string",
    "version": "string",
    "chainId": "uint256",
    "verifyingContract": "address",
    "salt": "bytes32",
}


def _domain_type(domain: Dict[str, Any]) -> List[Dict[str, str]]:
    # Field order is fixed by EIP-712
    return [
        {"name": name, "type": typ}
        for name, typ in _DOMAIN_FIELD_TYPES.items()
        if name in domain
    ]


class JsonRpcWallet:
    """
    Minimal wallet client speaking JSON-RPC 2.0 over HTTP.

    Targets remote signers and wallet bridges that expose the EIP-1193 method
    set (eth_accounts, eth_chainId, eth_signTypedData_v4, wallet_* chain
    management).

    Notes
    - No retries: a failed signature prompt or chain switch is the caller's
      decision to repeat.
    - Transport failures surface as `WalletConnectionError`; error objects in
      the response surface as `WalletRpcError` carrying the RPC code.
    - Doubles as the signer for authorized decryption (`address` and
      `sign_typed_data`).
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not url:
            raise ValueError("url is required")
        self._url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = count(1)
        self._accounts: List[str] = []

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "JsonRpcWallet":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # --------------- Accounts & chain ---------------
    @property
    def address(self) -> str:
        if not self._accounts:
            raise MissingAccountError("No connected account; call request_accounts() first")
        return self._accounts[0]

    async def request_accounts(self) -> List[str]:
        """Ask the wallet to connect; returns the authorized accounts."""
        accounts = await self._request("eth_requestAccounts")
        self._accounts = self._as_accounts(accounts)
        return list(self._accounts)

    async def accounts(self) -> List[str]:
        """Accounts already authorized, without prompting."""
        accounts = await self._request("eth_accounts")
        self._accounts = self._as_accounts(accounts)
        return list(self._accounts)

    async def chain_id(self) -> int:
        raw = await self._request("eth_chainId")
        if isinstance(raw, int):
            return raw
        if isinstance(raw, str):
            return int(raw, 16) if raw.startswith("0x") else int(raw)
        raise WalletRpcError(f"Unexpected eth_chainId result: {raw!r}")

    async def switch_chain(
        self,
        chain_id: int,
        *,
        chain_name: str,
        rpc_url: str = "",
        explorer_url: str = "",
    ) -> None:
        """Switch the wallet to `chain_id`, registering the chain if unknown."""
        hex_id = hex(chain_id)
        try:
            await self._request("wallet_switchEthereumChain", [{"chainId": hex_id}])
            return
        except WalletRpcError as ex:
            if ex.code != CHAIN_NOT_ADDED:
                raise
        log.info("wallet_chain_not_added", chain_id=chain_id)
        params: Dict[str, Any] = {
            "chainId": hex_id,
            "chainName": chain_name,
            "nativeCurrency": {"name": f"{chain_name} Ether", "symbol": "ETH", "decimals": 18},
            "rpcUrls": [rpc_url] if rpc_url else [],
        }
        if explorer_url:
            params["blockExplorerUrls"] = [explorer_url]
        await self._request("wallet_addEthereumChain", [params])

    # --------------- Signing ---------------
    async def sign_typed_data(
        self,
        domain: Dict[str, Any],
        types: Dict[str, List[Dict[str, str]]],
        message: Dict[str, Any],
        *,
        primary_type: Optional[str] = None,
    ) -> str:
        """
        Request an EIP-712 signature (eth_signTypedData_v4) from the wallet.

        `types` excludes `EIP712Domain`; it is derived from the domain keys.
        When `primary_type` is omitted the first non-domain type is used.
        """
        address = self.address
        all_types: Dict[str, Any] = {"EIP712Domain": _domain_type(domain), **types}
        primary = primary_type or next(iter(types))
        payload = {
            "types": all_types,
            "domain": domain,
            "primaryType": primary,
            "message": message,
        }
        signature = await self._request("eth_signTypedData_v4", [address, json.dumps(payload)])
        if not isinstance(signature, str) or not signature.startswith("0x"):
            raise WalletRpcError("Malformed signature returned by wallet")
        return signature

    # --------------- Internal ---------------
    @staticmethod
    def _as_accounts(raw: Any) -> List[str]:
        if not isinstance(raw, list):
            raise WalletRpcError(f"Unexpected accounts result: {raw!r}")
        return [str(a) for a in raw if a]

    async def _request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        body = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        try:
            resp = await self._client.post(self._url, json=body)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise WalletConnectionError(f"Wallet unreachable at {self._url}") from exc

        if resp.status_code != 200:
            raise WalletConnectionError(
                f"HTTP {resp.status_code} from wallet: {resp.text[:200]}"
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise WalletRpcError("Failed to parse JSON-RPC response from wallet") from exc

        if not isinstance(data, dict):
            raise WalletRpcError("Malformed JSON-RPC response from wallet")
        err = data.get("error")
        if isinstance(err, dict):
            code = err.get("code")
            msg = err.get("message") or "wallet error"
            log.warning("wallet_rpc_error", method=method, code=code)
            raise WalletRpcError(f"{method}: {msg} (code={code})", code=code)
        if "result" not in data:
            raise WalletRpcError(f"{method}: response has neither result nor error")
        return data["result"]


__all__ = ["JsonRpcWallet", "CHAIN_NOT_ADDED", "USER_REJECTED"]
