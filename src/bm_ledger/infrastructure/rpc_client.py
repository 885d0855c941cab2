"""JSON-RPC client for the ledger node.

Reconciliation reads with getSignaturesForAddress, then getTransaction per
signature. The settlement client sends through `request`.
Every request is bounded by the configured timeout.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from config.settings import Settings
from src.bm_common.errors import LedgerRpcError
from src.bm_ledger.domain.models import LedgerTransaction, SignatureInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RpcConfig:
    rpc_url: str
    timeout_seconds: float = 10.0
    signature_limit: int = 100
    transaction_fetch_limit: int = 20

    @classmethod
    def from_settings(cls, s: Settings) -> "RpcConfig":
        return cls(
            rpc_url=s.SOLANA_RPC_URL,
            timeout_seconds=s.LEDGER_RPC_TIMEOUT_SECONDS,
            signature_limit=s.LEDGER_SIGNATURE_LIMIT,
            transaction_fetch_limit=s.LEDGER_TRANSACTION_FETCH_LIMIT,
        )


def _parse_transaction(signature: str, result: dict[str, Any]) -> LedgerTransaction:
    meta = result.get("meta") or {}
    message = (result.get("transaction") or {}).get("message") or {}
    err = meta.get("err")
    return LedgerTransaction(
        signature=signature,
        slot=int(result["slot"]),
        block_time=result.get("blockTime"),
        succeeded=err is None,
        error=err,
        log_messages=tuple(meta.get("logMessages") or ()),
        account_keys=tuple(str(k) for k in message.get("accountKeys") or ()),
    )


class SolanaRpcClient:
    def __init__(self, config: RpcConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client
        self._request_id = 0

    async def _call(self, http: httpx.AsyncClient, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        body = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            resp = await http.post(
                self._config.rpc_url, json=body, timeout=self._config.timeout_seconds
            )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.TimeoutException as e:
            raise LedgerRpcError(method, f"timeout after {self._config.timeout_seconds}s") from e
        except httpx.HTTPStatusError as e:
            raise LedgerRpcError(method, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise LedgerRpcError(method, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise LedgerRpcError(method, "malformed JSON response") from e

        if not isinstance(payload, dict):
            raise LedgerRpcError(method, "response is not a JSON object")
        if payload.get("error"):
            err = payload["error"]
            if isinstance(err, dict):
                code = err.get("code")
                raise LedgerRpcError(
                    method,
                    err.get("message", str(err)),
                    rpc_code=code if isinstance(code, int) else -1,
                )
            raise LedgerRpcError(method, str(err), rpc_code=-1)
        return payload.get("result")

    async def request(self, method: str, params: list[Any]) -> Any:
        """One JSON-RPC call on the shared client, or a short-lived one."""
        if self._client is not None:
            return await self._call(self._client, method, params)
        async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as http:
            return await self._call(http, method, params)

    async def get_signatures_for_address(
        self, http: httpx.AsyncClient, address: str, limit: int
    ) -> list[SignatureInfo]:
        result = await self._call(http, "getSignaturesForAddress", [address, {"limit": limit}])
        if not isinstance(result, list):
            raise LedgerRpcError("getSignaturesForAddress", "result is not a list")
        try:
            return [
                SignatureInfo(
                    signature=item["signature"],
                    slot=int(item["slot"]),
                    block_time=item.get("blockTime"),
                    err=item.get("err"),
                )
                for item in result
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerRpcError("getSignaturesForAddress", f"malformed entry: {e}") from e

    async def get_transaction(
        self, http: httpx.AsyncClient, signature: str
    ) -> LedgerTransaction | None:
        result = await self._call(
            http,
            "getTransaction",
            [signature, {"encoding": "json", "maxSupportedTransactionVersion": 0}],
        )
        if result is None:
            return None
        try:
            return _parse_transaction(signature, result)
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerRpcError("getTransaction", f"malformed transaction {signature}: {e}") from e

    async def get_recent_transactions(
        self, program_id: str, limit: int | None = None
    ) -> list[LedgerTransaction]:
        """Newest-first transactions touching ``program_id``.

        The signature listing failing raises LedgerRpcError. A single
        transaction failing to load is logged and skipped.
        """
        if not program_id:
            raise LedgerRpcError("getSignaturesForAddress", "program id not configured")
        fetch_limit = limit or self._config.transaction_fetch_limit

        if self._client is not None:
            return await self._fetch(self._client, program_id, fetch_limit)
        async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as http:
            return await self._fetch(http, program_id, fetch_limit)

    async def _fetch(
        self, http: httpx.AsyncClient, program_id: str, fetch_limit: int
    ) -> list[LedgerTransaction]:
        signatures = await self.get_signatures_for_address(
            http, program_id, self._config.signature_limit
        )
        transactions: list[LedgerTransaction] = []
        for info in signatures[:fetch_limit]:
            try:
                tx = await self.get_transaction(http, info.signature)
            except LedgerRpcError:
                logger.warning("Skipping transaction %s", info.signature, exc_info=True)
                continue
            if tx is not None:
                transactions.append(tx)
        logger.debug(
            "Fetched %d/%d transactions for %s", len(transactions), len(signatures), program_id
        )
        return transactions
