# tests/unit/test_rpc_client.py
"""Unit tests for SolanaRpcClient against an httpx.MockTransport node."""
import json
from typing import Any

import httpx
import pytest

from src.bm_common.errors import LedgerRpcError
from src.bm_ledger.infrastructure.demo_client import DEMO_SIGNATURE, DemoLedgerClient
from src.bm_ledger.infrastructure.rpc_client import RpcConfig, SolanaRpcClient

pytestmark = pytest.mark.asyncio

RPC_URL = "http://ledger.test"
PROGRAM_ID = "SeBiProgram1111111111111111111111111111111"


def _tx_result(slot: int, err: Any = None, logs: list[str] | None = None) -> dict[str, Any]:
    return {
        "slot": slot,
        "blockTime": 1_760_000_000 + slot,
        "meta": {"err": err, "logMessages": logs or ["Program log: Instruction: Buy"]},
        "transaction": {"message": {"accountKeys": [PROGRAM_ID, "trader", "market_pda"]}},
    }


class FakeNode:
    """Routes JSON-RPC methods to canned results and records every call."""

    def __init__(self, signatures: list[str], transactions: dict[str, Any]) -> None:
        self.signatures = signatures
        self.transactions = transactions
        self.calls: list[dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append(body)
        if body["method"] == "getSignaturesForAddress":
            result = [
                {"signature": s, "slot": 100 + i, "blockTime": None, "err": None}
                for i, s in enumerate(self.signatures)
            ]
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})
        outcome = self.transactions.get(body["params"][0])
        if isinstance(outcome, httpx.Response):
            return outcome
        if isinstance(outcome, dict) and "error" in outcome:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], **outcome})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": outcome})

    def methods(self) -> list[str]:
        return [c["method"] for c in self.calls]


def _client(handler: Any, **config: Any) -> SolanaRpcClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SolanaRpcClient(RpcConfig(rpc_url=RPC_URL, **config), client=http)


async def test_fetches_signatures_then_transactions() -> None:
    node = FakeNode(["s1", "s2"], {"s1": _tx_result(101), "s2": _tx_result(102)})
    txs = await _client(node).get_recent_transactions(PROGRAM_ID)

    assert [t.signature for t in txs] == ["s1", "s2"]
    assert node.methods() == ["getSignaturesForAddress", "getTransaction", "getTransaction"]
    assert node.calls[0]["params"] == [PROGRAM_ID, {"limit": 100}]
    assert node.calls[1]["params"][1] == {
        "encoding": "json",
        "maxSupportedTransactionVersion": 0,
    }
    assert txs[0].slot == 101
    assert txs[0].account_keys == (PROGRAM_ID, "trader", "market_pda")
    assert txs[0].confirmed_at is not None


async def test_failed_transactions_are_returned_not_dropped() -> None:
    err = {"InstructionError": [0, {"Custom": 6001}]}
    node = FakeNode(["ok", "bad"], {"ok": _tx_result(1), "bad": _tx_result(2, err=err)})
    txs = await _client(node).get_recent_transactions(PROGRAM_ID)

    by_sig = {t.signature: t for t in txs}
    assert by_sig["ok"].succeeded is True
    assert by_sig["bad"].succeeded is False
    assert by_sig["bad"].error == err


async def test_transaction_fetch_limit() -> None:
    sigs = [f"s{i}" for i in range(5)]
    node = FakeNode(sigs, {s: _tx_result(i) for i, s in enumerate(sigs)})
    txs = await _client(node, transaction_fetch_limit=2).get_recent_transactions(PROGRAM_ID)

    assert len(txs) == 2
    assert node.methods().count("getTransaction") == 2


async def test_single_transaction_failure_is_skipped() -> None:
    node = FakeNode(
        ["s1", "s2", "s3"],
        {
            "s1": _tx_result(1),
            "s2": {"error": {"code": -32004, "message": "Block not available"}},
            "s3": _tx_result(3),
        },
    )
    txs = await _client(node).get_recent_transactions(PROGRAM_ID)
    assert [t.signature for t in txs] == ["s1", "s3"]


async def test_null_transaction_result_is_skipped() -> None:
    node = FakeNode(["s1", "s2"], {"s1": None, "s2": _tx_result(2)})
    txs = await _client(node).get_recent_transactions(PROGRAM_ID)
    assert [t.signature for t in txs] == ["s2"]


async def test_listing_json_rpc_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "bad"}}
        )

    with pytest.raises(LedgerRpcError, match="bad"):
        await _client(handler).get_recent_transactions(PROGRAM_ID)


async def test_request_keeps_json_rpc_error_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32002, "message": "preflight"}},
        )

    with pytest.raises(LedgerRpcError) as exc_info:
        await _client(handler).request("sendTransaction", ["AAAA"])
    assert exc_info.value.rpc_code == -32002


async def test_transport_failure_has_no_rpc_code() -> None:
    with pytest.raises(LedgerRpcError) as exc_info:
        await _client(lambda r: httpx.Response(502)).request("sendTransaction", ["AAAA"])
    assert exc_info.value.rpc_code is None


async def test_listing_http_error_raises() -> None:
    with pytest.raises(LedgerRpcError, match="HTTP 503"):
        await _client(lambda r: httpx.Response(503)).get_recent_transactions(PROGRAM_ID)


async def test_listing_malformed_json_raises() -> None:
    with pytest.raises(LedgerRpcError, match="malformed JSON"):
        await _client(lambda r: httpx.Response(200, content=b"<html>")).get_recent_transactions(
            PROGRAM_ID
        )


async def test_listing_timeout_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow node", request=request)

    with pytest.raises(LedgerRpcError, match="timeout"):
        await _client(handler).get_recent_transactions(PROGRAM_ID)


async def test_missing_program_id_raises() -> None:
    node = FakeNode([], {})
    with pytest.raises(LedgerRpcError, match="not configured"):
        await _client(node).get_recent_transactions("")
    assert node.calls == []


async def test_rpc_error_code_and_status() -> None:
    err = LedgerRpcError("getTransaction", "boom")
    assert err.code == 6001
    assert err.http_status == 503
    assert err.method == "getTransaction"


async def test_demo_client_returns_one_synthetic_trade() -> None:
    txs = await DemoLedgerClient(slot=42).get_recent_transactions(PROGRAM_ID, 20)
    assert len(txs) == 1
    assert txs[0].signature == DEMO_SIGNATURE
    assert txs[0].slot == 42
    assert txs[0].succeeded
