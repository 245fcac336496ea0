"""
Solana JSON-RPC adapter tests
"""

import base64
import json

import httpx
import pytest

from services.config import RpcConfig
from services.crypto_core.errors import LedgerError
from services.ledger.rpc import SolanaRpcLedger, parse_transaction


def make_ledger(handler, retries=3):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    config = RpcConfig(url="http://rpc.test", max_retries=retries, backoff_seconds=0)
    return SolanaRpcLedger(config, client)


def ok(result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})


class TestCall:
    """Tests for retry behaviour."""

    def test_retries_rate_limit(self, async_runner):
        """A 429 is retried and the next success is returned."""
        seen = []

        def handler(request):
            seen.append(json.loads(request.content)["method"])
            if len(seen) == 1:
                return httpx.Response(429)
            return ok({"value": None})

        ledger = make_ledger(handler)
        assert async_runner(ledger.get_account_data("Acc")) is None
        assert seen == ["getAccountInfo", "getAccountInfo"]

    def test_retries_transient_rpc_error(self, async_runner):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) < 3:
                return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1,
                                                 "error": {"code": -32005, "message": "Node is behind"}})
            return ok([])

        ledger = make_ledger(handler)
        assert async_runner(ledger.get_signatures_for_address("Addr")) == []
        assert len(calls) == 3

    def test_connection_errors_exhaust(self, async_runner):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        ledger = make_ledger(handler, retries=2)
        with pytest.raises(LedgerError):
            async_runner(ledger.get_transaction("sig"))

    def test_permanent_error_not_retried(self, async_runner):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1,
                                             "error": {"code": -32602, "message": "Invalid params"}})

        ledger = make_ledger(handler)
        with pytest.raises(LedgerError):
            async_runner(ledger.get_account_data("Acc"))
        assert len(calls) == 1


class TestQueries:
    """Tests for result shaping."""

    def test_account_data_base64(self, async_runner):
        payload = b"\x01\x02\x03"

        def handler(request):
            body = json.loads(request.content)
            assert body["params"][1]["encoding"] == "base64"
            return ok({"value": {"data": [base64.b64encode(payload).decode(), "base64"]}})

        assert async_runner(make_ledger(handler).get_account_data("Acc")) == payload

    def test_signature_paging_params(self, async_runner):
        def handler(request):
            opts = json.loads(request.content)["params"][1]
            assert opts["before"] == "sigB"
            assert opts["limit"] == 2
            return ok([{"signature": "sigC", "slot": 10, "err": None},
                       {"signature": "sigD", "slot": 9, "err": {"InstructionError": [0, "Custom"]}}])

        sigs = async_runner(make_ledger(handler).get_signatures_for_address("Addr", before="sigB", limit=2))
        assert [s.signature for s in sigs] == ["sigC", "sigD"]
        assert sigs[1].err is not None

    def test_missing_transaction(self, async_runner):
        assert async_runner(make_ledger(lambda r: ok(None)).get_transaction("sig")) is None


class TestParseTransaction:
    """Tests for flattening getTransaction results."""

    def test_lookup_table_keys(self):
        result = {
            "slot": 55,
            "meta": {
                "err": None,
                "logMessages": ["Program log: hi"],
                "loadedAddresses": {"writable": ["W1"], "readonly": ["Prog"]},
            },
            "transaction": {"message": {
                "accountKeys": ["Payer", "Acc"],
                "instructions": [
                    {"programIdIndex": 3, "accounts": [0, 2], "data": "3Bxs"},
                    {"programIdIndex": 9, "accounts": [], "data": ""},
                ],
            }},
        }
        tx = parse_transaction("sig", result)
        assert tx.slot == 55
        assert tx.logs == ["Program log: hi"]
        assert len(tx.instructions) == 1
        assert tx.instructions[0].program_id == "Prog"
        assert tx.instructions[0].accounts == ["Payer", "W1"]
