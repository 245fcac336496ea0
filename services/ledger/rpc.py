#!/usr/bin/env python3
"""
Solana JSON-RPC ledger adapter.

Read-only calls over httpx's async client. Transient failures (rate limits,
connection errors, timeouts, node-behind responses) are retried with
exponential backoff (1s, 2s, 4s by default); anything else, or running out
of attempts, raises LedgerError.
"""
from __future__ import annotations

import asyncio
import base64
import itertools
from typing import Any, Dict, List, Optional

import httpx

from services.config import RpcConfig
from services.crypto_core.errors import LedgerError
from services.ledger.client import InstructionRecord, SignatureInfo, TransactionRecord
from services.logging_config import get_logger

logger = get_logger("rpc")

_RETRYABLE_RPC_CODES = {-32004, -32005, -32007, -32014, 429}


class SolanaRpcLedger:
    """LedgerClient backed by a Solana JSON-RPC endpoint."""

    def __init__(self, config: Optional[RpcConfig] = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or RpcConfig()
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "SolanaRpcLedger":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def _backoff(self, attempt: int, reason: str, method: str) -> None:
        wait_time = self.config.backoff_seconds * (2 ** attempt)
        logger.warning("%s on %s (attempt %d/%d), retrying in %.1fs",
                       reason, method, attempt + 1, self.config.max_retries, wait_time)
        await asyncio.sleep(wait_time)

    async def call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        last_error = ""
        for attempt in range(self.config.max_retries):
            last = attempt == self.config.max_retries - 1
            try:
                response = await self._http().post(self.config.url, json=payload)
            except httpx.TransportError as e:
                last_error = f"connection error: {e}"
                if last:
                    break
                await self._backoff(attempt, "Connection issue", method)
                continue

            if response.status_code == 429 or response.status_code >= 500:
                last_error = f"HTTP {response.status_code}"
                if last:
                    break
                await self._backoff(attempt, "Rate limited" if response.status_code == 429 else "Server error", method)
                continue
            try:
                response.raise_for_status()
                body = response.json()
            except (httpx.HTTPStatusError, ValueError) as e:
                raise LedgerError(f"{method} failed: {e}") from e

            error = body.get("error")
            if error:
                code = error.get("code")
                message = str(error.get("message", ""))
                last_error = f"RPC error {code}: {message}"
                if code in _RETRYABLE_RPC_CODES or "rate limit" in message.lower():
                    if last:
                        break
                    await self._backoff(attempt, "Transient RPC error", method)
                    continue
                raise LedgerError(f"{method} failed: {last_error}")
            return body.get("result")

        raise LedgerError(f"{method} failed after {self.config.max_retries} attempts. Last error: {last_error}")

    # ---------- LedgerClient ----------
    async def get_account_data(self, address: str) -> Optional[bytes]:
        result = await self.call("getAccountInfo", [address, {"encoding": "base64", "commitment": self.config.commitment}])
        value = (result or {}).get("value")
        if not value:
            return None
        data = value.get("data")
        if isinstance(data, list) and data:
            return base64.b64decode(data[0])
        if isinstance(data, str):
            return base64.b64decode(data)
        raise LedgerError(f"Unexpected account data encoding for {address}")

    async def get_signatures_for_address(self, address: str, before: Optional[str] = None,
                                         limit: int = 1000) -> List[SignatureInfo]:
        opts: Dict[str, Any] = {"limit": limit, "commitment": self.config.commitment}
        if before:
            opts["before"] = before
        result = await self.call("getSignaturesForAddress", [address, opts]) or []
        return [SignatureInfo(signature=r["signature"], slot=r.get("slot"), err=r.get("err")) for r in result]

    async def get_transaction(self, signature: str) -> Optional[TransactionRecord]:
        result = await self.call(
            "getTransaction",
            [signature, {"encoding": "json", "maxSupportedTransactionVersion": 0, "commitment": self.config.commitment}],
        )
        if not result:
            return None
        return parse_transaction(signature, result)


def parse_transaction(signature: str, result: Dict[str, Any]) -> TransactionRecord:
    """Flatten a `getTransaction` json-encoded result, resolving lookup-table keys."""
    meta = result.get("meta") or {}
    message = (result.get("transaction") or {}).get("message") or {}
    keys: List[str] = list(message.get("accountKeys") or [])
    loaded = meta.get("loadedAddresses") or {}
    keys += list(loaded.get("writable") or []) + list(loaded.get("readonly") or [])

    instructions: List[InstructionRecord] = []
    for ix in message.get("instructions") or []:
        idx = ix.get("programIdIndex")
        if idx is None or idx >= len(keys):
            continue
        accounts = [keys[i] for i in ix.get("accounts") or [] if i < len(keys)]
        instructions.append(InstructionRecord(program_id=keys[idx], data=ix.get("data"), accounts=accounts))

    return TransactionRecord(
        signature=signature,
        slot=result.get("slot"),
        err=meta.get("err"),
        logs=meta.get("logMessages"),
        instructions=instructions,
    )
