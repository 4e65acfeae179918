"""Client for the token JSON-RPC service."""

from __future__ import annotations

import base64
import itertools
import json
import logging
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

from .encoding import id_to_string
from .rpc_server import (
    DEFAULT_NAMESPACE,
    JSONRPC_ENDPOINT,
    AssetNotFoundError,
    TxNotFoundError,
)

Transport = Callable[[str, bytes], bytes]
"""Sends a request body to a URL and returns the response body."""

_log = logging.getLogger(__name__)


class RPCError(Exception):
    """Raised when the service answers with an error or cannot be reached."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class TxStatus:
    success: bool
    timestamp: int


@dataclass(frozen=True)
class AssetInfo:
    metadata: bytes
    supply: int
    owner: str
    warp: bool


def _http_transport(timeout: float) -> Transport:
    def post(url: str, body: bytes) -> bytes:
        request = urllib.request.Request(
            url, data=body, headers={"Content-Type": "application/json"}, method="POST"
        )
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:
                return response.read()
        except urllib.error.HTTPError as err:
            payload = err.read()
            if payload:
                return payload
            raise RPCError(f"HTTP {err.code}: {err.reason}", err.code) from err
        except urllib.error.URLError as err:
            raise RPCError(f"request failed: {err.reason}") from err

    return post


class JSONRPCClient:
    """Queries one node's token service."""

    def __init__(
        self,
        uri: str,
        chain_id: bytes,
        *,
        namespace: str = DEFAULT_NAMESPACE,
        transport: Optional[Transport] = None,
        timeout: float = 30.0,
        poll_interval: float = 0.5,
        wait_timeout: Optional[float] = None,
    ) -> None:
        self.url = uri.removesuffix("/") + JSONRPC_ENDPOINT
        self.chain_id = bytes(chain_id)
        self._namespace = namespace
        self._transport = transport or _http_transport(timeout)
        self._poll_interval = poll_interval
        self._wait_timeout = wait_timeout
        self._ids = itertools.count(1)
        self._genesis: Any = None

    def _request(self, method: str, params: Optional[dict] = None) -> Any:
        body = json.dumps(
            {
                "jsonrpc": "2.0",
                "method": f"{self._namespace}.{method}",
                "params": params if params is not None else {},
                "id": next(self._ids),
            }
        ).encode("utf-8")
        raw = self._transport(self.url, body)
        try:
            reply = json.loads(raw)
        except ValueError as err:
            raise RPCError("invalid response from server") from err
        if not isinstance(reply, dict):
            raise RPCError("invalid response from server")
        error = reply.get("error")
        if error:
            if isinstance(error, dict):
                raise RPCError(str(error.get("message", "")), error.get("code"))
            raise RPCError(str(error))
        return reply.get("result") or {}

    def genesis(self) -> Any:
        """Return the chain's genesis; fetched once and then cached."""
        if self._genesis is None:
            self._genesis = self._request("genesis").get("genesis")
        return self._genesis

    def tx(self, tx_id: bytes) -> Optional[TxStatus]:
        """Return the status of a transaction, or None if it is not known yet."""
        try:
            result = self._request("tx", {"txId": id_to_string(tx_id)})
        except RPCError as err:
            if str(TxNotFoundError()) in str(err):
                return None
            raise
        return TxStatus(bool(result.get("success")), int(result.get("timestamp", 0)))

    def asset(self, asset: bytes) -> Optional[AssetInfo]:
        """Return an asset's details, or None if it does not exist."""
        try:
            result = self._request("asset", {"asset": id_to_string(asset)})
        except RPCError as err:
            if str(AssetNotFoundError()) in str(err):
                return None
            raise
        metadata = result.get("metadata")
        return AssetInfo(
            base64.b64decode(metadata) if metadata else b"",
            int(result.get("supply", 0)),
            str(result.get("owner", "")),
            bool(result.get("warp")),
        )

    def balance(self, address: str, asset: bytes) -> int:
        result = self._request("balance", {"address": address, "asset": id_to_string(asset)})
        return int(result.get("amount", 0))

    def orders(self, pair: str) -> list:
        return list(self._request("orders", {"pair": pair}).get("orders") or [])

    def loan(self, asset: bytes, destination: bytes) -> int:
        result = self._request(
            "loan", {"asset": id_to_string(asset), "destination": id_to_string(destination)}
        )
        return int(result.get("amount", 0))

    def _wait(self, check: Callable[[], bool]) -> None:
        deadline = (
            None if self._wait_timeout is None else time.monotonic() + self._wait_timeout
        )
        while True:
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError("condition not met before the wait timeout")
            if check():
                return
            time.sleep(self._poll_interval)

    def wait_for_balance(self, address: str, asset: bytes, minimum: int) -> None:
        """Poll until the balance of address in asset reaches minimum."""

        def reached() -> bool:
            if self.balance(address, asset) >= minimum:
                return True
            _log.info("waiting for %d balance: %s", minimum, address)
            return False

        self._wait(reached)

    def wait_for_transaction(self, tx_id: bytes) -> bool:
        """Poll until the transaction is known and return whether it succeeded."""
        outcome: list[TxStatus] = []

        def found() -> bool:
            status = self.tx(tx_id)
            if status is None:
                return False
            outcome.append(status)
            return True

        self._wait(found)
        return outcome[-1].success