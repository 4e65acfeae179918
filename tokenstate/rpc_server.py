"""JSON-RPC 2.0 service answering queries about token state."""

from __future__ import annotations

import base64
import dataclasses
import json
from abc import ABC, abstractmethod
from typing import Any, Optional

from .encoding import ID_LEN, format_address, id_from_string, parse_address
from .encoding import EncodingError
from .storage import AssetRecord, TransactionRecord

JSONRPC_ENDPOINT = "/tokenapi"
ORDERS_TO_SEND = 128
DEFAULT_NAMESPACE = "tokenvm"
EMPTY_ID = bytes(ID_LEN)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000


class TxNotFoundError(LookupError):
    """Raised when a queried transaction is unknown."""

    def __init__(self, message: str = "tx not found") -> None:
        super().__init__(message)


class AssetNotFoundError(LookupError):
    """Raised when a queried asset does not exist."""

    def __init__(self, message: str = "asset not found") -> None:
        super().__init__(message)


class Controller(ABC):
    """The node-side state the service reads from."""

    @abstractmethod
    def genesis(self) -> Any:
        """Return the genesis configuration as a JSON-serialisable value."""

    @abstractmethod
    def get_transaction(self, tx_id: bytes) -> Optional[TransactionRecord]:
        """Return the stored outcome of a transaction, or None."""

    @abstractmethod
    def get_asset_from_state(self, asset: bytes) -> Optional[AssetRecord]:
        """Return an asset record, or None if it does not exist."""

    @abstractmethod
    def get_balance_from_state(self, public_key: bytes, asset: bytes) -> int:
        """Return the balance of an account in an asset."""

    @abstractmethod
    def orders(self, pair: str, limit: int) -> list:
        """Return up to limit open orders for a trading pair."""

    @abstractmethod
    def get_loan_from_state(self, asset: bytes, destination: bytes) -> int:
        """Return the amount of asset loaned to a destination chain."""


class _RequestError(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


def _encode(payload: dict) -> bytes:
    return json.dumps(payload).encode("utf-8")


def _id_param(params: dict, name: str) -> bytes:
    value = params.get(name)
    if value is None:
        return EMPTY_ID
    if not isinstance(value, str):
        raise _RequestError(INVALID_PARAMS, f"{name} must be a string")
    try:
        return id_from_string(value)
    except EncodingError as err:
        raise _RequestError(INVALID_PARAMS, f"invalid {name}: {err}") from err


def _str_param(params: dict, name: str) -> str:
    value = params.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _RequestError(INVALID_PARAMS, f"{name} must be a string")
    return value


class JSONRPCServer:
    """Answers token queries; usable directly, via handle(), or as a WSGI app."""

    def __init__(self, controller: Controller, namespace: str = DEFAULT_NAMESPACE) -> None:
        self._controller = controller
        self._namespace = namespace
        self._handlers = {
            "genesis": lambda params: self.genesis(),
            "tx": lambda params: self.tx(_id_param(params, "txId")),
            "asset": lambda params: self.asset(_id_param(params, "asset")),
            "balance": lambda params: self.balance(
                _str_param(params, "address"), _id_param(params, "asset")
            ),
            "orders": lambda params: self.orders(_str_param(params, "pair")),
            "loan": lambda params: self.loan(
                _id_param(params, "asset"), _id_param(params, "destination")
            ),
        }

    def genesis(self) -> dict:
        return {"genesis": _jsonable(self._controller.genesis())}

    def tx(self, tx_id: bytes) -> dict:
        record = self._controller.get_transaction(tx_id)
        if record is None:
            raise TxNotFoundError()
        return {"timestamp": record.timestamp, "success": record.success, "units": record.units}

    def asset(self, asset: bytes) -> dict:
        record = self._controller.get_asset_from_state(asset)
        if record is None:
            raise AssetNotFoundError()
        return {
            "metadata": base64.b64encode(record.metadata).decode("ascii"),
            "supply": record.supply,
            "owner": format_address(record.owner),
            "warp": record.warp,
        }

    def balance(self, address: str, asset: bytes) -> dict:
        public_key = parse_address(address)
        return {"amount": self._controller.get_balance_from_state(public_key, asset)}

    def orders(self, pair: str) -> dict:
        found = self._controller.orders(pair, ORDERS_TO_SEND) or []
        return {"orders": [_jsonable(order) for order in found]}

    def loan(self, asset: bytes, destination: bytes) -> dict:
        return {"amount": self._controller.get_loan_from_state(asset, destination)}

    def handle(self, body: bytes | str) -> bytes:
        """Process one JSON-RPC request body and return the response body."""
        try:
            request = json.loads(body)
        except ValueError:
            return self._error(None, PARSE_ERROR, "invalid JSON")
        request_id = request.get("id") if isinstance(request, dict) else None
        try:
            result = self._dispatch(request)
        except _RequestError as err:
            return self._error(request_id, err.code, err.message)
        except Exception as err:  # every failure is reported to the caller
            return self._error(request_id, SERVER_ERROR, str(err))
        return _encode({"jsonrpc": "2.0", "result": result, "id": request_id})

    def _dispatch(self, request: Any) -> Any:
        if not isinstance(request, dict) or not isinstance(request.get("method"), str):
            raise _RequestError(INVALID_REQUEST, "invalid request")
        method = request["method"]
        service, _, name = method.rpartition(".")
        handler = self._handlers.get(name.lower()) if service == self._namespace else None
        if handler is None:
            raise _RequestError(METHOD_NOT_FOUND, f"method {method!r} not found")
        params = request.get("params")
        if isinstance(params, list):
            if len(params) != 1:
                raise _RequestError(INVALID_PARAMS, "expected a single parameter object")
            params = params[0]
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise _RequestError(INVALID_PARAMS, "parameters must be an object")
        return handler(params)

    @staticmethod
    def _error(request_id: Any, code: int, message: str) -> bytes:
        return _encode(
            {"jsonrpc": "2.0", "error": {"code": code, "message": message}, "id": request_id}
        )

    def __call__(self, environ, start_response):
        if environ.get("REQUEST_METHOD", "GET").upper() != "POST":
            start_response(
                "405 Method Not Allowed",
                [("Allow", "POST"), ("Content-Type", "text/plain")],
            )
            return [b"method not allowed"]
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        body = environ["wsgi.input"].read(length) if length > 0 else b""
        payload = self.handle(body)
        start_response(
            "200 OK",
            [("Content-Type", "application/json"), ("Content-Length", str(len(payload)))],
        )
        return [payload]