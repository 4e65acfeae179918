import base64
import io
import json

import pytest

from tokenstate.encoding import EncodingError, format_address, id_to_string
from tokenstate.rpc_server import (
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    ORDERS_TO_SEND,
    PARSE_ERROR,
    AssetNotFoundError,
    Controller,
    JSONRPCServer,
    TxNotFoundError,
)
from tokenstate.storage import (
    MemoryDatabase,
    NotFoundError,
    get_asset,
    get_balance_from_state,
    get_loan_from_state,
    get_transaction,
    set_asset,
    set_balance,
    set_loan,
    store_transaction,
)

PK = bytes(range(32))
ASSET = bytes([1]) * 32
TX_ID = bytes([2]) * 32
DEST = bytes([3]) * 32


class StateController(Controller):
    def __init__(self):
        self.db = MemoryDatabase()
        self.genesis_calls = 0
        self.book = {}
        self.limits = []

    def _read(self, keys):
        values = []
        for key in keys:
            try:
                values.append(self.db.get_value(key))
            except NotFoundError:
                values.append(None)
        return values

    def genesis(self):
        self.genesis_calls += 1
        return {"minUnitPrice": 1}

    def get_transaction(self, tx_id):
        return get_transaction(self.db, tx_id)

    def get_asset_from_state(self, asset):
        return get_asset(self.db, asset)

    def get_balance_from_state(self, public_key, asset):
        return get_balance_from_state(self._read, public_key, asset)

    def orders(self, pair, limit):
        self.limits.append(limit)
        return self.book.get(pair, [])[:limit]

    def get_loan_from_state(self, asset, destination):
        return get_loan_from_state(self._read, asset, destination)


@pytest.fixture
def controller():
    return StateController()


@pytest.fixture
def server(controller):
    return JSONRPCServer(controller)


def call(server, method, params=None, request_id=1):
    body = json.dumps({"jsonrpc": "2.0", "method": method, "params": params, "id": request_id})
    return json.loads(server.handle(body.encode()))


def test_orders_reply_is_capped_at_128(server, controller):
    controller.book["a-b"] = [{"id": str(i), "remaining": 1} for i in range(200)]
    reply = server.orders("a-b")
    assert len(reply["orders"]) == 128
    assert reply["orders"][0] == {"id": "0", "remaining": 1}
    assert controller.limits == [128]


def test_genesis_reply(server):
    assert server.genesis() == {"genesis": {"minUnitPrice": 1}}


def test_balance_reads_state(server, controller):
    set_balance(controller.db, PK, ASSET, 500)
    assert server.balance(format_address(PK), ASSET) == {"amount": 500}


def test_balance_missing_account_is_zero(server):
    assert server.balance(format_address(PK), ASSET) == {"amount": 0}


def test_balance_rejects_bad_address(server):
    with pytest.raises(EncodingError):
        server.balance("not-an-address", ASSET)


def test_tx_found(server, controller):
    store_transaction(controller.db, TX_ID, 1_700_000_000, True, 472)
    assert server.tx(TX_ID) == {"timestamp": 1_700_000_000, "success": True, "units": 472}


def test_tx_not_found(server):
    with pytest.raises(TxNotFoundError, match="tx not found"):
        server.tx(TX_ID)


def test_asset_reply(server, controller):
    set_asset(controller.db, ASSET, b"1", 15, PK, False)
    reply = server.asset(ASSET)
    assert base64.b64decode(reply["metadata"]) == b"1"
    assert reply["supply"] == 15
    assert reply["owner"] == format_address(PK)
    assert reply["warp"] is False


def test_asset_not_found(server):
    with pytest.raises(AssetNotFoundError, match="asset not found"):
        server.asset(ASSET)


def test_orders_uses_limit(server, controller):
    controller.book["a-b"] = [{"id": "x", "remaining": 4}]
    assert server.orders("a-b") == {"orders": [{"id": "x", "remaining": 4}]}
    assert controller.limits == [ORDERS_TO_SEND]


def test_orders_empty_pair(server):
    assert server.orders("none") == {"orders": []}


def test_loan(server, controller):
    set_loan(controller.db, ASSET, DEST, 110)
    assert server.loan(ASSET, DEST) == {"amount": 110}


def test_handle_balance_round_trip(server, controller):
    set_balance(controller.db, PK, ASSET, 42)
    reply = call(
        server,
        "tokenvm.balance",
        {"address": format_address(PK), "asset": id_to_string(ASSET)},
        request_id=7,
    )
    assert reply["result"] == {"amount": 42}
    assert reply["id"] == 7


def test_handle_accepts_capitalised_method_and_list_params(server, controller):
    set_loan(controller.db, ASSET, DEST, 9)
    params = [{"asset": id_to_string(ASSET), "destination": id_to_string(DEST)}]
    reply = call(server, "tokenvm.Loan", params)
    assert reply["result"] == {"amount": 9}


def test_handle_unknown_method(server):
    reply = call(server, "tokenvm.missing")
    assert reply["error"]["code"] == METHOD_NOT_FOUND


def test_handle_wrong_namespace(server):
    reply = call(server, "other.genesis")
    assert reply["error"]["code"] == METHOD_NOT_FOUND


def test_handle_tx_not_found_message(server):
    reply = call(server, "tokenvm.tx", {"txId": id_to_string(TX_ID)})
    assert "tx not found" in reply["error"]["message"]


def test_handle_invalid_json(server):
    reply = json.loads(server.handle(b"{not json"))
    assert reply["error"]["code"] == PARSE_ERROR
    assert reply["id"] is None


def test_handle_invalid_id_param(server):
    reply = call(server, "tokenvm.tx", {"txId": "nope"})
    assert reply["error"]["code"] == INVALID_PARAMS


def test_wsgi_post(server, controller):
    set_balance(controller.db, PK, ASSET, 3)
    body = json.dumps(
        {
            "jsonrpc": "2.0",
            "method": "tokenvm.balance",
            "params": {"address": format_address(PK), "asset": id_to_string(ASSET)},
            "id": 1,
        }
    ).encode()
    environ = {
        "REQUEST_METHOD": "POST",
        "CONTENT_LENGTH": str(len(body)),
        "wsgi.input": io.BytesIO(body),
    }
    statuses = []
    chunks = server(environ, lambda status, headers: statuses.append(status))
    assert statuses == ["200 OK"]
    assert json.loads(b"".join(chunks))["result"] == {"amount": 3}


def test_wsgi_rejects_get(server):
    statuses = []
    server({"REQUEST_METHOD": "GET"}, lambda status, headers: statuses.append(status))
    assert statuses[0].startswith("405")