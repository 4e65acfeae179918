import json

import pytest

from tokenstate.encoding import format_address
from tokenstate.rpc_client import AssetInfo, JSONRPCClient, RPCError, TxStatus
from tokenstate.rpc_server import JSONRPC_ENDPOINT, Controller, JSONRPCServer
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
CHAIN = bytes([9]) * 32
BASE_URI = "http://node.example.com/ext/bc/chain"


class StateController(Controller):
    def __init__(self):
        self.db = MemoryDatabase()
        self.genesis_calls = 0
        self.book = {}

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
        return self.book.get(pair, [])[:limit]

    def get_loan_from_state(self, asset, destination):
        return get_loan_from_state(self._read, asset, destination)


class Loopback:
    def __init__(self, server, before=None):
        self.server = server
        self.before = before
        self.urls = []
        self.bodies = []

    def __call__(self, url, body):
        self.urls.append(url)
        self.bodies.append(json.loads(body))
        if self.before is not None:
            self.before(len(self.urls))
        return self.server.handle(body)


@pytest.fixture
def controller():
    return StateController()


def make_client(controller, before=None, **kwargs):
    transport = Loopback(JSONRPCServer(controller), before)
    client = JSONRPCClient(BASE_URI + "/", CHAIN, transport=transport, **kwargs)
    return client, transport


def test_url_and_method_name(controller):
    client, transport = make_client(controller)
    client.balance(format_address(PK), ASSET)
    assert transport.urls == [BASE_URI + JSONRPC_ENDPOINT]
    assert transport.bodies[0]["method"] == "tokenvm.balance"
    assert client.chain_id == CHAIN


def test_genesis_is_cached(controller):
    client, _ = make_client(controller)
    assert client.genesis() == {"minUnitPrice": 1}
    assert client.genesis() == {"minUnitPrice": 1}
    assert controller.genesis_calls == 1


def test_tx_found(controller):
    store_transaction(controller.db, TX_ID, 1_700_000_000, True, 472)
    client, _ = make_client(controller)
    assert client.tx(TX_ID) == TxStatus(success=True, timestamp=1_700_000_000)


def test_tx_not_found_returns_none(controller):
    client, _ = make_client(controller)
    assert client.tx(TX_ID) is None


def test_asset_round_trip(controller):
    set_asset(controller.db, ASSET, b"blah", 10, PK, True)
    client, _ = make_client(controller)
    assert client.asset(ASSET) == AssetInfo(b"blah", 10, format_address(PK), True)


def test_asset_empty_metadata(controller):
    set_asset(controller.db, ASSET, b"", 0, PK, False)
    client, _ = make_client(controller)
    assert client.asset(ASSET).metadata == b""


def test_asset_missing_returns_none(controller):
    client, _ = make_client(controller)
    assert client.asset(ASSET) is None


def test_balance_and_loan(controller):
    set_balance(controller.db, PK, ASSET, 100_000)
    set_loan(controller.db, ASSET, DEST, 110)
    client, _ = make_client(controller)
    assert client.balance(format_address(PK), ASSET) == 100_000
    assert client.loan(ASSET, DEST) == 110


def test_bad_address_raises_rpc_error(controller):
    client, _ = make_client(controller)
    with pytest.raises(RPCError):
        client.balance("not-an-address", ASSET)


def test_orders(controller):
    controller.book["a-b"] = [{"id": "x", "remaining": 4}]
    client, _ = make_client(controller)
    assert client.orders("a-b") == [{"id": "x", "remaining": 4}]
    assert client.orders("none") == []


def test_error_reply_carries_code_and_message():
    def transport(url, body):
        return json.dumps(
            {"jsonrpc": "2.0", "error": {"code": -32000, "message": "boom"}, "id": 1}
        ).encode()

    client = JSONRPCClient(BASE_URI, CHAIN, transport=transport)
    with pytest.raises(RPCError) as info:
        client.loan(ASSET, DEST)
    assert info.value.message == "boom"
    assert info.value.code == -32000


def test_invalid_response_body():
    client = JSONRPCClient(BASE_URI, CHAIN, transport=lambda url, body: b"<html>")
    with pytest.raises(RPCError):
        client.loan(ASSET, DEST)


def test_wait_for_balance(controller):
    def fund(call_number):
        if call_number == 3:
            set_balance(controller.db, PK, ASSET, 5000)

    client, transport = make_client(controller, before=fund, poll_interval=0)
    client.wait_for_balance(format_address(PK), ASSET, 5000)
    assert len(transport.urls) == 3
    assert client.balance(format_address(PK), ASSET) == 5000


def test_wait_for_transaction_reports_failure(controller):
    def record(call_number):
        if call_number == 2:
            store_transaction(controller.db, TX_ID, 1, False, 0)

    client, transport = make_client(controller, before=record, poll_interval=0)
    assert client.wait_for_transaction(TX_ID) is False
    assert len(transport.urls) == 2


def test_wait_for_transaction_success(controller):
    store_transaction(controller.db, TX_ID, 1, True, 0)
    client, _ = make_client(controller, poll_interval=0)
    assert client.wait_for_transaction(TX_ID) is True


def test_wait_times_out(controller):
    client, _ = make_client(controller, poll_interval=0.01, wait_timeout=0.05)
    with pytest.raises(TimeoutError):
        client.wait_for_transaction(TX_ID)