# tokenstate

Storage layout and JSON-RPC access for a token ledger: balances, assets,
orders, loans and transaction results kept in a flat key-value store.
The package has no third-party dependencies.

## Install

```
pip install .
pip install ".[test]"   # with pytest
```

## Addresses and ids

`tokenstate.encoding` converts between bytes and text:

- `format_address(public_key, hrp="token")` renders a 32-byte public key as
  a bech32 address; `parse_address(text, hrp="token")` turns it back into
  32 bytes.
- `id_to_string(value)` renders a 32-byte id as base58 with a 4-byte
  SHA-256 checksum; `id_from_string(text)` decodes and checks it.

Undecodable text raises `EncodingError` (a `ValueError`). Passing bytes of
the wrong length to the formatting functions raises `ValueError`.

```python
from tokenstate.encoding import format_address, parse_address, id_to_string, id_from_string

address = format_address(bytes(32))
assert parse_address(address) == bytes(32)
assert id_from_string(id_to_string(bytes(32))) == bytes(32)
```

## Storage

`tokenstate.storage` defines the key layout and the binary value encodings
on top of any `Database` (an abstract class with `get_value`, `insert` and
`remove`; `get_value` raises `NotFoundError` for an absent key).
`MemoryDatabase` is a dictionary-backed implementation.

Every key starts with a one-byte prefix:

| prefix | record        | key body                     | helper                     |
|--------|---------------|------------------------------|----------------------------|
| 0x0    | balance       | public key + asset id        | `prefix_balance_key`       |
| 0x1    | asset         | asset id                     | `prefix_asset_key`         |
| 0x2    | order         | transaction id               | `prefix_order_key`         |
| 0x3    | loan          | asset id + destination id    | `prefix_loan_key`          |
| 0x4    | height        | (none)                       | `height_key`               |
| 0x5    | incoming warp | source chain id + message id | `incoming_warp_key_prefix` |
| 0x6    | outgoing warp | transaction id               | `outgoing_warp_key_prefix` |

Transaction results (`prefix_tx_key`) also use prefix 0x0, so they belong
in a database of their own rather than alongside balances.

```python
from tokenstate.storage import (
    MemoryDatabase, set_balance, add_balance, sub_balance, get_balance,
    InvalidBalanceError,
)

db = MemoryDatabase()
owner = bytes(32)
asset = bytes(32)

set_balance(db, owner, asset, 100)
add_balance(db, owner, asset, 50)
sub_balance(db, owner, asset, 150)   # a zero balance removes the record
assert get_balance(db, owner, asset) == 0
assert len(db) == 0

try:
    sub_balance(db, owner, asset, 1)
except InvalidBalanceError as err:
    print(err)
```

Balances and loans are unsigned 64-bit values. An addition that overflows,
a subtraction that underflows, or a negative amount raises
`InvalidBalanceError`. `sub_loan` likewise removes a loan that reaches zero.

Reads of missing records never raise: `get_balance` and `get_loan` return
0, and `get_transaction`, `get_asset` and `get_order` return `None`.
Otherwise they return frozen dataclasses:

- `store_transaction` / `get_transaction` → `TransactionRecord(timestamp, success, units)`
- `set_asset` / `get_asset` / `delete_asset` → `AssetRecord(metadata, supply, owner, warp)`
- `set_order` / `get_order` / `delete_order` →
  `OrderRecord(in_asset, in_tick, out_asset, out_tick, remaining, owner)`

`get_balance_from_state`, `get_asset_from_state` and `get_loan_from_state`
read through a batch function that takes a list of keys and returns a list
of values, with `None` for absent keys.

## JSON-RPC server

`tokenstate.rpc_server.JSONRPCServer` wraps a `Controller` — an abstract
class you implement with `genesis`, `get_transaction`,
`get_asset_from_state`, `get_balance_from_state`, `orders` and
`get_loan_from_state`. It serves six methods, named `tokenvm.<method>` by
default (the `namespace` argument changes the prefix):

| method    | params                   | result                                  |
|-----------|--------------------------|-----------------------------------------|
| `genesis` | —                        | `{"genesis": ...}`                      |
| `tx`      | `txId`                   | `{"timestamp", "success", "units"}`     |
| `asset`   | `asset`                  | `{"metadata" (base64), "supply", "owner", "warp"}` |
| `balance` | `address`, `asset`       | `{"amount"}`                            |
| `orders`  | `pair`                   | `{"orders": [...]}` (at most 128)       |
| `loan`    | `asset`, `destination`   | `{"amount"}`                            |

Ids in parameters are checksummed base58 strings; a missing id means 32
zero bytes. An unknown transaction or asset is reported with the messages
`tx not found` and `asset not found` (`TxNotFoundError`,
`AssetNotFoundError` when called directly).

The server can be used three ways: call its methods directly, pass a raw
request body to `handle(body)` and get the response body back, or mount it
as a WSGI application (it accepts POST only and answers others with 405).
Its path constant is `JSONRPC_ENDPOINT` (`/tokenapi`).

## JSON-RPC client

`tokenstate.rpc_client.JSONRPCClient` calls those methods at
`<uri>/tokenapi` over HTTP, or through any `transport(url, body) -> bytes`
callable you supply.

```python
from tokenstate.encoding import format_address
from tokenstate.rpc_client import JSONRPCClient

chain_id = bytes(32)
asset_id = bytes(32)
tx_id = bytes(32)
address = format_address(bytes(32))

client = JSONRPCClient("http://localhost:9650/ext/bc/mychain", chain_id, wait_timeout=60)
status = client.tx(tx_id)              # TxStatus(success, timestamp), or None if unknown
info = client.asset(asset_id)          # AssetInfo(metadata, supply, owner, warp), or None
amount = client.balance(address, asset_id)
orders = client.orders("pair")
loaned = client.loan(asset_id, chain_id)
client.wait_for_balance(address, asset_id, 1_000)
succeeded = client.wait_for_transaction(tx_id)
```

`genesis()` is fetched once and then cached. The wait methods poll every
`poll_interval` seconds; with `wait_timeout` set they raise `TimeoutError`
when it runs out, otherwise they wait indefinitely. Error replies and
connection failures raise `RPCError`, which carries `message` and `code`.

## What this package does not do

It holds no ledger logic of its own: it does not build, sign or execute
transactions, match orders or maintain an order book, and it keeps no
persistent database — `MemoryDatabase` lives in memory only. The data the
server reports comes entirely from the `Controller` you provide. There is
no command-line program and no bundled HTTP server; run `JSONRPCServer`
under any WSGI server.