"""Key layout and binary records for token state kept in a key-value store."""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Optional

from .encoding import ID_LEN, PUBLIC_KEY_LEN, format_address, id_to_string

UINT64_MAX = (1 << 64) - 1

_TX_PREFIX = 0x0
_BALANCE_PREFIX = 0x0
_ASSET_PREFIX = 0x1
_ORDER_PREFIX = 0x2
_LOAN_PREFIX = 0x3
_HEIGHT_PREFIX = 0x4
_INCOMING_WARP_PREFIX = 0x5
_OUTGOING_WARP_PREFIX = 0x6

_FAILURE_BYTE = 0x0
_SUCCESS_BYTE = 0x1

_U64 = struct.Struct(">Q")
_TX_VALUE = struct.Struct(">qBQ")
_ORDER_VALUE = struct.Struct(f">{ID_LEN}sQ{ID_LEN}sQQ{PUBLIC_KEY_LEN}s")

ReadState = Callable[[Sequence[bytes]], Sequence[Optional[bytes]]]
"""Reads several keys at once; yields None where a key is absent."""


class NotFoundError(LookupError):
    """Raised by a database when a key is absent."""


class InvalidBalanceError(ValueError):
    """Raised when a balance or loan would overflow or go negative."""


class Database(ABC):
    """Mutable key-value state."""

    @abstractmethod
    def get_value(self, key: bytes) -> bytes:
        """Return the value for key or raise NotFoundError."""

    @abstractmethod
    def insert(self, key: bytes, value: bytes) -> None:
        """Store value under key."""

    @abstractmethod
    def remove(self, key: bytes) -> None:
        """Delete key if present."""


class MemoryDatabase(Database):
    """Dictionary-backed database."""

    def __init__(self) -> None:
        self._data: dict[bytes, bytes] = {}

    def get_value(self, key: bytes) -> bytes:
        try:
            return self._data[bytes(key)]
        except KeyError:
            raise NotFoundError(bytes(key).hex()) from None

    def insert(self, key: bytes, value: bytes) -> None:
        self._data[bytes(key)] = bytes(value)

    def remove(self, key: bytes) -> None:
        self._data.pop(bytes(key), None)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


@dataclass(frozen=True)
class TransactionRecord:
    timestamp: int
    success: bool
    units: int


@dataclass(frozen=True)
class AssetRecord:
    metadata: bytes
    supply: int
    owner: bytes
    warp: bool


@dataclass(frozen=True)
class OrderRecord:
    in_asset: bytes
    in_tick: int
    out_asset: bytes
    out_tick: int
    remaining: int
    owner: bytes


def _id(value: bytes, what: str = "id") -> bytes:
    value = bytes(value)
    if len(value) != ID_LEN:
        raise ValueError(f"{what} must be {ID_LEN} bytes, got {len(value)}")
    return value


def _public_key(value: bytes) -> bytes:
    value = bytes(value)
    if len(value) != PUBLIC_KEY_LEN:
        raise ValueError(f"public key must be {PUBLIC_KEY_LEN} bytes, got {len(value)}")
    return value


def _uint64(value: int, what: str) -> int:
    if not 0 <= value <= UINT64_MAX:
        raise ValueError(f"{what} must fit in an unsigned 64-bit integer")
    return value


def _read_optional(db: Database, key: bytes) -> Optional[bytes]:
    try:
        return db.get_value(key)
    except NotFoundError:
        return None


def _read_one(read_state: ReadState, key: bytes) -> Optional[bytes]:
    return read_state([key])[0]


def _decode_u64(value: Optional[bytes]) -> int:
    if value is None:
        return 0
    return _U64.unpack_from(value)[0]


# Transactions: [txPrefix] + [txID] => timestamp|success|units


def prefix_tx_key(tx_id: bytes) -> bytes:
    return bytes([_TX_PREFIX]) + _id(tx_id, "transaction id")


def store_transaction(db: Database, tx_id: bytes, timestamp: int, success: bool, units: int) -> None:
    value = _TX_VALUE.pack(
        timestamp, _SUCCESS_BYTE if success else _FAILURE_BYTE, _uint64(units, "units")
    )
    db.insert(prefix_tx_key(tx_id), value)


def get_transaction(db: Database, tx_id: bytes) -> Optional[TransactionRecord]:
    """Return the stored transaction outcome, or None if it is unknown."""
    value = _read_optional(db, prefix_tx_key(tx_id))
    if value is None:
        return None
    timestamp, status, units = _TX_VALUE.unpack_from(value)
    return TransactionRecord(timestamp, status != _FAILURE_BYTE, units)


# Balances: [balancePrefix] + [owner] + [asset] => balance


def prefix_balance_key(public_key: bytes, asset: bytes) -> bytes:
    return bytes([_BALANCE_PREFIX]) + _public_key(public_key) + _id(asset, "asset")


def get_balance(db: Database, public_key: bytes, asset: bytes) -> int:
    """Return the balance, which is 0 for an account that does not exist."""
    return _decode_u64(_read_optional(db, prefix_balance_key(public_key, asset)))


def get_balance_from_state(read_state: ReadState, public_key: bytes, asset: bytes) -> int:
    return _decode_u64(_read_one(read_state, prefix_balance_key(public_key, asset)))


def set_balance(db: Database, public_key: bytes, asset: bytes, balance: int) -> None:
    db.insert(prefix_balance_key(public_key, asset), _U64.pack(_uint64(balance, "balance")))


def delete_balance(db: Database, public_key: bytes, asset: bytes) -> None:
    db.remove(prefix_balance_key(public_key, asset))


def add_balance(db: Database, public_key: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(public_key, asset)
    balance = _decode_u64(_read_optional(db, key))
    new_balance = balance + amount
    if amount < 0 or new_balance > UINT64_MAX:
        raise InvalidBalanceError(
            f"invalid balance: could not add balance (asset={id_to_string(asset)}, "
            f"bal={balance}, addr={format_address(public_key)}, amount={amount})"
        )
    db.insert(key, _U64.pack(new_balance))


def sub_balance(db: Database, public_key: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(public_key, asset)
    balance = _decode_u64(_read_optional(db, key))
    new_balance = balance - amount
    if amount < 0 or new_balance < 0:
        raise InvalidBalanceError(
            f"invalid balance: could not subtract balance (asset={id_to_string(asset)}, "
            f"bal={balance}, addr={format_address(public_key)}, amount={amount})"
        )
    if new_balance == 0:
        # An empty balance is removed rather than stored as zero.
        db.remove(key)
    else:
        db.insert(key, _U64.pack(new_balance))


# Assets: [assetPrefix] + [asset] => metadataLen|metadata|supply|owner|warp


def prefix_asset_key(asset: bytes) -> bytes:
    return bytes([_ASSET_PREFIX]) + _id(asset, "asset")


def _decode_asset(value: Optional[bytes]) -> Optional[AssetRecord]:
    if value is None:
        return None
    (metadata_len,) = struct.unpack_from(">H", value)
    offset = 2
    metadata = bytes(value[offset : offset + metadata_len])
    offset += metadata_len
    (supply,) = _U64.unpack_from(value, offset)
    offset += _U64.size
    owner = bytes(value[offset : offset + PUBLIC_KEY_LEN])
    offset += PUBLIC_KEY_LEN
    if len(owner) != PUBLIC_KEY_LEN or len(value) <= offset:
        raise ValueError("asset record is truncated")
    return AssetRecord(metadata, supply, owner, value[offset] == 0x1)


def get_asset(db: Database, asset: bytes) -> Optional[AssetRecord]:
    return _decode_asset(_read_optional(db, prefix_asset_key(asset)))


def get_asset_from_state(read_state: ReadState, asset: bytes) -> Optional[AssetRecord]:
    return _decode_asset(_read_one(read_state, prefix_asset_key(asset)))


def set_asset(
    db: Database,
    asset: bytes,
    metadata: bytes,
    supply: int,
    owner: bytes,
    warp: bool,
) -> None:
    metadata = bytes(metadata)
    if len(metadata) > 0xFFFF:
        raise ValueError("metadata is too long")
    value = b"".join(
        (
            struct.pack(">H", len(metadata)),
            metadata,
            _U64.pack(_uint64(supply, "supply")),
            _public_key(owner),
            bytes([0x1 if warp else 0x0]),
        )
    )
    db.insert(prefix_asset_key(asset), value)


def delete_asset(db: Database, asset: bytes) -> None:
    db.remove(prefix_asset_key(asset))


# Orders: [orderPrefix] + [txID] => in|inTick|out|outTick|remaining|owner


def prefix_order_key(tx_id: bytes) -> bytes:
    return bytes([_ORDER_PREFIX]) + _id(tx_id, "order id")


def set_order(
    db: Database,
    tx_id: bytes,
    in_asset: bytes,
    in_tick: int,
    out_asset: bytes,
    out_tick: int,
    supply: int,
    owner: bytes,
) -> None:
    value = _ORDER_VALUE.pack(
        _id(in_asset, "in asset"),
        _uint64(in_tick, "in tick"),
        _id(out_asset, "out asset"),
        _uint64(out_tick, "out tick"),
        _uint64(supply, "supply"),
        _public_key(owner),
    )
    db.insert(prefix_order_key(tx_id), value)


def get_order(db: Database, order: bytes) -> Optional[OrderRecord]:
    value = _read_optional(db, prefix_order_key(order))
    if value is None:
        return None
    return OrderRecord(*_ORDER_VALUE.unpack_from(value))


def delete_order(db: Database, order: bytes) -> None:
    db.remove(prefix_order_key(order))


# Loans: [loanPrefix] + [asset] + [destination] => amount


def prefix_loan_key(asset: bytes, destination: bytes) -> bytes:
    return bytes([_LOAN_PREFIX]) + _id(asset, "asset") + _id(destination, "destination")


def get_loan(db: Database, asset: bytes, destination: bytes) -> int:
    return _decode_u64(_read_optional(db, prefix_loan_key(asset, destination)))


def get_loan_from_state(read_state: ReadState, asset: bytes, destination: bytes) -> int:
    return _decode_u64(_read_one(read_state, prefix_loan_key(asset, destination)))


def set_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    db.insert(prefix_loan_key(asset, destination), _U64.pack(_uint64(amount, "amount")))


def add_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    new_loan = loan + amount
    if amount < 0 or new_loan > UINT64_MAX:
        raise InvalidBalanceError(
            f"invalid balance: could not add loan (asset={id_to_string(asset)}, "
            f"destination={id_to_string(destination)}, amount={amount})"
        )
    set_loan(db, asset, destination, new_loan)


def sub_loan(db: Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    new_loan = loan - amount
    if amount < 0 or new_loan < 0:
        raise InvalidBalanceError(
            f"invalid balance: could not subtract loan (asset={id_to_string(asset)}, "
            f"destination={id_to_string(destination)}, amount={amount})"
        )
    if new_loan == 0:
        db.remove(prefix_loan_key(asset, destination))
    else:
        set_loan(db, asset, destination, new_loan)


def height_key() -> bytes:
    return bytes([_HEIGHT_PREFIX])


def incoming_warp_key_prefix(source_chain_id: bytes, msg_id: bytes) -> bytes:
    return (
        bytes([_INCOMING_WARP_PREFIX])
        + _id(source_chain_id, "source chain id")
        + _id(msg_id, "message id")
    )


def outgoing_warp_key_prefix(tx_id: bytes) -> bytes:
    return bytes([_OUTGOING_WARP_PREFIX]) + _id(tx_id, "transaction id")