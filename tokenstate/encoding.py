"""Text encodings for identifiers (checksummed base58) and addresses (bech32)."""

from __future__ import annotations

import hashlib

HRP = "token"
ID_LEN = 32
PUBLIC_KEY_LEN = 32

_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BECH32_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_BECH32_MAX_LEN = 90
_BECH32_CHECKSUM_LEN = 6

_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_CHECKSUM_LEN = 4


class EncodingError(ValueError):
    """Raised when an address or identifier string cannot be decoded."""


def _require_length(value: bytes, length: int, what: str) -> bytes:
    value = bytes(value)
    if len(value) != length:
        raise ValueError(f"{what} must be {length} bytes, got {len(value)}")
    return value


def _polymod(values: list[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ value
        for bit, generator in enumerate(_BECH32_GENERATORS):
            if (top >> bit) & 1:
                chk ^= generator
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _convert_bits(data, from_bits: int, to_bits: int, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    out: list[int] = []
    max_value = (1 << to_bits) - 1
    max_acc = (1 << (from_bits + to_bits - 1)) - 1
    for value in data:
        if value >> from_bits:
            raise EncodingError("invalid data range")
        acc = ((acc << from_bits) | value) & max_acc
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & max_value)
    if pad:
        if bits:
            out.append((acc << (to_bits - bits)) & max_value)
    elif bits >= from_bits or (acc << (to_bits - bits)) & max_value:
        raise EncodingError("invalid padding")
    return out


def _bech32_encode(hrp: str, data: list[int]) -> str:
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * _BECH32_CHECKSUM_LEN) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(_BECH32_CHECKSUM_LEN)]
    return hrp + "1" + "".join(_BECH32_CHARSET[d] for d in data + checksum)


def _bech32_decode(text: str) -> tuple[str, list[int]]:
    if len(text) > _BECH32_MAX_LEN:
        raise EncodingError("bech32 string too long")
    if any(ord(c) < 33 or ord(c) > 126 for c in text):
        raise EncodingError("invalid character in bech32 string")
    if text.lower() != text and text.upper() != text:
        raise EncodingError("mixed case in bech32 string")
    text = text.lower()
    separator = text.rfind("1")
    if separator < 1 or separator + _BECH32_CHECKSUM_LEN + 1 > len(text):
        raise EncodingError("invalid bech32 separator position")
    hrp = text[:separator]
    data = [_BECH32_CHARSET.find(c) for c in text[separator + 1 :]]
    if -1 in data:
        raise EncodingError("invalid character in bech32 data")
    if _polymod(_hrp_expand(hrp) + data) != 1:
        raise EncodingError("invalid bech32 checksum")
    return hrp, data[:-_BECH32_CHECKSUM_LEN]


def format_address(public_key: bytes, hrp: str = HRP) -> str:
    """Render a 32-byte public key as a bech32 address."""
    key = _require_length(public_key, PUBLIC_KEY_LEN, "public key")
    return _bech32_encode(hrp, _convert_bits(key, 8, 5, True))


def parse_address(text: str, hrp: str = HRP) -> bytes:
    """Decode a bech32 address into its 32-byte public key."""
    found_hrp, data = _bech32_decode(text)
    if found_hrp != hrp:
        raise EncodingError(f"expected hrp {hrp!r} but found {found_hrp!r}")
    key = bytes(_convert_bits(data, 5, 8, False))
    if len(key) != PUBLIC_KEY_LEN:
        raise EncodingError("invalid address length")
    return key


def _base58_encode(data: bytes) -> str:
    leading = len(data) - len(data.lstrip(b"\x00"))
    number = int.from_bytes(data, "big")
    digits = []
    while number:
        number, rem = divmod(number, 58)
        digits.append(_BASE58_ALPHABET[rem])
    return "1" * leading + "".join(reversed(digits))


def _base58_decode(text: str) -> bytes:
    number = 0
    for char in text:
        index = _BASE58_ALPHABET.find(char)
        if index < 0:
            raise EncodingError(f"invalid base58 character {char!r}")
        number = number * 58 + index
    leading = len(text) - len(text.lstrip("1"))
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    return b"\x00" * leading + body


def id_to_string(value: bytes) -> str:
    """Render a 32-byte identifier as checksummed base58."""
    raw = _require_length(value, ID_LEN, "id")
    return _base58_encode(raw + hashlib.sha256(raw).digest()[-_CHECKSUM_LEN:])


def id_from_string(text: str) -> bytes:
    """Decode a checksummed base58 identifier into 32 bytes."""
    decoded = _base58_decode(text)
    if len(decoded) < _CHECKSUM_LEN:
        raise EncodingError("input string is smaller than the checksum size")
    raw, checksum = decoded[:-_CHECKSUM_LEN], decoded[-_CHECKSUM_LEN:]
    if hashlib.sha256(raw).digest()[-_CHECKSUM_LEN:] != checksum:
        raise EncodingError("invalid input checksum")
    if len(raw) != ID_LEN:
        raise EncodingError(f"id must be {ID_LEN} bytes, got {len(raw)}")
    return raw