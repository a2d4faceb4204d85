"""ABI helpers over eth-abi / eth-utils."""
from __future__ import annotations

from typing import Any, Sequence

import eth_abi.abi
from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import (
    decode_hex,
    encode_hex,
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
    is_address,
    to_checksum_address,
)


def selector(signature: str) -> bytes:
    """4-byte function selector, e.g. ``selector("balanceOf(address)")``."""
    return function_signature_to_4byte_selector(signature)


def topic(signature: str) -> str:
    """Event topic0 as 0x-hex."""
    return encode_hex(event_signature_to_log_topic(signature))


def address_topic(address: str) -> str:
    """Left-pad an address to a 32-byte indexed topic."""
    if not is_address(address):
        raise ValueError(f"Invalid address '{address}'")
    return "0x" + address.lower().removeprefix("0x").rjust(64, "0")


def encode_call(signature: str, arg_types: Sequence[str], args: Sequence[Any] = ()) -> str:
    """Calldata for ``signature`` with ABI-encoded ``args``, as 0x-hex."""
    normalized = [
        to_checksum_address(a) if t == "address" else a for t, a in zip(arg_types, args)
    ]
    try:
        encoded = eth_abi.abi.encode(list(arg_types), normalized)
    except EncodingError as e:
        raise ValueError(f"Cannot encode arguments for {signature}: {e}") from e
    return encode_hex(selector(signature) + encoded)


def decode_result(types: Sequence[str], data: str | bytes) -> tuple[Any, ...]:
    """Decode ABI data; malformed or short data raises ``ValueError``."""
    raw = decode_hex(data) if isinstance(data, str) else data
    if not raw:
        raise ValueError(f"Empty return data for {list(types)}")
    try:
        decoded = eth_abi.abi.decode(list(types), raw)
    except DecodingError as e:
        raise ValueError(f"Cannot decode {list(types)}: {e}") from e
    return tuple(to_checksum_address(v) if t == "address" else v for t, v in zip(types, decoded))


def decode_address_topic(value: str) -> str:
    """Checksummed address from a 32-byte indexed topic."""
    (address,) = decode_result(["address"], value)
    return address
