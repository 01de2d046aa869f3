"""
Calldata encoding for the relay contract functions.

Function and event names match the deployed Solidity contracts so that the
same calldata is accepted by real chains and by the simulated chain.
"""

from typing import Union

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, is_hex, to_checksum_address

SEND_DATA_SIGNATURE = "sendDataToTarget(address,bytes32,bytes32,string)"
SEND_DATA_TYPES = ["address", "bytes32", "bytes32", "string"]
GET_ADMIN_SIGNATURE = "getAdmin()"
OWNER_SIGNATURE = "owner()"

SEND_DATA_SELECTOR = function_signature_to_4byte_selector(SEND_DATA_SIGNATURE)
GET_ADMIN_SELECTOR = function_signature_to_4byte_selector(GET_ADMIN_SIGNATURE)
OWNER_SELECTOR = function_signature_to_4byte_selector(OWNER_SIGNATURE)


def to_bytes32(value: Union[bytes, str]) -> bytes:
    """
    Normalize a bytes32 argument.

    Accepts:
    - raw bytes of length <= 32 (left-padded, like bytes32(uint256(x)))
    - 0x-prefixed hex of up to 32 bytes (left-padded)
    - plain text of up to 31 UTF-8 bytes (right-padded, like
      ethers.encodeBytes32String)
    """
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
        if len(raw) > 32:
            raise ValueError(f"bytes32 value too long: {len(raw)} bytes")
        return raw.rjust(32, b"\x00")

    if value.startswith("0x") and is_hex(value):
        digits = value[2:]
        if len(digits) % 2:
            digits = "0" + digits
        return to_bytes32(bytes.fromhex(digits))

    encoded = value.encode("utf-8")
    if len(encoded) > 31:
        raise ValueError("bytes32 text must be at most 31 bytes")
    return encoded.ljust(32, b"\x00")


def bytes32_to_text(value: bytes) -> str:
    """Inverse of the text form of to_bytes32 (ethers.decodeBytes32String)."""
    return value.rstrip(b"\x00").decode("utf-8", errors="replace")


def encode_send_data(
    target: str,
    owner_param: Union[bytes, str],
    action_ref: Union[bytes, str],
    topic: str,
) -> bytes:
    """Build calldata for sendDataToTarget."""
    args = [
        to_checksum_address(target),
        to_bytes32(owner_param),
        to_bytes32(action_ref),
        topic,
    ]
    return SEND_DATA_SELECTOR + encode(SEND_DATA_TYPES, args)


def decode_send_data(payload: bytes) -> tuple[str, bytes, bytes, str]:
    """Decode sendDataToTarget arguments (calldata without the selector)."""
    target, owner_param, action_ref, topic = decode(SEND_DATA_TYPES, payload)
    return to_checksum_address(target), owner_param, action_ref, topic


def encode_get_owner() -> bytes:
    return GET_ADMIN_SELECTOR


def decode_address(output: bytes) -> str:
    (address,) = decode(["address"], output)
    return to_checksum_address(address)
