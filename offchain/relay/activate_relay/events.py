"""
DataSentToTarget log encoding and decoding.

Event layout (Solidity):
    event DataSentToTarget(
        address indexed from,
        address indexed to,
        bytes32 owner,
        bytes32 actref,
        string topic
    );

topics = [keccak(signature), from, to]; data = abi.encode(owner, actref, topic)
"""

from typing import Iterable, Optional

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak, to_checksum_address

from .chain import LogEntry
from .models import DataSentEvent

DATA_SENT_SIGNATURE = "DataSentToTarget(address,address,bytes32,bytes32,string)"
DATA_SENT_TOPIC = keccak(text=DATA_SENT_SIGNATURE)
DATA_SENT_DATA_TYPES = ["bytes32", "bytes32", "string"]

# owner word + actref word + string offset word
_MIN_DATA_LENGTH = 3 * 32


def _address_topic(address: str) -> bytes:
    return bytes.fromhex(to_checksum_address(address)[2:]).rjust(32, b"\x00")


def _topic_address(topic: bytes) -> str:
    return to_checksum_address("0x" + topic[-20:].hex())


def encode_data_sent(event: DataSentEvent) -> tuple[tuple[bytes, ...], bytes]:
    """Return (topics, data) for an event, as the EVM would log it."""
    topics = (
        DATA_SENT_TOPIC,
        _address_topic(event.sender),
        _address_topic(event.target),
    )
    data = encode(
        DATA_SENT_DATA_TYPES,
        [event.owner_param, event.action_ref, event.topic],
    )
    return topics, data


def decode_data_sent(
    log: LogEntry,
    contract_address: Optional[str] = None,
) -> Optional[DataSentEvent]:
    """
    Decode one log entry, or return None if it is not a DataSentToTarget log.

    When contract_address is given, logs emitted by other contracts are
    skipped as well.
    """
    if contract_address is not None and log.address != to_checksum_address(contract_address):
        return None
    if len(log.topics) != 3 or log.topics[0] != DATA_SENT_TOPIC:
        return None
    if len(log.data) < _MIN_DATA_LENGTH:
        return None

    try:
        owner_param, action_ref, topic = decode(DATA_SENT_DATA_TYPES, log.data)
    except (DecodingError, UnicodeDecodeError):
        return None

    return DataSentEvent(
        sender=_topic_address(log.topics[1]),
        target=_topic_address(log.topics[2]),
        owner_param=owner_param,
        action_ref=action_ref,
        topic=topic,
        contract_address=log.address,
        transaction_hash=log.transaction_hash,
        block_number=log.block_number,
        log_index=log.log_index,
    )


def decode_all(
    logs: Iterable[LogEntry],
    contract_address: Optional[str] = None,
) -> list[DataSentEvent]:
    """Decode every matching log, skipping the rest, preserving log order."""
    decoded = (decode_data_sent(log, contract_address) for log in logs)
    return [event for event in decoded if event is not None]
