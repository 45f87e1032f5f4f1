# event_decoder.py
# Decodes raw dispatcher logs into typed packet events.

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

# The subset of the dispatcher ABI the tracker observes. Field order and the
# indexed flags must match the deployed contract, since indexed fields become
# the filterable topics.
DISPATCHER_EVENTS_ABI: List[Dict[str, Any]] = json.loads("""
[
    {
        "anonymous": false,
        "inputs": [
            {"indexed": true, "internalType": "address", "name": "sourcePortAddress", "type": "address"},
            {"indexed": true, "internalType": "bytes32", "name": "sourceChannelId", "type": "bytes32"},
            {"indexed": false, "internalType": "bytes", "name": "packet", "type": "bytes"},
            {"indexed": false, "internalType": "uint64", "name": "sequence", "type": "uint64"},
            {"indexed": false, "internalType": "uint64", "name": "timeoutTimestamp", "type": "uint64"}
        ],
        "name": "SendPacket",
        "type": "event"
    },
    {
        "anonymous": false,
        "inputs": [
            {"indexed": true, "internalType": "address", "name": "destPortAddress", "type": "address"},
            {"indexed": true, "internalType": "bytes32", "name": "destChannelId", "type": "bytes32"},
            {"indexed": false, "internalType": "uint64", "name": "sequence", "type": "uint64"}
        ],
        "name": "RecvPacket",
        "type": "event"
    },
    {
        "anonymous": false,
        "inputs": [
            {"indexed": true, "internalType": "address", "name": "sourcePortAddress", "type": "address"},
            {"indexed": true, "internalType": "bytes32", "name": "sourceChannelId", "type": "bytes32"},
            {"indexed": false, "internalType": "uint64", "name": "sequence", "type": "uint64"}
        ],
        "name": "Acknowledgement",
        "type": "event"
    }
]
""")


class EventKind(Enum):
    SEND_PACKET = "SendPacket"
    RECV_PACKET = "RecvPacket"
    ACKNOWLEDGEMENT = "Acknowledgement"


ALL_KINDS: Tuple[EventKind, ...] = tuple(EventKind)


class EventDecodeError(Exception):
    """Raised when a log carries a known event signature but its payload cannot be decoded."""
    def __init__(self, kind: EventKind, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"Malformed {kind.value} log: {reason}")


@dataclass(frozen=True)
class SendPacketEvent:
    source_port: str
    source_channel: bytes
    packet: bytes
    sequence: int
    timeout_timestamp: int
    kind = EventKind.SEND_PACKET


@dataclass(frozen=True)
class RecvPacketEvent:
    dest_port: str
    dest_channel: bytes
    sequence: int
    kind = EventKind.RECV_PACKET


@dataclass(frozen=True)
class AcknowledgementEvent:
    source_port: str
    source_channel: bytes
    sequence: int
    kind = EventKind.ACKNOWLEDGEMENT


DecodedEvent = Union[SendPacketEvent, RecvPacketEvent, AcknowledgementEvent]


def _abi_for(kind: EventKind) -> Dict[str, Any]:
    return next(e for e in DISPATCHER_EVENTS_ABI if e["name"] == kind.value)


def _signature(kind: EventKind) -> str:
    types = [inp["type"] for inp in _abi_for(kind)["inputs"]]
    return f"{kind.value}({','.join(types)})"


def _split_inputs(kind: EventKind) -> Tuple[List[str], List[str]]:
    inputs = _abi_for(kind)["inputs"]
    indexed = [inp["type"] for inp in inputs if inp["indexed"]]
    payload = [inp["type"] for inp in inputs if not inp["indexed"]]
    return indexed, payload


_TOPICS: Dict[EventKind, bytes] = {kind: bytes(Web3.keccak(text=_signature(kind))) for kind in EventKind}
_INPUT_TYPES: Dict[EventKind, Tuple[List[str], List[str]]] = {kind: _split_inputs(kind) for kind in EventKind}


def event_topic(kind: EventKind) -> bytes:
    """Returns topic0 (keccak of the canonical signature) for an event kind."""
    return _TOPICS[kind]


def address_topic(address: str) -> bytes:
    """Encodes an address the way it appears as an indexed topic."""
    return encode(["address"], [Web3.to_checksum_address(address)])


def channel_id_to_bytes32(name: str) -> bytes:
    """
    Encodes a channel name such as "channel-10" into its bytes32 form.

    The name is UTF-8 encoded and right-padded with zero bytes. One byte is kept
    for the terminating zero, so names longer than 31 bytes are rejected.
    """
    raw = name.encode("utf-8")
    if len(raw) > 31:
        raise ValueError(f"Channel name too long for bytes32: {name!r}")
    return raw.ljust(32, b"\x00")


def bytes32_to_channel_id(value: bytes) -> str:
    return bytes(value).rstrip(b"\x00").decode("utf-8", errors="replace")


def to_bytes(value: Union[str, bytes]) -> bytes:
    """Normalizes hex strings and HexBytes-like values to plain bytes."""
    if isinstance(value, str):
        return bytes(Web3.to_bytes(hexstr=value))
    return bytes(value)


def _match_kind(topic0: bytes, kinds: Iterable[EventKind]) -> Optional[EventKind]:
    for kind in kinds:
        if _TOPICS[kind] == topic0:
            return kind
    return None


def decode_log(log: Mapping[str, Any], kinds: Iterable[EventKind] = ALL_KINDS) -> Optional[DecodedEvent]:
    """
    Decodes a raw log into a packet event.

    Args:
        log: A log entry as returned by `eth_getLogs` or found in a receipt. Only
             its `topics` and `data` are read.
        kinds: The event kinds to try. Logs of other kinds are treated as
               unrelated.

    Returns:
        The decoded event, or None if the log is not one of the requested kinds.

    Raises:
        EventDecodeError: If the signature matches but the topics or data do not
                          decode under that event's schema.
    """
    raw_topics = log.get("topics") or []
    if not raw_topics:
        return None
    try:
        topic0 = to_bytes(raw_topics[0])
    except ValueError:
        return None
    kind = _match_kind(topic0, kinds)
    if kind is None:
        return None

    indexed_types, payload_types = _INPUT_TYPES[kind]
    if len(raw_topics) != len(indexed_types) + 1:
        raise EventDecodeError(kind, f"expected {len(indexed_types)} indexed topics, got {len(raw_topics) - 1}")
    try:
        topics = [to_bytes(t) for t in raw_topics[1:]]
        indexed = [decode([t], topic)[0] for t, topic in zip(indexed_types, topics)]
        payload = decode(payload_types, to_bytes(log.get("data") or b""))
    except (DecodingError, ValueError) as e:
        raise EventDecodeError(kind, str(e)) from e

    port = Web3.to_checksum_address(indexed[0])
    channel = bytes(indexed[1])
    if kind is EventKind.SEND_PACKET:
        packet, sequence, timeout_timestamp = payload
        return SendPacketEvent(port, channel, bytes(packet), sequence, timeout_timestamp)
    if kind is EventKind.RECV_PACKET:
        return RecvPacketEvent(port, channel, payload[0])
    return AcknowledgementEvent(port, channel, payload[0])
