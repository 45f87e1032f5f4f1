"""
Tests for the dispatcher event decoder.
"""
import pytest
from web3 import Web3

from chain_fakes import DEST_CHANNEL, DEST_PORT, SOURCE_CHANNEL, SOURCE_PORT, make_log
from event_decoder import (
    AcknowledgementEvent,
    EventDecodeError,
    EventKind,
    RecvPacketEvent,
    SendPacketEvent,
    bytes32_to_channel_id,
    channel_id_to_bytes32,
    decode_log,
    event_topic,
)


class TestDecodeLog:

    def test_send_packet(self):
        log = make_log(EventKind.SEND_PACKET, 42, block=100, packet=b"\x01\x02", timeout=1234)
        event = decode_log(log)
        assert event == SendPacketEvent(
            source_port=SOURCE_PORT,
            source_channel=channel_id_to_bytes32(SOURCE_CHANNEL),
            packet=b"\x01\x02",
            sequence=42,
            timeout_timestamp=1234,
        )
        assert event.kind is EventKind.SEND_PACKET

    def test_recv_packet(self):
        event = decode_log(make_log(EventKind.RECV_PACKET, 7, block=5))
        assert isinstance(event, RecvPacketEvent)
        assert event.dest_port == DEST_PORT
        assert bytes32_to_channel_id(event.dest_channel) == DEST_CHANNEL
        assert event.sequence == 7

    def test_acknowledgement(self):
        event = decode_log(make_log(EventKind.ACKNOWLEDGEMENT, 2**64 - 1, block=5))
        assert isinstance(event, AcknowledgementEvent)
        assert event.sequence == 2**64 - 1

    def test_hex_string_fields_are_accepted(self):
        log = make_log(EventKind.RECV_PACKET, 9, block=5)
        log["topics"] = [Web3.to_hex(t) for t in log["topics"]]
        log["data"] = Web3.to_hex(log["data"])
        assert decode_log(log).sequence == 9

    def test_unrelated_log_is_skipped(self):
        transfer = Web3.keccak(text="Transfer(address,address,uint256)")
        log = {"topics": [transfer, b"\x00" * 32, b"\x00" * 32], "data": b"\x00" * 32}
        assert decode_log(log) is None

    def test_anonymous_log_is_skipped(self):
        assert decode_log({"topics": [], "data": b""}) is None

    def test_kinds_restrict_matching(self):
        log = make_log(EventKind.RECV_PACKET, 7, block=5)
        assert decode_log(log, (EventKind.ACKNOWLEDGEMENT,)) is None
        assert decode_log(log, (EventKind.RECV_PACKET,)) is not None

    def test_truncated_data_raises(self):
        log = make_log(EventKind.RECV_PACKET, 7, block=5)
        log["data"] = b"\x00" * 10
        with pytest.raises(EventDecodeError) as exc_info:
            decode_log(log)
        assert exc_info.value.kind is EventKind.RECV_PACKET

    def test_malformed_hex_data_raises(self):
        log = make_log(EventKind.RECV_PACKET, 7, block=5)
        log["topics"] = [Web3.to_hex(t) for t in log["topics"]]
        log["data"] = "0xzz"
        with pytest.raises(EventDecodeError):
            decode_log(log)

    def test_malformed_hex_topic0_is_not_a_match(self):
        assert decode_log({"topics": ["0xnothex"], "data": "0x"}) is None

    def test_missing_indexed_topic_raises(self):
        log = make_log(EventKind.ACKNOWLEDGEMENT, 7, block=5)
        log["topics"] = log["topics"][:2]
        with pytest.raises(EventDecodeError, match="indexed topics"):
            decode_log(log)


class TestTopics:

    def test_event_topic_is_signature_hash(self):
        assert event_topic(EventKind.RECV_PACKET) == Web3.keccak(text="RecvPacket(address,bytes32,uint64)")
        assert event_topic(EventKind.SEND_PACKET) == Web3.keccak(
            text="SendPacket(address,bytes32,bytes,uint64,uint64)")

    def test_channel_id_encoding(self):
        encoded = channel_id_to_bytes32("channel-10")
        assert encoded == b"channel-10" + b"\x00" * 22
        assert bytes32_to_channel_id(encoded) == "channel-10"

    def test_channel_id_too_long(self):
        with pytest.raises(ValueError):
            channel_id_to_bytes32("c" * 32)
