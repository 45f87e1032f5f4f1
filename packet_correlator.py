# packet_correlator.py
# Advances packet lifecycle records by correlating events across two chains.

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from web3 import Web3

from chain_log_source import ChainLogSource
from event_decoder import (
    EventDecodeError,
    EventKind,
    address_topic,
    channel_id_to_bytes32,
    decode_log,
    event_topic,
)
from packet_lifecycle import LifecycleRecord, LifecycleState, PollStatus

PollResult = Tuple[LifecycleRecord, PollStatus]


class TrackerStateError(Exception):
    """Raised when a poll is issued for a record that is not ready for it."""
    def __init__(self, record: LifecycleRecord, operation: str):
        self.record = record
        self.operation = operation
        super().__init__(f"Cannot {operation} for {record.send_tx_id} in state {record.state.value}: "
                         f"the send has not been recorded yet")


@dataclass(frozen=True)
class ChannelEndpoint:
    """A port contract and one of its channels, e.g. the universal channel middleware on channel-10."""
    port_address: str
    channel_id: str

    def topics(self, kind: EventKind):
        return [event_topic(kind), address_topic(self.port_address), channel_id_to_bytes32(self.channel_id)]


@dataclass(frozen=True)
class _Match:
    tx_id: str
    block_number: int
    timestamp: int


class PacketCorrelator:
    """
    Tracks universal packets from a source chain to a destination chain and back.

    Packets are sent and acknowledged on the source chain and received on the
    destination chain. Each operation takes a record and returns the record to
    keep together with a PollStatus. Operations are idempotent, never retry, and
    never mutate their input; a failed call leaves the caller's record as it was.
    """
    def __init__(self, source: ChainLogSource, destination: ChainLogSource,
                 source_endpoint: ChannelEndpoint, destination_endpoint: ChannelEndpoint,
                 lookback_blocks: int = 3600):
        if lookback_blocks <= 0:
            raise ValueError("lookback_blocks must be positive")
        self.source = source
        self.destination = destination
        self.source_endpoint = source_endpoint
        self.destination_endpoint = destination_endpoint
        self.lookback_blocks = lookback_blocks

    def record_send(self, record: LifecycleRecord, tx_id: Optional[str] = None) -> PollResult:
        """
        Extracts the packet sequence and send time from the send transaction receipt.

        Args:
            record: The record to advance.
            tx_id: The send transaction; defaults to `record.send_tx_id`. A different
                   id is rejected since a record tracks exactly one send.

        Returns:
            (record, PENDING) while the receipt is not available, (record, MISMATCH)
            when the confirmed transaction emitted no SendPacket from the source
            dispatcher, (new record, ADVANCED) once the send is recorded and
            (record, UNCHANGED) if it already was.
        """
        if tx_id is not None and tx_id != record.send_tx_id:
            raise ValueError(f"Record tracks send {record.send_tx_id}, not {tx_id}")
        if record.sequence is not None:
            return record, PollStatus.UNCHANGED

        receipt = self.source.get_receipt(record.send_tx_id)
        if receipt is None:
            logging.info(f"Send transaction {record.send_tx_id} is not confirmed yet.")
            return record, PollStatus.PENDING
        if receipt.get("status") == 0:
            logging.warning(f"Send transaction {record.send_tx_id} reverted.")
            return record, PollStatus.MISMATCH

        event = None
        for log in receipt["logs"]:
            if not _same_address(log.get("address"), self.source.dispatcher_address):
                continue
            try:
                event = decode_log(log, (EventKind.SEND_PACKET,))
            except EventDecodeError as e:
                logging.warning(f"Skipping log {log.get('logIndex')} of {record.send_tx_id}: {e}")
                continue
            if event is not None:
                break
        if event is None:
            logging.warning(f"Transaction {record.send_tx_id} emitted no SendPacket event.")
            return record, PollStatus.MISMATCH

        send_time = self.source.get_block_timestamp(receipt["blockNumber"])
        updated = record.with_send(event.sequence, send_time, receipt["blockNumber"])
        logging.info(f"Packet sent from {self.source.name} with sequence {event.sequence} "
                     f"in block {receipt['blockNumber']}.")
        return updated, PollStatus.ADVANCED

    def poll_receive(self, record: LifecycleRecord) -> PollResult:
        """
        Searches the destination chain for the RecvPacket matching the record's sequence.

        Raises:
            TrackerStateError: If the send has not been recorded.
            ChainSourceError: If the destination chain cannot be queried.
        """
        if record.sequence is None:
            raise TrackerStateError(record, "poll receive")
        if record.recv_time is not None:
            return record, PollStatus.UNCHANGED

        match = self._find(self.destination, self.destination_endpoint, EventKind.RECV_PACKET,
                           record.sequence, not_before=record.send_time)
        if match is None:
            logging.info(f"Packet {record.sequence} is yet to be received on {self.destination.name}.")
            return record, PollStatus.PENDING
        logging.info(f"Packet {record.sequence} received on {self.destination.name} in {match.tx_id}.")
        return record.with_receive(match.timestamp, match.tx_id), PollStatus.ADVANCED

    def poll_ack(self, record: LifecycleRecord) -> PollResult:
        """
        Searches the source chain for the Acknowledgement matching the record's sequence.

        A record whose receive has not been observed yet may still be polled; an
        acknowledgement found then is logged but not recorded, and the result
        stays PENDING until the receive is recorded.

        Raises:
            TrackerStateError: If the send has not been recorded.
            ChainSourceError: If the source chain cannot be queried.
        """
        if record.sequence is None:
            raise TrackerStateError(record, "poll acknowledgement")
        if record.ack_time is not None:
            return record, PollStatus.UNCHANGED

        not_before = record.recv_time if record.recv_time is not None else record.send_time
        match = self._find(self.source, self.source_endpoint, EventKind.ACKNOWLEDGEMENT,
                           record.sequence, not_before=not_before, min_block=record.send_block)
        if match is None:
            logging.info(f"Packet {record.sequence} is yet to be acknowledged on {self.source.name}.")
            return record, PollStatus.PENDING
        if record.state is LifecycleState.SENT:
            logging.info(f"Packet {record.sequence} acknowledged in {match.tx_id} before its receive "
                         f"was recorded; poll receive first.")
            return record, PollStatus.PENDING
        logging.info(f"Packet {record.sequence} acknowledged on {self.source.name} in {match.tx_id}.")
        return record.with_ack(match.timestamp, match.tx_id), PollStatus.ADVANCED

    def _find(self, chain: ChainLogSource, endpoint: ChannelEndpoint, kind: EventKind, sequence: int,
              not_before: int, min_block: int = 0) -> Optional[_Match]:
        height = chain.get_block_height()
        from_block = max(0, height - self.lookback_blocks, min_block)
        logs = chain.query_logs(endpoint.topics(kind), from_block, height)
        for log in _matching_logs(logs, kind, sequence):
            timestamp = chain.get_block_timestamp(log["blockNumber"])
            if timestamp < not_before:
                logging.warning(f"Ignoring {kind.value} for sequence {sequence} in block "
                                f"{log['blockNumber']}: it predates the previous stage.")
                continue
            return _Match(_tx_hex(log["transactionHash"]), log["blockNumber"], timestamp)
        return None


def _matching_logs(logs: Iterable, kind: EventKind, sequence: int):
    for log in logs:
        try:
            event = decode_log(log, (kind,))
        except EventDecodeError as e:
            logging.warning(f"Skipping undecodable log in block {log.get('blockNumber')}: {e}")
            continue
        if event is not None and event.sequence == sequence:
            yield log


def _tx_hex(value) -> str:
    return value if isinstance(value, str) else Web3.to_hex(value)


def _same_address(a: Optional[str], b: str) -> bool:
    return a is not None and a.lower() == b.lower()
