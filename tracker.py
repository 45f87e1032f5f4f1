# tracker.py
# Command line front end: follows a universal packet from send to acknowledgement.
#
#   python -m tracker track 0x<send tx hash>
#   python -m tracker status 0x<send tx hash>

import argparse
import logging
import sys
import time
from typing import Callable, List, Optional

from chain_log_source import BlockchainConnector, ChainLogSource, ChainSourceError
from lifecycle_store import LifecycleStore
from packet_correlator import ChannelEndpoint, PacketCorrelator, PollResult
from packet_lifecycle import LifecycleRecord, LifecycleState, PollStatus
from tracker_config import ConfigManager


def build_correlator(config: ConfigManager) -> PacketCorrelator:
    """Wires both chains' log sources and channel endpoints from configuration."""
    source = ChainLogSource(
        BlockchainConnector("source chain", config.SOURCE_CHAIN_RPC_URL, config.SOURCE_CHAIN_ID,
                            config.RPC_TIMEOUT_SECONDS),
        config.SOURCE_DISPATCHER_ADDRESS,
        config.LOG_CHUNK_BLOCKS,
    )
    destination = ChainLogSource(
        BlockchainConnector("destination chain", config.DESTINATION_CHAIN_RPC_URL, config.DESTINATION_CHAIN_ID,
                            config.RPC_TIMEOUT_SECONDS),
        config.DESTINATION_DISPATCHER_ADDRESS,
        config.LOG_CHUNK_BLOCKS,
    )
    return PacketCorrelator(
        source,
        destination,
        ChannelEndpoint(config.SOURCE_PORT_ADDRESS, config.SOURCE_CHANNEL_ID),
        ChannelEndpoint(config.DESTINATION_PORT_ADDRESS, config.DESTINATION_CHANNEL_ID),
        lookback_blocks=config.LOOKBACK_BLOCKS,
    )


class PacketTracker:
    """
    Orchestrates polling for tracked packets and persists their records.

    Each poll runs the operation matching the record's current state and keeps
    going while the record advances, so a single poll can take a fresh send all
    the way to acknowledged if every event is already on chain.
    """
    def __init__(self, config: ConfigManager, correlator: PacketCorrelator, store: LifecycleStore):
        self.config = config
        self.correlator = correlator
        self.store = store

    def poll_once(self, record: LifecycleRecord) -> PollResult:
        overall = None
        while True:
            state = record.state
            if state is LifecycleState.PENDING:
                record, status = self.correlator.record_send(record)
            elif state is LifecycleState.SENT:
                record, status = self.correlator.poll_receive(record)
            elif state is LifecycleState.RECEIVED:
                record, status = self.correlator.poll_ack(record)
            else:
                status = PollStatus.UNCHANGED

            if status is PollStatus.ADVANCED:
                overall = status
                continue
            if overall is None or status is PollStatus.MISMATCH:
                overall = status
            return record, overall

    def track(self, tx_id: str, max_polls: Optional[int] = None,
              sleep: Callable[[float], None] = time.sleep) -> LifecycleRecord:
        """
        Polls a packet on an interval until it is acknowledged.

        Chain faults are logged and the poll is repeated on the next interval.
        Stops early on a send mismatch or after `max_polls` polls.
        """
        tx_id = tx_id.lower()
        record = self.store.get(tx_id) or LifecycleRecord(send_tx_id=tx_id)
        logging.info(f"Tracking packet sent in {tx_id} (state: {record.state.value})...")
        polls = 0
        while record.state is not LifecycleState.ACKNOWLEDGED:
            try:
                record, status = self.poll_once(record)
            except (ChainSourceError, ConnectionError) as e:
                logging.error(f"Chain error: {e}. Retrying in {self.config.POLL_INTERVAL_SECONDS} seconds...")
                status = PollStatus.PENDING
            self.store.put(record)
            self.store.save()
            if status is PollStatus.MISMATCH:
                logging.error(f"Transaction {tx_id} did not send a packet through the dispatcher.")
                break
            polls += 1
            if record.state is LifecycleState.ACKNOWLEDGED or (max_polls is not None and polls >= max_polls):
                break
            logging.debug(f"Sleeping for {self.config.POLL_INTERVAL_SECONDS} seconds...")
            sleep(self.config.POLL_INTERVAL_SECONDS)
        return record

    def status(self, tx_id: str) -> PollResult:
        tx_id = tx_id.lower()
        record = self.store.get(tx_id) or LifecycleRecord(send_tx_id=tx_id)
        record, status = self.poll_once(record)
        self.store.put(record)
        self.store.save()
        return record, status

    def summarize(self, record: LifecycleRecord, status: Optional[PollStatus] = None) -> List[str]:
        lines = [f"Packet sent in {record.send_tx_id}: {record.state.value}"]
        if status is PollStatus.MISMATCH:
            lines.append("The send transaction emitted no SendPacket event.")
        if record.sequence is not None:
            lines.append(f"Sequence: {record.sequence}")
            lines.append(f"Send transaction: {self.config.source_tx_url(record.send_tx_id)}")
        if record.time_to_receive is not None:
            lines.append(f"Time to receive: {record.time_to_receive} seconds")
            lines.append(f"Receive transaction: {self.config.destination_tx_url(record.recv_tx_id)}")
        if record.time_to_ack is not None:
            lines.append(f"Time to ack: {record.time_to_ack} seconds")
            lines.append(f"Ack transaction: {self.config.source_tx_url(record.ack_tx_id)}")
        return lines


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tracker", description="Follow a universal packet across chains.")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    track = subparsers.add_parser("track", help="poll until the packet is acknowledged")
    track.add_argument("tx_id", help="hash of the send transaction on the source chain")
    track.add_argument("--max-polls", type=int, default=None, help="give up after this many polls")

    status = subparsers.add_parser("status", help="poll once and print the packet's progress")
    status.add_argument("tx_id", help="hash of the send transaction on the source chain")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the script."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    try:
        config = ConfigManager()
        config.validate()
        store = LifecycleStore(config.STATE_FILE_PATH)
        store.load()
        tracker = PacketTracker(config, build_correlator(config), store)
    except ValueError as e:
        logging.error(f"Configuration Error: {e}")
        return 2

    try:
        if args.command == "track":
            record = tracker.track(args.tx_id, max_polls=args.max_polls)
            status = None
        else:
            record, status = tracker.status(args.tx_id)
    except ChainSourceError as e:
        logging.error(f"Chain error: {e}")
        return 1
    except ValueError as e:
        logging.error(f"Configuration Error: {e}")
        return 2
    except KeyboardInterrupt:
        logging.info("Stopped.")
        return 130

    print("\n".join(tracker.summarize(record, status)))
    return 0 if record.state is LifecycleState.ACKNOWLEDGED or args.command == "status" else 1


if __name__ == "__main__":
    sys.exit(main())
