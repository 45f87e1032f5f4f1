# lifecycle_store.py
# JSON file persistence for tracked packet records.

import json
import logging
from typing import Dict, Optional

from packet_lifecycle import LifecycleError, LifecycleRecord


class LifecycleStore:
    """
    Keeps lifecycle records between runs, keyed by send transaction id.

    Uses a simple JSON file for persistence. The correlator never touches the
    store; callers load a record, poll, and put back whatever the poll returned.
    """
    def __init__(self, filepath: str):
        self.filepath = filepath
        self.records: Dict[str, LifecycleRecord] = {}

    def load(self) -> Dict[str, LifecycleRecord]:
        """Loads records from the JSON file. Starts empty if the file doesn't exist or is unreadable."""
        try:
            with open(self.filepath, 'r') as f:
                raw = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            logging.warning(f"State file not found or corrupted at '{self.filepath}'. Starting with no tracked packets.")
            raw = {}
        if not isinstance(raw, dict):
            logging.warning(f"Unexpected content in '{self.filepath}'. Starting with no tracked packets.")
            raw = {}
        packets = raw.get("packets", {})
        if not isinstance(packets, dict):
            logging.warning(f"State file not found or corrupted at '{self.filepath}'. Starting with no tracked packets.")
            packets = {}
        self.records = {}
        for tx_id, data in packets.items():
            try:
                self.records[tx_id] = LifecycleRecord.from_dict(data)
            except (LifecycleError, TypeError, AttributeError) as e:
                logging.warning(f"Dropping invalid record for {tx_id} from '{self.filepath}': {e}")
        return self.records

    def get(self, tx_id: str) -> Optional[LifecycleRecord]:
        return self.records.get(tx_id)

    def put(self, record: LifecycleRecord):
        self.records[record.send_tx_id] = record

    def save(self):
        """Saves all records to the JSON file."""
        state = {"packets": {tx_id: r.to_dict() for tx_id, r in self.records.items()}}
        try:
            with open(self.filepath, 'w') as f:
                json.dump(state, f, indent=4)
        except IOError as e:
            logging.error(f"Failed to save state to '{self.filepath}': {e}")
            raise
        logging.debug(f"State successfully saved to '{self.filepath}'.")
