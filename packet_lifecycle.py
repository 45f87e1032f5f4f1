# packet_lifecycle.py
# The lifecycle record of a single universal packet.

from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, Optional


class LifecycleState(Enum):
    PENDING = "pending"
    SENT = "sent"
    RECEIVED = "received"
    ACKNOWLEDGED = "acknowledged"


class PollStatus(Enum):
    """Outcome of a single poll operation."""
    PENDING = "pending"      # nothing observed yet, poll again later
    ADVANCED = "advanced"    # the record moved to a later state
    UNCHANGED = "unchanged"  # the stage was already recorded
    MISMATCH = "mismatch"    # confirmed send transaction emitted no SendPacket


class LifecycleError(Exception):
    """Raised when a record would violate the lifecycle invariants."""
    def __init__(self, send_tx_id: str, reason: str):
        self.send_tx_id = send_tx_id
        self.reason = reason
        super().__init__(f"Invalid lifecycle for {send_tx_id}: {reason}")


# Persisted key names, matching the session state the tracker replaced.
_JSON_KEYS = {
    "send_tx_id": "sendTxId",
    "sequence": "sequence",
    "send_time": "sendTime",
    "send_block": "sendBlock",
    "recv_time": "recvTime",
    "recv_tx_id": "recvTxId",
    "ack_time": "ackTime",
    "ack_tx_id": "ackTxId",
}


@dataclass(frozen=True)
class LifecycleRecord:
    """
    Everything known about one tracked packet.

    Records are immutable: each transition returns a new record with all fields
    of the stage set together, and refuses to touch a stage already recorded.
    Times are unix timestamps taken from the block that carried the event.
    """
    send_tx_id: str
    sequence: Optional[int] = None
    send_time: Optional[int] = None
    send_block: Optional[int] = None
    recv_time: Optional[int] = None
    recv_tx_id: Optional[str] = None
    ack_time: Optional[int] = None
    ack_tx_id: Optional[str] = None

    def __post_init__(self):
        if not self.send_tx_id:
            self._fail("send transaction id is required")
        sent = (self.sequence, self.send_time, self.send_block)
        if any(v is not None for v in sent) and any(v is None for v in sent):
            self._fail("sequence, send time and send block must be set together")
        if (self.recv_time is None) != (self.recv_tx_id is None):
            self._fail("receive time and receive transaction must be set together")
        if (self.ack_time is None) != (self.ack_tx_id is None):
            self._fail("acknowledgement time and transaction must be set together")
        if self.sequence is not None and self.sequence < 0:
            self._fail(f"sequence must be unsigned, got {self.sequence}")

        if self.recv_time is not None:
            if self.send_time is None:
                self._fail("receive recorded before send")
            if self.recv_time < self.send_time:
                self._fail(f"receive time {self.recv_time} precedes send time {self.send_time}")
        if self.ack_time is not None:
            if self.recv_time is None:
                self._fail("acknowledgement recorded before receive")
            if self.ack_time < self.recv_time:
                self._fail(f"acknowledgement time {self.ack_time} precedes receive time {self.recv_time}")

    def _fail(self, reason: str):
        raise LifecycleError(self.send_tx_id, reason)

    @property
    def state(self) -> LifecycleState:
        if self.ack_time is not None:
            return LifecycleState.ACKNOWLEDGED
        if self.recv_time is not None:
            return LifecycleState.RECEIVED
        if self.sequence is not None:
            return LifecycleState.SENT
        return LifecycleState.PENDING

    @property
    def time_to_receive(self) -> Optional[int]:
        """Seconds between the send and receive blocks."""
        if self.recv_time is None:
            return None
        return self.recv_time - self.send_time

    @property
    def time_to_ack(self) -> Optional[int]:
        """Seconds between the send block and the acknowledgement block."""
        if self.ack_time is None:
            return None
        return self.ack_time - self.send_time

    def with_send(self, sequence: int, send_time: int, send_block: int) -> "LifecycleRecord":
        if self.sequence is not None:
            self._fail(f"send already recorded with sequence {self.sequence}")
        return replace(self, sequence=sequence, send_time=send_time, send_block=send_block)

    def with_receive(self, recv_time: int, recv_tx_id: str) -> "LifecycleRecord":
        if self.recv_time is not None:
            self._fail("receive already recorded")
        return replace(self, recv_time=recv_time, recv_tx_id=recv_tx_id)

    def with_ack(self, ack_time: int, ack_tx_id: str) -> "LifecycleRecord":
        if self.ack_time is not None:
            self._fail("acknowledgement already recorded")
        return replace(self, ack_time=ack_time, ack_tx_id=ack_tx_id)

    def to_dict(self) -> Dict[str, Any]:
        return {_JSON_KEYS[k]: v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LifecycleRecord":
        kwargs = {f.name: data.get(_JSON_KEYS[f.name]) for f in fields(cls)}
        return cls(**kwargs)
