"""
Tests for LifecycleRecord invariants and transitions.
"""
import pytest

from packet_lifecycle import LifecycleError, LifecycleRecord, LifecycleState

TX = "0x" + "ab" * 32
T0 = 1_700_000_000


def _sent(sequence=42):
    return LifecycleRecord(send_tx_id=TX).with_send(sequence, T0, 500)


class TestTransitions:

    def test_new_record_is_pending(self):
        record = LifecycleRecord(send_tx_id=TX)
        assert record.state is LifecycleState.PENDING
        assert record.time_to_receive is None

    def test_full_lifecycle(self):
        pending = LifecycleRecord(send_tx_id=TX)
        sent = pending.with_send(42, T0, 500)
        received = sent.with_receive(T0 + 30, "0x01")
        acked = received.with_ack(T0 + 70, "0x02")

        assert pending.state is LifecycleState.PENDING
        assert sent.state is LifecycleState.SENT
        assert received.state is LifecycleState.RECEIVED
        assert acked.state is LifecycleState.ACKNOWLEDGED
        assert acked.time_to_receive == 30
        assert acked.time_to_ack == 70

    def test_sequence_cannot_change(self):
        with pytest.raises(LifecycleError, match="already recorded"):
            _sent().with_send(43, T0, 500)

    def test_stages_are_set_once(self):
        received = _sent().with_receive(T0 + 1, "0x01")
        with pytest.raises(LifecycleError):
            received.with_receive(T0 + 2, "0x03")
        acked = received.with_ack(T0 + 5, "0x02")
        with pytest.raises(LifecycleError):
            acked.with_ack(T0 + 6, "0x04")


class TestInvariants:

    def test_receive_requires_send(self):
        with pytest.raises(LifecycleError, match="before send"):
            LifecycleRecord(send_tx_id=TX).with_receive(T0, "0x01")

    def test_ack_requires_receive(self):
        with pytest.raises(LifecycleError, match="before receive"):
            _sent().with_ack(T0 + 5, "0x02")

    def test_receive_cannot_precede_send(self):
        with pytest.raises(LifecycleError, match="precedes send"):
            _sent().with_receive(T0 - 1, "0x01")

    def test_ack_cannot_precede_receive(self):
        with pytest.raises(LifecycleError, match="precedes receive"):
            _sent().with_receive(T0 + 10, "0x01").with_ack(T0 + 9, "0x02")

    def test_partial_send_fields_rejected(self):
        with pytest.raises(LifecycleError):
            LifecycleRecord(send_tx_id=TX, sequence=1)

    def test_negative_sequence_rejected(self):
        with pytest.raises(LifecycleError, match="unsigned"):
            LifecycleRecord(send_tx_id=TX).with_send(-1, T0, 500)

    def test_send_tx_required(self):
        with pytest.raises(LifecycleError):
            LifecycleRecord(send_tx_id="")


class TestSerialization:

    def test_to_dict_uses_session_keys(self):
        data = _sent().with_receive(T0 + 30, "0x01").to_dict()
        assert data == {
            "sendTxId": TX,
            "sequence": 42,
            "sendTime": T0,
            "sendBlock": 500,
            "recvTime": T0 + 30,
            "recvTxId": "0x01",
            "ackTime": None,
            "ackTxId": None,
        }
        assert LifecycleRecord.from_dict(data) == _sent().with_receive(T0 + 30, "0x01")

    def test_from_dict_validates(self):
        with pytest.raises(LifecycleError):
            LifecycleRecord.from_dict({"sendTxId": TX, "recvTime": T0, "recvTxId": "0x01"})
