"""
Tests for LifecycleStore.
"""
import json

from lifecycle_store import LifecycleStore
from packet_lifecycle import LifecycleRecord

TX = "0x" + "ab" * 32


def test_save_and_load(tmp_path):
    path = tmp_path / "packets.json"
    store = LifecycleStore(str(path))
    record = LifecycleRecord(send_tx_id=TX).with_send(42, 1_700_000_000, 500)
    store.put(record)
    store.save()

    reloaded = LifecycleStore(str(path))
    assert reloaded.load() == {TX: record}
    assert reloaded.get(TX) == record
    assert json.loads(path.read_text())["packets"][TX]["sequence"] == 42


def test_missing_file_starts_empty(tmp_path):
    store = LifecycleStore(str(tmp_path / "missing.json"))
    assert store.load() == {}
    assert store.get(TX) is None


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "packets.json"
    path.write_text("{not json")
    assert LifecycleStore(str(path)).load() == {}


def test_invalid_record_is_dropped(tmp_path):
    path = tmp_path / "packets.json"
    good = LifecycleRecord(send_tx_id=TX).to_dict()
    bad = {"sendTxId": "0x01", "recvTime": 5, "recvTxId": "0x02"}
    path.write_text(json.dumps({"packets": {TX: good, "0x01": bad}}))
    assert list(LifecycleStore(str(path)).load()) == [TX]


def test_packets_not_a_mapping_starts_empty(tmp_path):
    path = tmp_path / "packets.json"
    path.write_text(json.dumps({"packets": []}))
    assert LifecycleStore(str(path)).load() == {}
