"""Tests for the SQLite local store."""

import sys
import tempfile
import threading
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from sysarp.data.store import LocalStore


def _temp_path() -> str:
    return str(Path(tempfile.mkdtemp(prefix="test_store_")) / "sysarp.db")


def test_absent_key_reads_empty():
    store = LocalStore(db_path=_temp_path())
    assert store.read("sysarp_operations") == []
    assert store.get_value("sysarp_user_session") is None
    assert store.get_value("missing", default="x") == "x"
    store.close()


def test_write_replaces_whole_set():
    store = LocalStore(db_path=_temp_path())
    store.write("sysarp_drones", [{"id": "a"}, {"id": "b"}])
    store.write("sysarp_drones", [{"id": "c"}])
    assert store.read("sysarp_drones") == [{"id": "c"}]
    store.close()


def test_survives_restart():
    path = _temp_path()
    store = LocalStore(db_path=path)
    store.write("sysarp_pilots", [{"id": "p1", "email": "a@b.c"}])
    store.set_value("sysarp_admin_session", True)
    store.close()

    reopened = LocalStore(db_path=path)
    assert reopened.read("sysarp_pilots") == [{"id": "p1", "email": "a@b.c"}]
    assert reopened.get_value("sysarp_admin_session") is True
    reopened.close()


def test_remove_and_non_list_documents():
    store = LocalStore(db_path=_temp_path())
    store.set_value("droneops_catalog", {"DJI": ["Mini 3 Pro"]})
    # A document that is not a record set reads as an empty set
    assert store.read("droneops_catalog") == []
    assert store.get_value("droneops_catalog") == {"DJI": ["Mini 3 Pro"]}

    store.remove("droneops_catalog")
    assert store.get_value("droneops_catalog") is None
    store.remove("droneops_catalog")  # absent key is fine
    store.close()


def test_creates_parent_directory():
    path = Path(tempfile.mkdtemp(prefix="test_store_")) / "nested" / "dir" / "sysarp.db"
    store = LocalStore(db_path=str(path))
    assert path.parent.exists()
    assert store.db_path == str(path)
    store.close()


def test_shared_across_threads():
    store = LocalStore(db_path=_temp_path())
    store.write("sysarp_flight_logs", [])
    errors = []

    def writer(n):
        try:
            for i in range(20):
                store.set_value(f"worker_{n}", i)
                store.read("sysarp_flight_logs")
        except Exception as e:
            errors.append(e)

    workers = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for w in workers:
        w.start()
    for w in workers:
        w.join(10.0)

    assert errors == []
    assert [store.get_value(f"worker_{n}") for n in range(4)] == [19, 19, 19, 19]
    store.close()
