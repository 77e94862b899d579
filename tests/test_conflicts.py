"""Tests for the airspace-conflict inbox."""

import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeRemote
from sysarp.alerts.conflicts import AlertState, ConflictInbox
from sysarp.config import Settings
from sysarp.data.gateway import build_gateways
from sysarp.data.store import LocalStore
from sysarp.remote.client import RemoteError

REMOTE_KEY = "k" * 32


def _store() -> LocalStore:
    return LocalStore(db_path=str(Path(tempfile.mkdtemp(prefix="test_conflicts_")) / "sysarp.db"))


def _local_inbox():
    store = _store()
    gateways = build_gateways(Settings(db_path=store.db_path), store)
    return ConflictInbox(gateways["ConflictNotification"]), gateways["ConflictNotification"]


def _remote_inbox():
    store = _store()
    remote = FakeRemote()
    settings = Settings(remote_url="https://example.test", remote_key=REMOTE_KEY, db_path=store.db_path)
    gateways = build_gateways(settings, store, remote)
    return ConflictInbox(gateways["ConflictNotification"]), remote, store


def test_retrieve_only_unacknowledged_for_pilot():
    inbox, notes = _local_inbox()
    n1 = notes.create({"target_pilot_id": "P", "message": "Overlap with op 7", "acknowledged": False})
    notes.create({"target_pilot_id": "P", "message": "Old", "acknowledged": True})
    notes.create({"target_pilot_id": "Q", "message": "Someone else", "acknowledged": False})

    assert [a["id"] for a in inbox.retrieve("P")] == [n1["id"]]
    assert inbox.state_of(n1["id"]) == AlertState.VISIBLE


def test_acknowledge_retires_alert():
    inbox, notes = _local_inbox()
    n1 = notes.create({"target_pilot_id": "P", "acknowledged": False})
    inbox.retrieve("P")

    assert inbox.acknowledge(n1["id"]) is True
    assert inbox.alerts == []
    assert inbox.state_of(n1["id"]) is None
    assert inbox.retrieve("P") == []
    assert notes.get(n1["id"])["acknowledged"] is True


def test_failed_acknowledge_restores_alert():
    inbox, remote, _ = _remote_inbox()
    remote.tables["conflict_notifications"].append(
        {"id": "n1", "target_pilot_id": "P", "acknowledged": False, "message": "Overlap"}
    )
    inbox.retrieve("P")

    remote.errors["update"] = RemoteError("permission denied", status=403)
    assert inbox.acknowledge("n1") is False
    assert [a["id"] for a in inbox.alerts] == ["n1"]
    assert inbox.state_of("n1") == AlertState.VISIBLE
    assert inbox.pending == []
    assert remote.tables["conflict_notifications"][0]["acknowledged"] is False


def test_failed_acknowledge_offline_keeps_original():
    inbox, remote, store = _remote_inbox()
    remote.tables["conflict_notifications"].append(
        {"id": "n1", "target_pilot_id": "P", "acknowledged": False, "message": "Overlap"}
    )
    inbox.retrieve("P")

    # Re-fetch is served from an empty local snapshot.
    remote.offline = True
    assert inbox.acknowledge("n1") is False
    assert store.read("sysarp_notifications") == []
    assert [a["message"] for a in inbox.alerts] == ["Overlap"]


def test_acknowledge_against_remote():
    inbox, remote, _ = _remote_inbox()
    remote.tables["conflict_notifications"].append(
        {"id": "n1", "target_pilot_id": "P", "acknowledged": False}
    )
    assert [a["id"] for a in inbox.retrieve("P")] == ["n1"]
    assert inbox.acknowledge("n1") is True
    assert inbox.retrieve("P") == []


def test_pending_state_survives_refresh():
    inbox, notes = _local_inbox()
    n1 = notes.create({"target_pilot_id": "P", "acknowledged": False})
    inbox.retrieve("P")
    inbox._states[n1["id"]] = AlertState.PENDING

    inbox.retrieve("P")
    assert inbox.pending == [n1["id"]]
    assert inbox.alerts == []


def test_failed_acknowledge_keeps_pilot_and_other_alerts():
    inbox, remote, _ = _remote_inbox()
    remote.tables["conflict_notifications"].extend([
        {"id": "n1", "target_pilot_id": "P", "acknowledged": False},
        {"id": "n2", "target_pilot_id": "P", "acknowledged": False},
        {"id": "n3", "target_pilot_id": "Q", "acknowledged": False},
    ])
    inbox.retrieve("P")

    remote.errors["update"] = RemoteError("permission denied", status=403)
    assert inbox.acknowledge("n1") is False
    assert inbox.pilot_id == "P"
    assert sorted(a["id"] for a in inbox.alerts) == ["n1", "n2"]
