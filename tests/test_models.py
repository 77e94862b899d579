"""Tests for entity models: ids, dict conversion, registry and seeds."""

import sys
import threading
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from sysarp.data.models import (
    ADMIN_PILOT, DEFAULT_DRONE_CATALOG, ENTITIES, ConflictNotification, Drone,
    Operation, Pilot, seed_drones, uuid7,
)


def test_uuid7_format():
    uid = uuid7()
    assert len(uid) == 36
    assert uid[14] == "7"


def test_uuid7_sortable():
    """Ids created in sequence sort in creation order."""
    ids = [uuid7() for _ in range(10)]
    assert ids == sorted(ids)


def test_uuid7_unique_across_threads():
    ids = []

    def make():
        ids.extend(uuid7() for _ in range(200))

    workers = [threading.Thread(target=make) for _ in range(4)]
    for w in workers:
        w.start()
    for w in workers:
        w.join(10.0)
    assert len(set(ids)) == 800


def test_from_dict_keeps_unknown_columns():
    row = {"id": "op-1", "name": "Flood search", "status": "active", "sector": "north"}
    op = Operation.from_dict(row)
    assert op.id == "op-1"
    assert op.extra == {"sector": "north"}

    d = op.to_dict()
    assert d["sector"] == "north"
    assert d["name"] == "Flood search"
    assert "extra" not in d


def test_operation_position_and_activity():
    op = Operation(status="active", latitude=-25.43, longitude=-49.27)
    assert op.is_active
    assert op.has_position
    assert not Operation(status="completed").is_active
    assert not Operation().has_position


def test_registry_covers_every_kind():
    assert set(ENTITIES) == {
        "Operation", "Pilot", "Drone", "Maintenance", "FlightLog",
        "ConflictNotification", "DroneChecklist",
    }
    assert ENTITIES["Pilot"].table == "profiles"
    assert ENTITIES["Pilot"].unique == ("email",)
    assert ENTITIES["ConflictNotification"].storage_key == "sysarp_notifications"
    assert ENTITIES["ConflictNotification"].monotonic == ("acknowledged",)
    for kind in ENTITIES.values():
        assert kind.model.from_dict({"id": "x"}).id == "x"


def test_admin_pilot_seed():
    d = ADMIN_PILOT.to_dict()
    assert d["email"] == "admin@sysarp.mil.br"
    assert d["role"] == "admin"
    assert d["course_hours"] == 9999
    assert "password" not in d
    assert Pilot.from_dict(d).is_admin


def test_seed_drones_are_fresh_each_call():
    first = seed_drones()
    second = seed_drones()
    assert [d.id for d in first] == ["seed-1", "seed-2"]
    first[0].payloads.append("Spotlight")
    assert "Spotlight" not in second[0].payloads
    assert all(isinstance(d, Drone) for d in first)


def test_conflict_notification_defaults_unacknowledged():
    assert ConflictNotification(target_pilot_id="p1").acknowledged is False


def test_default_catalog():
    assert "Matrice 30T" in DEFAULT_DRONE_CATALOG["DJI"]
