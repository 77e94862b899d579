"""Entity models for the ops center.

Records travel through the gateway as plain dicts (that is what both the
remote backend and the local store hold). The dataclasses here give those
dicts a typed shape for seeding, profile synthesis and rendering.
Unknown keys are kept in `extra` so a round trip never loses columns the
backend added.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from typing import Any, Optional


_id_lock = threading.Lock()
_id_ms = 0
_id_seq = 0


def uuid7() -> str:
    """New record id whose string form sorts by creation time.

    Bit layout, high to low: 48-bit Unix milliseconds, version 7, a 12-bit
    sequence that restarts every millisecond, the RFC 4122 variant, and 62
    random bits.
    """
    global _id_ms, _id_seq

    with _id_lock:
        ms = time.time_ns() // 1_000_000
        _id_seq = _id_seq + 1 if ms == _id_ms else 0
        _id_ms = ms
        seq = _id_seq

    rand = uuid.uuid4().int & ((1 << 62) - 1)
    value = (
        (ms & ((1 << 48) - 1)) << 80
        | 0x7 << 76
        | (seq & 0xFFF) << 64
        | 0b10 << 62
        | rand
    )
    return str(uuid.UUID(int=value))


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _Record:
    """Shared dict conversion for entity dataclasses."""

    def to_dict(self) -> dict:
        d = {}
        for f in fields(self):
            if f.name == "extra":
                continue
            d[f.name] = getattr(self, f.name)
        d.update(self.extra)
        return d

    @classmethod
    def from_dict(cls, data: dict):
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs, extra=extra)


@dataclass
class Operation(_Record):
    """A dispatched flight operation. Shown on the map while active."""

    id: str = ""
    name: str = ""
    status: str = "active"          # active | completed | cancelled
    mission_type: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    pilot_id: str = ""
    drone_id: str = ""
    start_time: str = ""
    end_time: str = ""
    stream_url: str = ""
    flight_altitude: Optional[float] = None
    aro: Any = None
    created_at: str = ""
    extra: dict = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class Pilot(_Record):
    """Pilot profile. Doubles as the application user record."""

    id: str = ""
    full_name: str = ""
    email: str = ""
    role: str = "operator"          # admin | operator
    status: str = "active"
    phone: str = ""
    sarpas_code: str = ""
    crbm: str = ""
    unit: str = ""
    license: str = ""
    change_password_required: bool = False
    terms_accepted: bool = False
    terms_accepted_at: str = ""
    created_at: str = ""
    extra: dict = field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass
class Drone(_Record):
    id: str = ""
    prefix: str = ""
    brand: str = ""
    model: str = ""
    serial_number: str = ""
    sisant: str = ""
    sisant_expiry_date: str = ""
    status: str = "available"       # available | in_operation | maintenance
    weight: float = 0.0             # grams
    max_flight_time: float = 0.0    # minutes
    max_range: float = 0.0          # meters
    max_altitude: float = 0.0       # meters
    payloads: list = field(default_factory=list)
    total_flight_hours: float = 0.0
    last_30day_check: str = ""
    created_at: str = ""
    extra: dict = field(default_factory=dict)


@dataclass
class Maintenance(_Record):
    id: str = ""
    drone_id: str = ""
    maintenance_type: str = ""
    description: str = ""
    status: str = "scheduled"       # scheduled | in_progress | completed
    technician: str = ""
    maintenance_date: str = ""
    cost: float = 0.0
    created_at: str = ""
    extra: dict = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.status != "completed"


@dataclass
class FlightLog(_Record):
    id: str = ""
    operation_id: str = ""
    drone_id: str = ""
    pilot_id: str = ""
    flight_date: str = ""
    flight_hours: float = 0.0
    notes: str = ""
    created_at: str = ""
    extra: dict = field(default_factory=dict)


@dataclass
class ConflictNotification(_Record):
    """Airspace overlap between two operations, addressed to one pilot.

    Produced by the planning side; this core only reads and acknowledges.
    """

    id: str = ""
    target_pilot_id: str = ""
    operation_id: str = ""
    conflicting_operation_id: str = ""
    message: str = ""
    acknowledged: bool = False
    created_at: str = ""
    extra: dict = field(default_factory=dict)


@dataclass
class DroneChecklist(_Record):
    id: str = ""
    drone_id: str = ""
    pilot_id: str = ""
    items: list = field(default_factory=list)
    status: str = "pending"
    checked_at: str = ""
    created_at: str = ""
    extra: dict = field(default_factory=dict)


@dataclass(frozen=True)
class EntityKind:
    """Binding of a logical entity to its physical homes."""

    name: str
    table: str                      # remote table
    storage_key: str                # local store key
    model: type
    monotonic: tuple[str, ...] = ()  # flags that may only go false -> true
    unique: tuple[str, ...] = ()


ENTITIES: dict[str, EntityKind] = {
    k.name: k
    for k in (
        EntityKind("Operation", "operations", "sysarp_operations", Operation),
        EntityKind("Pilot", "profiles", "sysarp_pilots", Pilot, unique=("email",)),
        EntityKind("Drone", "drones", "sysarp_drones", Drone),
        EntityKind("Maintenance", "maintenances", "sysarp_maintenance", Maintenance),
        EntityKind("FlightLog", "flight_logs", "sysarp_flight_logs", FlightLog),
        EntityKind(
            "ConflictNotification", "conflict_notifications", "sysarp_notifications",
            ConflictNotification, monotonic=("acknowledged",),
        ),
        EntityKind("DroneChecklist", "drone_checklists", "sysarp_drone_checklists", DroneChecklist),
    )
}


# ── Seed data ────────────────────────────────────────────────

ADMIN_PILOT = Pilot(
    id="admin-local-id",
    full_name="System Administrator",
    email="admin@sysarp.mil.br",
    role="admin",
    status="active",
    phone="41999999999",
    sarpas_code="ADMIN01",
    crbm="1st CRBM - Curitiba",
    unit="BOA - Air Operations Battalion",
    license="ADMIN-KEY",
    change_password_required=False,
    terms_accepted=True,
    extra={
        "course_type": "internal",
        "course_name": "System Administration",
        "course_year": 2024,
        "course_hours": 9999,
    },
)


def seed_drones() -> list[Drone]:
    """Two demonstration aircraft with recent 30-day checks."""
    now = datetime.now(timezone.utc)
    return [
        Drone(
            id="seed-1",
            prefix="HARPIA 01",
            brand="DJI",
            model="Matrice 30T",
            serial_number="SN12345678",
            sisant="PP-12345",
            sisant_expiry_date="2025-12-31",
            weight=3700,
            max_flight_time=41,
            max_range=7000,
            max_altitude=120,
            payloads=["Thermal", "Zoom"],
            total_flight_hours=120.5,
            last_30day_check=(now - timedelta(days=10)).isoformat(),
        ),
        Drone(
            id="seed-2",
            prefix="HARPIA 02",
            brand="DJI",
            model="Mavic 3 Thermal",
            serial_number="SN87654321",
            sisant="PP-54321",
            sisant_expiry_date="2026-06-30",
            weight=920,
            max_flight_time=45,
            max_range=5000,
            max_altitude=120,
            payloads=["Thermal"],
            total_flight_hours=45.2,
            last_30day_check=(now - timedelta(days=25)).isoformat(),
        ),
    ]


DEFAULT_DRONE_CATALOG: dict[str, list[str]] = {
    "DJI": [
        "Matrice 350 RTK", "Matrice 30T", "Matrice 300 RTK", "Mavic 3 Thermal",
        "Mavic 3 Enterprise", "Agras T40", "Mini 3 Pro",
    ],
    "Autel Robotics": ["EVO II Dual 640T V3", "EVO Max 4T"],
    "Teledyne FLIR": ["SIRAS", "Black Hornet 3"],
    "XAG": ["P100 Pro", "V40"],
}
