"""Operations-center dashboard poller.

Periodically pulls a snapshot of the fleet picture:
- active operations (and those with a live stream)
- the five most recent operations
- open maintenance
- the drone roster
- unacknowledged airspace conflicts for the signed-in pilot

Polls are never queued. Every poll carries a generation number and a result
older than the one already shown is dropped; once stop() is called no
result is applied at all.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from sysarp.client import OpsClient
from sysarp.data.models import (
    ConflictNotification, Drone, Maintenance, Operation, utcnow_iso,
)
from sysarp.errors import OpsError

logger = logging.getLogger(__name__)

RECENT_LIMIT = 5


@dataclass
class DashboardSnapshot:
    generation: int = 0
    taken_at: str = field(default_factory=utcnow_iso)
    active_operations: list[Operation] = field(default_factory=list)
    recent_operations: list[Operation] = field(default_factory=list)
    live_streams: list[Operation] = field(default_factory=list)
    maintenance_alerts: list[Maintenance] = field(default_factory=list)
    drones: list[Drone] = field(default_factory=list)
    conflicts: list[ConflictNotification] = field(default_factory=list)


def build_snapshot(ops: OpsClient, user: Optional[dict], generation: int = 0) -> DashboardSnapshot:
    operations = [Operation.from_dict(r) for r in ops.entities["Operation"].list("-start_time")]
    maintenance = ops.entities["Maintenance"].filter(lambda m: m.get("status") != "completed")
    drones = ops.entities["Drone"].list()

    active = [o for o in operations if o.is_active]
    snapshot = DashboardSnapshot(
        generation=generation,
        active_operations=active,
        recent_operations=operations[:RECENT_LIMIT],
        live_streams=[o for o in active if o.stream_url],
        maintenance_alerts=[Maintenance.from_dict(m) for m in maintenance],
        drones=[Drone.from_dict(d) for d in drones],
    )
    if user and user.get("id"):
        ops.conflicts.retrieve(user["id"])
        snapshot.conflicts = [ConflictNotification.from_dict(c) for c in ops.conflicts.alerts]
    return snapshot


class DashboardPoller:
    """Keeps the latest DashboardSnapshot fresh on a fixed interval."""

    def __init__(
        self,
        ops: OpsClient,
        interval_s: float = 30.0,
        on_snapshot: Optional[Callable[[DashboardSnapshot], None]] = None,
    ):
        self._ops = ops
        self._interval_s = interval_s
        self._on_snapshot = on_snapshot
        self._user: Optional[dict] = None
        self._snapshot: Optional[DashboardSnapshot] = None
        self._issued = 0
        self._applied = 0
        self._lock = threading.Lock()
        # ConflictInbox is not thread-safe; polls and acknowledgements share it.
        self._inbox_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def snapshot(self) -> Optional[DashboardSnapshot]:
        with self._lock:
            return self._snapshot

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def resolve_user(self) -> Optional[dict]:
        try:
            self._user = self._ops.auth.me()
        except OpsError as e:
            logger.debug("Dashboard has no authenticated user: %s", e)
            self._user = None
        return self._user

    def poll_once(self) -> Optional[DashboardSnapshot]:
        """Take one snapshot. Returns None if it was superseded or stopped."""
        with self._lock:
            self._issued += 1
            generation = self._issued

        # Held through _apply. on_snapshot must not call acknowledge().
        with self._inbox_lock:
            snapshot = build_snapshot(self._ops, self._user, generation)
            return self._apply(snapshot)

    def _apply(self, snapshot: DashboardSnapshot) -> Optional[DashboardSnapshot]:
        with self._lock:
            if self._stop.is_set() or snapshot.generation <= self._applied:
                logger.debug("Discarding dashboard snapshot %d", snapshot.generation)
                return None
            self._applied = snapshot.generation
            self._snapshot = snapshot
        if self._on_snapshot:
            self._on_snapshot(snapshot)
        return snapshot

    def acknowledge(self, alert_id: str) -> bool:
        """Acknowledge a conflict and drop it from the shown snapshot."""
        with self._inbox_lock:
            confirmed = self._ops.conflicts.acknowledge(alert_id)
            remaining = [ConflictNotification.from_dict(c) for c in self._ops.conflicts.alerts]
        with self._lock:
            if self._snapshot is not None and not self._stop.is_set():
                self._snapshot.conflicts = remaining
        return confirmed

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self.resolve_user()
        self._thread = threading.Thread(target=self._run, name="dashboard-poller", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.error("Dashboard poll failed: %s", e)
            if self._stop.wait(self._interval_s):
                break

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
