"""Airspace-conflict notification inbox.

Conflict notifications are written by the planning side whenever two active
operations overlap. Here they are only read (per target pilot) and retired
by acknowledgement.

Acknowledgement is optimistic: the alert leaves the visible set at once and
sits in PENDING until the backend confirms. If the write fails the inbox
re-fetches and the alert comes back, so an unconfirmed acknowledgement can
never silently drop an alert.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from sysarp.data.gateway import EntityGateway
from sysarp.errors import OpsError

logger = logging.getLogger(__name__)


class AlertState(str, Enum):
    VISIBLE = "visible"
    PENDING = "pending"


class ConflictInbox:
    """In-memory alert set for one pilot, backed by the notification gateway."""

    def __init__(self, notifications: EntityGateway):
        self._gateway = notifications
        self._pilot_id: Optional[str] = None
        self._alerts: dict[str, dict] = {}
        self._states: dict[str, AlertState] = {}

    @property
    def alerts(self) -> list[dict]:
        """Alerts to show: everything not awaiting confirmation."""
        return [
            record for alert_id, record in self._alerts.items()
            if self._states.get(alert_id) != AlertState.PENDING
        ]

    @property
    def pending(self) -> list[str]:
        return [i for i, s in self._states.items() if s == AlertState.PENDING]

    def state_of(self, alert_id: str) -> Optional[AlertState]:
        return self._states.get(alert_id)

    @property
    def pilot_id(self) -> Optional[str]:
        return self._pilot_id

    def retrieve(self, pilot_id: str) -> list[dict]:
        """Fetch unacknowledged notifications addressed to pilot_id."""
        self._pilot_id = pilot_id
        return self._refresh()

    def _refresh(self) -> list[dict]:
        records = self._gateway.filter(
            {"target_pilot_id": self._pilot_id, "acknowledged": False}
        )
        self._alerts = {r["id"]: r for r in records if r.get("id")}
        self._states = {
            alert_id: self._states.get(alert_id, AlertState.VISIBLE)
            for alert_id in self._alerts
        }
        return list(records)

    def acknowledge(self, alert_id: str) -> bool:
        """Retire an alert. Returns False if the backend did not confirm."""
        original = self._alerts.get(alert_id)
        self._states[alert_id] = AlertState.PENDING

        try:
            self._gateway.update(alert_id, {"acknowledged": True})
        except OpsError as e:
            logger.error("Acknowledge of conflict %s failed: %s", alert_id, e)
            self._reconcile(alert_id, original)
            return False

        self._alerts.pop(alert_id, None)
        self._states.pop(alert_id, None)
        logger.info("Conflict %s acknowledged", alert_id)
        return True

    def _reconcile(self, alert_id: str, original: Optional[dict]) -> None:
        """Undo an optimistic removal after a failed acknowledgement."""
        self._states.pop(alert_id, None)
        if self._pilot_id is None:
            return

        self._refresh()
        if original is not None and alert_id not in self._alerts:
            # Re-fetch may have been served from a stale fallback; keep the alert.
            self._alerts[alert_id] = original
            self._states[alert_id] = AlertState.VISIBLE
