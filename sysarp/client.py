"""Client facade wiring the ops core together.

    ops = OpsClient.from_settings(resolve_settings(load_config()))
    ops.auth.login("pilot@example.com", "secret")
    ops.entities["Operation"].list("-start_time")
"""

from __future__ import annotations

import logging
from typing import Optional

from sysarp.alerts.conflicts import ConflictInbox
from sysarp.auth.session import AuthSessionManager
from sysarp.config import Settings
from sysarp.data.gateway import EntityGateway, build_gateways
from sysarp.data.store import LocalStore
from sysarp.remote.client import RemoteClient
from sysarp.system import SystemService

logger = logging.getLogger(__name__)


class OpsClient:
    """Entry point used by the CLI and the dashboard."""

    def __init__(self, settings: Settings, store: LocalStore, remote: Optional[RemoteClient] = None):
        self.settings = settings
        self.store = store
        self.remote = remote if settings.remote_enabled else None
        self.entities: dict[str, EntityGateway] = build_gateways(settings, store, self.remote)
        self.auth = AuthSessionManager(settings, store, self.entities["Pilot"], self.remote)
        self.system = SystemService(settings, store, self.remote)
        self.conflicts = ConflictInbox(self.entities["ConflictNotification"])

    @classmethod
    def from_settings(cls, settings: Settings) -> OpsClient:
        store = LocalStore(db_path=settings.db_path)
        remote = None
        if settings.remote_enabled:
            remote = RemoteClient(settings.remote_url, settings.remote_key, timeout=settings.timeout_s)
            logger.info("Remote backend: %s", settings.remote_url)
        else:
            logger.info("Remote backend not configured, running offline")
        return cls(settings, store, remote)

    def __getattr__(self, name: str) -> EntityGateway:
        # ops.Operation.list() as a shorthand for ops.entities["Operation"].list()
        entities = self.__dict__.get("entities") or {}
        if name in entities:
            return entities[name]
        raise AttributeError(name)

    def close(self) -> None:
        if self.remote is not None:
            self.remote.close()
        self.store.close()
