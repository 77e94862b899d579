"""System services: drone catalog, backend diagnostics, file uploads."""

from __future__ import annotations

import logging
import mimetypes
import shutil
import time
from pathlib import Path
from typing import Optional

from sysarp.config import Settings
from sysarp.data.models import DEFAULT_DRONE_CATALOG
from sysarp.data.store import LocalStore
from sysarp.errors import ValidationFailure
from sysarp.remote.client import RemoteClient, RemoteError

logger = logging.getLogger(__name__)

CATALOG_KEY = "droneops_catalog"

# (check name, table, columns, message when the columns are present)
SCHEMA_CHECKS = (
    ("Pilots table (profiles)", "profiles", "id,email,phone,terms_accepted,sarpas_code",
     "New profile columns detected."),
    ("Aircraft table", "drones", "id,last_30day_check", "Column last_30day_check ok."),
    ("Operations table", "operations", "id,aro,flight_altitude", "ARO/altitude columns ok."),
)


class SystemService:
    def __init__(self, settings: Settings, store: LocalStore, client: Optional[RemoteClient] = None):
        self._settings = settings
        self._store = store
        self._client = client if settings.remote_enabled else None

    # ── Catalog ───────────────────────────────────────────────

    def get_catalog(self) -> dict[str, list[str]]:
        """Manufacturer -> model names. Falls back to the built-in catalog."""
        stored = self._store.get_value(CATALOG_KEY)
        if isinstance(stored, dict):
            return stored
        return {brand: list(models) for brand, models in DEFAULT_DRONE_CATALOG.items()}

    def update_catalog(self, catalog: dict[str, list[str]]) -> None:
        if not isinstance(catalog, dict) or not all(
            isinstance(models, list) for models in catalog.values()
        ):
            raise ValidationFailure("Catalog must map manufacturer names to lists of models.")
        self._store.set_value(CATALOG_KEY, catalog)

    # ── Diagnostics ───────────────────────────────────────────

    def diagnose(self) -> list[dict]:
        """Probe the remote schema for the columns this client relies on."""
        if self._client is None:
            return [{"check": "Offline mode", "status": "WARN", "message": "Running locally."}]

        results = []
        for check, table, columns, ok_message in SCHEMA_CHECKS:
            try:
                self._client.select(table, columns=columns, limit=1)
                results.append({"check": check, "status": "OK", "message": ok_message})
            except RemoteError as e:
                logger.warning("Diagnostic '%s' failed: %s", check, e)
                results.append({"check": check, "status": "ERROR", "message": f"Error: {e.message}"})
        return results

    # ── Uploads ───────────────────────────────────────────────

    def upload_file(self, path: str) -> str:
        """Store a mission file and return a URL for it.

        Remote uploads go to the storage bucket; if that is unavailable the
        file is copied into the local upload directory instead.
        """
        source = Path(path)
        if not source.is_file():
            raise ValidationFailure(f"File not found: {path}")
        name = f"{int(time.time() * 1000)}_{source.name}"

        if self._client is not None:
            content_type = mimetypes.guess_type(source.name)[0] or "application/octet-stream"
            try:
                return self._client.upload(
                    self._settings.storage_bucket, name, source.read_bytes(), content_type,
                )
            except RemoteError as e:
                logger.warning("Upload failed, keeping %s locally: %s", source.name, e)

        target_dir = Path(self._settings.upload_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / name
        shutil.copyfile(source, target)
        return target.resolve().as_uri()
