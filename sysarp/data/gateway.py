"""Entity access gateway.

One generic gateway per entity kind exposes list/filter/create/update/delete.
Which backend serves those calls is a strategy chosen once at startup:

    LocalStrategy   remote disabled; the local store is the source of truth
    RemoteStrategy  remote enabled; reads fall back to the local store,
                    writes raise classified errors

Reads never raise. Writes always raise a typed OpsError on failure.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Union

from sysarp.config import Settings
from sysarp.data.models import (
    ADMIN_PILOT, ENTITIES, EntityKind, seed_drones, utcnow_iso, uuid7,
)
from sysarp.data.store import LocalStore
from sysarp.errors import NotFound, OpsError, ValidationFailure, classify_write_error
from sysarp.remote.client import RemoteClient

logger = logging.getLogger(__name__)

Predicate = Union[dict, Callable[[dict], bool]]
Seeder = Callable[[LocalStore, EntityKind], None]

CREDENTIAL_FIELDS = ("password", "password_hash")
DEFAULT_ORDER = "-created_at"


# ── Helpers ──────────────────────────────────────────────────

def parse_order(order_spec: Optional[str]) -> tuple[str, bool]:
    """'-field' -> (field, descending); 'field' -> (field, ascending)."""
    spec = order_spec or DEFAULT_ORDER
    if spec.startswith("-"):
        return spec[1:], False
    return spec, True


def strip_credentials(record: dict) -> dict:
    return {k: v for k, v in record.items() if k not in CREDENTIAL_FIELDS}


def matches(record: dict, criteria: dict) -> bool:
    """Structural partial match: equality on every named field."""
    return all(key in record and record[key] == value for key, value in criteria.items())


def apply_predicate(records: list[dict], predicate: Predicate) -> list[dict]:
    if callable(predicate):
        return [r for r in records if predicate(r)]
    return [r for r in records if matches(r, predicate)]


def sort_records(records: list[dict], field: str, ascending: bool) -> list[dict]:
    """Order by field; records without a value keep storage order at the end."""
    present = [r for r in records if r.get(field) not in (None, "")]
    missing = [r for r in records if r.get(field) in (None, "")]
    try:
        present.sort(key=lambda r: r[field], reverse=not ascending)
    except TypeError:
        present.sort(key=lambda r: str(r[field]), reverse=not ascending)
    return present + missing


# ── Seeding ──────────────────────────────────────────────────

def seed_admin_pilot(store: LocalStore, kind: EntityKind) -> None:
    """Guarantee the administrative pilot exists in the local roster."""
    pilots = store.read(kind.storage_key)
    if any(p.get("id") == ADMIN_PILOT.id for p in pilots):
        return
    pilots.insert(0, ADMIN_PILOT.to_dict())
    store.write(kind.storage_key, pilots)
    logger.info("Seeded administrative pilot %s", ADMIN_PILOT.email)


def seed_reference_drones(store: LocalStore, kind: EntityKind) -> None:
    if store.read(kind.storage_key):
        return
    store.write(kind.storage_key, [d.to_dict() for d in seed_drones()])
    logger.info("Seeded %s with demonstration aircraft", kind.name)


LOCAL_SEEDERS: dict[str, Seeder] = {
    "Pilot": seed_admin_pilot,
    "Drone": seed_reference_drones,
}


# ── Strategies ───────────────────────────────────────────────

class LocalStrategy:
    """Serve an entity kind from the local store."""

    def __init__(self, store: LocalStore, kind: EntityKind, seeder: Optional[Seeder] = None):
        self._store = store
        self._kind = kind
        self._seeder = seeder

    def _records(self) -> list[dict]:
        if self._seeder:
            self._seeder(self._store, self._kind)
        return self._store.read(self._kind.storage_key)

    def list(self, order_spec: Optional[str] = None) -> list[dict]:
        field, ascending = parse_order(order_spec)
        records = [strip_credentials(r) for r in self._records()]
        return sort_records(records, field, ascending)

    def filter(self, predicate: Predicate) -> list[dict]:
        records = [strip_credentials(r) for r in self._records()]
        return apply_predicate(records, predicate)

    def _check_unique(self, records: list[dict], candidate: dict) -> None:
        for field in self._kind.unique:
            value = candidate.get(field)
            if value in (None, ""):
                continue
            for r in records:
                if r.get("id") != candidate.get("id") and r.get(field) == value:
                    raise ValidationFailure(
                        f"A {self._kind.name} with {field} '{value}' already exists."
                    )

    def create(self, item: dict) -> dict:
        records = self._records()
        new_item = dict(item)
        new_item["id"] = new_item.get("id") or uuid7()
        new_item["created_at"] = new_item.get("created_at") or utcnow_iso()
        if any(r.get("id") == new_item["id"] for r in records):
            raise ValidationFailure(
                f"A {self._kind.name} with id '{new_item['id']}' already exists."
            )
        self._check_unique(records, new_item)
        records.append(new_item)
        self._store.write(self._kind.storage_key, records)
        return strip_credentials(new_item)

    def update(self, record_id: str, changes: dict) -> dict:
        records = self._records()
        for index, existing in enumerate(records):
            if existing.get("id") == record_id:
                break
        else:
            raise NotFound(f"{self._kind.name} '{record_id}' not found locally.")

        updated = {**existing, **changes, "id": record_id}
        self._check_unique(records, updated)
        records[index] = updated
        self._store.write(self._kind.storage_key, records)
        return strip_credentials(updated)

    def delete(self, record_id: str) -> None:
        records = self._store.read(self._kind.storage_key)
        remaining = [r for r in records if r.get("id") != record_id]
        if len(remaining) != len(records):
            self._store.write(self._kind.storage_key, remaining)


class RemoteStrategy:
    """Serve an entity kind from the remote backend.

    Reads degrade to the local snapshot on any failure. Writes classify the
    failure and raise it.
    """

    def __init__(self, client: RemoteClient, kind: EntityKind, fallback: LocalStrategy):
        self._client = client
        self._kind = kind
        self._fallback = fallback

    @property
    def table(self) -> str:
        return self._kind.table

    def list(self, order_spec: Optional[str] = None) -> list[dict]:
        field, ascending = parse_order(order_spec)
        try:
            rows = self._client.select(self.table, order=field, ascending=ascending)
        except Exception as e:
            logger.warning("Remote list failed for %s, using local data: %s", self._kind.name, e)
            return self._fallback.list(order_spec)
        return [strip_credentials(r) for r in rows]

    def filter(self, predicate: Predicate) -> list[dict]:
        try:
            if callable(predicate):
                # No server-side equivalent for an arbitrary test: full fetch.
                rows = self._client.select(self.table)
                logger.debug("Full fetch of %s (%d rows) for local predicate", self.table, len(rows))
                rows = [r for r in rows if predicate(r)]
            else:
                rows = self._client.select(self.table, eq=predicate)
        except Exception as e:
            logger.warning("Remote filter failed for %s, using local data: %s", self._kind.name, e)
            return self._fallback.filter(predicate)
        return [strip_credentials(r) for r in rows]

    def create(self, item: dict) -> dict:
        try:
            return strip_credentials(self._client.insert(self.table, item))
        except Exception as e:
            logger.error("Remote insert into %s failed: %s", self.table, e)
            raise classify_write_error(e, "save", self.table) from e

    def update(self, record_id: str, changes: dict) -> dict:
        try:
            if not changes:
                rows = self._client.select(self.table, eq={"id": record_id})
                if not rows:
                    raise NotFound(f"{self._kind.name} '{record_id}' not found.")
                return strip_credentials(rows[0])
            return strip_credentials(self._client.update(self.table, record_id, changes))
        except OpsError:
            raise
        except Exception as e:
            logger.error("Remote update of %s/%s failed: %s", self.table, record_id, e)
            raise classify_write_error(e, "update", self.table) from e

    def delete(self, record_id: str) -> None:
        try:
            self._client.delete(self.table, record_id)
        except Exception as e:
            logger.error("Remote delete of %s/%s failed: %s", self.table, record_id, e)
            raise classify_write_error(e, "delete", self.table) from e


# ── Gateway ──────────────────────────────────────────────────

class EntityGateway:
    """Uniform CRUD for one entity kind, whatever backend is active."""

    def __init__(self, kind: EntityKind, strategy: Union[LocalStrategy, RemoteStrategy]):
        self._kind = kind
        self._strategy = strategy

    @property
    def kind(self) -> EntityKind:
        return self._kind

    def list(self, order_spec: Optional[str] = None) -> list[dict]:
        """All records, ordered by order_spec ('-field' for descending).

        Defaults to newest first. Never raises.
        """
        return self._strategy.list(order_spec)

    def filter(self, predicate: Predicate) -> list[dict]:
        """Records matching a field dict or a boolean test. Never raises."""
        return self._strategy.filter(predicate)

    def get(self, record_id: str) -> Optional[dict]:
        rows = self.filter({"id": record_id})
        return rows[0] if rows else None

    def create(self, item: dict) -> dict:
        if not isinstance(item, dict):
            raise ValidationFailure(f"{self._kind.name} data must be a mapping.")
        return self._strategy.create(strip_credentials(item))

    def update(self, record_id: str, changes: dict) -> dict:
        """Merge changes into an existing record."""
        if not record_id:
            raise ValidationFailure("An id is required to update a record.")
        if not isinstance(changes, dict):
            raise ValidationFailure(f"{self._kind.name} changes must be a mapping.")
        for flag in self._kind.monotonic:
            if flag in changes and not changes[flag]:
                raise ValidationFailure(
                    f"{self._kind.name}.{flag} cannot be reverted once set."
                )
        return self._strategy.update(record_id, strip_credentials(changes))

    def delete(self, record_id: str) -> None:
        if not record_id:
            raise ValidationFailure("An id is required to delete a record.")
        self._strategy.delete(record_id)

    def as_model(self, record: dict):
        return self._kind.model.from_dict(record)


def build_gateways(
    settings: Settings,
    store: LocalStore,
    client: Optional[RemoteClient] = None,
) -> dict[str, EntityGateway]:
    """Instantiate one gateway per entity kind.

    The strategy is fixed here from settings.remote_enabled. Local seeding
    only applies when the local store is the source of truth.
    """
    gateways = {}
    for name, kind in ENTITIES.items():
        if settings.remote_enabled and client is not None:
            strategy = RemoteStrategy(client, kind, fallback=LocalStrategy(store, kind))
        else:
            strategy = LocalStrategy(store, kind, seeder=LOCAL_SEEDERS.get(name))
        gateways[name] = EntityGateway(kind, strategy)
    logger.debug(
        "Entity gateways ready (%s backend)",
        "remote" if settings.remote_enabled and client is not None else "local",
    )
    return gateways
