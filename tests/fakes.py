"""In-memory stand-in for RemoteClient used by the tests."""

import copy
import uuid
from collections import defaultdict
from datetime import datetime, timezone

from sysarp.remote.client import RemoteError, RemoteUnavailable


class FakeRemote:
    """Behaves like the hosted backend: tables, identity service, storage.

    Set `errors[op] = SomeRemoteError(...)` to make an operation fail, or
    `offline = True` to make every call fail at the transport level.
    """

    def __init__(self):
        self.tables = defaultdict(list)
        self.users = {}            # email -> user dict (with "password")
        self.uploads = {}
        self.access_token = None
        self.offline = False
        self.errors = {}
        self.calls = []

    def _enter(self, op):
        self.calls.append(op)
        if self.offline:
            raise RemoteUnavailable("Failed to fetch: connection refused")
        if op in self.errors:
            raise self.errors[op]

    def set_session(self, token):
        self.access_token = token

    def close(self):
        pass

    # ── tables ────────────────────────────────────────────────

    def select(self, table, columns="*", eq=None, order=None, ascending=True, limit=None):
        self._enter("select")
        rows = [r for r in self.tables[table]
                if all(k in r and r[k] == v for k, v in (eq or {}).items())]
        if order:
            rows = sorted(
                rows, key=lambda r: (r.get(order) is None, r.get(order) or ""),
                reverse=not ascending,
            )
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    def insert(self, table, record):
        self._enter("insert")
        row = dict(record)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        if any(r["id"] == row["id"] for r in self.tables[table]):
            raise RemoteError(
                'duplicate key value violates unique constraint "%s_pkey"' % table,
                status=409, code="23505",
            )
        self.tables[table].append(row)
        return copy.deepcopy(row)

    def upsert(self, table, record):
        self._enter("upsert")
        for r in self.tables[table]:
            if r["id"] == record["id"]:
                r.update(record)
                return copy.deepcopy(r)
        row = dict(record)
        row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self.tables[table].append(row)
        return copy.deepcopy(row)

    def update(self, table, record_id, changes):
        self._enter("update")
        for r in self.tables[table]:
            if r["id"] == record_id:
                r.update(changes)
                return copy.deepcopy(r)
        raise RemoteError("JSON object requested, no rows returned", status=406, code="PGRST116")

    def delete(self, table, record_id):
        self._enter("delete")
        self.tables[table] = [r for r in self.tables[table] if r["id"] != record_id]

    # ── identity ──────────────────────────────────────────────

    def add_user(self, email, password, user_id=None, metadata=None):
        user = {
            "id": user_id or str(uuid.uuid4()),
            "email": email,
            "password": password,
            "user_metadata": metadata or {},
        }
        self.users[email] = user
        return user

    def _public_user(self, user):
        return {k: v for k, v in user.items() if k != "password"}

    def sign_up(self, email, password, metadata=None):
        self._enter("sign_up")
        return self._public_user(self.add_user(email, password, metadata=metadata))

    def sign_in(self, email, password):
        self._enter("sign_in")
        user = self.users.get(email)
        if not user or user["password"] != password:
            raise RemoteError("Invalid login credentials", status=400, code="invalid_credentials")
        self.access_token = "token-" + user["id"]
        return {"access_token": self.access_token, "user": self._public_user(user)}

    def sign_out(self):
        self._enter("sign_out")
        self.access_token = None

    def get_user(self):
        self._enter("get_user")
        for user in self.users.values():
            if self.access_token == "token-" + user["id"]:
                return self._public_user(user)
        return None

    def update_user(self, password):
        self._enter("update_user")
        user = self.get_user()
        user_record = self.users[user["email"]]
        user_record["password"] = password
        return self._public_user(user_record)

    # ── storage ───────────────────────────────────────────────

    def upload(self, bucket, name, content, content_type="application/octet-stream"):
        self._enter("upload")
        self.uploads[(bucket, name)] = content
        return f"https://example.test/storage/v1/object/public/{bucket}/{name}"
