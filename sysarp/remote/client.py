"""HTTP client for the remote relational backend.

Talks to three surfaces of the hosted backend:
- /rest/v1     relational tables (select, insert, upsert, update, delete)
- /auth/v1     credential-based identity service
- /storage/v1  blob uploads with public URLs

This module only speaks the wire protocol. It raises RemoteError for any
rejected request and RemoteUnavailable when the transport itself fails;
deciding what those mean to a caller is the gateway's job.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

CLIENT_HEADER = "sysarp-v1"


class RemoteError(Exception):
    """The backend answered, but rejected the request."""

    def __init__(self, message: str, status: int = 0, code: str = ""):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


class RemoteUnavailable(RemoteError):
    """The backend could not be reached (DNS, refused, timeout...)."""


def _eq(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return "eq.true" if value else "eq.false"
    return f"eq.{value}"


def _error_from_response(response: httpx.Response) -> RemoteError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    message = (
        body.get("message")
        or body.get("msg")
        or body.get("error_description")
        or body.get("error")
        or response.text
        or f"HTTP {response.status_code}"
    )
    code = body.get("code")
    if not isinstance(code, str):
        code = body.get("error_code") or ""
    return RemoteError(str(message), status=response.status_code, code=code)


class RemoteClient:
    """Thin synchronous client for the hosted backend."""

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._access_token: Optional[str] = None
        self._http = httpx.Client(
            base_url=self._url,
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": api_key,
                "x-client-info": CLIENT_HEADER,
            },
        )

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    def set_session(self, access_token: Optional[str]) -> None:
        """Use a user token for subsequent requests (None reverts to anon)."""
        self._access_token = access_token

    def close(self) -> None:
        self._http.close()

    # ── Transport ─────────────────────────────────────────────

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self._access_token or self._api_key}"}

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        merged = self._auth_headers()
        merged.update(headers or {})
        try:
            response = self._http.request(
                method, path, params=params, json=json, content=content,
                headers=merged,
            )
        except httpx.TransportError as e:
            logger.debug("%s %s failed: %s", method, path, e)
            raise RemoteUnavailable(f"Failed to fetch: {e}") from e

        if response.is_error:
            raise _error_from_response(response)
        return response

    # ── Tables ────────────────────────────────────────────────

    def select(
        self,
        table: str,
        columns: str = "*",
        eq: Optional[dict] = None,
        order: Optional[str] = None,
        ascending: bool = True,
        limit: Optional[int] = None,
    ) -> list[dict]:
        params: dict[str, str] = {"select": columns}
        for key, value in (eq or {}).items():
            params[key] = _eq(value)
        if order:
            params["order"] = f"{order}.{'asc' if ascending else 'desc'}"
        if limit is not None:
            params["limit"] = str(limit)
        return self._request("GET", f"/rest/v1/{table}", params=params).json()

    def insert(self, table: str, record: dict) -> dict:
        rows = self._request(
            "POST", f"/rest/v1/{table}", json=[record],
            headers={"Prefer": "return=representation"},
        ).json()
        return self._single(rows, table)

    def upsert(self, table: str, record: dict) -> dict:
        rows = self._request(
            "POST", f"/rest/v1/{table}", json=[record],
            headers={"Prefer": "return=representation,resolution=merge-duplicates"},
        ).json()
        return self._single(rows, table)

    def update(self, table: str, record_id: str, changes: dict) -> dict:
        rows = self._request(
            "PATCH", f"/rest/v1/{table}", params={"id": _eq(record_id)},
            json=changes, headers={"Prefer": "return=representation"},
        ).json()
        return self._single(rows, table)

    def delete(self, table: str, record_id: str) -> None:
        self._request("DELETE", f"/rest/v1/{table}", params={"id": _eq(record_id)})

    @staticmethod
    def _single(rows: list, table: str) -> dict:
        if not rows:
            raise RemoteError(
                f"JSON object requested, no rows returned from '{table}'",
                status=406, code="PGRST116",
            )
        return rows[0]

    # ── Identity ──────────────────────────────────────────────

    def sign_up(self, email: str, password: str, metadata: Optional[dict] = None) -> dict:
        """Register a credential. Returns the created user."""
        body = self._request(
            "POST", "/auth/v1/signup",
            json={"email": email, "password": password, "data": metadata or {}},
        ).json()
        # With auto-confirm the backend answers with a full session.
        if "access_token" in body:
            self._access_token = body["access_token"]
        return body.get("user") or body

    def sign_in(self, email: str, password: str) -> dict:
        """Verify a credential and open a session.

        Returns the session payload ({access_token, refresh_token, user}).
        """
        body = self._request(
            "POST", "/auth/v1/token", params={"grant_type": "password"},
            json={"email": email, "password": password},
        ).json()
        self._access_token = body.get("access_token")
        return body

    def sign_out(self) -> None:
        if not self._access_token:
            return
        try:
            self._request("POST", "/auth/v1/logout")
        finally:
            self._access_token = None

    def get_user(self) -> Optional[dict]:
        """Return the user behind the current session, or None."""
        if not self._access_token:
            return None
        try:
            return self._request("GET", "/auth/v1/user").json()
        except RemoteUnavailable:
            raise
        except RemoteError as e:
            if e.status in (401, 403):
                return None
            raise

    def update_user(self, password: str) -> dict:
        return self._request("PUT", "/auth/v1/user", json={"password": password}).json()

    # ── Storage ───────────────────────────────────────────────

    def upload(
        self,
        bucket: str,
        name: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Upload a blob and return its public URL."""
        path = f"{quote(bucket)}/{quote(name)}"
        self._request(
            "POST", f"/storage/v1/object/{path}", content=content,
            headers={"Content-Type": content_type},
        )
        return f"{self._url}/storage/v1/object/public/{path}"
