"""Authentication and session management.

Sits on top of the Pilot gateway and, when the remote backend is enabled,
its identity service. The current session is an explicit SessionContext
owned by the manager: created on login, torn down on logout, and mirrored
into the local store so it survives a restart.

Session lifecycle:
    SIGNED_OUT --login/me--> SIGNED_IN
    SIGNED_OUT --login/me--> PROFILE_MISSING --self-heal--> DEGRADED
                                             --heal failed--> SIGNED_OUT (me)
                                                            DEGRADED   (login)

PROFILE_MISSING exists because the backend provisions profiles with an
asynchronous trigger that can lose the race against the first sign-in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sysarp.auth.credentials import constant_time_equals, hash_credential, verify_credential
from sysarp.config import Settings
from sysarp.data.gateway import EntityGateway, seed_admin_pilot, strip_credentials
from sysarp.data.models import ADMIN_PILOT, Pilot, utcnow_iso, uuid7
from sysarp.data.store import LocalStore
from sysarp.errors import (
    AuthFailure, ConnectivityFailure, GenericFailure, NotFound, OpsError,
    SchemaFailure, ValidationFailure,
)
from sysarp.remote.client import RemoteClient, RemoteError, RemoteUnavailable

logger = logging.getLogger(__name__)

ADMIN_SESSION_KEY = "sysarp_admin_session"
USER_SESSION_KEY = "sysarp_user_session"
AUTH_TOKEN_KEY = "sysarp_auth_token"

RECOVERED_NAME = "Recovered user"
PENDING_NAME = "Pending profile"
LOWEST_ROLE = "operator"

PROFILE_REPAIR_SQL = """
-- Run in the backend SQL editor:
ALTER TABLE public.profiles
ADD COLUMN IF NOT EXISTS phone text,
ADD COLUMN IF NOT EXISTS sarpas_code text,
ADD COLUMN IF NOT EXISTS crbm text,
ADD COLUMN IF NOT EXISTS unit text,
ADD COLUMN IF NOT EXISTS license text,
ADD COLUMN IF NOT EXISTS terms_accepted boolean DEFAULT false,
ADD COLUMN IF NOT EXISTS terms_accepted_at timestamp with time zone;
"""


class SessionState(str, Enum):
    SIGNED_OUT = "signed_out"
    SIGNED_IN = "signed_in"
    PROFILE_MISSING = "profile_missing"
    DEGRADED = "degraded"


@dataclass
class SessionContext:
    """Who is signed in, and how."""

    state: SessionState = SessionState.SIGNED_OUT
    profile: Optional[dict] = None
    subject: str = ""
    email: str = ""
    is_admin_session: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.state in (SessionState.SIGNED_IN, SessionState.DEGRADED)


class AuthSessionManager:
    """login / me / create_account / change_password / logout."""

    def __init__(
        self,
        settings: Settings,
        store: LocalStore,
        pilots: EntityGateway,
        client: Optional[RemoteClient] = None,
    ):
        self._settings = settings
        self._store = store
        self._pilots = pilots
        self._client = client if settings.remote_enabled else None
        self._context = SessionContext()

    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def remote_enabled(self) -> bool:
        return self._client is not None

    def _open(self, profile: dict, state: SessionState = SessionState.SIGNED_IN,
              admin: bool = False) -> dict:
        self._context = SessionContext(
            state=state,
            profile=profile,
            subject=profile.get("id", ""),
            email=profile.get("email", ""),
            is_admin_session=admin,
        )
        return profile

    def _close(self) -> None:
        self._context = SessionContext()

    # ── login ─────────────────────────────────────────────────

    def login(self, email: str, credential: str) -> dict:
        """Verify a credential and open a session. Returns the profile."""
        if not credential:
            raise ValidationFailure("Password is required.")
        if not email:
            raise ValidationFailure("Email is required.")
        if self.remote_enabled:
            return self._login_remote(email, credential)
        return self._login_local(email, credential)

    def _login_local(self, email: str, credential: str) -> dict:
        if (email.lower() in self._settings.admin_emails
                and constant_time_equals(credential, self._settings.admin_password)):
            self._store.set_value(ADMIN_SESSION_KEY, True)
            logger.info("Administrative session opened (offline mode)")
            return self._open(ADMIN_PILOT.to_dict(), admin=True)

        kind = self._pilots.kind
        seed_admin_pilot(self._store, kind)
        for pilot in self._store.read(kind.storage_key):
            if pilot.get("email") != email:
                continue
            if verify_credential(pilot.get("password_hash", ""), credential):
                profile = strip_credentials(pilot)
                self._store.set_value(USER_SESSION_KEY, profile)
                logger.info("Session opened for %s (offline mode)", email)
                return self._open(profile)
            break
        raise AuthFailure("User not found or wrong password (offline mode).")

    def _login_remote(self, email: str, credential: str) -> dict:
        try:
            session = self._client.sign_in(email, credential)
        except RemoteUnavailable as e:
            raise ConnectivityFailure(
                "Connection error: could not reach the server. "
                "Check your network connection and try again."
            ) from e
        except RemoteError as e:
            logger.warning("Remote login failed for %s: %s", email, e)
            if "Email not confirmed" in e.message:
                raise AuthFailure(
                    "Email not confirmed. Check your inbox, or ask an administrator "
                    "to disable email confirmation on the backend."
                ) from e
            if "Email logins are disabled" in e.message:
                raise AuthFailure(
                    "The email provider is disabled on the backend. "
                    "Enable it under Authentication > Providers."
                ) from e
            raise AuthFailure(e.message or "Login failed.") from e

        user = session.get("user") or {}
        if not user.get("id"):
            raise AuthFailure("Login failed: the identity service returned no user.")
        if session.get("access_token"):
            self._store.set_value(AUTH_TOKEN_KEY, session["access_token"])
        return self._resolve_profile(user, allow_degraded=True)

    # ── me ────────────────────────────────────────────────────

    def me(self) -> dict:
        """Profile of the current identity. Raises AuthFailure if none."""
        if self.remote_enabled:
            return self._me_remote()
        return self._me_local()

    def _me_local(self) -> dict:
        if self._context.is_authenticated:
            return self._context.profile
        if self._store.get_value(ADMIN_SESSION_KEY) is True:
            return self._open(ADMIN_PILOT.to_dict(), admin=True)
        profile = self._store.get_value(USER_SESSION_KEY)
        if profile:
            return self._open(profile)
        raise AuthFailure("No session found (offline mode).")

    def _me_remote(self) -> dict:
        # An offline administrative marker has no meaning against a real backend.
        if self._store.get_value(ADMIN_SESSION_KEY) is not None:
            self._store.remove(ADMIN_SESSION_KEY)

        if not self._client.access_token:
            token = self._store.get_value(AUTH_TOKEN_KEY)
            if token:
                self._client.set_session(token)

        try:
            user = self._client.get_user()
        except RemoteUnavailable as e:
            raise ConnectivityFailure(
                "Connection error: could not reach the server to verify the session."
            ) from e
        except RemoteError as e:
            raise AuthFailure(f"Session check failed: {e.message}") from e

        if not user or not user.get("id"):
            self._close()
            raise AuthFailure("Not authenticated.")
        return self._resolve_profile(user, allow_degraded=False)

    # ── Profile resolution & self-heal ────────────────────────

    def _resolve_profile(self, user: dict, allow_degraded: bool) -> dict:
        profile = self._pilots.get(user["id"])
        if profile:
            return self._open(profile)

        self._context = SessionContext(
            state=SessionState.PROFILE_MISSING,
            subject=user["id"],
            email=user.get("email", ""),
        )
        logger.warning("No profile for authenticated user %s, attempting self-heal", user["id"])
        return self._self_heal(user, allow_degraded)

    @staticmethod
    def _minimal_profile(user: dict, full_name: str) -> dict:
        metadata = user.get("user_metadata") or {}
        pilot = Pilot(
            id=user["id"],
            email=user.get("email", ""),
            full_name=metadata.get("full_name") or full_name,
            role=LOWEST_ROLE,
            status="active",
            terms_accepted=True,
        )
        fields = ("id", "email", "full_name", "role", "status", "terms_accepted")
        return {k: v for k, v in pilot.to_dict().items() if k in fields}

    def _self_heal(self, user: dict, allow_degraded: bool) -> dict:
        """Synthesize and persist the missing profile (best effort)."""
        try:
            healed = self._pilots.create(self._minimal_profile(user, RECOVERED_NAME))
        except OpsError as e:
            logger.error("Self-heal failed for %s: %s", user["id"], e)
            if allow_degraded:
                pending = self._minimal_profile(user, PENDING_NAME)
                pending["full_name"] = PENDING_NAME
                return self._open(pending, state=SessionState.DEGRADED)
            self._close()
            raise AuthFailure("Profile not found.") from e

        logger.info("Self-heal created profile for %s", user["id"])
        return self._open(healed, state=SessionState.DEGRADED)

    # ── create_account ────────────────────────────────────────

    def create_account(self, profile: dict, credential: str) -> dict:
        """Register a new pilot with a credential. Returns the profile."""
        email = (profile or {}).get("email")
        if not email or not credential:
            raise ValidationFailure("Email and password are required.")
        if self.remote_enabled:
            return self._create_account_remote(profile, credential)
        return self._create_account_local(profile, credential)

    def _create_account_local(self, profile: dict, credential: str) -> dict:
        kind = self._pilots.kind
        seed_admin_pilot(self._store, kind)
        roster = self._store.read(kind.storage_key)
        if any(p.get("email") == profile["email"] for p in roster):
            raise ValidationFailure(f"A pilot with email '{profile['email']}' already exists.")

        pilot = {
            **strip_credentials(profile),
            "id": uuid7(),
            "created_at": utcnow_iso(),
            "role": LOWEST_ROLE,
            "status": "active",
            "full_name": profile.get("full_name") or "",
            "change_password_required": False,
            "terms_accepted_at": utcnow_iso(),
        }
        roster.append({**pilot, "password_hash": hash_credential(credential)})
        self._store.write(kind.storage_key, roster)
        self._store.set_value(USER_SESSION_KEY, pilot)
        logger.info("Created local account %s", pilot["email"])
        return self._open(pilot)

    def _create_account_remote(self, profile: dict, credential: str) -> dict:
        metadata = {
            "full_name": profile.get("full_name") or "User",
            "phone": profile.get("phone") or "",
            "sarpas_code": profile.get("sarpas_code") or "",
            "crbm": profile.get("crbm") or "",
            "unit": profile.get("unit") or "",
            "license": profile.get("license") or "",
            "role": profile.get("role") or LOWEST_ROLE,
            "terms_accepted": bool(profile.get("terms_accepted")),
        }

        # Phase 1: the identity must exist, or the whole call fails.
        try:
            user = self._client.sign_up(profile["email"], credential, metadata)
        except RemoteUnavailable as e:
            raise ConnectivityFailure(
                "Could not connect to the server. Check your internet connection."
            ) from e
        except RemoteError as e:
            logger.error("Remote sign-up failed for %s: %s", profile["email"], e)
            if "Email logins are disabled" in e.message:
                raise AuthFailure(
                    "The email provider is disabled on the backend. "
                    "Enable it under Authentication > Providers > Email."
                ) from e
            if "Database error saving new user" in e.message:
                logger.error("Profile table needs repair:%s", PROFILE_REPAIR_SQL)
                raise SchemaFailure(
                    "SQL fix required: the database is blocking sign-up. "
                    "Run the profile repair script shown in the log."
                ) from e
            raise GenericFailure(e.message or "Sign-up failed.") from e

        if not user.get("id"):
            raise GenericFailure("Failed to create the user in the identity service.")
        if self._client.access_token:
            self._store.set_value(AUTH_TOKEN_KEY, self._client.access_token)

        # Phase 2: write the profile ourselves in case the provisioning
        # trigger has not run yet. me() self-heals if this fails too.
        payload = {
            "id": user["id"],
            "email": profile["email"],
            **metadata,
            "status": "active",
            "terms_accepted_at": utcnow_iso(),
        }
        try:
            self._client.upsert(self._pilots.kind.table, payload)
        except Exception as e:
            logger.warning("Explicit profile upsert failed (trigger may have created it): %s", e)

        return {**strip_credentials(profile), "id": user["id"]}

    # ── change_password ───────────────────────────────────────

    def change_password(self, user_id: str, new_credential: str) -> None:
        """Set a new credential and clear the first-access flags."""
        if user_id == ADMIN_PILOT.id:
            logger.debug("Password change ignored for the administrative identity")
            return
        if not new_credential:
            raise ValidationFailure("New password is required.")

        flags = {
            "change_password_required": False,
            "terms_accepted": True,
            "terms_accepted_at": utcnow_iso(),
        }
        if self.remote_enabled:
            self._change_password_remote(user_id, new_credential, flags)
        else:
            self._change_password_local(user_id, new_credential, flags)

    def _change_password_local(self, user_id: str, new_credential: str, flags: dict) -> None:
        kind = self._pilots.kind
        roster = self._store.read(kind.storage_key)
        for pilot in roster:
            if pilot.get("id") == user_id:
                pilot.update(flags)
                pilot["password_hash"] = hash_credential(new_credential)
                break
        else:
            raise NotFound(f"Pilot '{user_id}' not found locally.")
        self._store.write(kind.storage_key, roster)

        if self._context.subject == user_id and self._context.profile:
            profile = {**self._context.profile, **flags}
            self._store.set_value(USER_SESSION_KEY, profile)
            self._context.profile = profile

    def _change_password_remote(self, user_id: str, new_credential: str, flags: dict) -> None:
        try:
            self._client.update_user(new_credential)
        except RemoteUnavailable as e:
            raise ConnectivityFailure("Connection error: could not reach the server.") from e
        except RemoteError as e:
            raise AuthFailure(f"Could not change password: {e.message}") from e

        try:
            self._pilots.update(user_id, flags)
        except OpsError as e:
            logger.warning("Password changed but profile flags not cleared for %s: %s", user_id, e)

    # ── logout ────────────────────────────────────────────────

    def logout(self) -> None:
        token = self._store.get_value(AUTH_TOKEN_KEY)
        for key in (ADMIN_SESSION_KEY, USER_SESSION_KEY, AUTH_TOKEN_KEY):
            self._store.remove(key)
        self._close()

        if not self.remote_enabled:
            return
        if token and not self._client.access_token:
            self._client.set_session(token)
        try:
            self._client.sign_out()
        except RemoteError as e:
            logger.warning("Remote sign-out failed: %s", e)
