from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal
from uuid import UUID

import requests

from src.core.config import settings
from src.core.errors import (
    AuthenticationFailed,
    ConflictError,
    DependencyFailure,
    TransientError,
    ValidationError,
)

if TYPE_CHECKING:
    from src.session.storage import SessionStorage

logger = logging.getLogger(__name__)

AuthEvent = Literal["SIGNED_IN", "SIGNED_OUT", "TOKEN_REFRESHED", "USER_UPDATED"]
AuthListener = Callable[[AuthEvent, "AuthSession | None"], None]

_EMAIL_EXISTS_CODES = {"email_exists", "user_already_exists"}


def _parse_uuid(value: object) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _parse_timestamp(value: object) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(slots=True)
class AuthUser:
    id: UUID
    email: str
    user_metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    @property
    def tenant_id(self) -> UUID | None:
        return _parse_uuid(self.user_metadata.get("tenant_id"))

    @property
    def role(self) -> str | None:
        return self.user_metadata.get("role")

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> AuthUser:
        return cls(
            id=UUID(str(payload["id"])),
            email=(payload.get("email") or "").lower(),
            user_metadata=dict(payload.get("user_metadata") or {}),
            created_at=_parse_timestamp(payload.get("created_at")),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "email": self.email,
            "user_metadata": dict(self.user_metadata),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(slots=True)
class AuthSession:
    access_token: str
    refresh_token: str
    user: AuthUser
    expires_at: int | None = None

    def is_expired(self, leeway_seconds: int = 30) -> bool:
        if self.expires_at is None:
            return False
        return time.time() + leeway_seconds >= self.expires_at

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> AuthSession:
        expires_at = payload.get("expires_at")
        if expires_at is None and payload.get("expires_in") is not None:
            expires_at = int(time.time()) + int(payload["expires_in"])
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            user=AuthUser.from_payload(payload["user"]),
            expires_at=int(expires_at) if expires_at is not None else None,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "user": self.user.to_payload(),
        }


@dataclass(slots=True)
class AuthResponse:
    user: AuthUser
    session: AuthSession | None = None


class Subscription:
    def __init__(self, listeners: list[AuthListener], callback: AuthListener) -> None:
        self._listeners = listeners
        self._callback = callback

    def unsubscribe(self) -> None:
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)


def _error_from_response(response: requests.Response, operation: str) -> Exception:
    try:
        body = response.json() or {}
    except ValueError:
        body = {}
    message = str(
        body.get("msg")
        or body.get("error_description")
        or body.get("message")
        or body.get("error")
        or ""
    )
    code = str(body.get("error_code") or body.get("code") or "")
    status_code = response.status_code

    if status_code >= 500 or status_code == 429:
        return TransientError()
    if code in _EMAIL_EXISTS_CODES or "already registered" in message.lower():
        return ConflictError("email taken")
    if status_code == 422 and "password" in message.lower():
        return ValidationError(message or "Password is too weak", field="password")
    if status_code in {400, 401, 403}:
        return AuthenticationFailed(message or "Invalid login credentials")
    return DependencyFailure(step=operation, cause=RuntimeError(f"{status_code}: {message}"))


class _IdentityTransport:
    def __init__(self, base_url: str, api_key: str, timeout: float) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token or self.api_key}",
        }
        operation = f"{method} {path}"
        try:
            response = requests.request(
                method,
                f"{self.base_url}/auth/v1{path}",
                headers=headers,
                json=json,
                params=params,
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            logger.warning("Identity provider unreachable during %s: %s", operation, exc)
            raise TransientError() from exc

        if response.status_code >= 400:
            raise _error_from_response(response, operation)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        return await asyncio.to_thread(self._request, method, path, **kwargs)


class IdentityAdminClient(_IdentityTransport):
    """Privileged operations; requires the service role key."""

    def __init__(
        self,
        base_url: str | None = None,
        service_role_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(
            base_url or settings.identity_url,
            service_role_key if service_role_key is not None else settings.identity_service_role_key,
            timeout or settings.identity_request_timeout_seconds,
        )
        if not self.api_key:
            raise ValueError("IDENTITY_SERVICE_ROLE_KEY is not configured")

    async def list_users(self, *, page: int = 1, per_page: int | None = None) -> list[AuthUser]:
        body = await self._call(
            "GET",
            "/admin/users",
            params={"page": page, "per_page": per_page or settings.identity_admin_page_size},
        )
        return [AuthUser.from_payload(item) for item in (body or {}).get("users", [])]

    async def all_users(self) -> list[AuthUser]:
        per_page = settings.identity_admin_page_size
        users: list[AuthUser] = []
        page = 1
        while True:
            batch = await self.list_users(page=page, per_page=per_page)
            users.extend(batch)
            if len(batch) < per_page:
                return users
            page += 1

    async def find_user_by_email(self, email: str) -> AuthUser | None:
        wanted = email.strip().lower()
        for user in await self.all_users():
            if user.email == wanted:
                return user
        return None

    async def create_user(
        self,
        *,
        email: str,
        password: str,
        user_metadata: dict[str, Any],
        email_confirm: bool = True,
    ) -> AuthUser:
        body = await self._call(
            "POST",
            "/admin/users",
            json={
                "email": email,
                "password": password,
                "user_metadata": user_metadata,
                "email_confirm": email_confirm,
            },
        )
        return AuthUser.from_payload(body)

    async def delete_user(self, user_id: UUID) -> None:
        await self._call("DELETE", f"/admin/users/{user_id}")


class IdentityClient(_IdentityTransport):
    """End-user client. Holds the current session and notifies listeners when it changes."""

    def __init__(
        self,
        base_url: str | None = None,
        anon_key: str | None = None,
        timeout: float | None = None,
        storage: SessionStorage | None = None,
    ) -> None:
        super().__init__(
            base_url or settings.identity_url,
            anon_key if anon_key is not None else settings.identity_anon_key,
            timeout or settings.identity_request_timeout_seconds,
        )
        self._storage = storage
        self._session: AuthSession | None = None
        self._listeners: list[AuthListener] = []

    @property
    def current_session(self) -> AuthSession | None:
        return self._session

    def on_auth_state_change(self, callback: AuthListener) -> Subscription:
        self._listeners.append(callback)
        return Subscription(self._listeners, callback)

    def _emit(self, event: AuthEvent, session: AuthSession | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception:
                logger.exception("Auth state listener failed for event=%s", event)

    async def _store(self, session: AuthSession | None) -> None:
        self._session = session
        if self._storage is None:
            return
        if session is None:
            await self._storage.clear()
        else:
            await self._storage.save(session.to_payload())

    async def sign_up(self, *, email: str, password: str, data: dict[str, Any]) -> AuthResponse:
        body = await self._call(
            "POST",
            "/signup",
            json={"email": email, "password": password, "data": data},
        )
        # with email confirmation on, the provider returns the bare user
        if body and body.get("access_token"):
            session = AuthSession.from_payload(body)
            await self._store(session)
            self._emit("SIGNED_IN", session)
            return AuthResponse(user=session.user, session=session)
        return AuthResponse(user=AuthUser.from_payload(body))

    async def sign_in_with_password(self, *, email: str, password: str) -> AuthSession:
        body = await self._call(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = AuthSession.from_payload(body)
        await self._store(session)
        self._emit("SIGNED_IN", session)
        return session

    async def refresh_session(self, *, emit: bool = True) -> AuthSession:
        current = self._session
        if current is None:
            raise AuthenticationFailed("No session to refresh")
        body = await self._call(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": current.refresh_token},
        )
        session = AuthSession.from_payload(body)
        await self._store(session)
        if emit:
            self._emit("TOKEN_REFRESHED", session)
        return session

    async def get_session(self) -> AuthSession | None:
        if self._session is None and self._storage is not None:
            payload = await self._storage.load()
            if payload:
                self._session = AuthSession.from_payload(payload)
        if self._session is None:
            return None
        if not self._session.is_expired():
            return self._session
        try:
            return await self.refresh_session()
        except AuthenticationFailed:
            logger.info("Persisted session could not be refreshed; discarding it")
            await self._store(None)
            return None

    async def get_user(self) -> AuthUser:
        session = self._session
        if session is None:
            raise AuthenticationFailed("No authenticated user")
        body = await self._call("GET", "/user", token=session.access_token)
        return AuthUser.from_payload(body)

    async def update_user(self, *, data: dict[str, Any]) -> AuthUser:
        session = self._session
        if session is None:
            raise AuthenticationFailed("No authenticated user")
        await self._call("PUT", "/user", token=session.access_token, json={"data": data})
        # new claims only reach the access token after a refresh
        refreshed = await self.refresh_session(emit=False)
        self._emit("USER_UPDATED", refreshed)
        return refreshed.user

    async def sign_out(self) -> None:
        session = self._session
        try:
            if session is not None:
                await self._call("POST", "/logout", token=session.access_token)
        finally:
            await self._store(None)
            self._emit("SIGNED_OUT", None)
