from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any
from uuid import UUID, uuid4

import pytest

from src.core.errors import AuthenticationFailed, ConflictError
from src.core.identity import AuthResponse, AuthSession, AuthUser, Subscription
from src.core.provisioning import TenantProvisioner
from src.schemas.session import ProfileOut, SchoolOut


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemorySchoolStore:
    """Schools, profiles and terms in dicts; serves both the provisioner and the binder."""

    def __init__(self) -> None:
        self.schools: dict[UUID, dict[str, Any]] = {}
        self.profiles: dict[tuple[UUID, UUID], dict[str, Any]] = {}
        self.terms: list[dict[str, Any]] = []
        self.extensions: list[tuple[UUID, str, UUID]] = []
        self.profile_writes: list[dict[str, Any]] = []
        self.last_logins: list[tuple[UUID, UUID, datetime]] = []
        self.failures: dict[str, Exception] = {}
        self.gates: dict[UUID, asyncio.Event] = {}

    def _maybe_fail(self, operation: str) -> None:
        error = self.failures.get(operation)
        if error is not None:
            raise error

    def add_school(self, name: str = "Lincoln", *, status: str = "active") -> UUID:
        school_id = uuid4()
        self.schools[school_id] = {
            "id": school_id,
            "name": name,
            "subscription_tier": "free",
            "subscription_status": status,
            "max_students": 500,
            "max_teachers": 50,
        }
        return school_id

    def add_profile(
        self,
        identity_id: UUID,
        tenant_id: UUID,
        *,
        role: str = "admin",
        is_active: bool = True,
        **values: Any,
    ) -> None:
        self.profiles[(identity_id, tenant_id)] = {
            "id": identity_id,
            "tenant_id": tenant_id,
            "email": values.pop("email", "user@school.edu"),
            "role": role,
            "is_active": is_active,
            "last_login": None,
            "created_at": _now(),
            **values,
        }

    # provisioning side

    async def school_name_exists(self, name: str) -> bool:
        wanted = name.strip().lower()
        return any(school["name"].lower() == wanted for school in self.schools.values())

    async def create_school(self, **values: Any) -> UUID:
        self._maybe_fail("create_school")
        if await self.school_name_exists(values["name"]):
            raise ConflictError("school name taken")
        school_id = uuid4()
        self.schools[school_id] = {"id": school_id, **values}
        return school_id

    async def delete_school(self, school_id: UUID) -> None:
        self.schools.pop(school_id, None)
        self.profiles = {key: row for key, row in self.profiles.items() if key[1] != school_id}
        self.terms = [term for term in self.terms if term["tenant_id"] != school_id]

    async def create_profile(self, tenant_id: UUID, **values: Any) -> None:
        self._maybe_fail("create_profile")
        identity_id = values.pop("id")
        self.add_profile(identity_id, tenant_id, **values)

    async def delete_profile(self, tenant_id: UUID, identity_id: UUID) -> None:
        self.profiles.pop((identity_id, tenant_id), None)

    async def create_academic_term(self, tenant_id: UUID, **values: Any) -> None:
        self._maybe_fail("create_academic_term")
        self.terms.append({"tenant_id": tenant_id, **values})

    async def create_member_extension(self, tenant_id: UUID, role: str, profile_id: UUID) -> None:
        self._maybe_fail("create_member_extension")
        self.extensions.append((tenant_id, role, profile_id))

    async def identities_with_profiles(self, identity_ids) -> set[UUID]:  # noqa: ANN001
        wanted = set(identity_ids)
        return {identity_id for identity_id, _ in self.profiles if identity_id in wanted}

    # binding side

    async def load_active_profile(self, identity_id: UUID, tenant_id: UUID) -> ProfileOut | None:
        gate = self.gates.get(tenant_id)
        if gate is not None:
            await gate.wait()
        row = self.profiles.get((identity_id, tenant_id))
        if row is None or not row["is_active"]:
            return None
        return ProfileOut(**row)

    async def find_active_memberships(self, identity_id: UUID) -> list[ProfileOut]:
        rows = [
            row
            for (profile_id, tenant_id), row in self.profiles.items()
            if profile_id == identity_id
            and row["is_active"]
            and self.schools.get(tenant_id, {}).get("subscription_status") == "active"
        ]
        rows.sort(key=lambda row: row["last_login"] or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return [ProfileOut(**row) for row in rows]

    async def load_active_school(self, tenant_id: UUID) -> SchoolOut | None:
        row = self.schools.get(tenant_id)
        if row is None or row.get("subscription_status") != "active":
            return None
        return SchoolOut(**row)

    async def touch_last_login(self, identity_id: UUID, tenant_id: UUID, at: datetime) -> None:
        self._maybe_fail("touch_last_login")
        self.last_logins.append((identity_id, tenant_id, at))
        row = self.profiles.get((identity_id, tenant_id))
        if row is not None:
            row["last_login"] = at

    async def update_profile(self, identity_id: UUID, tenant_id: UUID, changes: dict[str, Any]) -> bool:
        row = self.profiles.get((identity_id, tenant_id))
        if row is None:
            return False
        self.profile_writes.append(dict(changes))
        row.update(changes)
        return True


class FakeIdentityAdmin:
    """Identity provider user table plus its admin API."""

    def __init__(self) -> None:
        self.users: dict[UUID, AuthUser] = {}
        self.passwords: dict[UUID, str] = {}
        self.deleted: list[UUID] = []
        self.create_error: Exception | None = None

    def add_user(
        self,
        email: str,
        password: str = "correct-horse",
        *,
        metadata: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> AuthUser:
        user = AuthUser(
            id=uuid4(),
            email=email.lower(),
            user_metadata=dict(metadata or {}),
            created_at=created_at or _now(),
        )
        self.users[user.id] = user
        self.passwords[user.id] = password
        return user

    def by_email(self, email: str) -> AuthUser | None:
        wanted = email.strip().lower()
        return next((user for user in self.users.values() if user.email == wanted), None)

    async def all_users(self) -> list[AuthUser]:
        return list(self.users.values())

    async def find_user_by_email(self, email: str) -> AuthUser | None:
        await asyncio.sleep(0)
        return self.by_email(email)

    async def create_user(
        self,
        *,
        email: str,
        password: str,
        user_metadata: dict[str, Any],
        email_confirm: bool = True,
    ) -> AuthUser:
        await asyncio.sleep(0)
        if self.create_error is not None:
            raise self.create_error
        if self.by_email(email) is not None:
            raise ConflictError("email taken")
        return self.add_user(email, password, metadata=user_metadata)

    async def delete_user(self, user_id: UUID) -> None:
        self.users.pop(user_id, None)
        self.deleted.append(user_id)


def session_for(user: AuthUser) -> AuthSession:
    return AuthSession(
        access_token=f"access-{uuid4().hex}",
        refresh_token=f"refresh-{uuid4().hex}",
        user=user,
        expires_at=None,
    )


class FakeIdentityClient:
    """End-user side of the fake provider; emits auth events like the real client."""

    def __init__(self, directory: FakeIdentityAdmin, session: AuthSession | None = None) -> None:
        self.directory = directory
        self._session = session
        self._listeners: list = []
        self.sign_out_calls = 0
        self.update_calls: list[dict[str, Any]] = []
        self.get_session_error: Exception | None = None
        self.sign_out_error: Exception | None = None

    @property
    def current_session(self) -> AuthSession | None:
        return self._session

    def on_auth_state_change(self, callback) -> Subscription:  # noqa: ANN001
        self._listeners.append(callback)
        return Subscription(self._listeners, callback)

    def emit(self, event: str, session: AuthSession | None) -> None:
        for listener in list(self._listeners):
            listener(event, session)

    async def get_session(self) -> AuthSession | None:
        if self.get_session_error is not None:
            raise self.get_session_error
        return self._session

    async def sign_in_with_password(self, *, email: str, password: str) -> AuthSession:
        user = self.directory.by_email(email)
        if user is None or self.directory.passwords[user.id] != password:
            raise AuthenticationFailed("Invalid login credentials")
        self._session = session_for(user)
        self.emit("SIGNED_IN", self._session)
        return self._session

    async def sign_up(self, *, email: str, password: str, data: dict[str, Any]) -> AuthResponse:
        user = await self.directory.create_user(email=email, password=password, user_metadata=data)
        self._session = session_for(user)
        self.emit("SIGNED_IN", self._session)
        return AuthResponse(user=user, session=self._session)

    async def update_user(self, *, data: dict[str, Any]) -> AuthUser:
        self.update_calls.append(dict(data))
        current = self._session.user
        user = replace(current, user_metadata={**current.user_metadata, **data})
        self.directory.users[user.id] = user
        self._session = session_for(user)
        self.emit("USER_UPDATED", self._session)
        return user

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        self._session = None
        self.emit("SIGNED_OUT", None)
        if self.sign_out_error is not None:
            raise self.sign_out_error


@pytest.fixture
def school_store() -> InMemorySchoolStore:
    return InMemorySchoolStore()


@pytest.fixture
def identity_admin() -> FakeIdentityAdmin:
    return FakeIdentityAdmin()


@pytest.fixture
def identity_client(identity_admin: FakeIdentityAdmin) -> FakeIdentityClient:
    return FakeIdentityClient(identity_admin)


@pytest.fixture
def provisioner(school_store: InMemorySchoolStore, identity_admin: FakeIdentityAdmin) -> TenantProvisioner:
    return TenantProvisioner(school_store, identity_admin, today=lambda: date(2026, 10, 19))
