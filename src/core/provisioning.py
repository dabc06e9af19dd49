"""Tenant provisioning and member enrollment.

Creating a school touches two systems that cannot share a transaction: the
relational store and the identity provider. Both workflows below are run as a
``Saga`` so that a failure part-way through unwinds the steps that already
committed. Identities orphaned by a crash between steps are removed later by
the reconciliation agent.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Literal, Protocol
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from src.core.config import settings
from src.core.db import SessionFactory, committed_session
from src.core.errors import ConflictError, ValidationError
from src.core.identity import AuthResponse, AuthSession, AuthUser
from src.core.repositories import (
    AcademicTermRepository,
    ParentRepository,
    ProfileDirectory,
    ProfileRepository,
    SchoolRepository,
    TeacherRepository,
)
from src.core.saga import Saga, SagaResults

logger = logging.getLogger(__name__)

SubscriptionTier = Literal["free", "basic", "premium"]
UserRole = Literal["teacher", "parent", "admin"]

SUBSCRIPTION_TIERS: frozenset[str] = frozenset({"free", "basic", "premium"})
MEMBER_ROLES: frozenset[str] = frozenset({"teacher", "parent"})
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(slots=True)
class TenantSignup:
    email: str | None = None
    password: str | None = None
    school_name: str | None = None
    school_address: str | None = None
    school_phone: str | None = None
    school_email: str | None = None
    admin_first_name: str | None = None
    admin_last_name: str | None = None
    subscription_tier: str | None = None


@dataclass(slots=True)
class ProvisionedTenant:
    tenant_id: UUID
    user_id: UUID


@dataclass(slots=True)
class EnrolledMember:
    tenant_id: UUID
    user_id: UUID
    session: AuthSession | None = None


def validate_credentials(email: str | None, password: str | None) -> str:
    """Return the normalised email or raise ``ValidationError``."""
    if not email or not password:
        raise ValidationError(
            "Email and password are required",
            field="email" if not email else "password",
        )
    normalized = email.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValidationError("Invalid email format", field="email")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
            field="password",
        )
    return normalized


def validate_signup(request: TenantSignup) -> TenantSignup:
    if not request.email or not request.password or not _clean(request.school_name):
        missing = next(
            name
            for name, value in (
                ("email", request.email),
                ("password", request.password),
                ("schoolName", _clean(request.school_name)),
            )
            if not value
        )
        raise ValidationError("Email, password, and school name are required", field=missing)

    email = validate_credentials(request.email, request.password)

    tier = (request.subscription_tier or "free").strip().lower()
    if tier not in SUBSCRIPTION_TIERS:
        raise ValidationError("Unknown subscription tier", field="subscriptionTier")

    school_email = _clean(request.school_email)
    return replace(
        request,
        email=email,
        school_name=_clean(request.school_name),
        school_address=_clean(request.school_address),
        school_phone=_clean(request.school_phone),
        school_email=school_email.lower() if school_email else None,
        admin_first_name=_clean(request.admin_first_name),
        admin_last_name=_clean(request.admin_last_name),
        subscription_tier=tier,
    )


def default_term_for(today: date) -> dict[str, Any]:
    year = today.year
    return {
        "name": f"Fall {year}",
        "start_date": date(year, 9, 1),
        "end_date": date(year + 1, 6, 30),
        "is_current": True,
        "academic_year": f"{year}-{year + 1}",
    }


class ProvisioningStore(Protocol):
    async def school_name_exists(self, name: str) -> bool: ...

    async def create_school(self, **values: Any) -> UUID: ...

    async def delete_school(self, school_id: UUID) -> None: ...

    async def create_profile(self, tenant_id: UUID, **values: Any) -> None: ...

    async def delete_profile(self, tenant_id: UUID, identity_id: UUID) -> None: ...

    async def create_academic_term(self, tenant_id: UUID, **values: Any) -> None: ...

    async def create_member_extension(self, tenant_id: UUID, role: str, profile_id: UUID) -> None: ...

    async def identities_with_profiles(self, identity_ids: Iterable[UUID]) -> set[UUID]: ...


class IdentityAdmin(Protocol):
    async def find_user_by_email(self, email: str) -> AuthUser | None: ...

    async def create_user(
        self,
        *,
        email: str,
        password: str,
        user_metadata: dict[str, Any],
        email_confirm: bool = True,
    ) -> AuthUser: ...

    async def delete_user(self, user_id: UUID) -> None: ...


class MemberSignup(Protocol):
    async def sign_up(self, *, email: str, password: str, data: dict[str, Any]) -> AuthResponse: ...

    async def sign_out(self) -> None: ...


class SqlProvisioningStore:
    """Each call is its own committed unit of work."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def school_name_exists(self, name: str) -> bool:
        async with self._session_factory() as session:
            return await SchoolRepository(session).name_exists(name)

    async def create_school(self, **values: Any) -> UUID:
        try:
            async with committed_session(self._session_factory) as session:
                school = await SchoolRepository(session).create(**values)
                return school.id
        except IntegrityError as exc:
            # lost a race against a concurrent signup for the same name
            raise ConflictError("school name taken") from exc

    async def delete_school(self, school_id: UUID) -> None:
        async with committed_session(self._session_factory) as session:
            await SchoolRepository(session).delete(school_id)

    async def create_profile(self, tenant_id: UUID, **values: Any) -> None:
        async with committed_session(self._session_factory) as session:
            await ProfileRepository(session, tenant_id=tenant_id).create(**values)

    async def delete_profile(self, tenant_id: UUID, identity_id: UUID) -> None:
        async with committed_session(self._session_factory) as session:
            await ProfileRepository(session, tenant_id=tenant_id).delete(identity_id)

    async def create_academic_term(self, tenant_id: UUID, **values: Any) -> None:
        async with committed_session(self._session_factory) as session:
            await AcademicTermRepository(session, tenant_id=tenant_id).create(**values)

    async def create_member_extension(self, tenant_id: UUID, role: str, profile_id: UUID) -> None:
        async with committed_session(self._session_factory) as session:
            if role == "teacher":
                await TeacherRepository(session, tenant_id=tenant_id).create(profile_id=profile_id)
            elif role == "parent":
                await ParentRepository(session, tenant_id=tenant_id).create(
                    profile_id=profile_id,
                    relationship_type="other",
                    emergency_contact=False,
                    can_pickup=False,
                )

    async def identities_with_profiles(self, identity_ids: Iterable[UUID]) -> set[UUID]:
        async with self._session_factory() as session:
            return await ProfileDirectory(session).identities_with_profiles(identity_ids)


class TenantProvisioner:
    def __init__(
        self,
        store: ProvisioningStore,
        identity_admin: IdentityAdmin,
        *,
        today: Callable[[], date] = date.today,
        max_students: int | None = None,
        max_teachers: int | None = None,
    ) -> None:
        self._store = store
        self._identity_admin = identity_admin
        self._today = today
        self._max_students = max_students or settings.default_max_students
        self._max_teachers = max_teachers or settings.default_max_teachers

    async def provision(self, request: TenantSignup) -> ProvisionedTenant:
        signup = validate_signup(request)

        if await self._identity_admin.find_user_by_email(signup.email):
            raise ConflictError("email taken")
        if await self._store.school_name_exists(signup.school_name):
            raise ConflictError("school name taken")

        async def create_school(_: SagaResults) -> UUID:
            return await self._store.create_school(
                name=signup.school_name,
                address=signup.school_address,
                phone=signup.school_phone,
                email=signup.school_email,
                subscription_tier=signup.subscription_tier,
                subscription_status="active",
                max_students=self._max_students,
                max_teachers=self._max_teachers,
            )

        async def delete_school(results: SagaResults) -> None:
            await self._store.delete_school(results["school"])

        async def create_identity(results: SagaResults) -> UUID:
            user = await self._identity_admin.create_user(
                email=signup.email,
                password=signup.password,
                user_metadata={
                    "tenant_id": str(results["school"]),
                    "role": "admin",
                    "first_name": signup.admin_first_name,
                    "last_name": signup.admin_last_name,
                },
                email_confirm=True,
            )
            return user.id

        async def delete_identity(results: SagaResults) -> None:
            await self._identity_admin.delete_user(results["identity"])

        async def create_profile(results: SagaResults) -> None:
            await self._store.create_profile(
                results["school"],
                id=results["identity"],
                email=signup.email,
                role="admin",
                first_name=signup.admin_first_name,
                last_name=signup.admin_last_name,
                is_active=True,
            )

        async def create_term(results: SagaResults) -> None:
            await self._store.create_academic_term(results["school"], **default_term_for(self._today()))

        results = await (
            Saga("provision-tenant")
            .step("school", create_school, compensate=delete_school, failure_message="Failed to create school")
            .step(
                "identity",
                create_identity,
                compensate=delete_identity,
                failure_message="Failed to create admin user",
            )
            .step("profile", create_profile, failure_message="Failed to create admin profile")
            .best_effort("academic_term", create_term)
            .run()
        )

        logger.info("Provisioned tenant=%s admin=%s", results["school"], results["identity"])
        return ProvisionedTenant(tenant_id=results["school"], user_id=results["identity"])

    async def enroll_member(
        self,
        identity: MemberSignup,
        *,
        email: str | None,
        password: str | None,
        role: str,
        tenant_id: UUID,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> EnrolledMember:
        """Create a teacher or parent account inside an existing tenant."""
        normalized_email = validate_credentials(email, password)
        if role not in MEMBER_ROLES:
            raise ValidationError("Role must be teacher or parent", field="role")

        async def create_identity(_: SagaResults) -> AuthResponse:
            return await identity.sign_up(
                email=normalized_email,
                password=password,
                data={
                    "tenant_id": str(tenant_id),
                    "role": role,
                    "first_name": _clean(first_name),
                    "last_name": _clean(last_name),
                },
            )

        async def delete_identity(results: SagaResults) -> None:
            response: AuthResponse = results["identity"]
            if response.session is not None:
                # the client holds (and may have persisted) the new user's session
                try:
                    await identity.sign_out()
                except Exception:
                    logger.exception("Failed to drop client session for identity=%s", response.user.id)
            await self._identity_admin.delete_user(response.user.id)

        async def create_profile(results: SagaResults) -> None:
            await self._store.create_profile(
                tenant_id,
                id=results["identity"].user.id,
                email=normalized_email,
                role=role,
                first_name=_clean(first_name),
                last_name=_clean(last_name),
                is_active=True,
            )

        async def delete_profile(results: SagaResults) -> None:
            await self._store.delete_profile(tenant_id, results["identity"].user.id)

        async def create_extension(results: SagaResults) -> None:
            await self._store.create_member_extension(tenant_id, role, results["identity"].user.id)

        results = await (
            Saga("enroll-member")
            .step("identity", create_identity, compensate=delete_identity, failure_message="Failed to create user")
            .step(
                "profile",
                create_profile,
                compensate=delete_profile,
                failure_message="Failed to create user profile",
            )
            .best_effort("extension", create_extension)
            .run()
        )

        response: AuthResponse = results["identity"]
        logger.info("Enrolled %s=%s into tenant=%s", role, response.user.id, tenant_id)
        return EnrolledMember(tenant_id=tenant_id, user_id=response.user.id, session=response.session)
