"""Client-side binding of an authenticated identity to one tenant and role.

The binder is the only writer of the bound state. Every bind is tagged with a
monotonically increasing operation number; a bind that finishes after a newer
operation has started is discarded, so the state always reflects the most
recent request. Provider events raised by the binder's own transitions are
ignored because the transition binds explicitly once it has finished.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID

from src.core.config import settings
from src.core.errors import (
    AccessDenied,
    AuthenticationFailed,
    TransientError,
    ValidationError,
)
from src.core.identity import AuthEvent, AuthSession, AuthUser, IdentityClient, Subscription
from src.core.provisioning import (
    MEMBER_ROLES,
    TenantProvisioner,
    TenantSignup,
    validate_credentials,
)
from src.models.base import utcnow
from src.schemas.session import ProfileOut, ProfileUpdate, SchoolOut
from src.session.resolution import DefaultTenantPolicy, TenantResolutionPolicy
from src.session.state import Binding, SessionStatus
from src.session.store import BindingStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionBinder:
    def __init__(
        self,
        identity: IdentityClient,
        store: BindingStore,
        *,
        provisioner: TenantProvisioner | None = None,
        tenant_policy: TenantResolutionPolicy | None = None,
        timeout_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._identity = identity
        self._store = store
        self._provisioner = provisioner
        self._tenant_policy = tenant_policy or DefaultTenantPolicy()
        self._timeout = timeout_seconds or settings.session_request_timeout_seconds
        self._clock = clock

        self.status = SessionStatus.UNINITIALIZED
        self.last_error: Exception | None = None
        self._binding: Binding | None = None
        self._session: AuthSession | None = None
        self._op = 0
        self._own_transitions = 0
        self._subscription: Subscription | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def binding(self) -> Binding | None:
        return self._binding if self.status is SessionStatus.BOUND else None

    @property
    def identity(self) -> AuthUser | None:
        return self._binding.identity if self.binding else None

    @property
    def tenant_id(self) -> UUID | None:
        return self._binding.tenant_id if self.binding else None

    @property
    def role(self) -> str | None:
        return self._binding.role if self.binding else None

    @property
    def profile(self) -> ProfileOut | None:
        return self._binding.profile if self.binding else None

    @property
    def tenant(self) -> SchoolOut | None:
        return self._binding.tenant if self.binding else None

    async def start(self) -> SessionStatus:
        """Subscribe to provider events and restore any persisted session."""
        if self._subscription is None:
            self._subscription = self._identity.on_auth_state_change(self._on_auth_event)

        op = self._next_op()
        self.status = SessionStatus.LOADING
        # restoring may refresh the token, which the provider also announces
        async with self._transition():
            try:
                session = await self._bounded(self._identity.get_session())
            except TransientError as exc:
                if op == self._op:
                    logger.warning("Could not restore session: identity provider unavailable")
                    self._reset(SessionStatus.ERROR)
                    self.last_error = exc
                return self.status

            if op != self._op:
                return self.status
            if session is None:
                self._reset(SessionStatus.UNAUTHENTICATED)
                return self.status

            await self._bind(session, op)
        return self.status

    async def teardown(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._next_op()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._reset(SessionStatus.UNINITIALIZED)

    async def refresh(self) -> Binding | None:
        """Re-read profile and school for the current session."""
        if self._session is None:
            return None
        await self._bind(self._session)
        return self.binding

    async def sign_up(
        self,
        email: str | None,
        password: str | None,
        role: str,
        *,
        school: Mapping[str, Any] | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> UUID:
        """Register a new account and bind it when a session comes back.

        ``admin`` creates a brand new school from ``school`` (keys ``name``,
        ``address``, ``phone``, ``email``, ``subscription_tier``). ``teacher``
        and ``parent`` join the school chosen by the tenant policy.
        """
        role = (role or "").strip().lower()
        if role == "admin":
            return await self._sign_up_admin(email, password, school, first_name, last_name)
        if role not in MEMBER_ROLES:
            raise ValidationError("Role must be admin, teacher or parent", field="role")

        normalized = validate_credentials(email, password)
        tenant_id = await self._tenant_policy.resolve(email=normalized, role=role)
        async with self._transition():
            enrolled = await self._bounded(
                self._require_provisioner().enroll_member(
                    self._identity,
                    email=normalized,
                    password=password,
                    role=role,
                    tenant_id=tenant_id,
                    first_name=first_name,
                    last_name=last_name,
                )
            )
            if enrolled.session is not None:
                await self._bind(enrolled.session)
        return enrolled.user_id

    async def _sign_up_admin(
        self,
        email: str | None,
        password: str | None,
        school: Mapping[str, Any] | None,
        first_name: str | None,
        last_name: str | None,
    ) -> UUID:
        if not school or not school.get("name"):
            raise ValidationError("School name is required for admin registration", field="schoolName")

        provisioned = await self._require_provisioner().provision(
            TenantSignup(
                email=email,
                password=password,
                school_name=school.get("name"),
                school_address=school.get("address"),
                school_phone=school.get("phone"),
                school_email=school.get("email"),
                admin_first_name=first_name,
                admin_last_name=last_name,
                subscription_tier=school.get("subscription_tier"),
            )
        )
        async with self._transition():
            session = await self._bounded(
                self._identity.sign_in_with_password(email=email.strip().lower(), password=password)
            )
            await self._bind(session)
        return provisioned.user_id

    async def sign_in(self, email: str | None, password: str | None) -> Binding:
        if not email or not password:
            raise ValidationError(
                "Email and password are required",
                field="email" if not email else "password",
            )

        async with self._transition():
            session = await self._bounded(
                self._identity.sign_in_with_password(email=email.strip().lower(), password=password)
            )
            if await self._bind(session):
                return self._binding
            failure = self.last_error
            await self._revoke()

        if isinstance(failure, TransientError):
            raise TransientError() from failure
        raise AuthenticationFailed("Failed to load user data")

    async def sign_out(self) -> None:
        self._next_op()
        if self._session is None and self.status is SessionStatus.UNAUTHENTICATED:
            return
        try:
            await self._bounded(self._identity.sign_out())
        except Exception:
            logger.exception("Error revoking session at identity provider")
        finally:
            self._reset(SessionStatus.UNAUTHENTICATED)

    async def update_profile(self, changes: Mapping[str, Any]) -> Binding:
        binding = self._require_bound()
        values = ProfileUpdate.model_validate(dict(changes)).changes()
        if not values:
            return binding

        updated = await self._bounded(
            self._store.update_profile(binding.identity.id, binding.tenant_id, values)
        )
        if not updated:
            raise AccessDenied("Profile not found for this school")

        if not await self._bind(binding.session):
            raise AuthenticationFailed("Failed to load user data")
        return self._binding

    async def switch_tenant(self, tenant_id: UUID | str) -> Binding:
        binding = self._require_bound()
        try:
            target = UUID(str(tenant_id))
        except ValueError as exc:
            raise ValidationError("Invalid tenant id", field="tenantId") from exc

        profile = await self._bounded(self._store.load_active_profile(binding.identity.id, target))
        school = await self._bounded(self._store.load_active_school(target)) if profile else None
        if profile is None or school is None:
            raise AccessDenied("Access denied to this tenant")

        async with self._transition():
            await self._bounded(
                self._identity.update_user(data={"tenant_id": str(target), "role": profile.role})
            )
            session = self._identity.current_session
            if session is None or not await self._bind(session):
                raise AuthenticationFailed("Failed to load tenant data")
        logger.info("Identity=%s switched to tenant=%s", binding.identity.id, target)
        return self._binding

    async def handle_auth_state_change(self, event: AuthEvent, session: AuthSession | None) -> None:
        logger.info(
            "Auth state change event=%s identity=%s",
            event,
            session.user.id if session else None,
        )
        op = self._next_op()
        if session is None:
            self._reset(SessionStatus.UNAUTHENTICATED)
            return

        if await self._bind(session, op) or op != self._op:
            return
        if session.user.tenant_id is not None:
            # a tenant claim without a usable profile is not a session we keep
            logger.warning("Identity=%s failed tenant validation; signing out", session.user.id)
            await self._revoke()

    def _on_auth_event(self, event: AuthEvent, session: AuthSession | None) -> None:
        if session is None:
            self._next_op()
            self._reset(SessionStatus.UNAUTHENTICATED)
            return
        if self._own_transitions:
            return
        self._spawn(self.handle_auth_state_change(event, session))

    async def _bind(self, session: AuthSession, op: int | None = None) -> bool:
        """Resolve ``session`` to a binding. Returns whether the binder is now bound."""
        if op is None:
            op = self._next_op()
        self.status = SessionStatus.LOADING
        self.last_error = None

        binding: Binding | None = None
        failure: Exception | None = None
        try:
            binding = await self._bounded(self._resolve(session))
        except TransientError as exc:
            logger.warning("Bind for identity=%s timed out or provider unavailable", session.user.id)
            failure = exc
        except Exception as exc:
            logger.exception("Bind failed for identity=%s", session.user.id)
            failure = exc

        if op != self._op:
            logger.debug("Discarding stale bind op=%s (latest=%s)", op, self._op)
            return self.status is SessionStatus.BOUND

        if binding is None:
            self._reset(SessionStatus.UNAUTHENTICATED)
            self.last_error = failure
            return False

        self._session = session
        self._binding = binding
        self.status = SessionStatus.BOUND
        self._spawn(self._record_last_login(binding))
        return True

    async def _resolve(self, session: AuthSession) -> Binding | None:
        user = session.user
        claimed_tenant = user.tenant_id
        if claimed_tenant is not None:
            profile = await self._store.load_active_profile(user.id, claimed_tenant)
        else:
            memberships = await self._store.find_active_memberships(user.id)
            profile = memberships[0] if memberships else None
        if profile is None:
            logger.warning("No active profile for identity=%s tenant=%s", user.id, claimed_tenant)
            return None

        school = await self._store.load_active_school(profile.tenant_id)
        if school is None:
            logger.warning("School=%s is missing or inactive", profile.tenant_id)
            return None

        return Binding(
            identity=user,
            session=session,
            tenant_id=profile.tenant_id,
            role=profile.role,
            profile=profile,
            tenant=school,
        )

    async def _record_last_login(self, binding: Binding) -> None:
        try:
            await self._store.touch_last_login(binding.identity.id, binding.tenant_id, self._clock())
        except Exception:
            logger.exception("Failed to record last login for identity=%s", binding.identity.id)

    async def _revoke(self) -> None:
        try:
            await self._bounded(self._identity.sign_out())
        except Exception:
            logger.exception("Error revoking session at identity provider")
        self._reset(SessionStatus.UNAUTHENTICATED)

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise TransientError() from exc

    @asynccontextmanager
    async def _transition(self) -> AsyncIterator[None]:
        self._own_transitions += 1
        try:
            yield
        finally:
            self._own_transitions -= 1

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _next_op(self) -> int:
        self._op += 1
        return self._op

    def _reset(self, status: SessionStatus) -> None:
        self._binding = None
        self._session = None
        self.status = status

    def _require_bound(self) -> Binding:
        if self.binding is None:
            raise AuthenticationFailed("No authenticated user")
        return self._binding

    def _require_provisioner(self) -> TenantProvisioner:
        if self._provisioner is None:
            raise RuntimeError("SessionBinder was created without a TenantProvisioner")
        return self._provisioner
