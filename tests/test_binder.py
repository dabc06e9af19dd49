from __future__ import annotations

import asyncio
import logging
import time
from types import SimpleNamespace
from uuid import uuid4

import pytest

from conftest import FakeIdentityAdmin, FakeIdentityClient, InMemorySchoolStore, session_for
from src.core.errors import AccessDenied, AuthenticationFailed, TransientError, ValidationError
from src.core.identity import AuthUser, IdentityClient
from src.core.provisioning import TenantProvisioner
from src.session import DefaultTenantPolicy, MemorySessionStorage, SessionBinder, SessionStatus

PASSWORD = "correct-horse"


async def _drain() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


@pytest.fixture
def binder(
    identity_client: FakeIdentityClient,
    school_store: InMemorySchoolStore,
    provisioner: TenantProvisioner,
) -> SessionBinder:
    return SessionBinder(
        identity_client,
        school_store,
        provisioner=provisioner,
        timeout_seconds=1.0,
    )


def _member(
    store: InMemorySchoolStore,
    admin: FakeIdentityAdmin,
    *,
    role: str = "teacher",
    school: str = "Lincoln",
    claim: bool = True,
):  # noqa: ANN202
    tenant_id = store.add_school(school)
    metadata = {"tenant_id": str(tenant_id), "role": role} if claim else {}
    user = admin.add_user(f"{role}@{school.lower()}.edu", PASSWORD, metadata=metadata)
    store.add_profile(user.id, tenant_id, role=role, email=user.email)
    return user, tenant_id


@pytest.mark.asyncio
async def test_start_without_session_is_unauthenticated(binder: SessionBinder) -> None:
    status = await binder.start()

    assert status is SessionStatus.UNAUTHENTICATED
    assert binder.binding is None


@pytest.mark.asyncio
async def test_start_restores_and_binds_persisted_session(
    binder: SessionBinder,
    identity_client: FakeIdentityClient,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    user, tenant_id = _member(school_store, identity_admin)
    identity_client._session = session_for(user)

    status = await binder.start()
    await _drain()

    assert status is SessionStatus.BOUND
    assert binder.tenant_id == tenant_id
    assert binder.role == "teacher"
    assert binder.tenant.name == "Lincoln"
    assert binder.identity.id == user.id
    assert school_store.last_logins[0][:2] == (user.id, tenant_id)


@pytest.mark.asyncio
async def test_start_reports_error_when_provider_is_unreachable(
    binder: SessionBinder,
    identity_client: FakeIdentityClient,
) -> None:
    identity_client.get_session_error = TransientError()

    status = await binder.start()

    assert status is SessionStatus.ERROR
    assert binder.binding is None
    assert isinstance(binder.last_error, TransientError)


@pytest.mark.asyncio
async def test_sign_in_binds_tenant_and_role(
    binder: SessionBinder,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    user, tenant_id = _member(school_store, identity_admin, role="parent")

    binding = await binder.sign_in(" Parent@Lincoln.edu ", PASSWORD)

    assert binder.status is SessionStatus.BOUND
    assert binding.tenant_id == tenant_id
    assert binding.role == "parent"
    assert binding.profile.id == user.id


@pytest.mark.asyncio
async def test_sign_in_with_wrong_password_leaves_state_alone(
    binder: SessionBinder,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    _member(school_store, identity_admin)
    await binder.start()

    with pytest.raises(AuthenticationFailed, match="Invalid login credentials"):
        await binder.sign_in("teacher@lincoln.edu", "wrong-password")

    assert binder.status is SessionStatus.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_sign_in_requires_credentials(binder: SessionBinder) -> None:
    with pytest.raises(ValidationError) as exc:
        await binder.sign_in("teacher@lincoln.edu", "")

    assert exc.value.field == "password"


@pytest.mark.asyncio
async def test_inactive_profile_fails_bind_and_revokes_session(
    binder: SessionBinder,
    identity_client: FakeIdentityClient,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    user, tenant_id = _member(school_store, identity_admin)
    school_store.profiles[(user.id, tenant_id)]["is_active"] = False

    with pytest.raises(AuthenticationFailed, match="Failed to load user data"):
        await binder.sign_in("teacher@lincoln.edu", PASSWORD)

    assert binder.status is SessionStatus.UNAUTHENTICATED
    assert binder.binding is None
    assert binder.tenant_id is None
    assert binder.profile is None
    assert identity_client.sign_out_calls == 1
    assert identity_client.current_session is None


@pytest.mark.asyncio
async def test_inactive_school_fails_bind(
    binder: SessionBinder,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    _, tenant_id = _member(school_store, identity_admin)
    school_store.schools[tenant_id]["subscription_status"] = "suspended"

    with pytest.raises(AuthenticationFailed, match="Failed to load user data"):
        await binder.sign_in("teacher@lincoln.edu", PASSWORD)

    assert binder.binding is None


@pytest.mark.asyncio
async def test_claim_for_tenant_without_profile_is_a_bind_failure(
    binder: SessionBinder,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    user, _ = _member(school_store, identity_admin)
    other_tenant = school_store.add_school("Jefferson")
    user.user_metadata["tenant_id"] = str(other_tenant)

    with pytest.raises(AuthenticationFailed):
        await binder.sign_in("teacher@lincoln.edu", PASSWORD)

    assert binder.status is SessionStatus.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_without_claim_the_most_recent_membership_is_bound(
    binder: SessionBinder,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    user, first_tenant = _member(school_store, identity_admin, claim=False)
    second_tenant = school_store.add_school("Jefferson")
    school_store.add_profile(user.id, second_tenant, role="parent", email=user.email)
    school_store.profiles[(user.id, second_tenant)]["last_login"] = school_store.profiles[
        (user.id, first_tenant)
    ]["created_at"]

    binding = await binder.sign_in("teacher@lincoln.edu", PASSWORD)

    assert binding.tenant_id == second_tenant
    assert binding.role == "parent"


@pytest.mark.asyncio
async def test_bind_timeout_surfaces_as_transient_error(
    identity_client: FakeIdentityClient,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    _, tenant_id = _member(school_store, identity_admin)
    school_store.gates[tenant_id] = asyncio.Event()
    binder = SessionBinder(identity_client, school_store, timeout_seconds=0.05)

    with pytest.raises(TransientError):
        await binder.sign_in("teacher@lincoln.edu", PASSWORD)

    assert binder.status is SessionStatus.UNAUTHENTICATED
    assert binder.binding is None


@pytest.mark.asyncio
async def test_sign_out_when_unauthenticated_is_a_no_op(
    binder: SessionBinder,
    identity_client: FakeIdentityClient,
) -> None:
    await binder.start()

    await binder.sign_out()
    await binder.sign_out()

    assert binder.status is SessionStatus.UNAUTHENTICATED
    assert identity_client.sign_out_calls == 0


@pytest.mark.asyncio
async def test_sign_out_clears_binding_even_if_revocation_fails(
    binder: SessionBinder,
    identity_client: FakeIdentityClient,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
    caplog: pytest.LogCaptureFixture,
) -> None:
    _member(school_store, identity_admin)
    await binder.sign_in("teacher@lincoln.edu", PASSWORD)
    identity_client.sign_out_error = TransientError()

    with caplog.at_level(logging.ERROR, logger="src.session.binder"):
        await binder.sign_out()

    assert binder.status is SessionStatus.UNAUTHENTICATED
    assert binder.binding is None
    assert identity_client.sign_out_calls == 1
    assert "Error revoking session" in caplog.text


@pytest.mark.asyncio
async def test_update_profile_applies_only_editable_fields(
    binder: SessionBinder,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    user, tenant_id = _member(school_store, identity_admin)
    await binder.sign_in("teacher@lincoln.edu", PASSWORD)

    binding = await binder.update_profile(
        {
            "firstName": "X",
            "id": str(uuid4()),
            "tenantId": str(uuid4()),
            "createdAt": "2020-01-01T00:00:00Z",
            "role": "admin",
        }
    )

    assert binding.profile.first_name == "X"
    assert binding.role == "teacher"
    assert binding.tenant_id == tenant_id
    assert school_store.profile_writes == [{"first_name": "X"}]
    assert (user.id, tenant_id) in school_store.profiles


@pytest.mark.asyncio
async def test_update_profile_accepts_snake_case_keys(
    binder: SessionBinder,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    _member(school_store, identity_admin)
    await binder.sign_in("teacher@lincoln.edu", PASSWORD)

    binding = await binder.update_profile({"last_name": "Lovelace", "avatarUrl": "https://cdn/a.png"})

    assert binding.profile.last_name == "Lovelace"
    assert binding.profile.avatar_url == "https://cdn/a.png"


@pytest.mark.asyncio
async def test_update_profile_requires_a_binding(binder: SessionBinder) -> None:
    with pytest.raises(AuthenticationFailed):
        await binder.update_profile({"firstName": "X"})


@pytest.mark.asyncio
async def test_switch_tenant_without_profile_is_denied_and_keeps_binding(
    binder: SessionBinder,
    identity_client: FakeIdentityClient,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    _member(school_store, identity_admin)
    before = await binder.sign_in("teacher@lincoln.edu", PASSWORD)
    other_tenant = school_store.add_school("Jefferson")

    with pytest.raises(AccessDenied):
        await binder.switch_tenant(other_tenant)

    assert binder.binding is before
    assert binder.status is SessionStatus.BOUND
    assert identity_client.update_calls == []


@pytest.mark.asyncio
async def test_switch_tenant_rebinds_and_updates_claims(
    binder: SessionBinder,
    identity_client: FakeIdentityClient,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    user, _ = _member(school_store, identity_admin)
    await binder.sign_in("teacher@lincoln.edu", PASSWORD)
    other_tenant = school_store.add_school("Jefferson")
    school_store.add_profile(user.id, other_tenant, role="parent", email=user.email)

    binding = await binder.switch_tenant(str(other_tenant))

    assert binding.tenant_id == other_tenant
    assert binding.role == "parent"
    assert binding.tenant.name == "Jefferson"
    assert identity_client.update_calls == [{"tenant_id": str(other_tenant), "role": "parent"}]
    assert identity_client.current_session.user.tenant_id == other_tenant


@pytest.mark.asyncio
async def test_stale_bind_result_is_discarded(
    binder: SessionBinder,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    user, first_tenant = _member(school_store, identity_admin)
    second_tenant = school_store.add_school("Jefferson")
    school_store.add_profile(user.id, second_tenant, role="parent", email=user.email)
    school_store.gates[first_tenant] = asyncio.Event()

    slow = asyncio.create_task(binder.handle_auth_state_change("SIGNED_IN", session_for(user)))
    await _drain()

    newer_user = AuthUser(
        id=user.id,
        email=user.email,
        user_metadata={"tenant_id": str(second_tenant), "role": "parent"},
    )
    await binder.handle_auth_state_change("TOKEN_REFRESHED", session_for(newer_user))
    assert binder.tenant_id == second_tenant

    school_store.gates[first_tenant].set()
    await slow

    assert binder.status is SessionStatus.BOUND
    assert binder.tenant_id == second_tenant
    assert binder.role == "parent"


@pytest.mark.asyncio
async def test_provider_event_for_unusable_tenant_forces_sign_out(
    binder: SessionBinder,
    identity_client: FakeIdentityClient,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    user, tenant_id = _member(school_store, identity_admin)
    school_store.profiles[(user.id, tenant_id)]["is_active"] = False
    await binder.start()

    identity_client._session = session_for(user)
    identity_client.emit("SIGNED_IN", identity_client.current_session)
    await _drain()

    assert binder.status is SessionStatus.UNAUTHENTICATED
    assert identity_client.sign_out_calls == 1


@pytest.mark.asyncio
async def test_provider_event_without_claim_does_not_sign_out(
    binder: SessionBinder,
    identity_client: FakeIdentityClient,
    identity_admin: FakeIdentityAdmin,
) -> None:
    user = identity_admin.add_user("stranger@nowhere.edu", PASSWORD)

    await binder.handle_auth_state_change("SIGNED_IN", session_for(user))

    assert binder.status is SessionStatus.UNAUTHENTICATED
    assert identity_client.sign_out_calls == 0


@pytest.mark.asyncio
async def test_signed_out_event_clears_binding_immediately(
    binder: SessionBinder,
    identity_client: FakeIdentityClient,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    _member(school_store, identity_admin)
    await binder.start()
    await binder.sign_in("teacher@lincoln.edu", PASSWORD)

    identity_client.emit("SIGNED_OUT", None)

    assert binder.status is SessionStatus.UNAUTHENTICATED
    assert binder.binding is None


@pytest.mark.asyncio
async def test_last_login_failure_is_only_logged(
    binder: SessionBinder,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
    caplog: pytest.LogCaptureFixture,
) -> None:
    _member(school_store, identity_admin)
    school_store.failures["touch_last_login"] = RuntimeError("replica is read-only")

    with caplog.at_level(logging.ERROR, logger="src.session.binder"):
        await binder.sign_in("teacher@lincoln.edu", PASSWORD)
        await _drain()

    assert binder.status is SessionStatus.BOUND
    assert "Failed to record last login" in caplog.text


@pytest.mark.asyncio
async def test_admin_sign_up_provisions_school_and_binds(
    binder: SessionBinder,
    school_store: InMemorySchoolStore,
) -> None:
    user_id = await binder.sign_up(
        "Principal@Lincoln.edu",
        PASSWORD,
        "admin",
        school={"name": "Lincoln", "subscription_tier": "basic"},
        first_name="Ada",
    )

    assert binder.status is SessionStatus.BOUND
    assert binder.role == "admin"
    assert binder.identity.id == user_id
    assert binder.tenant.name == "Lincoln"
    assert binder.tenant.subscription_tier == "basic"
    assert binder.profile.first_name == "Ada"


@pytest.mark.asyncio
async def test_admin_sign_up_requires_school_details(binder: SessionBinder) -> None:
    with pytest.raises(ValidationError) as exc:
        await binder.sign_up("principal@lincoln.edu", PASSWORD, "admin")

    assert exc.value.field == "schoolName"


@pytest.mark.asyncio
async def test_teacher_sign_up_joins_resolved_tenant(
    identity_client: FakeIdentityClient,
    school_store: InMemorySchoolStore,
    provisioner: TenantProvisioner,
) -> None:
    tenant_id = school_store.add_school("Lincoln")
    binder = SessionBinder(
        identity_client,
        school_store,
        provisioner=provisioner,
        tenant_policy=DefaultTenantPolicy(tenant_id),
    )
    await binder.start()

    user_id = await binder.sign_up("teacher@lincoln.edu", PASSWORD, "teacher", first_name="Grace")

    assert binder.status is SessionStatus.BOUND
    assert binder.tenant_id == tenant_id
    assert binder.role == "teacher"
    assert school_store.extensions == [(tenant_id, "teacher", user_id)]


@pytest.mark.asyncio
async def test_sign_up_rejects_unknown_role(binder: SessionBinder) -> None:
    with pytest.raises(ValidationError) as exc:
        await binder.sign_up("someone@lincoln.edu", PASSWORD, "janitor")

    assert exc.value.field == "role"


@pytest.mark.asyncio
async def test_teardown_unsubscribes_and_resets(
    binder: SessionBinder,
    identity_client: FakeIdentityClient,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    _member(school_store, identity_admin)
    await binder.start()
    await binder.sign_in("teacher@lincoln.edu", PASSWORD)

    await binder.teardown()

    assert binder.status is SessionStatus.UNINITIALIZED
    assert binder.binding is None
    assert identity_client._listeners == []


@pytest.mark.asyncio
async def test_refresh_picks_up_profile_changes(
    binder: SessionBinder,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
) -> None:
    user, tenant_id = _member(school_store, identity_admin)
    await binder.sign_in("teacher@lincoln.edu", PASSWORD)
    school_store.profiles[(user.id, tenant_id)]["phone"] = "555-0199"

    binding = await binder.refresh()

    assert binding.profile.phone == "555-0199"


@pytest.mark.asyncio
async def test_start_refreshes_an_expired_session_and_binds_it(
    monkeypatch: pytest.MonkeyPatch,
    school_store: InMemorySchoolStore,
) -> None:
    from src.core import identity

    tenant_id = school_store.add_school("Lincoln")
    user_id = uuid4()
    school_store.add_profile(user_id, tenant_id, role="teacher", email="teacher@lincoln.edu")
    user = {
        "id": str(user_id),
        "email": "teacher@lincoln.edu",
        "user_metadata": {"tenant_id": str(tenant_id), "role": "teacher"},
    }
    stored = {
        "access_token": "stale",
        "refresh_token": "refresh-1",
        "expires_at": int(time.time()) - 60,
        "user": user,
    }
    refreshed = {"access_token": "fresh", "refresh_token": "refresh-2", "expires_in": 3600, "user": user}
    urls: list[str] = []

    def _request(method: str, url: str, **kwargs):  # noqa: ANN003, ANN202
        urls.append(url)
        return SimpleNamespace(status_code=200, content=b"{}", json=lambda: refreshed)

    monkeypatch.setattr(identity.requests, "request", _request)
    client = IdentityClient(
        "https://auth.example",
        "anon-key",
        timeout=3,
        storage=MemorySessionStorage(stored),
    )
    binder = SessionBinder(client, school_store, timeout_seconds=1.0)

    status = await binder.start()

    assert status is SessionStatus.BOUND
    assert binder.tenant_id == tenant_id
    assert binder.identity.id == user_id
    assert urls == ["https://auth.example/auth/v1/token"]
    await binder.teardown()


@pytest.mark.asyncio
async def test_timed_out_member_sign_up_removes_the_new_identity(
    identity_client: FakeIdentityClient,
    identity_admin: FakeIdentityAdmin,
    school_store: InMemorySchoolStore,
    provisioner: TenantProvisioner,
) -> None:
    tenant_id = school_store.add_school("Lincoln")

    async def _slow_profile(*args, **kwargs) -> None:  # noqa: ANN002, ANN003
        await asyncio.sleep(5)

    school_store.create_profile = _slow_profile  # type: ignore[method-assign]
    binder = SessionBinder(
        identity_client,
        school_store,
        provisioner=provisioner,
        tenant_policy=DefaultTenantPolicy(tenant_id),
        timeout_seconds=0.2,
    )
    await binder.start()

    with pytest.raises(TransientError):
        await binder.sign_up("t@lincoln.edu", PASSWORD, "teacher")

    assert identity_admin.by_email("t@lincoln.edu") is None
    assert len(identity_admin.deleted) == 1
    assert identity_client.current_session is None
    assert binder.status is SessionStatus.UNAUTHENTICATED
    assert binder.binding is None
