"""RefreshCoordinator single-flight and failure-path tests."""
from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from fixtures import FakeOAuth, make_storage, seed_credential, utc_in
from services.credentials import CredentialStore
from services.exceptions import DriveDisconnected, ReauthRequired, RemoteWriteError
from services.google_oauth import TokenEndpointError, TokenGrant, TokenRevokedError
from services.identity import Principal
from services.refresh import RefreshCoordinator

U1 = Principal(id="u1", email="u1@example.com")


@pytest_asyncio.fixture
async def store(tmp_path):
    return CredentialStore(await make_storage(tmp_path))


@pytest.mark.asyncio
async def test_missing_credential_fails_without_refresh(store):
    oauth = FakeOAuth()
    coordinator = RefreshCoordinator(store, oauth)

    with pytest.raises(DriveDisconnected):
        await coordinator.ensure_valid(Principal(id="nobody"))
    with pytest.raises(DriveDisconnected):
        await coordinator.ensure_valid(Principal(id="nobody"), force=True)
    assert oauth.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("expires_in", [3600, None])
async def test_unexpired_or_unknown_expiry_returns_current_token(store, expires_in):
    await seed_credential(store, U1, "a1", "r1", utc_in(expires_in) if expires_in else None)
    oauth = FakeOAuth()
    coordinator = RefreshCoordinator(store, oauth)

    assert await coordinator.ensure_valid(U1) == "a1"
    assert oauth.calls == []
    assert coordinator.active_leases == 0


@pytest.mark.asyncio
async def test_expired_credential_is_refreshed_and_refresh_token_retained(store):
    """u1 {a1, r1, expired} refreshes to a2 while keeping r1."""
    await seed_credential(store, U1, "a1", "r1", utc_in(-60))
    oauth = FakeOAuth(access_token="a2", refresh_token=None)
    coordinator = RefreshCoordinator(store, oauth)

    assert await coordinator.ensure_valid(U1) == "a2"

    stored = await store.get("u1")
    assert stored.access_token == "a2"
    assert stored.refresh_token == "r1"
    assert not stored.is_expired()
    assert oauth.calls == ["r1"]


@pytest.mark.asyncio
async def test_rotated_refresh_token_is_stored(store):
    await seed_credential(store, U1, "a1", "r1", utc_in(-60))
    coordinator = RefreshCoordinator(store, FakeOAuth(access_token="a2", refresh_token="r2"))

    await coordinator.ensure_valid(U1)
    assert (await store.get("u1")).refresh_token == "r2"


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(store):
    await seed_credential(store, U1, "a1", "r1", utc_in(-60))
    oauth = FakeOAuth(access_token="a2", delay=0.05)
    coordinator = RefreshCoordinator(store, oauth)

    tokens = await asyncio.gather(*(coordinator.ensure_valid(U1) for _ in range(10)))

    assert tokens == ["a2"] * 10
    assert len(oauth.calls) == 1
    assert coordinator.active_leases == 0


@pytest.mark.asyncio
async def test_leases_for_different_principals_do_not_block(store):
    u2 = Principal(id="u2")
    await seed_credential(store, U1, "a1", "r-slow", utc_in(-60))
    await seed_credential(store, u2, "b1", "r-fast", utc_in(-60))
    release_slow = asyncio.Event()

    class GatedOAuth:
        async def refresh(self, refresh_token: str) -> TokenGrant:
            if refresh_token == "r-slow":
                await release_slow.wait()
            return TokenGrant(access_token=f"new-{refresh_token}", refresh_token=None, expires_at=utc_in(3600))

    coordinator = RefreshCoordinator(store, GatedOAuth())
    slow = asyncio.create_task(coordinator.ensure_valid(U1))
    await asyncio.sleep(0.05)

    assert await asyncio.wait_for(coordinator.ensure_valid(u2), timeout=2) == "new-r-fast"
    assert not slow.done()

    release_slow.set()
    assert await slow == "new-r-slow"
    assert coordinator.active_leases == 0


@pytest.mark.asyncio
async def test_revoked_refresh_token_requires_reauth(store):
    await seed_credential(store, U1, "a1", "r1", utc_in(-60))
    oauth = FakeOAuth(error=TokenRevokedError("invalid_grant"))
    coordinator = RefreshCoordinator(store, oauth)

    with pytest.raises(ReauthRequired):
        await coordinator.ensure_valid(U1)
    assert oauth.calls == ["r1"]
    assert coordinator.active_leases == 0
    assert (await store.get("u1")).access_token == "a1"


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_revoked_outcome(store):
    await seed_credential(store, U1, "a1", "r1", utc_in(-60))
    oauth = FakeOAuth(error=TokenRevokedError("invalid_grant"), delay=0.2)
    coordinator = RefreshCoordinator(store, oauth)

    results = await asyncio.gather(
        *(coordinator.ensure_valid(U1) for _ in range(10)),
        return_exceptions=True,
    )

    assert all(isinstance(result, ReauthRequired) for result in results)
    assert oauth.calls == ["r1"]
    assert coordinator.active_leases == 0


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_endpoint_timeout(store):
    await seed_credential(store, U1, "a1", "r1", utc_in(-60))
    oauth = FakeOAuth(error=TokenEndpointError("timed out"), delay=0.2)
    coordinator = RefreshCoordinator(store, oauth)
    loop = asyncio.get_running_loop()

    started = loop.time()
    results = await asyncio.gather(
        *(coordinator.ensure_valid(U1) for _ in range(5)),
        return_exceptions=True,
    )
    elapsed = loop.time() - started

    assert all(isinstance(result, RemoteWriteError) for result in results)
    assert len(oauth.calls) == 1
    # One endpoint wait, not one per queued caller.
    assert elapsed < 0.6


@pytest.mark.asyncio
async def test_later_caller_starts_a_new_flight_after_failure(store):
    await seed_credential(store, U1, "a1", "r1", utc_in(-60))
    oauth = FakeOAuth(error=TokenEndpointError("timed out"))
    coordinator = RefreshCoordinator(store, oauth)

    with pytest.raises(RemoteWriteError):
        await coordinator.ensure_valid(U1)
    oauth.error = None
    assert await coordinator.ensure_valid(U1) == "a2"
    assert oauth.calls == ["r1", "r1"]


@pytest.mark.asyncio
async def test_cancelled_leader_hands_refresh_to_waiter(store):
    await seed_credential(store, U1, "a1", "r1", utc_in(-60))
    oauth = FakeOAuth(access_token="a2", delay=0.2)
    coordinator = RefreshCoordinator(store, oauth)

    leader = asyncio.create_task(coordinator.ensure_valid(U1))
    await asyncio.sleep(0.05)
    waiter = asyncio.create_task(coordinator.ensure_valid(U1))
    await asyncio.sleep(0.05)
    leader.cancel()

    assert await asyncio.wait_for(waiter, timeout=2) == "a2"
    with pytest.raises(asyncio.CancelledError):
        await leader
    assert oauth.calls == ["r1", "r1"]
    assert coordinator.active_leases == 0


@pytest.mark.asyncio
async def test_missing_refresh_token_requires_reauth(store):
    await seed_credential(store, U1, "a1", None, utc_in(-60))
    oauth = FakeOAuth()
    coordinator = RefreshCoordinator(store, oauth)

    with pytest.raises(ReauthRequired):
        await coordinator.ensure_valid(U1)
    assert oauth.calls == []


@pytest.mark.asyncio
async def test_token_endpoint_outage_is_transient(store):
    await seed_credential(store, U1, "a1", "r1", utc_in(-60))
    coordinator = RefreshCoordinator(store, FakeOAuth(error=TokenEndpointError("timed out")))

    with pytest.raises(RemoteWriteError) as excinfo:
        await coordinator.ensure_valid(U1)
    assert excinfo.value.remote_id is None


@pytest.mark.asyncio
async def test_unconfigured_oauth_client_cannot_refresh(store):
    await seed_credential(store, U1, "a1", "r1", utc_in(-60))
    coordinator = RefreshCoordinator(store, None)

    with pytest.raises(RemoteWriteError):
        await coordinator.ensure_valid(U1)


@pytest.mark.asyncio
async def test_forced_refresh_bypasses_expiry(store):
    await seed_credential(store, U1, "a1", "r1", utc_in(3600))
    oauth = FakeOAuth(access_token="a2")
    coordinator = RefreshCoordinator(store, oauth)

    assert await coordinator.ensure_valid(U1, force=True, rejected_token="a1") == "a2"
    assert oauth.calls == ["r1"]


@pytest.mark.asyncio
async def test_forced_refresh_reuses_token_rotated_by_another_request(store):
    await seed_credential(store, U1, "a2", "r1", utc_in(3600))
    oauth = FakeOAuth(access_token="a3")
    coordinator = RefreshCoordinator(store, oauth)

    # The rejected token was already replaced by a concurrent refresh.
    assert await coordinator.ensure_valid(U1, force=True, rejected_token="a1") == "a2"
    assert oauth.calls == []


@pytest.mark.asyncio
async def test_leeway_refreshes_tokens_about_to_expire(store):
    await seed_credential(store, U1, "a1", "r1", utc_in(30))
    oauth = FakeOAuth(access_token="a2")
    coordinator = RefreshCoordinator(store, oauth, leeway_seconds=60)

    assert await coordinator.ensure_valid(U1) == "a2"
    assert len(oauth.calls) == 1
