"""
Email enrichment tests: management API client, circuit breaker and the
mapping aggregator's tolerance for lookup failures.
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import httpx
import pytest

from peerlab_gateway.engine import MappingAggregator
from peerlab_gateway.errors import NotFound
from peerlab_gateway.integrations import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
    IdentityLookupError,
    IdentityProviderClient,
)
from peerlab_gateway.integrations.circuit_breaker import CircuitState
from peerlab_gateway.models import AsnAssignment, PrefixLease
from peerlab_gateway.pseudonym import user_handle
from peerlab_gateway.utils.time import utc_now

LOGTO_BASE = "https://logto.peerlab.test"


def logto_transport(emails: dict, calls: list | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request.url.path)
        if request.url.path == "/oidc/token":
            assert request.headers["authorization"].startswith("Basic ")
            return httpx.Response(200, json={"access_token": "m2m-token", "expires_in": 3600})
        if request.url.path.startswith("/api/users/"):
            assert request.headers["authorization"] == "Bearer m2m-token"
            user_id = request.url.path.rsplit("/", 1)[-1]
            if user_id not in emails:
                return httpx.Response(404, json={"message": "not found"})
            return httpx.Response(200, json={"id": user_id, "primaryEmail": emails[user_id]})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def make_client(transport: httpx.MockTransport, breaker=None) -> IdentityProviderClient:
    return IdentityProviderClient(
        management_api_url=f"{LOGTO_BASE}/api",
        app_id="m2m-app",
        app_secret="m2m-secret",
        circuit_breaker=breaker,
        transport=transport,
    )


@pytest.mark.asyncio
async def test_lookup_email_uses_cached_m2m_token():
    calls = []
    client = make_client(logto_transport({"u1": "u1@example.com", "u2": None}, calls))

    assert await client.lookup_email("u1") == "u1@example.com"
    assert await client.lookup_email("u2") is None

    assert calls.count("/oidc/token") == 1
    assert calls.count("/api/users/u1") == 1


@pytest.mark.asyncio
async def test_concurrent_lookups_share_one_token_request():
    calls = []
    emails = {f"u{i}": f"u{i}@example.com" for i in range(5)}
    inner = logto_transport(emails, calls)

    async def slow_token_handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oidc/token":
            # Let the other lookups reach the token check
            await asyncio.sleep(0.01)
        return inner.handler(request)

    client = make_client(httpx.MockTransport(slow_token_handler))

    results = await asyncio.gather(*(client.lookup_email(user_id) for user_id in emails))

    assert results == list(emails.values())
    assert calls.count("/oidc/token") == 1
    assert len([c for c in calls if c.startswith("/api/users/")]) == 5


@pytest.mark.asyncio
async def test_lookup_email_failure_raises():
    client = make_client(logto_transport({}))

    with pytest.raises(IdentityLookupError):
        await client.lookup_email("ghost")


def test_client_disabled_without_credentials():
    from peerlab_gateway.config import Settings

    config = Settings(logto_management_api=None, logto_m2m_app_id=None, logto_m2m_app_secret=None)

    assert IdentityProviderClient.from_settings(config) is None


@pytest.mark.asyncio
async def test_circuit_opens_after_threshold_and_fails_fast():
    breaker = CircuitBreaker(
        "test", CircuitBreakerConfig(failure_threshold=2, timeout_seconds=60)
    )
    attempts = []

    async def failing():
        attempts.append(1)
        raise IdentityLookupError("down")

    for _ in range(2):
        with pytest.raises(IdentityLookupError):
            await breaker.call(failing)

    assert breaker.state == CircuitState.OPEN
    with pytest.raises(CircuitBreakerOpen):
        await breaker.call(failing)
    assert len(attempts) == 2

    await breaker.reset()
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_circuit_half_open_closes_after_successes():
    breaker = CircuitBreaker(
        "test",
        CircuitBreakerConfig(failure_threshold=1, timeout_seconds=0, success_threshold=2),
    )

    async def failing():
        raise IdentityLookupError("down")

    async def ok():
        return "ok"

    with pytest.raises(IdentityLookupError):
        await breaker.call(failing)
    assert breaker.state == CircuitState.OPEN

    assert await breaker.call(ok) == "ok"
    assert breaker.state == CircuitState.HALF_OPEN
    assert await breaker.call(ok) == "ok"
    assert breaker.state == CircuitState.CLOSED


class FakeAssignments:
    def __init__(self, assignments):
        self.assignments = assignments

    async def list_all(self):
        return list(self.assignments)

    async def get(self, user_hash):
        return next((a for a in self.assignments if a.user_hash == user_hash), None)


class FakeLeases:
    def __init__(self, leases):
        self.leases = leases

    async def list_active_by_user(self):
        grouped = {}
        for lease in self.leases:
            grouped.setdefault(lease.user_hash, []).append(lease)
        return grouped

    async def list_active_for_user(self, user_hash):
        return [lease for lease in self.leases if lease.user_hash == user_hash]


class FlakyEmails:
    """Email lookup that fails for some users."""

    def __init__(self, emails):
        self.emails = emails

    async def lookup_email(self, user_id):
        if user_id not in self.emails:
            raise IdentityLookupError(f"lookup failed for {user_id}")
        return self.emails[user_id]


def _assignment(subject: str, asn: int) -> AsnAssignment:
    now = utc_now()
    return AsnAssignment(
        user_hash=user_handle(subject), user_id=subject, asn=asn, created_at=now, updated_at=now
    )


def _lease(subject: str, prefix: str) -> PrefixLease:
    now = utc_now()
    return PrefixLease(
        lease_id=uuid4(),
        user_hash=user_handle(subject),
        prefix=prefix,
        start_time=now,
        end_time=now + timedelta(hours=1),
        created_at=now,
        updated_at=now,
    )


def _aggregator(assignments, leases, identity_client=None) -> MappingAggregator:
    aggregator = MappingAggregator(None, identity_client=identity_client)
    aggregator.assignments = FakeAssignments(assignments)
    aggregator.leases = FakeLeases(leases)
    return aggregator


@pytest.mark.asyncio
async def test_enrichment_failure_leaves_email_empty():
    aggregator = _aggregator(
        [_assignment("alice", 65000), _assignment("bob", 65001)],
        [_lease("alice", "2001:db8:1::/48")],
        identity_client=FlakyEmails({"alice": "alice@example.com"}),
    )

    mappings = {m.user_id: m for m in await aggregator.list_mappings()}

    assert mappings["alice"].email == "alice@example.com"
    assert mappings["alice"].prefixes == ["2001:db8:1::/48"]
    assert mappings["bob"].email is None
    assert mappings["bob"].prefixes == []


@pytest.mark.asyncio
async def test_mappings_without_identity_client_have_no_email():
    aggregator = _aggregator([_assignment("alice", 65000)], [])

    mapping = await aggregator.get_mapping(user_handle("alice"))

    assert mapping.asn == 65000
    assert mapping.email is None


@pytest.mark.asyncio
async def test_get_mapping_distinguishes_unknown_and_unassigned():
    aggregator = _aggregator([], [_lease("carol", "2001:db8:2::/48")])

    with pytest.raises(NotFound, match="User has no ASN assigned"):
        await aggregator.get_mapping(user_handle("carol"))
    with pytest.raises(NotFound, match="User not found"):
        await aggregator.get_mapping(user_handle("nobody"))
