"""
test_orchestrator.py — End-to-end tests for AlertOrchestrator with fakes.

Covers:
    • Verified report → audience selected → alerts sent
    • Unverified report → no selection, no messages
    • Location lookup failure → unverified outcome, nothing sent
    • Audience failure after verification → empty dispatch with error
    • Concurrent runs share nothing
    • Unreachable directory or malformed geocoder reply → contained outcome
    • Real VerificationClient: stale report rejected, confirmed report
      alerts only users inside the radius

Run with:
    pytest tests/test_orchestrator.py -v
"""

from __future__ import annotations

import asyncio
import math
from datetime import date
from typing import AsyncIterator, Dict, List, Optional

import httpx
import pytest

from crowdalert.alerts.audience import AudienceSelector
from crowdalert.alerts.directory import InMemoryUserDirectory
from crowdalert.alerts.dispatcher import NotificationDispatcher
from crowdalert.alerts.models import (
    DisasterEvent,
    MediaKind,
    UserRecord,
    VerificationVerdict,
)
from crowdalert.alerts.orchestrator import DISASTER_ALERT_MESSAGE, AlertOrchestrator
from crowdalert.core.cache import MemoryTTLCache
from crowdalert.core.errors import NotFoundError, UpstreamUnavailableError
from crowdalert.core.retry import NO_RETRY
from crowdalert.spatial.distance import EARTH_RADIUS_M, GeoPoint
from crowdalert.spatial.geocoding import GeoResolver
from crowdalert.verification.media import MediaFetcher
from crowdalert.verification.verifier import VerificationClient

MUMBAI = GeoPoint(19.0760, 72.8777)
DEG_PER_KM = 1000 / (EARTH_RADIUS_M * math.pi / 180.0)


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

class FakeResolver:
    timeout = 1.0

    def __init__(self, table: Dict[str, GeoPoint], pincode: Optional[str] = "400001",
                 pincode_error: Optional[Exception] = None):
        self.table = table
        self.pincode = pincode
        self.pincode_error = pincode_error

    async def resolve_pincode(self, point: GeoPoint) -> str:
        if self.pincode_error is not None:
            raise self.pincode_error
        return self.pincode

    async def resolve_coordinates(self, code: str) -> GeoPoint:
        if code not in self.table:
            raise NotFoundError("coordinates", pincode=code)
        return self.table[code]


class FakeVerifier:
    def __init__(self, verified: bool = True):
        self.verified = verified
        self.calls = 0

    async def verify(self, event: DisasterEvent) -> VerificationVerdict:
        self.calls += 1
        await asyncio.sleep(0)
        if self.verified:
            return VerificationVerdict(verified=True, response_text="TRUE")
        return VerificationVerdict(verified=False, response_text="FALSE")


class FakeMessenger:
    def __init__(self):
        self.sent: List[str] = []

    async def send(self, to: str, body: str) -> str:
        self.sent.append(to)
        return f"SM{len(self.sent)}"

    async def close(self) -> None:
        return None


def _table() -> Dict[str, GeoPoint]:
    return {
        "400001": MUMBAI,
        "400050": GeoPoint(MUMBAI.latitude + 20 * DEG_PER_KM, MUMBAI.longitude),
        "411001": GeoPoint(MUMBAI.latitude + 300 * DEG_PER_KM, MUMBAI.longitude),
    }


def _users() -> List[UserRecord]:
    return [
        UserRecord("u1", "+919800000001", "400001"),
        UserRecord("u2", "9800000002", "400050"),
        UserRecord("u3", "+919800000003", "411001"),
        UserRecord("u4", "+919800000004", None),
    ]


def _make_event(title: str = "Building collapse") -> DisasterEvent:
    return DisasterEvent(
        title=title,
        description="Four-storey building collapsed near the station",
        location=MUMBAI,
        media_url="https://media.test/r1.mp4",
        media_kind=MediaKind.VIDEO,
    )


def _make_orchestrator(
    resolver: FakeResolver,
    verifier: FakeVerifier,
    messenger: FakeMessenger,
    users: Optional[List[UserRecord]] = None,
) -> AlertOrchestrator:
    selector = AudienceSelector(
        resolver,  # type: ignore[arg-type]
        InMemoryUserDirectory(_users() if users is None else users),
        concurrency=4,
        unit_timeout=1.0,
    )
    dispatcher = NotificationDispatcher(messenger, concurrency=2, timeout=1.0)
    return AlertOrchestrator(
        resolver,  # type: ignore[arg-type]
        verifier,  # type: ignore[arg-type]
        selector,
        dispatcher,
        radius_meters=100_000,
        run_limiter=asyncio.Semaphore(2),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Pipeline outcomes
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertOrchestrator:

    @pytest.mark.asyncio
    async def test_verified_report_alerts_nearby_users(self):
        messenger = FakeMessenger()
        orchestrator = _make_orchestrator(FakeResolver(_table()), FakeVerifier(True), messenger)

        outcome = await orchestrator.run(_make_event())

        assert outcome.verified is True
        assert outcome.pincode == "400001"
        assert {r.user_id for r in outcome.dispatch} == {"u1", "u2"}
        assert outcome.sent_count == 2
        assert sorted(messenger.sent) == ["+919800000001", "+919800000002"]

    @pytest.mark.asyncio
    async def test_unverified_report_sends_nothing(self):
        messenger = FakeMessenger()
        orchestrator = _make_orchestrator(FakeResolver(_table()), FakeVerifier(False), messenger)

        outcome = await orchestrator.run(_make_event())

        assert outcome.verified is False
        assert outcome.dispatch is None
        assert messenger.sent == []

    @pytest.mark.asyncio
    async def test_pincode_lookup_failure_is_unverified(self):
        verifier = FakeVerifier(True)
        messenger = FakeMessenger()
        resolver = FakeResolver(
            _table(), pincode_error=UpstreamUnavailableError("geocoding", "HTTP 503"),
        )
        outcome = await _make_orchestrator(resolver, verifier, messenger).run(_make_event())

        assert outcome.verified is False
        assert outcome.dispatch is None
        assert "geocoding" in outcome.error
        assert verifier.calls == 0
        assert messenger.sent == []

    @pytest.mark.asyncio
    async def test_audience_failure_after_verification(self):
        resolver = FakeResolver(_table(), pincode="999999")
        messenger = FakeMessenger()
        outcome = await _make_orchestrator(resolver, FakeVerifier(True), messenger).run(_make_event())

        assert outcome.verified is True
        assert outcome.dispatch == []
        assert outcome.error
        assert messenger.sent == []

    @pytest.mark.asyncio
    async def test_verified_with_empty_audience(self):
        outcome = await _make_orchestrator(
            FakeResolver(_table()), FakeVerifier(True), FakeMessenger(), users=[],
        ).run(_make_event())
        assert outcome.verified is True
        assert outcome.dispatch == []

    @pytest.mark.asyncio
    async def test_outcome_to_dict(self):
        outcome = await _make_orchestrator(
            FakeResolver(_table()), FakeVerifier(True), FakeMessenger(),
        ).run(_make_event())
        d = outcome.to_dict()
        assert d["verified"] is True
        assert d["sent"] == 2
        assert d["failed"] == 0
        assert len(d["dispatch"]) == 2

    @pytest.mark.asyncio
    async def test_concurrent_runs_independent(self):
        messenger = FakeMessenger()
        orchestrator = _make_orchestrator(FakeResolver(_table()), FakeVerifier(True), messenger)

        outcomes = await asyncio.gather(*(
            orchestrator.run(_make_event(f"Report {i}")) for i in range(4)
        ))
        assert all(o.sent_count == 2 for o in outcomes)
        assert len(messenger.sent) == 8

    def test_default_message(self):
        assert DISASTER_ALERT_MESSAGE.startswith("🚨 URGENT: Disaster Alert in your area")


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Failure isolation
# ═══════════════════════════════════════════════════════════════════════════

class UnreachableDirectory:
    """Directory whose backing store refuses connections."""

    async def iter_users(self) -> AsyncIterator[UserRecord]:
        raise ConnectionRefusedError("db down")
        yield  # pragma: no cover


class TestFailureIsolation:

    @pytest.mark.asyncio
    async def test_unreachable_directory_after_verification(self):
        resolver = FakeResolver(_table())
        messenger = FakeMessenger()
        selector = AudienceSelector(
            resolver,  # type: ignore[arg-type]
            UnreachableDirectory(),
            concurrency=4,
            unit_timeout=1.0,
        )
        orchestrator = AlertOrchestrator(
            resolver,  # type: ignore[arg-type]
            FakeVerifier(True),  # type: ignore[arg-type]
            selector,
            NotificationDispatcher(messenger, concurrency=2, timeout=1.0),
            radius_meters=100_000,
        )

        outcome = await orchestrator.run(_make_event())

        assert outcome.verified is True
        assert outcome.pincode == "400001"
        assert outcome.dispatch == []
        assert "user_directory" in outcome.error
        assert messenger.sent == []

    @pytest.mark.asyncio
    async def test_malformed_geocoder_reply_is_unverified(self):
        geocoder = httpx.AsyncClient(transport=httpx.MockTransport(
            lambda r: httpx.Response(200, json={"status": "OK", "results": ["garbage"]})
        ))
        resolver = GeoResolver(
            geocoder,
            api_key="k",
            base_url="https://geo.test/maps/api",
            timeout=1.0,
            retry_policy=NO_RETRY,
            cache=MemoryTTLCache(ttl_seconds=60),
            use_redis=False,
        )
        verifier = FakeVerifier(True)
        messenger = FakeMessenger()

        outcome = await _make_orchestrator(resolver, verifier, messenger).run(_make_event())  # type: ignore[arg-type]

        assert outcome.verified is False
        assert outcome.dispatch is None
        assert "malformed address_components" in outcome.error
        assert verifier.calls == 0
        assert messenger.sent == []


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Real verifier, scripted analysis
# ═══════════════════════════════════════════════════════════════════════════

class ScriptedAnalysis:
    """Analysis backend answering every prompt with the same text."""

    def __init__(self, text: str):
        self.text = text
        self.calls = 0

    async def generate(self, prompt: str, media_b64: str, mime_type: str) -> str:
        self.calls += 1
        return self.text


def _real_verifier(text: str) -> VerificationClient:
    media = httpx.AsyncClient(transport=httpx.MockTransport(
        lambda r: httpx.Response(200, content=b"\x00\x00\x00\x18ftypmp42")
    ))
    return VerificationClient(
        MediaFetcher(media, max_bytes=1024, timeout=1.0),
        ScriptedAnalysis(text),  # type: ignore[arg-type]
        timeout=1.0,
        today=lambda: date(2024, 7, 26),
    )


def _ring_table() -> Dict[str, GeoPoint]:
    return {
        "400001": MUMBAI,
        "401050": GeoPoint(MUMBAI.latitude + 50 * DEG_PER_KM, MUMBAI.longitude),
        "402150": GeoPoint(MUMBAI.latitude + 150 * DEG_PER_KM, MUMBAI.longitude),
        "401099": GeoPoint(MUMBAI.latitude + 99.999 * DEG_PER_KM, MUMBAI.longitude),
    }


def _ring_users() -> List[UserRecord]:
    return [
        UserRecord("near", "+919800000050", "401050"),
        UserRecord("far", "+919800000150", "402150"),
        UserRecord("edge", "+919800099999", "401099"),
    ]


class TestWithVerificationClient:

    @pytest.mark.asyncio
    async def test_stale_event_is_rejected(self):
        messenger = FakeMessenger()
        orchestrator = _make_orchestrator(
            FakeResolver(_ring_table()),
            _real_verifier("FALSE — event occurred three months ago"),  # type: ignore[arg-type]
            messenger,
            users=_ring_users(),
        )

        outcome = await orchestrator.run(_make_event())

        assert outcome.verified is False
        assert outcome.pincode == "400001"
        assert outcome.dispatch is None
        assert messenger.sent == []

    @pytest.mark.asyncio
    async def test_confirmed_event_alerts_users_inside_radius(self):
        messenger = FakeMessenger()
        orchestrator = _make_orchestrator(
            FakeResolver(_ring_table()),
            _real_verifier("TRUE, confirmed by two independent sources"),  # type: ignore[arg-type]
            messenger,
            users=_ring_users(),
        )

        outcome = await orchestrator.run(_make_event())

        assert outcome.verified is True
        assert {r.user_id for r in outcome.dispatch} == {"near", "edge"}
        assert sorted(messenger.sent) == ["+919800000050", "+919800099999"]
