"""
orchestrator.py — One disaster report, end to end.

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  1. Locate          │  event.location → pincode (GeoResolver)
    │                     │  failure → no alert, error surfaced in outcome
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  2. Verify          │  VerificationClient (fail-closed)
    └─────────┬───────────┘
              │ not verified → {verified: False, dispatch: None}
              ▼
    ┌─────────────────────┐
    │  3. Select          │  AudienceSelector(pincode, radius)
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  4. Dispatch        │  NotificationDispatcher(candidates, message)
    └─────────────────────┘
              │
              ▼
    {verified: True, dispatch: [DispatchResult, ...]}

Alerting is a best-effort side channel of report acceptance: upstream
failures are logged and reflected in the AlertOutcome, never raised.

The orchestrator holds no per-run state. A shared semaphore caps how many
runs hit the upstream quotas at once (MAX_CONCURRENT_RUNS).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import httpx

from crowdalert.alerts.audience import AudienceSelector
from crowdalert.alerts.channels.sms_gateway import Messenger
from crowdalert.alerts.directory import UserDirectory
from crowdalert.alerts.dispatcher import NotificationDispatcher
from crowdalert.alerts.models import AlertOutcome, DisasterEvent
from crowdalert.core.config import settings
from crowdalert.core.errors import CrowdAlertError, InvalidInputError
from crowdalert.spatial.geocoding import GeoResolver
from crowdalert.verification.analysis import GeminiAnalysisClient
from crowdalert.verification.media import MediaFetcher
from crowdalert.verification.verifier import VerificationClient

logger = logging.getLogger(__name__)

DISASTER_ALERT_MESSAGE = (
    "🚨 URGENT: Disaster Alert in your area \n\n"
    "⚠️ Stay indoor if possible and avoid risky areas.\n\n"
    " Your safety is our priority 🤝. Stay safe, stay strong!"
)


class AlertOrchestrator:
    """
    Sequences locate → verify → select → dispatch for one event per call.

    Usage:
        orchestrator = AlertOrchestrator(resolver, verifier, selector, dispatcher)
        outcome = await orchestrator.run(event)
    """

    def __init__(
        self,
        resolver: GeoResolver,
        verifier: VerificationClient,
        selector: AudienceSelector,
        dispatcher: NotificationDispatcher,
        *,
        radius_meters: Optional[float] = None,
        message: str = DISASTER_ALERT_MESSAGE,
        run_limiter: Optional[asyncio.Semaphore] = None,
    ):
        self.resolver = resolver
        self.verifier = verifier
        self.selector = selector
        self.dispatcher = dispatcher
        self.radius_meters = (
            settings.ALERT_RADIUS_METERS if radius_meters is None else radius_meters
        )
        self.message = message
        self._run_limiter = run_limiter or asyncio.Semaphore(settings.MAX_CONCURRENT_RUNS)

    async def run(self, event: DisasterEvent) -> AlertOutcome:
        async with self._run_limiter:
            return await self._run(event)

    async def _run(self, event: DisasterEvent) -> AlertOutcome:
        started = time.perf_counter()

        # ── Step 1: Locate ──
        try:
            pincode = await self.resolver.resolve_pincode(event.location)
        except InvalidInputError:
            raise
        except CrowdAlertError as e:
            logger.error(
                "Failed to fetch disaster location pincode for '%s': %s",
                event.title, e.message,
            )
            return AlertOutcome(verified=False, error=e.message)

        # ── Step 2: Verify ──
        verdict = await self.verifier.verify(event)
        if not verdict.verified:
            logger.info(
                "Fake alert: '%s' not verified (%s). No SMS will be sent.",
                event.title, verdict.failure_reason or "analysis said FALSE",
                extra={"pincode": pincode, "verified": False},
            )
            return AlertOutcome(verified=False, pincode=pincode)

        # ── Step 3: Select ──
        try:
            candidates = await self.selector.select_within_radius(pincode, self.radius_meters)
        except CrowdAlertError as e:
            logger.error("Audience selection aborted for %s: %s", pincode, e.message)
            return AlertOutcome(verified=True, pincode=pincode, dispatch=[], error=e.message)

        # ── Step 4: Dispatch ──
        results = await self.dispatcher.dispatch(candidates, self.message)

        outcome = AlertOutcome(verified=True, pincode=pincode, dispatch=results)
        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Alert run for '%s' (%s): %d sent, %d failed, %.0f ms",
            event.title, pincode, outcome.sent_count, outcome.failed_count, duration_ms,
            extra={"pincode": pincode, "verified": True, "duration_ms": duration_ms},
        )
        return outcome


def build_orchestrator(
    http_client: httpx.AsyncClient,
    messenger: Messenger,
    directory: UserDirectory,
) -> AlertOrchestrator:
    """
    Wire the pipeline from settings around borrowed clients.

    The caller owns ``http_client`` and ``messenger`` and closes them.
    """
    resolver = GeoResolver(http_client)
    verifier = VerificationClient(
        MediaFetcher(http_client),
        GeminiAnalysisClient(http_client),
    )
    selector = AudienceSelector(resolver, directory)
    dispatcher = NotificationDispatcher(messenger)
    return AlertOrchestrator(resolver, verifier, selector, dispatcher)
