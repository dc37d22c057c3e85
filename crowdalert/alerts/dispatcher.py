"""
dispatcher.py — Send the alert text to every selected candidate.

Each candidate is one independent unit in a bounded pool
(DISPATCH_CONCURRENCY, separate from the geocoding pool because the
messaging provider has its own rate limits):

    candidate ──► normalize_contact ──► Messenger.send (timeout) ──► DispatchResult

    • bad / empty contact      → SKIPPED, provider not called
    • provider error / timeout → FAILED with the error text
    • success                  → SENT with the provider message id

No retries. Nothing is raised back to the caller; the full result list
comes back in candidate order once every unit has finished.
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

from crowdalert.alerts.channels.sms_gateway import Messenger, normalize_contact
from crowdalert.alerts.models import AlertCandidate, DispatchResult, DispatchStatus
from crowdalert.core.config import settings
from crowdalert.core.errors import InvalidInputError
from crowdalert.core.pool import BoundedPool, UnitFailure

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Fans a message out to candidates through a Messenger.

    Usage:
        dispatcher = NotificationDispatcher(SimulationMessenger())
        results = await dispatcher.dispatch(candidates, "Stay indoors")
    """

    def __init__(
        self,
        messenger: Messenger,
        *,
        concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        default_country_code: Optional[str] = None,
    ):
        self.messenger = messenger
        self.concurrency = concurrency or settings.DISPATCH_CONCURRENCY
        self.timeout = timeout if timeout is not None else settings.MESSAGING_TIMEOUT
        self.default_country_code = default_country_code or settings.DEFAULT_COUNTRY_CODE

    async def _send_one(self, candidate: AlertCandidate, message: str) -> DispatchResult:
        try:
            destination = normalize_contact(
                candidate.user.contact_channel, self.default_country_code,
            )
        except InvalidInputError as e:
            logger.warning("No usable contact for user %s: %s", candidate.user_id, e.message)
            return DispatchResult(
                user_id=candidate.user_id,
                sent=False,
                status=DispatchStatus.SKIPPED,
                error=e.message,
            )

        sid = await self.messenger.send(destination, message)
        return DispatchResult(
            user_id=candidate.user_id,
            sent=True,
            status=DispatchStatus.SENT,
            destination=destination,
            provider_message_id=sid,
        )

    async def dispatch(
        self,
        candidates: List[AlertCandidate],
        message: str,
    ) -> List[DispatchResult]:
        """One DispatchResult per candidate, in candidate order."""
        if not candidates:
            return []

        started = time.perf_counter()
        pool = BoundedPool(
            lambda c: self._send_one(c, message),
            concurrency=self.concurrency,
            timeout=self.timeout,
            name="dispatch",
        )
        slots = await pool.map(candidates)

        results: List[DispatchResult] = []
        for candidate, slot in zip(candidates, slots):
            if isinstance(slot, UnitFailure):
                logger.error(
                    "Failed to send SMS to user %s: %s",
                    candidate.user_id, slot.message,
                    extra={"user_id": candidate.user_id},
                )
                results.append(DispatchResult(
                    user_id=candidate.user_id,
                    sent=False,
                    status=DispatchStatus.FAILED,
                    error=slot.message,
                ))
            else:
                results.append(slot)

        sent = sum(1 for r in results if r.sent)
        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Dispatch complete: %d/%d sent, %d failed (%.0f ms)",
            sent, len(results), len(results) - sent, duration_ms,
            extra={"recipient_count": len(results), "duration_ms": duration_ms},
        )
        return results
