"""
verifier.py — Decide whether a crowd report describes a live disaster.

═══════════════════════════════════════════════════════════════════════════
VERIFICATION FLOW
═══════════════════════════════════════════════════════════════════════════

    DisasterEvent
         │
         ├── build_prompt()  title, description, location JSON, today's date
         │
         ├── MediaFetcher    media_url → base64  (fails → verdict False,
         │                                        analysis never called)
         │
         └── AnalysisClient  prompt + inline media → free text
                                   │
                                   ▼
                     "TRUE" in text  →  verified

═══════════════════════════════════════════════════════════════════════════
FAIL-CLOSED POLICY
═══════════════════════════════════════════════════════════════════════════

Any inability to confirm counts as "not a real disaster": invalid URL,
oversized media, fetch error, analysis error, timeout, or a response that
does not contain the literal "TRUE". A missed alert is preferred to a
panic alert for a fabricated event. verify() never raises for these.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import date
from typing import Callable, Optional

from crowdalert.alerts.models import DisasterEvent, VerificationVerdict
from crowdalert.core.config import settings
from crowdalert.verification.analysis import AnalysisClient
from crowdalert.verification.media import MediaFetcher

logger = logging.getLogger(__name__)

VERDICT_TOKEN = "TRUE"
SIMILAR_INCIDENT_RADIUS_KM = 100

PROMPT_TEMPLATE = """\
Check whether the following disaster report is real by checking current news and social media.
Respond with only "TRUE" if it is currently happening (today or yesterday) or "FALSE" if it is outdated or fake.
Also check for similar disaster incidents within {radius_km}km of the provided location.

Title: {title}
Description: {description}
Location: {location}
Date: {today}
"""


def build_prompt(event: DisasterEvent, today: date) -> str:
    """Deterministic prompt for one event on a given date."""
    return PROMPT_TEMPLATE.format(
        radius_km=SIMILAR_INCIDENT_RADIUS_KM,
        title=event.title.strip(),
        description=event.description.strip(),
        location=json.dumps(event.location.to_dict()),
        today=today.isoformat(),
    )


def parse_verdict(response_text: str) -> bool:
    """Literal substring match on the verdict token."""
    return VERDICT_TOKEN in (response_text or "")


class VerificationClient:
    """
    Verifies reports against a generative analysis service.

    Both collaborators are injected; ``today`` is a callable so tests can
    pin the date embedded in the prompt.
    """

    def __init__(
        self,
        fetcher: MediaFetcher,
        analysis: AnalysisClient,
        *,
        timeout: Optional[float] = None,
        today: Callable[[], date] = date.today,
    ):
        self.fetcher = fetcher
        self.analysis = analysis
        self.timeout = timeout if timeout is not None else settings.ANALYSIS_TIMEOUT
        self._today = today

    async def verify(self, event: DisasterEvent) -> VerificationVerdict:
        prompt = build_prompt(event, self._today())

        try:
            media_b64 = await self.fetcher.fetch_as_encoded_payload(event.media_url)
        except Exception as exc:
            logger.warning(
                "Media fetch failed for '%s' (%s): %s — treating as unverified",
                event.title, event.media_url, exc,
                extra={"media_kind": event.media_kind.value, "verified": False},
            )
            return VerificationVerdict.rejected(f"media fetch failed: {exc}")

        try:
            text = await asyncio.wait_for(
                self.analysis.generate(prompt, media_b64, event.media_kind.mime_type),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Analysis timed out after %.0fs for '%s'", self.timeout, event.title)
            return VerificationVerdict.rejected("analysis timed out")
        except Exception as exc:
            logger.error("Analysis failed for '%s': %s", event.title, exc)
            return VerificationVerdict.rejected(f"analysis failed: {exc}")

        verified = parse_verdict(text)
        logger.info(
            "Verification for '%s': %s — response=%r",
            event.title, "VERIFIED" if verified else "REJECTED", text[:200],
            extra={"media_kind": event.media_kind.value, "verified": verified},
        )
        return VerificationVerdict(verified=verified, response_text=text)
