"""
FastAPI route: verify a stored report and alert nearby users.

Provides endpoints to:
    POST /api/v1/reports/alerts        — run the pipeline, return the outcome
    POST /api/v1/reports/alerts/async  — accept now, run in the background

Report storage happens before these are called; alerting never blocks or
fails report acceptance.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Request

from crowdalert.alerts.models import DisasterEvent
from crowdalert.alerts.orchestrator import AlertOrchestrator
from crowdalert.api.schemas import (
    AcceptedResponse,
    AlertOutcomeResponse,
    ReportAlertRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/reports", tags=["report-alerts"])


def _orchestrator(request: Request) -> AlertOrchestrator:
    return request.app.state.orchestrator


async def _run_in_background(orchestrator: AlertOrchestrator, event: DisasterEvent) -> None:
    try:
        await orchestrator.run(event)
    except Exception:
        logger.exception("Background alert run failed for '%s'", event.title)


@router.post("/alerts", response_model=AlertOutcomeResponse)
async def verify_and_alert(body: ReportAlertRequest, request: Request):
    """Verify the report and dispatch alerts; waits for the full outcome."""
    outcome = await _orchestrator(request).run(body.to_event())
    return outcome.to_dict()


@router.post("/alerts/async", response_model=AcceptedResponse, status_code=202)
async def verify_and_alert_async(
    body: ReportAlertRequest,
    request: Request,
    background_tasks: BackgroundTasks,
):
    """Accept the report immediately; the pipeline runs after the response."""
    event = body.to_event()
    background_tasks.add_task(_run_in_background, _orchestrator(request), event)
    logger.info("Queued alert run for '%s'", event.title)
    return AcceptedResponse()
