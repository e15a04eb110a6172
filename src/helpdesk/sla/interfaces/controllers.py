"""
SLA Controllers (API Routes)
=============================

FastAPI routes for the SLA engine.

Controllers are thin - they delegate to application services. Domain
errors propagate as ApplicationException subclasses and are mapped to
HTTP responses by the handlers registered in main.
"""

import time
from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core import ApplicationException, ValidationException
from helpdesk.infrastructure.database import get_session
from helpdesk.sla.application import (
    ExtensionInfoResponse,
    ExtensionPreviewResponse,
    IngestResponse,
    SlaExtendRequest,
    SlaRefreshRequest,
    SlaRuleResponse,
    SlaService,
    SlaSweepService,
    SweepResponse,
    TicketIngestRequest,
    TicketSlaResponse,
)
from helpdesk.sla.infrastructure import (
    SQLAlchemyTicketRepository,
    SettingsStatusClassifier,
)
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Engine"])


# ========== Example payloads for Swagger ==========

INGEST_RESPONSE_EXAMPLE = {
    "created": 1,
    "updated": 0,
    "skipped": 0,
    "failed": 0,
    "errors": [],
    "ticket_ids": {"TICKET-001": "123e4567-e89b-12d3-a456-426614174000"}
}

TICKET_SLA_RESPONSE_EXAMPLE = {
    "ticket_id": "123e4567-e89b-12d3-a456-426614174000",
    "external_id": "TICKET-001",
    "status": "open",
    "priority": "high",
    "category": "billing",
    "owning_team_id": None,
    "created_at": "2024-01-15T10:00:00Z",
    "sla_rule_id": "high-priority",
    "sla_rule_name": "High priority",
    "sla_due_at": "2024-01-15T14:00:00Z",
    "sla_status": "on_track",
    "sla_breached_at": None,
    "sla_extension_count": 0,
    "remaining_seconds": 7200.0,
    "version": 1
}


# ========== Dependencies ==========

async def get_sla_service(
    request: Request,
    session: AsyncSession = Depends(get_session)
) -> SlaService:
    """Get SLA service instance bound to the request's session."""
    return SlaService(
        rule_provider=request.app.state.rules_manager,
        status_classifier=SettingsStatusClassifier(),
        ticket_repository=SQLAlchemyTicketRepository(session),
        event_publisher=request.app.state.event_publisher,
    )


def get_sweep_service(request: Request) -> SlaSweepService:
    """Get the application-wide sweep service."""
    return request.app.state.sweep_service


# ========== Route Handlers ==========

@router.post(
    "/tickets",
    response_model=IngestResponse,
    summary="Ingest tickets for SLA tracking",
    description="""
    Ingest a batch of ticket projections for SLA tracking.

    **Idempotent**: Tickets are identified by `id` (external ticket ID). If a ticket
    already exists and the new `updated_at` is newer, the ticket is updated;
    otherwise it is skipped.

    New tickets are matched against the active SLA rules and get a due date.
    Updates re-run rule assignment when priority, category, owning team or
    status changes, and reopening a completed ticket puts its SLA back on track.
    """,
    responses={
        200: {
            "description": "Tickets ingested successfully",
            "content": {"application/json": {"example": INGEST_RESPONSE_EXAMPLE}}
        }
    }
)
async def ingest_tickets(
    request: TicketIngestRequest,
    sla_service: SlaService = Depends(get_sla_service)
):
    start_time = time.perf_counter()

    counts = {"created": 0, "updated": 0, "skipped": 0}
    failed = 0
    errors: List[str] = []
    ticket_ids = {}

    for ticket_dto in request.tickets:
        try:
            outcome, ticket = await sla_service.ingest_ticket(ticket_dto)
            counts[outcome] += 1
            ticket_ids[ticket.external_id] = ticket.id
        except ApplicationException as e:
            failed += 1
            errors.append(f"{ticket_dto.id}: {e.message}")
            logger.error(
                "Failed to ingest ticket",
                extra={"external_id": ticket_dto.id, "error": e.message}
            )

    logger.info(
        "Ticket ingestion complete",
        extra={
            "tickets_created": counts["created"],
            "tickets_updated": counts["updated"],
            "tickets_skipped": counts["skipped"],
            "tickets_failed": failed,
            "processing_time_ms": int((time.perf_counter() - start_time) * 1000)
        }
    )

    return IngestResponse(failed=failed, errors=errors, ticket_ids=ticket_ids, **counts)


@router.get(
    "/tickets/{ticket_id}",
    response_model=TicketSlaResponse,
    summary="Get ticket SLA status",
    description="Evaluate the ticket's SLA now and return its current state.",
    responses={
        200: {
            "description": "Ticket SLA information",
            "content": {"application/json": {"example": TICKET_SLA_RESPONSE_EXAMPLE}}
        },
        404: {"description": "Ticket not found"}
    }
)
async def get_ticket_sla(
    ticket_id: str,
    sla_service: SlaService = Depends(get_sla_service)
):
    ticket = await sla_service.get_ticket_status(ticket_id)
    return TicketSlaResponse.from_ticket(ticket, sla_service.now(), sla_service.rule_for(ticket))


@router.post(
    "/tickets/{ticket_id}/refresh",
    response_model=TicketSlaResponse,
    summary="Re-run SLA rule assignment",
    description="""
    Match the ticket against the current rules catalogue again and recompute
    its due date. With `restart_from_now` the SLA clock starts at the current
    instant instead of the ticket's creation time.
    """,
    responses={404: {"description": "Ticket not found"}, 422: {"description": "Ticket is closed"}}
)
async def refresh_ticket_sla(
    ticket_id: str,
    body: SlaRefreshRequest = SlaRefreshRequest(),
    sla_service: SlaService = Depends(get_sla_service)
):
    ticket = await sla_service.refresh_ticket(ticket_id, body.restart_from_now)
    return TicketSlaResponse.from_ticket(ticket, sla_service.now(), sla_service.rule_for(ticket))


@router.get(
    "/tickets/{ticket_id}/extension",
    response_model=ExtensionInfoResponse,
    summary="Get suggested SLA extension",
    description="Default extension (to 4 PM on the next business day) and the extension limits."
)
async def get_extension_info(
    ticket_id: str,
    sla_service: SlaService = Depends(get_sla_service)
):
    ticket = await sla_service.get_ticket(ticket_id)
    policy = sla_service.extension_policy
    blocker = sla_service.extension_blocker(ticket)

    return ExtensionInfoResponse(
        ticket_id=ticket.id,
        current_due_at=ticket.sla_due_at,
        default_hours=sla_service.default_extension_hours(ticket),
        extension_count=ticket.sla_extension_count,
        max_extensions=policy.max_extensions,
        max_extension_hours=policy.max_extension_hours,
        can_extend=blocker is None,
        reason=blocker,
    )


@router.get(
    "/tickets/{ticket_id}/extension/preview",
    response_model=ExtensionPreviewResponse,
    summary="Preview an SLA extension",
)
async def preview_extension(
    ticket_id: str,
    hours: int = Query(..., description="Hours to extend by"),
    sla_service: SlaService = Depends(get_sla_service)
):
    if hours <= 0:
        raise ValidationException("hours must be greater than zero", {"hours": hours})

    ticket = await sla_service.get_ticket(ticket_id)
    return ExtensionPreviewResponse(
        ticket_id=ticket.id,
        hours=hours,
        current_due_at=ticket.sla_due_at,
        new_due_at=sla_service.extended_due_date(ticket, hours),
    )


@router.post(
    "/tickets/{ticket_id}/extend",
    response_model=TicketSlaResponse,
    summary="Extend a ticket's SLA",
    description="""
    Push the due date back by `hours`. A breached or approaching SLA goes
    back on track. Rejected for closed tickets, after the maximum number of
    extensions, above the per-extension hour limit, or when the new due date
    would still be in the past.
    """,
    responses={404: {"description": "Ticket not found"}, 422: {"description": "Extension rejected"}}
)
async def extend_ticket_sla(
    ticket_id: str,
    body: SlaExtendRequest,
    sla_service: SlaService = Depends(get_sla_service)
):
    ticket = await sla_service.extend_ticket(ticket_id, body.hours, body.reason)
    return TicketSlaResponse.from_ticket(ticket, sla_service.now(), sla_service.rule_for(ticket))


@router.get(
    "/rules",
    response_model=List[SlaRuleResponse],
    summary="List active SLA rules",
    description="Active rules in evaluation order (priority, then catalogue position)."
)
async def list_rules(request: Request):
    rules = request.app.state.rules_manager.get_active_rules()
    return [SlaRuleResponse.from_rule(rule) for rule in rules]


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Run an SLA sweep now",
    description="Re-evaluate every open, tracked, not yet breached ticket."
)
async def run_sweep(sweep_service: SlaSweepService = Depends(get_sweep_service)):
    start_time = time.perf_counter()
    result = await sweep_service.run()
    return SweepResponse(
        evaluated=result.evaluated,
        changed=result.changed,
        conflicts=result.conflicts,
        failed=result.failed,
        batches=result.batches,
        cancelled=result.cancelled,
        processing_time_ms=int((time.perf_counter() - start_time) * 1000),
    )
