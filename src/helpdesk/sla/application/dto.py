"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA API layer and the rules catalogue.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses, and for rule definitions read from YAML.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from helpdesk.sla.domain import (
    BreachBehavior,
    BusinessHoursConfig,
    CategoryCondition,
    IgnoredCondition,
    OwningTeamCondition,
    PriorityCondition,
    SlaRule,
    StatusCondition,
    Ticket,
    parse_conditions,
)
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Type Aliases for Literals ==========
SlaStatusStr = Literal["on_track", "approaching_breach", "breached", "completed"]


# ========== Rules catalogue ==========

class SlaRuleDefinition(BaseModel):
    """A single rule as written in the rules catalogue."""
    id: str = Field(..., min_length=1, description="Stable rule identifier")
    name: str = Field(..., min_length=1, description="Display name")
    description: Optional[str] = None
    conditions: Dict[str, Any] = Field(
        default_factory=dict,
        description="Matching predicates; empty matches every ticket"
    )
    target_resolution_minutes: int = Field(..., gt=0, description="Resolution target")
    target_close_minutes: Optional[int] = Field(None, gt=0, description="Close target")
    business_hours_enabled: bool = False
    business_hours_config: Optional[Any] = None
    priority: int = Field(default=0, description="Lower is evaluated first")
    breach_behavior: Optional[Any] = None
    is_active: bool = True

    def to_rule(self, position: int) -> SlaRule:
        """Build the immutable domain rule, parsing blobs once."""
        config = BusinessHoursConfig.parse(self.business_hours_config)
        if self.business_hours_config is not None and config is None:
            logger.warning(
                "Ignoring malformed business hours config",
                extra={"rule_id": self.id}
            )

        return SlaRule(
            id=self.id,
            name=self.name,
            description=self.description,
            conditions=parse_conditions(self.conditions),
            target_resolution_minutes=self.target_resolution_minutes,
            target_close_minutes=self.target_close_minutes,
            business_hours_enabled=self.business_hours_enabled,
            business_hours_config=config,
            priority=self.priority,
            breach_behavior=BreachBehavior.parse(self.breach_behavior),
            is_active=self.is_active,
            position=position,
        )


class SlaRulesCatalogue(BaseModel):
    """Top-level structure of the rules YAML file."""
    rules: List[SlaRuleDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "SlaRulesCatalogue":
        """Rule ids must be unique within the catalogue."""
        seen = set()
        for rule in self.rules:
            if rule.id in seen:
                raise ValueError(f"duplicate rule id: {rule.id}")
            seen.add(rule.id)
        return self

    def to_rules(self) -> List[SlaRule]:
        return [definition.to_rule(position) for position, definition in enumerate(self.rules)]


# ========== Request DTOs ==========

class TicketUpsertDTO(BaseModel):
    """SLA-relevant projection of a ticket sent by the ticketing system."""
    id: str = Field(..., min_length=1, description="External ticket ID")
    status: str = Field(default="open", min_length=1, description="Ticket status")
    priority: Optional[str] = Field(None, description="Ticket priority")
    category: Optional[str] = Field(None, description="Ticket category")
    owning_team_id: Optional[UUID] = Field(None, description="Owning team")
    created_at: datetime = Field(..., description="Ticket creation timestamp (SLA clock start)")
    updated_at: datetime = Field(..., description="Last update timestamp")

    @field_validator("updated_at")
    @classmethod
    def validate_updated_at(cls, v: datetime, info) -> datetime:
        """Ensure updated_at is not before created_at."""
        created_at = info.data.get("created_at")
        if created_at is not None:
            try:
                before = v < created_at
            except TypeError:
                raise ValueError("created_at and updated_at must both carry a timezone or neither")
            if before:
                raise ValueError("updated_at cannot be before created_at")
        return v


class TicketIngestRequest(BaseModel):
    """Request model for ticket ingestion."""
    tickets: List[TicketUpsertDTO] = Field(..., description="List of tickets to ingest")


class SlaExtendRequest(BaseModel):
    """Request model for a manual SLA extension."""
    hours: int = Field(..., description="Hours to add to the current due date")
    reason: Optional[str] = Field(None, max_length=500, description="Why the SLA is extended")


class SlaRefreshRequest(BaseModel):
    """Request model for re-running rule assignment."""
    restart_from_now: bool = Field(
        default=False,
        description="Restart the SLA clock from now instead of ticket creation"
    )


# ========== Response DTOs ==========

class TicketSlaResponse(BaseModel):
    """Current SLA state of a ticket."""
    ticket_id: str = Field(..., description="Internal ticket ID")
    external_id: str = Field(..., description="External ticket ID")
    status: str
    priority: Optional[str] = None
    category: Optional[str] = None
    owning_team_id: Optional[UUID] = None
    created_at: datetime

    sla_rule_id: Optional[str] = None
    sla_rule_name: Optional[str] = None
    sla_due_at: Optional[datetime] = None
    sla_status: Optional[SlaStatusStr] = None
    sla_breached_at: Optional[datetime] = None
    sla_extension_count: int = 0
    remaining_seconds: Optional[float] = Field(
        None,
        description="Seconds until the due date (negative once overdue)"
    )
    version: int

    @classmethod
    def from_ticket(
        cls,
        ticket: Ticket,
        now: datetime,
        rule: Optional[SlaRule] = None
    ) -> "TicketSlaResponse":
        remaining = None
        if ticket.sla_due_at is not None:
            remaining = (ticket.sla_due_at - now).total_seconds()

        return cls(
            ticket_id=ticket.id,
            external_id=ticket.external_id,
            status=ticket.status,
            priority=ticket.priority,
            category=ticket.category,
            owning_team_id=ticket.owning_team_id,
            created_at=ticket.created_at,
            sla_rule_id=ticket.sla_rule_id,
            sla_rule_name=rule.name if rule else None,
            sla_due_at=ticket.sla_due_at,
            sla_status=ticket.sla_status,
            sla_breached_at=ticket.sla_breached_at,
            sla_extension_count=ticket.sla_extension_count,
            remaining_seconds=remaining,
            version=ticket.version,
        )


class IngestResponse(BaseModel):
    """Response model for ticket ingestion."""
    created: int = Field(..., description="Number of tickets created")
    updated: int = Field(..., description="Number of tickets updated")
    skipped: int = Field(default=0, description="Tickets ignored because a newer version is stored")
    failed: int = Field(..., description="Number of tickets that failed")
    errors: List[str] = Field(default_factory=list, description="Error messages")
    ticket_ids: Dict[str, str] = Field(
        default_factory=dict,
        description="Internal ticket ID per ingested external ID"
    )


class ExtensionInfoResponse(BaseModel):
    """Suggested extension and the policy that applies to it."""
    ticket_id: str
    current_due_at: Optional[datetime] = None
    default_hours: int = Field(..., description="Hours to reach 4 PM on the next business day")
    extension_count: int
    max_extensions: int
    max_extension_hours: int
    can_extend: bool
    reason: Optional[str] = Field(None, description="Why the ticket cannot be extended")


class ExtensionPreviewResponse(BaseModel):
    """Due date a given extension would produce."""
    ticket_id: str
    hours: int
    current_due_at: Optional[datetime] = None
    new_due_at: datetime


class SlaRuleResponse(BaseModel):
    """An active SLA rule."""
    id: str
    name: str
    description: Optional[str] = None
    priority: int
    conditions: Dict[str, str] = Field(default_factory=dict)
    target_resolution_minutes: int
    target_close_minutes: Optional[int] = None
    business_hours_enabled: bool
    business_hours_config: Optional[Dict[str, Any]] = None
    breach_behavior: Optional[Dict[str, Any]] = None
    is_active: bool

    @classmethod
    def from_rule(cls, rule: SlaRule) -> "SlaRuleResponse":
        conditions = {}
        for condition in rule.conditions:
            if isinstance(condition, PriorityCondition):
                conditions["priority"] = condition.value
            elif isinstance(condition, CategoryCondition):
                conditions["category"] = condition.value
            elif isinstance(condition, StatusCondition):
                conditions["status"] = condition.value
            elif isinstance(condition, OwningTeamCondition):
                conditions["owning_team_id"] = str(condition.team_id)
            elif isinstance(condition, IgnoredCondition):
                conditions[condition.key] = "" if condition.value is None else str(condition.value)

        return cls(
            id=rule.id,
            name=rule.name,
            description=rule.description,
            priority=rule.priority,
            conditions=conditions,
            target_resolution_minutes=rule.target_resolution_minutes,
            target_close_minutes=rule.target_close_minutes,
            business_hours_enabled=rule.business_hours_enabled,
            business_hours_config=(
                rule.business_hours_config.model_dump(mode="json")
                if rule.business_hours_config else None
            ),
            breach_behavior=(
                rule.breach_behavior.model_dump(mode="json")
                if rule.breach_behavior else None
            ),
            is_active=rule.is_active,
        )


class SweepResponse(BaseModel):
    """Outcome of one SLA sweep."""
    evaluated: int = Field(..., description="Tickets evaluated")
    changed: int = Field(..., description="Tickets whose SLA status changed")
    conflicts: int = Field(..., description="Tickets skipped because of a concurrent write")
    failed: int = Field(default=0, description="Tickets skipped because their evaluation failed")
    batches: int = Field(..., description="Batches loaded")
    cancelled: bool = Field(..., description="Whether the sweep stopped early")
    processing_time_ms: int = Field(default=0, description="Wall-clock duration")
