"""
SLA Domain Entities
====================

Pure Python domain entities for SLA tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from helpdesk.config import SlaStatus, SlaEventType
from helpdesk.sla.domain.value_objects import (
    BreachBehavior,
    BusinessHoursConfig,
    Condition,
)


@dataclass(frozen=True)
class SlaRule:
    """
    A service level rule.

    Rules are evaluated in ascending ``(priority, position)`` order and the
    first rule whose conditions all hold wins. ``position`` is the rule's
    place in the catalogue and keeps equal priorities deterministic.
    """

    id: str
    name: str
    target_resolution_minutes: int
    conditions: Tuple[Condition, ...] = ()
    description: Optional[str] = None
    target_close_minutes: Optional[int] = None
    business_hours_enabled: bool = False
    business_hours_config: Optional[BusinessHoursConfig] = None
    priority: int = 0
    breach_behavior: Optional[BreachBehavior] = None
    is_active: bool = True
    position: int = 0

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.priority, self.position)

    @property
    def is_catch_all(self) -> bool:
        """A rule without conditions matches every ticket."""
        return not self.conditions


@dataclass(frozen=True)
class SlaDomainEvent:
    """Base class for events raised while evaluating a ticket's SLA."""
    ticket_id: str
    external_id: str
    rule_id: Optional[str]
    due_at: Optional[datetime]
    occurred_at: datetime

    event_type = ""

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "ticket_id": self.ticket_id,
            "external_id": self.external_id,
            "rule_id": self.rule_id,
            "due_at": self.due_at.isoformat() if self.due_at else None,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass(frozen=True)
class SlaBreachedEvent(SlaDomainEvent):
    """The ticket passed its SLA due date while still open."""
    event_type = SlaEventType.BREACHED


@dataclass(frozen=True)
class SlaApproachingBreachEvent(SlaDomainEvent):
    """75% of the resolution target elapsed without resolution."""
    event_type = SlaEventType.APPROACHING_BREACH


@dataclass
class Ticket:
    """
    SLA-relevant projection of a helpdesk ticket.

    Only the attributes rules can match on and the SLA fields the engine
    owns are carried here; everything else about a ticket lives elsewhere.
    """

    id: str
    external_id: str
    created_at: datetime
    status: str
    priority: Optional[str] = None
    category: Optional[str] = None
    owning_team_id: Optional[UUID] = None

    # SLA tracking fields
    sla_rule_id: Optional[str] = None
    sla_due_at: Optional[datetime] = None
    sla_status: Optional[str] = None
    sla_breached_at: Optional[datetime] = None
    sla_extension_count: int = 0

    # Source system timestamp; the newest ingest wins
    updated_at: Optional[datetime] = None

    # Optimistic concurrency token
    version: int = 0

    _events: List[SlaDomainEvent] = field(default_factory=list, repr=False, compare=False)

    @property
    def is_sla_tracked(self) -> bool:
        """A ticket is tracked when it has both a rule and a due date."""
        return self.sla_rule_id is not None and self.sla_due_at is not None

    def condition_attributes(self) -> Tuple[Optional[str], Optional[str], Optional[UUID], str]:
        """Attributes whose change requires re-running rule assignment."""
        return (
            (self.priority or "").lower() or None,
            (self.category or "").lower() or None,
            self.owning_team_id,
            self.status.lower(),
        )

    def start_sla(self, rule: SlaRule, due_at: datetime) -> None:
        """Start tracking ``rule`` from scratch."""
        self.sla_rule_id = rule.id
        self.sla_due_at = due_at
        self.sla_status = SlaStatus.ON_TRACK
        self.sla_breached_at = None

    def clear_sla(self) -> None:
        """Stop SLA tracking (no rule applies)."""
        self.sla_rule_id = None
        self.sla_due_at = None
        self.sla_status = None
        self.sla_breached_at = None

    def record_event(self, event: SlaDomainEvent) -> None:
        self._events.append(event)

    def pull_events(self) -> List[SlaDomainEvent]:
        """Return and clear the events raised since the last pull."""
        events, self._events = self._events, []
        return events
