"""
SLA Domain Layer
================

Domain layer for the SLA engine.

Contains:
- Entities: Ticket projection, SlaRule and SLA domain events
- Value Objects: BusinessHoursConfig, BreachBehavior, rule conditions
- Domain Services: RuleMatcher, DueDateCalculator, BreachStateEvaluator,
  ExtensionCalculator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk.sla.domain.entities import (
    Ticket,
    SlaRule,
    SlaDomainEvent,
    SlaBreachedEvent,
    SlaApproachingBreachEvent,
)
from helpdesk.sla.domain.value_objects import (
    BusinessHoursConfig,
    BreachBehavior,
    Condition,
    PriorityCondition,
    CategoryCondition,
    StatusCondition,
    OwningTeamCondition,
    IgnoredCondition,
    parse_condition,
    parse_conditions,
)
from helpdesk.sla.domain.services import (
    RuleMatcher,
    DueDateCalculator,
    BreachStateEvaluator,
    ExtensionCalculator,
    as_utc,
    resolve_timezone,
)

__all__ = [
    # Entities
    "Ticket",
    "SlaRule",
    "SlaDomainEvent",
    "SlaBreachedEvent",
    "SlaApproachingBreachEvent",
    # Value Objects
    "BusinessHoursConfig",
    "BreachBehavior",
    "Condition",
    "PriorityCondition",
    "CategoryCondition",
    "StatusCondition",
    "OwningTeamCondition",
    "IgnoredCondition",
    "parse_condition",
    "parse_conditions",
    # Domain Services
    "RuleMatcher",
    "DueDateCalculator",
    "BreachStateEvaluator",
    "ExtensionCalculator",
    "as_utc",
    "resolve_timezone",
]
