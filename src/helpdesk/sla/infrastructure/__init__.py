"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the SLA engine:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and status classification
- External: Rules catalogue watcher, scheduler, event publisher
"""

from helpdesk.sla.infrastructure.models import TicketModel
from helpdesk.sla.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    SettingsStatusClassifier,
    ticket_unit_of_work,
)
from helpdesk.sla.infrastructure.external import (
    SlaRulesManager,
    RuleSnapshot,
    LoggingEventPublisher,
    SlaSweepScheduler,
)

__all__ = [
    "TicketModel",
    "SQLAlchemyTicketRepository",
    "SettingsStatusClassifier",
    "ticket_unit_of_work",
    "SlaRulesManager",
    "RuleSnapshot",
    "LoggingEventPublisher",
    "SlaSweepScheduler",
]
