"""
SLA Application Layer
======================

Application layer for the SLA engine.

Contains:
- Services: SlaService orchestrator and SlaSweepService
- DTOs: Data transfer objects for API serialization and rule definitions
- Interfaces: repository, rule provider, status classifier, event publisher

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk.sla.application.dto import (
    SlaRuleDefinition,
    SlaRulesCatalogue,
    TicketUpsertDTO,
    TicketIngestRequest,
    SlaExtendRequest,
    SlaRefreshRequest,
    TicketSlaResponse,
    IngestResponse,
    ExtensionInfoResponse,
    ExtensionPreviewResponse,
    SlaRuleResponse,
    SweepResponse,
)
from helpdesk.sla.application.services import (
    SlaService,
    SlaSweepService,
    SweepResult,
    ExtensionPolicy,
    ITicketRepository,
    ISlaRuleProvider,
    IStatusClassifier,
    ISlaEventPublisher,
    TicketUnitOfWork,
    utc_now,
)

__all__ = [
    # DTOs
    "SlaRuleDefinition",
    "SlaRulesCatalogue",
    "TicketUpsertDTO",
    "TicketIngestRequest",
    "SlaExtendRequest",
    "SlaRefreshRequest",
    "TicketSlaResponse",
    "IngestResponse",
    "ExtensionInfoResponse",
    "ExtensionPreviewResponse",
    "SlaRuleResponse",
    "SweepResponse",
    # Services
    "SlaService",
    "SlaSweepService",
    "SweepResult",
    "ExtensionPolicy",
    "utc_now",
    # Interfaces
    "ITicketRepository",
    "ISlaRuleProvider",
    "IStatusClassifier",
    "ISlaEventPublisher",
    "TicketUnitOfWork",
]
