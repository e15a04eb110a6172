"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: SlaService decides SLA state for one ticket,
  SlaSweepService walks the open tickets
- Dependency Inversion: Depend on abstractions (repositories, rule
  providers, publishers), not concrete implementations
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import (
    AsyncContextManager,
    Callable,
    List,
    Optional,
    Sequence,
    Tuple,
)
from uuid import uuid4

from helpdesk.config import SlaStatus, settings
from helpdesk.core import (
    ConcurrencyException,
    ResourceNotFoundException,
    SlaExtensionException,
    ValidationException,
)
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.sla.application.dto import TicketUpsertDTO
from helpdesk.sla.domain import (
    BreachStateEvaluator,
    DueDateCalculator,
    ExtensionCalculator,
    RuleMatcher,
    SlaDomainEvent,
    SlaRule,
    Ticket,
    as_utc,
)

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by internal ID."""

    @abstractmethod
    async def get_by_external_id(self, external_id: str) -> Optional[Ticket]:
        """Get ticket by external ID."""

    @abstractmethod
    async def create(self, ticket: Ticket) -> Ticket:
        """Insert a new ticket."""

    @abstractmethod
    async def save(self, ticket: Ticket) -> Ticket:
        """
        Write back a loaded ticket.

        Raises:
            ConcurrencyException: If the stored version no longer matches
        """

    @abstractmethod
    async def list_sweep_batch(
        self,
        after_id: Optional[str],
        limit: int,
        closed_statuses: Sequence[str]
    ) -> List[str]:
        """
        IDs of tickets due for a sweep, ordered by ID, strictly after
        ``after_id``.
        """


class ISlaRuleProvider(ABC):
    """Interface for rules catalogue access."""

    @abstractmethod
    def get_active_rules(self) -> Sequence[SlaRule]:
        """Active rules in evaluation order (immutable snapshot)."""

    @abstractmethod
    def get_rule(self, rule_id: str) -> Optional[SlaRule]:
        """Look up any catalogued rule, active or not."""


class IStatusClassifier(ABC):
    """Decides which ticket statuses count as closed."""

    @abstractmethod
    def is_closed_type(self, status: str) -> bool:
        """True for statuses that stop the SLA clock."""

    @property
    @abstractmethod
    def closed_statuses(self) -> Sequence[str]:
        """Lower-cased closed-type status keys."""


class ISlaEventPublisher(ABC):
    """Sink for SLA domain events."""

    @abstractmethod
    async def publish(self, events: Sequence[SlaDomainEvent]) -> None:
        """Deliver events raised by an evaluation."""


TicketUnitOfWork = Callable[[], AsyncContextManager[ITicketRepository]]


# ========== Application Services ==========

@dataclass(frozen=True)
class ExtensionPolicy:
    """Limits applied to manual SLA extensions."""
    max_extensions: int
    max_extension_hours: int

    @classmethod
    def from_settings(cls) -> "ExtensionPolicy":
        return cls(
            max_extensions=settings.sla_max_extensions,
            max_extension_hours=settings.sla_max_extension_hours,
        )


class SlaService:
    """
    SLA orchestrator.

    The ticket-level operations (assign_rule, evaluate_status, extend_sla,
    refresh_sla, ticket_updated) work on a loaded Ticket and never touch
    storage. The *_ticket use cases load through the repository, apply one
    operation, write back once and publish the raised events.
    """

    def __init__(
        self,
        rule_provider: ISlaRuleProvider,
        status_classifier: IStatusClassifier,
        ticket_repository: Optional[ITicketRepository] = None,
        event_publisher: Optional[ISlaEventPublisher] = None,
        org_timezone: Optional[str] = None,
        extension_policy: Optional[ExtensionPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._rule_provider = rule_provider
        self._classifier = status_classifier
        self._ticket_repo = ticket_repository
        self._publisher = event_publisher
        self._org_timezone = org_timezone if org_timezone is not None else settings.organization_timezone
        self._policy = extension_policy or ExtensionPolicy.from_settings()
        self._clock = clock

    @property
    def extension_policy(self) -> ExtensionPolicy:
        return self._policy

    def now(self) -> datetime:
        return self._clock()

    def rule_for(self, ticket: Ticket) -> Optional[SlaRule]:
        if ticket.sla_rule_id is None:
            return None
        return self._rule_provider.get_rule(ticket.sla_rule_id)

    # ---------- Ticket-level operations ----------

    def assign_rule(
        self,
        ticket: Ticket,
        clock_start: Optional[datetime] = None
    ) -> Optional[SlaRule]:
        """
        Match the active rules and start the SLA clock.

        Args:
            ticket: Ticket to assign
            clock_start: SLA clock start; defaults to ``ticket.created_at``

        Returns:
            The matched rule, or None (SLA fields cleared)
        """
        rule = RuleMatcher.match(ticket, self._rule_provider.get_active_rules())

        if rule is None:
            if ticket.sla_rule_id is not None:
                logger.info(
                    "No SLA rule matches ticket any more, clearing SLA",
                    extra={"ticket_id": ticket.id, "previous_rule_id": ticket.sla_rule_id}
                )
            ticket.clear_sla()
            return None

        due_at = DueDateCalculator.calculate_due_date(
            clock_start if clock_start is not None else ticket.created_at,
            rule.target_resolution_minutes,
            rule.business_hours_enabled,
            rule.business_hours_config,
            self._org_timezone,
        )
        ticket.start_sla(rule, due_at)

        logger.info(
            "SLA rule assigned",
            extra={
                "ticket_id": ticket.id,
                "rule_id": rule.id,
                "sla_due_at": due_at.isoformat(),
                "business_hours": rule.business_hours_enabled
            }
        )
        return rule

    def evaluate_status(self, ticket: Ticket) -> bool:
        """Run the breach state machine; True if the status changed."""
        old_status = ticket.sla_status
        changed = BreachStateEvaluator.evaluate(
            ticket,
            self.rule_for(ticket),
            self._classifier.is_closed_type,
            self.now(),
        )

        if changed:
            logger.info(
                "SLA status changed",
                extra={
                    "ticket_id": ticket.id,
                    "old_status": old_status,
                    "new_status": ticket.sla_status
                }
            )
        return changed

    def default_extension_hours(self, ticket: Ticket) -> int:
        return ExtensionCalculator.default_extension_hours(
            ticket.sla_due_at, self._org_timezone, self.now()
        )

    def extended_due_date(self, ticket: Ticket, hours: int) -> datetime:
        return ExtensionCalculator.extended_due_date(ticket.sla_due_at, hours, self.now())

    def extension_blocker(self, ticket: Ticket) -> Optional[str]:
        """Reason the ticket cannot be extended at all, or None."""
        if self._classifier.is_closed_type(ticket.status):
            return "Cannot extend the SLA of a closed ticket"
        if ticket.sla_extension_count >= self._policy.max_extensions:
            return f"Maximum of {self._policy.max_extensions} SLA extensions reached"
        return None

    def extend_sla(
        self,
        ticket: Ticket,
        hours: int,
        enforce_limits: bool = True
    ) -> datetime:
        """
        Push the due date back by ``hours``.

        A breached or approaching SLA is put back on track and the breach
        timestamp is cleared.

        Raises:
            SlaExtensionException: If the extension violates the policy
        """
        if hours <= 0:
            raise SlaExtensionException(ticket.id, "Extension hours must be greater than zero")

        if self._classifier.is_closed_type(ticket.status):
            raise SlaExtensionException(ticket.id, "Cannot extend the SLA of a closed ticket")

        if enforce_limits:
            if ticket.sla_extension_count >= self._policy.max_extensions:
                raise SlaExtensionException(
                    ticket.id,
                    f"Maximum of {self._policy.max_extensions} SLA extensions reached",
                    {"ticket_id": ticket.id, "extension_count": ticket.sla_extension_count}
                )
            if hours > self._policy.max_extension_hours:
                raise SlaExtensionException(
                    ticket.id,
                    f"A single extension cannot exceed {self._policy.max_extension_hours} hours",
                    {"ticket_id": ticket.id, "hours": hours}
                )

        now = self.now()
        new_due_at = ExtensionCalculator.extended_due_date(ticket.sla_due_at, hours, now)
        if as_utc(new_due_at) <= as_utc(now):
            raise SlaExtensionException(
                ticket.id,
                "Extended due date must be in the future",
                {"ticket_id": ticket.id, "new_due_at": new_due_at.isoformat()}
            )

        old_due_at = ticket.sla_due_at
        ticket.sla_due_at = new_due_at
        ticket.sla_extension_count += 1

        if ticket.sla_status in (None, SlaStatus.BREACHED, SlaStatus.APPROACHING_BREACH):
            ticket.sla_status = SlaStatus.ON_TRACK
            ticket.sla_breached_at = None

        logger.info(
            "SLA extended",
            extra={
                "ticket_id": ticket.id,
                "hours": hours,
                "old_due_at": old_due_at.isoformat() if old_due_at else None,
                "new_due_at": new_due_at.isoformat(),
                "extension_count": ticket.sla_extension_count
            }
        )
        return new_due_at

    def refresh_sla(self, ticket: Ticket, restart_from_now: bool = False) -> Optional[SlaRule]:
        """
        Re-run rule assignment against the current catalogue.

        Raises:
            ValidationException: If the ticket is closed
        """
        if self._classifier.is_closed_type(ticket.status):
            raise ValidationException(
                "Cannot refresh the SLA of a closed ticket",
                {"ticket_id": ticket.id, "status": ticket.status}
            )

        rule = self.assign_rule(ticket, clock_start=self.now() if restart_from_now else None)
        self.evaluate_status(ticket)
        return rule

    def ticket_updated(
        self,
        ticket: Ticket,
        previous_attributes: Tuple
    ) -> bool:
        """
        React to a change of ticket attributes.

        The rule is re-assigned only when a condition-relevant attribute
        changed and a different rule (or none) now matches, so extensions
        and breach history survive unrelated edits.

        Returns:
            True if any SLA field changed
        """
        before = (
            ticket.sla_rule_id, ticket.sla_due_at,
            ticket.sla_status, ticket.sla_breached_at
        )

        if ticket.condition_attributes() != previous_attributes:
            matched = RuleMatcher.match(ticket, self._rule_provider.get_active_rules())
            matched_id = matched.id if matched else None
            if matched_id != ticket.sla_rule_id or not ticket.is_sla_tracked:
                self.assign_rule(ticket)

        if ticket.sla_status == SlaStatus.COMPLETED and not self._classifier.is_closed_type(ticket.status):
            ticket.sla_status = SlaStatus.ON_TRACK
            logger.info("Ticket reopened, SLA back on track", extra={"ticket_id": ticket.id})

        self.evaluate_status(ticket)

        return before != (
            ticket.sla_rule_id, ticket.sla_due_at,
            ticket.sla_status, ticket.sla_breached_at
        )

    # ---------- Repository-backed use cases ----------

    def _repository(self) -> ITicketRepository:
        if self._ticket_repo is None:
            raise ValueError("Ticket repository not configured")
        return self._ticket_repo

    async def _load(self, ticket_id: str) -> Ticket:
        ticket = await self._repository().get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    async def _publish(self, ticket: Ticket) -> None:
        events = ticket.pull_events()
        if events and self._publisher is not None:
            await self._publisher.publish(events)

    async def ingest_ticket(self, data: TicketUpsertDTO) -> Tuple[str, Ticket]:
        """
        Create or update a ticket projection.

        Returns:
            ("created" | "updated" | "skipped", ticket)
        """
        repo = self._repository()
        existing = await repo.get_by_external_id(data.id)

        if existing is None:
            ticket = Ticket(
                id=str(uuid4()),
                external_id=data.id,
                created_at=data.created_at,
                status=data.status,
                priority=data.priority,
                category=data.category,
                owning_team_id=data.owning_team_id,
                updated_at=data.updated_at,
            )
            self.assign_rule(ticket)
            self.evaluate_status(ticket)
            await repo.create(ticket)
            await self._publish(ticket)
            return "created", ticket

        if existing.updated_at is not None and as_utc(data.updated_at) <= as_utc(existing.updated_at):
            return "skipped", existing

        previous = existing.condition_attributes()
        existing.status = data.status
        existing.priority = data.priority
        existing.category = data.category
        existing.owning_team_id = data.owning_team_id
        existing.updated_at = data.updated_at

        self.ticket_updated(existing, previous)
        await repo.save(existing)
        await self._publish(existing)
        return "updated", existing

    async def get_ticket_status(self, ticket_id: str) -> Ticket:
        """Load a ticket and evaluate it on demand."""
        ticket = await self._load(ticket_id)
        if self.evaluate_status(ticket):
            await self._repository().save(ticket)
            await self._publish(ticket)
        return ticket

    async def extend_ticket(
        self,
        ticket_id: str,
        hours: int,
        reason: Optional[str] = None
    ) -> Ticket:
        ticket = await self._load(ticket_id)
        self.extend_sla(ticket, hours)
        if reason:
            logger.info("SLA extension reason", extra={"ticket_id": ticket.id, "reason": reason})
        await self._repository().save(ticket)
        return ticket

    async def refresh_ticket(self, ticket_id: str, restart_from_now: bool = False) -> Ticket:
        ticket = await self._load(ticket_id)
        self.refresh_sla(ticket, restart_from_now)
        await self._repository().save(ticket)
        await self._publish(ticket)
        return ticket

    async def get_ticket(self, ticket_id: str) -> Ticket:
        """Load a ticket without evaluating it."""
        return await self._load(ticket_id)


@dataclass
class SweepResult:
    """Counters reported by one sweep."""
    evaluated: int = 0
    changed: int = 0
    conflicts: int = 0
    failed: int = 0
    batches: int = 0
    cancelled: bool = False


class SlaSweepService:
    """
    Periodic re-evaluation of open, tracked, not-yet-breached tickets.

    Tickets are loaded in keyset-paginated batches of IDs; each ticket is
    then evaluated in its own unit of work, so a conflict or failure on one
    ticket never rolls back another. Cancellation is checked between
    tickets and a cancelled sweep can simply be started again.
    """

    def __init__(
        self,
        sla_service: SlaService,
        status_classifier: IStatusClassifier,
        unit_of_work: TicketUnitOfWork,
        event_publisher: Optional[ISlaEventPublisher] = None,
        batch_size: Optional[int] = None,
    ):
        self._sla_service = sla_service
        self._classifier = status_classifier
        self._unit_of_work = unit_of_work
        self._publisher = event_publisher
        self._batch_size = batch_size or settings.sla_sweep_batch_size
        self._cancel = asyncio.Event()
        self._active_runs = 0

    def cancel(self) -> None:
        """
        Ask running sweeps to stop after the current ticket.

        The request stays pending until every run that is active (or the
        next one to start) has stopped, so a cancel issued between runs is
        not lost.
        """
        self._cancel.set()

    async def run(self) -> SweepResult:
        """Run one full sweep."""
        self._active_runs += 1
        try:
            return await self._sweep()
        finally:
            self._active_runs -= 1
            if self._active_runs == 0:
                self._cancel.clear()

    def _stop_requested(self, result: SweepResult) -> bool:
        if not self._cancel.is_set():
            return False
        result.cancelled = True
        logger.info("SLA sweep cancelled", extra={"evaluated": result.evaluated})
        return True

    async def _sweep(self) -> SweepResult:
        result = SweepResult()
        last_id: Optional[str] = None

        while not self._stop_requested(result):
            async with self._unit_of_work() as repo:
                ticket_ids = await repo.list_sweep_batch(
                    last_id, self._batch_size, self._classifier.closed_statuses
                )
            if not ticket_ids:
                break

            result.batches += 1

            for ticket_id in ticket_ids:
                if self._stop_requested(result):
                    return result
                await self._evaluate_one(ticket_id, result)

            last_id = ticket_ids[-1]
            if len(ticket_ids) < self._batch_size:
                break

        if result.cancelled:
            return result

        logger.info(
            "SLA sweep complete",
            extra={
                "evaluated": result.evaluated,
                "changed": result.changed,
                "conflicts": result.conflicts,
                "failed": result.failed,
                "batches": result.batches
            }
        )
        return result

    async def _evaluate_one(self, ticket_id: str, result: SweepResult) -> None:
        events: List[SlaDomainEvent] = []
        try:
            async with self._unit_of_work() as repo:
                ticket = await repo.get_by_id(ticket_id)
                if ticket is None:
                    return

                result.evaluated += 1
                if self._sla_service.evaluate_status(ticket):
                    await repo.save(ticket)
                    result.changed += 1
                    events = ticket.pull_events()
        except ConcurrencyException as e:
            result.conflicts += 1
            logger.warning(
                "Skipping ticket modified during SLA sweep",
                extra={"ticket_id": ticket_id, "error": e.message}
            )
            return
        except Exception as e:
            result.failed += 1
            logger.exception(
                "Failed to evaluate ticket during SLA sweep",
                extra={"ticket_id": ticket_id, "error": str(e)}
            )
            return

        if events and self._publisher is not None:
            try:
                await self._publisher.publish(events)
            except Exception as e:
                logger.exception(
                    "Failed to publish SLA events",
                    extra={"ticket_id": ticket_id, "error": str(e)}
                )
