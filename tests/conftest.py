"""
Shared fixtures for the SLA engine tests.
"""
import copy
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from helpdesk.core import ConcurrencyException
from helpdesk.sla.application import (
    ExtensionPolicy,
    ISlaEventPublisher,
    ITicketRepository,
    SlaService,
)
from helpdesk.sla.domain import SlaRule, Ticket, parse_conditions
from helpdesk.sla.infrastructure import SettingsStatusClassifier, SlaRulesManager


# Monday
NOW = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def make_rule(rule_id="default", target=100, conditions=None, priority=0, position=0, **kwargs) -> SlaRule:
    return SlaRule(
        id=rule_id,
        name=rule_id.title(),
        target_resolution_minutes=target,
        conditions=parse_conditions(conditions or {}),
        priority=priority,
        position=position,
        **kwargs
    )


def make_ticket(ticket_id="7f0c2a5e-3b7e-4d1e-9a54-0c1f1b9e2d11", **kwargs) -> Ticket:
    fields = dict(
        external_id="TICKET-001",
        created_at=NOW,
        status="open",
        priority="high",
        category="billing",
        updated_at=NOW,
    )
    fields.update(kwargs)
    return Ticket(id=ticket_id, **fields)


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingPublisher(ISlaEventPublisher):
    def __init__(self):
        self.events = []

    async def publish(self, events) -> None:
        self.events.extend(events)


class InMemoryTicketRepository(ITicketRepository):
    """Versioned in-memory store with the same contract as the SQL one."""

    def __init__(self):
        self.tickets: Dict[str, Ticket] = {}

    @staticmethod
    def _copy(ticket: Ticket) -> Ticket:
        duplicate = copy.deepcopy(ticket)
        duplicate.pull_events()
        return duplicate

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        stored = self.tickets.get(ticket_id)
        return self._copy(stored) if stored else None

    async def get_by_external_id(self, external_id: str) -> Optional[Ticket]:
        for stored in self.tickets.values():
            if stored.external_id == external_id:
                return self._copy(stored)
        return None

    async def create(self, ticket: Ticket) -> Ticket:
        self.tickets[ticket.id] = self._copy(ticket)
        return ticket

    async def save(self, ticket: Ticket) -> Ticket:
        stored = self.tickets.get(ticket.id)
        if stored is None or stored.version != ticket.version:
            raise ConcurrencyException("Ticket", ticket.id, ticket.version)
        ticket.version += 1
        self.tickets[ticket.id] = self._copy(ticket)
        return ticket

    async def list_sweep_batch(self, after_id, limit, closed_statuses: Sequence[str]) -> List[str]:
        ids = sorted(
            t.id for t in self.tickets.values()
            if t.is_sla_tracked
            and t.sla_status != "breached"
            and t.status.lower() not in closed_statuses
        )
        if after_id is not None:
            ids = [i for i in ids if i > after_id]
        return ids[:limit]

    def unit_of_work(self):
        @asynccontextmanager
        async def _uow():
            yield self
        return _uow


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def classifier():
    return SettingsStatusClassifier(["closed", "resolved"])


@pytest.fixture
def rules_manager():
    manager = SlaRulesManager()
    manager.load_rules([
        make_rule("critical", target=60, conditions={"priority": "critical"}, priority=1, position=0),
        make_rule("high", target=240, conditions={"priority": "high"}, priority=2, position=1),
        make_rule("default", target=1440, priority=100, position=2),
    ])
    return manager


@pytest.fixture
def repository():
    return InMemoryTicketRepository()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def sla_service(rules_manager, classifier, repository, publisher, clock):
    return SlaService(
        rule_provider=rules_manager,
        status_classifier=classifier,
        ticket_repository=repository,
        event_publisher=publisher,
        org_timezone="UTC",
        extension_policy=ExtensionPolicy(max_extensions=2, max_extension_hours=48),
        clock=clock,
    )
