"""
Tests for the batched SLA sweep
"""
from datetime import timedelta

from helpdesk.config import SlaStatus
from helpdesk.core import ConcurrencyException
from helpdesk.sla.application import SlaSweepService
from helpdesk.sla.domain import SlaApproachingBreachEvent, SlaBreachedEvent

from conftest import NOW, RecordingPublisher, make_ticket


def ticket_id(n: int) -> str:
    return f"00000000-0000-0000-0000-{n:012d}"


async def seed(repository, count, **kwargs):
    for n in range(count):
        fields = dict(
            external_id=f"TICKET-{n}",
            sla_rule_id="high",
            sla_due_at=NOW + timedelta(minutes=240),
            sla_status=SlaStatus.ON_TRACK,
        )
        fields.update(kwargs)
        await repository.create(make_ticket(ticket_id(n), **fields))


def make_sweep(sla_service, classifier, repository, publisher, batch_size=2):
    return SlaSweepService(
        sla_service=sla_service,
        status_classifier=classifier,
        unit_of_work=repository.unit_of_work(),
        event_publisher=publisher,
        batch_size=batch_size,
    )


async def test_sweep_evaluates_all_open_tickets_in_batches(sla_service, classifier, repository, publisher, clock):
    await seed(repository, 5)
    clock.now = NOW + timedelta(hours=5)

    result = await make_sweep(sla_service, classifier, repository, publisher).run()

    assert result.evaluated == 5
    assert result.changed == 5
    assert result.batches == 3
    assert result.cancelled is False
    assert all(t.sla_status == SlaStatus.BREACHED for t in repository.tickets.values())
    assert len(publisher.events) == 5
    assert all(isinstance(e, SlaBreachedEvent) for e in publisher.events)


async def test_sweep_skips_closed_breached_and_untracked(sla_service, classifier, repository, publisher, clock):
    await repository.create(make_ticket(ticket_id(1), external_id="A", status="Closed",
                                        sla_rule_id="high", sla_due_at=NOW, sla_status=SlaStatus.COMPLETED))
    await repository.create(make_ticket(ticket_id(2), external_id="B", sla_rule_id="high",
                                        sla_due_at=NOW, sla_status=SlaStatus.BREACHED, sla_breached_at=NOW))
    await repository.create(make_ticket(ticket_id(3), external_id="C"))
    await repository.create(make_ticket(ticket_id(4), external_id="D", sla_rule_id="high",
                                        sla_due_at=NOW + timedelta(minutes=240), sla_status=SlaStatus.ON_TRACK))
    clock.now = NOW + timedelta(minutes=200)

    result = await make_sweep(sla_service, classifier, repository, publisher).run()

    assert result.evaluated == 1
    assert result.changed == 1
    assert isinstance(publisher.events[0], SlaApproachingBreachEvent)


async def test_sweep_without_changes_writes_nothing(sla_service, classifier, repository, publisher):
    await seed(repository, 3)

    result = await make_sweep(sla_service, classifier, repository, publisher).run()

    assert result.evaluated == 3
    assert result.changed == 0
    assert all(t.version == 0 for t in repository.tickets.values())
    assert publisher.events == []


async def test_sweep_logs_and_skips_conflicts(sla_service, classifier, repository, publisher, clock):
    await seed(repository, 3)
    clock.now = NOW + timedelta(hours=5)
    original_save = repository.save

    async def save(ticket):
        if ticket.id == ticket_id(1):
            raise ConcurrencyException("Ticket", ticket.id, ticket.version)
        return await original_save(ticket)

    repository.save = save

    result = await make_sweep(sla_service, classifier, repository, publisher).run()

    assert result.conflicts == 1
    assert result.changed == 2
    assert repository.tickets[ticket_id(1)].sla_status == SlaStatus.ON_TRACK
    assert len(publisher.events) == 2


async def test_sweep_can_be_cancelled_between_tickets(sla_service, classifier, repository, clock):
    await seed(repository, 4)
    clock.now = NOW + timedelta(hours=5)

    class CancellingPublisher(RecordingPublisher):
        async def publish(self, events):
            await super().publish(events)
            sweep.cancel()

    publisher = CancellingPublisher()
    sweep = make_sweep(sla_service, classifier, repository, publisher)

    result = await sweep.run()

    assert result.cancelled is True
    assert result.evaluated == 1
    assert len(publisher.events) == 1

    # A restarted sweep picks up the remaining tickets
    rerun = await make_sweep(sla_service, classifier, repository, RecordingPublisher()).run()
    assert rerun.evaluated == 3
    assert rerun.cancelled is False


async def test_cancel_before_a_run_is_honored(sla_service, classifier, repository, publisher, clock):
    await seed(repository, 3)
    clock.now = NOW + timedelta(hours=5)
    sweep = make_sweep(sla_service, classifier, repository, publisher)

    sweep.cancel()
    result = await sweep.run()

    assert result.cancelled is True
    assert result.evaluated == 0
    assert publisher.events == []

    # The request is consumed by the run that stopped
    rerun = await sweep.run()
    assert rerun.cancelled is False
    assert rerun.evaluated == 3


async def test_sweep_continues_after_a_failing_ticket(sla_service, classifier, repository, publisher, clock):
    await seed(repository, 3)
    clock.now = NOW + timedelta(hours=5)
    original_save = repository.save

    async def save(ticket):
        if ticket.id == ticket_id(1):
            raise RuntimeError("connection reset")
        return await original_save(ticket)

    repository.save = save

    result = await make_sweep(sla_service, classifier, repository, publisher).run()

    assert result.failed == 1
    assert result.evaluated == 3
    assert result.changed == 2
    assert result.conflicts == 0
    assert len(publisher.events) == 2
