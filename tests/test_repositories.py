"""
Tests for the SQLAlchemy ticket repository (aiosqlite)
"""
from datetime import timedelta
from uuid import UUID

import pytest

from helpdesk.config import SlaStatus
from helpdesk.core import ConcurrencyException
from helpdesk.infrastructure.database import (
    close_database,
    create_tables,
    get_session_context,
    init_database,
)
from helpdesk.sla.application import SlaSweepService
from helpdesk.sla.infrastructure import SQLAlchemyTicketRepository, ticket_unit_of_work

from conftest import NOW, RecordingPublisher, make_ticket


TEAM_ID = UUID("3f2b8c1e-5d4a-4b7f-9c1e-2a6d8e0f4b13")


def ticket_id(n: int) -> str:
    return f"00000000-0000-0000-0000-{n:012d}"


@pytest.fixture
async def database(tmp_path):
    init_database(f"sqlite+aiosqlite:///{tmp_path / 'sla.db'}")
    await create_tables()
    yield
    await close_database()


async def insert(ticket):
    async with get_session_context() as session:
        await SQLAlchemyTicketRepository(session).create(ticket)


async def load(ticket_id_):
    async with get_session_context() as session:
        return await SQLAlchemyTicketRepository(session).get_by_id(ticket_id_)


async def test_create_and_load_round_trip(database):
    await insert(make_ticket(
        ticket_id(1), owning_team_id=TEAM_ID, sla_rule_id="high",
        sla_due_at=NOW + timedelta(hours=4), sla_status=SlaStatus.ON_TRACK
    ))

    ticket = await load(ticket_id(1))

    assert ticket.external_id == "TICKET-001"
    assert ticket.owning_team_id == TEAM_ID
    assert ticket.sla_due_at == NOW + timedelta(hours=4)
    assert ticket.sla_due_at.tzinfo is not None
    assert ticket.created_at == NOW
    assert ticket.version == 0


async def test_lookup_by_external_id_and_unknown_ids(database):
    await insert(make_ticket(ticket_id(1), external_id="EXT-9"))

    async with get_session_context() as session:
        repo = SQLAlchemyTicketRepository(session)
        assert (await repo.get_by_external_id("EXT-9")).id == ticket_id(1)
        assert await repo.get_by_external_id("missing") is None
        assert await repo.get_by_id("not-a-uuid") is None


async def test_save_bumps_version(database):
    await insert(make_ticket(ticket_id(1)))
    ticket = await load(ticket_id(1))
    ticket.sla_status = SlaStatus.BREACHED
    ticket.sla_breached_at = NOW

    async with get_session_context() as session:
        await SQLAlchemyTicketRepository(session).save(ticket)

    assert ticket.version == 1
    stored = await load(ticket_id(1))
    assert stored.version == 1
    assert stored.sla_status == SlaStatus.BREACHED
    assert stored.sla_breached_at == NOW


async def test_stale_save_raises_concurrency_exception(database):
    await insert(make_ticket(ticket_id(1)))
    first = await load(ticket_id(1))
    second = await load(ticket_id(1))

    first.sla_status = SlaStatus.ON_TRACK
    async with get_session_context() as session:
        await SQLAlchemyTicketRepository(session).save(first)

    second.sla_status = SlaStatus.BREACHED
    with pytest.raises(ConcurrencyException):
        async with get_session_context() as session:
            await SQLAlchemyTicketRepository(session).save(second)

    assert (await load(ticket_id(1))).sla_status == SlaStatus.ON_TRACK


async def test_sweep_batch_filters_and_pages_by_id(database):
    tracked = dict(sla_rule_id="high", sla_due_at=NOW + timedelta(hours=4), sla_status=SlaStatus.ON_TRACK)
    await insert(make_ticket(ticket_id(1), external_id="A", **tracked))
    await insert(make_ticket(ticket_id(2), external_id="B", status="Resolved", **tracked))
    await insert(make_ticket(ticket_id(3), external_id="C", **{**tracked, "sla_status": SlaStatus.BREACHED}))
    await insert(make_ticket(ticket_id(4), external_id="D"))
    await insert(make_ticket(ticket_id(5), external_id="E", **tracked))
    await insert(make_ticket(ticket_id(6), external_id="F", **tracked))

    async with get_session_context() as session:
        repo = SQLAlchemyTicketRepository(session)
        first = await repo.list_sweep_batch(None, 2, ["closed", "resolved"])
        rest = await repo.list_sweep_batch(first[-1], 2, ["closed", "resolved"])

    assert first == [ticket_id(1), ticket_id(5)]
    assert rest == [ticket_id(6)]


async def test_sweep_against_database(database, sla_service, classifier, clock):
    await insert(make_ticket(ticket_id(1), external_id="A", sla_rule_id="high",
                             sla_due_at=NOW + timedelta(minutes=240), sla_status=SlaStatus.ON_TRACK))
    clock.now = NOW + timedelta(hours=5)
    publisher = RecordingPublisher()

    result = await SlaSweepService(
        sla_service=sla_service,
        status_classifier=classifier,
        unit_of_work=ticket_unit_of_work,
        event_publisher=publisher,
        batch_size=10,
    ).run()

    assert result.changed == 1
    stored = await load(ticket_id(1))
    assert stored.sla_status == SlaStatus.BREACHED
    assert stored.sla_breached_at == clock.now
    assert stored.version == 1
