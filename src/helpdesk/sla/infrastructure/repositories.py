"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
tickets from the database and convert them to domain entities.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.config import SlaStatus, settings
from helpdesk.core import ConcurrencyException, RepositoryException
from helpdesk.infrastructure.database import get_session_context
from helpdesk.sla.application import ITicketRepository, IStatusClassifier
from helpdesk.sla.domain import Ticket, as_utc
from helpdesk.sla.infrastructure.models import TicketModel


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return as_utc(value) if value is not None else None


def _parse_uuid(ticket_id: str) -> Optional[UUID]:
    try:
        return UUID(str(ticket_id))
    except ValueError:
        return None


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of the ticket repository.

    Handles persistence of Ticket entities using async SQLAlchemy. Writes
    are versioned: ``save`` only succeeds against the version it loaded.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_entity(model: TicketModel) -> Ticket:
        return Ticket(
            id=str(model.id),
            external_id=model.external_id,
            created_at=_utc(model.created_at),
            status=model.status,
            priority=model.priority,
            category=model.category,
            owning_team_id=model.owning_team_id,
            sla_rule_id=model.sla_rule_id,
            sla_due_at=_utc(model.sla_due_at),
            sla_status=model.sla_status,
            sla_breached_at=_utc(model.sla_breached_at),
            sla_extension_count=model.sla_extension_count,
            updated_at=_utc(model.updated_at),
            version=model.version,
        )

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by internal ID."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None

        stmt = select(TicketModel).where(TicketModel.id == ticket_uuid)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_external_id(self, external_id: str) -> Optional[Ticket]:
        """Get ticket by external ID."""
        stmt = select(TicketModel).where(TicketModel.external_id == external_id)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def create(self, ticket: Ticket) -> Ticket:
        """Insert a new ticket."""
        ticket_uuid = _parse_uuid(ticket.id)
        if ticket_uuid is None:
            raise RepositoryException(f"Invalid ticket id: {ticket.id}")

        model = TicketModel(
            id=ticket_uuid,
            external_id=ticket.external_id,
            status=ticket.status,
            priority=ticket.priority,
            category=ticket.category,
            owning_team_id=ticket.owning_team_id,
            created_at=ticket.created_at,
            sla_rule_id=ticket.sla_rule_id,
            sla_due_at=ticket.sla_due_at,
            sla_status=ticket.sla_status,
            sla_breached_at=ticket.sla_breached_at,
            sla_extension_count=ticket.sla_extension_count,
            version=ticket.version,
        )
        if ticket.updated_at is not None:
            model.updated_at = ticket.updated_at

        self._session.add(model)
        await self._session.flush()

        return ticket

    async def save(self, ticket: Ticket) -> Ticket:
        """Versioned write-back of attributes and SLA fields."""
        values = dict(
            status=ticket.status,
            priority=ticket.priority,
            category=ticket.category,
            owning_team_id=ticket.owning_team_id,
            sla_rule_id=ticket.sla_rule_id,
            sla_due_at=ticket.sla_due_at,
            sla_status=ticket.sla_status,
            sla_breached_at=ticket.sla_breached_at,
            sla_extension_count=ticket.sla_extension_count,
            version=ticket.version + 1,
        )
        if ticket.updated_at is not None:
            values["updated_at"] = ticket.updated_at

        stmt = (
            update(TicketModel)
            .where(
                TicketModel.id == _parse_uuid(ticket.id),
                TicketModel.version == ticket.version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)

        if result.rowcount == 0:
            raise ConcurrencyException("Ticket", ticket.id, ticket.version)

        ticket.version += 1
        return ticket

    async def list_sweep_batch(
        self,
        after_id: Optional[str],
        limit: int,
        closed_statuses: Sequence[str]
    ) -> List[str]:
        """Keyset-paginated IDs of open, tracked, not-yet-breached tickets."""
        stmt = select(TicketModel.id).where(
            TicketModel.sla_rule_id.is_not(None),
            TicketModel.sla_due_at.is_not(None),
            or_(
                TicketModel.sla_status.is_(None),
                TicketModel.sla_status != SlaStatus.BREACHED,
            ),
        )

        if closed_statuses:
            stmt = stmt.where(func.lower(TicketModel.status).not_in(list(closed_statuses)))

        if after_id is not None:
            stmt = stmt.where(TicketModel.id > _parse_uuid(after_id))

        stmt = stmt.order_by(TicketModel.id).limit(limit)

        result = await self._session.execute(stmt)
        return [str(ticket_id) for ticket_id in result.scalars().all()]


@asynccontextmanager
async def ticket_unit_of_work() -> AsyncGenerator[SQLAlchemyTicketRepository, None]:
    """One session, one transaction, one repository."""
    async with get_session_context() as session:
        yield SQLAlchemyTicketRepository(session)


class SettingsStatusClassifier(IStatusClassifier):
    """Closed-type statuses taken from settings (case-insensitive)."""

    def __init__(self, closed_statuses: Optional[Sequence[str]] = None):
        statuses = closed_statuses if closed_statuses is not None else settings.closed_ticket_statuses
        self._closed = tuple(status.strip().lower() for status in statuses if status.strip())

    @property
    def closed_statuses(self) -> Sequence[str]:
        return self._closed

    def is_closed_type(self, status: str) -> bool:
        return (status or "").strip().lower() in self._closed
