"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.infrastructure.database import Base
from helpdesk.config import TicketStatus


class TicketModel(Base):
    """
    Database model for the SLA projection of a ticket.

    Maps to the 'tickets' table. ``version`` is bumped on every write and
    guards against lost updates between the sweep and API requests.
    """
    __tablename__ = "tickets"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Business identifier (external ticket ID)
    external_id: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)

    # Rule matching attributes
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN)
    priority: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    owning_team_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    # SLA tracking
    sla_rule_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sla_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    sla_breached_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_extension_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_tickets_sla_sweep", "sla_status", "id"),
    )
