"""
SLA Domain Services
====================

Stateless calculations at the heart of the SLA engine:

- RuleMatcher: picks the first rule whose conditions hold for a ticket
- DueDateCalculator: target minutes -> due instant, optionally counting
  only business hours in the organization's timezone
- BreachStateEvaluator: ON_TRACK / APPROACHING_BREACH / BREACHED / COMPLETED
- ExtensionCalculator: default extension length and extended due dates

None of these perform I/O or keep shared state, so they can be called
from any number of threads or tasks at once.
"""

import math
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from functools import lru_cache
from typing import Callable, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tzlocal.windows_tz import win_tz

from helpdesk.config import (
    APPROACHING_BREACH_THRESHOLD,
    BUSINESS_HOURS_MAX_ITERATIONS,
    SlaStatus,
)
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.sla.domain.entities import (
    SlaApproachingBreachEvent,
    SlaBreachedEvent,
    SlaRule,
    Ticket,
)
from helpdesk.sla.domain.value_objects import (
    BusinessHoursConfig,
    CategoryCondition,
    Condition,
    IgnoredCondition,
    OwningTeamCondition,
    PriorityCondition,
    StatusCondition,
)

logger = get_logger(__name__)


# ========== Time helpers ==========

def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@lru_cache(maxsize=128)
def resolve_timezone(identifier: Optional[str]) -> tzinfo:
    """
    Resolve an IANA or Windows timezone identifier.

    Unknown identifiers resolve to UTC so a bad organization setting
    degrades SLA accuracy instead of blocking ticket processing.
    """
    if not identifier:
        return timezone.utc

    name = win_tz.get(identifier, identifier)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Unknown organization timezone, using UTC",
            extra={"timezone": identifier}
        )
        return timezone.utc


# ========== Rule matching ==========

class RuleMatcher:
    """
    First-match rule selection.

    Rules must already be active-only and sorted by ``(priority, position)``;
    use ``RuleMatcher.active_in_order`` to build such a snapshot.
    """

    @staticmethod
    def active_in_order(rules: Iterable[SlaRule]) -> List[SlaRule]:
        """Filter to active rules and sort them into evaluation order."""
        return sorted((rule for rule in rules if rule.is_active), key=lambda r: r.sort_key)

    @staticmethod
    def match(ticket: Ticket, rules: Sequence[SlaRule]) -> Optional[SlaRule]:
        """Return the first rule whose conditions all hold, or None."""
        for rule in rules:
            if RuleMatcher.matches(ticket, rule):
                return rule
        return None

    @staticmethod
    def matches(ticket: Ticket, rule: SlaRule) -> bool:
        return all(RuleMatcher.condition_holds(ticket, c) for c in rule.conditions)

    @staticmethod
    def condition_holds(ticket: Ticket, condition: Condition) -> bool:
        if isinstance(condition, PriorityCondition):
            return _same_text(ticket.priority, condition.value)
        if isinstance(condition, CategoryCondition):
            return _same_text(ticket.category, condition.value)
        if isinstance(condition, StatusCondition):
            return _same_text(ticket.status, condition.value)
        if isinstance(condition, OwningTeamCondition):
            return ticket.owning_team_id == condition.team_id
        if isinstance(condition, IgnoredCondition):
            return True
        raise TypeError(f"Unsupported condition type: {type(condition).__name__}")


def _same_text(actual: Optional[str], expected: str) -> bool:
    return actual is not None and actual.casefold() == expected.casefold()


# ========== Due dates ==========

class DueDateCalculator:
    """Converts a resolution target into a due instant."""

    @staticmethod
    def calculate_due_date(
        created_at: datetime,
        target_minutes: int,
        business_hours_enabled: bool,
        config: Optional[BusinessHoursConfig],
        org_timezone: Optional[str],
    ) -> datetime:
        """
        Calculate the SLA due date.

        Args:
            created_at: SLA clock start
            target_minutes: Resolution target in minutes
            business_hours_enabled: Count only business hours when True
            config: Weekly schedule; None falls back to calendar time
            org_timezone: IANA or Windows timezone the schedule is written in

        Returns:
            The due instant, in the same timebase as ``created_at``
        """
        calendar_due = created_at + timedelta(minutes=target_minutes)

        if not business_hours_enabled or config is None:
            return calendar_due

        due = DueDateCalculator._business_hours_due(
            as_utc(created_at), target_minutes, config, resolve_timezone(org_timezone)
        )
        if due is None:
            logger.warning(
                "Business hours calculation did not converge, using calendar time",
                extra={
                    "created_at": created_at.isoformat(),
                    "target_minutes": target_minutes,
                    "workdays": sorted(config.workdays),
                    "start_time": config.start_time,
                    "end_time": config.end_time,
                }
            )
            return calendar_due

        if created_at.tzinfo is None:
            return due.replace(tzinfo=None)
        return due

    @staticmethod
    def _business_hours_due(
        created_at: datetime,
        target_minutes: int,
        config: BusinessHoursConfig,
        tz: tzinfo,
    ) -> Optional[datetime]:
        opening = config.opening_time
        closing = config.closing_time

        # Step through local wall-clock time; convert back to UTC at the end.
        current = created_at.astimezone(tz).replace(tzinfo=None)
        remaining = float(target_minutes)

        for _ in range(BUSINESS_HOURS_MAX_ITERATIONS):
            if not config.is_business_day(current.date()):
                current = _next_opening(current.date(), opening)
                continue

            if current.time() < opening:
                current = datetime.combine(current.date(), opening)

            if current.time() >= closing:
                current = _next_opening(current.date(), opening)
                continue

            remaining_in_day = (
                datetime.combine(current.date(), closing) - current
            ).total_seconds() / 60

            if remaining <= remaining_in_day:
                local_due = current + timedelta(minutes=remaining)
                return local_due.replace(tzinfo=tz).astimezone(timezone.utc)

            remaining -= remaining_in_day
            current = _next_opening(current.date(), opening)

        return None


def _next_opening(day: date, opening: time) -> datetime:
    return datetime.combine(day + timedelta(days=1), opening)


# ========== Breach state ==========

class BreachStateEvaluator:
    """
    SLA status state machine.

    Evaluation order: closed-type status -> COMPLETED, past due -> BREACHED,
    75% of the target elapsed -> APPROACHING_BREACH, otherwise ON_TRACK.
    The status is recomputed from current parameters on every call, so an
    extended ticket can move from APPROACHING_BREACH back to ON_TRACK.
    """

    @staticmethod
    def decide(
        ticket: Ticket,
        rule: Optional[SlaRule],
        is_closed: bool,
        now: datetime,
    ) -> str:
        """Pure decision table; ``ticket`` must be SLA-tracked."""
        if is_closed:
            return SlaStatus.COMPLETED

        if as_utc(now) >= as_utc(ticket.sla_due_at):
            return SlaStatus.BREACHED

        if rule is not None:
            elapsed = (as_utc(now) - as_utc(ticket.created_at)).total_seconds() / 60
            if elapsed / rule.target_resolution_minutes >= APPROACHING_BREACH_THRESHOLD:
                return SlaStatus.APPROACHING_BREACH

        return SlaStatus.ON_TRACK

    @staticmethod
    def evaluate(
        ticket: Ticket,
        rule: Optional[SlaRule],
        is_closed_type: Callable[[str], bool],
        now: datetime,
    ) -> bool:
        """
        Apply the state machine to ``ticket``.

        Writes ``sla_status`` (and ``sla_breached_at`` on first breach) and
        records a domain event on entry into BREACHED or APPROACHING_BREACH.

        Returns:
            True if the SLA status changed
        """
        if not ticket.is_sla_tracked:
            return False

        old_status = ticket.sla_status
        new_status = BreachStateEvaluator.decide(
            ticket, rule, is_closed_type(ticket.status), now
        )

        if new_status == old_status:
            return False

        ticket.sla_status = new_status

        if new_status == SlaStatus.BREACHED:
            ticket.sla_breached_at = now
            ticket.record_event(SlaBreachedEvent(
                ticket_id=ticket.id,
                external_id=ticket.external_id,
                rule_id=ticket.sla_rule_id,
                due_at=ticket.sla_due_at,
                occurred_at=now,
            ))
        elif new_status == SlaStatus.APPROACHING_BREACH:
            ticket.record_event(SlaApproachingBreachEvent(
                ticket_id=ticket.id,
                external_id=ticket.external_id,
                rule_id=ticket.sla_rule_id,
                due_at=ticket.sla_due_at,
                occurred_at=now,
            ))

        return True


# ========== Extensions ==========

DEFAULT_EXTENSION_TARGET = time(16, 0)


class ExtensionCalculator:
    """Manual SLA extension arithmetic."""

    @staticmethod
    def default_extension_hours(
        current_due_at: Optional[datetime],
        org_timezone: Optional[str],
        now: datetime,
    ) -> int:
        """
        Suggest an extension that lands at 4 PM on the next business day.

        Business days are Monday-Friday; holidays are not considered.
        The result is measured from ``current_due_at`` (or ``now``),
        rounded up to whole hours, and never less than 1.
        """
        tz = resolve_timezone(org_timezone)
        target_day = as_utc(now).astimezone(tz).date() + timedelta(days=1)
        while target_day.weekday() >= 5:
            target_day += timedelta(days=1)

        target = datetime.combine(target_day, DEFAULT_EXTENSION_TARGET, tzinfo=tz)
        base = as_utc(current_due_at if current_due_at is not None else now)

        hours = math.ceil((target - base).total_seconds() / 3600)
        return max(1, hours)

    @staticmethod
    def extended_due_date(
        current_due_at: Optional[datetime],
        extension_hours: int,
        now: datetime,
    ) -> datetime:
        """``(current_due_at or now) + extension_hours``."""
        base = current_due_at if current_due_at is not None else now
        return base + timedelta(hours=extension_hours)
