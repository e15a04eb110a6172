"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared between threads.

Rule blobs (conditions, business hours, breach behavior) are parsed into
these types once, when the rules catalogue is loaded.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, FrozenSet, Mapping, Optional, Tuple, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel


DEFAULT_OPENING_TIME = time(8, 0)
DEFAULT_CLOSING_TIME = time(18, 0)


TIME_OF_DAY_FORMATS = ("%H:%M", "%H:%M:%S")


def _parse_time_of_day(value: str, default: time) -> time:
    """Parse "H:MM", "HH:MM" or "HH:MM:SS" as a naive time, falling back to ``default``."""
    if not isinstance(value, str):
        return default
    for fmt in TIME_OF_DAY_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).time()
        except ValueError:
            continue
    return default


def weekday_number(day: date) -> int:
    """Weekday number used by business-hours configs (0=Sunday ... 6=Saturday)."""
    return day.isoweekday() % 7


class BusinessHoursConfig(BaseModel):
    """
    Weekly schedule during which SLA time accrues.

    Accepts both snake_case and camelCase keys so that blobs written by
    other services (``startTime``/``endTime``) load unchanged.
    """
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    workdays: FrozenSet[int] = Field(
        default_factory=lambda: frozenset({1, 2, 3, 4, 5}),
        description="Weekday numbers, 0=Sunday ... 6=Saturday"
    )
    start_time: str = Field(default="08:00", description="Opening time of day")
    end_time: str = Field(default="18:00", description="Closing time of day")
    holidays: Tuple[date, ...] = Field(default=(), description="Dates with no business hours")

    @field_validator("workdays")
    @classmethod
    def validate_workdays(cls, v: FrozenSet[int]) -> FrozenSet[int]:
        """Weekday numbers must be in 0..6."""
        invalid = sorted(day for day in v if not 0 <= day <= 6)
        if invalid:
            raise ValueError(f"invalid weekday numbers: {invalid}")
        return v

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def coerce_time_of_day(cls, v: Any) -> Any:
        """Normalize time values that YAML or JSON did not keep as strings."""
        if isinstance(v, time):
            return v.isoformat(timespec="minutes")
        if isinstance(v, int) and not isinstance(v, bool):
            # YAML 1.1 reads an unquoted 18:00 as the sexagesimal integer 1080
            hours, minutes = divmod(v, 60)
            return f"{hours:02d}:{minutes:02d}"
        return v

    @field_validator("holidays", mode="before")
    @classmethod
    def coerce_holidays(cls, v: Any) -> Any:
        """Holidays may arrive as dates, datetimes or ISO strings."""
        if v is None:
            return ()
        coerced = []
        for item in v:
            if isinstance(item, datetime):
                coerced.append(item.date())
            elif isinstance(item, str) and "T" in item:
                coerced.append(datetime.fromisoformat(item.replace("Z", "+00:00")).date())
            else:
                coerced.append(item)
        return tuple(coerced)

    @property
    def opening_time(self) -> time:
        return _parse_time_of_day(self.start_time, DEFAULT_OPENING_TIME)

    @property
    def closing_time(self) -> time:
        return _parse_time_of_day(self.end_time, DEFAULT_CLOSING_TIME)

    def is_business_day(self, day: date) -> bool:
        """A business day is a workday that is not a holiday."""
        return weekday_number(day) in self.workdays and day not in self.holidays

    @classmethod
    def parse(cls, raw: Any) -> Optional["BusinessHoursConfig"]:
        """
        Parse a stored config blob.

        Returns None for missing or malformed input so callers fall back to
        calendar-time arithmetic instead of failing.
        """
        if raw is None or isinstance(raw, cls):
            return raw
        try:
            if isinstance(raw, (str, bytes)):
                return cls.model_validate_json(raw)
            return cls.model_validate(raw)
        except (ValidationError, ValueError, TypeError):
            return None


class BreachBehavior(BaseModel):
    """What notifiers should do when a rule is breached."""
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    notify_assignee: bool = True
    ui_markers: bool = True
    notify_team: bool = False
    webhook_url: Optional[str] = None

    @classmethod
    def parse(cls, raw: Any) -> Optional["BreachBehavior"]:
        """Parse a stored blob; malformed input yields None."""
        if raw is None or isinstance(raw, cls):
            return raw
        try:
            if isinstance(raw, (str, bytes)):
                return cls.model_validate_json(raw)
            return cls.model_validate(raw)
        except (ValidationError, ValueError, TypeError):
            return None


# ========== Rule conditions ==========

@dataclass(frozen=True)
class PriorityCondition:
    """Ticket priority must equal ``value`` (case-insensitive)."""
    value: str


@dataclass(frozen=True)
class CategoryCondition:
    """Ticket category must equal ``value`` (case-insensitive)."""
    value: str


@dataclass(frozen=True)
class StatusCondition:
    """Ticket status must equal ``value`` (case-insensitive)."""
    value: str


@dataclass(frozen=True)
class OwningTeamCondition:
    """Ticket must be owned by ``team_id``."""
    team_id: UUID


@dataclass(frozen=True)
class IgnoredCondition:
    """
    A condition the engine does not enforce.

    Unknown keys, empty values and unparseable team ids end up here so
    that newer rule definitions never make older engines reject tickets.
    """
    key: str
    value: Any


Condition = Union[
    PriorityCondition,
    CategoryCondition,
    StatusCondition,
    OwningTeamCondition,
    IgnoredCondition,
]

_STRING_CONDITIONS = {
    "priority": PriorityCondition,
    "category": CategoryCondition,
    "status": StatusCondition,
}
_TEAM_KEYS = {"owning_team_id", "owningteamid"}


def parse_condition(key: str, value: Any) -> Condition:
    """Parse a single key/value predicate into its typed variant."""
    normalized_key = str(key).strip().lower()
    text = "" if value is None else str(value).strip()

    if not text:
        return IgnoredCondition(key=key, value=value)

    if normalized_key in _STRING_CONDITIONS:
        return _STRING_CONDITIONS[normalized_key](text)

    if normalized_key in _TEAM_KEYS:
        try:
            return OwningTeamCondition(UUID(text))
        except ValueError:
            return IgnoredCondition(key=key, value=value)

    return IgnoredCondition(key=key, value=value)


def parse_conditions(raw: Optional[Mapping[str, Any]]) -> Tuple[Condition, ...]:
    """Parse a conditions mapping, preserving declaration order."""
    if not raw:
        return ()
    return tuple(parse_condition(key, value) for key, value in raw.items())
