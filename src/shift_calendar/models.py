"""
Domain Models for the Shift Calendar

Teams, shifts, recurrence rules, assignments, exceptions and the computed
schedule day, together with the error taxonomy shared by every engine
module. Records convert to and from the camelCase dictionaries stored in
the JSON data file.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from enum import Enum
from typing import Dict, List, Optional, Any, Tuple


class ScheduleError(Exception):
    """Base exception for schedule engine errors"""
    pass


class ConfigurationError(ScheduleError):
    """Raised when a rule, pattern, assignment or exception is inconsistent"""
    pass


class RuleInUseError(ConfigurationError):
    """Raised when mutating a rule referenced by an active assignment"""
    pass


class RangeValidationError(ScheduleError):
    """Raised when a requested date range is empty or too long"""
    pass


def parse_date(value: Any) -> Optional[date]:
    """Parse an ISO date string (datetimes are truncated to their date)"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def parse_time(value: Any) -> Optional[time]:
    """Parse an HH:MM[:SS] time string"""
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    return time.fromisoformat(str(value))


def parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(str(value))
    return datetime.min


def format_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def format_time(value: Optional[time]) -> Optional[str]:
    return value.strftime("%H:%M") if value else None


def minutes_between(start: time, end: time) -> int:
    """Minutes from start to end, wrapping past midnight when end <= start"""
    start_minutes = start.hour * 60 + start.minute
    end_minutes = end.hour * 60 + end.minute
    if end_minutes <= start_minutes:
        end_minutes += 24 * 60
    return end_minutes - start_minutes


# Enumerations

class Frequency(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CYCLE = "cycle"
    PATTERN = "pattern"


class EndType(Enum):
    NEVER = "never"
    UNTIL = "until"
    COUNT = "count"


class AssignmentStatus(Enum):
    ACTIVE = "active"
    DRAFT = "draft"
    EXPIRED = "expired"


class ApprovalStatus(Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ExceptionType(Enum):
    VACATION = "vacation"
    SICK_LEAVE = "sick_leave"
    SPECIAL_LEAVE = "special_leave"
    CANCELLATION = "cancellation"
    COMPANY_CHANGE = "company_change"
    REPLACEMENT = "replacement"
    SWAP = "swap"
    SPECIAL_COVERAGE = "special_coverage"
    OVERTIME = "overtime"
    ADDITION = "addition"
    REDUCTION_PERSONAL = "reduction_personal"
    REDUCTION_ROL = "reduction_rol"
    REDUCTION_UNION = "reduction_union"
    CUSTOM = "custom"


class ExceptionCategory(Enum):
    ABSENCE = "absence"
    CHANGE = "change"
    REDUCTION = "reduction"
    ADDITION = "addition"
    CUSTOM = "custom"


class ExceptionEffect(Enum):
    """What an exception does to the user's base shifts"""
    REMOVE = "remove"
    SUBSTITUTE = "substitute"
    ADD = "add"
    ADJUST_TIME = "adjust_time"


@dataclass(frozen=True)
class ExceptionTypeInfo:
    """Static attributes of an exception type"""
    category: ExceptionCategory
    effect: ExceptionEffect
    full_day: bool
    requires_approval: bool
    default_priority: int
    color: str


EXCEPTION_TYPE_INFO: Dict[ExceptionType, ExceptionTypeInfo] = {
    ExceptionType.VACATION: ExceptionTypeInfo(
        ExceptionCategory.ABSENCE, ExceptionEffect.REMOVE, True, False, 10, "#4CAF50"),
    ExceptionType.SICK_LEAVE: ExceptionTypeInfo(
        ExceptionCategory.ABSENCE, ExceptionEffect.REMOVE, True, False, 10, "#F44336"),
    ExceptionType.SPECIAL_LEAVE: ExceptionTypeInfo(
        ExceptionCategory.ABSENCE, ExceptionEffect.REMOVE, True, True, 10, "#9C27B0"),
    ExceptionType.CANCELLATION: ExceptionTypeInfo(
        ExceptionCategory.ABSENCE, ExceptionEffect.REMOVE, True, True, 9, "#607D8B"),
    ExceptionType.COMPANY_CHANGE: ExceptionTypeInfo(
        ExceptionCategory.CHANGE, ExceptionEffect.SUBSTITUTE, False, True, 8, "#FF9800"),
    ExceptionType.SPECIAL_COVERAGE: ExceptionTypeInfo(
        ExceptionCategory.CHANGE, ExceptionEffect.SUBSTITUTE, False, True, 7, "#FF5722"),
    ExceptionType.REPLACEMENT: ExceptionTypeInfo(
        ExceptionCategory.CHANGE, ExceptionEffect.SUBSTITUTE, False, True, 6, "#03A9F4"),
    ExceptionType.SWAP: ExceptionTypeInfo(
        ExceptionCategory.CHANGE, ExceptionEffect.SUBSTITUTE, False, True, 6, "#2196F3"),
    ExceptionType.REDUCTION_PERSONAL: ExceptionTypeInfo(
        ExceptionCategory.REDUCTION, ExceptionEffect.ADJUST_TIME, False, True, 5, "#FFC107"),
    ExceptionType.REDUCTION_ROL: ExceptionTypeInfo(
        ExceptionCategory.REDUCTION, ExceptionEffect.ADJUST_TIME, False, False, 5, "#FFEB3B"),
    ExceptionType.REDUCTION_UNION: ExceptionTypeInfo(
        ExceptionCategory.REDUCTION, ExceptionEffect.ADJUST_TIME, False, False, 5, "#CDDC39"),
    ExceptionType.OVERTIME: ExceptionTypeInfo(
        ExceptionCategory.ADDITION, ExceptionEffect.ADD, False, True, 4, "#795548"),
    ExceptionType.ADDITION: ExceptionTypeInfo(
        ExceptionCategory.ADDITION, ExceptionEffect.ADD, False, True, 4, "#8D6E63"),
    ExceptionType.CUSTOM: ExceptionTypeInfo(
        ExceptionCategory.CUSTOM, ExceptionEffect.SUBSTITUTE, False, True, 4, "#9E9E9E"),
}


# Catalog records

@dataclass(frozen=True)
class Team:
    """Team with its phase offset inside the fixed rotating roster"""
    id: str
    name: str
    offset: int
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "offset": self.offset,
            "active": self.active
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Team':
        return cls(
            id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            offset=int(data.get("offset", 0)),
            active=data.get("active", True)
        )


UNKNOWN_SHIFT_NAME = "Unknown shift"


@dataclass(frozen=True)
class Shift:
    """Shift template shared by every schedule day that references it"""
    id: str
    name: str
    start_time: time
    end_time: time
    break_minutes: int = 0
    color: str = "#9E9E9E"
    short_code: str = ""
    is_placeholder: bool = False

    @property
    def crosses_midnight(self) -> bool:
        return self.end_time <= self.start_time

    @property
    def duration_minutes(self) -> int:
        return minutes_between(self.start_time, self.end_time)

    @property
    def work_minutes(self) -> int:
        return max(0, self.duration_minutes - self.break_minutes)

    @classmethod
    def unknown(cls, shift_id: Optional[str]) -> 'Shift':
        """Placeholder for a shift id missing from the catalog"""
        return cls(
            id=shift_id or "",
            name=UNKNOWN_SHIFT_NAME,
            start_time=time(0, 0),
            end_time=time(0, 0),
            short_code="?",
            is_placeholder=True
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "startTime": format_time(self.start_time),
            "endTime": format_time(self.end_time),
            "breakMinutes": self.break_minutes,
            "color": self.color,
            "shortCode": self.short_code
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Shift':
        return cls(
            id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            start_time=parse_time(data["startTime"]),
            end_time=parse_time(data["endTime"]),
            break_minutes=int(data.get("breakMinutes", 0)),
            color=data.get("color", "#9E9E9E"),
            short_code=data.get("shortCode", "")
        )


@dataclass(frozen=True)
class PatternDay:
    """One slot of a repeating pattern: a work shift, or rest when shift_id is None"""
    shift_id: Optional[str] = None

    @property
    def is_rest(self) -> bool:
        return self.shift_id is None

    @classmethod
    def work(cls, shift_id: str) -> 'PatternDay':
        return cls(shift_id=shift_id)

    @classmethod
    def rest(cls) -> 'PatternDay':
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {"shiftId": self.shift_id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PatternDay':
        return cls(shift_id=data.get("shiftId"))


@dataclass(frozen=True)
class RecurrenceRule:
    """Declarative description of the dates a schedule applies to.

    ``by_day`` holds weekday numbers (0 = Monday). ``cycle_length``,
    ``work_days`` and ``rest_days`` are only meaningful for CYCLE rules and
    ``pattern`` only for PATTERN rules. ``shift_id`` is the shift worked
    on the dates a non-pattern rule fires.
    """
    id: Optional[int]
    name: str
    frequency: Frequency
    start_date: date
    interval: int = 1
    end_type: EndType = EndType.NEVER
    until_date: Optional[date] = None
    count: Optional[int] = None
    by_day: Tuple[int, ...] = ()
    by_month_day: Tuple[int, ...] = ()
    cycle_length: Optional[int] = None
    work_days: Optional[int] = None
    rest_days: Optional[int] = None
    shift_id: Optional[str] = None
    pattern: Tuple[PatternDay, ...] = ()
    created_at: datetime = field(default_factory=datetime.now, compare=False)

    @property
    def period_length(self) -> Optional[int]:
        """Days in one repetition of a cycle or pattern rule"""
        if self.frequency is Frequency.CYCLE:
            return self.cycle_length
        if self.frequency is Frequency.PATTERN:
            return len(self.pattern)
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "frequency": self.frequency.value,
            "startDate": format_date(self.start_date),
            "interval": self.interval,
            "endType": self.end_type.value,
            "untilDate": format_date(self.until_date),
            "count": self.count,
            "byDay": list(self.by_day),
            "byMonthDay": list(self.by_month_day),
            "cycleLength": self.cycle_length,
            "workDays": self.work_days,
            "restDays": self.rest_days,
            "shiftId": self.shift_id,
            "pattern": [day.to_dict() for day in self.pattern],
            "createdAt": self.created_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RecurrenceRule':
        return cls(
            id=data.get("id"),
            name=data.get("name", ""),
            frequency=Frequency(data["frequency"]),
            start_date=parse_date(data["startDate"]),
            interval=int(data.get("interval", 1)),
            end_type=EndType(data.get("endType", EndType.NEVER.value)),
            until_date=parse_date(data.get("untilDate")),
            count=data.get("count"),
            by_day=tuple(data.get("byDay", [])),
            by_month_day=tuple(data.get("byMonthDay", [])),
            cycle_length=data.get("cycleLength"),
            work_days=data.get("workDays"),
            rest_days=data.get("restDays"),
            shift_id=data.get("shiftId"),
            pattern=tuple(PatternDay.from_dict(day) for day in data.get("pattern", [])),
            created_at=parse_datetime(data.get("createdAt"))
        )


# Assignments

@dataclass(frozen=True)
class UserTeamAssignment:
    """Membership of a user in a team for a date window (end inclusive)"""
    id: Optional[int]
    user_id: int
    team_id: str
    start_date: date
    end_date: Optional[date] = None

    def covers(self, target: date) -> bool:
        return self.start_date <= target and (self.end_date is None or target <= self.end_date)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "teamId": self.team_id,
            "startDate": format_date(self.start_date),
            "endDate": format_date(self.end_date)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserTeamAssignment':
        return cls(
            id=data.get("id"),
            user_id=int(data["userId"]),
            team_id=str(data["teamId"]),
            start_date=parse_date(data["startDate"]),
            end_date=parse_date(data.get("endDate"))
        )


@dataclass(frozen=True)
class UserScheduleAssignment:
    """Binds a user or a team to a recurrence rule for a date window.

    A missing ``rule_id`` binds the subject to the fixed rotating roster.
    ``end_date`` is inclusive; ``None`` means the assignment is open ended.
    """
    id: Optional[int]
    start_date: date
    user_id: Optional[int] = None
    team_id: Optional[str] = None
    rule_id: Optional[int] = None
    end_date: Optional[date] = None
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    created_at: datetime = field(default_factory=datetime.now)
    notes: str = ""

    @property
    def uses_fixed_roster(self) -> bool:
        return self.rule_id is None

    def covers(self, target: date) -> bool:
        return self.start_date <= target and (self.end_date is None or target <= self.end_date)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "teamId": self.team_id,
            "ruleId": self.rule_id,
            "startDate": format_date(self.start_date),
            "endDate": format_date(self.end_date),
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "notes": self.notes
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserScheduleAssignment':
        return cls(
            id=data.get("id"),
            start_date=parse_date(data["startDate"]),
            user_id=data.get("userId"),
            team_id=data.get("teamId"),
            rule_id=data.get("ruleId"),
            end_date=parse_date(data.get("endDate")),
            status=AssignmentStatus(data.get("status", AssignmentStatus.ACTIVE.value)),
            created_at=parse_datetime(data.get("createdAt")),
            notes=data.get("notes", "")
        )


@dataclass(frozen=True)
class ShiftException:
    """Single-date override of one user's schedule.

    An exception linked to a recurrence rule repeats on every date, from
    ``target_date`` onwards, on which that rule occurs.
    """
    id: Optional[int]
    user_id: int
    target_date: date
    exception_type: ExceptionType
    status: ApprovalStatus = ApprovalStatus.DRAFT
    priority: Optional[int] = None
    original_shift_id: Optional[str] = None
    new_shift_id: Optional[str] = None
    swap_with_user_id: Optional[int] = None
    replacement_user_id: Optional[int] = None
    new_start_time: Optional[time] = None
    new_end_time: Optional[time] = None
    recurrence_rule_id: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.now)
    notes: str = ""

    @property
    def info(self) -> ExceptionTypeInfo:
        return EXCEPTION_TYPE_INFO[self.exception_type]

    @property
    def effect(self) -> ExceptionEffect:
        return self.info.effect

    @property
    def effective_priority(self) -> int:
        return self.priority if self.priority is not None else self.info.default_priority

    @property
    def counterpart_user_id(self) -> Optional[int]:
        return self.swap_with_user_id if self.swap_with_user_id is not None else self.replacement_user_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "targetDate": format_date(self.target_date),
            "type": self.exception_type.value,
            "status": self.status.value,
            "priority": self.priority,
            "originalShiftId": self.original_shift_id,
            "newShiftId": self.new_shift_id,
            "swapWithUserId": self.swap_with_user_id,
            "replacementUserId": self.replacement_user_id,
            "newStartTime": format_time(self.new_start_time),
            "newEndTime": format_time(self.new_end_time),
            "recurrenceRuleId": self.recurrence_rule_id,
            "createdAt": self.created_at.isoformat(),
            "notes": self.notes
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ShiftException':
        return cls(
            id=data.get("id"),
            user_id=int(data["userId"]),
            target_date=parse_date(data["targetDate"]),
            exception_type=ExceptionType(data["type"]),
            status=ApprovalStatus(data.get("status", ApprovalStatus.DRAFT.value)),
            priority=data.get("priority"),
            original_shift_id=data.get("originalShiftId"),
            new_shift_id=data.get("newShiftId"),
            swap_with_user_id=data.get("swapWithUserId"),
            replacement_user_id=data.get("replacementUserId"),
            new_start_time=parse_time(data.get("newStartTime")),
            new_end_time=parse_time(data.get("newEndTime")),
            recurrence_rule_id=data.get("recurrenceRuleId"),
            created_at=parse_datetime(data.get("createdAt")),
            notes=data.get("notes", "")
        )


# Computed output

@dataclass(frozen=True)
class ShiftInstance:
    """A shift worked on a specific day by teams and/or users"""
    shift: Shift
    teams: Tuple[str, ...] = ()
    user_ids: Tuple[int, ...] = ()
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    original_shift_id: Optional[str] = None
    exception_id: Optional[int] = None
    counterpart_user_id: Optional[int] = None

    @property
    def shift_id(self) -> str:
        return self.shift.id

    @property
    def effective_start(self) -> time:
        return self.start_time or self.shift.start_time

    @property
    def effective_end(self) -> time:
        return self.end_time or self.shift.end_time

    @property
    def work_minutes(self) -> int:
        if self.start_time is None and self.end_time is None:
            return self.shift.work_minutes
        duration = minutes_between(self.effective_start, self.effective_end)
        return max(0, duration - self.shift.break_minutes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shiftId": self.shift.id,
            "shiftName": self.shift.name,
            "startTime": format_time(self.effective_start),
            "endTime": format_time(self.effective_end),
            "teams": list(self.teams),
            "userIds": list(self.user_ids),
            "originalShiftId": self.original_shift_id,
            "exceptionId": self.exception_id
        }


@dataclass(frozen=True)
class AppliedException:
    """Audit record of an exception applied to a user's day"""
    exception_id: Optional[int]
    exception_type: ExceptionType
    effect: ExceptionEffect
    original_shift_ids: Tuple[str, ...] = ()
    new_shift_id: Optional[str] = None
    counterpart_user_id: Optional[int] = None


@dataclass(frozen=True)
class WorkScheduleDay:
    """Computed schedule of one date.

    ``shifts`` and ``off_teams`` describe every team in the catalog;
    ``user_shifts`` holds the requested user's own shifts after exceptions.
    A non-empty ``issues`` tuple marks a day that fell back to degraded values.
    """
    date: date
    shifts: Tuple[ShiftInstance, ...] = ()
    off_teams: Tuple[str, ...] = ()
    user_id: Optional[int] = None
    team_id: Optional[str] = None
    user_team_id: Optional[str] = None
    user_shifts: Tuple[ShiftInstance, ...] = ()
    applied_exceptions: Tuple[AppliedException, ...] = ()
    issues: Tuple[str, ...] = ()

    available = True

    @property
    def degraded(self) -> bool:
        return bool(self.issues)

    def shifts_for_team(self, team_id: str) -> List[ShiftInstance]:
        return [instance for instance in self.shifts if team_id in instance.teams]

    def is_team_working(self, team_id: str) -> bool:
        return bool(self.shifts_for_team(team_id))

    @property
    def is_working(self) -> bool:
        """Whether the requested subject works on this date"""
        if self.user_id is not None:
            return bool(self.user_shifts)
        if self.team_id is not None:
            return self.is_team_working(self.team_id)
        return bool(self.shifts)

    def with_changes(self, **changes) -> 'WorkScheduleDay':
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": format_date(self.date),
            "shifts": [instance.to_dict() for instance in self.shifts],
            "offTeams": list(self.off_teams),
            "userId": self.user_id,
            "teamId": self.team_id,
            "userShifts": [instance.to_dict() for instance in self.user_shifts],
            "issues": list(self.issues)
        }


@dataclass(frozen=True)
class ScheduleNotAvailable:
    """No schedule can be computed because assignment or rule data is missing"""
    date: date
    reason: str
    user_id: Optional[int] = None
    team_id: Optional[str] = None

    available = False
    degraded = False
    is_working = False


# Configuration

@dataclass
class ScheduleSettings:
    """Engine configuration passed explicitly into the assembler and service"""
    scheme_start_date: date = date(2018, 11, 7)
    cycle_length: int = 18
    max_range_days: int = 365
    include_pending_exceptions: bool = False
    range_workers: int = 4

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemeStartDate": format_date(self.scheme_start_date),
            "cycleLength": self.cycle_length,
            "maxRangeDays": self.max_range_days,
            "includePendingExceptions": self.include_pending_exceptions,
            "rangeWorkers": self.range_workers
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduleSettings':
        defaults = cls()
        return cls(
            scheme_start_date=parse_date(data.get("schemeStartDate")) or defaults.scheme_start_date,
            cycle_length=int(data.get("cycleLength", defaults.cycle_length)),
            max_range_days=int(data.get("maxRangeDays", defaults.max_range_days)),
            include_pending_exceptions=bool(data.get("includePendingExceptions",
                                                     defaults.include_pending_exceptions)),
            range_workers=int(data.get("rangeWorkers", defaults.range_workers))
        )
