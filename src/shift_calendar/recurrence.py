"""
Recurrence Rule Evaluator for the Shift Calendar

Decides whether a recurrence rule fires on a date. DAILY, WEEKLY, CYCLE
and PATTERN rules are evaluated with interval arithmetic, including their
COUNT end condition; MONTHLY rules and COUNT rules restricted by a
month-day filter are enumerated with ``dateutil.rrule``, which also backs
occurrence listing and RRULE export.
"""

from datetime import date, datetime, timedelta
import logging
from typing import List, Optional

from dateutil.rrule import (
    DAILY,
    FR,
    MO,
    MONTHLY,
    SA,
    SU,
    TH,
    TU,
    WE,
    WEEKLY,
    rrule,
)

from .cycle import cycle_index, cycle_position, days_between, is_work_day, validate_cycle
from .models import ConfigurationError, EndType, Frequency, RecurrenceRule
from .patterns import slot_for, validate_pattern

logger = logging.getLogger(__name__)

# Weekday numbers follow date.weekday(): 0 = Monday
WEEKDAY_TO_RRULE = (MO, TU, WE, TH, FR, SA, SU)

FREQUENCY_TO_RRULE = {
    Frequency.DAILY: DAILY,
    Frequency.WEEKLY: WEEKLY,
    Frequency.MONTHLY: MONTHLY,
}


def validate_recurrence_rule(rule: RecurrenceRule) -> List[str]:
    """
    Validate a rule before it is stored.

    Raises ConfigurationError for inconsistent rules and returns a list of
    non-fatal warnings.
    """
    warnings = []

    if rule.start_date is None:
        raise ConfigurationError("A recurrence rule needs a start date")
    if rule.interval is None or rule.interval < 1:
        raise ConfigurationError(f"Interval must be at least 1, got {rule.interval}")

    if rule.end_type is EndType.UNTIL:
        if rule.until_date is None:
            raise ConfigurationError("UNTIL rules need an until date")
        if rule.until_date < rule.start_date:
            raise ConfigurationError("The until date cannot be before the start date")
    elif rule.end_type is EndType.COUNT:
        if rule.count is None or rule.count < 1:
            raise ConfigurationError(f"COUNT rules need a positive count, got {rule.count}")

    for weekday in rule.by_day:
        if not 0 <= weekday <= 6:
            raise ConfigurationError(f"Invalid weekday {weekday} (expected 0-6)")
    for month_day in rule.by_month_day:
        if not 1 <= month_day <= 31:
            raise ConfigurationError(f"Invalid day of month {month_day} (expected 1-31)")

    if rule.frequency is Frequency.CYCLE:
        validate_cycle(rule.cycle_length, rule.work_days, rule.rest_days)
        if rule.interval != 1:
            warnings.append("Interval is ignored for CYCLE rules")
        if rule.by_day or rule.by_month_day:
            warnings.append("Day filters are ignored for CYCLE rules")
    elif rule.frequency is Frequency.PATTERN:
        validate_pattern(rule.pattern)
        if rule.by_day or rule.by_month_day:
            warnings.append("Day filters are ignored for PATTERN rules")
    elif rule.shift_id is None:
        warnings.append("Rule has no shift; occurrences will resolve to a placeholder shift")

    if rule.frequency is Frequency.MONTHLY and any(day > 28 for day in _month_days(rule)):
        warnings.append("Months without the requested day of month are skipped")

    return warnings


def occurs_on(rule: RecurrenceRule, target: date) -> bool:
    """Whether rule fires on target, honouring filters and the end condition"""
    if target < rule.start_date:
        return False
    if rule.end_type is EndType.UNTIL and rule.until_date is not None and target > rule.until_date:
        return False
    if not _matches(rule, target):
        return False
    if rule.end_type is EndType.COUNT:
        return occurrence_index(rule, target) < rule.count
    return True


def within_end_condition(rule: RecurrenceRule, target: date) -> bool:
    """
    End condition check for pattern rules.

    Pattern rules resolve dates before their start by wrapping backwards,
    so only the UNTIL date and the COUNT of pattern periods bound them.
    """
    if rule.end_type is EndType.UNTIL:
        return rule.until_date is None or target <= rule.until_date
    if rule.end_type is EndType.COUNT:
        return cycle_index(target, rule.start_date, rule.period_length) < rule.count
    return True


def occurrence_index(rule: RecurrenceRule, target: date) -> int:
    """
    Zero-based index of target among the occurrences of rule.

    Only meaningful when target is an occurrence. CYCLE and PATTERN rules
    count whole periods: every date of the n-th period has index n.
    """
    elapsed = days_between(rule.start_date, target)

    if rule.frequency in (Frequency.CYCLE, Frequency.PATTERN):
        return elapsed // rule.period_length

    if rule.frequency is Frequency.DAILY and not rule.by_month_day:
        if not rule.by_day:
            return elapsed // rule.interval
        return _daily_weekday_index(rule, target)

    if rule.frequency is Frequency.WEEKLY and not rule.by_month_day:
        weekdays = _weekdays(rule)
        week = elapsed // 7
        previous = (week // rule.interval) * len(weekdays)
        week_start = rule.start_date + timedelta(days=week * 7)
        in_week = sum(
            1 for offset in range(days_between(week_start, target) + 1)
            if (week_start + timedelta(days=offset)).weekday() in weekdays
        )
        return previous + in_week - 1

    return _count_with_rrule(rule, target) - 1


def occurrences(rule: RecurrenceRule, window_start: date, window_end: date) -> List[date]:
    """All dates in [window_start, window_end] on which rule fires"""
    if window_end < window_start:
        return []

    if rule.frequency in FREQUENCY_TO_RRULE:
        recurrence = build_rrule(rule)
        found = recurrence.between(
            datetime.combine(window_start, datetime.min.time()),
            datetime.combine(window_end, datetime.min.time()),
            inc=True
        )
        return [moment.date() for moment in found]

    dates = []
    current = max(window_start, rule.start_date)
    while current <= window_end:
        if occurs_on(rule, current):
            dates.append(current)
        current += timedelta(days=1)
    return dates


def build_rrule(rule: RecurrenceRule, until: Optional[date] = None) -> rrule:
    """
    dateutil rrule equivalent to a DAILY, WEEKLY or MONTHLY rule.

    WEEKLY rules start their weeks on the weekday of the start date, so
    the rrule interval arithmetic matches the elapsed-weeks arithmetic of
    occurs_on.
    """
    if rule.frequency not in FREQUENCY_TO_RRULE:
        raise ConfigurationError(f"{rule.frequency.value} rules have no rrule equivalent")

    kwargs = {
        "dtstart": datetime.combine(rule.start_date, datetime.min.time()),
        "interval": rule.interval,
    }

    if rule.frequency is Frequency.WEEKLY:
        kwargs["byweekday"] = [WEEKDAY_TO_RRULE[day] for day in _weekdays(rule)]
        kwargs["wkst"] = rule.start_date.weekday()
    elif rule.by_day:
        kwargs["byweekday"] = [WEEKDAY_TO_RRULE[day] for day in sorted(set(rule.by_day))]

    if rule.frequency is Frequency.MONTHLY:
        kwargs["bymonthday"] = _month_days(rule)
    elif rule.by_month_day:
        kwargs["bymonthday"] = sorted(set(rule.by_month_day))

    limit = until
    if rule.end_type is EndType.UNTIL and rule.until_date is not None:
        limit = min(limit, rule.until_date) if limit else rule.until_date
    if limit is not None:
        kwargs["until"] = datetime.combine(limit, datetime.min.time())
    elif rule.end_type is EndType.COUNT:
        kwargs["count"] = rule.count

    return rrule(FREQUENCY_TO_RRULE[rule.frequency], **kwargs)


def to_rrule_string(rule: RecurrenceRule) -> str:
    """RFC 5545 RRULE line for a DAILY, WEEKLY or MONTHLY rule"""
    lines = str(build_rrule(rule)).splitlines()
    return next(line for line in lines if line.startswith("RRULE:"))


def _matches(rule: RecurrenceRule, target: date) -> bool:
    """Frequency, interval and filter test, without the end condition"""
    elapsed = days_between(rule.start_date, target)

    if rule.frequency is Frequency.CYCLE:
        position = cycle_position(target, rule.start_date, rule.cycle_length)
        return is_work_day(position, rule.work_days, rule.rest_days)

    if rule.frequency is Frequency.PATTERN:
        return not slot_for(rule.pattern, rule.start_date, target).is_rest

    # By-day and by-month-day filters combine with the interval by logical AND
    if rule.by_month_day and rule.frequency is not Frequency.MONTHLY:
        if target.day not in rule.by_month_day:
            return False

    if rule.frequency is Frequency.DAILY:
        if rule.by_day and target.weekday() not in rule.by_day:
            return False
        return elapsed % rule.interval == 0

    if rule.frequency is Frequency.WEEKLY:
        if target.weekday() not in _weekdays(rule):
            return False
        return (elapsed // 7) % rule.interval == 0

    if rule.frequency is Frequency.MONTHLY:
        if rule.by_day and target.weekday() not in rule.by_day:
            return False
        months = (target.year - rule.start_date.year) * 12 + target.month - rule.start_date.month
        return months % rule.interval == 0 and target.day in _month_days(rule)

    raise ConfigurationError(f"Unsupported frequency: {rule.frequency}")


def _weekdays(rule: RecurrenceRule) -> List[int]:
    """By-day filter of a WEEKLY rule, defaulting to the weekday of the start date"""
    if rule.by_day:
        return sorted(set(rule.by_day))
    return [rule.start_date.weekday()]


def _month_days(rule: RecurrenceRule) -> List[int]:
    if rule.by_month_day:
        return sorted(set(rule.by_month_day))
    return [rule.start_date.day]


def _daily_weekday_index(rule: RecurrenceRule, target: date) -> int:
    # Interval-aligned days repeat their weekdays every 7 steps
    steps = days_between(rule.start_date, target) // rule.interval
    full_weeks, remainder = divmod(steps, 7)
    per_week = sum(
        1 for step in range(7)
        if (rule.start_date + timedelta(days=step * rule.interval)).weekday() in rule.by_day
    )
    partial = sum(
        1 for step in range(full_weeks * 7, full_weeks * 7 + remainder + 1)
        if (rule.start_date + timedelta(days=step * rule.interval)).weekday() in rule.by_day
    )
    return full_weeks * per_week + partial - 1


def _count_with_rrule(rule: RecurrenceRule, target: date) -> int:
    """Occurrences from the start date up to target inclusive"""
    # An explicit until replaces the COUNT limit; the caller compares against it
    count = build_rrule(rule, until=target).count()
    logger.debug(f"Counted {count} occurrences of rule {rule.id} up to {target}")
    return count
