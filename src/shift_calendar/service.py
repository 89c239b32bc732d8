"""
Schedule Service for the Shift Calendar

Public entry point of the schedule engine. Combines the assembler, the
exception resolver and the cache, answers single-day and range queries,
and exposes the cycle helpers and range statistics.
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError, as_completed
from dataclasses import dataclass, field
from datetime import date, timedelta
import logging
import time
from typing import Any, Dict, List, Optional

from .cache import ScheduleCache
from .cycle import days_between, team_cycle_position
from .exception_resolver import ExceptionResolver
from .models import (
    ConfigurationError,
    ExceptionEffect,
    RangeValidationError,
    ScheduleSettings,
    ShiftInstance,
)
from .scheduler_logic import ScheduleAssembler, ScheduleRepository, ScheduleResult

logger = logging.getLogger(__name__)


@dataclass
class ScheduleRangeResult:
    """Result of a range query; failed days are reported instead of aborting the range"""
    success: bool
    days: Dict[date, ScheduleResult]
    degraded_dates: List[date] = field(default_factory=list)
    failures: Dict[date, str] = field(default_factory=dict)
    message: str = ""

    def __getitem__(self, target: date) -> ScheduleResult:
        return self.days[target]

    def __len__(self) -> int:
        return len(self.days)

    @property
    def unavailable_dates(self) -> List[date]:
        return [target for target, day in self.days.items() if not day.available]


class ScheduleService:
    """Computes resolved schedule days for users, teams and the whole roster"""

    def __init__(self, repository: ScheduleRepository, settings: Optional[ScheduleSettings] = None,
                 cache: Optional[ScheduleCache] = None):
        self.repository = repository
        self._fixed_settings = settings is not None
        self.settings = settings or repository.load_settings()
        self.cache = cache or ScheduleCache()
        self.resolver = ExceptionResolver(self.settings.include_pending_exceptions)
        repository.add_change_listener(self._on_data_changed)

    def _on_data_changed(self, reason: str):
        logger.debug(f"Invalidating schedule cache: {reason}")
        self.invalidate_cache()

    def invalidate_cache(self):
        """Drop every cached day and pick up changed settings"""
        if not self._fixed_settings:
            self.settings = self.repository.load_settings()
            self.resolver.include_pending = self.settings.include_pending_exceptions
        self.cache.invalidate()

    def get_schedule_for_date(self, target: date, user_id: Optional[int] = None,
                              team_id: Optional[str] = None,
                              include_pending: Optional[bool] = None) -> ScheduleResult:
        """
        Resolved schedule of a date.

        Args:
            target: Date to compute
            user_id: User whose exceptions are applied (optional)
            team_id: Team of interest (optional)
            include_pending: Preview PENDING exceptions (defaults to the settings)

        Returns:
            WorkScheduleDay, or ScheduleNotAvailable when no schedule can be computed
        """
        pending = self.settings.include_pending_exceptions if include_pending is None else include_pending
        key = (user_id, team_id, pending if user_id is not None else False)
        return self.cache.get_or_compute(
            target, key, lambda: self._compute_day(target, user_id, team_id, pending)
        )

    def _compute_day(self, target: date, user_id: Optional[int], team_id: Optional[str],
                     include_pending: bool) -> ScheduleResult:
        assembler = ScheduleAssembler(self.repository, self.settings)
        base_day = assembler.assemble(target, user_id=user_id, team_id=team_id)
        if user_id is None or not base_day.available:
            if not base_day.available:
                logger.info(f"No schedule for {target}: {base_day.reason}")
            return base_day

        exceptions = self.repository.load_exceptions(user_id, target)
        if not exceptions:
            return base_day

        counterpart_shifts = self._counterpart_shifts(assembler, target, user_id, exceptions)
        shifts = {shift.id: shift for shift in self.repository.load_shift_catalog()}
        return self.resolver.resolve(
            base_day, user_id, exceptions, shifts,
            include_pending=include_pending,
            counterpart_shifts=counterpart_shifts
        )

    def _counterpart_shifts(self, assembler: ScheduleAssembler, target: date, user_id: int,
                            exceptions) -> Dict[int, List[ShiftInstance]]:
        """
        Base shifts of the other users an exception exchanges shifts with:
        swap partners whose shifts the user takes, and requesters whose
        shifts the user takes over as partner or replacement.
        """
        partners = set()
        for exception in exceptions:
            if exception.effect is not ExceptionEffect.SUBSTITUTE:
                continue
            if exception.user_id == user_id:
                if exception.new_shift_id is None and exception.swap_with_user_id is not None:
                    partners.add(exception.swap_with_user_id)
            elif exception.original_shift_id is None:
                partners.add(exception.user_id)

        result = {}
        for partner in partners:
            partner_day = assembler.assemble(target, user_id=partner)
            if partner_day.available:
                result[partner] = list(partner_day.user_shifts)
            else:
                logger.warning(f"Swap partner {partner} has no schedule on {target}")
        return result

    def validate_range(self, start: date, end: date) -> int:
        """Number of days in the inclusive range; raises RangeValidationError when invalid"""
        if end < start:
            raise RangeValidationError(f"Range end {end} is before its start {start}")
        span = days_between(start, end) + 1
        if span > self.settings.max_range_days:
            raise RangeValidationError(
                f"Range of {span} days exceeds the maximum of {self.settings.max_range_days} days"
            )
        return span

    def get_schedule_for_range(self, start: date, end: date, user_id: Optional[int] = None,
                               team_id: Optional[str] = None, timeout: Optional[float] = None,
                               include_pending: Optional[bool] = None) -> ScheduleRangeResult:
        """
        Resolved schedule of every date in [start, end].

        Days are computed independently on worker threads. A day that fails,
        or is still running when the advisory timeout expires, is reported
        in ``failures``; every other day is still returned.
        """
        span = self.validate_range(start, end)
        started = time.time()
        dates = [start + timedelta(days=offset) for offset in range(span)]
        days: Dict[date, ScheduleResult] = {}
        failures: Dict[date, str] = {}

        executor = ThreadPoolExecutor(max_workers=max(1, min(self.settings.range_workers, span)))
        try:
            futures = {
                executor.submit(self.get_schedule_for_date, target, user_id, team_id, include_pending): target
                for target in dates
            }
            try:
                for future in as_completed(futures, timeout=timeout):
                    target = futures[future]
                    try:
                        days[target] = future.result()
                    except Exception as e:
                        logger.error(f"Failed to compute schedule for {target}: {e}", exc_info=True)
                        failures[target] = str(e)
            except FutureTimeoutError:
                for future, target in futures.items():
                    if target in days or target in failures:
                        continue
                    # Days that finished after the deadline are still collected
                    if future.done() and not future.cancelled():
                        try:
                            days[target] = future.result()
                        except Exception as e:
                            logger.error(f"Failed to compute schedule for {target}: {e}", exc_info=True)
                            failures[target] = str(e)
                    else:
                        future.cancel()
                        failures[target] = "Timed out"
                logger.error(f"Range {start}..{end} timed out after {timeout}s; {len(days)} days computed")
        finally:
            executor.shutdown(wait=timeout is None, cancel_futures=True)

        ordered = {target: days[target] for target in dates if target in days}
        degraded = [target for target, day in ordered.items() if day.degraded]
        if degraded:
            logger.warning(f"{len(degraded)} days in {start}..{end} used degraded values")

        duration = time.time() - started
        logger.info(f"Computed {len(ordered)}/{span} days for {start}..{end} in {duration:.2f}s")

        message = f"Computed {len(ordered)} of {span} days"
        if failures:
            message += f"; {len(failures)} days failed"
        if degraded:
            message += f"; {len(degraded)} days degraded"

        return ScheduleRangeResult(
            success=not failures,
            days=ordered,
            degraded_dates=degraded,
            failures={target: failures[target] for target in dates if target in failures},
            message=message
        )

    def is_working_day(self, target: date, team_id: str) -> bool:
        day = self.get_schedule_for_date(target, team_id=team_id)
        if not day.available:
            logger.warning(f"No schedule for team {team_id} on {target}: {day.reason}")
            return False
        return day.is_team_working(team_id)

    def day_in_cycle(self, target: date, team_id: Optional[str] = None) -> int:
        """Position of target in the fixed roster cycle, seen by a team when given"""
        offset = 0
        if team_id is not None:
            teams = {team.id: team for team in self.repository.load_team_catalog()}
            if team_id not in teams:
                raise ConfigurationError(f"Unknown team {team_id}")
            offset = teams[team_id].offset
        return team_cycle_position(target, self.settings.scheme_start_date, offset, self.settings.cycle_length)

    def days_from_scheme_start(self, target: date) -> int:
        return days_between(self.settings.scheme_start_date, target)

    def get_schedule_stats(self, start: date, end: date, user_id: Optional[int] = None,
                           team_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Work statistics of a user, a team or the whole roster over a range.

        Returns:
            Dict with work/rest/unavailable day counts, worked minutes,
            shifts per shift id, applied exceptions and degraded days
        """
        result = self.get_schedule_for_range(start, end, user_id=user_id, team_id=team_id)
        stats = {
            "totalDays": len(result.days) + len(result.failures),
            "workDays": 0,
            "restDays": 0,
            "unavailableDays": 0,
            "failedDays": len(result.failures),
            "degradedDays": len(result.degraded_dates),
            "workMinutes": 0,
            "shiftsById": {},
            "exceptionsApplied": 0,
        }

        for day in result.days.values():
            if not day.available:
                stats["unavailableDays"] += 1
                continue
            if user_id is not None:
                instances = list(day.user_shifts)
            elif team_id is not None:
                instances = day.shifts_for_team(team_id)
            else:
                instances = list(day.shifts)

            if instances:
                stats["workDays"] += 1
            else:
                stats["restDays"] += 1
            for instance in instances:
                stats["workMinutes"] += instance.work_minutes
                stats["shiftsById"][instance.shift_id] = stats["shiftsById"].get(instance.shift_id, 0) + 1
            stats["exceptionsApplied"] += len(day.applied_exceptions)

        return stats
