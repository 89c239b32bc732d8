"""
Test Suite for the Schedule Service

Covers single-day and range queries, range validation, cache coherence
and invalidation, per-day failures, cycle helpers and statistics.
"""

import pytest
from datetime import date, timedelta
import sys
import threading
from pathlib import Path
import tempfile
import os
import json

# Setup import path for src
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shift_calendar.data_manager import DataManager, default_shifts, default_teams
from shift_calendar.models import (
    ApprovalStatus,
    ExceptionType,
    RangeValidationError,
    ScheduleSettings,
    ShiftException,
)
from shift_calendar.scheduler_logic import ScheduleRepository
from shift_calendar.service import ScheduleService


SCHEME_START = date(2018, 11, 7)


@pytest.fixture
def data_manager():
    """Clean DataManager for each test - isolated temp file."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as temp:
        temp_path = temp.name
        json.dump({}, temp)
    dm = DataManager(temp_path)
    dm.add_user_team(1, "A", date(2018, 1, 1))
    dm.add_user_team(2, "E", date(2018, 1, 1))
    yield dm
    os.unlink(temp_path)


@pytest.fixture
def service(data_manager):
    return ScheduleService(data_manager)


class FlakyRepository(ScheduleRepository):
    """In-memory repository that fails for one date"""

    def __init__(self, bad_date: date):
        self.bad_date = bad_date

    def find_assignments(self, target, user_id=None, team_id=None):
        if target == self.bad_date:
            raise RuntimeError("storage unavailable")
        return []

    def load_recurrence_rule(self, rule_id):
        return None

    def load_exceptions(self, user_id, target):
        return []

    def load_team_catalog(self):
        return default_teams()

    def load_shift_catalog(self):
        return default_shifts()

    def find_user_team(self, user_id, target):
        return None


def test_swap_then_higher_priority_cancellation(data_manager, service):
    assert [i.shift_id for i in service.get_schedule_for_date(SCHEME_START, user_id=1).user_shifts] == ["morning"]

    data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=SCHEME_START, exception_type=ExceptionType.SWAP,
        status=ApprovalStatus.APPROVED, original_shift_id="morning", new_shift_id="night", swap_with_user_id=2
    ))
    swapped = service.get_schedule_for_date(SCHEME_START, user_id=1)
    assert [i.shift_id for i in swapped.user_shifts] == ["night"]

    data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=SCHEME_START, exception_type=ExceptionType.CANCELLATION,
        status=ApprovalStatus.APPROVED, priority=20
    ))
    cancelled = service.get_schedule_for_date(SCHEME_START, user_id=1)
    assert cancelled.available
    assert cancelled.user_shifts == ()


def test_swap_with_partner_takes_partner_shift(data_manager, service):
    data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=SCHEME_START, exception_type=ExceptionType.SWAP,
        status=ApprovalStatus.APPROVED, swap_with_user_id=2
    ))
    day = service.get_schedule_for_date(SCHEME_START, user_id=1)
    assert [i.shift_id for i in day.user_shifts] == ["night"]


def test_pending_exception_only_with_preview(data_manager, service):
    data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=SCHEME_START, exception_type=ExceptionType.VACATION,
        status=ApprovalStatus.PENDING
    ))
    assert service.get_schedule_for_date(SCHEME_START, user_id=1).is_working
    assert not service.get_schedule_for_date(SCHEME_START, user_id=1, include_pending=True).is_working


def test_repeated_queries_return_equal_results(service):
    first = service.get_schedule_for_date(SCHEME_START, user_id=1)
    second = service.get_schedule_for_date(SCHEME_START, user_id=1)
    assert first == second
    assert service.cache.get_stats()["hits"] >= 1


def test_data_changes_invalidate_cache(data_manager, service):
    service.get_schedule_for_date(SCHEME_START)
    generation = service.cache.generation
    data_manager.add_user_team(3, "B", date(2018, 1, 1))
    assert service.cache.generation > generation


def test_range_of_365_days_succeeds(service):
    start = date(2024, 1, 1)
    result = service.get_schedule_for_range(start, start + timedelta(days=364))
    assert result.success
    assert len(result) == 365
    assert list(result.days) == sorted(result.days)


def test_range_of_366_days_rejected(service):
    start = date(2024, 1, 1)
    with pytest.raises(RangeValidationError):
        service.get_schedule_for_range(start, start + timedelta(days=365))


def test_range_end_before_start_rejected(service):
    with pytest.raises(RangeValidationError):
        service.get_schedule_for_range(date(2024, 1, 2), date(2024, 1, 1))


def test_max_range_follows_settings(data_manager, service):
    data_manager.update_settings(max_range_days=30)
    with pytest.raises(RangeValidationError):
        service.get_schedule_for_range(date(2024, 1, 1), date(2024, 1, 31))


def test_failed_day_does_not_abort_range():
    bad_date = date(2024, 1, 3)
    service = ScheduleService(FlakyRepository(bad_date))
    result = service.get_schedule_for_range(date(2024, 1, 1), date(2024, 1, 5))

    assert not result.success
    assert list(result.failures) == [bad_date]
    assert "storage unavailable" in result.failures[bad_date]
    assert len(result.days) == 4
    assert bad_date not in result.days


def test_range_reports_degraded_days(data_manager, service):
    data_manager.delete_shift("night")
    result = service.get_schedule_for_range(SCHEME_START, SCHEME_START + timedelta(days=2))
    assert result.success
    assert result.degraded_dates == list(result.days)


def test_user_without_team_is_not_available(service):
    day = service.get_schedule_for_date(SCHEME_START, user_id=99)
    assert not day.available
    assert not day.is_working


def test_is_working_day(service):
    assert service.is_working_day(SCHEME_START, "A")
    assert not service.is_working_day(SCHEME_START, "G")
    assert not service.is_working_day(SCHEME_START, "Z")


def test_phase_shifted_teams_share_cycle_length(service):
    pattern_a = [service.is_working_day(SCHEME_START + timedelta(days=d), "A") for d in range(36)]
    pattern_h = [service.is_working_day(SCHEME_START + timedelta(days=d), "H") for d in range(36)]
    assert pattern_a != pattern_h
    assert pattern_a[:18] == pattern_a[18:]
    assert pattern_h[:18] == pattern_h[18:]
    # Team H (offset 16) sees today what team A sees 16 days later
    assert pattern_h[:20] == pattern_a[16:36]


def test_cycle_helpers(service):
    assert service.day_in_cycle(SCHEME_START) == 0
    assert service.day_in_cycle(SCHEME_START + timedelta(days=19)) == 1
    assert service.day_in_cycle(SCHEME_START - timedelta(days=1)) == 17
    assert service.day_in_cycle(SCHEME_START, "H") == 16
    assert service.days_from_scheme_start(SCHEME_START + timedelta(days=100)) == 100
    assert service.days_from_scheme_start(SCHEME_START - timedelta(days=3)) == -3


def test_team_statistics_over_one_cycle(service):
    stats = service.get_schedule_stats(SCHEME_START, SCHEME_START + timedelta(days=17), team_id="A")
    assert stats["workDays"] == 12
    assert stats["restDays"] == 6
    assert stats["shiftsById"] == {"morning": 4, "night": 4, "afternoon": 4}
    assert stats["workMinutes"] == 12 * 8 * 60


def test_user_statistics_count_exceptions(data_manager, service):
    data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=SCHEME_START, exception_type=ExceptionType.SICK_LEAVE,
        status=ApprovalStatus.APPROVED
    ))
    stats = service.get_schedule_stats(SCHEME_START, SCHEME_START + timedelta(days=3), user_id=1)
    assert stats["workDays"] == 3
    assert stats["exceptionsApplied"] == 1


class SlowRepository(FlakyRepository):
    """In-memory repository that blocks from one date on until released"""

    def __init__(self, slow_from: date):
        super().__init__(bad_date=None)
        self.slow_from = slow_from
        self.release = threading.Event()

    def find_assignments(self, target, user_id=None, team_id=None):
        if target >= self.slow_from:
            self.release.wait(5)
        return []


def shift_ids(day):
    return [instance.shift_id for instance in day.user_shifts]


def test_swap_changes_both_users(data_manager, service):
    data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=SCHEME_START, exception_type=ExceptionType.SWAP,
        status=ApprovalStatus.APPROVED, original_shift_id="morning", new_shift_id="night", swap_with_user_id=2
    ))
    assert shift_ids(service.get_schedule_for_date(SCHEME_START, user_id=1)) == ["night"]
    partner = service.get_schedule_for_date(SCHEME_START, user_id=2)
    assert shift_ids(partner) == ["morning"]
    assert partner.user_shifts[0].counterpart_user_id == 1
    assert partner.user_shifts[0].original_shift_id == "night"


def test_swap_without_shifts_exchanges_base_shifts(data_manager, service):
    data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=SCHEME_START, exception_type=ExceptionType.SWAP,
        status=ApprovalStatus.APPROVED, swap_with_user_id=2
    ))
    assert shift_ids(service.get_schedule_for_date(SCHEME_START, user_id=1)) == ["night"]
    assert shift_ids(service.get_schedule_for_date(SCHEME_START, user_id=2)) == ["morning"]
    # The day after is untouched
    next_day = SCHEME_START + timedelta(days=1)
    assert shift_ids(service.get_schedule_for_date(next_day, user_id=2)) == ["night"]


def test_replacement_user_takes_over_the_shift(data_manager, service):
    data_manager.add_user_team(3, "G", date(2018, 1, 1))
    data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=SCHEME_START, exception_type=ExceptionType.REPLACEMENT,
        status=ApprovalStatus.APPROVED, original_shift_id="morning", replacement_user_id=3
    ))
    assert shift_ids(service.get_schedule_for_date(SCHEME_START, user_id=1)) == []
    replacement = service.get_schedule_for_date(SCHEME_START, user_id=3)
    assert shift_ids(replacement) == ["morning"]
    assert replacement.applied_exceptions[0].counterpart_user_id == 1


def test_pending_swap_leaves_partner_unchanged(data_manager, service):
    data_manager.add_exception(ShiftException(
        id=None, user_id=1, target_date=SCHEME_START, exception_type=ExceptionType.SWAP,
        status=ApprovalStatus.PENDING, swap_with_user_id=2
    ))
    assert shift_ids(service.get_schedule_for_date(SCHEME_START, user_id=2)) == ["night"]
    assert shift_ids(service.get_schedule_for_date(SCHEME_START, user_id=2, include_pending=True)) == ["morning"]


def test_range_timeout_keeps_finished_days():
    slow_from = date(2024, 1, 3)
    repository = SlowRepository(slow_from)
    service = ScheduleService(repository, settings=ScheduleSettings(range_workers=1))
    try:
        result = service.get_schedule_for_range(date(2024, 1, 1), date(2024, 1, 5), timeout=0.5)
    finally:
        repository.release.set()

    assert not result.success
    assert list(result.days) == [date(2024, 1, 1), date(2024, 1, 2)]
    assert list(result.failures) == [date(2024, 1, 3), date(2024, 1, 4), date(2024, 1, 5)]
    assert set(result.failures.values()) == {"Timed out"}
