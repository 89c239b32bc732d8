"""
Exception Resolver for the Shift Calendar

Overlays a user's exceptions onto the base schedule day computed by the
assembler. Exceptions are applied from the lowest to the highest priority,
so the most important one has the final word; removals of a shift always
beat additions of the same shift. Swaps and replacements also change the
day of the counterpart user, who takes over the requester's shift.
"""

from dataclasses import dataclass
from datetime import date
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .models import (
    AppliedException,
    ApprovalStatus,
    ExceptionEffect,
    RecurrenceRule,
    ScheduleNotAvailable,
    Shift,
    ShiftException,
    ShiftInstance,
    WorkScheduleDay,
)
from .recurrence import occurrences

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExceptionConflict:
    """Two exceptions contending for the same user and date"""
    user_id: int
    target_date: date
    winner_id: Optional[int]
    loser_id: Optional[int]
    reason: str


class ExceptionResolver:
    """Applies approved (and optionally pending) exceptions to a base day"""

    def __init__(self, include_pending: bool = False):
        self.include_pending = include_pending

    def resolve(self, base_day, user_id: int, exceptions: Iterable[ShiftException],
                shifts: Dict[str, Shift], include_pending: Optional[bool] = None,
                counterpart_shifts: Optional[Dict[int, Sequence[ShiftInstance]]] = None):
        """
        Resolve the user's final shifts on the base day's date.

        Args:
            base_day: Day computed by the assembler for this user
            user_id: User whose exceptions are applied
            exceptions: Candidate exceptions; ones for other users or dates are ignored
            shifts: Shift catalog by id
            include_pending: Also apply PENDING exceptions (defaults to the resolver setting)
            counterpart_shifts: Base shifts of swap partners by user id

        Returns:
            A new WorkScheduleDay; the base day is never modified. Days that
            are not available are returned unchanged.
        """
        if isinstance(base_day, ScheduleNotAvailable):
            return base_day

        pending = self.include_pending if include_pending is None else include_pending
        applicable = self.applicable_exceptions(exceptions, user_id, base_day.date, pending)
        if not applicable:
            return base_day

        counterpart_shifts = counterpart_shifts or {}
        user_shifts: List[ShiftInstance] = list(base_day.user_shifts)
        applied: List[AppliedException] = list(base_day.applied_exceptions)
        issues: List[str] = list(base_day.issues)
        removed: Set[str] = set()
        cancelled_everything = False

        additions = [exc for exc in applicable if exc.effect is ExceptionEffect.ADD]
        for exception in applicable:
            effect = exception.effect
            if effect is ExceptionEffect.ADD:
                continue

            if effect is ExceptionEffect.REMOVE:
                taken = self._take(user_shifts, exception.original_shift_id)
                removed.update(instance.shift_id for instance in taken)
                if exception.original_shift_id is None:
                    cancelled_everything = True
                else:
                    removed.add(exception.original_shift_id)
                applied.append(AppliedException(
                    exception_id=exception.id,
                    exception_type=exception.exception_type,
                    effect=effect,
                    original_shift_ids=tuple(instance.shift_id for instance in taken)
                ))

            elif effect is ExceptionEffect.SUBSTITUTE and exception.user_id != user_id:
                # This user is the partner of a swap or the replacement
                taken = self._take(user_shifts, exception.new_shift_id) \
                    if exception.swap_with_user_id == user_id else []
                new_instances = self._counterpart_side(exception, user_id, base_day, shifts,
                                                       counterpart_shifts, taken, issues)
                user_shifts.extend(new_instances)
                applied.append(AppliedException(
                    exception_id=exception.id,
                    exception_type=exception.exception_type,
                    effect=effect,
                    original_shift_ids=tuple(instance.shift_id for instance in taken),
                    new_shift_id=new_instances[0].shift_id if new_instances else None,
                    counterpart_user_id=exception.user_id
                ))

            elif effect is ExceptionEffect.SUBSTITUTE:
                taken = self._take(user_shifts, exception.original_shift_id)
                new_instances = self._substitutes(exception, user_id, base_day, shifts,
                                                  counterpart_shifts, taken, issues)
                user_shifts.extend(new_instances)
                applied.append(AppliedException(
                    exception_id=exception.id,
                    exception_type=exception.exception_type,
                    effect=effect,
                    original_shift_ids=tuple(instance.shift_id for instance in taken),
                    new_shift_id=new_instances[0].shift_id if new_instances else None,
                    counterpart_user_id=exception.counterpart_user_id
                ))

            elif effect is ExceptionEffect.ADJUST_TIME:
                user_shifts = [
                    self._adjust(instance, exception)
                    if exception.original_shift_id in (None, instance.shift_id) else instance
                    for instance in user_shifts
                ]
                applied.append(AppliedException(
                    exception_id=exception.id,
                    exception_type=exception.exception_type,
                    effect=effect,
                    original_shift_ids=tuple(
                        instance.shift_id for instance in user_shifts
                        if instance.exception_id == exception.id
                    )
                ))

        # Removals win over additions of the same slot, whatever their priority
        for exception in additions:
            if cancelled_everything or exception.new_shift_id in removed:
                logger.debug(f"Addition {exception.id} on {base_day.date} suppressed by a cancellation")
                continue
            if exception.new_shift_id is None:
                issues.append(f"Exception {exception.id} adds no shift; ignored")
                continue
            shift = self._shift(exception.new_shift_id, shifts, issues)
            user_shifts.append(ShiftInstance(
                shift=shift,
                teams=(base_day.user_team_id,) if base_day.user_team_id else (),
                user_ids=(user_id,),
                start_time=exception.new_start_time,
                end_time=exception.new_end_time,
                exception_id=exception.id
            ))
            applied.append(AppliedException(
                exception_id=exception.id,
                exception_type=exception.exception_type,
                effect=ExceptionEffect.ADD,
                new_shift_id=shift.id
            ))

        for issue in issues[len(base_day.issues):]:
            logger.warning(f"{base_day.date}: {issue}")

        return base_day.with_changes(
            user_shifts=tuple(user_shifts),
            applied_exceptions=tuple(applied),
            issues=tuple(issues)
        )

    def applicable_exceptions(self, exceptions: Iterable[ShiftException], user_id: int,
                              target: date, include_pending: bool = False) -> List[ShiftException]:
        """
        Exceptions that take part in resolving target for the user, in
        application order (ascending priority, then oldest first). Besides
        the user's own exceptions these are the swaps and replacements in
        which the user is the counterpart.
        """
        statuses = {ApprovalStatus.APPROVED}
        if include_pending:
            statuses.add(ApprovalStatus.PENDING)

        selected = []
        for exception in exceptions:
            if exception.status not in statuses or not involves_user(exception, user_id):
                continue
            if exception.recurrence_rule_id is None:
                if exception.target_date != target:
                    continue
            elif exception.target_date > target:
                continue
            selected.append(exception)

        selected.sort(key=lambda exc: (exc.effective_priority, exc.created_at, exc.id or 0))
        return selected

    def _take(self, user_shifts: List[ShiftInstance], shift_id: Optional[str]) -> List[ShiftInstance]:
        """Remove and return the shifts matching shift_id, or substituted for it (all shifts when None)"""
        taken = [
            instance for instance in user_shifts
            if shift_id is None or shift_id in (instance.shift_id, instance.original_shift_id)
        ]
        for instance in taken:
            user_shifts.remove(instance)
        return taken

    def _substitutes(self, exception: ShiftException, user_id: int, base_day: WorkScheduleDay,
                     shifts: Dict[str, Shift], counterpart_shifts: Dict[int, Sequence[ShiftInstance]],
                     taken: List[ShiftInstance], issues: List[str]) -> List[ShiftInstance]:
        teams = (base_day.user_team_id,) if base_day.user_team_id else ()
        original = taken[0].shift_id if taken else exception.original_shift_id

        if exception.new_shift_id is not None:
            return [ShiftInstance(
                shift=self._shift(exception.new_shift_id, shifts, issues),
                teams=teams,
                user_ids=(user_id,),
                start_time=exception.new_start_time,
                end_time=exception.new_end_time,
                original_shift_id=original,
                exception_id=exception.id,
                counterpart_user_id=exception.counterpart_user_id
            )]

        # A swap without an explicit shift takes over the partner's base shifts
        partner = exception.swap_with_user_id
        if partner is not None and partner in counterpart_shifts:
            return [
                ShiftInstance(
                    shift=instance.shift,
                    teams=teams,
                    user_ids=(user_id,),
                    original_shift_id=original,
                    exception_id=exception.id,
                    counterpart_user_id=partner
                )
                for instance in counterpart_shifts[partner]
            ]

        if exception.counterpart_user_id is None:
            issues.append(f"Exception {exception.id} substitutes no shift; the base shift is removed")
        return []

    def _counterpart_side(self, exception: ShiftException, user_id: int, base_day: WorkScheduleDay,
                          shifts: Dict[str, Shift], counterpart_shifts: Dict[int, Sequence[ShiftInstance]],
                          taken: List[ShiftInstance], issues: List[str]) -> List[ShiftInstance]:
        """Shifts the partner or replacement user takes over from the requester"""
        requester = exception.user_id
        if exception.original_shift_id is not None:
            given = [self._shift(exception.original_shift_id, shifts, issues)]
        elif requester in counterpart_shifts:
            given = [instance.shift for instance in counterpart_shifts[requester]]
        else:
            issues.append(f"Exception {exception.id}: no base shift of user {requester} to take over")
            given = []

        teams = (base_day.user_team_id,) if base_day.user_team_id else ()
        original = taken[0].shift_id if taken else None
        return [
            ShiftInstance(
                shift=shift,
                teams=teams,
                user_ids=(user_id,),
                original_shift_id=original,
                exception_id=exception.id,
                counterpart_user_id=requester
            )
            for shift in given
        ]

    def _adjust(self, instance: ShiftInstance, exception: ShiftException) -> ShiftInstance:
        return ShiftInstance(
            shift=instance.shift,
            teams=instance.teams,
            user_ids=instance.user_ids,
            start_time=exception.new_start_time or instance.start_time,
            end_time=exception.new_end_time or instance.end_time,
            original_shift_id=instance.original_shift_id,
            exception_id=exception.id,
            counterpart_user_id=instance.counterpart_user_id
        )

    def _shift(self, shift_id: str, shifts: Dict[str, Shift], issues: List[str]) -> Shift:
        shift = shifts.get(shift_id)
        if shift is None:
            issues.append(f"Shift '{shift_id}' is not in the catalog; using a placeholder")
            return Shift.unknown(shift_id)
        return shift


def involves_user(exception: ShiftException, user_id: int) -> bool:
    """Whether the exception changes the user's day, as requester or as counterpart"""
    if exception.user_id == user_id:
        return True
    return exception.effect is ExceptionEffect.SUBSTITUTE and exception.counterpart_user_id == user_id


def detect_conflicts(exceptions: Sequence[ShiftException],
                     rules: Optional[Dict[int, RecurrenceRule]] = None,
                     window: Optional[Tuple[date, date]] = None) -> List[ExceptionConflict]:
    """
    Report exceptions that contend for the same user, date and shift.

    Pairs are compared within each (user, date) group; the exception that
    resolution would apply last is reported as the winner. An addition
    next to a removal of the same slot is always a conflict, won by the
    removal.

    Without a window every exception is grouped by its target date. With a
    window (start, end) and the recurrence rules by id, recurring
    exceptions are expanded to each date of the window on which their rule
    fires, and one-off exceptions outside the window are skipped.
    """
    groups: Dict[Tuple[int, date], List[ShiftException]] = {}
    for exception in exceptions:
        if exception.status is ApprovalStatus.REJECTED:
            continue
        for target in _conflict_dates(exception, rules, window):
            groups.setdefault((exception.user_id, target), []).append(exception)

    conflicts = []
    for (user_id, target), group in groups.items():
        ordered = sorted(group, key=lambda exc: (exc.effective_priority, exc.created_at, exc.id or 0))
        for i, first in enumerate(ordered):
            for second in ordered[i + 1:]:
                reason = _conflict_reason(first, second)
                if reason is None:
                    continue
                winner, loser = second, first
                if first.effect is ExceptionEffect.REMOVE and second.effect is ExceptionEffect.ADD:
                    winner, loser = first, second
                conflicts.append(ExceptionConflict(
                    user_id=user_id,
                    target_date=target,
                    winner_id=winner.id,
                    loser_id=loser.id,
                    reason=reason
                ))
    return conflicts


def _conflict_dates(exception: ShiftException, rules: Optional[Dict[int, RecurrenceRule]],
                    window: Optional[Tuple[date, date]]) -> List[date]:
    if window is None:
        return [exception.target_date]
    start, end = window
    if exception.recurrence_rule_id is None:
        return [exception.target_date] if start <= exception.target_date <= end else []

    rule = (rules or {}).get(exception.recurrence_rule_id)
    if rule is None:
        logger.warning(f"Exception {exception.id} references missing rule {exception.recurrence_rule_id}")
        return [exception.target_date] if start <= exception.target_date <= end else []
    return occurrences(rule, max(start, exception.target_date), end)


def _conflict_reason(first: ShiftException, second: ShiftException) -> Optional[str]:
    effects = {first.effect, second.effect}
    same_slot = (
        first.original_shift_id is None or second.original_shift_id is None
        or first.original_shift_id == second.original_shift_id
    )

    if effects == {ExceptionEffect.REMOVE, ExceptionEffect.ADD}:
        removal = first if first.effect is ExceptionEffect.REMOVE else second
        addition = second if removal is first else first
        if removal.original_shift_id in (None, addition.new_shift_id):
            return "addition cancelled by a removal"
        return None
    if ExceptionEffect.ADD in effects:
        return None
    if first.effect is second.effect and same_slot:
        return f"two {first.effect.value} exceptions for the same shift"
    if same_slot:
        return f"{first.effect.value} and {second.effect.value} on the same shift"
    return None
