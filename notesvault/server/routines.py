"""Recurring routines: due-date recurrence and streak bookkeeping.

The schedule functions are pure and take an explicit ``now``/``today`` so the
same inputs always produce the same dates. ``RoutineManager`` owns the loaded
list and writes ``routines.json`` as a whole document after every change.

Weekdays follow the stored format of the vault files: 0 is Sunday, 6 is
Saturday.
"""

from __future__ import annotations

import calendar
import dataclasses
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from .adapters.store import ROUTINES_FILE, JsonStore
from .models import MONTH_ANCHORS, ROUTINE_TYPES, Routine, new_id

logger = logging.getLogger(__name__)

# Fixed month length used by the streak check; not calendar accurate.
STREAK_MONTH_DAYS = 30

ROUTINE_FILTERS = ("all", "overdue", "today", "tomorrow", "week", "month")

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

_SCHEDULE_FIELDS = {"type", "frequency", "day_of_week", "day_of_month"}
_UPDATABLE_FIELDS = _SCHEDULE_FIELDS | {"title", "content"}


def weekday_from_sunday(moment: date) -> int:
    """Weekday index with Sunday as 0."""
    return (moment.weekday() + 1) % 7


def _shift_month(moment: datetime, months: int, day_of_month: Optional[str]) -> datetime:
    index = moment.month - 1 + months
    year = moment.year + index // 12
    month = index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    if day_of_month == "first":
        day = 1
    elif day_of_month == "last":
        day = last_day
    else:
        day = min(moment.day, last_day)
    return moment.replace(year=year, month=month, day=day)


def validate_schedule(
    routine_type: str,
    frequency: int,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[str] = None,
) -> None:
    if routine_type not in ROUTINE_TYPES:
        raise ValueError(f"Routine type must be one of: {', '.join(ROUTINE_TYPES)}")
    if not isinstance(frequency, int) or isinstance(frequency, bool) or frequency < 1:
        raise ValueError("Frequency must be a positive integer")
    if routine_type == "weekly":
        if day_of_week is None or not 0 <= int(day_of_week) <= 6:
            raise ValueError("Weekly routines need a dayOfWeek between 0 and 6")
    if routine_type == "monthly" and day_of_month not in MONTH_ANCHORS:
        raise ValueError("Monthly routines need dayOfMonth 'first' or 'last'")


def initial_next_due(
    routine_type: str,
    frequency: int,
    now: datetime,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[str] = None,
) -> datetime:
    """First due date for a routine created at ``now``."""
    if routine_type == "daily":
        return now + timedelta(days=frequency)
    if routine_type == "weekly":
        days_until = (int(day_of_week) - weekday_from_sunday(now) + 7) % 7 or 7
        return now + timedelta(days=days_until + (frequency - 1) * 7)
    if routine_type == "monthly":
        return _shift_month(now, frequency, day_of_month)
    raise ValueError(f"Unknown routine type: {routine_type}")


def next_due_after_completion(routine: Routine, now: datetime) -> datetime:
    """Advance from the stored due date, not from the completion time."""
    anchor = routine.next_due or now
    if routine.type == "daily":
        return anchor + timedelta(days=routine.frequency)
    if routine.type == "weekly":
        return anchor + timedelta(days=routine.frequency * 7)
    if routine.type == "monthly":
        return _shift_month(anchor, routine.frequency, routine.day_of_month)
    raise ValueError(f"Unknown routine type: {routine.type}")


def complete(routine: Routine, now: datetime) -> Routine:
    return dataclasses.replace(
        routine,
        streak=routine.streak + 1,
        last_completed=now,
        next_due=next_due_after_completion(routine, now),
    )


def days_since_completed(routine: Routine, today: date) -> Optional[int]:
    if routine.last_completed is None:
        return None
    if isinstance(today, datetime):
        today = today.date()
    return (today - routine.last_completed.date()).days


def streak_allowance(routine: Routine) -> int:
    if routine.type == "daily":
        return routine.frequency
    if routine.type == "weekly":
        return routine.frequency * 7
    if routine.type == "monthly":
        return routine.frequency * STREAK_MONTH_DAYS
    raise ValueError(f"Unknown routine type: {routine.type}")


def streak_expired(routine: Routine, today: date) -> bool:
    elapsed = days_since_completed(routine, today)
    if elapsed is None:
        return False
    return elapsed > streak_allowance(routine)


def reset_expired_streaks(routines: Iterable[Routine], today: date) -> Tuple[List[Routine], bool]:
    """Zero the streak of every routine whose completion gap is too long.

    Returns the new list and whether anything actually changed; routines that
    are untouched are returned as the same objects.
    """
    changed = False
    result: List[Routine] = []
    for routine in routines:
        if routine.streak != 0 and streak_expired(routine, today):
            result.append(dataclasses.replace(routine, streak=0))
            changed = True
        else:
            result.append(routine)
    return result, changed


def is_completed_today(routine: Routine, now: datetime) -> bool:
    if routine.last_completed is None:
        return False
    return routine.last_completed.date() == now.date()


def filter_routines(routines: Iterable[Routine], selected: str, now: datetime) -> List[Routine]:
    if selected not in ROUTINE_FILTERS:
        raise ValueError(f"Filter must be one of: {', '.join(ROUTINE_FILTERS)}")
    items = list(routines)
    if selected == "all":
        return items
    today = now.date()
    week_start = today - timedelta(days=weekday_from_sunday(today))
    week_end = week_start + timedelta(days=7)

    def keep(routine: Routine) -> bool:
        if routine.next_due is None:
            return False
        due = routine.next_due.date()
        if selected == "overdue":
            return routine.next_due < now and due != today
        if selected == "today":
            return due == today
        if selected == "tomorrow":
            return due == today + timedelta(days=1)
        if selected == "week":
            return week_start <= due < week_end
        return due.year == today.year and due.month == today.month

    return [routine for routine in items if keep(routine)]


def describe_schedule(routine: Routine) -> str:
    every = routine.frequency
    if routine.type == "daily":
        return "Every day" if every == 1 else f"Every {every} days"
    if routine.type == "weekly":
        day_name = DAY_NAMES[routine.day_of_week] if routine.day_of_week is not None else ""
        return f"Every {day_name}" if every == 1 else f"Every {every} weeks on {day_name}"
    anchor = "First" if routine.day_of_month == "first" else "Last"
    return f"{anchor} day of every month" if every == 1 else f"{anchor} day of every {every} months"


class RoutineManager:
    def __init__(self, store: JsonStore, clock: Callable[[], datetime] = datetime.now) -> None:
        self.store = store
        self.clock = clock
        self.routines: List[Routine] = []

    def load(self) -> List[Routine]:
        raw = self.store.read_json(ROUTINES_FILE, [])
        if not isinstance(raw, list):
            logger.warning("routines.json is not a list; ignoring its content")
            raw = []
        self.routines = [Routine.from_dict(item) for item in raw if isinstance(item, dict)]
        return self.routines

    def get(self, routine_id: str) -> Optional[Routine]:
        return next((r for r in self.routines if r.id == routine_id), None)

    def _commit(self, routines: List[Routine]) -> None:
        self.store.write_or_raise(ROUTINES_FILE, [r.to_dict() for r in routines])
        self.routines = routines

    def add(
        self,
        title: str,
        routine_type: str,
        frequency: int = 1,
        day_of_week: Optional[int] = None,
        day_of_month: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Routine:
        if not (title or "").strip():
            raise ValueError("Routine title must not be empty")
        validate_schedule(routine_type, frequency, day_of_week, day_of_month)
        now = self.clock()
        routine = Routine(
            id=new_id(),
            title=title,
            type=routine_type,
            frequency=frequency,
            day_of_week=day_of_week if routine_type == "weekly" else None,
            day_of_month=day_of_month if routine_type == "monthly" else None,
            content=content or None,
            streak=0,
            next_due=initial_next_due(routine_type, frequency, now, day_of_week, day_of_month),
        )
        self._commit([*self.routines, routine])
        logger.info("Added routine %s (%s) due %s", routine.id, routine.title, routine.next_due)
        return routine

    def update(self, routine_id: str, **updates) -> Optional[Routine]:
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown routine fields: {', '.join(sorted(unknown))}")
        if "title" in updates and not (updates["title"] or "").strip():
            raise ValueError("Routine title must not be empty")
        current = self.get(routine_id)
        if current is None:
            return None
        updated = dataclasses.replace(current, **updates)
        if _SCHEDULE_FIELDS & set(updates):
            validate_schedule(updated.type, updated.frequency, updated.day_of_week, updated.day_of_month)
            updated = dataclasses.replace(
                updated,
                day_of_week=updated.day_of_week if updated.type == "weekly" else None,
                day_of_month=updated.day_of_month if updated.type == "monthly" else None,
            )
            updated.next_due = initial_next_due(
                updated.type, updated.frequency, self.clock(), updated.day_of_week, updated.day_of_month
            )
        self._commit([updated if r.id == routine_id else r for r in self.routines])
        return updated

    def update_content(self, routine_id: str, content: str) -> Optional[Routine]:
        return self.update(routine_id, content=content)

    def complete(self, routine_id: str) -> Optional[Routine]:
        current = self.get(routine_id)
        if current is None:
            return None
        done = complete(current, self.clock())
        self._commit([done if r.id == routine_id else r for r in self.routines])
        logger.info("Completed routine %s; streak=%s next due %s", done.id, done.streak, done.next_due)
        return done

    def delete(self, routine_id: str) -> bool:
        remaining = [r for r in self.routines if r.id != routine_id]
        if len(remaining) == len(self.routines):
            return False
        self._commit(remaining)
        return True

    def check_streaks(self, today: Optional[date] = None) -> bool:
        """Run the periodic streak check; writes only when a streak was reset."""
        today = today or self.clock().date()
        updated, changed = reset_expired_streaks(self.routines, today)
        if not changed:
            return False
        reset_count = sum(1 for before, after in zip(self.routines, updated) if before is not after)
        self._commit(updated)
        logger.info("Reset %d expired streak(s)", reset_count)
        return True

    def filtered(self, selected: str) -> List[Routine]:
        return filter_routines(self.routines, selected, self.clock())
