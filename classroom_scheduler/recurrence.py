from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta
from typing import Iterator, NamedTuple

from .errors import ValidationError
from .models import RecurrenceRule, RecurrenceType

MAX_OCCURRENCES = 100
DAYS_PER_WEEK = 7


class Occurrence(NamedTuple):
    start: datetime
    end: datetime


def effective_cap(rule: RecurrenceRule, hard_cap: int = MAX_OCCURRENCES) -> int:
    """Number of occurrences a rule may produce; the hard cap always wins."""
    if rule.max_occurrences is None or rule.max_occurrences <= 0:
        return hard_cap
    return min(rule.max_occurrences, hard_cap)


def expand(
    anchor_start: datetime,
    anchor_end: datetime,
    rule: RecurrenceRule,
    hard_cap: int = MAX_OCCURRENCES,
) -> list[Occurrence]:
    """Expand a recurrence rule anchored at ``[anchor_start, anchor_end)``.

    Every occurrence keeps the anchor's duration. Generation stops before the
    first start that is ``>= rule.until`` or once the occurrence cap is hit.
    WEEKLY rules scan every day of a seven-day block beginning at the anchor
    date, keep the days listed in ``days_of_week`` (all days when the set is
    empty) and then jump ``interval`` weeks ahead. Blocks follow the anchor,
    not calendar weeks: with a Wednesday anchor the Monday of the first block
    falls in the calendar week after the anchor.
    """
    if anchor_start >= anchor_end:
        raise ValidationError("end", "anchor start must be earlier than anchor end")
    if rule.interval is None or int(rule.interval) <= 0:
        raise ValidationError("interval", "interval must be a positive integer")
    try:
        rule_type = RecurrenceType(getattr(rule.type, "value", rule.type))
    except ValueError:
        raise ValidationError("type", f"unknown recurrence type: {rule.type}") from None

    limit = _until_bound(rule.until)
    cap = effective_cap(rule, hard_cap)
    length = anchor_end - anchor_start

    occurrences: list[Occurrence] = []
    for start in _candidate_starts(anchor_start, rule_type, rule):
        if limit is not None and start >= limit:
            break
        occurrences.append(Occurrence(start, start + length))
        if len(occurrences) >= cap:
            break
    return occurrences


def _candidate_starts(anchor: datetime, rule_type: RecurrenceType, rule: RecurrenceRule) -> Iterator[datetime]:
    interval = int(rule.interval)
    if rule_type is RecurrenceType.DAILY:
        step = 0
        while True:
            yield anchor + timedelta(days=step)
            step += interval

    elif rule_type is RecurrenceType.WEEKLY:
        wanted = {int(day) for day in rule.days_of_week}
        block_start = anchor
        while True:
            for offset in range(DAYS_PER_WEEK):
                candidate = block_start + timedelta(days=offset)
                if not wanted or candidate.weekday() in wanted:
                    yield candidate
            block_start += timedelta(days=DAYS_PER_WEEK * interval)

    else:
        months = 0
        while True:
            yield _add_months(anchor, months)
            months += interval


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def _until_bound(until: date | datetime | None) -> datetime | None:
    if until is None:
        return None
    if isinstance(until, datetime):
        return until
    return datetime.combine(until, time.min)
