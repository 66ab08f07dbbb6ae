"""
Cron-style job scheduling on the asyncio event loop.

The job fires once at start-up and then on every minute the cron expression
matches. Each firing is spawned as its own task and never awaited, so a slow
run does not hold back the next tick and runs may overlap.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, FrozenSet, Optional, Set

from logger import get_logger

log = get_logger("scheduler")

# one year of minutes; any valid 5-field expression matches within this window
_MAX_LOOKAHEAD_MINUTES = 366 * 24 * 60

_running: Set[asyncio.Task] = set()


@dataclass(frozen=True)
class CronSpec:
    """Parsed cron expression (minute hour day_of_month month day_of_week)."""

    minutes: FrozenSet[int] = field(default_factory=lambda: frozenset(range(60)))
    hours: FrozenSet[int] = field(default_factory=lambda: frozenset(range(24)))
    days_of_month: FrozenSet[int] = field(default_factory=lambda: frozenset(range(1, 32)))
    months: FrozenSet[int] = field(default_factory=lambda: frozenset(range(1, 13)))
    days_of_week: FrozenSet[int] = field(default_factory=lambda: frozenset(range(7)))


def _parse_cron_field(field_str: str, min_val: int, max_val: int) -> FrozenSet[int]:
    """Parse one cron field: *, N, N-M, */S, N-M/S and comma lists.

    Raises:
        ValueError: If the field is malformed or a value is out of range.
    """
    values: Set[int] = set()

    for part in field_str.split(","):
        part = part.strip()
        if not part:
            raise ValueError(f"Empty cron field in '{field_str}'")

        if "/" in part:
            range_part, step_str = part.split("/", 1)
            step = int(step_str)
            if step <= 0:
                raise ValueError(f"Step must be positive: {step}")

            if range_part == "*":
                start, end = min_val, max_val
            elif "-" in range_part:
                s, e = range_part.split("-", 1)
                start, end = int(s), int(e)
            else:
                start, end = int(range_part), max_val

            values.update(v for v in range(start, end + 1, step) if min_val <= v <= max_val)

        elif part == "*":
            values.update(range(min_val, max_val + 1))

        elif "-" in part:
            s, e = part.split("-", 1)
            start, end = int(s), int(e)
            if start > end:
                raise ValueError(f"Range start > end: {start}-{end}")
            values.update(v for v in range(start, end + 1) if min_val <= v <= max_val)

        else:
            v = int(part)
            if v < min_val or v > max_val:
                raise ValueError(f"Value {v} outside range [{min_val}, {max_val}]")
            values.add(v)

    if not values:
        raise ValueError(f"Cron field '{field_str}' selects nothing")
    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    parts = expression.strip().split()
    if len(parts) != 5:
        raise ValueError(f"Cron expression must have 5 fields, got {len(parts)}: '{expression}'")

    return CronSpec(
        minutes=_parse_cron_field(parts[0], 0, 59),
        hours=_parse_cron_field(parts[1], 0, 23),
        days_of_month=_parse_cron_field(parts[2], 1, 31),
        months=_parse_cron_field(parts[3], 1, 12),
        days_of_week=_parse_cron_field(parts[4], 0, 6),
    )


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    # cron: 0=Sunday; datetime.weekday(): 0=Monday
    cron_dow = (dt.weekday() + 1) % 7
    return (
        dt.minute in spec.minutes
        and dt.hour in spec.hours
        and dt.day in spec.days_of_month
        and dt.month in spec.months
        and cron_dow in spec.days_of_week
    )


def next_fire_time(spec: CronSpec, after: datetime) -> datetime:
    """First whole minute strictly after `after` that matches `spec`."""
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    for _ in range(_MAX_LOOKAHEAD_MINUTES):
        if matches_cron(spec, candidate):
            return candidate
        candidate += timedelta(minutes=1)
    raise ValueError("Cron expression never fires within a year")


def cron_for_frequency(minutes: int) -> str:
    return f"*/{minutes} * * * *"


def _log_run_result(name: str, task: asyncio.Task) -> None:
    _running.discard(task)
    if task.cancelled():
        log.warning(f"[{name}] run cancelled")
        return
    exc = task.exception()
    if exc is not None:
        log.error(f"[{name}] :: Error executing service :: {exc!r}")


def _spawn(name: str, job: Callable[[], Awaitable[object]]) -> asyncio.Task:
    task = asyncio.create_task(job(), name=f"{name}-run")
    _running.add(task)
    task.add_done_callback(lambda t: _log_run_result(name, t))
    return task


async def run_forever(
    name: str,
    cron_expression: str,
    job: Callable[[], Awaitable[object]],
    *,
    clock: Callable[[], datetime] = datetime.now,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    max_ticks: Optional[int] = None,
) -> int:
    """
    Run `job` now and then on every cron tick. `max_ticks` bounds the number
    of scheduled firings (the start-up run is not counted); None = forever.
    Returns the number of scheduled firings.
    """
    spec = parse_cron(cron_expression)
    log.info(f"[{name}] registered with schedule '{cron_expression}'")

    _spawn(name, job)

    ticks = 0
    last_due: Optional[datetime] = None
    while max_ticks is None or ticks < max_ticks:
        now = clock()
        # an early wake-up must not fire the same minute twice
        due = next_fire_time(spec, max(now, last_due) if last_due else now)
        await sleep(max(0.0, (due - now).total_seconds()))
        log.debug(f"[{name}] tick {due.isoformat()}")
        _spawn(name, job)
        last_due = due
        ticks += 1

    return ticks
