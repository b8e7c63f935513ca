"""What a workflow registers when its module body runs.

Workflow code subscribes handlers through two builders bound as ``on`` and
``every``::

    @on.issue.ready
    async def start(issue):
        ...

    every.day("9am", standup)

Both builders return themselves so calls can be chained; called without a
handler they return a decorator instead.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable

Handler = Callable[..., Any]

EVENT_KEYS = (
    "issue.ready",
    "issue.closed",
    "issue.created",
    "issue.updated",
    "epic.completed",
)

DEFAULT_CRON = "0 9 * * *"
HOURLY_CRON = "0 * * * *"
MINUTELY_CRON = "* * * * *"

WEEKDAYS = {"sun": 0, "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6}

_TIME_PATTERN = re.compile(r"(\d+)(?::(\d{2}))?\s*(am|pm)?", re.IGNORECASE)


def time_to_cron(time: str | None, period: str = "day", day: str | None = None) -> str:
    """Convert ``"9am"``-style times to a 5-field cron expression.

    Unparseable times fall back to 9am daily. For weekly schedules the day
    is matched on its first three letters, defaulting to Monday.
    """
    match = _TIME_PATTERN.search(time or "")
    if not match:
        return DEFAULT_CRON

    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    meridiem = (match.group(3) or "").lower()
    if meridiem == "pm" and hour != 12:
        hour += 12
    elif meridiem == "am" and hour == 12:
        hour = 0

    if period == "week":
        weekday = WEEKDAYS.get((day or "")[:3].lower(), 1)
        return f"{minute} {hour} * * {weekday}"
    return f"{minute} {hour} * * *"


@dataclass
class Schedule:
    cron: str
    handler: Handler


@dataclass
class WorkflowRegistration:
    name: str
    handlers: dict[str, list[Handler]] = field(
        default_factory=lambda: {key: [] for key in EVENT_KEYS}
    )
    schedules: list[Schedule] = field(default_factory=list)

    @property
    def handler_count(self) -> int:
        return sum(len(h) for h in self.handlers.values())

    def is_empty(self) -> bool:
        return self.handler_count == 0 and not self.schedules

    def map_handlers(self, wrap: Callable[[Handler], Handler]) -> None:
        """Replace every handler in place with ``wrap(handler)``."""
        for key, handlers in self.handlers.items():
            self.handlers[key] = [wrap(h) for h in handlers]
        for schedule in self.schedules:
            schedule.handler = wrap(schedule.handler)


def _require_callable(handler: Any, what: str) -> None:
    if not callable(handler):
        raise TypeError(f"{what} handler must be callable, got {type(handler).__name__}")


class IssueTriggers:
    def __init__(self, on: On):
        self._on = on

    def ready(self, handler: Handler | None = None):
        return self._on._subscribe("issue.ready", handler)

    def closed(self, handler: Handler | None = None):
        return self._on._subscribe("issue.closed", handler)

    def created(self, handler: Handler | None = None):
        return self._on._subscribe("issue.created", handler)

    def updated(self, handler: Handler | None = None):
        return self._on._subscribe("issue.updated", handler)


class EpicTriggers:
    def __init__(self, on: On):
        self._on = on

    def completed(self, handler: Handler | None = None):
        return self._on._subscribe("epic.completed", handler)


class On:
    """The ``on`` builder: ``on.issue.*`` and ``on.epic.*`` subscriptions."""

    def __init__(self, registration: WorkflowRegistration):
        self._registration = registration
        self.issue = IssueTriggers(self)
        self.epic = EpicTriggers(self)

    def _subscribe(self, key: str, handler: Handler | None):
        if handler is None:
            return lambda h: self._subscribe(key, h)
        _require_callable(handler, key)
        self._registration.handlers[key].append(handler)
        return self


class Every:
    """The ``every`` builder: cron-style schedules."""

    def __init__(self, registration: WorkflowRegistration):
        self._registration = registration

    def _schedule(self, cron: str, handler: Handler | None):
        if handler is None:
            return lambda h: self._schedule(cron, h)
        _require_callable(handler, f"schedule {cron!r}")
        self._registration.schedules.append(Schedule(cron=cron, handler=handler))
        return self

    def day(self, time: str = "9am", handler: Handler | None = None):
        return self._schedule(time_to_cron(time, "day"), handler)

    def hour(self, handler: Handler | None = None):
        return self._schedule(HOURLY_CRON, handler)

    def minute(self, handler: Handler | None = None):
        return self._schedule(MINUTELY_CRON, handler)

    def week(self, day: str = "monday", time: str = "9am", handler: Handler | None = None):
        return self._schedule(time_to_cron(time, "week", day), handler)
