""" Pending events

Parsing of timer statements (`%schedule`, `%reset`, `%update`, `%cancel`)
and an ordered holder for the resulting pending events. When events fire is
up to the caller; `engine.fire_due_events` applies them.
"""

import re
import heapq
import logging
import itertools
from collections.abc import Iterator, Sequence
from typing import Optional

from scribescript import config, util
from scribescript.core import ParseError, PendingEvent, Cancellation

DURATION_RE = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*([a-zA-Z]*)\s*$")
TIMED_EFFECT_RE = re.compile(r"^\s*[$@#]?([a-zA-Z0-9_]+)\s*(?:\[(.*?)\])?\s*(\+\+|--|[+\-*/]?=)\s*(.*)$", re.DOTALL)
CANCEL_MODE_RE = re.compile(r"^\s*(all|first|last)\s*([0-9]+)?\s*$", re.IGNORECASE)

LONG_UNITS = {
    "sec": "s", "secs": "s", "second": "s", "seconds": "s",
    "min": "m", "mins": "m", "minute": "m", "minutes": "m",
    "hr": "h", "hrs": "h", "hour": "h", "hours": "h",
    "day": "d", "days": "d",
}


def parse_duration(text:str) -> int:
    """ `4h` style durations to milliseconds. A bare number uses the default
    unit. """

    m = DURATION_RE.match(text)
    if not m:
        raise ParseError(f'bad duration "{text}"')
    amount = float(m.group(1))
    unit = m.group(2).lower() or config.Settings.Scheduler.DEFAULT_UNIT
    unit = LONG_UNITS.get(unit, unit)
    units = config.Settings.Scheduler.UNITS
    if unit not in units:
        raise ParseError(f'unknown duration unit "{m.group(2)}"')
    return int(amount * units[unit])


class TimerSpec:
    """ The parts of `%schedule[effect : duration ; options]`. """

    def __init__(self, effect:str, duration:str, recurring:bool=False, unique:bool=False, description:str="") -> None:
        self.effect = effect
        self.duration = duration
        self.recurring = recurring
        self.unique = unique
        self.description = description

    def __repr__(self) -> str:
        return f'TimerSpec({self.effect!r} : {self.duration!r}, recurring={self.recurring}, unique={self.unique})'


def parse_timer(args:str) -> TimerSpec:
    main, *rest = util.split_top_level(args, ";", maxsplit=1)
    parts = util.split_top_level(main, ":")
    if len(parts) < 2:
        raise ParseError(f'timer "{args}" has no duration')
    effect = ":".join(parts[:-1]).strip()
    duration = parts[-1].strip()
    if not effect:
        raise ParseError(f'timer "{args}" has no effect')

    spec = TimerSpec(effect, duration)
    if rest:
        for option in util.split_top_level(rest[0], ","):
            option = option.strip()
            key, _, value = option.partition(":")
            key = key.strip().lower()
            if key in ("recur", "recurring", "repeat"):
                spec.recurring = True
            elif key == "unique":
                spec.unique = True
            elif key in ("desc", "description"):
                spec.description = value.strip()
            elif option:
                raise ParseError(f'unknown timer option "{option}"')
    return spec


def parse_timed_effect(effect:str) -> tuple[str, Optional[str], str, str]:
    """ (target quality id, metadata, op, raw value) of a scheduled effect """
    m = TIMED_EFFECT_RE.match(effect)
    if not m:
        raise ParseError(f'scheduled effect "{effect}" is not an assignment')
    return m.group(1), m.group(2), m.group(3), m.group(4).strip()


def parse_cancel(args:str) -> Cancellation:
    """ `$q`, `$q; all`, `$q; first 2`, `$q; last` """
    target, *rest = util.split_top_level(args, ";", maxsplit=1)
    target = target.strip().lstrip("$#@").strip()
    if not target:
        raise ParseError("cancel needs a target quality")
    mode = "all"
    count = 1
    if rest and rest[0].strip():
        m = CANCEL_MODE_RE.match(rest[0])
        if not m:
            raise ParseError(f'unknown cancel mode "{rest[0].strip()}"')
        mode = m.group(1).lower()
        if m.group(2):
            count = int(m.group(2))
    return Cancellation(target, mode, count)


class EventSchedule:
    """ Pending events ordered by trigger time. """

    def __init__(self, events:Optional[Sequence[PendingEvent]]=None) -> None:
        self.logger = logging.getLogger(util.fullname(self))
        self._heap:list[tuple[float, int, PendingEvent]] = []
        self._seq = itertools.count()
        for event in events or []:
            self.push_event(event)

    def __len__(self) -> int:
        return len(self._heap)

    def __iter__(self) -> Iterator[PendingEvent]:
        return iter([e for _, _, e in sorted(self._heap)])

    def __contains__(self, event:object) -> bool:
        return any(e is event for _, _, e in self._heap)

    def push_event(self, event:PendingEvent) -> bool:
        """ Queues event. A unique event is dropped if an equivalent timer is
        already pending. Returns whether it was queued. """
        if event.unique and any(e.same_timer(event) for _, _, e in self._heap):
            self.logger.debug(f'dropping duplicate unique event {event}')
            return False
        heapq.heappush(self._heap, (event.trigger_time, next(self._seq), event))
        return True

    def events_for(self, target_quality_id:str) -> list[PendingEvent]:
        """ pending events for target, oldest scheduled first """
        matches = [(seq, e) for _, seq, e in self._heap if e.target_quality_id == target_quality_id]
        matches.sort(key=lambda x: x[0])
        return [e for _, e in matches]

    def cancel(self, cancellation:Cancellation) -> list[PendingEvent]:
        """ Removes pending events per cancellation, returns those removed. """
        matches = self.events_for(cancellation.target_quality_id)
        if cancellation.mode == "first":
            doomed = matches[:cancellation.count]
        elif cancellation.mode == "last":
            doomed = matches[-cancellation.count:] if cancellation.count > 0 else []
        else:
            doomed = matches
        if doomed:
            doomed_ids = set(id(e) for e in doomed)
            self._heap = [x for x in self._heap if id(x[2]) not in doomed_ids]
            heapq.heapify(self._heap)
        self.logger.debug(f'{cancellation} removed {len(doomed)} events')
        return doomed

    def next_trigger_time(self) -> Optional[float]:
        if not self._heap:
            return None
        return self._heap[0][0]

    def pop_current_events(self, now:float) -> list[PendingEvent]:
        """ Removes and returns every event due at or before now, in trigger
        order. """
        events = []
        while self._heap and self._heap[0][0] <= now:
            _, _, event = heapq.heappop(self._heap)
            events.append(event)
        return events
