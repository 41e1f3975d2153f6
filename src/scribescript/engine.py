""" Engine entry points

Module functions evaluate one field against a quality state. `Engine` holds
the state for one player action so that the challenge, the resulting text
and the effects all share a single Resolution Roll.

Nothing here raises for content errors: problems are returned as warnings.
"""

import re
import time
import logging
from collections.abc import Mapping, MutableMapping, Sequence
from typing import Any, Optional, Union

import numpy as np

from scribescript import util, challenge
from scribescript.core import (
    Value, Quality, QualityState, QualityDefRegistry, PendingEvent, Cancellation,
    StateMutation, EffectResult, ChallengeResult, ScribeError, ScheduledTargetMissing,
    to_number, TypeMismatch,
)
from scribescript.evaluator import EvaluationContext, Evaluator, ResolutionRoll
from scribescript.mutation import MutationEngine
from scribescript.scheduler import EventSchedule

logger = logging.getLogger(__name__)

BONUS_RE = re.compile(r"^\s*\$?([a-zA-Z0-9_]+)\s*([+\-])\s*(.+?)\s*$")

# content keys that are identifiers, not text
RAW_KEYS = frozenset(("id", "deck", "ordering", "worldId", "ownerId", "_id"))

Roll = Union[ResolutionRoll, int, None]


def now_ms() -> float:
    return time.time() * 1000.


def _context(
        state:QualityState,
        defs:QualityDefRegistry,
        self_ctx:Optional[Quality]=None,
        recursion_depth:int=0,
        roll:Roll=None,
        rng:Optional[np.random.Generator]=None,
        world:Optional[QualityState]=None,
        aliases:Optional[MutableMapping[str, Value]]=None,
        warnings:Optional[list[str]]=None,
        now:Optional[float]=None,
        evaluator:Optional[Evaluator]=None,
) -> EvaluationContext:
    return EvaluationContext(
        state, defs, self_ctx,
        world=world,
        aliases=aliases,
        roll=roll,
        rng=rng,
        depth=recursion_depth,
        warnings=warnings,
        now=now if now is not None else now_ms(),
        evaluator=evaluator,
    )


def evaluate_text(
        template:str,
        state:QualityState,
        defs:QualityDefRegistry,
        self_ctx:Optional[Quality]=None,
        recursion_depth:int=0,
        **kwargs:Any,
) -> str:
    """ Renders a Prose field. """
    ctx = _context(state, defs, self_ctx, recursion_depth, **kwargs)
    try:
        return ctx.evaluator.render_text(template, ctx)
    except ScribeError as e:
        ctx.warn(f'rendering "{util.elipsis(template, 60)}" failed: {e}')
        return template


def evaluate_condition(
        expr:str,
        state:QualityState,
        defs:QualityDefRegistry,
        self_ctx:Optional[Quality]=None,
        recursion_depth:int=0,
        **kwargs:Any,
) -> bool:
    """ Evaluates a Logic condition. Empty conditions hold. """
    ctx = _context(state, defs, self_ctx, recursion_depth, **kwargs)
    return ctx.evaluator.condition(expr, ctx)


def evaluate_challenge(
        expr:str,
        state:QualityState,
        defs:QualityDefRegistry,
        roll:Roll=None,
        **kwargs:Any,
) -> ChallengeResult:
    """ Computes a challenge's chance and tests it against roll. """
    ctx = _context(state, defs, roll=roll, **kwargs)
    chance = ctx.evaluator.challenge_chance(expr, ctx)
    r = ctx.roll.value
    return ChallengeResult(challenge.resolve(chance, r), chance, r)


def apply_effect(
        expr:str,
        state:QualityState,
        defs:QualityDefRegistry,
        schedule:Optional[EventSchedule]=None,
        **kwargs:Any,
) -> EffectResult:
    """ Applies an effect to state in place, returning what changed. """
    ctx = _context(state, defs, **kwargs)
    return MutationEngine(ctx, schedule).apply(expr)


def fire_event(
        event:PendingEvent,
        state:QualityState,
        defs:QualityDefRegistry,
        now:Optional[float]=None,
        **kwargs:Any,
) -> EffectResult:
    """ Applies one pending event's effect. Raises ScheduledTargetMissing if
    its quality no longer exists. """
    if event.target_quality_id not in state and defs.lookup(event.target_quality_id) is None:
        raise ScheduledTargetMissing(f'{event} targets missing quality {event.target_quality_id}')
    logger.debug(f'firing {event}')
    return apply_effect(event.effect, state, defs, now=now, **kwargs)


def fire_due_events(
        schedule:EventSchedule,
        state:QualityState,
        defs:QualityDefRegistry,
        now:Optional[float]=None,
        **kwargs:Any,
) -> EffectResult:
    """ Fires every event due by now, re-queueing recurring ones. """

    if now is None:
        now = now_ms()
    result = EffectResult()
    # effects fired here may schedule further timers
    kwargs.setdefault("schedule", schedule)
    result.warnings = kwargs.setdefault("warnings", [])
    while True:
        due = schedule.pop_current_events(now)
        if not due:
            break
        for event in due:
            try:
                fired = fire_event(event, state, defs, now=event.trigger_time, **kwargs)
            except ScheduledTargetMissing as e:
                logger.warning(f'skipping event: {e}')
                result.warnings.append(str(e))
                continue
            result.mutations.extend(fired.mutations)
            if event.recurring and event.interval_ms and event.interval_ms > 0:
                event.trigger_time += event.interval_ms
                schedule.push_event(event)
    return result


class Option:
    """ One choice a player can make on a storylet. """

    def __init__(
            self,
            option_id:str,
            name:str="",
            challenge:str="",
            visible_if:str="",
            unlock_if:str="",
            pass_long:str="",
            pass_quality_change:str="",
            pass_redirect:Optional[str]=None,
            pass_move_to:Optional[str]=None,
            fail_long:str="",
            fail_quality_change:str="",
            fail_redirect:Optional[str]=None,
            fail_move_to:Optional[str]=None,
    ) -> None:
        self.id = option_id
        self.name = name
        self.challenge = challenge
        self.visible_if = visible_if
        self.unlock_if = unlock_if
        self.pass_long = pass_long
        self.pass_quality_change = pass_quality_change
        self.pass_redirect = pass_redirect
        self.pass_move_to = pass_move_to
        self.fail_long = fail_long
        self.fail_quality_change = fail_quality_change
        self.fail_redirect = fail_redirect
        self.fail_move_to = fail_move_to

    @staticmethod
    def from_dict(data:Mapping[str, Any]) -> "Option":
        fields = (
            "name", "challenge", "visible_if", "unlock_if",
            "pass_long", "pass_quality_change", "pass_redirect", "pass_move_to",
            "fail_long", "fail_quality_change", "fail_redirect", "fail_move_to",
        )
        return Option(data["id"], **{k: data[k] for k in fields if data.get(k) is not None})

    def __repr__(self) -> str:
        return f'Option({self.id!r})'


class Resolution:
    """ What happened when an option was chosen. """

    def __init__(
            self,
            option_id:str,
            success:bool,
            chance:Optional[int],
            roll:Optional[int],
            text:str,
            effects:EffectResult,
            redirect:Optional[str]=None,
            move_to:Optional[str]=None,
    ) -> None:
        self.option_id = option_id
        self.success = success
        self.chance = chance
        self.roll = roll
        self.text = text
        self.redirect = redirect
        self.move_to = move_to
        self.mutations:list[StateMutation] = effects.mutations
        self.scheduled:list[PendingEvent] = effects.scheduled
        self.cancellations:list[Cancellation] = effects.cancellations
        self.cancelled:list[PendingEvent] = effects.cancelled
        self.warnings:list[str] = effects.warnings

    def __repr__(self) -> str:
        return f'Resolution({self.option_id!r}, success={self.success}, chance={self.chance}, roll={self.roll}, mutations={len(self.mutations)})'


class Engine:
    """ Evaluation for one player action.

    Every field evaluated through one Engine shares the same Resolution Roll
    and warning list. Aliases are scoped to a single field.
    """

    def __init__(
            self,
            state:QualityState,
            defs:QualityDefRegistry,
            world:Optional[QualityState]=None,
            equipment:Optional[Mapping[str, Optional[str]]]=None,
            rng:Optional[np.random.Generator]=None,
            roll:Optional[int]=None,
            schedule:Optional[EventSchedule]=None,
            now:Optional[float]=None,
            evaluator:Optional[Evaluator]=None,
    ) -> None:
        self.logger = logging.getLogger(util.fullname(self))
        self.state = state
        self.defs = defs
        self.world:QualityState = world if world is not None else {}
        self.equipment:dict[str, Optional[str]] = dict(equipment) if equipment else {}
        self.rng = rng if rng is not None else np.random.default_rng()
        self.roll = ResolutionRoll(self.rng, roll)
        self.schedule = schedule
        self.now = now if now is not None else now_ms()
        self.evaluator = evaluator if evaluator is not None else Evaluator()
        self.warnings:list[str] = []

    def context(self, self_ctx:Optional[Quality]=None) -> EvaluationContext:
        """ a fresh field scope: new aliases, shared roll and warnings """
        return EvaluationContext(
            self.state, self.defs, self_ctx,
            world=self.world,
            roll=self.roll,
            rng=self.rng,
            warnings=self.warnings,
            now=self.now,
            evaluator=self.evaluator,
        )

    def render_text(self, text:Optional[str], self_ctx:Optional[Quality]=None) -> str:
        if not text:
            return ""
        ctx = self.context(self_ctx)
        try:
            return self.evaluator.render_text(text, ctx)
        except ScribeError as e:
            ctx.warn(f'rendering "{util.elipsis(text, 60)}" failed: {e}')
            return text

    def condition(self, expr:Optional[str], self_ctx:Optional[Quality]=None) -> bool:
        if not expr or not expr.strip():
            return True
        return self.evaluator.condition(expr, self.context(self_ctx))

    def chance(self, expr:str) -> int:
        return self.evaluator.challenge_chance(expr, self.context())

    def is_visible(self, option:Option) -> bool:
        return self.condition(option.visible_if)

    def is_unlocked(self, option:Option) -> bool:
        return self.condition(option.unlock_if)

    def apply_effect(self, expr:Optional[str]) -> EffectResult:
        if not expr or not expr.strip():
            result = EffectResult()
            result.warnings = self.warnings
            return result
        return MutationEngine(self.context(), self.schedule).apply(expr)

    def resolve_option(self, option:Option) -> Resolution:
        """ Challenge first, then the outcome text, then the outcome effects,
        all against one roll. """

        chance:Optional[int] = None
        roll:Optional[int] = None
        success = True
        if option.challenge and option.challenge.strip():
            chance = self.chance(option.challenge)
            roll = self.roll.value
            success = challenge.resolve(chance, roll)
            self.logger.debug(f'{option} challenge {chance}% rolled {roll}: {"pass" if success else "fail"}')

        if success:
            text = self.render_text(option.pass_long)
            effects = self.apply_effect(option.pass_quality_change)
            redirect, move_to = option.pass_redirect, option.pass_move_to
        else:
            text = self.render_text(option.fail_long)
            effects = self.apply_effect(option.fail_quality_change)
            redirect, move_to = option.fail_redirect, option.fail_move_to

        return Resolution(option.id, success, chance, roll, text, effects, redirect, move_to)

    def effective_level(self, quality_id:str) -> int:
        """ level including bonuses of equipped items (`$strength + 2`) """
        quality = self.state.get(quality_id, self.world.get(quality_id))
        total = quality.level if quality is not None else 0
        for slot, item_id in self.equipment.items():
            if not item_id:
                continue
            definition = self.defs.lookup(item_id)
            if definition is None or not definition.bonus:
                continue
            bonus_text = self.render_text(definition.bonus)
            for bonus in util.split_top_level(bonus_text, ","):
                m = BONUS_RE.match(bonus)
                if not m or m.group(1) != quality_id:
                    continue
                try:
                    amount = to_number(m.group(3))
                except TypeMismatch:
                    self.warnings.append(f'bonus "{bonus.strip()}" of {item_id} in {slot} is not a number')
                    continue
                total += int(amount) if m.group(2) == "+" else -int(amount)
        return total

    def render(self, content:Any) -> Any:
        """ Deep renders the strings of nested content. Identifier keys are
        left alone. """
        if isinstance(content, str):
            return self.render_text(content)
        elif isinstance(content, Mapping):
            return {k: (v if k in RAW_KEYS else self.render(v)) for k, v in content.items()}
        elif isinstance(content, Sequence):
            return [self.render(v) for v in content]
        return content
