""" Effect application

An effect is a comma separated list of statements applied strictly left to
right against the live quality state, each statement seeing the results of
the ones before it:

    $gold += 10, $sword[source:Found in a cave] ++, $all[contraband] = 0,
    %schedule[$energy += 1 : 1h ; recur], %cancel[$poison]

Braces inside a statement are rendered first, so computed ids and values
work (`$attribute_{$class} += {2 + $bonus}`). A failed statement records a
warning and the rest still apply.
"""

import re
import logging
from typing import Any, Optional, Union

from scribescript import util, macros
from scribescript.core import (
    Value, Quality, QualityType, QualityDefinition, StateMutation, PendingEvent, Cancellation,
    EffectResult, ScribeError, ParseError, UnknownIdentifier, TypeMismatch,
    to_number, to_text,
)
from scribescript.lexer import strip_comments, strip_ghost_blocks
from scribescript.parser import parse_expression
from scribescript.qualities import change_quality, normalize_op, triangular
from scribescript.scheduler import EventSchedule, parse_timer, parse_timed_effect, parse_duration, parse_cancel

HEAD_RE = re.compile(r"^\s*([$@#%]?)([a-zA-Z0-9_]+)")
OP_RE = re.compile(r"^\s*(\+\+|--|[+\-*/]=|=)\s*(.*)$", re.DOTALL)

TIMER_COMMANDS = ("schedule", "reset", "update", "cancel")
BATCH_COMMANDS = ("all", "pick", "roll")


class Metadata:
    """ `[source:tag, desc:text, hidden]` on an assignment """

    def __init__(self, source:Optional[str]=None, desc:Optional[str]=None, hidden:bool=False) -> None:
        self.source = source
        self.desc = desc
        self.hidden = hidden

    @staticmethod
    def parse(text:Optional[str]) -> "Metadata":
        metadata = Metadata()
        if not text:
            return metadata
        for part in util.split_top_level(text, ","):
            key, _, value = part.partition(":")
            key = key.strip().lower()
            value = value.strip()
            if key == "source":
                metadata.source = value
            elif key == "desc":
                metadata.desc = value
            elif key == "hidden":
                metadata.hidden = True
            elif key:
                raise ParseError(f'unknown effect metadata "{part.strip()}"')
        return metadata


class Statement:
    """ One parsed effect statement: sigil, name, [bracket] and the rest. """

    def __init__(self, sigil:str, name:str, bracket:Optional[str], rest:str) -> None:
        self.sigil = sigil
        self.name = name
        self.bracket = bracket
        self.rest = rest

    @staticmethod
    def parse(command:str) -> "Statement":
        m = HEAD_RE.match(command)
        if not m:
            raise ParseError(f'cannot read effect "{command}"')
        sigil, name = m.group(1), m.group(2)
        pos = m.end()
        bracket:Optional[str] = None
        rest_start = pos
        stripped = command[pos:].lstrip()
        if stripped.startswith("["):
            open_index = len(command) - len(stripped)
            close_index = util.find_matching(command, open_index)
            if close_index < 0:
                raise ParseError(f'unclosed "[" in effect "{command}"', open_index)
            bracket = command[open_index+1:close_index]
            rest_start = close_index + 1
        return Statement(sigil, name, bracket, command[rest_start:])

    def __repr__(self) -> str:
        return f'Statement({self.sigil}{self.name}[{self.bracket}] {self.rest!r})'


class MutationEngine:
    """ Applies effects against one EvaluationContext.

    If given an EventSchedule, timers are pushed to it and cancellations
    remove from it. Everything scheduled or cancelled is reported on the
    result either way.
    """

    def __init__(self, ctx:Any, schedule:Optional[EventSchedule]=None) -> None:
        self.logger = logging.getLogger(util.fullname(self))
        self.ctx = ctx
        self.ctx.in_effect = True
        self.schedule = schedule
        self.result = EffectResult()
        # warnings from evaluation and statements land in the same list
        self.result.warnings = ctx.warnings

    def apply(self, effect:str) -> EffectResult:
        text = strip_comments(strip_ghost_blocks(effect)).replace("\n", " ")
        for statement in util.split_top_level(text, ",", quotes=True):
            self.apply_statement(statement)
        return self.result

    def apply_statement(self, statement:str, depth:int=0) -> None:
        command = statement.strip()
        if not command:
            return

        if "{" in command:
            expanded = self.ctx.evaluator.render_text(command, self.ctx).strip()
            if expanded != command:
                self.logger.debug(f'expanded "{command}" to "{expanded}"')
                command = expanded
                parts = util.split_top_level(command, ",", quotes=True)
                if len(parts) > 1 and not command.startswith("%"):
                    if depth >= self.ctx.max_depth:
                        self.ctx.warn(f'effect expansion too deep at "{util.elipsis(command, 60)}"')
                        return
                    for part in parts:
                        self.apply_statement(part, depth + 1)
                    return
                if not command:
                    return

        try:
            self._dispatch(command)
        except ScribeError as e:
            self.ctx.warn(f'effect "{util.elipsis(command, 60)}" skipped: {e}')

    def _dispatch(self, command:str) -> None:
        statement = Statement.parse(command)
        name = statement.name.lower()
        if statement.sigil in ("$", "%") and name in TIMER_COMMANDS and statement.bracket is not None and not statement.rest.strip():
            self.timer(name, statement.bracket)
        elif statement.sigil == "%" and name == "new" and statement.bracket is not None:
            m = OP_RE.match(statement.rest) if statement.rest.strip() else None
            if statement.rest.strip() and (m is None or m.group(1) != "="):
                raise ParseError(f'%new only supports "=" in "{command}"')
            self.new(statement.bracket, m.group(2) if m else None)
        elif statement.bracket is not None and name in BATCH_COMMANDS and (
                statement.sigil == "%" or (statement.sigil == "$" and name == "all" and not self.ctx.is_known(statement.name))):
            op, value_text = self._operator(statement.rest, command)
            self.batch(name, statement.bracket, op, value_text)
        elif statement.sigil == "%":
            raise ParseError(f'%{statement.name} is not an effect')
        else:
            op, value_text = self._operator(statement.rest, command)
            self.assign(statement, op, value_text)

    def _operator(self, rest:str, command:str) -> tuple[str, str]:
        m = OP_RE.match(rest)
        if not m:
            raise ParseError(f'no operator in effect "{command}"')
        op, value_text = m.group(1), m.group(2).strip()
        if op in ("++", "--") and value_text:
            raise ParseError(f'{op} takes no value in "{command}"')
        if op not in ("++", "--") and not value_text:
            raise ParseError(f'{op} needs a value in "{command}"')
        return op, value_text

    def evaluate_value(self, text:str) -> Value:
        """ A right hand side: logic if it parses, literal text otherwise. """
        text = text.strip()
        try:
            node = parse_expression(text)
        except ParseError:
            return util.strip_quotes(text)
        return self.ctx.evaluator.evaluate(node, self.ctx)

    # assignments

    def assign(self, statement:Statement, op:str, value_text:str) -> None:
        quality_id = statement.name
        scope = "character"
        if statement.sigil == "@":
            if quality_id not in self.ctx.aliases:
                raise UnknownIdentifier(f'unknown alias @{quality_id}')
            quality_id = to_text(self.ctx.aliases[quality_id]).strip().lstrip("$")
        elif statement.sigil == "#":
            scope = "world"

        metadata = Metadata.parse(statement.bracket)
        value:Optional[Value] = None
        if op not in ("++", "--"):
            value = self.evaluate_value(value_text)
        self.change(quality_id, op, value, metadata, scope)

    def _limit(self, field:str, definition:Optional[QualityDefinition], quality:Quality) -> Optional[int]:
        """ renders a level limit template (`max`, `grind_cap`) of definition """
        template = getattr(definition, field, None)
        if not template:
            return None
        raw = self.ctx.evaluator.render_nested(str(template), self.ctx, quality)
        try:
            return int(to_number(raw))
        except TypeMismatch:
            self.ctx.warn(f'{field} "{template}" of {quality.quality_id} is not a number')
            return None

    def change(
            self,
            quality_id:str,
            op:str,
            value:Optional[Value],
            metadata:Optional[Metadata]=None,
            scope:str="character",
    ) -> Optional[StateMutation]:
        """ Applies one operator to one quality and records the mutation. """

        if metadata is None:
            metadata = Metadata()
        target = self.ctx.world if scope == "world" else self.ctx.state
        definition = self.ctx.defs.lookup(quality_id)
        quality = target.get(quality_id)
        created = False
        if quality is None:
            if definition is None:
                raise UnknownIdentifier(f'cannot change unknown quality {quality_id}')
            quality = Quality(quality_id, definition.type)
            created = True

        op, value = normalize_op(op, value)
        if quality.type.is_numeric and isinstance(value, str):
            value = self.ctx.number(value)

        level_before = quality.level
        cp_before = quality.change_points
        string_before = quality.string_value
        if metadata.source and not quality.type.tracks_sources:
            self.ctx.warn(f'{quality_id} is {quality.type.name}, only items track sources, ignoring source:{metadata.source}')
        grind_cap = self._limit("grind_cap", definition, quality) if op == "+=" else None
        applied = change_quality(
            quality, op, value,
            self._limit("max", definition, quality),
            metadata.source if quality.type.tracks_sources else None,
            grind_cap,
        )
        if not applied:
            self.logger.debug(f'{quality_id} {op} {value} stopped at grind cap {grind_cap}')
            return None

        if created:
            if quality.level == 0 and not quality.string_value and not quality.sources:
                self.logger.debug(f'{quality_id} {op} {value} left it unset')
                return None
            target[quality_id] = quality

        mutation = StateMutation(
            quality_id, op, value,
            level_before, quality.level,
            cp_before, quality.change_points,
            string_value=quality.string_value if quality.type == QualityType.STRING else None,
            scope=scope,
            hidden=metadata.hidden or (definition is not None and definition.hidden),
        )
        mutation.change_text = self._change_text(quality, definition, metadata, level_before, string_before)
        self.result.mutations.append(mutation)
        self.logger.debug(f'applied {mutation}')
        return mutation

    def _change_text(self, quality:Quality, definition:Optional[QualityDefinition], metadata:Metadata, level_before:int, string_before:str) -> str:
        if metadata.desc:
            return self.ctx.evaluator.render_nested(metadata.desc, self.ctx, quality)

        name = quality.quality_id
        if definition is not None:
            name = self.ctx.evaluator.render_nested(definition.name, self.ctx, quality)

        if quality.level > level_before:
            if definition is not None and definition.increase_description:
                return self.ctx.evaluator.render_nested(definition.increase_description, self.ctx, quality)
            return f'{name} increased.'
        elif quality.level < level_before:
            if definition is not None and definition.decrease_description:
                return self.ctx.evaluator.render_nested(definition.decrease_description, self.ctx, quality)
            return f'{name} decreased.'
        elif quality.type == QualityType.STRING and quality.string_value != string_before:
            return f'{name} is now {quality.string_value}'
        return ""

    # collections

    def batch(self, kind:str, bracket:str, op:str, value_text:str) -> None:
        """ `%all[cat; filter] op v`, `%pick[cat; n] op v`, `$all[cat] op v` """
        args = macros.parse_collection_args(kind, macros.split_args(bracket), self.ctx)
        selected = macros.select(kind, args, self.ctx)
        value:Optional[Value] = None
        if op not in ("++", "--"):
            value = self.evaluate_value(value_text)
        self.logger.debug(f'%{kind}[{args.category}] {op} {value} on {selected}')
        for quality_id in selected:
            try:
                self.change(quality_id, op, value)
            except ScribeError as e:
                self.ctx.warn(f'{kind}[{args.category}] skipped {quality_id}: {e}')

    # timers

    def timer(self, name:str, args:str) -> None:
        if name == "cancel":
            self.cancel(parse_cancel(args))
            return

        spec = parse_timer(args)
        target, meta, op, value_text = parse_timed_effect(spec.effect)
        interval = parse_duration(spec.duration)
        value:Value = ""
        if op not in ("++", "--"):
            if not value_text:
                raise ParseError(f'scheduled effect "{spec.effect}" has no value')
            value = self.evaluate_value(value_text)
        meta_text = f'[{meta}]' if meta else ""
        effect = f'${target}{meta_text} {op}' + (f' {to_text(value)}' if op not in ("++", "--") else "")

        if name in ("reset", "update"):
            removed = self.cancel(Cancellation(target))
            if name == "update" and self.schedule is not None and not removed:
                self.logger.debug(f'nothing pending for {target}, not updating')
                return

        event = PendingEvent(
            target, op, value,
            trigger_time=self.ctx.now + interval,
            recurring=spec.recurring,
            interval_ms=interval,
            description=spec.description,
            unique=spec.unique,
            effect=effect,
        )
        if self.schedule is not None and not self.schedule.push_event(event):
            return
        self.result.scheduled.append(event)
        self.logger.debug(f'scheduled {event}')

    def cancel(self, cancellation:Cancellation) -> list[PendingEvent]:
        self.result.cancellations.append(cancellation)
        removed:list[PendingEvent] = []
        if self.schedule is not None:
            removed = self.schedule.cancel(cancellation)
        # events scheduled earlier in this same effect
        pending = [e for e in self.result.scheduled if e.target_quality_id == cancellation.target_quality_id]
        if cancellation.mode == "first":
            pending = pending[:cancellation.count]
        elif cancellation.mode == "last":
            pending = pending[-cancellation.count:] if cancellation.count > 0 else []
        for event in pending:
            if event not in removed:
                self.result.scheduled.remove(event)
                removed.append(event)
        self.result.cancelled.extend(removed)
        return removed

    # creation

    def new(self, bracket:str, value_text:Optional[str]) -> None:
        """ `%new[id; template, key:value, ...] = value` """
        args = macros.split_args(bracket)
        new_id = to_text(self.evaluate_value(args[0])).strip().lstrip("$") if args else ""
        if not new_id:
            raise ParseError("%new needs an id")

        template:Optional[QualityDefinition] = None
        props:dict[str, Union[str, int, float]] = {}
        if len(args) > 1:
            for part in util.split_top_level(";".join(args[1:]), ","):
                part = part.strip()
                if not part:
                    continue
                key, sep, raw = part.partition(":")
                if not sep:
                    template = self.ctx.defs.lookup(part)
                    if template is None:
                        self.ctx.warn(f'%new template {part} not found')
                    continue
                raw = util.strip_quotes(raw)
                try:
                    props[key.strip()] = to_number(raw) if raw else raw
                except TypeMismatch:
                    props[key.strip()] = raw

        value:Value = 1
        if value_text:
            value = self.evaluate_value(value_text)

        quality_type = template.type if template is not None else QualityType.PYRAMIDAL
        if template is None and isinstance(value, str):
            try:
                value = to_number(value)
            except TypeMismatch:
                quality_type = QualityType.STRING

        quality = self.ctx.state.get(new_id)
        level_before = 0
        if quality is None:
            quality = Quality(new_id, quality_type)
            self.ctx.state[new_id] = quality
        else:
            level_before = quality.level
        if template is not None:
            quality.custom_properties.update(template.text_variants)
        quality.custom_properties.update(props)

        if quality.type == QualityType.STRING:
            quality.string_value = to_text(value)
        else:
            quality.level = max(0, int(self.ctx.number(value)))
            if quality.type == QualityType.PYRAMIDAL:
                quality.change_points = triangular(quality.level)

        if template is not None and self.ctx.defs.lookup(new_id) is None and self.ctx.defs.can_register:
            self.ctx.defs.register(template.derive(new_id))

        mutation = StateMutation(
            new_id, "=", value, level_before, quality.level,
            string_value=quality.string_value if quality.type == QualityType.STRING else None,
            change_text=f'{new_id} created.',
        )
        self.result.mutations.append(mutation)
        self.logger.debug(f'created {quality}')
