""" ScribeScript evaluation

`EvaluationContext` carries everything one evaluation pass reads and writes:
quality state, definitions, aliases, the shared Resolution Roll and an
independent random generator. `Evaluator` walks parsed nodes against it.

Content errors never escape a field: they are recorded as warnings on the
context and the offending piece degrades (unknown ids read as 0 or "",
unparseable blocks render as text, runaway recursion returns raw text).
"""

import logging
from collections.abc import Callable, Mapping, MutableMapping
from typing import Any, Optional, Union

import numpy as np

from scribescript import config, util, nodes, challenge, macros
from scribescript.core import (
    Value, Quality, QualityType, QualityState, QualityDefRegistry,
    ScribeError, ParseError, UnknownIdentifier, TypeMismatch, RecursionLimitExceeded,
    to_number, to_text, truthy, normalize_number,
)
from scribescript.lexer import strip_comments
from scribescript.parser import parse_template, parse_expression
from scribescript.qualities import consume_source

logger = logging.getLogger(__name__)

Number = Union[int, float]

INT64 = np.iinfo(np.int64)

STRING_FORMATTERS:Mapping[str, Callable[[str], str]] = {
    "capital": lambda s: s[:1].upper() + s[1:],
    "upper": lambda s: s.upper(),
    "lower": lambda s: s.lower(),
}

# statements that only mean something inside an effect
EFFECT_ONLY_IDS = ("schedule", "cancel")


class ResolutionRoll:
    """ The single roll shared by every percent check of one player action.

    Drawn lazily on first use so actions without checks consume no
    randomness. A fixed value can be given for reproducibility.
    """

    def __init__(self, rng:np.random.Generator, value:Optional[int]=None) -> None:
        self.rng = rng
        self._value = value

    @property
    def drawn(self) -> bool:
        return self._value is not None

    @property
    def value(self) -> int:
        if self._value is None:
            low = config.Settings.Roll.LOW
            high = config.Settings.Roll.HIGH
            self._value = int(self.rng.integers(low, high + 1))
            logger.debug(f'resolution roll is {self._value}')
        return self._value

    def __repr__(self) -> str:
        return f'ResolutionRoll({self._value})'


class EvaluationContext:
    def __init__(
            self,
            state:QualityState,
            defs:QualityDefRegistry,
            self_ctx:Optional[Quality]=None,
            world:Optional[QualityState]=None,
            aliases:Optional[MutableMapping[str, Value]]=None,
            roll:Optional[Union[ResolutionRoll, int]]=None,
            rng:Optional[np.random.Generator]=None,
            depth:int=0,
            max_depth:Optional[int]=None,
            warnings:Optional[list[str]]=None,
            in_effect:bool=False,
            now:float=0.,
            evaluator:Optional["Evaluator"]=None,
    ) -> None:
        self.state = state
        self.defs = defs
        self.self_ctx = self_ctx
        self.world:QualityState = world if world is not None else {}
        self.aliases:MutableMapping[str, Value] = aliases if aliases is not None else {}
        self.rng = rng if rng is not None else np.random.default_rng()
        if isinstance(roll, ResolutionRoll):
            self.roll = roll
        else:
            self.roll = ResolutionRoll(self.rng, roll)
        self.depth = depth
        self.max_depth = max_depth if max_depth is not None else config.Settings.Engine.MAX_RECURSION_DEPTH
        self.warnings:list[str] = warnings if warnings is not None else []
        self.in_effect = in_effect
        self.now = now
        self.evaluator = evaluator if evaluator is not None else Evaluator()

    def child(self, self_ctx:Optional[Quality]) -> "EvaluationContext":
        """ A context one level deeper, sharing state, aliases, roll and
        warnings. Raises RecursionLimitExceeded past max_depth. """
        if self.depth + 1 > self.max_depth:
            raise RecursionLimitExceeded(f'recursion depth {self.max_depth} exceeded')
        return EvaluationContext(
            self.state, self.defs, self_ctx,
            world=self.world,
            aliases=self.aliases,
            roll=self.roll,
            rng=self.rng,
            depth=self.depth + 1,
            max_depth=self.max_depth,
            warnings=self.warnings,
            in_effect=self.in_effect,
            now=self.now,
            evaluator=self.evaluator,
        )

    def warn(self, message:str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def number(self, value:Value) -> Number:
        """ to_number that records a warning and reads 0 instead of raising """
        try:
            return to_number(value)
        except TypeMismatch as e:
            self.warn(f'{e}, using 0')
            return 0

    def random_int(self, low:Number, high:Number) -> int:
        """ independent uniform draw in [low, high], never the shared roll

        Bounds are clipped to what the generator can draw (int64).
        """
        if low > high:
            low, high = high, low
        low = int(util.clip(low, INT64.min, INT64.max - 1))
        high = int(util.clip(high, INT64.min, INT64.max - 1))
        return int(self.rng.integers(low, high + 1))

    def lookup(self, quality_id:str, sigil:str="$") -> Optional[Quality]:
        if sigil == "#":
            return self.world.get(quality_id, self.state.get(quality_id))
        q = self.state.get(quality_id)
        if q is None and self.self_ctx is not None and self.self_ctx.quality_id == quality_id:
            return self.self_ctx
        return q

    def lookup_or_ghost(self, quality_id:str, sigil:str="$") -> Quality:
        """ the stored quality, or a level 0 stand-in typed from its definition """
        q = self.lookup(quality_id, sigil)
        if q is not None:
            return q
        definition = self.defs.lookup(quality_id)
        quality_type = definition.type if definition is not None else QualityType.PYRAMIDAL
        return Quality(quality_id, quality_type)

    def is_known(self, quality_id:str) -> bool:
        return (
            quality_id in self.state or quality_id in self.world
            or self.defs.lookup(quality_id) is not None
        )


class Evaluator:
    """ Walks ScribeScript nodes. Macro calls go through a handler table. """

    def __init__(self, macro_registry:Optional[macros.MacroRegistry]=None) -> None:
        self.logger = logging.getLogger(util.fullname(self))
        self.macros = macro_registry if macro_registry is not None else macros.default_registry()
        self._handlers:dict[type, Callable[[Any, EvaluationContext], Value]] = {
            nodes.Template: self._template,
            nodes.Text: self._text,
            nodes.Block: self._block,
            nodes.Empty: self._empty,
            nodes.Literalized: self._literalized,
            nodes.AliasAssign: self._alias_assign,
            nodes.Conditional: self._conditional,
            nodes.RandomChoice: self._random_choice,
            nodes.RandomRange: self._random_range,
            nodes.PercentRoll: self._percent_roll,
            nodes.Challenge: self._challenge,
            nodes.Literal: self._literal,
            nodes.Word: self._word,
            nodes.Reference: self._reference,
            nodes.MacroCall: self._macro_call,
            nodes.Nested: self._nested,
            nodes.Unary: self._unary,
            nodes.Negation: self._negation,
            nodes.Conjunction: self._conjunction,
            nodes.Disjunction: self._disjunction,
            nodes.Comparison: self._comparison,
            nodes.Arithmetic: self._arithmetic,
        }

    def evaluate(self, node:nodes.Node, ctx:EvaluationContext) -> Value:
        try:
            handler = self._handlers[type(node)]
        except KeyError:
            raise ValueError(f'no evaluation for {node!r}') from None
        return handler(node, ctx)

    # field level entry points

    def render(self, template:nodes.Template, ctx:EvaluationContext) -> str:
        return "".join(to_text(self.evaluate(part, ctx)) for part in template.parts)

    def render_text(self, text:str, ctx:EvaluationContext) -> str:
        """ Renders a Prose field. Unbalanced braces leave it as written. """
        if "{" not in text and "}" not in text:
            return text
        try:
            template = parse_template(text)
        except ParseError as e:
            ctx.warn(f'could not parse "{util.elipsis(text, 60)}": {e}')
            return text
        return self.render(template, ctx)

    def render_nested(self, text:str, ctx:EvaluationContext, self_ctx:Optional[Quality]) -> str:
        """ Renders definition text (names, descriptions) one level deeper
        with self_ctx as `$.`. Past the recursion limit the raw text is
        returned. """
        if "{" not in text:
            return text
        try:
            child = ctx.child(self_ctx)
        except RecursionLimitExceeded as e:
            ctx.warn(f'{e} rendering "{util.elipsis(text, 40)}"')
            return text
        return self.render_text(text, child)

    def evaluate_logic(self, text:str, ctx:EvaluationContext) -> Value:
        """ Evaluates a Logic field, falling back to rendering it as prose. """
        text = text.strip()
        if not text:
            return ""
        try:
            node = parse_expression(text)
        except ParseError:
            return self.render_text(text, ctx)
        return self.evaluate(node, ctx)

    def condition(self, text:str, ctx:EvaluationContext) -> bool:
        """ An empty condition holds. Unparseable conditions fail. """
        text = strip_comments(text).strip()
        if not text:
            return True
        try:
            node = parse_expression(text)
        except ParseError as e:
            ctx.warn(f'could not parse condition "{util.elipsis(text, 60)}": {e}')
            return False
        try:
            return truthy(self.evaluate(node, ctx))
        except ScribeError as e:
            ctx.warn(f'condition "{util.elipsis(text, 60)}" failed: {e}')
            return False

    def challenge_chance(self, text:str, ctx:EvaluationContext) -> int:
        return challenge.evaluate_challenge_field(text, ctx)

    # prose

    def _template(self, node:nodes.Template, ctx:EvaluationContext) -> Value:
        return self.render(node, ctx)

    def _text(self, node:nodes.Text, ctx:EvaluationContext) -> Value:
        return node.text

    def _block(self, node:nodes.Block, ctx:EvaluationContext) -> Value:
        try:
            return self.evaluate(node.expr, ctx)
        except ScribeError as e:
            ctx.warn(f'block "{{{util.elipsis(node.raw, 40)}}}" failed: {e}')
            return "{" + node.raw + "}"

    def _empty(self, node:nodes.Empty, ctx:EvaluationContext) -> Value:
        return ""

    def _literalized(self, node:nodes.Literalized, ctx:EvaluationContext) -> Value:
        self.logger.debug(f'rendering block as text: {node.message}')
        return self.render(node.template, ctx)

    # flow

    def _alias_assign(self, node:nodes.AliasAssign, ctx:EvaluationContext) -> Value:
        value = self.evaluate(node.expr, ctx)
        if isinstance(value, str):
            value = value.strip()
            if value.startswith("$"):
                value = value[1:]
        ctx.aliases[node.name] = value
        self.logger.debug(f'@{node.name} = {value!r}')
        return ""

    def _conditional(self, node:nodes.Conditional, ctx:EvaluationContext) -> Value:
        for i, (cond, result) in enumerate(node.branches):
            if cond is None or truthy(self.evaluate(cond, ctx)):
                self.logger.debug(f'conditional took branch {i}')
                return self.render(result, ctx)
        return ""

    def _random_choice(self, node:nodes.RandomChoice, ctx:EvaluationContext) -> Value:
        choice = node.options[ctx.random_int(0, len(node.options) - 1)]
        return self.render(choice, ctx)

    def _random_range(self, node:nodes.RandomRange, ctx:EvaluationContext) -> Value:
        low = ctx.number(self.evaluate(node.low, ctx))
        high = ctx.number(self.evaluate(node.high, ctx))
        return ctx.random_int(low, high)

    def _percent_roll(self, node:nodes.PercentRoll, ctx:EvaluationContext) -> Value:
        chance = ctx.number(self.evaluate(node.chance, ctx))
        roll = ctx.roll.value
        self.logger.debug(f'{chance}% check against roll {roll}')
        return challenge.resolve(chance, roll)

    def _challenge(self, node:nodes.Challenge, ctx:EvaluationContext) -> Value:
        if challenge.is_luck(node.stat):
            target = ctx.number(self.evaluate(node.target, ctx))
            return challenge.luck_chance(node.op, target)

        stat = ctx.number(self.evaluate(node.stat, ctx))
        target = ctx.number(self.evaluate(node.target, ctx))
        positional:list[Number] = []
        named:dict[str, Number] = {}
        for name, expr in node.modifiers:
            if name is not None and challenge.modifier_slot(name) is None:
                ctx.warn(f'ignoring unknown challenge modifier "{name}"')
                continue
            value = ctx.number(self.evaluate(expr, ctx))
            if name is None:
                positional.append(value)
            else:
                named[name] = value
        params = challenge.CurveParams.from_modifiers(target, positional, named)
        chance = challenge.compute_chance(stat, node.op, target, params)
        self.logger.debug(f'challenge {stat} {node.op} {target} with {params}: {chance}%')
        return chance

    # values

    def _literal(self, node:nodes.Literal, ctx:EvaluationContext) -> Value:
        return node.value

    def _word(self, node:nodes.Word, ctx:EvaluationContext) -> Value:
        return node.text

    def _nested(self, node:nodes.Nested, ctx:EvaluationContext) -> Value:
        value = self.evaluate(node.inner, ctx)
        if not node.reparse or not isinstance(value, str) or not value.strip():
            return value
        try:
            expr = parse_expression(value)
        except ParseError:
            return value
        try:
            child = ctx.child(ctx.self_ctx)
        except RecursionLimitExceeded as e:
            ctx.warn(f'{e} re-reading "{util.elipsis(value, 40)}"')
            return value
        return self.evaluate(expr, child)

    def _macro_call(self, node:nodes.MacroCall, ctx:EvaluationContext) -> Value:
        handler = self.macros.get(node.name)
        if handler is None:
            ctx.warn(f'unknown macro %{node.name}')
            return f'[Unknown Macro: {node.name}]'
        value = handler(macros.split_args(node.args), ctx)
        if node.props:
            return self._properties(value, node.props, ctx)
        return value

    def _reference(self, node:nodes.Reference, ctx:EvaluationContext) -> Value:
        subject:Union[Quality, Value]
        if node.self_ref:
            if ctx.self_ctx is None:
                ctx.warn("$. used with no quality in scope")
                return 0 if not node.props else ""
            subject = ctx.self_ctx
        else:
            if node.dynamic is not None:
                quality_id = to_text(self.evaluate(node.dynamic, ctx)).strip().lstrip("$#@")
            else:
                assert node.name is not None
                quality_id = node.name

            if node.sigil == "@":
                if quality_id not in ctx.aliases:
                    ctx.warn(str(UnknownIdentifier(f'unknown alias @{quality_id}')))
                    return ""
                value = ctx.aliases[quality_id]
                if not (isinstance(value, str) and ctx.is_known(value)):
                    return self._properties(value, node.props, ctx)
                quality_id = value

            if node.sigil == "$" and node.bracket is not None and quality_id.lower() == "all" and not ctx.is_known(quality_id):
                value = self.macros["all"]([node.bracket], ctx)
                return self._properties(value, node.props, ctx)

            if node.sigil == "$" and quality_id.lower() in EFFECT_ONLY_IDS and not ctx.is_known(quality_id):
                return ""

            if node.sigil == "$" and quality_id.lower() == "luck" and not ctx.is_known(quality_id):
                return ctx.random_int(1, 100)

            if not ctx.is_known(quality_id):
                self.logger.debug(f'unknown quality {node.sigil}{quality_id} reads as empty')
            subject = ctx.lookup_or_ghost(quality_id, node.sigil)

        if node.bracket is not None:
            subject = self._bracket(subject, node.bracket, ctx)

        return self._properties(subject, node.props, ctx)

    def _bracket(self, quality:Quality, bracket:str, ctx:EvaluationContext) -> Quality:
        """ `$q[n]` reads q as if its level were n """
        text = bracket.strip()
        if not text or text.lower().startswith("source:") or text.lower().startswith("desc:"):
            return quality
        value = self.evaluate_logic(text, ctx)
        try:
            level = to_number(value)
        except TypeMismatch:
            ctx.warn(f'ignoring [{text}] on ${quality.quality_id}')
            return quality
        spoofed = quality.copy()
        spoofed.level = int(level)
        return spoofed

    def _properties(self, subject:Union[Quality, Value], props:list[str], ctx:EvaluationContext) -> Value:
        for prop in props:
            subject = self._property(subject, prop, ctx)
        if isinstance(subject, Quality):
            return subject.value
        return subject

    def _property(self, subject:Union[Quality, Value], prop:str, ctx:EvaluationContext) -> Union[Quality, Value]:
        key = prop.lower()
        if not isinstance(subject, Quality):
            text = to_text(subject)
            if key in STRING_FORMATTERS:
                return STRING_FORMATTERS[key](text)
            # a text value naming a quality, e.g. an alias holding an id
            subject = ctx.lookup_or_ghost(text.strip().lstrip("$"))

        quality = subject
        definition = ctx.defs.lookup(quality.quality_id)
        raw:Any
        if prop in quality.custom_properties:
            raw = quality.custom_properties[prop]
        elif key in STRING_FORMATTERS:
            return STRING_FORMATTERS[key](to_text(quality.value))
        elif key == "level":
            return quality.level
        elif key == "id":
            return quality.quality_id
        elif key in ("cp", "changepoints"):
            return quality.change_points
        elif key == "source":
            return self._source(quality, ctx)
        elif definition is None:
            if key in ("name", "singular", "plural"):
                return quality.quality_id
            if key in ("description", "category"):
                return ""
            ctx.warn(f'${quality.quality_id} has no property "{prop}"')
            return ""
        elif key == "name":
            raw = definition.name
        elif key == "description":
            raw = definition.description
        elif key == "category":
            raw = definition.category
        elif key == "singular":
            raw = definition.singular_name or definition.name
        elif key == "plural":
            raw = definition.plural_name or definition.name
        elif key == "bonus":
            raw = definition.bonus
        else:
            raw = definition.get_property(prop)
            if raw is None:
                ctx.warn(f'${quality.quality_id} has no property "{prop}"')
                return ""

        if isinstance(raw, str):
            return self.render_nested(raw, ctx, quality)
        if isinstance(raw, (int, float, bool)):
            return raw
        return to_text(str(raw))

    def _source(self, quality:Quality, ctx:EvaluationContext) -> Value:
        """ most recent source tag, consumed when read inside an effect """
        if not quality.sources:
            return ""
        if ctx.in_effect and ctx.state.get(quality.quality_id) is quality:
            tag = consume_source(quality)
            self.logger.debug(f'consumed one {tag} source of {quality.quality_id}')
            return tag or ""
        return quality.sources[-1].tag

    # operators

    def _unary(self, node:nodes.Unary, ctx:EvaluationContext) -> Value:
        return -ctx.number(self.evaluate(node.operand, ctx))

    def _negation(self, node:nodes.Negation, ctx:EvaluationContext) -> Value:
        return not truthy(self.evaluate(node.inner, ctx))

    def _conjunction(self, node:nodes.Conjunction, ctx:EvaluationContext) -> Value:
        return truthy(self.evaluate(node.a, ctx)) and truthy(self.evaluate(node.b, ctx))

    def _disjunction(self, node:nodes.Disjunction, ctx:EvaluationContext) -> Value:
        return truthy(self.evaluate(node.a, ctx)) or truthy(self.evaluate(node.b, ctx))

    def _comparison(self, node:nodes.Comparison, ctx:EvaluationContext) -> Value:
        left = self.evaluate(node.left, ctx)
        right = self.evaluate(node.right, ctx)
        if node.op in ("==", "!="):
            equal = _loose_equal(left, right)
            return equal if node.op == "==" else not equal

        a = ctx.number(left)
        b = ctx.number(right)
        if node.op == ">":
            return a > b
        elif node.op == "<":
            return a < b
        elif node.op == ">=":
            return a >= b
        elif node.op == "<=":
            return a <= b
        raise ParseError(f'unknown comparison {node.op}', node.pos)

    def _arithmetic(self, node:nodes.Arithmetic, ctx:EvaluationContext) -> Value:
        a = ctx.number(self.evaluate(node.left, ctx))
        b = ctx.number(self.evaluate(node.right, ctx))
        if node.op == "+":
            return normalize_number(a + b)
        elif node.op == "-":
            return normalize_number(a - b)
        elif node.op == "*":
            return normalize_number(a * b)
        elif node.op == "/":
            if b == 0:
                ctx.warn(f'division by zero ({a} / 0), using 0')
                return 0
            return normalize_number(a / b)
        raise ParseError(f'unknown operator {node.op}', node.pos)


def _loose_equal(a:Value, b:Value) -> bool:
    """ numeric when both sides read as numbers, text otherwise """
    try:
        return to_number(a) == to_number(b)
    except TypeMismatch:
        return to_text(a).strip() == to_text(b).strip()
