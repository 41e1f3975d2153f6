""" Challenge probability curves

A challenge compares a stat against a target and yields a success chance in
[min, max]. Resolution compares that chance against the Resolution Roll.
"""

import re
import logging
from typing import Any, Optional, Mapping, Sequence, Union

from scribescript import config, util, nodes
from scribescript.core import ScribeError, InvalidChallengeSyntax, TypeMismatch, to_number
from scribescript.lexer import strip_comments
from scribescript.parser import parse_expression

logger = logging.getLogger(__name__)

CHALLENGE_OPS = (">>", "<<", "><", "<>")

# plain comparisons in a challenge field read as the matching challenge
COMPARISON_OPS = {
    ">=": ">>",
    ">": ">>",
    "<=": "<<",
    "<": "<<",
}

MODIFIER_SLOTS = ("margin", "min", "max", "pivot")
MODIFIER_ALIASES = {
    "minimum": "min",
    "maximum": "max",
}

# "$stat >= 50 [10]": a whitespace separated trailing margin
MARGIN_SUFFIX_RE = re.compile(r"^(?P<expr>.*\S)\s+\[(?P<margin>[^\[\]]*)\]\s*$", re.DOTALL)

Number = Union[int, float]


def modifier_slot(key:str) -> Optional[str]:
    """ curve slot a named modifier sets, None if it names no slot """
    slot = MODIFIER_ALIASES.get(key.lower(), key.lower())
    return slot if slot in MODIFIER_SLOTS else None


class CurveParams:
    """ Shape of a challenge curve. Unset values come from config. """

    def __init__(
            self,
            target:Number,
            margin:Optional[Number]=None,
            minimum:Optional[Number]=None,
            maximum:Optional[Number]=None,
            pivot:Optional[Number]=None,
    ) -> None:
        self.target = target
        self.margin = margin if margin is not None else target
        self.minimum = minimum if minimum is not None else config.Settings.Challenge.MIN
        self.maximum = maximum if maximum is not None else config.Settings.Challenge.MAX
        self.pivot = pivot if pivot is not None else config.Settings.Challenge.PIVOT

    @staticmethod
    def from_modifiers(target:Number, positional:Sequence[Number]=(), named:Optional[Mapping[str, Number]]=None) -> "CurveParams":
        """ Positional values fill margin, min, max, pivot in order. Named
        values override the matching slot. """

        values:dict[str, Number] = {}
        if len(positional) > len(MODIFIER_SLOTS):
            raise InvalidChallengeSyntax(f'too many challenge modifiers: {list(positional)}')
        for slot, v in zip(MODIFIER_SLOTS, positional):
            values[slot] = v
        for key, v in (named or {}).items():
            slot = modifier_slot(key)
            if slot is None:
                raise InvalidChallengeSyntax(f'unknown challenge modifier "{key}"')
            values[slot] = v

        return CurveParams(
            target,
            margin=values.get("margin"),
            minimum=values.get("min"),
            maximum=values.get("max"),
            pivot=values.get("pivot"),
        )

    def __repr__(self) -> str:
        return f'CurveParams(target={self.target}, margin={self.margin}, min={self.minimum}, max={self.maximum}, pivot={self.pivot})'


def _rising(stat:float, params:CurveParams) -> float:
    """ higher stat is better, pivot exactly at the target """
    target = params.target
    margin = params.margin
    if margin <= 0:
        return params.maximum if stat >= target else params.minimum

    lo = target - margin
    hi = target + margin
    if stat <= lo:
        return params.minimum
    elif stat >= hi:
        return params.maximum
    elif stat == target:
        return params.pivot
    elif stat < target:
        return util.lerp(params.minimum, params.pivot, (stat - lo) / (target - lo))
    else:
        return util.lerp(params.pivot, params.maximum, (stat - target) / (hi - target))


def _distance(stat:float, params:CurveParams) -> float:
    """ fraction of the margin between stat and target, capped at 1 """
    d = abs(stat - params.target)
    if params.margin <= 0:
        return 0. if d == 0 else 1.
    return min(d / params.margin, 1.)


def raw_chance(stat:Number, op:str, params:CurveParams) -> float:
    if op == ">>":
        return _rising(stat, params)
    elif op == "<<":
        # mirror the stat around the target
        return _rising(2 * params.target - stat, params)
    elif op == "><":
        return util.lerp(params.maximum, params.minimum, _distance(stat, params))
    elif op == "<>":
        return util.lerp(params.minimum, params.maximum, _distance(stat, params))
    else:
        raise InvalidChallengeSyntax(f'unknown challenge operator "{op}"')


def compute_chance(stat:Number, op:str, target:Number, params:Optional[CurveParams]=None) -> int:
    """ Chance of success in percent, rounded half up and clamped to
    [min, max]. """

    if params is None:
        params = CurveParams(target)
    chance = util.round_half_up(raw_chance(stat, op, params))
    lo = min(params.minimum, params.maximum)
    hi = max(params.minimum, params.maximum)
    return int(util.clip(chance, lo, hi))


def luck_chance(op:str, target:Number) -> int:
    """ Flat chance for `$luck` against target. Modifiers do not apply. """

    n = to_number(target)
    if op in ("<=", "<<"):
        chance = n
    elif op in (">=", ">>"):
        chance = 101 - n
    elif op == "<":
        chance = n - 1
    elif op == ">":
        chance = 100 - n
    else:
        raise InvalidChallengeSyntax(f'$luck does not support "{op}"')
    return int(util.clip(util.round_half_up(chance), 0, 100))


def is_luck(node:nodes.Node) -> bool:
    return (
        isinstance(node, nodes.Reference) and node.sigil == "$"
        and node.name is not None and node.name.lower() == "luck"
        and node.bracket is None and not node.props
    )


def resolve(chance:Number, roll:int) -> bool:
    """ success iff the roll is within the chance """
    return roll <= chance


def _unwrap_block(text:str) -> str:
    while len(text) >= 2 and text[0] == "{" and util.find_matching(text, 0) == len(text) - 1:
        text = text[1:-1].strip()
    return text


def _flat_chance(text:str, ctx:Any, reason:Exception) -> int:
    try:
        chance = to_number(text)
    except TypeMismatch:
        ctx.warn(f'invalid challenge "{util.elipsis(text, 60)}": {reason}')
        return 0
    logger.debug(f'challenge "{text}" read as a flat chance')
    return int(util.clip(util.round_half_up(chance), 0, 100))


def challenge_node(text:str) -> nodes.Node:
    """ Parses a challenge field into the node to evaluate for its chance.

    `stat >= target [margin]` style comparisons become challenges. Anything
    else parses as a plain expression whose value is the chance.
    """

    text = _unwrap_block(strip_comments(text).strip())
    if not text:
        raise InvalidChallengeSyntax("empty challenge")

    margin:Optional[nodes.Node] = None
    m = MARGIN_SUFFIX_RE.match(text)
    if m:
        text = m.group("expr")
        margin = parse_expression(m.group("margin"))

    node = parse_expression(text)
    if isinstance(node, nodes.Comparison) and node.op in COMPARISON_OPS:
        if is_luck(node.left):
            # luck keeps the exact comparison, "<" and "<=" differ by one
            return nodes.Challenge(node.left, node.op, node.right)
        modifiers:list[tuple[Optional[str], nodes.Node]] = []
        if margin is not None:
            modifiers.append(("margin", margin))
        return nodes.Challenge(node.left, COMPARISON_OPS[node.op], node.right, modifiers)
    elif isinstance(node, nodes.Challenge):
        if margin is not None:
            node.modifiers.append(("margin", margin))
        return node
    elif margin is not None:
        raise InvalidChallengeSyntax(f'margin given for a non-challenge expression "{text}"')
    return node


def evaluate_challenge_field(text:str, ctx:Any) -> int:
    """ Computes the chance of a challenge field with an EvaluationContext.

    Fields that fail to parse or evaluate fall back to a flat numeric
    chance, else 0.
    """

    try:
        node = challenge_node(text)
        value = ctx.evaluator.evaluate(node, ctx)
    except ScribeError as e:
        return _flat_chance(_unwrap_block(text.strip()), ctx, e)

    if isinstance(value, bool):
        return config.Settings.Challenge.MAX if value else config.Settings.Challenge.MIN
    chance = ctx.number(value)
    return int(util.clip(util.round_half_up(chance), 0, 100))
