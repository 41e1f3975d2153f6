""" Macro handlers

Macros are `%name[arg; arg; ...]` calls. Each name maps to a handler taking
the split argument list and the active EvaluationContext and returning a
value. Timer and `%new` macros only act inside effects; in text they render
empty (or the new id) and inside an effect they pass through unchanged so
the mutation engine applies them.
"""

import re
import logging
from collections.abc import Callable, Iterator, Sequence
from typing import Any, Optional

import numpy as np

from scribescript import config, util, challenge
from scribescript.core import Value, RecursionLimitExceeded, TypeMismatch, to_text

logger = logging.getLogger(__name__)

MacroHandler = Callable[[list[str], Any], Value]

COLLECTION_KINDS = ("pick", "roll", "all", "list", "count")
OWNED_FILTERS = (">0", "has", "owned")
COUNT_RE = re.compile(r"^\s*(?:[0-9]+|\{.*\})\s*$", re.DOTALL)


class MacroRegistry:
    """ Name keyed macro handlers. """

    def __init__(self) -> None:
        self._handlers:dict[str, MacroHandler] = {}

    def register_macro(self, handler:MacroHandler, name:str) -> None:
        self._handlers[name.lower()] = handler

    def get(self, name:str) -> Optional[MacroHandler]:
        return self._handlers.get(name.lower())

    def __getitem__(self, name:str) -> MacroHandler:
        return self._handlers[name.lower()]

    def __contains__(self, name:object) -> bool:
        return isinstance(name, str) and name.lower() in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._handlers))


def split_args(raw:str) -> list[str]:
    return [a.strip() for a in util.split_top_level(raw, ";")]


def _raw(name:str, args:Sequence[str]) -> str:
    return f'%{name}[{"; ".join(args)}]'


# collections

class CollectionArgs:
    """ `%kind[category; count; filter; prop; separator]`, every part after
    the category optional. A leading property (`id` or `.prop`) may stand in
    for the filter. """

    def __init__(self, category:str, count:Optional[int]=None, filter:str="", prop:str="id", separator:str=", ") -> None:
        self.category = category
        self.count = count
        self.filter = filter
        self.prop = prop
        self.separator = separator

    def __repr__(self) -> str:
        return f'CollectionArgs({self.category!r}, count={self.count}, filter={self.filter!r}, prop={self.prop!r})'


def parse_collection_args(kind:str, args:Sequence[str], ctx:Any) -> CollectionArgs:
    if not args or not args[0]:
        raise TypeMismatch(f'%{kind} needs a category')

    category = to_text(ctx.evaluator.evaluate_logic(args[0], ctx)).strip().lower()
    parsed = CollectionArgs(
        category,
        count=None if kind in ("all", "list") else 1,
        prop=".name" if kind == "list" else "id",
    )

    rest = list(args[1:])
    if rest and COUNT_RE.match(rest[0]):
        parsed.count = max(1, util.round_half_up(ctx.number(ctx.evaluator.evaluate_logic(rest.pop(0), ctx))))
    if rest:
        arg = rest.pop(0)
        if arg == "id" or arg.startswith("."):
            parsed.prop = arg
        else:
            parsed.filter = arg
            if rest:
                parsed.prop = rest.pop(0) or parsed.prop
    if rest:
        raw_separator = rest.pop(0)
        parsed.separator = config.Settings.Text.SEPARATORS.get(raw_separator.lower(), util.strip_quotes(raw_separator))
    return parsed


def candidates(category:str, filter_text:str, ctx:Any) -> list[str]:
    """ ids of definitions in category passing filter, in display order """
    defs = ctx.defs.in_category(category)
    if len(defs) > config.Settings.Engine.MAX_COLLECTION_SIZE:
        ctx.warn(f'category {category} has {len(defs)} qualities, using the first {config.Settings.Engine.MAX_COLLECTION_SIZE}')
        defs = defs[:config.Settings.Engine.MAX_COLLECTION_SIZE]

    ids = [d.quality_id for d in defs]
    filter_text = filter_text.strip()
    if not filter_text or filter_text == "true":
        return ids

    selected = []
    for quality_id in ids:
        quality = ctx.lookup_or_ghost(quality_id)
        if filter_text in OWNED_FILTERS:
            if quality.level > 0:
                selected.append(quality_id)
            continue
        try:
            child = ctx.child(quality)
        except RecursionLimitExceeded as e:
            ctx.warn(f'{e} filtering {category}')
            return selected
        if ctx.evaluator.condition(filter_text, child):
            selected.append(quality_id)
    return selected


def select(kind:str, args:CollectionArgs, ctx:Any) -> list[str]:
    """ quality ids chosen by a collection macro """
    ids = candidates(args.category, args.filter, ctx)
    count = args.count if args.count is not None else len(ids)
    if kind == "roll":
        cap = config.Settings.Collections.ROLL_TICKET_CAP
        pool = []
        weights = []
        for quality_id in ids:
            level = ctx.lookup_or_ghost(quality_id).level
            if level > 0:
                pool.append(quality_id)
                weights.append(min(level, cap))
        if not pool:
            return []
        p = np.array(weights, dtype=float)
        p /= p.sum()
        picks = ctx.rng.choice(len(pool), size=count, replace=True, p=p)
        return [pool[i] for i in picks]
    elif kind == "pick":
        if not ids:
            return []
        order = ctx.rng.permutation(len(ids))
        return [ids[i] for i in order[:count]]
    else:
        return ids[:count]


def _present(quality_id:str, prop:str, ctx:Any) -> str:
    if prop in ("id", ""):
        return quality_id
    quality = ctx.lookup_or_ghost(quality_id)
    template = prop if prop.startswith("$") or prop.startswith("{") else "$" + (prop if prop.startswith(".") else "." + prop)
    try:
        child = ctx.child(quality)
    except RecursionLimitExceeded as e:
        ctx.warn(str(e))
        return quality_id
    return to_text(ctx.evaluator.evaluate_logic(template, child))


def _collection(kind:str) -> MacroHandler:
    def handler(args:list[str], ctx:Any) -> Value:
        parsed = parse_collection_args(kind, args, ctx)
        if kind == "count":
            return len(candidates(parsed.category, parsed.filter, ctx))
        selected = select(kind, parsed, ctx)
        logger.debug(f'%{kind}[{parsed.category}] selected {selected}')
        if not selected:
            return config.Settings.Collections.EMPTY_TEXT
        return parsed.separator.join(_present(qid, parsed.prop, ctx) for qid in selected)
    return handler


# chance and choice

def random_macro(args:list[str], ctx:Any) -> Value:
    """ boolean check against the shared roll """
    if not args or not args[0]:
        return False
    chance = ctx.number(ctx.evaluator.evaluate_logic(args[0], ctx))
    options = [o.strip().lower() for a in args[1:] for o in a.split(",")]
    passed = challenge.resolve(chance, ctx.roll.value)
    return not passed if "invert" in options else passed


def chance_macro(args:list[str], ctx:Any) -> Value:
    return challenge.evaluate_challenge_field("; ".join(args), ctx)


def choice_macro(args:list[str], ctx:Any) -> Value:
    choices = [a for a in args if a]
    if not choices:
        return ""
    picked = choices[ctx.random_int(0, len(choices) - 1)]
    return ctx.evaluator.render_text(util.strip_quotes(picked), ctx)


def _effect_only(name:str) -> MacroHandler:
    def handler(args:list[str], ctx:Any) -> Value:
        if ctx.in_effect:
            return _raw(name, args)
        return ""
    return handler


def new_macro(args:list[str], ctx:Any) -> Value:
    if ctx.in_effect:
        return _raw("new", args)
    if not args:
        return ""
    return to_text(ctx.evaluator.evaluate_logic(args[0], ctx)).strip()


def default_registry() -> MacroRegistry:
    registry = MacroRegistry()
    registry.register_macro(random_macro, "random")
    registry.register_macro(chance_macro, "chance")
    registry.register_macro(choice_macro, "choice")
    for kind in COLLECTION_KINDS:
        registry.register_macro(_collection(kind), kind)
    for name in ("schedule", "reset", "update", "cancel"):
        registry.register_macro(_effect_only(name), name)
    registry.register_macro(new_macro, "new")
    return registry
