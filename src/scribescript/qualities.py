""" Quality arithmetic

Pyramidal change points, item source tagging and pruning, and applying one
operator to one quality. Callers take care of state lookup, definitions and
reporting.
"""

import math
import logging
from typing import Optional, MutableSequence, Union

from scribescript.core import Quality, QualityType, SourceEntry, TypeMismatch, to_number, to_text

logger = logging.getLogger(__name__)

NUMERIC_OPS = ("+=", "-=", "=", "*=", "/=")


def pyramidal_level(change_points:int) -> int:
    """ level for cumulative change points, level n needs n*(n+1)/2 CP """
    if change_points <= 0:
        return 0
    return (math.isqrt(8 * change_points + 1) - 1) // 2


def triangular(level:int) -> int:
    """ change points at the start of level """
    if level <= 0:
        return 0
    return level * (level + 1) // 2


def add_source(sources:MutableSequence[SourceEntry], tag:str, count:int) -> None:
    """ Records count units from tag. Merging moves the entry to the most
    recent position. """
    if count <= 0:
        return
    for i, entry in enumerate(sources):
        if entry.tag == tag:
            del sources[i]
            entry.count += count
            sources.append(entry)
            return
    sources.append(SourceEntry(tag, count))


def prune_sources(sources:MutableSequence[SourceEntry], amount:int) -> int:
    """ Removes amount units from tagged sources.

    Duplicates go first: the group with the highest count is drained to a
    single unit before the next one, equal counts take the older entry first.
    Only then are single-unit tags removed, oldest first.

    returns the units that could not be removed (sources ran out)
    """

    while amount > 0:
        top:Optional[SourceEntry] = None
        for entry in sources:
            if entry.count > 1 and (top is None or entry.count > top.count):
                top = entry
        if top is None:
            break
        take = min(amount, top.count - 1)
        top.count -= take
        amount -= take

    while amount > 0 and sources:
        oldest = sources[0]
        take = min(amount, oldest.count)
        oldest.count -= take
        amount -= take
        if oldest.count == 0:
            del sources[0]

    return amount


def consume_source(quality:Quality) -> Optional[str]:
    """ Takes one unit off the most recent source and returns its tag.

    The level is untouched, the unit becomes unsourced.
    """
    if not quality.sources:
        return None
    entry = quality.sources[-1]
    entry.count -= 1
    if entry.count <= 0:
        quality.sources.pop()
    return entry.tag


def spend(quality:Quality, amount:int, unsourced:int) -> None:
    """ Accounts for amount units leaving a source tracking quality whose
    unsourced bucket held unsourced units before the change. """
    from_tags = max(0, amount - unsourced)
    if from_tags > 0:
        left = prune_sources(quality.sources, from_tags)
        if left > 0:
            logger.debug(f'{quality.quality_id} spent {left} more than its tagged sources held')


def _apply_op(current:Union[int, float], op:str, amount:Union[int, float]) -> Union[int, float]:
    if op == "+=":
        return current + amount
    elif op == "-=":
        return current - amount
    elif op == "=":
        return amount
    elif op == "*=":
        return current * amount
    elif op == "/=":
        if amount == 0:
            raise TypeMismatch("division by zero")
        return current / amount
    else:
        raise ValueError(f'unknown operator {op}')


def normalize_op(op:str, value:Union[str, int, float, bool, None]) -> tuple[str, Union[str, int, float, bool]]:
    """ `++` and `--` are `+= 1` and `-= 1` """
    if op == "++":
        return "+=", 1
    elif op == "--":
        return "-=", 1
    if value is None:
        raise ValueError(f'operator {op} needs a value')
    return op, value


def change_quality(
        quality:Quality,
        op:str,
        value:Union[str, int, float, bool],
        max_level:Optional[int]=None,
        source:Optional[str]=None,
        grind_cap:Optional[int]=None,
) -> bool:
    """ Applies op with value to quality in place.

    Pyramidal `+=`/`-=` work on change points, every other numeric operator
    sets the level and re-baselines change points to that level. Levels and
    change points never go below zero and never above max_level.

    A `+=` on a quality already at grind_cap does nothing. Returns whether
    the change applied.

    Raises TypeMismatch for numeric operators on String qualities, or a
    non-numeric value for a numeric quality.
    """

    if quality.type == QualityType.STRING:
        if op != "=":
            raise TypeMismatch(f'{op} is not supported on string quality {quality.quality_id}')
        quality.string_value = to_text(value)
        return True

    if isinstance(value, str):
        value = to_number(value)
    amount = float(value) if isinstance(value, float) else int(value)

    if op == "+=" and grind_cap is not None and quality.level >= grind_cap:
        logger.debug(f'{quality.quality_id} is at its grind cap {grind_cap}')
        return False

    level_before = quality.level
    unsourced_before = quality.unsourced

    if quality.type == QualityType.PYRAMIDAL and op in ("+=", "-="):
        # a level set from outside without its change points
        baseline = max(quality.change_points, triangular(level_before))
        cp = int(_apply_op(baseline, op, amount))
        quality.change_points = max(0, cp)
        quality.level = pyramidal_level(quality.change_points)
        if max_level is not None and quality.level > max_level:
            quality.level = max(0, max_level)
            quality.change_points = triangular(quality.level)
    else:
        level = int(_apply_op(quality.level, op, amount))
        level = max(0, level)
        if max_level is not None:
            level = min(level, max(0, max_level))
        quality.level = level
        if quality.type == QualityType.PYRAMIDAL:
            quality.change_points = triangular(level)

    if quality.type.tracks_sources:
        if quality.level == 0:
            quality.sources.clear()
        elif quality.level < level_before:
            spend(quality, level_before - quality.level, unsourced_before)
        elif quality.level > level_before and source:
            add_source(quality.sources, source, quality.level - level_before)
    return True
