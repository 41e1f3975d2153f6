""" Utility methods broadly applicable across the codebase. """

from __future__ import annotations

import math
from typing import Any, List, Optional

def fullname(o:Any) -> str:
    # from https://stackoverflow.com/a/2020083/553580
    # o.__module__ + "." + o.__class__.__qualname__ is an example in
    # this context of H.L. Mencken's "neat, plausible, and wrong."
    # Python makes no guarantees as to whether the __module__ special
    # attribute is defined, so we take a more circumspect approach.
    # Alas, the module name is explicitly excluded from __qualname__
    # in Python 3.

    if isinstance(o, type):
        klass = o
    else:
        klass = o.__class__

    module = klass.__module__
    if module is None or module == str.__class__.__module__:
        return klass.__qualname__  # Avoid reporting __builtin__
    else:
        return module + '.' + klass.__qualname__

def clip(x:float, min_x:float, max_x:float) -> float:
    return min_x if x < min_x else max_x if x > max_x else x

def lerp(a:float, b:float, t:float) -> float:
    return a + (b - a) * t

def round_half_up(x:float) -> int:
    return int(math.floor(x + 0.5))

def elipsis(string:str, max_length:int) -> str:
    if len(string) <= max_length:
        return string
    else:
        return string[:max_length-3] + "..."

OPENERS = {"{": "}", "[": "]", "(": ")"}
CLOSERS = {"}": "{", "]": "[", ")": "("}

def split_top_level(text:str, separator:str, maxsplit:int=-1, quotes:bool=False) -> List[str]:
    """ Splits text on separator, ignoring separators nested in brackets.

    Braces, square brackets and parens all count toward nesting. Unbalanced
    closers are tolerated (depth never goes below zero). If quotes is true,
    separators inside single or double quoted runs at the top level are also
    ignored.

    A single character separator "|" does not split "||".
    """

    parts:List[str] = []
    depth = 0
    quote:Optional[str] = None
    start = 0
    i = 0
    n = len(text)
    sep_len = len(separator)
    while i < n:
        c = text[i]
        if quote is not None:
            if c == quote:
                quote = None
            i += 1
            continue
        if quotes and depth == 0 and c in "\"'":
            quote = c
        elif c in OPENERS:
            depth += 1
        elif c in CLOSERS:
            if depth > 0:
                depth -= 1
        elif depth == 0 and text.startswith(separator, i):
            if separator == "|" and (text.startswith("||", i) or (i > 0 and text[i-1] == "|")):
                i += 2 if text.startswith("||", i) else 1
                continue
            if maxsplit < 0 or len(parts) < maxsplit:
                parts.append(text[start:i])
                i += sep_len
                start = i
                continue
        i += 1
    parts.append(text[start:])
    return parts

def find_top_level(text:str, target:str, start:int=0) -> int:
    """ Finds the first index of target at nesting depth zero, or -1. """
    depth = 0
    for i in range(start, len(text)):
        c = text[i]
        if c in OPENERS:
            depth += 1
        elif c in CLOSERS:
            if depth > 0:
                depth -= 1
        elif depth == 0 and text.startswith(target, i):
            return i
    return -1

def find_matching(text:str, open_index:int) -> int:
    """ Given the index of an opening bracket returns the index of its match.

    Returns -1 if the bracket is never closed. Only the bracket kind found at
    open_index is counted.
    """
    opener = text[open_index]
    closer = OPENERS[opener]
    depth = 0
    for i in range(open_index, len(text)):
        if text[i] == opener:
            depth += 1
        elif text[i] == closer:
            depth -= 1
            if depth == 0:
                return i
    return -1

def strip_quotes(text:str) -> str:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        return text[1:-1]
    return text
