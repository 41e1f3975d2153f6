""" ScribeScript syntax tree

Plain node classes produced by the parser and walked by the evaluator. Nodes
hold no evaluation logic; `Evaluator.evaluate` dispatches on node type.
"""

import abc
from typing import Optional, Sequence, Union

Primitive = Union[str, int, float, bool]


class Node(abc.ABC):
    pos:int = -1

    def __repr__(self) -> str:
        fields = ", ".join(f'{k}={v!r}' for k, v in self.__dict__.items() if k != "pos")
        return f'{self.__class__.__name__}({fields})'


# prose level

class Template(Node):
    """ A Prose field: literal runs interleaved with logic blocks. """
    def __init__(self, parts:Sequence[Node]) -> None:
        self.parts = list(parts)

class Text(Node):
    def __init__(self, text:str) -> None:
        self.text = text

class Block(Node):
    """ One `{ }` block in prose. raw is kept for degrading to literal. """
    def __init__(self, expr:Node, raw:str) -> None:
        self.expr = expr
        self.raw = raw

class Empty(Node):
    """ A ghost block (comment only) or an empty block. """
    def __init__(self) -> None:
        pass

class Literalized(Node):
    """ Block content that failed to parse as logic, rendered as prose. """
    def __init__(self, template:Template, message:str) -> None:
        self.template = template
        self.message = message


# flow

class AliasAssign(Node):
    def __init__(self, name:str, expr:Node) -> None:
        self.name = name
        self.expr = expr

class Conditional(Node):
    """ `c1 : t1 | c2 : t2 | default`. A None condition is the default. """
    def __init__(self, branches:Sequence[tuple[Optional[Node], Template]]) -> None:
        self.branches = list(branches)

class RandomChoice(Node):
    def __init__(self, options:Sequence[Template]) -> None:
        self.options = list(options)

class RandomRange(Node):
    def __init__(self, low:Node, high:Node) -> None:
        self.low = low
        self.high = high

class PercentRoll(Node):
    """ `N%`: true if the shared resolution roll is within chance. """
    def __init__(self, chance:Node) -> None:
        self.chance = chance

class Challenge(Node):
    def __init__(self, stat:Node, op:str, target:Node, modifiers:Sequence[tuple[Optional[str], Node]]=()) -> None:
        self.stat = stat
        self.op = op
        self.target = target
        # (name, value) pairs, name is None for positional modifiers
        self.modifiers = list(modifiers)


# values

class Literal(Node):
    def __init__(self, value:Primitive) -> None:
        self.value = value

class Word(Node):
    """ A bare identifier, read as text (e.g. a quality id or a keyword). """
    def __init__(self, text:str) -> None:
        self.text = text

class Reference(Node):
    """ `$id`, `@alias`, `#world`, `$.` (self) or `${expr}` with optional
    `[bracket]` argument and `.prop` chain. """
    def __init__(
            self,
            sigil:str,
            name:Optional[str]=None,
            dynamic:Optional[Node]=None,
            self_ref:bool=False,
            bracket:Optional[str]=None,
            props:Sequence[str]=(),
    ) -> None:
        self.sigil = sigil
        self.name = name
        self.dynamic = dynamic
        self.self_ref = self_ref
        self.bracket = bracket
        self.props = list(props)

class MacroCall(Node):
    def __init__(self, name:str, args:str, props:Sequence[str]=()) -> None:
        self.name = name
        # raw argument text, split and evaluated by the handler
        self.args = args
        self.props = list(props)

class Nested(Node):
    """ A `{ }` block used as a value inside logic.

    reparse is set for the double-brace form `{{ ... }}`: a string result is
    read again as logic. """
    def __init__(self, inner:Node, raw:str, reparse:bool=False) -> None:
        self.inner = inner
        self.raw = raw
        self.reparse = reparse


# operators

class Unary(Node):
    def __init__(self, op:str, operand:Node) -> None:
        self.op = op
        self.operand = operand

class Negation(Node):
    def __init__(self, inner:Node) -> None:
        self.inner = inner

class Disjunction(Node):
    def __init__(self, a:Node, b:Node) -> None:
        self.a = a
        self.b = b

class Conjunction(Node):
    def __init__(self, a:Node, b:Node) -> None:
        self.a = a
        self.b = b

class Comparison(Node):
    def __init__(self, left:Node, op:str, right:Node) -> None:
        self.left = left
        self.op = op
        self.right = right

class Arithmetic(Node):
    def __init__(self, left:Node, op:str, right:Node) -> None:
        self.left = left
        self.op = op
        self.right = right
