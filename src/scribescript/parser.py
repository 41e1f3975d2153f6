""" ScribeScript parsing

Prose fields become a `Template` of literal text and blocks. Each block is
read, in order, as a ghost block, an alias assignment, a conditional chain,
a random choice, or a Logic expression. Block content that is not valid
Logic degrades to prose.
"""

import re
import logging
from typing import Optional

from scribescript import util, nodes
from scribescript.core import ParseError
from scribescript.lexer import Token, TokenType, tokenize, split_template, strip_comments, strip_ghost_blocks

logger = logging.getLogger(__name__)

ALIAS_RE = re.compile(r"^@([a-zA-Z_][a-zA-Z0-9_]*)\s*=(?!=)\s*(.*)$", re.DOTALL)

# EXPRESSION := OR [CHALLENGE_OP OR [";" MODIFIERS] | "~" OR]
# OR := AND ("||" AND)*
# AND := NOT ("&&" NOT)*
# NOT := "!" NOT | COMPARISON
# COMPARISON := ADDITIVE [("==" | "!=" | ">" | "<" | ">=" | "<=" | "=") ADDITIVE]
# ADDITIVE := TERM (("+" | "-") TERM)*
# TERM := UNARY (("*" | "/") UNARY)*
# UNARY := "-" UNARY | PRIMARY ["%"]
# PRIMARY := NUMBER | STRING | IDENT | REF | MACRO BRACKET PROPS | "(" EXPRESSION ")" | BLOCK
# REF := SIGIL (IDENT | "." | BLOCK) [BRACKET] PROPS
# PROPS := ("." IDENT)*
# MODIFIERS := MODIFIER ("," MODIFIER)*
# MODIFIER := [IDENT ":"] OR


class ExpressionParser:
    """ Recursive descent over a token list for one Logic expression. """

    def __init__(self, text:str, offset:int=0) -> None:
        self.text = text
        self.tokens = tokenize(text, offset)
        self.i = 0

    def peek(self, ahead:int=0) -> Token:
        j = min(self.i + ahead, len(self.tokens) - 1)
        return self.tokens[j]

    def advance(self) -> Token:
        t = self.tokens[self.i]
        if t.type != TokenType.EOF:
            self.i += 1
        return t

    def accept(self, token_type:TokenType) -> Optional[Token]:
        if self.peek().type == token_type:
            return self.advance()
        return None

    def expect(self, token_type:TokenType) -> Token:
        t = self.peek()
        if t.type != token_type:
            raise ParseError(f'expected {token_type.name.lower()} got {t.value!r}', t.pos)
        return self.advance()

    def parse(self) -> nodes.Node:
        if self.peek().type == TokenType.EOF:
            raise ParseError("empty expression", self.peek().pos)
        node = self.parse_expression()
        t = self.peek()
        if t.type != TokenType.EOF:
            raise ParseError(f'unexpected {t.value!r}', t.pos)
        return node

    def parse_expression(self) -> nodes.Node:
        left = self.parse_or()
        t = self.peek()
        if t.type == TokenType.CHALLENGE:
            self.advance()
            target = self.parse_or()
            modifiers:list[tuple[Optional[str], nodes.Node]] = []
            if self.accept(TokenType.SEMI):
                modifiers = self.parse_modifiers()
            node:nodes.Node = nodes.Challenge(left, str(t.value), target, modifiers)
            node.pos = t.pos
            return node
        elif t.type == TokenType.TILDE:
            self.advance()
            node = nodes.RandomRange(left, self.parse_or())
            node.pos = t.pos
            return node
        return left

    def parse_modifiers(self) -> list[tuple[Optional[str], nodes.Node]]:
        modifiers:list[tuple[Optional[str], nodes.Node]] = []
        while True:
            if self.peek().type == TokenType.IDENT and self.peek(1).type == TokenType.COLON:
                name = str(self.advance().value).lower()
                self.advance()
                modifiers.append((name, self.parse_or()))
            else:
                modifiers.append((None, self.parse_or()))
            if not self.accept(TokenType.COMMA):
                break
        return modifiers

    def parse_or(self) -> nodes.Node:
        node = self.parse_and()
        while self.accept(TokenType.OR):
            node = nodes.Disjunction(node, self.parse_and())
        return node

    def parse_and(self) -> nodes.Node:
        node = self.parse_not()
        while self.accept(TokenType.AND):
            node = nodes.Conjunction(node, self.parse_not())
        return node

    def parse_not(self) -> nodes.Node:
        if self.accept(TokenType.NOT):
            return nodes.Negation(self.parse_not())
        return self.parse_comparison()

    def parse_comparison(self) -> nodes.Node:
        left = self.parse_additive()
        t = self.peek()
        if t.type == TokenType.COMPARE or t.type == TokenType.ASSIGN:
            self.advance()
            op = "==" if t.value == "=" else str(t.value)
            node = nodes.Comparison(left, op, self.parse_additive())
            node.pos = t.pos
            return node
        return left

    def parse_additive(self) -> nodes.Node:
        node = self.parse_term()
        while self.peek().type in (TokenType.PLUS, TokenType.MINUS):
            op = str(self.advance().value)
            node = nodes.Arithmetic(node, op, self.parse_term())
        return node

    def parse_term(self) -> nodes.Node:
        node = self.parse_unary()
        while self.peek().type in (TokenType.STAR, TokenType.SLASH):
            op = str(self.advance().value)
            node = nodes.Arithmetic(node, op, self.parse_unary())
        return node

    def parse_unary(self) -> nodes.Node:
        if self.accept(TokenType.MINUS):
            return nodes.Unary("-", self.parse_unary())
        node = self.parse_primary()
        if self.peek().type == TokenType.PERCENT:
            t = self.advance()
            node = nodes.PercentRoll(node)
            node.pos = t.pos
        return node

    def parse_primary(self) -> nodes.Node:
        t = self.advance()
        node:nodes.Node
        if t.type == TokenType.NUMBER:
            node = nodes.Literal(t.value)
        elif t.type == TokenType.STRING:
            node = nodes.Literal(str(t.value))
        elif t.type == TokenType.IDENT:
            word = str(t.value)
            if word.lower() == "true":
                node = nodes.Literal(True)
            elif word.lower() == "false":
                node = nodes.Literal(False)
            else:
                node = nodes.Word(word)
        elif t.type == TokenType.LPAREN:
            node = self.parse_expression()
            self.expect(TokenType.RPAREN)
        elif t.type == TokenType.BLOCK:
            node = parse_nested(str(t.value))
        elif t.type == TokenType.MACRO:
            args = self.peek()
            if args.type != TokenType.BRACKET or args.spaced:
                raise ParseError(f'macro %{t.value} needs an argument list', t.pos)
            self.advance()
            node = nodes.MacroCall(str(t.value), str(args.value), self.parse_props())
        elif t.type == TokenType.SIGIL:
            node = self.parse_reference(str(t.value), t)
        else:
            raise ParseError(f'unexpected {t.value!r}', t.pos)
        node.pos = t.pos
        return node

    def parse_reference(self, sigil:str, sigil_token:Token) -> nodes.Reference:
        t = self.peek()
        if t.spaced:
            raise ParseError(f'dangling {sigil}', sigil_token.pos)

        name:Optional[str] = None
        dynamic:Optional[nodes.Node] = None
        self_ref = False
        props:list[str] = []
        if t.type == TokenType.DOT and sigil == "$":
            # "$." is the self reference, "$.name" reads a property of it
            self.advance()
            self_ref = True
            nxt = self.peek()
            if nxt.type == TokenType.IDENT and not nxt.spaced:
                props.append(str(self.advance().value))
        elif t.type == TokenType.IDENT:
            name = str(self.advance().value)
        elif t.type == TokenType.NUMBER and not isinstance(t.value, float):
            # ids may start with a digit
            name = str(self.advance().value)
            nxt = self.peek()
            if nxt.type == TokenType.IDENT and not nxt.spaced:
                name += str(self.advance().value)
        elif t.type == TokenType.BLOCK:
            self.advance()
            dynamic = parse_nested(str(t.value))
        else:
            raise ParseError(f'bad reference after {sigil}', sigil_token.pos)

        bracket:Optional[str] = None
        nxt = self.peek()
        if nxt.type == TokenType.BRACKET and not nxt.spaced:
            bracket = str(self.advance().value)

        props.extend(self.parse_props())
        return nodes.Reference(sigil, name, dynamic, self_ref, bracket, props)

    def parse_props(self) -> list[str]:
        props:list[str] = []
        while self.peek().type == TokenType.DOT and not self.peek().spaced:
            nxt = self.peek(1)
            if nxt.type != TokenType.IDENT or nxt.spaced:
                raise ParseError("expected property name after '.'", self.peek().pos)
            self.advance()
            props.append(str(self.advance().value))
        return props


def parse_expression(text:str, offset:int=0) -> nodes.Node:
    """ Parses one Logic expression, raising ParseError on bad syntax. """
    return ExpressionParser(strip_comments(text), offset).parse()


def parse_nested(raw:str) -> nodes.Nested:
    """ A block used as a value inside logic. """
    return nodes.Nested(parse_block(raw), raw)


def _condition_colon(branch:str) -> int:
    """ Index of the colon separating condition from result, or -1.

    A colon after a top-level ";" belongs to challenge modifiers and does not
    start a result.
    """
    if util.strip_quotes(branch) != branch.strip():
        # a fully quoted result is always a default
        return -1
    colon = util.find_top_level(branch, ":")
    if colon < 0:
        return -1
    semi = util.find_top_level(branch, ";")
    if 0 <= semi < colon:
        return -1
    # "http://" style text is not a condition
    if branch.startswith("//", colon+1):
        return -1
    return colon


def _result_template(text:str) -> nodes.Template:
    return parse_template(util.strip_quotes(text.strip()))


def parse_block(content:str, offset:int=0) -> nodes.Node:
    """ Parses the inside of one `{ }` block. """

    clean = strip_comments(content).strip()
    if not clean:
        return nodes.Empty()

    if clean[0] == "{" and util.find_matching(clean, 0) == len(clean) - 1:
        # "{{ x }}": x is evaluated, then a text result is read again as logic
        return nodes.Nested(parse_block(clean[1:-1]), clean[1:-1], reparse=True)

    m = ALIAS_RE.match(clean)
    if m:
        return nodes.AliasAssign(m.group(1), parse_value(m.group(2)))

    branches = util.split_top_level(clean, "|")
    colons = [_condition_colon(b) for b in branches]
    if any(c >= 0 for c in colons):
        chain:list[tuple[Optional[nodes.Node], nodes.Template]] = []
        for branch, colon in zip(branches, colons):
            if colon < 0:
                chain.append((None, _result_template(branch)))
            else:
                chain.append((parse_expression(branch[:colon]), _result_template(branch[colon+1:])))
        return nodes.Conditional(chain)

    if len(branches) > 1:
        return nodes.RandomChoice([_result_template(b) for b in branches])

    try:
        return parse_expression(clean, offset)
    except ParseError as e:
        logger.debug(f'block "{util.elipsis(clean, 40)}" is not logic ({e}), reading as prose')
        return nodes.Literalized(parse_template(clean), str(e))


def parse_value(text:str) -> nodes.Node:
    """ An assignment right hand side: logic if it parses, prose otherwise. """
    text = text.strip()
    if not text:
        return nodes.Literal("")
    try:
        return parse_expression(text)
    except ParseError:
        return parse_template(util.strip_quotes(text))


def parse_template(text:str) -> nodes.Template:
    """ Parses a Prose field.

    Raises ParseError only for unbalanced braces; block content that is not
    valid logic is kept as prose.
    """

    text = strip_ghost_blocks(text)
    parts:list[nodes.Node] = []
    for is_block, segment, pos in split_template(text):
        if not is_block:
            part:nodes.Node = nodes.Text(segment)
        else:
            try:
                inner = parse_block(segment, pos)
            except ParseError as e:
                inner = nodes.Literalized(nodes.Template([nodes.Text(segment)]), str(e))
            part = nodes.Block(inner, segment)
        part.pos = pos
        parts.append(part)
    return nodes.Template(parts)
