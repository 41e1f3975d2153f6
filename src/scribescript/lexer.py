""" ScribeScript tokenizer

Two entry points: `split_template` cuts a Prose field into literal text and
raw `{ }` block contents, `tokenize` turns Logic text into a token stream.
Nested blocks and `[ ]` argument lists are kept as single raw tokens; the
parser decides how to read them.
"""

import re
import enum
import logging
from typing import Union

from scribescript import util
from scribescript.core import ParseError

logger = logging.getLogger(__name__)

NUMBER_RE = re.compile(r"[0-9]+(?:\.[0-9]+)?")
IDENT_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
WHITESPACE_RE = re.compile(r"\s+")
# a line comment, unless it is the tail of a url ("http://")
LINE_COMMENT_RE = re.compile(r"(?<!:)//[^\n]*")


class TokenType(enum.Enum):
    NUMBER = enum.auto()
    STRING = enum.auto()
    IDENT = enum.auto()
    SIGIL = enum.auto()
    DOT = enum.auto()
    BRACKET = enum.auto()
    MACRO = enum.auto()
    BLOCK = enum.auto()
    LPAREN = enum.auto()
    RPAREN = enum.auto()
    COMPARE = enum.auto()
    CHALLENGE = enum.auto()
    AND = enum.auto()
    OR = enum.auto()
    NOT = enum.auto()
    PLUS = enum.auto()
    MINUS = enum.auto()
    STAR = enum.auto()
    SLASH = enum.auto()
    PERCENT = enum.auto()
    TILDE = enum.auto()
    COLON = enum.auto()
    SEMI = enum.auto()
    COMMA = enum.auto()
    PIPE = enum.auto()
    ASSIGN = enum.auto()
    EOF = enum.auto()


class Token:
    __slots__ = ("type", "value", "pos", "spaced")

    def __init__(self, token_type:TokenType, value:Union[str, float, int], pos:int, spaced:bool=False) -> None:
        self.type = token_type
        self.value = value
        self.pos = pos
        # preceded by whitespace
        self.spaced = spaced

    def __eq__(self, other:object) -> bool:
        if not isinstance(other, Token):
            return NotImplemented
        return self.type == other.type and self.value == other.value

    def __repr__(self) -> str:
        return f'Token({self.type.name}, {self.value!r}@{self.pos})'


TWO_CHAR_OPS = {
    ">>": TokenType.CHALLENGE,
    "<<": TokenType.CHALLENGE,
    "><": TokenType.CHALLENGE,
    "<>": TokenType.CHALLENGE,
    ">=": TokenType.COMPARE,
    "<=": TokenType.COMPARE,
    "==": TokenType.COMPARE,
    "!=": TokenType.COMPARE,
    "&&": TokenType.AND,
    "||": TokenType.OR,
}

ONE_CHAR_OPS = {
    ">": TokenType.COMPARE,
    "<": TokenType.COMPARE,
    "!": TokenType.NOT,
    "+": TokenType.PLUS,
    "-": TokenType.MINUS,
    "*": TokenType.STAR,
    "/": TokenType.SLASH,
    "~": TokenType.TILDE,
    ":": TokenType.COLON,
    ";": TokenType.SEMI,
    ",": TokenType.COMMA,
    "|": TokenType.PIPE,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    ".": TokenType.DOT,
}


def strip_comments(text:str) -> str:
    """ Drops `// ...` line comments. """
    return LINE_COMMENT_RE.sub("", text)


def strip_ghost_blocks(text:str) -> str:
    """ Removes `{// ...}` blocks, respecting braces nested in them. """
    if "{//" not in text:
        return text
    out = []
    i = 0
    n = len(text)
    while i < n:
        if text.startswith("{//", i):
            end = util.find_matching(text, i)
            if end < 0:
                # unterminated comment swallows the rest of the field
                break
            i = end + 1
            continue
        out.append(text[i])
        i += 1
    return "".join(out)


def split_template(text:str) -> list[tuple[bool, str, int]]:
    """ Splits a Prose field into (is_block, text, position) segments.

    Literal runs are returned verbatim. Block segments hold the content
    between the outermost braces. Raises ParseError on unbalanced braces.
    """

    segments:list[tuple[bool, str, int]] = []
    i = 0
    literal_start = 0
    n = len(text)
    while i < n:
        c = text[i]
        if c == "{":
            end = util.find_matching(text, i)
            if end < 0:
                raise ParseError("unclosed '{'", i)
            if i > literal_start:
                segments.append((False, text[literal_start:i], literal_start))
            segments.append((True, text[i+1:end], i+1))
            i = end + 1
            literal_start = i
        elif c == "}":
            raise ParseError("unexpected '}'", i)
        else:
            i += 1
    if literal_start < n:
        segments.append((False, text[literal_start:], literal_start))
    return segments


def _scan_quoted(text:str, pos:int) -> tuple[str, int]:
    quote = text[pos]
    end = text.find(quote, pos+1)
    if end < 0:
        raise ParseError(f'unterminated string starting with {quote}', pos)
    return text[pos+1:end], end+1


def _scan_enclosed(text:str, pos:int) -> tuple[str, int]:
    end = util.find_matching(text, pos)
    if end < 0:
        raise ParseError(f"unclosed '{text[pos]}'", pos)
    return text[pos+1:end], end+1


def tokenize(text:str, offset:int=0) -> list[Token]:
    """ Tokenizes Logic text. Always ends with an EOF token. """

    tokens:list[Token] = []
    pos = 0
    n = len(text)
    spaced = False
    while pos < n:
        m = WHITESPACE_RE.match(text, pos)
        if m:
            pos = m.end()
            spaced = True
            continue

        if text.startswith("//", pos):
            eol = text.find("\n", pos)
            pos = n if eol < 0 else eol
            continue

        c = text[pos]
        start = pos + offset

        m = NUMBER_RE.match(text, pos)
        if m:
            raw = m.group(0)
            value:Union[int, float] = float(raw) if "." in raw else int(raw)
            tokens.append(Token(TokenType.NUMBER, value, start, spaced))
            pos = m.end()
        elif c in "\"'":
            s, pos = _scan_quoted(text, pos)
            tokens.append(Token(TokenType.STRING, s, start, spaced))
        elif c in "$@#":
            tokens.append(Token(TokenType.SIGIL, c, start, spaced))
            pos += 1
        elif c == "{":
            s, pos = _scan_enclosed(text, pos)
            tokens.append(Token(TokenType.BLOCK, s, start, spaced))
        elif c == "[":
            s, pos = _scan_enclosed(text, pos)
            tokens.append(Token(TokenType.BRACKET, s, start, spaced))
        elif c == "}" or c == "]":
            raise ParseError(f"unexpected '{c}'", start)
        elif c == "%":
            m = IDENT_RE.match(text, pos+1)
            if m and m.end() < n and text[m.end()] == "[":
                tokens.append(Token(TokenType.MACRO, m.group(0).lower(), start, spaced))
                pos = m.end()
            else:
                tokens.append(Token(TokenType.PERCENT, "%", start, spaced))
                pos += 1
        elif text[pos:pos+2] in TWO_CHAR_OPS:
            op = text[pos:pos+2]
            tokens.append(Token(TWO_CHAR_OPS[op], op, start, spaced))
            pos += 2
        elif c == "=":
            # a lone "=" compares inside conditions, assigns at alias heads
            tokens.append(Token(TokenType.ASSIGN, "=", start, spaced))
            pos += 1
        elif c in ONE_CHAR_OPS:
            tokens.append(Token(ONE_CHAR_OPS[c], c, start, spaced))
            pos += 1
        else:
            m = IDENT_RE.match(text, pos)
            if not m:
                raise ParseError(f'unexpected character {c!r}', start)
            tokens.append(Token(TokenType.IDENT, m.group(0), start, spaced))
            pos = m.end()
        spaced = False

    tokens.append(Token(TokenType.EOF, "", n + offset, spaced))
    return tokens
