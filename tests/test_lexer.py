""" Tests for tokenizing logic and splitting prose into blocks. """

import pytest

from scribescript import lexer
from scribescript.core import ParseError
from scribescript.lexer import TokenType

def types(text):
    return [t.type for t in lexer.tokenize(text)]

def test_tokenize_comparison():
    tokens = lexer.tokenize("$gold >= 10")
    assert [t.type for t in tokens] == [TokenType.SIGIL, TokenType.IDENT, TokenType.COMPARE, TokenType.NUMBER, TokenType.EOF]
    assert tokens[1].value == "gold"
    assert tokens[2].value == ">="
    assert tokens[3].value == 10

def test_tokenize_operators():
    assert types("$a >> 5") == [TokenType.SIGIL, TokenType.IDENT, TokenType.CHALLENGE, TokenType.NUMBER, TokenType.EOF]
    assert types("a && !b || c") == [TokenType.IDENT, TokenType.AND, TokenType.NOT, TokenType.IDENT, TokenType.OR, TokenType.IDENT, TokenType.EOF]
    assert types("1 ~ 6") == [TokenType.NUMBER, TokenType.TILDE, TokenType.NUMBER, TokenType.EOF]
    assert types("$x = 1") == [TokenType.SIGIL, TokenType.IDENT, TokenType.ASSIGN, TokenType.NUMBER, TokenType.EOF]

def test_tokenize_numbers():
    tokens = lexer.tokenize("3 2.5")
    assert tokens[0].value == 3
    assert isinstance(tokens[0].value, int)
    assert tokens[1].value == 2.5

def test_tokenize_macro_and_percent():
    tokens = lexer.tokenize("%random[40]")
    assert [t.type for t in tokens] == [TokenType.MACRO, TokenType.BRACKET, TokenType.EOF]
    assert tokens[0].value == "random"
    assert tokens[1].value == "40"

    # a percent sign not followed by a name and bracket is postfix
    assert types("10 %") == [TokenType.NUMBER, TokenType.PERCENT, TokenType.EOF]
    assert types("10%") == [TokenType.NUMBER, TokenType.PERCENT, TokenType.EOF]

def test_tokenize_nested_blocks_are_raw():
    tokens = lexer.tokenize("{$a > {1 + 1}}")
    assert tokens[0].type == TokenType.BLOCK
    assert tokens[0].value == "$a > {1 + 1}"

def test_tokenize_strings():
    tokens = lexer.tokenize("'it, is' \"so\"")
    assert tokens[0].type == TokenType.STRING
    assert tokens[0].value == "it, is"
    assert tokens[1].value == "so"

    with pytest.raises(ParseError):
        lexer.tokenize("'unterminated")

def test_tokenize_spacing_and_position():
    tokens = lexer.tokenize("$ gold")
    assert not tokens[0].spaced
    assert tokens[1].spaced
    assert tokens[1].pos == 2

    tokens = lexer.tokenize("$gold", offset=10)
    assert tokens[0].pos == 10
    assert tokens[1].pos == 11

def test_tokenize_errors():
    with pytest.raises(ParseError):
        lexer.tokenize("$a ] 1")
    with pytest.raises(ParseError):
        lexer.tokenize("[unclosed")
    with pytest.raises(ParseError):
        lexer.tokenize("$a ? 1")

def test_split_template():
    assert lexer.split_template("Hello {$name}, {a | b}!") == [
        (False, "Hello ", 0),
        (True, "$name", 7),
        (False, ", ", 13),
        (True, "a | b", 16),
        (False, "!", 22),
    ]
    assert lexer.split_template("no blocks") == [(False, "no blocks", 0)]
    assert lexer.split_template("{outer {inner}}") == [(True, "outer {inner}", 1)]

def test_split_template_unbalanced():
    with pytest.raises(ParseError):
        lexer.split_template("{unclosed")
    with pytest.raises(ParseError):
        lexer.split_template("oops}")

def test_strip_comments():
    assert lexer.strip_comments("$x > 1 // check strength") == "$x > 1 "
    assert lexer.strip_comments("see http://example.com") == "see http://example.com"

def test_strip_ghost_blocks():
    assert lexer.strip_ghost_blocks("a{// a note {with braces}}b") == "ab"
    assert lexer.strip_ghost_blocks("a{$b}c") == "a{$b}c"
