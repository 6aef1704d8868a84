"""Lexer - splits tag bodies into classified tokens.

Each token carries its kind, its text, the whitespace that followed it and the
source line it started on. Whitespace never becomes a token of its own.

Kinds are either a ``TokenKind`` (names, variables, numbers, strings, comments)
or the literal operator/punctuation text (``"=="``, ``"("``, ``"and"``).
Operators are grouped into ``OpClass`` sets so the expression parser can ask
"is this a binary operator?" instead of listing every literal.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Callable, NamedTuple, Union

from tagl.exceptions import UnexpectedTokenError


class TokenKind(Enum):
    """Concrete lexical categories."""

    NAME = "name"
    VARIABLE = "variable"
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    COMMENT = "comment"


class OpClass(Enum):
    """Named groups of token kinds."""

    STRING = "string"
    UNARY = "unary"
    BINARY = "binary"
    EQUALS = "equals"
    SCALAR = "scalar"
    INCDEC = "incdec"
    BOOLEAN = "boolean"
    MATH = "math"
    COND = "cond"


Kind = Union[TokenKind, str]
Expect = Union[TokenKind, OpClass, str]


class Token(NamedTuple):
    kind: Kind
    text: str
    whitespace: str
    line: int


OPERATOR_CLASSES: dict[OpClass, frozenset] = {
    OpClass.STRING: frozenset({TokenKind.NAME}),
    OpClass.UNARY: frozenset({"!", "~", "-"}),
    OpClass.BINARY: frozenset(
        {
            "&&", "||", "and", "or", "xor",
            "==", "===", "!=", "!==", "<>", ">=", "<=", ">", "<",
            "<<", ">>", "+", "-", "*", "/", "%", "^", "&",
        }
    ),
    OpClass.BOOLEAN: frozenset({"&&", "||", "and", "or", "xor"}),
    OpClass.MATH: frozenset({"+", "-", "*", "/", "%", "^", "&", "|"}),
    OpClass.COND: frozenset({"==", "===", "!=", "!==", "<>", ">=", "<=", ">", "<"}),
    OpClass.EQUALS: frozenset(
        {"=", "+=", "-=", "*=", "/=", "%=", ".=", "&=", "|=", "^=", "<<=", ">>="}
    ),
    OpClass.SCALAR: frozenset({TokenKind.INTEGER, TokenKind.FLOAT, TokenKind.STRING}),
    OpClass.INCDEC: frozenset({"++", "--"}),
}

# kind -> classes it belongs to
_KIND_CLASSES: dict[Kind, frozenset[OpClass]] = {}
for _cls, _kinds in OPERATOR_CLASSES.items():
    for _kind in _kinds:
        _KIND_CLASSES[_kind] = _KIND_CLASSES.get(_kind, frozenset()) | {_cls}

_WORD_OPERATORS = frozenset({"and", "or", "xor"})

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    | (?P<comment>/\*.*?\*/)
    | (?P<variable>\$[A-Za-z_][A-Za-z0-9_]*)
    | (?P<float>\d+\.\d+(?:[eE][-+]?\d+)?|\d+[eE][-+]?\d+)
    | (?P<integer>\d+)
    | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
    | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<op>===|!==|<<=|>>=|==|!=|<>|>=|<=|&&|\|\||\+\+|--|\+=|-=|\*=|/=|%=|\.=|&=|\|=|\^=|->|=>|<<|>>)
    | (?P<char>.)
    """,
    re.VERBOSE | re.DOTALL,
)

_GROUP_KINDS = {
    "comment": TokenKind.COMMENT,
    "variable": TokenKind.VARIABLE,
    "float": TokenKind.FLOAT,
    "integer": TokenKind.INTEGER,
    "string": TokenKind.STRING,
    "name": TokenKind.NAME,
}


def tokenize(text: str, line: int = 1) -> list[Token]:
    """Split text into tokens, folding whitespace into the preceding token.

    Args:
        text: Tag body or expression source.
        line: Line number of the first character.

    Returns:
        Tokens in source order.
    """
    tokens: list[Token] = []
    for match in _TOKEN_RE.finditer(text):
        group = match.lastgroup
        value = match.group()
        if group == "ws":
            if tokens:
                last = tokens[-1]
                tokens[-1] = last._replace(whitespace=last.whitespace + value)
            line += value.count("\n")
            continue

        kind: Kind
        if group == "name" and value.lower() in _WORD_OPERATORS:
            kind = value.lower()
        elif group in _GROUP_KINDS:
            kind = _GROUP_KINDS[group]
        else:
            kind = value
        tokens.append(Token(kind, value, "", line))
        line += value.count("\n")
    return tokens


def classes_of(token: Token) -> frozenset[OpClass]:
    """Return the operator classes a token belongs to."""
    return _KIND_CLASSES.get(token.kind, frozenset())


def matches(token: Token | None, expects: tuple[Expect, ...]) -> bool:
    """Check whether a token is one of the given kinds or operator classes."""
    if token is None:
        return False
    for expect in expects:
        if isinstance(expect, OpClass):
            if expect in classes_of(token):
                return True
        elif token.kind == expect:
            return True
    return False


class TokenStream:
    """Token sequence with a cursor.

    The cursor may sit one past the last token; that position is the end of
    the stream and ``curr()`` returns None there.
    """

    def __init__(self, text: str, line: int = 1):
        self.tokens: list[Token] = tokenize(text, line)
        self.pos = 0
        self._last_line = self.tokens[-1].line if self.tokens else line
        self._views: dict[str, Token | None] = {}

    def __len__(self) -> int:
        return len(self.tokens)

    # -- neighbour views ------------------------------------------------

    def _view(self, key: str, index: int) -> Token | None:
        if key not in self._views:
            in_range = 0 <= index < len(self.tokens)
            self._views[key] = self.tokens[index] if in_range else None
        return self._views[key]

    def prev(self) -> Token | None:
        return self._view("prev", self.pos - 1)

    def curr(self) -> Token | None:
        return self._view("curr", self.pos)

    def peek(self) -> Token | None:
        return self._view("next", self.pos + 1)

    def valid(self) -> bool:
        return self.curr() is not None

    @property
    def text(self) -> str | None:
        token = self.curr()
        return token.text if token else None

    @property
    def whitespace(self) -> str:
        token = self.curr()
        return token.whitespace if token else ""

    @property
    def line(self) -> int:
        token = self.curr()
        return token.line if token else self._last_line

    # -- movement -------------------------------------------------------

    def advance(self) -> "TokenStream":
        if self.pos < len(self.tokens):
            self.pos += 1
            self._views.clear()
        return self

    def back(self) -> "TokenStream":
        if self.pos > 0:
            self.pos -= 1
            self._views.clear()
        return self

    def end(self) -> "TokenStream":
        self.pos = len(self.tokens)
        self._views.clear()
        return self

    # -- predicates -----------------------------------------------------

    def at(self, *kinds: Expect) -> bool:
        return matches(self.curr(), kinds)

    def next_is(self, *kinds: Expect) -> bool:
        return matches(self.peek(), kinds)

    def prev_is(self, *kinds: Expect) -> bool:
        return matches(self.prev(), kinds)

    def at_word(self, *words: str) -> bool:
        """Check whether the current token is a name spelled as one of words."""
        token = self.curr()
        return (
            token is not None
            and token.kind is TokenKind.NAME
            and token.text.lower() in words
        )

    # -- assertive steps ------------------------------------------------

    def expect(self, *kinds: Expect) -> "TokenStream":
        """Advance, then require the new current token to match kinds."""
        self.advance()
        if not self.valid() or (kinds and not self.at(*kinds)):
            raise self.error(*kinds)
        return self

    def get_next(self, *kinds: Expect) -> str:
        """Advance to a token matching kinds and return its text."""
        self.expect(*kinds)
        return self.curr().text  # type: ignore[union-attr]

    def need(self, *kinds: Expect) -> "TokenStream":
        if not self.at(*kinds):
            raise self.error(*kinds)
        return self

    def get(self, *kinds: Expect) -> str:
        """Return the current token's text, requiring it to match kinds."""
        self.need(*kinds)
        return self.curr().text  # type: ignore[union-attr]

    def skip(self, *kinds: Expect) -> "TokenStream":
        """Advance past the current token, requiring it to match kinds if given."""
        if kinds:
            self.need(*kinds)
        elif not self.valid():
            raise self.error()
        return self.advance()

    def skip_if(self, *kinds: Expect) -> bool:
        """Advance only when the current token matches kinds."""
        if self.at(*kinds):
            self.advance()
            return True
        return False

    def get_and_advance(self) -> str:
        token = self.curr()
        if token is None:
            raise self.error()
        self.advance()
        return token.text

    def collect_until(self, *kinds: Expect) -> str:
        """Concatenate token text up to (not including) a token matching kinds."""
        parts = []
        while self.valid() and not self.at(*kinds):
            token = self.curr()
            parts.append(token.text + token.whitespace)  # type: ignore[union-attr]
            self.advance()
        return "".join(parts)

    # -- mutation -------------------------------------------------------

    def filter(self, predicate: Callable[[Token], bool]) -> "TokenStream":
        """Keep only the tokens the predicate accepts."""
        self.tokens = [token for token in self.tokens if predicate(token)]
        self.pos = min(self.pos, len(self.tokens))
        self._views.clear()
        return self

    def text_from(self, offset: int) -> str:
        return "".join(t.text + t.whitespace for t in self.tokens[offset:])

    def splice(self, offset: int, text: str) -> "TokenStream":
        """Re-lex everything from offset with text appended to it.

        The cursor is moved back to offset if it was past it.
        """
        if offset < len(self.tokens):
            line = self.tokens[offset].line
        else:
            line = self._last_line
        code = self.text_from(offset) + text
        if self.pos > offset:
            self.pos = offset
        self.tokens = self.tokens[:offset] + tokenize(code, line)
        if self.tokens:
            self._last_line = self.tokens[-1].line
        self._views.clear()
        return self

    # -- diagnostics ----------------------------------------------------

    def describe(self, *expected: Expect, where: str = "expression") -> str:
        """Human-readable description of the current token for error messages."""
        expect = ""
        if len(expected) == 1 and isinstance(expected[0], str):
            expect = f", expect '{expected[0]}'"
        token = self.curr()
        if token is None:
            return f"Unexpected end of {where}{expect}"
        if token.text == "\n":
            return f"Unexpected new line{expect}"
        if token.text.isspace():
            return f"Unexpected whitespace{expect}"
        return f"Unexpected token '{token.text}' in {where}{expect}"

    def error(self, *expected: Expect, where: str = "expression") -> UnexpectedTokenError:
        single = expected[0] if len(expected) == 1 and isinstance(expected[0], str) else None
        return UnexpectedTokenError(
            self.describe(*expected, where=where),
            found=self.text,
            line=self.line,
            expected=single,
        )

    def snippet(self, before: int = 0, after: int = 0) -> list[Token]:
        """Tokens around the cursor: ``before`` tokens back, ``after`` ahead."""
        start = max(0, self.pos - max(before, 0))
        stop = min(len(self.tokens), self.pos + max(after, 0) + 1)
        return self.tokens[start:stop]

    def snippet_text(self, before: int = 0, after: int = 0) -> str:
        text = "".join(t.text + t.whitespace for t in self.snippet(before, after))
        return text.replace("\n", "↵").strip()
