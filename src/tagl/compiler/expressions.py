"""Expression Compiler - template expressions to Python source fragments.

Every fragment produced here is a self-contained Python expression that reads
template variables from the scope mapping ``v`` and reaches host callables
through the render context ``tpl``. Binary operations are always wrapped in
parentheses, so fragments can be nested without precedence surprises.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from tagl.exceptions import (
    DisallowedCallError,
    TagKindMismatchError,
    UnexpectedTokenError,
    UnknownModifierError,
)
from tagl.lexer import OpClass, TokenKind, TokenStream
from tagl.options import Options

if TYPE_CHECKING:
    from tagl.compiler.compiler import CompileContext


# Binding strength of binary operators; higher binds tighter.
PRECEDENCE = {
    "or": 1,
    "xor": 2,
    "and": 3,
    "||": 4,
    "&&": 5,
    "^": 6,
    "&": 7,
    "==": 8, "!=": 8, "<>": 8, "===": 8, "!==": 8,
    "<": 9, "<=": 9, ">": 9, ">=": 9,
    "<<": 10, ">>": 10,
    "+": 11, "-": 11,
    "*": 12, "/": 12, "%": 12,
}

PY_OPERATORS = {"&&": "and", "||": "or", "<>": "!="}

UNARY = {"!": "not ", "-": "-", "~": "~"}

CONSTANTS = {"true": "True", "false": "False", "null": "None", "none": "None"}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "\\": "\\", '"': '"', "$": "$"}
_DOUBLE_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)
_SINGLE_ESCAPE_RE = re.compile(r"\\([\\'])")


def unquote(literal: str) -> str:
    """Decode a quoted string token into its value.

    Single-quoted strings only unescape ``\\'`` and ``\\\\``; double-quoted
    strings also understand ``\\n``, ``\\t``, ``\\r``, ``\\0`` and ``\\$``.
    """
    quote, body = literal[0], literal[1:-1]
    if quote == "'":
        return _SINGLE_ESCAPE_RE.sub(r"\1", body)
    return _DOUBLE_ESCAPE_RE.sub(
        lambda m: _ESCAPES.get(m.group(1), "\\" + m.group(1)), body
    )


class ExpressionParser:
    """Recursive-descent parser emitting Python source.

    Args:
        ctx: The compile context; supplies the registry, the option mask and
            the template name for error messages.
    """

    def __init__(self, ctx: "CompileContext"):
        self.ctx = ctx
        self._ternary = 0

    def parse(self, tokens: TokenStream) -> str:
        """Parse one full expression, including a trailing ternary."""
        cond = self.parse_binary(tokens, 0)
        if not tokens.at("?"):
            return cond
        tokens.advance()
        if tokens.skip_if(":"):
            other = self.parse(tokens)
            return f"({cond} or {other})"
        self._ternary += 1
        try:
            then = self.parse(tokens)
        finally:
            self._ternary -= 1
        tokens.skip(":")
        other = self.parse(tokens)
        return f"({then} if {cond} else {other})"

    def parse_binary(self, tokens: TokenStream, min_prec: int) -> str:
        left = self.parse_term(tokens)
        while tokens.at(OpClass.BINARY):
            op = tokens.curr().kind  # type: ignore[union-attr]
            prec = PRECEDENCE[op]
            if prec < min_prec:
                break
            tokens.advance()
            right = self.parse_binary(tokens, prec + 1)
            left = self._binary(op, left, right)
        return left

    def _binary(self, op: str, left: str, right: str) -> str:
        if op == "xor":
            return f"(bool({left}) != bool({right}))"
        if op == "===":
            return f"_rt.identical({left}, {right})"
        if op == "!==":
            return f"(not _rt.identical({left}, {right}))"
        return f"({left} {PY_OPERATORS.get(op, op)} {right})"

    def parse_term(self, tokens: TokenStream, modifiers: bool = True) -> str:
        """Parse a single operand with its unary prefixes and modifier chain."""
        if tokens.at(OpClass.UNARY):
            op = tokens.get_and_advance()
            return f"({UNARY[op]}{self.parse_term(tokens, modifiers)})"

        if tokens.at("("):
            tokens.advance()
            ternary, self._ternary = self._ternary, 0
            try:
                value = f"({self.parse(tokens)})"
            finally:
                self._ternary = ternary
            tokens.skip(")")
        elif tokens.at(OpClass.SCALAR):
            value = self.parse_scalar(tokens)
        elif tokens.at(TokenKind.VARIABLE):
            value = self.parse_variable(tokens)
        elif tokens.at("["):
            value = self.parse_array(tokens)
        elif tokens.at(TokenKind.NAME):
            value = self.parse_name(tokens)
        else:
            raise tokens.error()

        if modifiers and tokens.at("|"):
            value = self.parse_modifiers(tokens, value)
        return value

    def parse_scalar(self, tokens: TokenStream) -> str:
        token = tokens.curr()
        tokens.advance()
        if token.kind is TokenKind.STRING:  # type: ignore[union-attr]
            return repr(unquote(token.text))  # type: ignore[union-attr]
        if token.kind is TokenKind.INTEGER:  # type: ignore[union-attr]
            return str(int(token.text))  # type: ignore[union-attr]
        return repr(float(token.text))  # type: ignore[union-attr]

    def parse_name(self, tokens: TokenStream) -> str:
        word = tokens.text.lower()  # type: ignore[union-attr]
        if tokens.next_is("("):
            return self.parse_call(tokens)
        if word in CONSTANTS:
            tokens.advance()
            return CONSTANTS[word]
        raise tokens.error()

    def parse_call(self, tokens: TokenStream) -> str:
        """``name(args)``: a host function call checked against the allow-list."""
        line = tokens.line
        name = tokens.get_and_advance()
        registry = self.ctx.registry
        if registry.lookup(name) is not None:
            raise TagKindMismatchError(
                name, f"Tag {{{name}}} can not be called as a function", line
            )
        if not registry.is_call_allowed(name, self.ctx.options):
            raise DisallowedCallError(name, line)
        return f"tpl.call({name!r})({self.parse_args(tokens)})"

    def parse_args(self, tokens: TokenStream) -> str:
        """Parse a parenthesized, comma-separated argument list."""
        tokens.skip("(")
        args = []
        while not tokens.at(")"):
            args.append(self.parse(tokens))
            if not tokens.skip_if(","):
                break
        tokens.skip(")")
        return ", ".join(args)

    def parse_variable(self, tokens: TokenStream) -> str:
        name = tokens.get_and_advance()[1:]
        return self.parse_chain(tokens, f"v.get({name!r})")

    def parse_chain(self, tokens: TokenStream, value: str) -> str:
        """Apply ``.key``, ``[expr]`` and ``->attr`` accessors to value.

        Dots and brackets only chain when nothing separates them from the
        previous token, so ``$a .b`` is not an item lookup.
        """
        while True:
            glued = not tokens.prev().whitespace  # type: ignore[union-attr]
            if tokens.at(".") and glued:
                tokens.advance()
                value = self._dot_key(tokens, value)
            elif tokens.at("[") and glued:
                tokens.advance()
                key = self.parse(tokens)
                tokens.skip("]")
                value = f"_rt.item({value}, {key})"
            elif tokens.at("->"):
                value = self._arrow(tokens, value)
            else:
                return value

    def _dot_key(self, tokens: TokenStream, value: str) -> str:
        if tokens.at(TokenKind.NAME):
            key = repr(tokens.get_and_advance())
        elif tokens.at(TokenKind.INTEGER):
            key = str(int(tokens.get_and_advance()))
        elif tokens.at(TokenKind.FLOAT) and "." in tokens.text and "e" not in tokens.text.lower():  # type: ignore[operator,union-attr]
            # `$a.0.1` lexes the keys as one float
            first, second = tokens.get_and_advance().split(".")
            value = f"_rt.item({value}, {int(first)})"
            key = str(int(second))
        elif tokens.at(TokenKind.VARIABLE):
            key = f"v.get({tokens.get_and_advance()[1:]!r})"
        else:
            raise tokens.error()
        return f"_rt.item({value}, {key})"

    def _arrow(self, tokens: TokenStream, value: str) -> str:
        tokens.advance()
        line = tokens.line
        attr = tokens.get(TokenKind.NAME)
        tokens.advance()
        if not tokens.at("("):
            return f"_rt.attr({value}, {attr!r})"
        if self.ctx.options & Options.DENY_METHODS:
            raise DisallowedCallError(attr, line, kind="method")
        return f"_rt.attr({value}, {attr!r})({self.parse_args(tokens)})"

    def parse_array(self, tokens: TokenStream) -> str:
        """``[a, b]`` becomes a list, ``[k => v]`` a dict."""
        line = tokens.line
        tokens.skip("[")
        items = []
        keyed = 0
        while not tokens.at("]"):
            first = self.parse(tokens)
            if tokens.skip_if("=>"):
                keyed += 1
                items.append(f"{first}: {self.parse(tokens)}")
            else:
                items.append(first)
            if not tokens.skip_if(","):
                break
        tokens.skip("]")
        if not keyed:
            return "[" + ", ".join(items) + "]"
        if keyed != len(items):
            raise UnexpectedTokenError(
                "Can not mix keyed and positional items in array", line=line
            )
        return "{" + ", ".join(items) + "}"

    def parse_modifiers(self, tokens: TokenStream, value: str) -> str:
        """Wrap value in each ``|name:arg:arg`` modifier, left to right."""
        while tokens.skip_if("|"):
            line = tokens.line
            name = tokens.get(TokenKind.NAME)
            tokens.advance()
            self.check_modifier(name, line)
            args = [value]
            while self._modifier_arg(tokens):
                tokens.advance()
                args.append(self.parse_term(tokens, modifiers=False))
            value = f"tpl.modifier({name!r})({', '.join(args)})"
        return value

    def _modifier_arg(self, tokens: TokenStream) -> bool:
        if not tokens.at(":"):
            return False
        # in a ternary branch, a spaced colon separates the branches
        return not (self._ternary and tokens.prev().whitespace)  # type: ignore[union-attr]

    def check_modifier(self, name: str, line: int) -> None:
        registry = self.ctx.registry
        if registry.modifier(name) is not None:
            return
        if registry.is_call_allowed(name, self.ctx.options):
            return
        if registry.resolve_callable(name) is not None:
            raise DisallowedCallError(name, line, kind="modifier")
        raise UnknownModifierError(name, line)

    def parse_params(self, tokens: TokenStream) -> str:
        """``name=expr name=expr`` pairs as a dict literal."""
        items = []
        while tokens.valid():
            key = tokens.get(TokenKind.NAME)
            tokens.advance()
            tokens.skip("=")
            items.append(f"{key!r}: {self.parse(tokens)}")
        return "{" + ", ".join(items) + "}"

    def parse_smart_args(self, tokens: TokenStream) -> str:
        """Positional and ``name=expr`` keyword arguments, as call arguments.

        Keywords are passed through ``**{...}`` so any tag-language name can
        be used, including Python keywords.
        """
        args = []
        kwargs = []
        while tokens.valid():
            if tokens.at(TokenKind.NAME) and tokens.next_is("="):
                key = tokens.get_and_advance()
                tokens.advance()
                kwargs.append(f"{key!r}: {self.parse(tokens)}")
            elif kwargs:
                raise UnexpectedTokenError(
                    "Positional argument follows keyword argument", line=tokens.line
                )
            else:
                args.append(self.parse(tokens))
            tokens.skip_if(",")
        if kwargs:
            args.append("**{" + ", ".join(kwargs) + "}")
        return ", ".join(args)
