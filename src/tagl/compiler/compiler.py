"""Compiler - transforms template text into Python render code."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Set, Tuple

from tagl.compiler.expressions import ExpressionParser
from tagl.compiler.spec import INDENT, CompiledTemplate, Frame
from tagl.exceptions import (
    CompileError,
    MismatchedCloseError,
    MisplacedTagError,
    TagKindMismatchError,
    UnclosedBlockError,
    UnclosedTagError,
    UnknownTagError,
)
from tagl.lexer import TokenKind, TokenStream
from tagl.options import Options
from tagl.registry import Registry

log = logging.getLogger(__name__)

# name -> (source text, last modified)
SourceLoader = Callable[[str], Tuple[str, float]]


class CodeBuffer:
    """Indentation-aware accumulator for the render function body.

    Every block opener is followed by a ``pass`` so that empty blocks stay
    valid Python. ``mark`` records the template line that produced the code
    that follows, as a ``#@ line N`` comment.
    """

    def __init__(self, level: int = 1):
        self.lines: List[str] = []
        self.level = level
        self._mark: Optional[Tuple[int, Optional[str]]] = None

    def emit(self, code: str) -> None:
        self.lines.append(INDENT * self.level + code)

    def open(self, header: str) -> None:
        """Emit a statement ending in ``:`` and indent past it."""
        self.emit(header)
        self.indent()
        self.emit("pass")

    def indent(self) -> None:
        self.level += 1

    def dedent(self) -> None:
        if self.level <= 1:
            raise CompileError("Generated code dedented past the render function")
        self.level -= 1

    def mark(self, line: int, source: Optional[str] = None) -> None:
        if self._mark == (line, source):
            return
        self._mark = (line, source)
        suffix = f" of {source}" if source else ""
        self.emit(f"#@ line {line}{suffix}")

    def getvalue(self) -> str:
        return "\n".join(self.lines)


class CompileContext:
    """State of one compile run, handed to every tag handler."""

    def __init__(self, compiler: "Compiler", name: str):
        self.compiler = compiler
        self.name = name
        self.registry: Registry = compiler.registry
        self.options: Options = compiler.options
        self.code = CodeBuffer()
        self.stack: List[Frame] = []
        self.depends: dict[str, float] = {}
        self.tag: Optional[str] = None  # name of the tag being compiled
        self.source: Optional[str] = None  # force-included template, if any
        self.including: Set[str] = {name}
        self.expressions = ExpressionParser(self)
        self._uid = 0

    def uid(self) -> int:
        self._uid += 1
        return self._uid

    @property
    def top(self) -> Optional[Frame]:
        return self.stack[-1] if self.stack else None

    def expr(self, tokens: TokenStream) -> str:
        return self.expressions.parse(tokens)

    def write(self, expression: str) -> None:
        """Emit code writing the string form of expression to the output."""
        self.code.emit(f"out.write(_rt.to_str({expression}))")

    def write_text(self, text: str) -> None:
        self.code.emit(f"out.write({text!r})")


class Compiler:
    """Compiles template source into a ``CompiledTemplate``.

    Args:
        registry: Tags, modifiers and functions available to templates.
        options: Option mask; DENY_* and FORCE_INCLUDE affect compilation.
        loader: Resolves template names to ``(text, mtime)``; required for
            FORCE_INCLUDE to inline included templates.
    """

    def __init__(
        self,
        registry: Registry,
        options: Options = Options.NONE,
        loader: Optional[SourceLoader] = None,
    ):
        self.registry = registry
        self.options = Options(options)
        self.loader = loader

    def compile(self, source: str, name: str = "runtime") -> CompiledTemplate:
        """Compile a template source.

        Args:
            source: Template text.
            name: Template identifier used in error messages and line markers.

        Returns:
            CompiledTemplate holding the render body and its dependencies.

        Raises:
            CompileError: On the first syntax error; nothing is produced.
        """
        ctx = CompileContext(self, name)
        try:
            self.compile_text(source, ctx)
        except CompileError as exc:
            if exc.template is None:
                exc.template = name
            raise
        log.debug(f"Compiled {name}: {len(ctx.code.lines)} lines")
        return CompiledTemplate(
            name=name,
            body=ctx.code.getvalue(),
            options=self.options,
            depends=ctx.depends,
        )

    def compile_text(self, source: str, ctx: CompileContext) -> None:
        """Scan source, emitting text writes and dispatching tags.

        A ``{`` followed by whitespace, ``}`` or the end of the text is
        literal. ``{* ... *}`` is a comment.
        """
        pos = search = 0
        line = 1
        while True:
            start = source.find("{", search)
            if start == -1:
                self._text(source[pos:], line, ctx)
                break
            follower = source[start + 1 : start + 2]
            if not follower or follower.isspace() or follower == "}":
                search = start + 1
                continue

            self._text(source[pos:start], line, ctx)
            line += source.count("\n", pos, start)
            if follower == "*":
                end = source.find("*}", start + 2)
                if end == -1:
                    raise UnclosedTagError("comment", line)
                stop = end + 2
            else:
                end = self._find_tag_end(source, start + 1)
                if end == -1:
                    raise UnclosedTagError("tag", line)
                self._tag(source[start + 1 : end], line, ctx)
                stop = end + 1
            line += source.count("\n", start, stop)
            pos = search = stop

        if ctx.stack:
            frame = ctx.stack[-1]
            raise UnclosedBlockError(frame.name, frame.line)

    def compile_include(self, name: str, params: str, ctx: CompileContext) -> bool:
        """Inline another template's code at the current position.

        The included code runs against a copy of the scope merged with
        params. Returns False when the template is already being inlined
        (a cycle), so the caller can fall back to a runtime include.
        """
        if self.loader is None or name in ctx.including:
            return False
        text, mtime = self.loader(name)
        ctx.depends[name] = mtime

        saved = f"_scope_{ctx.uid()}"
        ctx.code.emit(f"{saved} = v")
        ctx.code.emit(f"v = _rt.merge(v, {params})")
        stack, source = ctx.stack, ctx.source
        ctx.stack, ctx.source = [], name
        ctx.including.add(name)
        try:
            self.compile_text(text, ctx)
        except CompileError as exc:
            if exc.template is None:
                exc.template = name
            raise
        finally:
            ctx.stack, ctx.source = stack, source
            ctx.including.discard(name)
        ctx.code.emit(f"v = {saved}")
        return True

    def _text(self, text: str, line: int, ctx: CompileContext) -> None:
        if not text:
            return
        top = ctx.top
        if top is not None and top.state.get("skip_text") and text.isspace():
            return
        ctx.code.mark(line, ctx.source)
        ctx.write_text(text)

    @staticmethod
    def _find_tag_end(source: str, index: int) -> int:
        """Find the ``}`` closing a tag, ignoring braces inside quotes."""
        quote = None
        length = len(source)
        while index < length:
            char = source[index]
            if quote:
                if char == "\\":
                    index += 2
                    continue
                if char == quote:
                    quote = None
            elif char in "'\"":
                quote = char
            elif char == "}":
                return index
            index += 1
        return -1

    def _tag(self, body: str, line: int, ctx: CompileContext) -> None:
        tokens = TokenStream(body, line)
        tokens.filter(lambda token: token.kind is not TokenKind.COMMENT)
        if not tokens.valid():
            return
        ctx.code.mark(line, ctx.source)
        try:
            if tokens.at("/"):
                self._close_tag(tokens, line, ctx)
            elif (
                tokens.at(TokenKind.NAME)
                and not tokens.next_is("(")
                and tokens.text.lower() not in ("true", "false", "null")  # type: ignore[union-attr]
            ):
                self._named_tag(tokens, line, ctx)
            else:
                ctx.write(ctx.expr(tokens))
            if tokens.valid():
                raise tokens.error(where="tag")
        except CompileError as exc:
            if exc.line is None:
                exc.line = tokens.line
            raise

    def _named_tag(self, tokens: TokenStream, line: int, ctx: CompileContext) -> None:
        name = tokens.get_and_advance()
        ctx.tag = name

        owner = self._find_owner(name, line, ctx)
        if owner is not None:
            owner.action.tags[name](tokens, owner, ctx)
            return

        action = self.registry.lookup(name)
        if action is None:
            raise UnknownTagError(name, line, self.registry.owners_of(name))
        if action.kind.is_block:
            frame = Frame(action=action, name=name, line=line, uid=ctx.uid())
            ctx.stack.append(frame)
            action.open(tokens, frame, ctx)  # type: ignore[misc]
        else:
            action.parse(tokens, ctx)  # type: ignore[misc]

    @staticmethod
    def _find_owner(name: str, line: int, ctx: CompileContext) -> Optional[Frame]:
        """Find the open block that handles child tag name.

        The innermost frame wins. Deeper frames only qualify when they
        declare the tag as floating.
        """
        if not ctx.stack:
            return None
        if name in ctx.stack[-1].action.tags:
            return ctx.stack[-1]
        for frame in reversed(ctx.stack[:-1]):
            if name in frame.action.tags:
                if name in frame.action.floating:
                    return frame
                raise MisplacedTagError(name, frame.name, line)
        return None

    def _close_tag(self, tokens: TokenStream, line: int, ctx: CompileContext) -> None:
        tokens.skip("/")
        name = tokens.get(TokenKind.NAME)
        tokens.advance()
        ctx.tag = name

        action = self.registry.lookup(name)
        if action is not None and not action.kind.is_block:
            raise TagKindMismatchError(
                name, f"Tag {{{name}}} is not a block tag and can not be closed", line
            )
        if not ctx.stack:
            raise MismatchedCloseError(name, line)
        frame = ctx.stack[-1]
        if frame.name != name:
            raise MismatchedCloseError(name, line, frame.name, frame.line)
        frame.action.close(tokens, frame, ctx)  # type: ignore[misc]
        ctx.stack.pop()
