"""tagl Exceptions

Custom exceptions for the template compiler, cache and runtime.
"""

from __future__ import annotations

from typing import Iterable


class TaglError(Exception):
    """Base exception for all tagl errors."""

    pass


class CompileError(TaglError):
    """Base exception for errors raised while compiling a template.

    The template name and line are filled in by the compiler when the error
    propagates out of a tag handler, so lexer-level errors end up with the same
    context as compiler-level ones.
    """

    def __init__(
        self, message: str, line: int | None = None, template: str | None = None
    ):
        self.message = message
        self.line = line
        self.template = template
        super().__init__(message)

    def __str__(self) -> str:
        text = self.message
        if self.template is not None:
            text += f" in {self.template}"
        if self.line is not None:
            text += f" line {self.line}"
        return text


class UnexpectedTokenError(CompileError):
    """Raised when an assertive lexer step finds the wrong kind of token."""

    def __init__(
        self,
        message: str,
        found: str | None = None,
        line: int | None = None,
        expected: str | None = None,
    ):
        self.found = found
        self.expected = expected
        super().__init__(message, line)


class UnclosedTagError(CompileError):
    """Raised when a tag or comment delimiter is never closed."""

    def __init__(self, what: str, line: int):
        super().__init__(f"Unclosed {what}", line)


class UnclosedBlockError(CompileError):
    """Raised when a block tag is still open at the end of the template."""

    def __init__(self, tag: str, line: int):
        self.tag = tag
        super().__init__(f"Unclosed tag {{{tag}}} opened", line)


class MismatchedCloseError(CompileError):
    """Raised when a close tag does not match the innermost open block."""

    def __init__(
        self,
        tag: str,
        line: int | None = None,
        open_tag: str | None = None,
        open_line: int | None = None,
    ):
        self.tag = tag
        self.open_tag = open_tag
        self.open_line = open_line
        if open_tag is None:
            message = f"Unexpected closing of {{/{tag}}}: nothing open"
        else:
            message = (
                f"Unexpected closing of {{/{tag}}}: "
                f"{{{open_tag}}} opened on line {open_line} is still open"
            )
        super().__init__(message, line)


class UnknownTagError(CompileError):
    """Raised when a tag name resolves to nothing usable at its position."""

    def __init__(
        self, tag: str, line: int | None = None, owners: Iterable[str] = ()
    ):
        self.tag = tag
        self.owners = list(owners)
        if self.owners:
            valid = ", ".join(f"{{{owner}}}" for owner in self.owners)
            message = f"Unexpected tag {{{tag}}} outside any owner (valid inside {valid})"
        else:
            message = f"Unknown tag {{{tag}}}"
        super().__init__(message, line)


class MisplacedTagError(CompileError):
    """Raised when a non-floating child tag is not a direct child of its owner."""

    def __init__(self, tag: str, owner: str, line: int | None = None):
        self.tag = tag
        self.owner = owner
        super().__init__(
            f"Tag {{{tag}}} must be a direct child of {{{owner}}}", line
        )


class TagKindMismatchError(CompileError):
    """Raised when a tag is used as a kind its descriptor does not support."""

    def __init__(self, tag: str, message: str, line: int | None = None):
        self.tag = tag
        super().__init__(message, line)


class DisallowedCallError(CompileError):
    """Raised when a function, method or modifier call is not permitted."""

    def __init__(self, identifier: str, line: int | None = None, kind: str = "function"):
        self.identifier = identifier
        self.kind = kind
        super().__init__(f"Call of {kind} '{identifier}' is not allowed", line)


class UnknownModifierError(CompileError):
    """Raised when a modifier name cannot be resolved."""

    def __init__(self, modifier: str, line: int | None = None):
        self.modifier = modifier
        super().__init__(f"Modifier '{modifier}' not found", line)


class TemplateNotFoundError(TaglError):
    """Raised when a provider cannot resolve a template identifier."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Template not found: {name}")


class ProviderNotFoundError(TaglError):
    """Raised when an identifier names a scheme with no registered provider."""

    def __init__(self, scheme: str):
        self.scheme = scheme
        super().__init__(f"Provider for '{scheme}' not found")


class StoreIOError(TaglError):
    """Raised when the compiled-template store cannot be written."""

    def __init__(self, message: str, directory: str):
        self.directory = directory
        super().__init__(f"{message} (directory {directory} is writable?)")


class RenderError(TaglError):
    """Raised when executing a compiled template fails."""

    def __init__(self, template: str, line: int | None, cause: BaseException):
        self.template = template
        self.line = line
        self.cause = cause
        where = f" line {line}" if line is not None else ""
        super().__init__(f"{type(cause).__name__}: {cause} in {template}{where}")


class ConfigError(TaglError):
    """Raised when a tagl.yaml configuration file is invalid."""

    pass
