"""Action Registry - maps tag, function and modifier names to behaviour.

Registrations accumulate in a ``RegistryBuilder``; ``build()`` freezes them
into a ``Registry`` that the compiler reads and never mutates.
"""

from __future__ import annotations

import builtins
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

from tagl.options import Options

Handler = Callable[..., None]

# builtins that run code or reach files and objects; only callable when allow-listed
UNSAFE_BUILTINS = frozenset(
    {
        "breakpoint", "compile", "delattr", "eval", "exec", "getattr", "globals",
        "help", "input", "locals", "open", "setattr", "vars",
    }
)


class ActionKind(Enum):
    INLINE_COMPILER = 1
    BLOCK_COMPILER = 2
    INLINE_FUNCTION = 3
    BLOCK_FUNCTION = 4

    @property
    def is_block(self) -> bool:
        return self in (ActionKind.BLOCK_COMPILER, ActionKind.BLOCK_FUNCTION)


@dataclass(frozen=True)
class Action:
    """Descriptor for one registered tag or function.

    ``tags`` maps child tag names to their handlers; ``floating`` lists the
    child tags that may appear below intervening frames that do not own them.
    """

    name: str
    kind: ActionKind
    parse: Optional[Handler] = None
    open: Optional[Handler] = None
    close: Optional[Handler] = None
    function: Optional[Callable[..., Any]] = None
    tags: Mapping[str, Handler] = field(default_factory=lambda: MappingProxyType({}))
    floating: frozenset[str] = frozenset()


class Registry:
    """Immutable lookup table used by the compiler and the runtime."""

    def __init__(
        self,
        actions: Mapping[str, Action],
        modifiers: Mapping[str, Callable[..., Any]],
        callables: Mapping[str, Callable[..., Any]],
    ):
        self._actions = MappingProxyType(dict(actions))
        self._modifiers = MappingProxyType(dict(modifiers))
        self._callables = MappingProxyType(dict(callables))

    def lookup(self, name: str) -> Action | None:
        return self._actions.get(name)

    def owners_of(self, tag: str) -> list[str]:
        """Names of all actions declaring ``tag`` as a child tag."""
        return sorted(name for name, action in self._actions.items() if tag in action.tags)

    def modifier(self, name: str) -> Callable[..., Any] | None:
        return self._modifiers.get(name)

    def resolve_callable(self, name: str) -> Callable[..., Any] | None:
        """Resolve a host function: the allow-list first, then Python builtins."""
        fn = self._callables.get(name)
        if fn is not None:
            return fn
        if name.startswith("_") or name in UNSAFE_BUILTINS:
            return None
        candidate = getattr(builtins, name, None)
        return candidate if callable(candidate) else None

    def is_call_allowed(self, name: str, options: int = 0) -> bool:
        """Check whether ``name`` may be called from a template expression.

        With DENY_INLINE_FUNCS only allow-listed names are callable; otherwise
        anything that resolves to a callable is.
        """
        if options & Options.DENY_INLINE_FUNCS:
            return name in self._callables
        return self.resolve_callable(name) is not None

    @property
    def actions(self) -> Mapping[str, Action]:
        return self._actions

    @property
    def modifiers(self) -> Mapping[str, Callable[..., Any]]:
        return self._modifiers

    @property
    def allowed_functions(self) -> Mapping[str, Callable[..., Any]]:
        return self._callables


class RegistryBuilder:
    """Accumulates registrations and produces an immutable ``Registry``.

    Every ``add_*`` method returns the builder so calls can be chained.
    """

    def __init__(self) -> None:
        self._actions: dict[str, Action] = {}
        self._modifiers: dict[str, Callable[..., Any]] = {}
        self._callables: dict[str, Callable[..., Any]] = {}

    @classmethod
    def defaults(cls) -> "RegistryBuilder":
        """A builder pre-loaded with the built-in tags, modifiers and functions."""
        from tagl.compiler.tags import install

        return install(cls())

    def add_compiler(self, name: str, parser: Handler) -> "RegistryBuilder":
        """Register an inline compiler: ``parser(tokens, ctx)``."""
        self._actions[name] = Action(name=name, kind=ActionKind.INLINE_COMPILER, parse=parser)
        return self

    def add_block_compiler(
        self,
        name: str,
        open: Handler,
        close: Optional[Handler] = None,
        tags: Optional[Mapping[str, Handler]] = None,
        floating: Optional[Iterable[str]] = None,
    ) -> "RegistryBuilder":
        """Register a block compiler with optional child tags.

        ``close`` defaults to a handler that only dedents the generated code.
        """
        from tagl.compiler.tags import std_close

        tags = dict(tags or {})
        floating_tags = frozenset(floating or ())
        unknown = floating_tags - set(tags)
        if unknown:
            raise ValueError(
                f"Floating tags {sorted(unknown)} are not child tags of '{name}'"
            )
        self._actions[name] = Action(
            name=name,
            kind=ActionKind.BLOCK_COMPILER,
            open=open,
            close=close or std_close,
            tags=MappingProxyType(tags),
            floating=floating_tags,
        )
        return self

    def add_function(
        self, name: str, fn: Callable[..., Any], parser: Optional[Handler] = None
    ) -> "RegistryBuilder":
        """Register an inline function called as ``fn(params, scope)``."""
        from tagl.compiler.tags import std_func_parser

        self._actions[name] = Action(
            name=name,
            kind=ActionKind.INLINE_FUNCTION,
            parse=parser or std_func_parser,
            function=fn,
        )
        return self

    def add_function_smart(self, name: str, fn: Callable[..., Any]) -> "RegistryBuilder":
        """Register an inline function called with positional/keyword arguments."""
        from tagl.compiler.tags import smart_func_parser

        return self.add_function(name, fn, smart_func_parser)

    def add_block_function(
        self,
        name: str,
        fn: Callable[..., Any],
        open: Optional[Handler] = None,
        close: Optional[Handler] = None,
    ) -> "RegistryBuilder":
        """Register a block function called as ``fn(params, content, scope)``."""
        from tagl.compiler.tags import std_func_close, std_func_open

        self._actions[name] = Action(
            name=name,
            kind=ActionKind.BLOCK_FUNCTION,
            open=open or std_func_open,
            close=close or std_func_close,
            function=fn,
        )
        return self

    def add_modifier(self, name: str, fn: Callable[..., Any]) -> "RegistryBuilder":
        self._modifiers[name] = fn
        return self

    def add_allowed_functions(
        self, funcs: Mapping[str, Callable[..., Any]] | Iterable[str]
    ) -> "RegistryBuilder":
        """Extend the allow-list of host callables.

        Accepts a mapping of names to callables, or bare names that are
        resolved against Python builtins.
        """
        if isinstance(funcs, Mapping):
            self._callables.update(funcs)
            return self
        for name in funcs:
            fn = getattr(builtins, name, None)
            if not callable(fn):
                raise ValueError(f"'{name}' is not a builtin callable")
            self._callables[name] = fn
        return self

    def build(self) -> Registry:
        return Registry(self._actions, self._modifiers, self._callables)
