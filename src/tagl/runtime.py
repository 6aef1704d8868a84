"""Runtime - helpers used by compiled templates, and the Template object.

Compiled modules import this module as ``_rt``. Their ``render(tpl, v, out)``
function receives a ``RenderContext`` as ``tpl``, the variable scope as ``v``
and a writable text stream as ``out``.
"""

from __future__ import annotations

import io
import logging
import re
import sys
import traceback
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, TextIO

from tagl.exceptions import RenderError, TaglError

if TYPE_CHECKING:
    from tagl.engine import Engine
    from tagl.registry import Registry

log = logging.getLogger(__name__)

_MARKER_RE = re.compile(r"^\s*#@ line (\d+)(?: of (.+))?$")

Buffer = io.StringIO


class NullWriter:
    """Output sink for a child template's text outside its blocks."""

    def write(self, text: str) -> int:
        return len(text)

    def getvalue(self) -> str:
        return ""


def to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def item(container: Any, key: Any) -> Any:
    """``$a.key`` / ``$a[key]``: mapping or sequence lookup, then attribute.

    Missing keys resolve to None rather than failing the render.
    """
    if container is None:
        return None
    try:
        return container[key]
    except (KeyError, IndexError, TypeError):
        pass
    if isinstance(key, str) and not key.startswith("_"):
        return getattr(container, key, None)
    return None


def attr(obj: Any, name: str) -> Any:
    """``$obj->name``; private and dunder attributes are not reachable."""
    if obj is None or name.startswith("_"):
        return None
    return getattr(obj, name, None)


def iterable(value: Any) -> list:
    """Materialize the subject of a ``{foreach}`` as (key, value) pairs."""
    if value is None:
        return []
    if isinstance(value, Mapping):
        return list(value.items())
    return list(enumerate(value))


def span(start: Any, end: Any, step: Any = 1) -> list:
    """Inclusive numeric range used by ``{for}``."""
    if not step:
        raise ValueError("{for} step must not be zero")
    if all(isinstance(n, int) for n in (start, end, step)):
        return list(range(start, end + (1 if step > 0 else -1), step))
    values = []
    current = start
    while (current <= end) if step > 0 else (current >= end):
        values.append(current)
        current += step
    return values


def identical(left: Any, right: Any) -> bool:
    """``===``: equal and of the same type."""
    return type(left) is type(right) and left == right


def merge(scope: Mapping, params: Mapping) -> Dict[str, Any]:
    merged = dict(scope)
    merged.update(params)
    return merged


class RenderContext:
    """The ``tpl`` object seen by compiled code during one render.

    Args:
        template: Template being rendered.
        blocks: Block overrides collected from child templates; shared along
            an ``{extends}`` chain.
    """

    def __init__(self, template: "Template", blocks: Optional[Dict[str, Callable]] = None):
        self.template = template
        self.blocks: Dict[str, Callable] = {} if blocks is None else blocks
        self.parent: Any = None

    @property
    def engine(self) -> "Engine":
        return self.template.engine

    @property
    def registry(self) -> "Registry":
        return self.engine.registry

    def modifier(self, name: str) -> Callable:
        fn = self.registry.modifier(name) or self.registry.resolve_callable(name)
        if fn is None:
            raise TaglError(f"Modifier '{name}' not found")
        return fn

    def function(self, name: str) -> Callable:
        action = self.registry.lookup(name)
        if action is None or action.function is None:
            raise TaglError(f"Function '{name}' not found")
        return action.function

    def call(self, name: str) -> Callable:
        fn = self.registry.resolve_callable(name)
        if fn is None:
            raise TaglError(f"Function '{name}' not found")
        return fn

    def include(self, name: Any, v: Mapping, out: TextIO, params: Optional[Mapping] = None) -> None:
        template = self.engine.get_template(to_str(name))
        template.render(merge(v, params or {}), out)

    def extends(self, name: Any) -> NullWriter:
        """Remember the parent; the child's own text is discarded."""
        self.parent = to_str(name)
        return NullWriter()

    def block(self, name: str, fn: Callable, v: Mapping, out: TextIO) -> None:
        """Define block name, or run the override a child already defined."""
        self.blocks.setdefault(name, fn)
        if self.parent is None:
            self.blocks[name](v, out)


class Template:
    """A compiled, executable template.

    Templates are built from compiled module source with ``from_code`` and
    bound to the engine that resolves their includes, parents and modifiers.
    """

    def __init__(
        self,
        name: str,
        render: Callable,
        code: str = "",
        filename: Optional[str] = None,
        options: int = 0,
        depends: Optional[Dict[str, float]] = None,
    ):
        self.name = name
        self._render = render
        self.code = code
        self.filename = filename or f"<tagl:{name}>"
        self.options = options
        self.depends: Dict[str, float] = dict(depends or {})
        self._engine: Optional["Engine"] = None

    @classmethod
    def from_code(cls, code: str, filename: Optional[str] = None) -> "Template":
        """Execute compiled module source and wrap its render function."""
        namespace: Dict[str, Any] = {"__name__": "tagl.compiled"}
        label = filename or "<tagl>"
        exec(compile(code, label, "exec"), namespace)
        return cls(
            name=namespace["NAME"],
            render=namespace["render"],
            code=code,
            filename=label,
            options=namespace.get("OPTIONS", 0),
            depends=namespace.get("DEPENDS", {}),
        )

    def bind(self, engine: "Engine") -> "Template":
        self._engine = engine
        return self

    @property
    def engine(self) -> "Engine":
        if self._engine is None:
            raise TaglError(f"Template {self.name} is not bound to an engine")
        return self._engine

    def is_valid(self) -> bool:
        """Check that no recorded source changed since compilation."""
        for name, mtime in self.depends.items():
            try:
                current = self.engine.last_modified(name)
            except TaglError as exc:
                log.debug(f"Dependency {name} of {self.name} unavailable: {exc}")
                return False
            if current > mtime:
                return False
        return True

    def render(self, v: Dict[str, Any], out: TextIO, blocks: Optional[Dict[str, Callable]] = None) -> None:
        """Write the template output for scope v to out.

        Raises:
            RenderError: When the compiled code fails; carries the template
                line the failing code was generated from.
        """
        ctx = RenderContext(self, blocks)
        try:
            self._render(ctx, v, out)
        except TaglError:
            raise
        except Exception as exc:
            raise RenderError(self.name, self._fault_line(exc), exc) from exc
        if ctx.parent is not None:
            self.engine.get_template(ctx.parent).render(v, out, ctx.blocks)

    def fetch(self, v: Optional[Mapping[str, Any]] = None) -> str:
        out = Buffer()
        self.render(dict(v or {}), out)
        return out.getvalue()

    def display(self, v: Optional[Mapping[str, Any]] = None) -> None:
        self.render(dict(v or {}), sys.stdout)

    def source_line(self, lineno: int) -> Optional[int]:
        """Map a line of the compiled code back to a template line."""
        for text in reversed(self.code.splitlines()[:lineno]):
            match = _MARKER_RE.match(text)
            if match:
                return int(match.group(1))
        return None

    def _fault_line(self, exc: BaseException) -> Optional[int]:
        lineno = None
        for frame, line in traceback.walk_tb(exc.__traceback__):
            if frame.f_code.co_filename == self.filename:
                lineno = line
        return self.source_line(lineno) if lineno else None

    def __repr__(self) -> str:
        return f"Template({self.name!r})"
