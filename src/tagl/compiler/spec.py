"""Compiler IR spec - compiled template intermediate representation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from tagl.options import Options
from tagl.registry import Action


INDENT = "    "


@dataclass
class Frame:
    """One open block tag on the compiler's block stack."""

    action: Action
    name: str  # tag name as written, e.g. "foreach"
    line: int  # line the block was opened on
    uid: int  # unique per compile, used to name generated locals
    state: Dict[str, Any] = field(default_factory=dict)  # handler scratch space


@dataclass
class CompiledTemplate:
    """Python render code for one template, before it is wrapped in a module."""

    name: str
    body: str  # indented body of ``render(tpl, v, out)``
    options: Options = Options.NONE
    depends: Dict[str, float] = field(default_factory=dict)  # identifier -> mtime
