"""Renderer - converts CompiledTemplate IR to Python module text."""

from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader

from tagl.compiler.spec import INDENT, CompiledTemplate


def get_module_env() -> Environment:
    """Jinja environment for the compiled-module templates."""
    env = Environment(
        loader=FileSystemLoader(Path(__file__).parent.parent / "templates"),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["pyrepr"] = repr
    return env


class Renderer:
    """Renders CompiledTemplate IR to the source of an importable module.

    The module defines ``NAME``, ``OPTIONS``, ``DEPENDS`` and
    ``render(tpl, v, out)``.
    """

    TEMPLATE = "module.py.j2"

    def __init__(self, env: Optional[Environment] = None):
        self.env = env or get_module_env()

    def render(self, compiled: CompiledTemplate) -> str:
        """Render a CompiledTemplate to Python source.

        Args:
            compiled: The compiled template IR.

        Returns:
            Complete module source as a string.
        """
        template = self.env.get_template(self.TEMPLATE)
        return template.render(
            name=compiled.name,
            options=int(compiled.options),
            depends=dict(compiled.depends),
            body=compiled.body or INDENT + "pass",
        )
