"""tagl Compiler - transforms template text into Python render modules."""

from tagl.compiler.compiler import CodeBuffer, CompileContext, Compiler
from tagl.compiler.renderer import Renderer
from tagl.compiler.spec import CompiledTemplate, Frame

__all__ = [
    "CodeBuffer",
    "CompileContext",
    "Compiler",
    "CompiledTemplate",
    "Frame",
    "Renderer",
]
