"""tagl - a tag-language template compiler with a persistent compiled-template cache.

Usage:
    from tagl import Engine

    engine = Engine.factory("templates", "/tmp/tagl")
    print(engine.fetch("page.tpl", {"title": "Hello"}))
"""

from tagl.engine import Engine
from tagl.exceptions import (
    CompileError,
    ConfigError,
    DisallowedCallError,
    MismatchedCloseError,
    MisplacedTagError,
    ProviderNotFoundError,
    RenderError,
    StoreIOError,
    TagKindMismatchError,
    TaglError,
    TemplateNotFoundError,
    UnclosedBlockError,
    UnclosedTagError,
    UnexpectedTokenError,
    UnknownModifierError,
    UnknownTagError,
)
from tagl.options import Options
from tagl.providers import DictProvider, FileSystemProvider, Provider
from tagl.registry import Registry, RegistryBuilder
from tagl.runtime import Template

__all__ = [
    "Engine",
    "Template",
    "Options",
    "Registry",
    "RegistryBuilder",
    "Provider",
    "FileSystemProvider",
    "DictProvider",
    # Exceptions
    "TaglError",
    "CompileError",
    "UnexpectedTokenError",
    "UnclosedTagError",
    "UnclosedBlockError",
    "MismatchedCloseError",
    "UnknownTagError",
    "MisplacedTagError",
    "TagKindMismatchError",
    "DisallowedCallError",
    "UnknownModifierError",
    "TemplateNotFoundError",
    "ProviderNotFoundError",
    "StoreIOError",
    "RenderError",
    "ConfigError",
]
