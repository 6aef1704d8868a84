"""Engine - resolves template identifiers to executable templates.

Resolution order for ``get_template``:

1. the in-memory cache (revalidated against source mtimes with CHECK_MTIME);
2. the persisted record in the compile directory;
3. a fresh compile, which is then persisted.

With FORCE_COMPILE every resolution compiles and nothing is kept in memory.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from tagl.cache import CacheStrategy, NoOpCache, RetainingCache
from tagl.compiler import Compiler, Renderer
from tagl.config import EngineConfig, resolve_compile_dir
from tagl.exceptions import ProviderNotFoundError
from tagl.options import Options, make_mask
from tagl.providers import FileSystemProvider, Provider, split_identifier
from tagl.registry import Registry, RegistryBuilder
from tagl.runtime import Template
from tagl.store import ArtifactStore

log = logging.getLogger(__name__)

Filter = Callable[[str], str]
OptionsLike = Union[int, Options, Mapping[str, bool]]


class Engine:
    """Template engine: compiler, compiled-template store and caches.

    Args:
        provider: Default provider for identifiers without a scheme.
        compile_dir: Directory for persisted compiled templates. Defaults to
            ``resolve_compile_dir()``.
        options: Option mask, or a mapping of option names to booleans.
        builder: Registry builder; defaults to the built-in tags and modifiers.
    """

    def __init__(
        self,
        provider: Optional[Provider] = None,
        compile_dir: Union[str, Path, None] = None,
        options: OptionsLike = Options.NONE,
        builder: Optional[RegistryBuilder] = None,
    ):
        self.provider = provider or FileSystemProvider()
        self._providers: Dict[str, Provider] = {}
        self._store = ArtifactStore(resolve_compile_dir(compile_dir))
        self._builder = builder or RegistryBuilder.defaults()
        self._registry: Optional[Registry] = None
        self._renderer = Renderer()
        self._pre_filters: List[Filter] = []
        self._post_filters: List[Filter] = []
        self._options = Options.NONE
        self._cache: CacheStrategy = RetainingCache()
        self.set_options(options)

    @classmethod
    def factory(
        cls,
        template_dirs: Union[str, Path, Iterable[Union[str, Path]]],
        compile_dir: Union[str, Path],
        options: OptionsLike = Options.NONE,
    ) -> "Engine":
        """Engine reading templates from directories on disk."""
        return cls(FileSystemProvider(template_dirs), compile_dir, options)

    @classmethod
    def from_config(cls, config: EngineConfig) -> "Engine":
        engine = cls.factory(config.template_dirs, resolve_compile_dir(config.compile_dir))
        engine.set_options(config.option_mask())
        if config.allowed_functions:
            engine.add_allowed_functions(config.allowed_functions)
        return engine

    # -- options --------------------------------------------------------

    @property
    def options(self) -> Options:
        return self._options

    def set_options(self, options: OptionsLike) -> "Engine":
        """Replace the option mask.

        Templates compiled under the previous mask are dropped from memory.
        FORCE_COMPILE switches to a cache that retains nothing.
        """
        if isinstance(options, Mapping):
            options = make_mask(options)
        options = Options(options)
        if options != self._options:
            self._cache = NoOpCache() if options & Options.FORCE_COMPILE else RetainingCache()
        self._options = options
        log.debug(f"Engine options set to {options!r}")
        return self

    def set_compile_check(self, state: bool) -> "Engine":
        return self._toggle(Options.CHECK_MTIME, state)

    def set_force_compile(self, state: bool) -> "Engine":
        return self._toggle(Options.FORCE_COMPILE, state)

    def _toggle(self, flag: Options, state: bool) -> "Engine":
        return self.set_options(self._options | flag if state else self._options & ~flag)

    @property
    def compile_dir(self) -> Path:
        return self._store.directory

    def set_compile_dir(self, directory: Union[str, Path]) -> "Engine":
        self._store = ArtifactStore(directory)
        return self

    # -- registry -------------------------------------------------------

    @property
    def registry(self) -> Registry:
        if self._registry is None:
            self._registry = self._builder.build()
        return self._registry

    def _register(self, method: str, *args: Any) -> "Engine":
        getattr(self._builder, method)(*args)
        self._registry = None
        return self

    def add_modifier(self, name: str, fn: Callable) -> "Engine":
        return self._register("add_modifier", name, fn)

    def add_compiler(self, name: str, parser: Callable) -> "Engine":
        return self._register("add_compiler", name, parser)

    def add_block_compiler(
        self,
        name: str,
        open: Callable,
        close: Optional[Callable] = None,
        tags: Optional[Mapping[str, Callable]] = None,
        floating: Optional[Iterable[str]] = None,
    ) -> "Engine":
        return self._register("add_block_compiler", name, open, close, tags, floating)

    def add_function(self, name: str, fn: Callable, parser: Optional[Callable] = None) -> "Engine":
        return self._register("add_function", name, fn, parser)

    def add_function_smart(self, name: str, fn: Callable) -> "Engine":
        return self._register("add_function_smart", name, fn)

    def add_block_function(
        self,
        name: str,
        fn: Callable,
        open: Optional[Callable] = None,
        close: Optional[Callable] = None,
    ) -> "Engine":
        return self._register("add_block_function", name, fn, open, close)

    def add_allowed_functions(self, funcs: Union[Mapping[str, Callable], Iterable[str]]) -> "Engine":
        return self._register("add_allowed_functions", funcs)

    def add_pre_compile_filter(self, fn: Filter) -> "Engine":
        """Transform template source before it is compiled."""
        self._pre_filters.append(fn)
        return self

    def add_post_compile_filter(self, fn: Filter) -> "Engine":
        """Transform generated module code before it is loaded and stored."""
        self._post_filters.append(fn)
        return self

    # -- providers ------------------------------------------------------

    def add_provider(self, scheme: str, provider: Provider) -> "Engine":
        self._providers[scheme] = provider
        return self

    def get_provider(self, scheme: Optional[str] = None) -> Provider:
        if scheme is None:
            return self.provider
        try:
            return self._providers[scheme]
        except KeyError:
            raise ProviderNotFoundError(scheme) from None

    def set_template_dirs(self, dirs: Union[str, Path, Iterable[Union[str, Path]]]) -> "Engine":
        if not isinstance(self.provider, FileSystemProvider):
            raise TypeError("Template directories need a FileSystemProvider")
        self.provider.set_template_dirs(dirs)
        return self

    def load_source(self, name: str) -> tuple[str, float]:
        """Return (text, mtime) of a template from its provider."""
        scheme, path = split_identifier(name)
        provider = self.get_provider(scheme)
        return provider.load_text(path), provider.last_modified(path)

    def last_modified(self, name: str) -> float:
        scheme, path = split_identifier(name)
        return self.get_provider(scheme).last_modified(path)

    # -- resolution -----------------------------------------------------

    def get_template(self, name: str) -> Template:
        """Resolve an identifier to a bound, executable template.

        Raises:
            TemplateNotFoundError: If no provider has the template.
            CompileError: If the template does not compile.
        """
        template = self._cache.get(name)
        if template is not None:
            if self._options & Options.CHECK_MTIME and not template.is_valid():
                log.debug(f"{name} changed, recompiling")
                template = self.compile(name)
                self._cache.put(name, template)
            return template

        if self._options & Options.FORCE_COMPILE:
            return self.compile(name)

        template = self._load(name)
        self._cache.put(name, template)
        return template

    resolve = get_template

    def _load(self, name: str) -> Template:
        code = self._store.read(name, self._options)
        if code is None:
            return self.compile(name)
        template = Template.from_code(code, str(self._store.path_for(name, self._options)))
        template.bind(self)
        if self._options & Options.CHECK_MTIME and not template.is_valid():
            log.debug(f"Stored {name} is stale, recompiling")
            return self.compile(name)
        log.debug(f"Loaded {name} from {self._store.path_for(name, self._options)}")
        return template

    def compile(self, name: str, store: bool = True) -> Template:
        """Compile a template from its provider.

        Args:
            name: Template identifier.
            store: Persist the compiled module to the compile directory.

        Returns:
            The bound template. It is not put in the in-memory cache.
        """
        text, mtime = self.load_source(name)
        compiled = self._compile_source(text, name)
        compiled.depends = {name: mtime, **compiled.depends}
        code = self._render(compiled)

        filename = f"<tagl:{name}>"
        if store:
            filename = str(self._store.path_for(name, self._options))
        template = Template.from_code(code, filename).bind(self)
        if store:
            self._store.write(name, self._options, code)
        return template

    def compile_code(self, source: str, name: str = "runtime") -> Template:
        """Compile template source directly; nothing is persisted or cached."""
        code = self._render(self._compile_source(source, name))
        return Template.from_code(code, f"<tagl:{name}>").bind(self)

    def _compile_source(self, text: str, name: str):
        for fn in self._pre_filters:
            text = fn(text)
        compiler = Compiler(self.registry, self._options, loader=self.load_source)
        return compiler.compile(text, name)

    def _render(self, compiled) -> str:
        code = self._renderer.render(compiled)
        for fn in self._post_filters:
            code = fn(code)
        return code

    def add_template(self, template: Template) -> "Engine":
        """Put a prepared template in the in-memory cache under its name."""
        self._cache.put(template.name, template.bind(self))
        return self

    def fetch(self, name: str, v: Optional[Mapping[str, Any]] = None) -> str:
        return self.get_template(name).fetch(v)

    def display(self, name: str, v: Optional[Mapping[str, Any]] = None) -> None:
        self.get_template(name).display(v)

    def clear_compiled_template(self, name: str) -> bool:
        """Forget a template in memory and on disk. Safe to call repeatedly."""
        self._cache.pop(name)
        return self._store.delete(name, self._options)

    def clear_all_compiles(self) -> None:
        self._store.clear()
