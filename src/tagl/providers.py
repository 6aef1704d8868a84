"""Template providers - where template sources come from.

An identifier ``scheme:path`` is routed to the provider registered for
``scheme``; identifiers without a scheme go to the engine's default provider.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Mapping, Optional, Tuple, Union

from tagl.exceptions import TemplateNotFoundError

log = logging.getLogger(__name__)

PathLike = Union[str, Path]


def split_identifier(name: str) -> Tuple[Optional[str], str]:
    """Split ``scheme:path`` into its parts; scheme is None when absent."""
    scheme, sep, path = name.partition(":")
    if sep and scheme:
        return scheme, path
    return None, name


class Provider(ABC):
    """Source of template text and modification times."""

    @abstractmethod
    def load_text(self, name: str) -> str:
        """Return the source of template name.

        Raises:
            TemplateNotFoundError: If the template does not exist.
        """

    @abstractmethod
    def last_modified(self, name: str) -> float:
        """Return the modification time of template name.

        Raises:
            TemplateNotFoundError: If the template does not exist.
        """

    def exists(self, name: str) -> bool:
        try:
            self.last_modified(name)
        except TemplateNotFoundError:
            return False
        return True


class FileSystemProvider(Provider):
    """Loads templates from a list of directories, first match wins."""

    def __init__(self, template_dirs: Union[PathLike, Iterable[PathLike], None] = None):
        self.template_dirs: list[Path] = []
        if template_dirs is not None:
            self.set_template_dirs(template_dirs)

    def set_template_dirs(self, dirs: Union[PathLike, Iterable[PathLike]]) -> None:
        self.template_dirs = []
        if isinstance(dirs, (str, Path)):
            dirs = [dirs]
        for directory in dirs:
            self.add_template_dir(directory)

    def add_template_dir(self, directory: PathLike) -> None:
        """Append a search directory.

        Raises:
            ValueError: If directory is not an existing directory.
        """
        path = Path(directory)
        if not path.is_dir():
            raise ValueError(f"Template directory {path} doesn't exist")
        self.template_dirs.append(path.resolve())

    def _resolve(self, name: str) -> Path:
        for root in self.template_dirs:
            candidate = (root / name).resolve()
            # names may not escape their template directory
            if not candidate.is_relative_to(root):
                continue
            if candidate.is_file():
                return candidate
        raise TemplateNotFoundError(name)

    def load_text(self, name: str) -> str:
        return self._resolve(name).read_text(encoding="utf-8")

    def last_modified(self, name: str) -> float:
        return self._resolve(name).stat().st_mtime


class DictProvider(Provider):
    """In-memory templates, e.g. for tests or templates kept in a database."""

    def __init__(self, templates: Optional[Mapping[str, str]] = None):
        self._templates: dict[str, Tuple[str, float]] = {}
        self._clock = 0.0
        for name, text in (templates or {}).items():
            self.set(name, text)

    def _tick(self) -> float:
        # strictly increasing, even when the wall clock does not move
        self._clock = max(time.time(), self._clock + 0.001)
        return self._clock

    def set(self, name: str, text: str, mtime: Optional[float] = None) -> None:
        """Store or replace a template; its modification time moves forward."""
        self._templates[name] = (text, self._tick() if mtime is None else mtime)
        log.debug(f"Stored template {name}")

    def remove(self, name: str) -> None:
        self._templates.pop(name, None)

    def _entry(self, name: str) -> Tuple[str, float]:
        try:
            return self._templates[name]
        except KeyError:
            raise TemplateNotFoundError(name) from None

    def load_text(self, name: str) -> str:
        return self._entry(name)[0]

    def last_modified(self, name: str) -> float:
        return self._entry(name)[1]
