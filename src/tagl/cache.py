"""In-memory cache strategies for loaded templates."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from tagl.runtime import Template


class CacheStrategy(ABC):
    """Where an engine keeps templates it already loaded."""

    @abstractmethod
    def get(self, name: str) -> Optional["Template"]:
        ...

    @abstractmethod
    def put(self, name: str, template: "Template") -> None:
        ...

    @abstractmethod
    def pop(self, name: str) -> Optional["Template"]:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None


class RetainingCache(CacheStrategy):
    """Keeps every template for the lifetime of the engine."""

    def __init__(self) -> None:
        self._templates: dict[str, "Template"] = {}

    def get(self, name: str) -> Optional["Template"]:
        return self._templates.get(name)

    def put(self, name: str, template: "Template") -> None:
        self._templates[name] = template

    def pop(self, name: str) -> Optional["Template"]:
        return self._templates.pop(name, None)

    def clear(self) -> None:
        self._templates.clear()

    def __len__(self) -> int:
        return len(self._templates)


class NoOpCache(CacheStrategy):
    """Retains nothing; every lookup misses. Used with FORCE_COMPILE."""

    def get(self, name: str) -> Optional["Template"]:
        return None

    def put(self, name: str, template: "Template") -> None:
        pass

    def pop(self, name: str) -> Optional["Template"]:
        return None

    def clear(self) -> None:
        pass

    def __len__(self) -> int:
        return 0
