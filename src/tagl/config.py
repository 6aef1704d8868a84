"""Configuration parsing for tagl.yaml"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError

from tagl.exceptions import ConfigError
from tagl.options import Options, make_mask

log = logging.getLogger(__name__)

CONFIG_FILE = "tagl.yaml"
COMPILE_DIR_ENV = "TAGL_COMPILE_DIR"


class OptionsConfig(BaseModel):
    """Named option flags, see ``tagl.options.OPTION_NAMES``"""

    disable_methods: bool = False
    disable_native_funcs: bool = False
    force_include: bool = False
    compile_check: bool = False
    force_compile: bool = False

    model_config = {"extra": "forbid"}

    def mask(self) -> Options:
        return make_mask(self.model_dump())


class EngineConfig(BaseModel):
    """Full tagl.yaml configuration"""

    template_dirs: list[Path] = [Path("templates")]
    compile_dir: Path | None = None
    options: OptionsConfig = OptionsConfig()
    allowed_functions: list[str] = []

    model_config = {"extra": "forbid"}

    @classmethod
    def load(cls, path: Path) -> "EngineConfig":
        """Load config from yaml file.

        Relative directories are taken relative to the file's directory. A
        missing file yields the defaults.

        Raises:
            ConfigError: If the file is not valid YAML or fails validation.
        """
        if not path.exists():
            log.debug(f"No config at {path}, using defaults")
            return cls()

        with open(path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid config {path}: {e}") from e

        base = path.parent
        update: dict = {
            "template_dirs": [d if d.is_absolute() else base / d for d in config.template_dirs]
        }
        if config.compile_dir is not None and not config.compile_dir.is_absolute():
            update["compile_dir"] = base / config.compile_dir
        return config.model_copy(update=update)

    def option_mask(self) -> Options:
        return self.options.mask()


def find_config(start: Path | None = None) -> Path | None:
    """Walk up from start looking for tagl.yaml"""
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILE
        if candidate.exists():
            return candidate
        if current.parent == current:
            return None
        current = current.parent


def resolve_compile_dir(configured: Path | None = None) -> Path:
    """Resolve the compile directory.

    Priority:
    1. configured (from tagl.yaml or the CLI)
    2. TAGL_COMPILE_DIR environment variable
    3. <system temp dir>/tagl
    """
    if configured is not None:
        path = Path(configured)
    elif os.environ.get(COMPILE_DIR_ENV):
        path = Path(os.environ[COMPILE_DIR_ENV])
        log.debug(f"Using {COMPILE_DIR_ENV}: {path}")
    else:
        path = Path(tempfile.gettempdir()) / "tagl"
    return path.expanduser()
