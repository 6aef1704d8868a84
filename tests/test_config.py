"""Tests for tagl.yaml loading."""

from pathlib import Path

import pytest

from tagl.config import EngineConfig, OptionsConfig, find_config, resolve_compile_dir
from tagl.engine import Engine
from tagl.exceptions import ConfigError
from tagl.options import Options, make_mask


def test_missing_file_gives_defaults(tmp_path):
    config = EngineConfig.load(tmp_path / "tagl.yaml")

    assert config.template_dirs == [Path("templates")]
    assert config.compile_dir is None
    assert config.option_mask() == Options.NONE


def test_relative_dirs_resolve_against_config_file(tmp_path):
    path = tmp_path / "tagl.yaml"
    path.write_text(
        "template_dirs: [views, /abs/views]\n"
        "compile_dir: build/compiled\n"
        "options:\n"
        "  compile_check: true\n"
        "  disable_methods: true\n"
    )

    config = EngineConfig.load(path)

    assert config.template_dirs == [tmp_path / "views", Path("/abs/views")]
    assert config.compile_dir == tmp_path / "build" / "compiled"
    assert config.option_mask() == Options.CHECK_MTIME | Options.DENY_METHODS


def test_invalid_yaml(tmp_path):
    path = tmp_path / "tagl.yaml"
    path.write_text("options: [unclosed\n")

    with pytest.raises(ConfigError, match="Invalid YAML"):
        EngineConfig.load(path)


def test_unknown_option_is_rejected(tmp_path):
    path = tmp_path / "tagl.yaml"
    path.write_text("options:\n  turbo: true\n")

    with pytest.raises(ConfigError, match="Invalid config"):
        EngineConfig.load(path)


def test_options_config_mask():
    options = OptionsConfig(force_include=True, force_compile=True)

    assert options.mask() == Options.FORCE_INCLUDE | Options.FORCE_COMPILE


def test_make_mask_rejects_unknown_names():
    with pytest.raises(ValueError, match="Unknown option"):
        make_mask({"bogus": True})


def test_find_config_walks_up(tmp_path):
    (tmp_path / "tagl.yaml").write_text("{}\n")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    assert find_config(nested) == (tmp_path / "tagl.yaml").resolve()


def test_resolve_compile_dir_priority(tmp_path, monkeypatch):
    monkeypatch.setenv("TAGL_COMPILE_DIR", str(tmp_path / "env"))

    assert resolve_compile_dir(tmp_path / "conf") == tmp_path / "conf"
    assert resolve_compile_dir() == tmp_path / "env"

    monkeypatch.delenv("TAGL_COMPILE_DIR")
    assert resolve_compile_dir().name == "tagl"


def test_engine_from_config(tmp_path):
    (tmp_path / "views").mkdir()
    (tmp_path / "views" / "a.tpl").write_text("{$x|double}")
    path = tmp_path / "tagl.yaml"
    path.write_text(
        "template_dirs: [views]\n"
        "compile_dir: compiled\n"
        "options:\n"
        "  disable_native_funcs: true\n"
        "allowed_functions: [divmod]\n"
    )

    engine = Engine.from_config(EngineConfig.load(path))
    engine.add_modifier("double", lambda value: value * 2)

    assert engine.options == Options.DENY_INLINE_FUNCS
    assert engine.compile_dir == tmp_path / "compiled"
    assert engine.fetch("a.tpl", {"x": 4}) == "8"
    assert engine.compile_code("{divmod(7, 2)}").fetch() == "(3, 1)"
