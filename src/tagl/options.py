"""Compilation and caching option flags."""

from __future__ import annotations

from enum import IntFlag
from typing import Mapping


class Options(IntFlag):
    """Composable option bitmask.

    The numeric value takes part in the persisted-record file name, so two
    engines with different options never share a compiled file.
    """

    NONE = 0
    DENY_METHODS = 0x10
    DENY_INLINE_FUNCS = 0x20
    FORCE_INCLUDE = 0x40
    CHECK_MTIME = 0x80
    FORCE_COMPILE = 0x100


OPTION_NAMES: dict[str, Options] = {
    "disable_methods": Options.DENY_METHODS,
    "disable_native_funcs": Options.DENY_INLINE_FUNCS,
    "force_include": Options.FORCE_INCLUDE,
    "compile_check": Options.CHECK_MTIME,
    "force_compile": Options.FORCE_COMPILE,
}


def make_mask(flags: Mapping[str, bool]) -> Options:
    """Build an option mask from a mapping of option names to booleans.

    Raises:
        ValueError: If a name is not a known option.
    """
    mask = Options.NONE
    for name, enabled in flags.items():
        if name not in OPTION_NAMES:
            raise ValueError(f"Unknown option: {name}")
        if enabled:
            mask |= OPTION_NAMES[name]
    return mask
