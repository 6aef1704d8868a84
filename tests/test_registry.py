"""Tests for the action registry."""

import pytest

from tagl.options import Options
from tagl.registry import ActionKind, RegistryBuilder


def test_defaults_register_builtin_tags():
    registry = RegistryBuilder.defaults().build()

    assert registry.lookup("if").kind is ActionKind.BLOCK_COMPILER
    assert registry.lookup("var").kind is ActionKind.INLINE_COMPILER
    assert registry.lookup("capture").kind is ActionKind.BLOCK_FUNCTION
    assert registry.lookup("mailto").kind is ActionKind.INLINE_FUNCTION
    assert registry.lookup("elseif") is None
    assert registry.modifier("upper") is not None


def test_floating_tags_are_declared_per_construct():
    """Only break/continue float; elseif/else/case/default are direct children."""
    registry = RegistryBuilder.defaults().build()

    assert registry.lookup("foreach").floating == {"break", "continue"}
    assert registry.lookup("switch").floating == {"break"}
    assert registry.lookup("if").floating == frozenset()
    assert "case" in registry.lookup("switch").tags


def test_owners_of_is_sorted():
    registry = RegistryBuilder.defaults().build()

    assert registry.owners_of("break") == ["for", "foreach", "switch", "while"]
    assert registry.owners_of("elseif") == ["if"]
    assert registry.owners_of("bogus") == []


def test_floating_must_be_child_tag():
    with pytest.raises(ValueError, match="not child tags"):
        RegistryBuilder().add_block_compiler("loop", lambda *a: None, floating={"break"})


def test_build_freezes_registrations():
    """Later builder calls do not leak into an already-built registry."""
    builder = RegistryBuilder()
    registry = builder.add_modifier("shout", str.upper).build()

    builder.add_modifier("whisper", str.lower)

    assert registry.modifier("shout") is str.upper
    assert registry.modifier("whisper") is None
    with pytest.raises(TypeError):
        registry.modifiers["whisper"] = str.lower


def test_is_call_allowed_respects_deny_flag():
    registry = RegistryBuilder().add_allowed_functions({"double": lambda x: x * 2}).build()

    assert registry.is_call_allowed("double")
    assert registry.is_call_allowed("len")
    assert not registry.is_call_allowed("no_such_function")
    assert registry.is_call_allowed("double", Options.DENY_INLINE_FUNCS)
    assert not registry.is_call_allowed("len", Options.DENY_INLINE_FUNCS)


def test_private_builtins_never_resolve():
    registry = RegistryBuilder().build()

    assert registry.resolve_callable("__import__") is None


def test_add_allowed_functions_by_name():
    registry = RegistryBuilder().add_allowed_functions(["len"]).build()

    assert registry.allowed_functions["len"] is len
    with pytest.raises(ValueError):
        RegistryBuilder().add_allowed_functions(["no_such_builtin"])


def test_code_and_file_builtins_need_allow_listing():
    """eval, open and friends only resolve once a host allow-lists them."""
    registry = RegistryBuilder().build()

    for name in ("eval", "exec", "open", "compile", "getattr", "setattr"):
        assert registry.resolve_callable(name) is None
        assert not registry.is_call_allowed(name)

    registry = RegistryBuilder().add_allowed_functions(["getattr"]).build()
    assert registry.resolve_callable("getattr") is getattr
