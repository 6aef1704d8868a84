"""Tests for the compiler module."""

import pytest

from tagl.compiler import Compiler, Renderer
from tagl.exceptions import (
    CompileError,
    MismatchedCloseError,
    MisplacedTagError,
    TagKindMismatchError,
    UnclosedBlockError,
    UnclosedTagError,
    UnexpectedTokenError,
    UnknownTagError,
)
from tagl.registry import RegistryBuilder
from tagl.runtime import Template


def compile_source(source, name="test.tpl"):
    return Compiler(RegistryBuilder.defaults().build()).compile(source, name)


def test_literal_text_is_reproduced_byte_for_byte(render):
    """Text without tags, including lone braces and odd characters, survives."""
    sources = [
        "",
        "plain",
        "line one\nline two\r\n\ttabbed\n",
        "braces { spaced } and {} and trailing {",
        "quotes ' \" \\ and unicode: café ☃",
    ]
    for source in sources:
        assert render(source) == source


def test_comments_are_dropped(render):
    assert render("a{* hidden {$x} *}b") == "ab"
    assert render("a{/* only a comment */}b") == "ab"


def test_if_elseif_else(render):
    source = "{if $x > 1}A{elseif $x == 1}B{else}C{/if}"

    assert render(source, x=2) == "A"
    assert render(source, x=1) == "B"
    assert render(source, x=0) == "C"


def test_body_has_line_markers():
    compiled = compile_source("a\n{$x}\n\n{if $y}\nb{/if}")

    assert "#@ line 2" in compiled.body
    assert "#@ line 4" in compiled.body
    assert "out.write(_rt.to_str(v.get('x')))" in compiled.body


def test_renderer_produces_loadable_module():
    compiled = compile_source("Hello {$name}!")

    code = Renderer().render(compiled)
    template = Template.from_code(code)

    assert code.startswith("# Compiled template 'test.tpl'")
    assert template.name == "test.tpl"
    assert "def render(tpl, v, out):" in code


def test_unclosed_block_cites_opener_line():
    with pytest.raises(UnclosedBlockError) as exc_info:
        compile_source("a\n{foreach $l as $x}\n{if $x}\nb{/if}\n")

    assert exc_info.value.tag == "foreach"
    assert exc_info.value.line == 2
    assert exc_info.value.template == "test.tpl"


def test_unclosed_innermost_block_is_reported():
    with pytest.raises(UnclosedBlockError) as exc_info:
        compile_source("{if $a}\n\n{while $b}")

    assert exc_info.value.tag == "while"
    assert exc_info.value.line == 3


def test_unknown_tag_names_tag_and_line():
    with pytest.raises(UnknownTagError) as exc_info:
        compile_source("ok\n{bogus}")

    error = exc_info.value
    assert error.tag == "bogus"
    assert error.line == 2
    assert "bogus" in str(error)
    assert "test.tpl line 2" in str(error)


def test_child_tag_outside_owner_lists_owners():
    with pytest.raises(UnknownTagError) as exc_info:
        compile_source("{break}")

    assert exc_info.value.owners == ["for", "foreach", "switch", "while"]
    assert "valid inside" in str(exc_info.value)


def test_close_with_nothing_open():
    with pytest.raises(MismatchedCloseError, match="nothing open"):
        compile_source("{/if}")


def test_close_mismatch_names_open_frame():
    with pytest.raises(MismatchedCloseError) as exc_info:
        compile_source("{if $a}\n{foreach $l as $x}{/if}")

    assert exc_info.value.open_tag == "foreach"
    assert exc_info.value.open_line == 2


def test_closing_inline_tag_is_kind_mismatch():
    with pytest.raises(TagKindMismatchError):
        compile_source("{/var}")


def test_elseif_as_grandchild_fails():
    """Non-floating child tags must be direct children of their owner."""
    with pytest.raises(MisplacedTagError) as exc_info:
        compile_source("{if $a}{foreach $l as $x}{elseif $b}{/foreach}{/if}")

    assert exc_info.value.owner == "if"


def test_break_binds_through_non_owning_block(render):
    """A floating break inside an if resolves to the enclosing loop."""
    source = "{foreach $items as $i}{if $i == 3}{break}{/if}{$i}{/foreach}"

    assert render(source, items=[1, 2, 3, 4]) == "12"


def test_elseif_after_else_fails():
    with pytest.raises(CompileError, match="can not follow"):
        compile_source("{if $a}{else}{elseif $b}{/if}")


def test_unclosed_tag_and_comment():
    with pytest.raises(UnclosedTagError):
        compile_source("a {$x")
    with pytest.raises(UnclosedTagError):
        compile_source("a {* never closed")


def test_brace_inside_quoted_string_does_not_end_tag(render):
    assert render('{"}"}{\'{x}\'}') == "}{x}"


def test_leftover_tokens_fail():
    with pytest.raises(UnexpectedTokenError, match="Unexpected token '\\$b'"):
        compile_source("{$a $b}")


def test_error_line_accounts_for_multiline_tags():
    with pytest.raises(UnexpectedTokenError) as exc_info:
        compile_source("{if\n$a\n+}{/if}")

    assert exc_info.value.line == 3


def test_compile_error_has_no_partial_output(engine, provider):
    """A failed compile leaves nothing in the store or the cache."""
    provider.set("broken.tpl", "{if $x}never closed")

    with pytest.raises(UnclosedBlockError):
        engine.get_template("broken.tpl")

    assert not engine._store.exists("broken.tpl", engine.options)
    assert not engine.compile_dir.exists() or not any(engine.compile_dir.iterdir())
    assert engine._cache.get("broken.tpl") is None


def test_custom_inline_compiler():
    """Host code can register compilers that emit their own Python."""

    def hello(tokens, ctx):
        ctx.write_text("hello " + tokens.get_and_advance())

    registry = RegistryBuilder.defaults().add_compiler("hello", hello).build()
    compiled = Compiler(registry).compile("{hello world}")

    assert Template.from_code(Renderer().render(compiled)).fetch() == "hello world"


def test_custom_block_compiler_with_floating_child():
    def repeat_open(tokens, frame, ctx):
        ctx.code.open(f"for _ in range({ctx.expr(tokens)}):")

    def stop(tokens, frame, ctx):
        ctx.code.emit("break")

    registry = (
        RegistryBuilder.defaults()
        .add_block_compiler("repeat", repeat_open, tags={"stop": stop}, floating={"stop"})
        .build()
    )
    compiled = Compiler(registry).compile("{repeat 3}x{if true}{stop}{/if}{/repeat}")

    assert Template.from_code(Renderer().render(compiled)).fetch() == "x"
