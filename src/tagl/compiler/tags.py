"""Built-in tag compilers.

Inline compilers are called as ``parse(tokens, ctx)``. Block compilers get
``open(tokens, frame, ctx)`` and ``close(tokens, frame, ctx)``, and their child
tags get ``(tokens, frame, ctx)`` with the owning frame. The compiler pushes
and pops frames; handlers only emit code and keep notes in ``frame.state``.

Loops are compiled to real Python loops, so ``{break}`` and ``{continue}``
become ``break``/``continue``. A ``{switch}`` is compiled to a ``while True``
loop as well; jumping out of a loop across a switch sets an escape flag that
the switch re-raises as a jump once it has been left.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List

from tagl import modifiers
from tagl.compiler.expressions import unquote
from tagl.compiler.spec import Frame
from tagl.exceptions import CompileError, TagKindMismatchError
from tagl.lexer import OpClass, TokenKind, TokenStream
from tagl.options import Options

if TYPE_CHECKING:
    from tagl.compiler.compiler import CompileContext
    from tagl.registry import RegistryBuilder


def _target(tokens: TokenStream) -> str:
    """Assignment target for a ``$name`` token."""
    name = tokens.get(TokenKind.VARIABLE)[1:]
    tokens.advance()
    return f"v[{name!r}]"


def _getter(target: str) -> str:
    return "v.get(" + target[2:-1] + ")"


def _index(stack: List[Frame], frame: Frame) -> int:
    return next(i for i, item in enumerate(stack) if item is frame)


def std_close(tokens: TokenStream, frame: Frame, ctx: "CompileContext") -> None:
    ctx.code.dedent()


# -- if ---------------------------------------------------------------


def if_open(tokens, frame, ctx):
    ctx.code.open(f"if {ctx.expr(tokens)}:")


def if_elseif(tokens, frame, ctx):
    if frame.state.get("else"):
        raise CompileError("Tag {elseif} can not follow {else}", tokens.line)
    ctx.code.dedent()
    ctx.code.open(f"elif {ctx.expr(tokens)}:")


def if_else(tokens, frame, ctx):
    if frame.state.get("else"):
        raise CompileError("Duplicate {else}", tokens.line)
    frame.state["else"] = True
    ctx.code.dedent()
    ctx.code.open("else:")


# -- loops ------------------------------------------------------------


def foreach_open(tokens, frame, ctx):
    """``{foreach $list as [$key =>] $value [index=$i first=$f last=$l]}``"""
    source = ctx.expr(tokens)
    if not tokens.at_word("as"):
        raise tokens.error("as")
    tokens.advance()
    first = _target(tokens)
    if tokens.skip_if("=>"):
        key, value = first, _target(tokens)
    else:
        key, value = "_", first

    extras = {}
    while tokens.at(TokenKind.NAME):
        if not tokens.at_word("index", "first", "last"):
            raise tokens.error(where="foreach")
        option = tokens.get_and_advance().lower()
        tokens.skip("=")
        extras[option] = _target(tokens)

    items = f"_items_{frame.uid}"
    ctx.code.emit(f"{items} = _rt.iterable({source})")
    ctx.code.emit(f"if {items}:")
    ctx.code.indent()
    if not extras:
        ctx.code.open(f"for {key}, {value} in {items}:")
    else:
        index = f"_i_{frame.uid}"
        ctx.code.open(f"for {index}, ({key}, {value}) in enumerate({items}):")
        for option, target in extras.items():
            if option == "index":
                ctx.code.emit(f"{target} = {index}")
            elif option == "first":
                ctx.code.emit(f"{target} = {index} == 0")
            else:
                ctx.code.emit(f"{target} = {index} == len({items}) - 1")
    frame.state.update(loop=True, depth=2)


def for_open(tokens, frame, ctx):
    """``{for $i = start to end [step n]}``, both bounds inclusive."""
    target = _target(tokens)
    tokens.skip("=")
    start = ctx.expr(tokens)
    if not tokens.at_word("to"):
        raise tokens.error("to")
    tokens.advance()
    end = ctx.expr(tokens)
    if not tokens.valid():
        tokens.splice(tokens.pos, " step 1")
    if not tokens.at_word("step"):
        raise tokens.error("step")
    tokens.advance()
    step = ctx.expr(tokens)

    items = f"_range_{frame.uid}"
    ctx.code.emit(f"{items} = _rt.span({start}, {end}, {step})")
    ctx.code.emit(f"if {items}:")
    ctx.code.indent()
    ctx.code.open(f"for {target} in {items}:")
    frame.state.update(loop=True, depth=2)


def loop_else(tokens, frame, ctx):
    """``{foreachelse}``/``{forelse}``: runs when there was nothing to iterate."""
    if frame.state.get("else"):
        raise CompileError(f"Duplicate {{{ctx.tag}}}", tokens.line)
    frame.state.update({"else": True, "depth": 1})
    ctx.code.dedent()
    ctx.code.dedent()
    ctx.code.open("else:")


def loop_close(tokens, frame, ctx):
    for _ in range(frame.state.get("depth", 1)):
        ctx.code.dedent()


def while_open(tokens, frame, ctx):
    ctx.code.open(f"while {ctx.expr(tokens)}:")
    frame.state["loop"] = True


def tag_break(tokens, frame, ctx):
    emit_jump(ctx, "break", frame)


def tag_continue(tokens, frame, ctx):
    emit_jump(ctx, "continue", frame)


def emit_jump(ctx: "CompileContext", statement: str, owner: Frame) -> None:
    """Emit ``statement`` so that it applies to the loop compiled for owner."""
    if owner.state.get("depth") == 1:
        raise CompileError(
            f"Tag {{{statement}}} can not be used after {{{owner.name}else}}"
        )
    _jump_between(ctx, statement, owner, len(ctx.stack))


def _jump_between(ctx, statement: str, owner: Frame, stop: int) -> None:
    start = _index(ctx.stack, owner) + 1
    for frame in ctx.stack[start:stop]:
        if frame.state.get("function"):
            raise CompileError(
                f"Tag {{{statement}}} can not leave {{{frame.name}}}"
            )
    crossing = [frame for frame in ctx.stack[start:stop] if frame.state.get("loop")]
    if not crossing:
        ctx.code.emit(statement)
        return
    inner = crossing[-1]
    inner.state.setdefault("escapes", {})[statement] = owner
    ctx.code.emit(f"_escape_{inner.uid} = {statement!r}")
    ctx.code.emit("break")


# -- switch -----------------------------------------------------------


def switch_open(tokens, frame, ctx):
    uid = frame.uid
    ctx.code.emit(f"_switch_{uid} = {ctx.expr(tokens)}")
    ctx.code.emit(f"_fall_{uid} = False")
    ctx.code.emit(f"_escape_{uid} = None")
    ctx.code.open("while True:")
    frame.state.update(loop=True, skip_text=True, case=False)


def switch_case(tokens, frame, ctx):
    values = [ctx.expr(tokens)]
    while tokens.skip_if(","):
        values.append(ctx.expr(tokens))
    uid = frame.uid
    _open_case(frame, ctx, f"_fall_{uid} or _switch_{uid} in ({', '.join(values)},)")


def switch_default(tokens, frame, ctx):
    if frame.state.get("default"):
        raise CompileError("Duplicate {default}", tokens.line)
    frame.state["default"] = True
    _open_case(frame, ctx, "True")


def _open_case(frame, ctx, condition: str) -> None:
    if frame.state["case"]:
        ctx.code.dedent()
    frame.state.update(case=True, skip_text=False)
    ctx.code.open(f"if {condition}:")
    ctx.code.emit(f"_fall_{frame.uid} = True")


def switch_close(tokens, frame, ctx):
    if frame.state["case"]:
        ctx.code.dedent()
    ctx.code.emit("break")
    ctx.code.dedent()
    # the switch frame is still on the stack while it closes
    below = len(ctx.stack) - 1
    for statement, owner in frame.state.get("escapes", {}).items():
        ctx.code.emit(f"if _escape_{frame.uid} == {statement!r}:")
        ctx.code.indent()
        _jump_between(ctx, statement, owner, below)
        ctx.code.dedent()


# -- assignment, includes and inheritance ------------------------------


def tag_var(tokens, ctx):
    """``{var $x = expr}``, compound assignments and ``{var $x++}``."""
    target = _target(tokens)
    getter = _getter(target)
    if tokens.at(OpClass.INCDEC):
        op = tokens.get_and_advance()[0]
        ctx.code.emit(f"{target} = ({getter} or 0) {op} 1")
        return
    operator = tokens.get(OpClass.EQUALS)
    tokens.advance()
    value = ctx.expr(tokens)
    if operator == "=":
        ctx.code.emit(f"{target} = {value}")
    elif operator == ".=":
        ctx.code.emit(f"{target} = _rt.to_str({getter}) + _rt.to_str({value})")
    else:
        ctx.code.emit(f"{target} = ({getter} or 0) {operator[:-1]} ({value})")


def tag_include(tokens, ctx):
    """``{include 'name' [param=expr ...]}``

    With FORCE_INCLUDE and a literal name, the included template is compiled
    into the current one instead of being loaded at render time.
    """
    start = tokens.pos
    name_token = tokens.curr()
    name = ctx.expr(tokens)
    literal = tokens.pos == start + 1 and name_token.kind is TokenKind.STRING
    params = ctx.expressions.parse_params(tokens)
    if literal and ctx.options & Options.FORCE_INCLUDE:
        if ctx.compiler.compile_include(unquote(name_token.text), params, ctx):
            return
    ctx.code.emit(f"tpl.include({name}, v, out, {params})")


def tag_extends(tokens, ctx):
    if ctx.stack:
        raise CompileError("Tag {extends} can not be used inside a block", tokens.line)
    ctx.code.emit(f"out = tpl.extends({ctx.expr(tokens)})")


def block_open(tokens, frame, ctx):
    """``{block name}``: a named, overridable section."""
    if tokens.at(TokenKind.STRING):
        name = unquote(tokens.get_and_advance())
    else:
        name = tokens.collect_until().strip()
    if not name:
        raise tokens.error(where="block")
    frame.state.update(block=name, function=True)
    ctx.code.open(f"def _block_{frame.uid}(v, out):")


def block_close(tokens, frame, ctx):
    ctx.code.dedent()
    ctx.code.emit(f"tpl.block({frame.state['block']!r}, _block_{frame.uid}, v, out)")


# -- registered functions ---------------------------------------------


def std_func_parser(tokens, ctx):
    """Inline function: ``{name param=expr ...}`` -> ``fn(params, scope)``."""
    params = ctx.expressions.parse_params(tokens)
    ctx.write(f"tpl.function({ctx.tag!r})({params}, v)")


def smart_func_parser(tokens, ctx):
    """Inline function with call-style arguments: ``{name a, b, key=c}``."""
    args = ctx.expressions.parse_smart_args(tokens)
    ctx.write(f"tpl.function({ctx.tag!r})({args})")


def std_func_open(tokens, frame, ctx):
    """Block function: capture the body output into a fresh buffer."""
    uid = frame.uid
    ctx.code.emit(f"_params_{uid} = {ctx.expressions.parse_params(tokens)}")
    ctx.code.emit(f"_outer_{uid}, out = out, _rt.Buffer()")
    # out stays swapped until the close tag restores it
    frame.state.update(function=True)


def std_func_close(tokens, frame, ctx):
    uid = frame.uid
    if tokens.valid():
        raise TagKindMismatchError(
            frame.name, f"Closing tag {{/{frame.name}}} takes no parameters", tokens.line
        )
    ctx.code.emit(f"_content_{uid}, out = out.getvalue(), _outer_{uid}")
    ctx.write(f"tpl.function({frame.name!r})(_params_{uid}, _content_{uid}, v)")


def install(builder: "RegistryBuilder") -> "RegistryBuilder":
    """Register the built-in tags, modifiers and allowed functions."""
    loop_jumps = {"break": tag_break, "continue": tag_continue}
    builder.add_block_compiler(
        "foreach",
        foreach_open,
        loop_close,
        tags={"foreachelse": loop_else, **loop_jumps},
        floating=loop_jumps,
    )
    builder.add_block_compiler(
        "if", if_open, std_close, tags={"elseif": if_elseif, "else": if_else}
    )
    builder.add_block_compiler(
        "switch",
        switch_open,
        switch_close,
        tags={"case": switch_case, "default": switch_default, "break": tag_break},
        floating={"break"},
    )
    builder.add_block_compiler(
        "for",
        for_open,
        loop_close,
        tags={"forelse": loop_else, **loop_jumps},
        floating=loop_jumps,
    )
    builder.add_block_compiler(
        "while", while_open, std_close, tags=loop_jumps, floating=loop_jumps
    )
    builder.add_compiler("include", tag_include)
    builder.add_compiler("var", tag_var)
    builder.add_block_compiler("block", block_open, block_close)
    builder.add_compiler("extends", tag_extends)
    builder.add_block_function("capture", modifiers.capture)
    builder.add_function("mailto", modifiers.mailto)
    for name, fn in modifiers.MODIFIERS.items():
        builder.add_modifier(name, fn)
    builder.add_allowed_functions(modifiers.ALLOWED_FUNCTIONS)
    return builder
