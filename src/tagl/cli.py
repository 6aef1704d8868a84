"""tagl CLI

Usage:
    tagl render page.tpl --var title=Hello      # Render to stdout
    tagl render page.tpl --vars data.yaml       # Variables from a YAML/JSON file
    tagl compile page.tpl -o page.py            # Show or save generated code
    tagl clear page.tpl                         # Drop the compiled record
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, NoReturn, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler

from tagl.config import EngineConfig, find_config
from tagl.engine import Engine
from tagl.exceptions import TaglError

log = logging.getLogger(__name__)

console = Console()

app = typer.Typer(help="Compile and render tag-language templates.")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the tagl CLI.

    Log levels:
    - Normal: Only warnings/errors shown
    - Verbose (-v): INFO level
    - Debug (TAGL_DEBUG=1): DEBUG level - compile, cache and store events
    """
    debug = bool(os.environ.get("TAGL_DEBUG"))
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    handler = RichHandler(
        console=Console(stderr=True),
        show_time=verbose,
        show_path=debug,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    tagl_logger = logging.getLogger("tagl")
    tagl_logger.setLevel(level)
    tagl_logger.handlers = [handler]
    tagl_logger.propagate = False


def exit_with_error(message: str, exit_code: int = 1) -> NoReturn:
    """Exit the program with an error message."""
    console.print(f"[red]Error:[/red] {message}", markup=True, highlight=False)
    raise typer.Exit(exit_code)


def parse_vars(pairs: Optional[List[str]], vars_file: Optional[Path]) -> Dict[str, Any]:
    """Merge variables from a YAML/JSON file and ``name=value`` pairs.

    Pair values are parsed as YAML scalars, so ``n=3`` gives an int.
    """
    scope: Dict[str, Any] = {}
    if vars_file is not None:
        with open(vars_file) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{vars_file} must contain a mapping")
        scope.update(data)
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise ValueError(f"Invalid variable '{pair}', expected name=value")
        scope[name] = yaml.safe_load(value) if value else ""
    return scope


def build_engine(
    config_file: Optional[Path] = None,
    template_dirs: Optional[List[Path]] = None,
    compile_dir: Optional[Path] = None,
    force: bool = False,
) -> Engine:
    """Build an engine from tagl.yaml, with command-line overrides."""
    path = config_file or find_config()
    config = EngineConfig.load(path) if path else EngineConfig()
    update: Dict[str, Any] = {}
    if template_dirs:
        update["template_dirs"] = template_dirs
    if compile_dir is not None:
        update["compile_dir"] = compile_dir
    config = config.model_copy(update=update)
    log.debug(f"Config: {config}")

    engine = Engine.from_config(config)
    if force:
        engine.set_force_compile(True)
    return engine


ConfigOption = typer.Option(None, "-f", "--config", help="Path to tagl.yaml.")
TemplateDirOption = typer.Option(
    None, "-d", "--template-dir", help="Template directory (repeatable)."
)
CompileDirOption = typer.Option(None, "-c", "--compile-dir", help="Compile directory.")
VerboseOption = typer.Option(False, "-v", "--verbose", help="Verbose output.")


@app.command()
def render(
    name: str = typer.Argument(..., help="Template identifier, e.g. page.tpl"),
    var: Optional[List[str]] = typer.Option(None, "--var", help="name=value (repeatable)."),
    vars_file: Optional[Path] = typer.Option(None, "--vars", help="YAML/JSON file of variables."),
    force: bool = typer.Option(False, "--force", help="Always recompile."),
    config: Optional[Path] = ConfigOption,
    template_dir: Optional[List[Path]] = TemplateDirOption,
    compile_dir: Optional[Path] = CompileDirOption,
    verbose: bool = VerboseOption,
) -> None:
    """Render a template to stdout."""
    setup_logging(verbose)
    try:
        engine = build_engine(config, template_dir, compile_dir, force)
        output = engine.fetch(name, parse_vars(var, vars_file))
    except (TaglError, ValueError, OSError) as e:
        exit_with_error(str(e))
    typer.echo(output, nl=False)


@app.command("compile")
def compile_template(
    name: str = typer.Argument(..., help="Template identifier."),
    output: Optional[Path] = typer.Option(None, "-o", "--output", help="Write code to file."),
    config: Optional[Path] = ConfigOption,
    template_dir: Optional[List[Path]] = TemplateDirOption,
    compile_dir: Optional[Path] = CompileDirOption,
    verbose: bool = VerboseOption,
) -> None:
    """Compile a template and show the generated Python code."""
    setup_logging(verbose)
    try:
        engine = build_engine(config, template_dir, compile_dir)
        template = engine.compile(name)
    except (TaglError, ValueError, OSError) as e:
        exit_with_error(str(e))

    if output is None:
        typer.echo(template.code, nl=False)
        return
    output.write_text(template.code)
    console.print(f"[green]✓[/green] Compiled {name} to {output}")


@app.command()
def clear(
    name: str = typer.Argument(..., help="Template identifier."),
    config: Optional[Path] = ConfigOption,
    template_dir: Optional[List[Path]] = TemplateDirOption,
    compile_dir: Optional[Path] = CompileDirOption,
    verbose: bool = VerboseOption,
) -> None:
    """Remove the compiled record of a template."""
    setup_logging(verbose)
    try:
        engine = build_engine(config, template_dir, compile_dir)
    except (TaglError, ValueError, OSError) as e:
        exit_with_error(str(e))

    if engine.clear_compiled_template(name):
        console.print(f"Removed compiled {name}")
    else:
        console.print(f"[dim]No compiled record for {name}[/dim]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
