"""
Command line entry points.

- nim-build-release: build a binary Nim release from a source folder
- nim-release-lib: host queries and pipeline helpers for CI shell steps
"""

import os
from pathlib import Path

import click
import typer

from nimrelease.backends import (
    CsourcesBuilder,
    KochDocGenerator,
    NimMetadataProbe,
    TarXzArchiver,
    WinReleaseTool,
)
from nimrelease.context import ReleaseContext, build_context
from nimrelease.core import ConfigError, load_config
from nimrelease.host import arch_from_triple, cpu_count, detect_os, native_path
from nimrelease.logging_utils import configure_logging, error
from nimrelease.packager import Packager
from nimrelease.pipeline import (
    begin_fold,
    end_fold,
    propagate_env,
    propagate_path_prefix,
)
from nimrelease.types import InvalidArgument, StepError

LOG_LEVEL_ENV_VAR = "NIM_RELEASE_LOG_LEVEL"

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

app = typer.Typer(
    name="nim-build-release",
    help="Build a binary Nim release from a source folder.",
    add_completion=False,
    context_settings=CONTEXT_SETTINGS,
)

lib_app = typer.Typer(
    name="nim-release-lib",
    help="Host queries and CI pipeline helpers.",
    add_completion=False,
    no_args_is_help=True,
    context_settings=CONTEXT_SETTINGS,
)


def make_packager(context: ReleaseContext) -> Packager:
    """Wire the real external-tool backends into a Packager."""
    return Packager(
        context,
        builder=CsourcesBuilder(),
        doc_generator=KochDocGenerator(),
        probe=NimMetadataProbe(),
        archiver=TarXzArchiver(),
        release_tool=WinReleaseTool(),
    )


@app.command()
def build_release(
    ctx: typer.Context,
    source: Path = typer.Argument(
        None,
        metavar="<source>",
        help="Folder created from a standard Nim source archive.",
        show_default=False,
    ),
    output: Path = typer.Option(
        None,
        "-o",
        metavar="folder",
        help="Where to output the resulting artifacts. Defaults to $PWD/output.",
        show_default=False,
    ),
    deps: Path = typer.Option(
        None,
        "-d",
        metavar="folder",
        help="Where dependencies are downloaded into. Defaults to $PWD/external.",
        show_default=False,
    ),
    log_level: str = typer.Option(
        None, "--log-level", help="Logging level (default: INFO)."
    ),
):
    """
    Build a binary Nim release from the specified source folder. This folder is
    assumed to be created from a standard Nim source archive.

    Environment variables: CC (compiler used to build csources), CFLAGS and
    LDFLAGS (flags passed to the C compiler when compiling and linking).
    """
    if source is None:
        typer.echo(f"{ctx.info_name}: missing required argument -- <source>", err=True)
        typer.echo(ctx.get_usage(), err=True)
        raise typer.Exit(code=1)

    try:
        tool_config = load_config()
    except ConfigError as e:
        error(str(e))
        raise typer.Exit(code=1)

    configure_logging(
        log_level or os.environ.get(LOG_LEVEL_ENV_VAR) or tool_config.log_level or "INFO"
    )

    if not source.is_dir():
        error(f"source folder does not exist: {source}")
        raise typer.Exit(code=1)

    try:
        context = build_context(source, output=output, deps=deps, config=tool_config)
        result = make_packager(context).run()
    except StepError as e:
        error(str(e))
        raise typer.Exit(code=e.returncode)

    typer.echo(str(result.file_path))


@lib_app.command("os")
def os_command():
    """Print the OS name in lower case."""
    typer.echo(detect_os())


@lib_app.command("ncpu")
def ncpu_command():
    """Print the number of logical CPUs, 1 if it couldn't be found."""
    typer.echo(str(cpu_count()))


@lib_app.command("arch-from-triple")
def arch_from_triple_command(
    triple: str = typer.Argument(..., help="Target triple, e.g. x86_64-linux-gnu"),
):
    """Print the architecture from a target triple."""
    typer.echo(arch_from_triple(triple))


@lib_app.command("nativepath")
def nativepath_command(
    path: str = typer.Argument(None, help="Unix path to translate"),
):
    """Translate the given unix path to a native path."""
    try:
        typer.echo(native_path(path))
    except InvalidArgument as e:
        error(str(e))
        raise typer.Exit(code=1)


def _pairs(args: list[str]) -> list[tuple[str, str]]:
    """Group ``name value name value ...``; a trailing name gets an empty value."""
    return [
        (args[i], args[i + 1] if i + 1 < len(args) else "")
        for i in range(0, len(args), 2)
    ]


@lib_app.command("pushenv")
def pushenv_command(
    args: list[str] = typer.Argument(None, metavar="(<name> [<value>])..."),
):
    """Push environment variables to the next step in a job pipeline."""
    try:
        propagate_env(_pairs(args or []))
    except InvalidArgument as e:
        error(str(e))
        raise typer.Exit(code=1)


@lib_app.command("pushpath")
def pushpath_command(
    paths: list[str] = typer.Argument(None, metavar="<path>..."),
):
    """Prepend the given paths to PATH for the next step in a job pipeline."""
    try:
        propagate_path_prefix(paths or [])
    except InvalidArgument as e:
        error(str(e))
        raise typer.Exit(code=1)


@lib_app.command("fold")
def fold_command(
    desc: list[str] = typer.Argument(None, metavar="[desc]..."),
):
    """Start an output fold with description `desc`."""
    begin_fold(" ".join(desc or []))


@lib_app.command("endfold")
def endfold_command():
    """End the last output fold."""
    end_fold()


def _invoke(typer_app: typer.Typer, prog_name: str, argv: list[str] | None) -> int:
    command = typer.main.get_command(typer_app)
    try:
        rv = command.main(args=argv, prog_name=prog_name, standalone_mode=False)
    except click.UsageError as e:
        # Unknown flags and bad arguments exit 1, not click's default 2.
        e.show()
        return 1
    except click.Abort:
        return 1
    return rv if isinstance(rv, int) else 0


def main(argv: list[str] | None = None) -> int:
    return _invoke(app, "nim-build-release", argv)


def lib_main(argv: list[str] | None = None) -> int:
    return _invoke(lib_app, "nim-release-lib", argv)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
