# cli.py
from __future__ import annotations

import shlex
import sys
from pathlib import Path
from typing import List, Optional

import click
from click.shell_completion import get_completion_class

from fakemake import __version__
from fakemake.dag import Scheduler, resolve_targets
from fakemake.errors import ConfigError, FakeError
from fakemake.model import Graph
from fakemake.parse import find_makefile, load_graph, parse_database
from fakemake.runner import MakeRunner, run_targets
from fakemake.ui.console import Console, get_console, set_console

PROG_NAME = "fake"
COMPLETE_VAR = "_FAKE_COMPLETE"
SHELLS = ("bash", "zsh", "fish")


def discover_makefile(makefile_arg: str | None) -> Path:
    """
    Resolve the makefile path.

    Args:
        makefile_arg: Optional -f/--file argument from CLI

    Returns:
        Path to an existing makefile

    Raises:
        ConfigError: if the file does not exist or none can be found
    """
    if makefile_arg:
        path = Path(makefile_arg)
        if not path.is_file():
            raise ConfigError(f"makefile not found: {makefile_arg}")
        return path
    return find_makefile(".")


def read_graph(makefile: Path, runner: MakeRunner, use_database: bool) -> Graph:
    """Parse the makefile directly, or ask make for its rule database."""
    if use_database:
        return parse_database(runner.dump_database(), makefile)
    return load_graph(makefile)


def list_targets(makefile_arg: str | None, use_database: bool = False, make: str = "make") -> List[str]:
    """
    Target names for --print-targets and shell completion.

    Never fails: a missing or broken makefile just has no targets.
    """
    try:
        makefile = discover_makefile(makefile_arg)
        runner = MakeRunner(makefile, make=shlex.split(make))
        return read_graph(makefile, runner, use_database).targets
    except FakeError as e:
        get_console().print_debug(f"no targets: {e}")
        return []


def complete_targets(ctx: click.Context, param: click.Parameter, incomplete: str) -> List[str]:
    makefile = ctx.params.get("makefile")
    use_database = bool(ctx.params.get("database"))
    make = ctx.params.get("make") or "make"
    return [t for t in list_targets(makefile, use_database, make) if t.startswith(incomplete)]


def completion_script(shell: str) -> str:
    comp_cls = get_completion_class(shell)
    if comp_cls is None:
        raise click.BadParameter(f"unsupported shell: {shell}")
    return comp_cls(cli, {}, PROG_NAME, COMPLETE_VAR).source()


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-f", "--file", "makefile", default=None, help="Makefile path (defaults to GNUmakefile, makefile or Makefile)")
@click.argument("targets", nargs=-1, shell_complete=complete_targets)
@click.option("--dry-run", is_flag=True, default=False, help="Show what would be built, in order, without running anything")
@click.option("--print-graph", is_flag=True, default=False, help="Print the dependency graph as JSON and exit")
@click.option("--print-targets", is_flag=True, default=False, help="Print one target name per line and exit")
@click.option(
    "--completions",
    "shell",
    type=click.Choice(SHELLS),
    default=None,
    help="Print the completion script for SHELL and exit, e.g. `source <(fake --completions bash)`",
)
@click.option("--database/--no-database", default=False, help="Read targets from `make --print-data-base` instead of parsing the makefile")
@click.option("--make", default="make", show_default=True, envvar="FAKE_MAKE", help="make program to run for each target")
@click.option("-j", "--jobs", default=None, type=click.IntRange(min=1), help="Maximum concurrent make invocations (default: no limit)")
@click.option("--debug", is_flag=True, default=False, help="Enable debug mode (show stack traces and detailed output)")
@click.version_option(__version__, prog_name=PROG_NAME)
def cli(makefile, targets, dry_run, print_graph, print_targets, shell, database, make, jobs, debug):
    """fake: run make targets concurrently, building each one exactly once."""
    console = Console(debug=debug)
    set_console(console)

    if shell:
        click.echo(completion_script(shell))
        return

    if print_targets:
        for target in list_targets(makefile, database, make):
            click.echo(target)
        return

    try:
        makefile_path = discover_makefile(makefile)
        runner = MakeRunner(makefile_path, make=shlex.split(make))
        graph = read_graph(makefile_path, runner, database)
        console.print_debug(f"{len(graph)} targets in {makefile_path}")

        if print_graph:
            click.echo(graph.to_json())
            return

        requested = resolve_targets(graph, list(targets))

        if dry_run:
            plan = Scheduler(graph, runner).plan(requested)
            for task in plan:
                console.print_plan_target(task.target, task.depth, task.dependencies)
            return

        report = run_targets(graph, requested, runner, console=console, max_workers=jobs)

        if report.fatal_error is not None:
            console.print_exception(report.fatal_error)
            sys.exit(1)

        console.print_results(report.results)
        for result in report.failed:
            console.print_failure_output(result.target, getattr(result.error, "output", []))

        if not report.ok:
            if report.first_error is not None:
                console.print_exception(report.first_error)
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except FakeError as e:
        console.print_exception(e)
        sys.exit(1)


def main(argv: Optional[List[str]] = None) -> None:
    cli.main(args=argv, prog_name=PROG_NAME)


if __name__ == "__main__":
    main()
