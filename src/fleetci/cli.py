# cli.py
from __future__ import annotations

import sys

import click
from pydantic import ValidationError

from fleetci.errors import ConfigError
from fleetci.runner import build_graph, make_planner, run_campaign
from fleetci.settings import (
    DEFAULT_HARNESS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_TIMEOUT,
    DEFAULT_WORKERS,
    DEFAULT_WORKSPACE,
    RunOptions,
    load_config,
)
from fleetci.ui.console import Console, get_console, set_console

EXIT_FAILED = 1
EXIT_CONFIG = 2


def _split(values: tuple[str, ...]) -> list[str]:
    """Accept both repeated options and comma separated lists."""
    out: list[str] = []
    for v in values:
        out.extend(p.strip() for p in v.split(",") if p.strip())
    return out


def _options(**kwargs) -> RunOptions:
    console = get_console()
    try:
        return RunOptions(**kwargs)
    except ValidationError as e:
        console.print_error("Invalid options", str(e))
        sys.exit(EXIT_CONFIG)


def _config_error(e: ConfigError) -> None:
    console = get_console()
    console.print_error(
        "Configuration error",
        e.message,
        details=[f"{k}={v}" for k, v in e.details.items()],
        suggestion="Check the repositories in fleetci.json and the --entry paths.",
    )
    sys.exit(EXIT_CONFIG)


common_options = [
    click.option("--config", "config_path", default=None, help="Repository config (defaults to ./fleetci.json)"),
    click.option("--repo", "repos", multiple=True, help="Repository to test (repeatable, comma separated); default: all"),
    click.option("--only", is_flag=True, default=False, help="Test only the named repositories, no dependents"),
    click.option("--entry", multiple=True, help="Path to a module used as entry point (repeatable)"),
    click.option("--store", default="store", show_default=True, help="Directory holding repositories without an explicit path"),
    click.option("--workspace", default=DEFAULT_WORKSPACE, show_default=True, help="Directory for configs, reports and the module map"),
    click.option("--rebuild-map", is_flag=True, default=False, help="Rescan every descriptor and rewrite the module map"),
]


def with_common_options(fn):
    for opt in reversed(common_options):
        fn = opt(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Do not echo harness output")
@click.pass_context
def cli(ctx, debug, quiet):
    """fleetci: plan and run unit tests across many repositories."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@with_common_options
@click.option("--diff/--no-diff", default=False, help="Skip modules without changes against the baseline")
@click.option("--headless-only", is_flag=True, default=False, help="Run only headless tasks")
@click.option("--browser-only", is_flag=True, default=False, help="Run only browser-hosted tasks")
@click.option("--server", is_flag=True, default=False, help="Start browser harnesses in interactive server mode")
@click.option("--coverage", is_flag=True, default=False, help="Collect coverage")
@click.option("--coverage-format", type=click.Choice(["html", "json", "both"]), default="html", show_default=True)
@click.option("--check-leaks", is_flag=True, default=False, help="Ask the harness to check for global leaks")
@click.option("--workers", default=DEFAULT_WORKERS, type=int, show_default=True, help="Tasks running at the same time")
@click.option("--changeset-workers", default=2, type=int, show_default=True, help="Repositories diffed at the same time")
@click.option("--timeout", default=DEFAULT_TIMEOUT, type=float, show_default=True, help="Seconds before a headless task is killed")
@click.option("--max-attempts", default=DEFAULT_MAX_ATTEMPTS, type=int, show_default=True, help="Attempts for flaky browser tasks")
@click.option("--ports", multiple=True, help="Preferred ports for browser tasks (repeatable, comma separated)")
@click.option("--harness", default=DEFAULT_HARNESS, show_default=True, help="Harness command")
@click.option("--regenerate-baseline", is_flag=True, default=False, help="Add new error messages to the allowed-errors baseline")
@click.pass_context
def run(ctx, config_path, repos, only, entry, store, workspace, rebuild_map, diff, headless_only,
        browser_only, server, coverage, coverage_format, check_leaks, workers, changeset_workers,
        timeout, max_attempts, ports, harness, regenerate_baseline):
    """Run the unit tests of the selected repositories."""
    console = get_console()

    try:
        port_list = [int(p) for p in _split(ports)]
    except ValueError:
        console.print_error("Invalid ports", f"Ports must be integers: {', '.join(ports)}")
        sys.exit(EXIT_CONFIG)

    options = _options(
        repos=_split(repos) or ["all"],
        only=only,
        diff=diff,
        entry=list(entry),
        headless_only=headless_only,
        browser_only=browser_only,
        server=server,
        coverage=coverage,
        coverage_format=coverage_format,
        check_leaks=check_leaks,
        workers=workers,
        changeset_workers=changeset_workers,
        timeout=timeout,
        max_attempts=max_attempts,
        ports=port_list,
        rebuild_map=rebuild_map,
        regenerate_baseline=regenerate_baseline,
        harness=harness,
        workspace=workspace,
        store=store,
    )

    try:
        config = load_config(config_path)
        outcome = run_campaign(options, config)
    except ConfigError as e:
        _config_error(e)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)

    if outcome.failed:
        sys.exit(EXIT_FAILED)


@cli.command()
@with_common_options
@click.pass_context
def plan(ctx, config_path, repos, only, entry, store, workspace, rebuild_map):
    """Print the modules that would be tested, grouped by task key."""
    console = get_console()
    options = _options(
        repos=_split(repos) or ["all"],
        only=only,
        entry=list(entry),
        store=store,
        workspace=workspace,
        rebuild_map=rebuild_map,
    )
    try:
        config = load_config(config_path)
        graph = build_graph(options, config)
        planner = make_planner(graph, options)
        console.print_header("PLAN")
        for key, modules in planner.plan():
            console.print_plan_key(key, modules)
            for name in modules:
                console.print_info(f"    {name}")
    except ConfigError as e:
        _config_error(e)


@cli.command()
@with_common_options
@click.argument("modules", nargs=-1, required=True)
@click.option("--parents", is_flag=True, default=False, help="Show modules depending on MODULES instead")
@click.pass_context
def graph(ctx, config_path, repos, only, entry, store, workspace, rebuild_map, modules, parents):
    """Print the dependency closure of MODULES."""
    console = get_console()
    options = _options(store=store, workspace=workspace, rebuild_map=rebuild_map, entry=list(entry))
    try:
        config = load_config(config_path)
        g = build_graph(options, config)
        g.require(modules)
    except ConfigError as e:
        _config_error(e)

    closure = g.get_parent_modules(modules) if parents else g.get_child_modules(modules)
    for name in closure:
        m = g.get(name)
        console.print_info(f"{name} ({m.repository})" if m is not None else name)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
