# cli.py
from __future__ import annotations

import signal
import sys
from pathlib import Path

import click

from .cache import FileCacheStore
from .cancel import CancelToken
from .errors import CIError, ConfigurationError
from .git_facts.git import trigger_metadata
from .loader import find_workflow_files, load_workflow
from .model import Trigger, TriggerContext
from .report import write_report
from .scheduler import plan_run, run_pipeline
from .settings import Settings
from .ui.console import Console, get_console, set_console
from .workspace import Workspace

EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130

EVENTS = [t.value for t in Trigger]


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    # If workflow is explicitly provided, use it
    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  gridci run --workflow gridci.yml",
            )
            sys.exit(EXIT_CONFIG)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                "  gridci_workflow.py",
                "  gridci.yml / gridci.yaml",
                "  *_workflow.py",
                "  .gridci/*.yml",
            ],
            suggestion="Create a workflow file or specify one explicitly:\n  gridci run --workflow my_workflow.py",
        )
        sys.exit(EXIT_CONFIG)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  gridci run --workflow gridci.yml",
        )
        sys.exit(EXIT_CONFIG)

    return workflow_files[0]


def _parse_meta(pairs: tuple[str, ...]) -> dict[str, str]:
    meta: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--meta")
        meta[key.strip()] = value
    return meta


def _install_cancel_handlers(cancel: CancelToken) -> None:
    console = get_console()

    def handler(signum, frame):
        if cancel.cancelled:
            # second signal: stop waiting
            raise KeyboardInterrupt
        console.print_info(f"\nReceived signal {signum}, cancelling run...")
        cancel.cancel(f"cancelled by signal {signum}")

    signal.signal(signal.SIGINT, handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, handler)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and step output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print the results summary and errors")
@click.pass_context
def cli(ctx, debug, quiet):
    """gridci: matrix CI pipelines with per-cell isolation and content-addressed caching."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py, .yml, .yaml)")
@click.option("--event", type=click.Choice(EVENTS), default=Trigger.PUSH.value, show_default=True, help="Trigger to run for")
@click.option("--meta", multiple=True, metavar="KEY=VALUE", help="Trigger metadata for templates (repeatable)")
@click.option("--workers", default=None, type=int, help="Number of cells run in parallel")
@click.option("--cache-dir", default=None, help="Cache directory [env GRIDCI_CACHE_DIR]")
@click.option("--work-dir", default=None, help="Directory for per-cell workspaces [env GRIDCI_WORK_DIR]")
@click.option("--timeout", default=None, type=float, help="Default step timeout in seconds [env GRIDCI_STEP_TIMEOUT]")
@click.option("--source", default=".", show_default=True, help="Directory copied into every cell workspace")
@click.option("--report", "report_path", default=None, help="Write a JSON run report to this path")
@click.option("--keep-workdirs", is_flag=True, default=False, help="Do not delete cell workspaces")
@click.pass_context
def run(ctx, workflow, event, meta, workers, cache_dir, work_dir, timeout, source, report_path, keep_workdirs):
    """Run a gridci workflow."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        settings = Settings.from_env()
        metadata = trigger_metadata(source)
        metadata.update(_parse_meta(meta))
        context = TriggerContext.of(event, **metadata)

        definition = load_workflow(workflow_path)
        cache = FileCacheStore(cache_dir or settings.cache_dir)
        workspace = Workspace(work_dir or settings.work_dir, source=source, keep=keep_workdirs)

        cancel = CancelToken()
        _install_cancel_handlers(cancel)

        try:
            result = run_pipeline(
                definition,
                context,
                cache=cache,
                workspace=workspace,
                settings=settings,
                max_workers=workers,
                cancel=cancel,
                default_timeout=timeout,
            )
        finally:
            workspace.cleanup()

        console.print_results(result)
        if report_path:
            out = write_report(result, report_path)
            console.print_info(f"Report written to {out}")

        sys.exit(result.exit_code)

    except ConfigurationError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(EXIT_CONFIG)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_CANCELLED)
    except CIError as e:
        console.print_error("Run failed", str(e))
        sys.exit(EXIT_FAILED)
    except (OSError, ValueError) as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py, .yml, .yaml)")
@click.option("--event", type=click.Choice(EVENTS), default=Trigger.PUSH.value, show_default=True, help="Trigger to plan for")
def plan(workflow, event):
    """Show which jobs and matrix cells a trigger would run."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        definition = load_workflow(workflow_path)
        run_plan = plan_run(definition, TriggerContext.of(event))
    except ConfigurationError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(EXIT_CONFIG)

    console.print_header(f"{definition.name} on {event}: {run_plan.cell_count} cell(s)")
    for idx, stage in enumerate(run_plan.stages):
        if len(run_plan.stages) > 1:
            console.print_info(f"Stage {idx + 1}:")
        for name in stage:
            console.print_plan_job(name, run_plan.cells[name])
    for name, reason in run_plan.skipped:
        console.print_plan_job_skipped(name, reason)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
