"""planstack CLI — group plans into stacks and run them in dependency order.

Installed as ``planstack`` console_script via pipx / pip.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import NoReturn

import click
from rich.markup import escape
from rich.tree import Tree

from planstack import __version__
from planstack import log as glog
from planstack.config import Config, ensure_home, is_initialized, load_config, save_config
from planstack.errors import PlanstackError
from planstack.executor import ExecutionReport, Executor, format_duration
from planstack.graph import detect_cycle, execution_order, graph_from_stack
from planstack.models import ExecutionStatus, Stack, StackStatus
from planstack.stacks import StackManager
from planstack.storage.stack_store import StackStore
from planstack.storage.status_store import StatusStore
from planstack.tasks.loader import TaskLoader
from planstack.tasks.model import TaskType
from planstack.workers.registry import WORKER_NAMES, get_worker

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

MAX_TREE_DEPTH = 10

STATUS_STYLES: dict[ExecutionStatus, str] = {
    ExecutionStatus.PENDING: "bright_black",
    ExecutionStatus.RUNNING: "yellow",
    ExecutionStatus.COMPLETED: "green",
    ExecutionStatus.FAILED: "red",
    ExecutionStatus.SKIPPED: "dim",
}

STATUS_ICONS: dict[ExecutionStatus, str] = {
    ExecutionStatus.PENDING: "◯",
    ExecutionStatus.RUNNING: "◉",
    ExecutionStatus.COMPLETED: "●",
    ExecutionStatus.FAILED: "✗",
    ExecutionStatus.SKIPPED: "○",
}


@dataclass
class AppContext:
    cfg: Config
    loader: TaskLoader
    stack_store: StackStore
    status_store: StatusStore
    manager: StackManager


def _build_context(cfg: Config) -> AppContext:
    loader = TaskLoader(cfg.plans_directory)
    stack_store = StackStore(cfg.stacks_dir)
    status_store = StatusStore(cfg.status_dir)
    return AppContext(
        cfg=cfg,
        loader=loader,
        stack_store=stack_store,
        status_store=status_store,
        manager=StackManager(loader, stack_store, status_store),
    )


def _fail(msg: str) -> NoReturn:
    glog.error(msg)
    sys.exit(1)


def _require_initialized(cfg: Config) -> None:
    if not is_initialized(cfg):
        _fail("planstack is not initialized. Run `planstack init` first.")


def _styled_status(status: ExecutionStatus) -> str:
    style = STATUS_STYLES[status]
    return f"[{style}]{STATUS_ICONS[status]} {status.value}[/{style}]"


# ── Main group ───────────────────────────────────────────────────────


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="planstack")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """planstack — run stacks of dependent plans in order.

    A stack is a named set of plans (markdown files in the plans directory).
    Plans reference each other in their frontmatter; a stack runs them one at
    a time so every plan runs after the plans it references.

    \b
    EXAMPLES:
      planstack init
      planstack create auth -p add-login -p setup-db
      planstack ls auth
      planstack run auth --dry-run
      planstack run auth
      planstack status auth
    """
    glog.set_verbose(verbose)
    cfg = load_config()
    cfg.verbose = verbose
    ctx.obj = _build_context(cfg)


# ── init ─────────────────────────────────────────────────────────────


@main.command()
@click.option("--plans-dir", default="", help="Directory holding plan markdown files")
@click.pass_obj
def init(app: AppContext, plans_dir: str) -> None:
    """Create the planstack home directory and config file."""
    cfg = app.cfg
    if is_initialized(cfg) and cfg.config_file.is_file() and not plans_dir:
        glog.warn("planstack is already initialized.")
        glog.console.print(f"Config directory: [cyan]{escape(str(cfg.home))}[/cyan]")
        return

    if plans_dir:
        cfg.plans_directory = plans_dir
        cfg.__post_init__()
    ensure_home(cfg)
    save_config(cfg)

    glog.success("planstack initialized.")
    glog.console.print(f"Config directory: [cyan]{escape(str(cfg.home))}[/cyan]")
    glog.console.print(f"Plans directory: [cyan]{escape(str(cfg.plans_directory))}[/cyan]")
    glog.console.print("")
    glog.console.print("Next steps:")
    glog.console.print("  [cyan]planstack create <stack-name> -p <plan-id>[/cyan] - Create a new stack")
    glog.console.print("  [cyan]planstack ls[/cyan] - List all stacks")


# ── plans ────────────────────────────────────────────────────────────


@main.command()
@click.argument("query", required=False, default="")
@click.option(
    "--type",
    "task_type",
    type=click.Choice([t.value for t in TaskType]),
    default=None,
    help="Only plans of this type",
)
@click.pass_obj
def plans(app: AppContext, query: str, task_type: str | None) -> None:
    """List available plans, optionally filtered by QUERY."""
    found = app.loader.search(query or None, TaskType(task_type) if task_type else None)
    if not found:
        glog.console.print(f"[dim]No plans found in {escape(str(app.cfg.plans_directory))}[/dim]")
        return

    for task in found:
        refs = f" [dim]-> {escape(', '.join(task.references))}[/dim]" if task.references else ""
        glog.console.print(f"  [cyan]{escape(task.id)}[/cyan] [dim]({task.task_type.value})[/dim]{refs}")
        if task.title:
            glog.console.print(f"[dim]    {escape(task.title)}[/dim]")
    glog.console.print(f"[dim]Total: {len(found)} plans[/dim]")


# ── create / remove / delete ─────────────────────────────────────────


@main.command()
@click.argument("name")
@click.option("-p", "--plans", "plan_ids", multiple=True, help="Plan ID to include (repeatable)")
@click.option("--from-plan", default="", help="Create stack from a plan and all its references")
@click.option("-d", "--description", default=None, help="Stack description")
@click.option("--no-deps", is_flag=True, help="Do not pull in referenced plans")
@click.pass_obj
def create(
    app: AppContext,
    name: str,
    plan_ids: tuple[str, ...],
    from_plan: str,
    description: str | None,
    no_deps: bool,
) -> None:
    """Create stack NAME, or add plans to it if it already exists."""
    _require_initialized(app.cfg)
    resolve = app.cfg.auto_resolve_dependencies and not no_deps

    try:
        if from_plan:
            stack = app.manager.create_from_task(from_plan, name=name, description=description)
            glog.success(f"Created stack '{stack.name}' from {from_plan}")
            glog.console.print(f"  Plans: {len(stack.tasks)}")
            return

        if not plan_ids:
            raise click.UsageError("Specify at least one plan with -p/--plans or use --from-plan.")

        if app.stack_store.exists(name):
            stack = app.manager.add_tasks(name, list(plan_ids), resolve_dependencies=resolve)
            glog.success(f"Added plans to stack '{name}'")
            glog.console.print(f"  Total plans: {len(stack.tasks)}")
            return

        stack = app.manager.create(
            name,
            list(plan_ids),
            description=description,
            resolve_dependencies=resolve,
        )
    except PlanstackError as exc:
        _fail(f"Failed to create stack: {exc}")

    glog.success(f"Created stack '{name}'")
    glog.console.print(f"  Plans: {len(stack.tasks)}")
    extra = len(stack.tasks) - len(set(plan_ids))
    if resolve and extra > 0:
        glog.console.print(f"[dim]  ({extra} additional plans added from references)[/dim]")
    glog.console.print("")
    glog.console.print(f"View with: [cyan]planstack ls {name}[/cyan]")
    glog.console.print(f"Run with: [cyan]planstack run {name}[/cyan]")


@main.command()
@click.argument("name")
@click.option("-p", "--plans", "plan_ids", multiple=True, required=True, help="Plan ID to remove (repeatable)")
@click.pass_obj
def remove(app: AppContext, name: str, plan_ids: tuple[str, ...]) -> None:
    """Remove plans from stack NAME."""
    try:
        stack = app.manager.remove_tasks(name, list(plan_ids))
    except PlanstackError as exc:
        _fail(str(exc))
    glog.success(f"Stack '{name}' now has {len(stack.tasks)} plans")


@main.command()
@click.argument("name")
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def delete(app: AppContext, name: str, yes: bool) -> None:
    """Delete stack NAME and its run history."""
    if not yes:
        click.confirm(f"Delete stack '{name}'?", abort=True)
    try:
        app.manager.delete(name)
    except PlanstackError as exc:
        _fail(str(exc))
    glog.success(f"Deleted stack '{name}'")


# ── ls ───────────────────────────────────────────────────────────────


@main.command("ls")
@click.argument("name", required=False, default="")
@click.pass_obj
def ls_cmd(app: AppContext, name: str) -> None:
    """List stacks, or show stack NAME as a dependency tree."""
    if not name:
        stacks = app.manager.list_stacks()
        if not stacks:
            glog.console.print("[dim]No stacks found.[/dim]")
            return
        for stack in stacks:
            desc = f" [dim]{escape(stack.description)}[/dim]" if stack.description else ""
            glog.console.print(f"[cyan]{escape(stack.name)}[/cyan] ({len(stack.tasks)} plans){desc}")
        return

    try:
        stack = app.manager.get(name)
    except PlanstackError as exc:
        _fail(str(exc))

    status = app.status_store.load(name, stack.task_ids())
    glog.console.print(_build_tree(stack, status))

    cycle = detect_cycle(graph_from_stack(stack))
    if cycle:
        glog.warn(f"Dependency cycle: {' -> '.join(cycle)}")


def _build_tree(stack: Stack, status: StackStatus) -> Tree:
    """Render roots first, each dependent under the plan it depends on.

    A plan with several dependencies is shown once, under the first branch
    that reaches it.
    """
    graph = graph_from_stack(stack)
    tree = Tree(f"[bold]{escape(stack.name)}[/bold]")
    shown: set[str] = set()

    def label(tid: str) -> str:
        st = status.get(tid).status
        style = STATUS_STYLES[st]
        return f"[{style}]{STATUS_ICONS[st]}[/{style}] {escape(tid)}"

    frontier: list[tuple[Tree, str, int]] = [
        (tree, tid, 0) for tid in reversed(stack.root_ids) if tid in graph
    ]
    while frontier:
        parent, tid, depth = frontier.pop()
        if tid in shown or depth > MAX_TREE_DEPTH:
            continue
        shown.add(tid)
        branch = parent.add(label(tid))
        for child in reversed(sorted(graph[tid].dependents)):
            if child not in shown:
                frontier.append((branch, child, depth + 1))

    leftover = [tid for tid in stack.task_ids() if tid not in shown]
    for tid in leftover:
        tree.add(f"{label(tid)} [dim](not reachable from roots)[/dim]")
    return tree


# ── status ───────────────────────────────────────────────────────────


def _counts_line(status: StackStatus) -> str:
    c = status.counts()
    return (
        f"[green]✓ {c[ExecutionStatus.COMPLETED]}[/green] "
        f"[red]✗ {c[ExecutionStatus.FAILED]}[/red] "
        f"[yellow]◉ {c[ExecutionStatus.RUNNING]}[/yellow] "
        f"[bright_black]◯ {c[ExecutionStatus.PENDING]}[/bright_black] "
        f"[dim]○ {c[ExecutionStatus.SKIPPED]}[/dim]"
    )


@main.command()
@click.argument("name", required=False, default="")
@click.pass_obj
def status(app: AppContext, name: str) -> None:
    """Show execution status of all stacks, or of stack NAME in detail."""
    if not name:
        stacks = app.manager.list_stacks()
        if not stacks:
            glog.console.print("[dim]No stacks found.[/dim]")
            return
        for stack in stacks:
            st = app.status_store.load(stack.name, stack.task_ids())
            running = " [yellow](running)[/yellow]" if st.is_running else ""
            glog.console.print(f"[cyan]{escape(stack.name)}[/cyan]{running}")
            glog.console.print(f"  {_counts_line(st)}")
            if st.last_run_at:
                glog.console.print(f"[dim]  Last run: {escape(st.last_run_at)}[/dim]")
        return

    try:
        stack = app.manager.get(name)
    except PlanstackError as exc:
        _fail(str(exc))

    st = app.status_store.load(name, stack.task_ids())
    glog.console.print(f"[bold]Stack: {escape(name)}[/bold]")
    if stack.description:
        glog.console.print(f"[dim]{escape(stack.description)}[/dim]")
    if st.is_running:
        glog.console.print("[yellow]Currently running[/yellow]")
    glog.console.print("")

    try:
        ordered = execution_order(stack)
    except PlanstackError:
        ordered = stack.task_ids()

    for tid in ordered:
        ts = st.get(tid)
        glog.console.print(f"{_styled_status(ts.status)}  {escape(tid)}")
        if ts.last_executed_at:
            duration = f" ({format_duration(ts.duration_ms)})" if ts.duration_ms else ""
            glog.console.print(f"[dim]    Last run: {escape(ts.last_executed_at)}{duration}[/dim]")
        if ts.error_message and ts.status in (ExecutionStatus.FAILED, ExecutionStatus.SKIPPED):
            glog.console.print(f"[dim]    {escape(ts.error_message)}[/dim]")

    glog.console.print("")
    glog.console.print(f"Total: {len(stack.tasks)} plans | {_counts_line(st)}")


# ── run / reset ──────────────────────────────────────────────────────


def _make_executor(app: AppContext, worker_cmd: str) -> Executor:
    cfg = app.cfg
    worker = get_worker(
        cfg.worker,
        command=worker_cmd or cfg.worker_command,
        timeout=cfg.worker_timeout,
    )
    return Executor(
        cfg,
        loader=app.loader,
        worker=worker,
        stack_store=app.stack_store,
        status_store=app.status_store,
    )


@main.command()
@click.argument("name")
@click.option("--dry-run", is_flag=True, help="Show execution order without running")
@click.option("--from", "from_plan", default=None, help="Start execution from a specific plan")
@click.option("--reset", "do_reset", is_flag=True, help="Reset all plan statuses before running")
@click.option("--worker-cmd", default="", help="Worker command to use (default: claude)")
@click.option(
    "--worker",
    type=click.Choice(list(WORKER_NAMES)),
    default=None,
    help="Worker adapter",
)
@click.option("--timeout", type=int, default=None, help="Per-plan timeout in seconds")
@click.pass_obj
def run(
    app: AppContext,
    name: str,
    dry_run: bool,
    from_plan: str | None,
    do_reset: bool,
    worker_cmd: str,
    worker: str | None,
    timeout: int | None,
) -> None:
    """Execute the plans of stack NAME in dependency order."""
    if worker:
        app.cfg.worker = worker
    if timeout is not None:
        app.cfg.worker_timeout = timeout

    executor = _make_executor(app, worker_cmd)

    try:
        if dry_run:
            report = executor.run(name, from_task=from_plan, dry_run=True)
            _show_dry_run(app, report)
            return

        err = executor.worker.check_available()
        if err:
            _fail(err)

        if do_reset:
            executor.reset(name)
            glog.console.print("[dim]Reset all plan statuses to pending.[/dim]")

        try:
            report = executor.run(name, from_task=from_plan)
        except KeyboardInterrupt:
            glog.warn("Interrupted!")
            sys.exit(130)
    except PlanstackError as exc:
        _fail(str(exc))

    _show_summary(report)
    if report.failed or report.skipped:
        sys.exit(1)


@main.command()
@click.argument("name")
@click.pass_obj
def reset(app: AppContext, name: str) -> None:
    """Reset every plan of stack NAME to pending."""
    executor = _make_executor(app, "")
    try:
        executor.reset(name)
    except PlanstackError as exc:
        _fail(str(exc))
    glog.success(f"Reset all plan statuses of '{name}' to pending.")


def _show_dry_run(app: AppContext, report: ExecutionReport) -> None:
    glog.console.print(f"[bold]Dry run for stack: {escape(report.stack_name)}[/bold]")
    glog.console.print("[dim]Plans will be executed in this order:[/dim]")
    glog.console.print("")
    for i, tid in enumerate(report.order, start=1):
        task = app.loader.load(tid)
        title = task.title if task and task.title else tid
        glog.console.print(f"  [cyan]{i}.[/cyan] {escape(tid)}")
        glog.console.print(f"[dim]     {escape(title)}[/dim]")
    glog.console.print("")
    glog.console.print(f"[dim]Total: {len(report.order)} plans[/dim]")


def _show_summary(report: ExecutionReport) -> None:
    glog.console.print("")
    glog.console.print("[dim]" + "─" * 50 + "[/dim]")

    if not report.results:
        glog.success("Nothing to do: every plan is already completed.")
        return

    if report.failed == 0 and report.skipped == 0:
        glog.success(f"All {report.completed} plans completed successfully.")
        return

    glog.console.print(
        f"[green]{report.completed} completed[/green] | "
        f"[red]{report.failed} failed[/red] | "
        f"[dim]{report.skipped} skipped[/dim]"
    )
    failed = [r for r in report.results if r.status == ExecutionStatus.FAILED]
    if failed:
        glog.console.print("")
        glog.console.print("[red]Failed plans:[/red]")
        for r in failed:
            glog.console.print(f"  [red]✗[/red] {escape(r.task_id)}")
            if r.error_message:
                glog.console.print(f"[dim]    {escape(r.error_message)}[/dim]")
