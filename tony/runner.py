"""Entry point: load settings and the task file, run the selected tasks in order, tear down."""

import asyncio
import logging
import sys
from pathlib import Path

import rich_click as click
from dotenv import load_dotenv

from tony import __version__
from tony.agents.runner import TaskRunner
from tony.audit import audit_context, audit_error
from tony.context import RuntimeContext
from tony.errors import RequestAborted, TaskNotFoundError, TonyError
from tony.execution import TaskRunResult
from tony.instructions import AgentTask, ChatTask, Instructions, load_instructions
from tony.logging_config import setup_logging
from tony.settings import get_setting, load_settings

logger = logging.getLogger(__name__)


def select_tasks(instructions: Instructions, task_id: str | None = None) -> list[ChatTask | AgentTask]:
    """All tasks in declaration order, or the single task with `task_id`."""
    if not task_id:
        return list(instructions.tasks)
    task = instructions.tasks_by_id().get(task_id)
    if task is None:
        available = ", ".join(t.id for t in instructions.tasks)
        raise TaskNotFoundError(f'Task "{task_id}" not found. Available tasks: {available}')
    return [task]


def _echo(text: str) -> None:
    click.echo(text, nl=False)


def _report(result: TaskRunResult) -> None:
    if result.stopped_defensively:
        click.echo(f"  Stopped: {result.stop_reason} after {result.iterations} iteration(s)")
    else:
        click.echo(f"  Done: {result.stop_reason} after {result.iterations} iteration(s)")


async def run_tasks(
    instructions: Instructions,
    runtime: RuntimeContext,
    task_id: str | None = None,
    model_override: str | None = None,
) -> int:
    """Run the selected tasks sequentially. Returns the process exit code."""
    fail_fast = bool(get_setting(runtime.settings, "run.fail_fast", True))
    runner = TaskRunner(
        runtime,
        instructions.tasks_by_id(),
        default_model=model_override or instructions.default_model,
    )
    exit_code = 0
    try:
        tasks = select_tasks(instructions, task_id)
        with audit_context(run_id=runner.run_id):
            for task in tasks:
                click.echo(f"Running {task.type} task: {task.id}")
                try:
                    result = await runner.run_top_level(task)
                except RequestAborted as e:
                    audit_error(f"run.aborted: {e}")
                    click.echo(f"Task \"{task.id}\" ({task.type}) aborted.", err=True)
                    return 130
                except Exception as e:
                    logger.exception("Task %s (%s) failed", task.id, task.type)
                    click.echo(f"Task \"{task.id}\" ({task.type}) failed: {e}", err=True)
                    exit_code = 1
                    if fail_fast:
                        return exit_code
                    continue
                _report(result)
    finally:
        await runtime.aclose()
    return exit_code


async def main_async(
    file_path: Path,
    config_path: Path | None = None,
    task_id: str | None = None,
    model: str | None = None,
) -> int:
    settings = load_settings(config_path)
    setup_logging(Path.cwd(), settings)
    instructions = load_instructions(file_path)
    if not instructions.tasks:
        click.echo("No tasks found in instructions.")
        return 0
    runtime = RuntimeContext(settings, on_content=_echo)
    runtime.install_signal_handlers()
    return await run_tasks(instructions, runtime, task_id=task_id, model_override=model)


@click.command()
@click.version_option(version=__version__, prog_name="tony")
@click.option(
    "-f",
    "--file",
    "file_path",
    type=click.Path(path_type=Path),
    default=Path("instructions.json"),
    show_default=True,
    help="Instructions file (JSON, or YAML by extension).",
)
@click.option("-m", "--model", default=None, help="Override the default model for all tasks.")
@click.option("-t", "--task", "task_id", default=None, help="Run a single task by id.")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Settings file (default: config/settings.yaml).",
)
def main(file_path: Path, model: str | None, task_id: str | None, config_path: Path | None) -> None:
    """Run tasks from an instructions file."""
    load_dotenv(Path.cwd() / ".env")
    try:
        exit_code = asyncio.run(main_async(file_path, config_path, task_id, model))
    except TonyError as e:
        click.echo(f"Error: {e}", err=True)
        exit_code = 1
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)


__all__ = ["main", "run_tasks", "select_tasks"]
