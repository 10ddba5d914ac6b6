"""Audit sink: step/info/warn/error records tagged with the active run/task context.

Context is a stack held in a ContextVar so nested sub-task runs are attributed
to the innermost task while the outer context is restored on exit.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator

logger = logging.getLogger("tony.audit")


@dataclass(frozen=True)
class AuditContext:
    run_id: str | None = None
    task_id: str | None = None
    task_run_id: str | None = None

    def render(self) -> str:
        parts: list[str] = []
        if self.run_id:
            parts.append(f"run={self.run_id}")
        if self.task_id:
            parts.append(f"task={self.task_id}")
        if self.task_run_id:
            parts.append(f"taskRun={self.task_run_id}")
        return f" [{' '.join(parts)}]" if parts else ""


_stack: ContextVar[tuple[AuditContext, ...]] = ContextVar("audit_stack", default=())


def get_audit_context() -> AuditContext | None:
    """Return the innermost context, or None outside any task."""
    stack = _stack.get()
    return stack[-1] if stack else None


def push_audit_context(context: AuditContext) -> None:
    _stack.set(_stack.get() + (context,))


def pop_audit_context() -> None:
    stack = _stack.get()
    if not stack:
        logger.warning("pop_audit_context called on empty stack")
        return
    _stack.set(stack[:-1])


@contextmanager
def audit_context(
    run_id: str | None = None,
    task_id: str | None = None,
    task_run_id: str | None = None,
) -> Iterator[AuditContext]:
    """Push a context for the duration of the block. Missing fields inherit from the parent."""
    parent = get_audit_context() or AuditContext()
    ctx = AuditContext(
        run_id=run_id or parent.run_id,
        task_id=task_id or parent.task_id,
        task_run_id=task_run_id or parent.task_run_id,
    )
    push_audit_context(ctx)
    try:
        yield ctx
    finally:
        pop_audit_context()


class AuditContextFilter(logging.Filter):
    """Adds `audit_context` to every record so formatters can render it."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_audit_context()
        record.audit_context = ctx.render() if ctx else ""
        return True


def audit(message: str) -> None:
    logger.info(message)


def audit_warn(message: str) -> None:
    logger.warning(message)


def audit_error(message: str) -> None:
    logger.error(message)


def audit_step(step: str, details: str | None = None) -> None:
    """Record a named engine step, e.g. audit_step("tool.call", "search")."""
    logger.info("STEP %s", f"{step} :: {details}" if details else step)
