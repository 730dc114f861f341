"""Run-scoped context for generation runs.

A generation run id is stored in a ContextVar so audit events and log lines
emitted anywhere below the orchestrator (including concurrent asset fetches)
can be correlated with the run that caused them.

Example:
    with run_context() as run_id:
        await orchestrator.generate(request)
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

from ulid import ULID

run_id: ContextVar[str] = ContextVar("run_id", default="")


def new_run_id() -> str:
    """Generate a sortable run id."""
    return f"run_{ULID()}"


def get_run_id() -> str:
    return run_id.get()


@contextmanager
def run_context(value: Optional[str] = None) -> Iterator[str]:
    """Bind a run id for the duration of the block.

    Args:
        value: Run id to bind; a new one is generated when omitted.

    Yields:
        The bound run id.
    """
    bound = value or new_run_id()
    token = run_id.set(bound)
    try:
        yield bound
    finally:
        run_id.reset(token)


__all__ = ["run_id", "new_run_id", "get_run_id", "run_context"]
