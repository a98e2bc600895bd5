"""
Fan-out / join helper.

Each task returns its own value (a condition, None, ...) instead of mutating
a captured variable; the join hands back one outcome per task. A failing
task never cancels its siblings.
"""
import asyncio
from typing import Awaitable, Callable, Dict, Mapping, TypeVar, Union

from shoot_operator.errors import MultiError

T = TypeVar("T")
Task = Callable[[], Awaitable[T]]


async def parallel(tasks: Mapping[str, Task]) -> Dict[str, Union[T, Exception]]:
    """Run all tasks concurrently and wait for every one of them (barrier)."""
    names = list(tasks)
    outcomes = await asyncio.gather(*(tasks[name]() for name in names), return_exceptions=True)
    results: Dict[str, Union[T, Exception]] = {}
    for name, outcome in zip(names, outcomes):
        # Cancellation of the caller must not be reported as a task result.
        if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
            raise outcome
        results[name] = outcome
    return results


async def parallel_or_error(tasks: Mapping[str, Task], error_cls=MultiError) -> Dict[str, T]:
    """Like parallel(), but raises `error_cls` naming every failed task."""
    results = await parallel(tasks)
    errors = {name: r for name, r in results.items() if isinstance(r, Exception)}
    if errors:
        raise error_cls(errors)
    return results
