import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, Optional


async def run_tasks_with_cleanup(
    tasks: Iterable[asyncio.Task],
    cleanup: Optional[Callable[[], Awaitable[None]]] = None,
) -> None:
    task_list: List[asyncio.Task] = list(tasks)
    try:
        if task_list:
            await asyncio.gather(*task_list)
    except asyncio.CancelledError:
        pass
    finally:
        for t in task_list:
            if not t.done():
                t.cancel()
        if task_list:
            await asyncio.gather(*task_list, return_exceptions=True)
        if cleanup is not None:
            await cleanup()


async def gather_isolated(coros: Iterable[Awaitable[Any]]) -> List[Any]:
    """Await every coroutine; a failure never cancels its siblings.

    Failed slots hold the exception instance.
    """
    return list(await asyncio.gather(*coros, return_exceptions=True))
