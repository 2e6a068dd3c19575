"""Invoke helpers — call sync or async entry points uniformly.

Entry points can be ``def`` or ``async def``, and a sync route handler
may still hand back a coroutine from an async handler further down the
chain. This module keeps the sync/async check in exactly one place.

Usage::

    from petal._internal.invoke import invoke

    result = await invoke(entry_point, request)
"""

import inspect
from typing import Any


async def invoke(handler: Any, *args: Any, **kwargs: Any) -> Any:
    """Call a handler and await the result if it's awaitable.

    Works with both sync and async callables::

        # sync: returns immediately
        def entry(request):
            return router(request.path)

        # async: returns coroutine, awaited automatically
        async def entry(request):
            payload = await request.json()
            return ResponseDescription(body=str(payload))
    """
    result = handler(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
