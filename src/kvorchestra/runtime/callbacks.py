"""
Dual calling convention for request methods.

Every public request method is a coroutine function. Awaiting it returns the
result (or raises). Passing ``callback=`` instead schedules the call as a
task and reports through the callback:

    callback(error)                  on failure
    callback(None, result)           on success
    callback(None, result, meta)     when the method returns (result, meta)

Errors are always delivered asynchronously, preconditions included: nothing
is raised from the call expression itself.
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Awaitable, Callable, Optional

Callback = Callable[..., None]


async def _deliver(call: Awaitable[Any], callback: Callback) -> None:
    try:
        result = await call
    except asyncio.CancelledError:
        raise
    except Exception as e:
        callback(e)
        return
    if isinstance(result, tuple):
        callback(None, *result)
    else:
        callback(None, result)


def with_callback(method: Callable[..., Awaitable[Any]]) -> Callable[..., Any]:
    """
    Let a coroutine method be awaited or given a completion callback.

    Usage:
        class Client:
            @with_callback
            async def get(self, keys): ...

        entity = await client.get(key)
        task = client.get(key, callback=lambda err, entity=None: ...)
    """

    @functools.wraps(method)
    def wrapper(self, *args: Any, callback: Optional[Callback] = None, **kwargs: Any) -> Any:
        call = method(self, *args, **kwargs)
        if callback is None:
            return call
        return asyncio.ensure_future(_deliver(call, callback))

    return wrapper
