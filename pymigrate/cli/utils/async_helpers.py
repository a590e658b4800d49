"""Helpers for running async code from click commands."""

import asyncio
import functools
from typing import Any, Callable, Coroutine, TypeVar

T = TypeVar("T")


def async_command(f: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., T]:
    """
    Decorator that runs an async click command with asyncio.run().

    Examples:
        @main.command()
        @click.pass_context
        @async_command
        async def run(ctx: click.Context) -> None:
            await pymigrate.migrate()
    """

    @functools.wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        return asyncio.run(f(*args, **kwargs))

    return wrapper
