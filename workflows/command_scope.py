"""Tracks whether the command running in the current context has begun a store write."""
import asyncio
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple


@dataclass
class CommandScope:
    command: str
    writing: bool = False


_current_scope: ContextVar[Optional[CommandScope]] = ContextVar("command_scope", default=None)


def enter_scope(command: str) -> Tuple[CommandScope, Token]:
    scope = CommandScope(command)
    return scope, _current_scope.set(scope)


def exit_scope(token: Token) -> None:
    _current_scope.reset(token)


async def run_write(func: Callable[..., Any], *args: Any) -> Any:
    """Run a blocking store call that may commit, in a worker thread.

    A worker thread cannot be cancelled, so once this starts the command's
    writes are treated as in flight and the command runs to completion.
    """
    scope = _current_scope.get()
    if scope is not None:
        scope.writing = True
    return await asyncio.to_thread(func, *args)
