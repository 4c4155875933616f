"""Handler helpers and built-in handlers."""

from switchboard.handlers.base import safe_handler
from switchboard.handlers.builtin import (
    BUILTIN_HANDLERS,
    assistant_handler,
    echo_handler,
    hello_handler,
    register_builtin_handlers,
)

__all__ = [
    "BUILTIN_HANDLERS",
    "assistant_handler",
    "echo_handler",
    "hello_handler",
    "register_builtin_handlers",
    "safe_handler",
]
