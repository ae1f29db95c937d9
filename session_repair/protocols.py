"""
Protocols shared by the repair services.

The scanner, executor, transaction manager and CLI all exchange the same
logger type, so it is defined once here.
"""

from __future__ import annotations

from typing import Protocol


class LoggerProtocol(Protocol):
    """
    Async progress logger passed into service calls.

    Implementations:
    - CLILogger (cli/logger.py): stdout/stderr via typer, info only when verbose
    - NullLogger (below): discards everything
    """

    async def info(self, message: str) -> None: ...
    async def warning(self, message: str) -> None: ...
    async def error(self, message: str) -> None: ...


class NullLogger:
    """Logger for callers that pass none (library use, tests)."""

    async def info(self, message: str) -> None:
        pass

    async def warning(self, message: str) -> None:
        pass

    async def error(self, message: str) -> None:
        pass
