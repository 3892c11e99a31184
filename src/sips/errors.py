"""Store failure wrapping.

Policy rejections (opt-out, cooldown, daily cap) are ordinary results; only a
failed read or write against the data store is an error.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError


class StoreError(RuntimeError):
    """A data-store operation failed. ``operation`` names which one."""

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        message = f"Unable to {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


@asynccontextmanager
async def store_operation(operation: str) -> AsyncIterator[None]:
    """Re-raise SQLAlchemy errors as StoreError naming ``operation``."""
    try:
        yield
    except SQLAlchemyError as exc:
        detail = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
        raise StoreError(operation, detail) from exc
