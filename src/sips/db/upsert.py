"""Dialect-aware ``INSERT .. ON CONFLICT`` for composite natural keys."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def _insert_for(db: AsyncSession, model: type) -> Any:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"Upsert not supported on dialect: {dialect}")


async def upsert_rows(
    db: AsyncSession,
    model: type,
    rows: Sequence[dict[str, Any]],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str] = (),
) -> None:
    """Batch upsert ``rows`` keyed on ``conflict_columns``.

    With no ``update_columns`` conflicting rows are left untouched.
    """
    if not rows:
        return

    stmt = _insert_for(db, model).values(list(rows))
    if update_columns:
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_={col: stmt.excluded[col] for col in update_columns},
        )
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
    await db.execute(stmt)
