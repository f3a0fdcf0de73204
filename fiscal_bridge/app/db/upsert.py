from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy.orm import Session


def insert_if_absent(
    db: Session,
    model: type,
    values: dict[str, Any],
    *,
    conflict_columns: Sequence[str],
) -> bool:
    """
    INSERT ... ON CONFLICT DO NOTHING against a unique constraint.

    Returns True when this call created the row. Concurrent callers racing on
    the same key all return, exactly one of them with True.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"insert_if_absent not supported on {dialect}")

    stmt = insert(model).values(**values).on_conflict_do_nothing(index_elements=list(conflict_columns))
    result = db.execute(stmt)
    return result.rowcount == 1
