# esiri/common/database/transitions.py
"""Conditional status transitions shared by every state machine."""

from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession


async def transition(
    session: AsyncSession,
    model: Any,
    entity_id: UUID,
    from_statuses: Iterable[Any],
    to_status: Any,
    **values: Any,
) -> bool:
    """
    Move a row from one of ``from_statuses`` to ``to_status`` in a single
    conditional UPDATE. Extra column values are written in the same statement.

    Returns True when this call applied the transition, False when the row was
    missing or another caller already moved it. The caller owns the commit.

    Objects already loaded in ``session`` are not refreshed; re-select with
    ``populate_existing`` if the new state is needed.
    """
    stmt = (
        update(model)
        .where(model.id == entity_id, model.status.in_(list(from_statuses)))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1
