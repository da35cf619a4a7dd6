"""Снимки состояния турнира после каждой изменяющей операции."""

import json
import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import inspect, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from tabroom.models.base import Base
from tabroom.models.snapshot import Snapshot
from tabroom.models.tournament import Tournament

logger = logging.getLogger(__name__)

UNVERSIONED_SCHEMA = "unversioned"
# Служебные таблицы в снимок не попадают.
_SKIPPED_TABLES = {"snapshots", "round_tickets"}


def _json_value(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _row_dict(row) -> dict:
    return {key: _json_value(value) for key, value in row._mapping.items()}


async def current_schema_id(db: AsyncSession) -> str:
    """Текущая ревизия alembic или ``unversioned`` для БД без миграций."""
    has_table = await db.run_sync(lambda sync_session: inspect(sync_session.connection()).has_table("alembic_version"))
    if not has_table:
        return UNVERSIONED_SCHEMA
    version = await db.scalar(text("SELECT version_num FROM alembic_version"))
    return version or UNVERSIONED_SCHEMA


async def snapshot_head(db: AsyncSession, tournament_id: str) -> Snapshot | None:
    """Последний снимок цепочки: на него не ссылается ни один другой."""
    referenced = select(Snapshot.prev).where(Snapshot.tournament_id == tournament_id, Snapshot.prev.is_not(None))
    return await db.scalar(
        select(Snapshot).where(Snapshot.tournament_id == tournament_id, Snapshot.id.not_in(referenced)).limit(1)
    )


async def collect_contents(db: AsyncSession, tournament_id: str) -> dict:
    contents: dict[str, object] = {}
    tournament_table = Tournament.__table__
    row = (await db.execute(select(tournament_table).where(tournament_table.c.id == tournament_id))).first()
    contents["tournament"] = _row_dict(row) if row is not None else None
    for table in Base.metadata.sorted_tables:
        if table.name in _SKIPPED_TABLES or "tournament_id" not in table.c:
            continue
        rows = (await db.execute(select(table).where(table.c.tournament_id == tournament_id).order_by(table.c.id))).all()
        contents[table.name] = [_row_dict(item) for item in rows]
    return contents


async def take_snapshot(db: AsyncSession, tournament_id: str) -> Snapshot:
    """Добавляет снимок в текущую транзакцию; коммит делает вызывающий код."""
    await db.flush()
    head = await snapshot_head(db, tournament_id)
    contents = await collect_contents(db, tournament_id)
    snapshot = Snapshot(
        tournament_id=tournament_id,
        prev=head.id if head is not None else None,
        schema_id=await current_schema_id(db),
        contents=json.dumps(contents, ensure_ascii=False, sort_keys=True),
    )
    db.add(snapshot)
    await db.flush()
    logger.info("Snapshot %s written for tournament %s (prev=%s)", snapshot.id, tournament_id, snapshot.prev)
    return snapshot


async def snapshot_chain(db: AsyncSession, tournament_id: str) -> list[Snapshot]:
    """Цепочка снимков от последнего к первому."""
    snapshots = (await db.scalars(select(Snapshot).where(Snapshot.tournament_id == tournament_id))).all()
    by_id = {snapshot.id: snapshot for snapshot in snapshots}
    head = await snapshot_head(db, tournament_id)
    chain: list[Snapshot] = []
    seen: set[str] = set()
    current = head
    while current is not None and current.id not in seen:
        chain.append(current)
        seen.add(current.id)
        current = by_id.get(current.prev) if current.prev else None
    return chain
