"""
Row-level CRUD over the relational tables.

Rows go in and come out as plain dicts keyed by column name. Every committed
insert/update/delete is announced on the realtime hub as a row change so
that all subscribers of the room, the writer included, can reconcile.

There is no read-modify-write primitive here on purpose: callers that merge
into a shared row (``game_data``, ``current_turn``) hold ``room_lock`` around
their own select + update.
"""
from __future__ import annotations

import asyncio
import copy
import logging
import weakref
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Type

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, inspect as sa_inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import Base
from app.models import ChatMessage, GameCard, GameInvite, GameRecord, GameRoom, PlayerStats, RoomPlayer, RoomSpectator
from realtime import RealtimeHub

logger = logging.getLogger(__name__)

TABLES: Dict[str, Type[Base]] = {
    model.__tablename__: model
    for model in (GameRoom, RoomPlayer, RoomSpectator, ChatMessage, GameInvite, GameCard, PlayerStats, GameRecord)
}


def _attr_keys(model: Type[Base]) -> Dict[str, str]:
    """column name -> mapped attribute name"""
    return {attr.columns[0].name: attr.key for attr in sa_inspect(model).mapper.column_attrs}


def _as_utc(value: Any) -> Any:
    # SQLite hands timestamps back without tzinfo
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def row_to_dict(obj: Base) -> Dict[str, Any]:
    keys = _attr_keys(type(obj))
    return {column: copy.deepcopy(_as_utc(getattr(obj, attr))) for column, attr in keys.items()}


class RoomStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession], hub: Optional[RealtimeHub] = None):
        self.session_maker = session_maker
        self.hub = hub
        # a lock lives only while some caller holds or awaits it
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def room_lock(self, room_id: str) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[room_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _model(table: str) -> Type[Base]:
        try:
            return TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}") from None

    def _where(self, model: Type[Base], filters: Dict[str, Any]) -> list:
        keys = _attr_keys(model)
        clauses = []
        for column, value in filters.items():
            if column not in keys:
                raise ValueError(f"Unknown column {model.__tablename__}.{column}")
            clauses.append(getattr(model, keys[column]) == value)
        return clauses

    def _order(self, model: Type[Base], order_by: Iterable[str]) -> list:
        keys = _attr_keys(model)
        clauses = []
        for column in order_by:
            descending = column.startswith("-")
            name = column.lstrip("-")
            attr = getattr(model, keys[name])
            clauses.append(attr.desc() if descending else attr.asc())
        return clauses

    async def _notify(self, table: str, event: str, rows: List[Dict[str, Any]]) -> None:
        if self.hub is None:
            return
        for row in rows:
            await self.hub.notify_change(table, event, row)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    async def select(
        self,
        table: str,
        *,
        order_by: Iterable[str] = (),
        limit: Optional[int] = None,
        **filters: Any,
    ) -> List[Dict[str, Any]]:
        model = self._model(table)
        query = select(model).where(*self._where(model, filters)).order_by(*self._order(model, order_by))
        if limit is not None:
            query = query.limit(limit)
        async with self.session_maker() as session:
            result = await session.execute(query)
            return [row_to_dict(obj) for obj in result.scalars().all()]

    async def select_one(self, table: str, **filters: Any) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, limit=1, **filters)
        return rows[0] if rows else None

    async def count(self, table: str, **filters: Any) -> int:
        model = self._model(table)
        query = select(func.count()).select_from(model).where(*self._where(model, filters))
        async with self.session_maker() as session:
            result = await session.execute(query)
            return int(result.scalar_one())

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(table)
        keys = _attr_keys(model)
        obj = model(**{keys[column]: copy.deepcopy(value) for column, value in values.items()})
        async with self.session_maker() as session:
            session.add(obj)
            await session.commit()
            await session.refresh(obj)
            row = row_to_dict(obj)
        await self._notify(table, "INSERT", [row])
        return row

    async def update(self, table: str, values: Dict[str, Any], **filters: Any) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("update requires at least one filter")
        model = self._model(table)
        keys = _attr_keys(model)
        async with self.session_maker() as session:
            result = await session.execute(select(model).where(*self._where(model, filters)))
            objs = list(result.scalars().all())
            for obj in objs:
                for column, value in values.items():
                    setattr(obj, keys[column], copy.deepcopy(value))
            await session.commit()
            for obj in objs:
                await session.refresh(obj)
            rows = [row_to_dict(obj) for obj in objs]
        await self._notify(table, "UPDATE", rows)
        return rows

    async def delete(self, table: str, **filters: Any) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("delete requires at least one filter")
        model = self._model(table)
        async with self.session_maker() as session:
            result = await session.execute(select(model).where(*self._where(model, filters)))
            rows = [row_to_dict(obj) for obj in result.scalars().all()]
            if rows:
                await session.execute(sa_delete(model).where(*self._where(model, filters)))
                await session.commit()
        await self._notify(table, "DELETE", rows)
        return rows
