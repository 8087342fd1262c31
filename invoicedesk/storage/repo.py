from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from postgrest.exceptions import APIError
from pydantic import BaseModel

from invoicedesk.errors import BackendError, RecordNotFound

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Item = Union[BaseModel, Mapping[str, Any]]

# PostgREST code for ".single()" with zero (or many) rows
NO_SINGLE_ROW = "PGRST116"


class TableRepository:
    """
    Remote table access over the backend query layer.
    - Equality filters (`where`), IS NULL filters (`null`), `id IN (...)` (`ids`)
    - Ordering + offset/limit pagination
    - Row-level security scopes rows to the signed-in user; callers still pass user_id explicitly
    """

    def __init__(self, client: Any, table: str, entity_name: Optional[str] = None, key: str = "id") -> None:
        self.client = client
        self.table = table
        self.entity_name = entity_name or table
        self.key = key

    # ---------------- Helpers ---------------- #

    @staticmethod
    def _to_dict(item: Item) -> Record:
        if hasattr(item, "model_dump"):
            return item.model_dump(mode="json", exclude_none=True)  # type: ignore[union-attr]
        return dict(item)

    def _query(self):
        return self.client.table(self.table)

    @staticmethod
    def _filter(q, where: Optional[Mapping[str, Any]] = None, null: Iterable[str] = (),
                ids: Optional[Sequence[Any]] = None, key: str = "id"):
        for col, val in (where or {}).items():
            q = q.eq(col, val)
        for col in null:
            q = q.is_(col, "null")
        if ids is not None:
            q = q.in_(key, [str(i) for i in ids])
        return q

    async def _execute(self, q, action: str):
        try:
            return await q.execute()
        except APIError as e:
            if getattr(e, "code", None) == NO_SINGLE_ROW:
                raise RecordNotFound(f"{self.entity_name} not found") from e
            raise BackendError(f"{action} {self.entity_name} failed: {e.message}", code=e.code) from e

    # ---------------- Reads ---------------- #

    async def list_all(
        self,
        columns: str = "*",
        *,
        where: Optional[Mapping[str, Any]] = None,
        null: Iterable[str] = (),
        ids: Optional[Sequence[Any]] = None,
        order_by: Optional[str] = None,
        desc: bool = True,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        q = self._filter(self._query().select(columns), where, null, ids, self.key)
        if order_by:
            q = q.order(order_by, desc=desc)
        if offset is not None and limit:
            q = q.range(offset, offset + limit - 1)
        elif limit:
            q = q.limit(limit)
        resp = await self._execute(q, "list")
        return list(resp.data or [])

    async def get_one(self, columns: str = "*", *, where: Mapping[str, Any]) -> Record:
        """Exactly one row or RecordNotFound."""
        q = self._filter(self._query().select(columns), where).limit(1).single()
        resp = await self._execute(q, "get")
        if not resp.data:
            raise RecordNotFound(f"{self.entity_name} not found")
        return resp.data

    async def find_one(self, columns: str = "*", *, where: Mapping[str, Any]) -> Optional[Record]:
        rows = await self.list_all(columns, where=where, limit=1)
        return rows[0] if rows else None

    async def get_by_id(self, obj_id: Any, columns: str = "*", *, where: Optional[Mapping[str, Any]] = None) -> Record:
        return await self.get_one(columns, where={self.key: str(obj_id), **(where or {})})

    async def count(self, *, where: Optional[Mapping[str, Any]] = None, null: Iterable[str] = (),
                    columns: str = "id") -> int:
        q = self._filter(self._query().select(columns, count="exact", head=True), where, null)
        resp = await self._execute(q, "count")
        return int(resp.count or 0)

    # ---------------- Writes ---------------- #

    async def add(self, item: Item) -> Record:
        record = self._to_dict(item)
        resp = await self._execute(self._query().insert(record), "insert")
        rows = resp.data or []
        return rows[0] if rows else record

    async def add_many(self, items: Iterable[Item]) -> List[Record]:
        records = [self._to_dict(it) for it in items]
        if not records:
            return []
        resp = await self._execute(self._query().insert(records), "insert")
        return list(resp.data or [])

    async def update(
        self,
        values: Item,
        *,
        where: Optional[Mapping[str, Any]] = None,
        null: Iterable[str] = (),
        ids: Optional[Sequence[Any]] = None,
    ) -> List[Record]:
        if not where and ids is None:
            raise ValueError(f"Refusing to update every {self.entity_name} row without a filter")
        q = self._filter(self._query().update(self._to_dict(values)), where, null, ids, self.key)
        resp = await self._execute(q, "update")
        return list(resp.data or [])

    async def upsert(self, item: Item, *, on_conflict: Optional[str] = None) -> Record:
        record = self._to_dict(item)
        q = self._query().upsert(record, on_conflict=on_conflict or self.key)
        resp = await self._execute(q, "upsert")
        rows = resp.data or []
        return rows[0] if rows else record

    async def delete(self, *, where: Mapping[str, Any]) -> int:
        if not where:
            raise ValueError(f"Refusing to delete every {self.entity_name} row without a filter")
        q = self._filter(self._query().delete(), where)
        resp = await self._execute(q, "delete")
        return len(resp.data or [])
