# Overview: Generic record-store seam over the SQLAlchemy session.

"""
Record Store

All reconciliation services read and write rows only through these five
operations, so the core never depends on query-building details:

- find_one(model, **filters)          -> row | None
- get_one(model, error, **filters)    -> row (raises error when absent)
- find_many(model, filters, ...)      -> list[row]
- insert(row)                         -> row (flushed, id assigned)
- update_where(model, filters, patch) -> int (raises StoreConflict on 0 rows)

update_where is the compare-and-set primitive: the filters carry the expected
prior state (e.g. status='pending'), and a zero-row result (or a unique
violation from the patch) means another writer got there first.
"""

from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError

from ..errors import NotFoundError, StoreConflict
from ..extensions import db


class RecordStore:
    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def find_one(self, model, **filters):
        return self.session.query(model).filter_by(**filters).first()

    def get_one(self, model, error: type[NotFoundError] = NotFoundError, **filters):
        row = self.find_one(model, **filters)
        if row is None:
            described = ", ".join(f"{k}={v}" for k, v in filters.items())
            raise error(f"{model.__name__} not found ({described})")
        return row

    def find_many(
        self,
        model,
        filters: dict[str, Any] | None = None,
        *,
        criteria: Iterable = (),
        order_by: Iterable = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list:
        """
        Equality filters plus optional SQLAlchemy range criteria.

        criteria holds extra expressions such as Model.created_at >= since.
        """
        query = self.session.query(model)
        if filters:
            query = query.filter_by(**filters)
        for criterion in criteria:
            query = query.filter(criterion)
        order = list(order_by)
        if order:
            query = query.order_by(*order)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def insert(self, row):
        self.session.add(row)
        self.session.flush()
        return row

    def update_where(self, model, filters: dict[str, Any], patch: dict[str, Any]) -> int:
        """
        UPDATE model SET patch WHERE filters.

        Raises StoreConflict when no row matched the expected state, or when
        the patch collides with a unique constraint another writer already
        claimed (e.g. a transfer linked to a different payment).
        """
        query = self.session.query(model)
        for key, value in filters.items():
            column = getattr(model, key)
            query = query.filter(column.is_(None) if value is None else column == value)
        try:
            updated = query.update(patch, synchronize_session="fetch")
        except IntegrityError as exc:
            detail = f"Update on {model.__tablename__} lost a unique race: {exc.orig}"
            raise StoreConflict(model.__tablename__, filters, detail) from exc
        if updated == 0:
            raise StoreConflict(model.__tablename__, filters)
        return updated

    def refresh(self, row):
        self.session.refresh(row)
        return row

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


def default_store() -> RecordStore:
    return RecordStore()
