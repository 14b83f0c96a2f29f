# Overview: Collection primitives over SQLAlchemy models with per-collection write locks.

"""
Record Store

Every model maps to one named collection (its table). Reads go straight to
the session; writes take the collection's in-process lock so that a
read-modify-write against one collection cannot interleave with another
writer of the same collection in this process.

The guarantee does NOT extend across collections. Callers that must keep two
collections consistent (e.g. Transaction + User on approval) pass
commit=False and commit once, under their own higher-level lock.
"""

from __future__ import annotations

from contextlib import ExitStack, contextmanager
from typing import Any

from ..extensions import db
from ..validation import MAX_STORABLE_INT
from .concurrency import keyed_lock


def collection_name(model) -> str:
    return model.__tablename__


def collection_lock(model):
    return keyed_lock("collection", collection_name(model))


def read_all(model, *, order_by=None) -> list:
    query = db.session.query(model)
    if order_by is not None:
        query = query.order_by(order_by)
    return query.all()


def find_by_id(model, record_id: Any):
    if record_id is None:
        return None
    if isinstance(record_id, int) and not 0 < record_id <= MAX_STORABLE_INT:
        return None
    return db.session.get(model, record_id)


def find_one_by(model, *criteria, **filters):
    """First record matching SQLAlchemy criteria and/or column equality filters."""
    query = db.session.query(model)
    if criteria:
        query = query.filter(*criteria)
    if filters:
        query = query.filter_by(**filters)
    return query.order_by(model.id.asc()).first()


def find_all_by(model, *criteria, order_by=None, limit: int | None = None, offset: int | None = None, **filters) -> list:
    query = db.session.query(model)
    if criteria:
        query = query.filter(*criteria)
    if filters:
        query = query.filter_by(**filters)
    if order_by is not None:
        if isinstance(order_by, (list, tuple)):
            query = query.order_by(*order_by)
        else:
            query = query.order_by(order_by)
    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def count_by(model, *criteria, **filters) -> int:
    query = db.session.query(model)
    if criteria:
        query = query.filter(*criteria)
    if filters:
        query = query.filter_by(**filters)
    return query.count()


def append(record, *, commit: bool = True):
    """Insert a new record; id is assigned on return."""
    with collection_lock(type(record)):
        db.session.add(record)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
    return record


def update_by_id(model, record_id: Any, changes: dict, *, commit: bool = True):
    """
    Apply a partial update to one record.

    Returns the updated record, or None if no record has that id.
    Unknown attribute names raise AttributeError rather than being ignored.
    """
    with collection_lock(model):
        record = db.session.get(model, record_id)
        if record is None:
            return None
        for key, value in changes.items():
            if not hasattr(model, key):
                raise AttributeError(f"{model.__name__} has no attribute {key!r}")
            setattr(record, key, value)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return record


def delete_by_id(model, record_id: Any, *, commit: bool = True) -> bool:
    with collection_lock(model):
        record = db.session.get(model, record_id)
        if record is None:
            return False
        db.session.delete(record)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return True


@contextmanager
def hold_collections(*models):
    """
    Hold several collection locks at once, always acquired in table-name
    order so two multi-collection writers cannot deadlock each other.
    """
    names = sorted({collection_name(model) for model in models})
    with ExitStack() as stack:
        for name in names:
            stack.enter_context(keyed_lock("collection", name))
        yield
