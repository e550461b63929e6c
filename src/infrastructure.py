"""
infrastructure.py

In-memory implementation of the document repository and the Unit of Work.

This is a self-contained, zero-dependency backend that stores every
collection in a plain Python dict keyed by document id.  It is intentionally
simple and suited to local development, demos, and integration testing
without needing a real document database.

Each collection guards its documents with a lock so that one `update` call
(field values plus Increment / ArrayUnion / ArrayAppend / ServerTimestamp
transforms) is applied as a single atomic step, the same guarantee a hosted
document store gives for a single-document write.  Documents are deep-copied
on the way in and out, so callers never hold a live reference to stored state.

To swap in a real store later, implement AbstractDocumentRepository and
AbstractUnitOfWork from application.py and override get_uow() in api.py:

    app.dependency_overrides[get_uow] = lambda: FirestoreUnitOfWork(client)

Nothing in service.py, application.py, or api.py needs to change.
"""

from __future__ import annotations

import copy
import threading
from datetime import datetime
from typing import Any, Callable

from application import (
    AbstractDocumentRepository,
    AbstractUnitOfWork,
    NotFoundError,
)
from model import (
    ArrayAppend,
    ArrayUnion,
    Increment,
    ServerTimestamp,
    utcnow,
)


# ---------------------------------------------------------------------------
# Field transforms
# ---------------------------------------------------------------------------

def _resolve(current: Any, value: Any, now: datetime) -> Any:
    """Resolve one change-set value against the stored field value."""
    if isinstance(value, Increment):
        return (current or 0) + value.amount
    if isinstance(value, ArrayUnion):
        merged = list(current or [])
        for v in value.values:
            if v not in merged:
                merged.append(v)
        return merged
    if isinstance(value, ArrayAppend):
        return list(current or []) + list(value.values)
    if isinstance(value, ServerTimestamp):
        return max(current, now) if current is not None else now
    return copy.deepcopy(value)


# ---------------------------------------------------------------------------
# Generic in-memory collection
# ---------------------------------------------------------------------------

class _Collection(dict):
    """A dict of documents with a lock for per-document atomic writes."""

    def __init__(self):
        super().__init__()
        self.lock = threading.RLock()


class InMemoryDatabase:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self.users:          _Collection = _Collection()
        self.groups:         _Collection = _Collection()
        self.centers:        _Collection = _Collection()
        self.assessments:    _Collection = _Collection()
        self.workgroups:     _Collection = _Collection()
        self.escalations:    _Collection = _Collection()
        self.messages:       _Collection = _Collection()
        self.legal_releases: _Collection = _Collection()


# Module-level singleton shared across all requests.
# Persists for the lifetime of the process; restarting uvicorn resets it.
_db = InMemoryDatabase()


# ---------------------------------------------------------------------------
# Repository implementation
# ---------------------------------------------------------------------------

class InMemoryDocumentRepository(AbstractDocumentRepository):
    def __init__(self, collection: _Collection, label: str, clock: Callable[[], datetime] = utcnow):
        self._c = collection
        self._label = label
        self._clock = clock

    def get(self, doc_id):
        with self._c.lock:
            doc = self._c.get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def add(self, entity):
        with self._c.lock:
            self._c[entity.id] = copy.deepcopy(entity)

    def update(self, doc_id, changes):
        with self._c.lock:
            doc = self._c.get(doc_id)
            if doc is None:
                raise NotFoundError(f"{self._label} not found.")
            now = self._clock()
            updated = copy.deepcopy(doc)
            for name, value in changes.items():
                if not hasattr(updated, name):
                    raise ValueError(f"{self._label} has no field '{name}'.")
                setattr(updated, name, _resolve(getattr(updated, name), value, now))
            self._c[doc_id] = updated
            return copy.deepcopy(updated)

    def query(self, where=None, contains=None, newest_first=False, limit=None):
        where = {k: v for k, v in (where or {}).items() if v is not None}
        contains = {k: v for k, v in (contains or {}).items() if v is not None}
        with self._c.lock:
            matches = [
                (i, d) for i, d in enumerate(self._c.values())
                if all(getattr(d, k) == v for k, v in where.items())
                and all(v in getattr(d, k) for k, v in contains.items())
            ]
            if newest_first:
                # insertion order breaks created_at ties
                matches.sort(key=lambda m: (m[1].created_at, m[0]), reverse=True)
            docs = [d for _, d in matches]
            if limit is not None:
                docs = docs[:limit]
            return copy.deepcopy(docs)


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Wraps all in-memory repositories.  commit() and rollback() are no-ops
    because every repository write is applied immediately, which is also why
    a failed second write leaves the first one in place.
    """

    def __init__(self, db: InMemoryDatabase = _db):
        def repo(collection: _Collection, label: str) -> InMemoryDocumentRepository:
            return InMemoryDocumentRepository(collection, label, db.clock)

        self.users          = repo(db.users, "User")
        self.groups         = repo(db.groups, "Group")
        self.centers        = repo(db.centers, "Center")
        self.assessments    = repo(db.assessments, "Assessment")
        self.workgroups     = repo(db.workgroups, "Workgroup")
        self.escalations    = repo(db.escalations, "Escalation")
        self.messages       = repo(db.messages, "Message")
        self.legal_releases = repo(db.legal_releases, "Legal release")

    def commit(self)   -> None: pass   # no-op for in-memory
    def rollback(self) -> None: pass   # no-op for in-memory
