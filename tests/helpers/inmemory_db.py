import asyncio
import copy
from collections.abc import Iterable
from enum import Enum
from typing import Any


def _norm(v):
    return v.value if isinstance(v, Enum) else v


class DuplicateKeyError(Exception):
    pass


class _Index:
    """Minimal Mongo-like index descriptor."""

    def __init__(self, keys: list[tuple[str, int]], *, unique: bool = False, name: str | None = None) -> None:
        self.keys = list(keys)
        self.unique = bool(unique)
        self.name = name

    def signature(self) -> tuple:
        return (tuple(self.keys), self.unique)

    def extract_tuple(self, doc: dict[str, Any]) -> tuple:
        return tuple(_norm(doc.get(path)) for path, _order in self.keys)


class InMemCollection:
    """
    Mongo-like collection for unit tests.

    Reads yield to the event loop once (like a network round trip) so concurrent
    coroutines interleave; `find_one_and_update` matches and writes without
    yielding in between, which is the atomicity the stores rely on.
    Documents are copied on the way in and out.
    """

    def __init__(self, name: str):
        self.name = name
        self.rows: list[dict[str, Any]] = []
        self._indexes: list[_Index] = []
        self.fail_next_inserts = 0

    # ───────────────────────── Query match ─────────────────────────

    def _match(self, doc, flt) -> bool:
        for k, v in (flt or {}).items():
            val = _norm(doc.get(k))
            if isinstance(v, dict):
                if "$in" in v and val not in [_norm(x) for x in v["$in"]]:
                    return False
                if "$ne" in v and val == _norm(v["$ne"]):
                    return False
                if "$lte" in v and not (val is not None and val <= _norm(v["$lte"])):
                    return False
                if "$lt" in v and not (val is not None and val < _norm(v["$lt"])):
                    return False
                if "$gte" in v and not (val is not None and val >= _norm(v["$gte"])):
                    return False
                continue
            if _norm(v) != val:
                return False
        return True

    def _ensure_unique_ok(self, candidate: dict[str, Any], *, ignore_doc: dict[str, Any] | None = None) -> None:
        for idx in self._indexes:
            if not idx.unique:
                continue
            tup = idx.extract_tuple(candidate)
            for other in self.rows:
                if other is ignore_doc:
                    continue
                if idx.extract_tuple(other) == tup:
                    raise DuplicateKeyError(f"duplicate key: {self.name}.{idx.name or 'unique'} -> {tup}")

    @staticmethod
    def _apply_update(base: dict[str, Any], upd: dict, created: bool) -> dict[str, Any]:
        out = {} if created else copy.deepcopy(base)
        if created:
            for k, v in (upd.get("$setOnInsert") or {}).items():
                out[k] = _norm(v)
        for k, v in (upd.get("$set") or {}).items():
            out[k] = copy.deepcopy(_norm(v))
        for k, v in (upd.get("$inc") or {}).items():
            out[k] = int(out.get(k) or 0) + int(v)
        return out

    def _first(self, flt) -> dict[str, Any] | None:
        for d in self.rows:
            if self._match(d, flt):
                return d
        return None

    # ───────────────────────── CRUD ─────────────────────────

    async def insert_one(self, doc):
        if self.fail_next_inserts > 0:
            self.fail_next_inserts -= 1
            raise ConnectionError(f"{self.name}: simulated insert failure")
        cand = copy.deepcopy(dict(doc))
        self._ensure_unique_ok(cand)
        self.rows.append(cand)

    async def find_one(self, flt, proj=None):
        await asyncio.sleep(0)
        d = self._first(flt)
        return copy.deepcopy(d) if d is not None else None

    async def count_documents(self, flt):
        return sum(1 for d in self.rows if self._match(d, flt))

    def find(self, flt, proj=None):
        rows = [copy.deepcopy(d) for d in self.rows if self._match(d, flt)]

        class _Cur:
            def __init__(self, rows: list[dict[str, Any]]):
                self._rows = rows

            def sort(self, spec: Iterable[tuple[str, int]]):
                for field, order in reversed(list(spec or [])):

                    def _key(doc, _field=field):
                        v = doc.get(_field)
                        return (1 if v is None else 0, v)

                    self._rows.sort(key=_key, reverse=int(order or 1) < 0)
                return self

            def limit(self, n):
                self._rows = self._rows[: int(n)]
                return self

            async def __aiter__(self):
                await asyncio.sleep(0)
                for r in list(self._rows):
                    yield r

        return _Cur(rows)

    async def update_one(self, flt, upd, upsert=False):
        doc = self._first(flt)
        created = doc is None
        if created and not upsert:
            return
        candidate = self._apply_update(doc or {}, upd or {}, created)
        if created:
            for k, v in (flt or {}).items():
                if not isinstance(v, dict):
                    candidate.setdefault(k, _norm(v))
        self._ensure_unique_ok(candidate, ignore_doc=None if created else doc)
        if created:
            self.rows.append(candidate)
        else:
            doc.clear()
            doc.update(candidate)

    async def find_one_and_update(self, flt, upd):
        """Return the pre-image (Mongo's default) or None when nothing matched."""
        await asyncio.sleep(0)
        doc = self._first(flt)
        if doc is None:
            return None
        before = copy.deepcopy(doc)
        candidate = self._apply_update(doc, upd or {}, False)
        self._ensure_unique_ok(candidate, ignore_doc=doc)
        doc.clear()
        doc.update(candidate)
        return before

    async def create_index(self, keys, **kwargs):
        if isinstance(keys, dict):
            keys = list(keys.items())
        idx = _Index([(str(k), int(o)) for k, o in keys], unique=kwargs.get("unique", False), name=kwargs.get("name"))
        for existing in self._indexes:
            if existing.signature() == idx.signature():
                return idx.name or "ok"
        self._indexes.append(idx)
        return idx.name or "ok"


class InMemDB:
    """
    Dynamic collections map with Mongo-like indices.
    Access via attribute: db.tasks, or db.collection('tasks').
    """

    def __init__(self):
        self._collections: dict[str, InMemCollection] = {}

    def collection(self, name: str) -> InMemCollection:
        coll = self._collections.get(name)
        if coll is None:
            coll = InMemCollection(name)
            self._collections[name] = coll
        return coll

    def __getattr__(self, name: str) -> InMemCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        return self.collection(name)
