import logging
from typing import Any, List, Optional, Set

from sqlalchemy.orm import Session

from newsroom.core.database import Base, create_db_engine, create_session_factory
from newsroom.models import KeyValueEntry, SetMember, SortedSetMember
from newsroom.storage.base import KeyValueStore, Op, slice_inclusive

logger = logging.getLogger(__name__)


class SqlKeyValueStore(KeyValueStore):
    """
    Relational backend: plain values, set members and sorted-set members live
    in three tables. Each batch runs inside a single transaction.
    """

    def __init__(self, database_url: str, create_tables: bool = True):
        self.engine = create_db_engine(database_url)
        self.SessionLocal = create_session_factory(self.engine)
        if create_tables:
            Base.metadata.create_all(bind=self.engine)

    def get(self, key: str) -> Optional[str]:
        with self.SessionLocal() as db:
            row = db.get(KeyValueEntry, key)
            return row.value if row else None

    def get_many(self, keys: List[str]) -> List[Optional[str]]:
        if not keys:
            return []
        with self.SessionLocal() as db:
            rows = db.query(KeyValueEntry).filter(KeyValueEntry.key.in_(keys)).all()
            values = {row.key: row.value for row in rows}
        return [values.get(key) for key in keys]

    def members(self, key: str) -> Set[str]:
        with self.SessionLocal() as db:
            rows = db.query(SetMember.member).filter(SetMember.key == key).all()
        return {row.member for row in rows}

    def z_range_by_score(self, key: str, lo: float, hi: float) -> List[str]:
        with self.SessionLocal() as db:
            rows = (
                db.query(SortedSetMember.member)
                .filter(
                    SortedSetMember.key == key,
                    SortedSetMember.score >= lo,
                    SortedSetMember.score <= hi,
                )
                .order_by(SortedSetMember.score.asc(), SortedSetMember.member.asc())
                .all()
            )
        return [row.member for row in rows]

    def z_range_rev(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        with self.SessionLocal() as db:
            query = (
                db.query(SortedSetMember.member)
                .filter(SortedSetMember.key == key)
                .order_by(SortedSetMember.score.desc(), SortedSetMember.member.desc())
            )
            if start >= 0 and stop >= 0:
                rows = query.offset(start).limit(max(stop - start + 1, 0)).all()
                return [row.member for row in rows]
            members = [row.member for row in query.all()]
        return slice_inclusive(members, start, stop)

    def z_score(self, key: str, member: str) -> Optional[float]:
        with self.SessionLocal() as db:
            row = db.get(SortedSetMember, (key, member))
            return row.score if row else None

    def _apply(self, db: Session, op: Op) -> Any:
        kind, key = op[0], op[1]
        if kind == "set":
            row = db.get(KeyValueEntry, key)
            if row:
                row.value = op[2]
            else:
                db.add(KeyValueEntry(key=key, value=op[2]))
            return True
        if kind == "sadd":
            added = 0
            for member in dict.fromkeys(op[2]):
                if db.get(SetMember, (key, member)) is None:
                    db.add(SetMember(key=key, member=member))
                    added += 1
            return added
        if kind == "srem":
            return (
                db.query(SetMember)
                .filter(SetMember.key == key, SetMember.member.in_(op[2]))
                .delete(synchronize_session="fetch")
            )
        if kind == "zadd":
            row = db.get(SortedSetMember, (key, op[3]))
            if row:
                row.score = op[2]
                return 0
            db.add(SortedSetMember(key=key, member=op[3], score=op[2]))
            return 1
        if kind == "zrem":
            return (
                db.query(SortedSetMember)
                .filter(SortedSetMember.key == key, SortedSetMember.member == op[2])
                .delete(synchronize_session="fetch")
            )
        if kind in ("incrby", "incrbyfloat"):
            row = db.get(KeyValueEntry, key, with_for_update=True)
            if kind == "incrby":
                value = int(row.value if row else "0") + op[2]
                text = str(value)
            else:
                value = float(row.value if row else "0") + op[2]
                text = repr(value)
            if row:
                row.value = text
            else:
                db.add(KeyValueEntry(key=key, value=text))
            return value
        if kind == "delete":
            removed = 0
            for model in (KeyValueEntry, SetMember, SortedSetMember):
                removed += (
                    db.query(model)
                    .filter(model.key == key)
                    .delete(synchronize_session="fetch")
                )
            return int(removed > 0)
        raise ValueError(f"Unknown operation: {kind}")

    def _execute(self, ops: List[Op]) -> List[Any]:
        with self.SessionLocal() as db:
            try:
                results = []
                for op in ops:
                    results.append(self._apply(db, op))
                    db.flush()
                db.commit()
                return results
            except Exception:
                db.rollback()
                raise

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Disposed database engine")
