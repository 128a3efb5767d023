"""Key-value stores the persistence adapter writes through.

Values are opaque strings; the adapter owns the JSON encoding.
"""

from typing import Callable, Dict, Optional, Protocol

from sqlalchemy.orm import Session

import models


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store, used by tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return sorted(self._data)


class SqlKeyValueStore:
    """Store backed by the ``stored_records`` table.

    Every call opens and closes its own session, so each ``set`` is durable
    once it returns.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[str]:
        db = self._session_factory()
        try:
            record = db.get(models.StoredRecord, key)
            return record.value if record else None
        finally:
            db.close()

    def set(self, key: str, value: str) -> None:
        db = self._session_factory()
        try:
            record = db.get(models.StoredRecord, key)
            if record:
                record.value = value
            else:
                db.add(models.StoredRecord(key=key, value=value))
            db.commit()
        finally:
            db.close()

    def remove(self, key: str) -> None:
        db = self._session_factory()
        try:
            db.query(models.StoredRecord).filter(models.StoredRecord.key == key).delete()
            db.commit()
        finally:
            db.close()
