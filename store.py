"""In-memory entity store for one running session."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import schema
from logging_config import get_logger
from persistence import COLLECTION_KEYS, PersistenceAdapter

logger = get_logger("store")

Subscriber = Callable[["StoreSnapshot"], None]


@dataclass(frozen=True)
class StoreSnapshot:
    """Read-only view of every collection at one point in time."""

    products: Tuple[schema.Product, ...] = ()
    categories: Tuple[schema.Category, ...] = ()
    suppliers: Tuple[schema.Supplier, ...] = ()
    transactions: Tuple[schema.Transaction, ...] = ()
    users: Tuple[schema.User, ...] = ()

    def product(self, product_id: str) -> Optional[schema.Product]:
        return _find(self.products, product_id)

    def category(self, category_id: str) -> Optional[schema.Category]:
        return _find(self.categories, category_id)

    def supplier(self, supplier_id: str) -> Optional[schema.Supplier]:
        return _find(self.suppliers, supplier_id)

    def user(self, user_id: str) -> Optional[schema.User]:
        return _find(self.users, user_id)

    def user_by_email(self, email: str) -> Optional[schema.User]:
        wanted = email.strip().lower()
        return next((u for u in self.users if u.email.lower() == wanted), None)


def _find(items, item_id):
    return next((item for item in items if item.id == item_id), None)


class EntityStore:
    """Owns the five collections and tells subscribers when they change.

    Entities are frozen pydantic models, so handing them out never exposes
    mutable state. Only the ledger engine calls ``replace``/``commit``.
    """

    def __init__(self, adapter: PersistenceAdapter) -> None:
        self._adapter = adapter
        self._collections: Dict[str, List[Any]] = {key: [] for key in COLLECTION_KEYS}
        self._subscribers: List[Subscriber] = []
        self._loaded = False

    @property
    def adapter(self) -> PersistenceAdapter:
        return self._adapter

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load(self) -> StoreSnapshot:
        """Populate from the adapter; the store is usable once this returns."""
        return self._apply(self._adapter.load())

    def reset(self) -> StoreSnapshot:
        return self._apply(self._adapter.reset())

    def import_bundle(self, payload: Union[str, bytes, Dict[str, Any]]) -> StoreSnapshot:
        self._adapter.import_bundle(payload)
        return self.load()

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(**{key: tuple(items) for key, items in self._collections.items()})

    def items(self, key: str) -> List[Any]:
        """Copy of one collection's list."""
        return list(self._collections[key])

    def replace(self, key: str, items: List[Any]) -> None:
        self._collections[key] = list(items)

    def commit(self, *keys: str) -> None:
        """Write the changed collections back, then notify subscribers."""
        collections = schema.Collections(**self._collections)
        self._adapter.save(collections, keys)
        self._notify()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _apply(self, collections: schema.Collections) -> StoreSnapshot:
        self._collections = {key: list(getattr(collections, key)) for key in COLLECTION_KEYS}
        self._loaded = True
        logger.info(
            "Store loaded: %s",
            ", ".join(f"{len(items)} {key}" for key, items in self._collections.items()),
        )
        return self._notify()

    def _notify(self) -> StoreSnapshot:
        snapshot = self.snapshot()
        # the change is already written back; a failing view must not undo that
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Subscriber %r failed on change notification", callback)
        return snapshot
