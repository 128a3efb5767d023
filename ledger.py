"""Ledger engine: every mutation of the stock data goes through here.

Business-rule violations (guarded deletes, unknown ids, duplicate SKUs) are
reported through the return value and leave the store unchanged; nothing in
this module raises for them.

Every quantity change ends up in the transaction ledger. Explicit
transactions move stock; product creation and quantity edits record the
movement they imply without applying it twice.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar
from uuid import uuid4

from pydantic import BaseModel

import schema
from logging_config import get_logger
from persistence import (
    CATEGORIES_KEY,
    PRODUCTS_KEY,
    SUPPLIERS_KEY,
    TRANSACTIONS_KEY,
    USERS_KEY,
    PersistenceAdapter,
)
from storage import KeyValueStore
from store import EntityStore, StoreSnapshot

logger = get_logger("ledger")

INITIAL_STOCK_NOTE = "Initial stock"
ADJUSTMENT_NOTE = "Manual stock adjustment"

Entity = TypeVar("Entity", bound=BaseModel)
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


def _changes(update: BaseModel, nullable: Iterable[str] = ()) -> Dict[str, Any]:
    """Fields explicitly set on a partial update.

    ``None`` only clears fields listed in ``nullable``; elsewhere it means
    "leave as is".
    """
    allowed = set(nullable)
    return {
        name: value
        for name, value in update.model_dump(exclude_unset=True).items()
        if value is not None or name in allowed
    }


def _merge(existing: Entity, changes: Dict[str, Any]) -> Entity:
    return type(existing).model_validate({**existing.model_dump(), **changes})


class LedgerEngine:
    """Mutation API over an ``EntityStore``."""

    def __init__(
        self,
        store: EntityStore,
        clock: Optional[Clock] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._store = store
        self._clock = clock or _utcnow
        self._new_id = id_factory or _new_id

    @property
    def store(self) -> EntityStore:
        return self._store

    def snapshot(self) -> StoreSnapshot:
        return self._store.snapshot()

    # --- Products ---
    def add_product(self, data: schema.ProductCreate) -> Optional[schema.Product]:
        """Create a product; a positive opening quantity is logged as an entry."""
        products = self._store.items(PRODUCTS_KEY)
        if self._sku_taken(products, data.sku):
            logger.warning("Refused product %r: SKU %s already in use", data.name, data.sku)
            return None

        now = self._clock()
        product = schema.Product(id=self._new_id(), created_at=now, **data.model_dump())
        products.append(product)
        self._store.replace(PRODUCTS_KEY, products)

        changed = [PRODUCTS_KEY]
        if product.quantity > 0:
            self._record(
                schema.TransactionCreate(
                    type=schema.TransactionType.ENTRY,
                    product_id=product.id,
                    quantity=product.quantity,
                    date=now,
                    notes=INITIAL_STOCK_NOTE,
                ),
                move_stock=False,
            )
            changed.append(TRANSACTIONS_KEY)

        self._store.commit(*changed)
        logger.info("Product %s (%s) added with quantity %d", product.id, product.sku, product.quantity)
        return product

    def update_product(self, product_id: str, data: schema.ProductUpdate) -> Optional[schema.Product]:
        """Apply a partial update; a quantity change is logged as one entry or exit."""
        products = self._store.items(PRODUCTS_KEY)
        index = _index_of(products, product_id)
        if index is None:
            logger.warning("Product %s not found for update", product_id)
            return None

        existing = products[index]
        changes = _changes(data, nullable=("description",))
        if "sku" in changes and self._sku_taken(products, changes["sku"], exclude_id=product_id):
            logger.warning("Refused update of product %s: SKU %s already in use", product_id, changes["sku"])
            return None

        updated = _merge(existing, changes)
        products[index] = updated
        self._store.replace(PRODUCTS_KEY, products)

        changed = [PRODUCTS_KEY]
        diff = updated.quantity - existing.quantity
        if diff != 0:
            self._record(
                schema.TransactionCreate(
                    type=schema.TransactionType.ENTRY if diff > 0 else schema.TransactionType.EXIT,
                    product_id=product_id,
                    quantity=abs(diff),
                    date=self._clock(),
                    notes=ADJUSTMENT_NOTE,
                ),
                move_stock=False,
            )
            changed.append(TRANSACTIONS_KEY)

        self._store.commit(*changed)
        logger.info("Product %s updated", product_id)
        return updated

    def delete_product(self, product_id: str) -> bool:
        """Remove a product; its transactions stay in the ledger."""
        return self._delete(PRODUCTS_KEY, product_id)

    # --- Categories ---
    def add_category(self, data: schema.CategoryCreate) -> schema.Category:
        return self._add(CATEGORIES_KEY, schema.Category(id=self._new_id(), **data.model_dump()))

    def update_category(self, category_id: str, data: schema.CategoryUpdate) -> Optional[schema.Category]:
        return self._update(CATEGORIES_KEY, category_id, _changes(data, nullable=("description",)))

    def delete_category(self, category_id: str) -> bool:
        if any(p.category_id == category_id for p in self._store.items(PRODUCTS_KEY)):
            logger.warning("Category %s is used by products; not deleted", category_id)
            return False
        return self._delete(CATEGORIES_KEY, category_id)

    # --- Suppliers ---
    def add_supplier(self, data: schema.SupplierCreate) -> schema.Supplier:
        return self._add(SUPPLIERS_KEY, schema.Supplier(id=self._new_id(), **data.model_dump()))

    def update_supplier(self, supplier_id: str, data: schema.SupplierUpdate) -> Optional[schema.Supplier]:
        changes = _changes(data, nullable=("contact", "email", "phone", "address"))
        return self._update(SUPPLIERS_KEY, supplier_id, changes)

    def delete_supplier(self, supplier_id: str) -> bool:
        if any(p.supplier_id == supplier_id for p in self._store.items(PRODUCTS_KEY)):
            logger.warning("Supplier %s is used by products; not deleted", supplier_id)
            return False
        return self._delete(SUPPLIERS_KEY, supplier_id)

    # --- Transactions ---
    def add_transaction(self, data: schema.TransactionCreate) -> schema.Transaction:
        """Record a stock movement and apply it to the product.

        Exits larger than the stock on hand leave the product at zero. A
        transaction for an unknown product is still recorded.
        """
        if data.date is None:
            data = data.model_copy(update={"date": self._clock()})
        transaction = self._record(data, move_stock=True)
        self._store.commit(TRANSACTIONS_KEY, PRODUCTS_KEY)
        logger.info(
            "Recorded %s of %d for product %s",
            transaction.type.value, transaction.quantity, transaction.product_id,
        )
        return transaction

    # --- Users ---
    def add_user(self, data: schema.UserCreate) -> schema.User:
        return self._add(USERS_KEY, schema.User(id=self._new_id(), **data.model_dump()))

    def update_user(self, user_id: str, data: schema.UserUpdate) -> Optional[schema.User]:
        return self._update(USERS_KEY, user_id, _changes(data))

    def delete_user(self, user_id: str) -> bool:
        """Remove a user unless it would leave the collection empty."""
        if len(self._store.items(USERS_KEY)) <= 1:
            logger.warning("Refused to delete the last remaining user %s", user_id)
            return False
        return self._delete(USERS_KEY, user_id)

    # --- Data management ---
    def reset(self) -> StoreSnapshot:
        return self._store.reset()

    def import_bundle(self, payload) -> StoreSnapshot:
        """Replace everything with an exported bundle.

        Raises ``persistence.InvalidBundleError`` when the bundle is rejected;
        the current data is kept in that case.
        """
        return self._store.import_bundle(payload)

    def export_bundle(self) -> schema.ExportBundle:
        return self._store.adapter.export_bundle()

    # --- Internals ---
    def _record(self, data: schema.TransactionCreate, move_stock: bool) -> schema.Transaction:
        transaction = schema.Transaction(
            id=self._new_id(),
            type=data.type,
            product_id=data.product_id,
            quantity=data.quantity,
            date=data.date or self._clock(),
            notes=data.notes,
        )
        ledger = self._store.items(TRANSACTIONS_KEY)
        ledger.append(transaction)
        # stable, so equal dates keep insertion order
        ledger.sort(key=lambda t: t.date, reverse=True)
        self._store.replace(TRANSACTIONS_KEY, ledger)

        if move_stock:
            products = self._store.items(PRODUCTS_KEY)
            index = _index_of(products, transaction.product_id)
            if index is None:
                logger.warning("Transaction %s references unknown product %s", transaction.id, transaction.product_id)
            else:
                product = products[index]
                if transaction.type is schema.TransactionType.ENTRY:
                    quantity = product.quantity + transaction.quantity
                else:
                    quantity = product.quantity - transaction.quantity
                products[index] = product.model_copy(update={"quantity": max(0, quantity)})
                self._store.replace(PRODUCTS_KEY, products)
        return transaction

    def _add(self, key: str, entity: Entity) -> Entity:
        items = self._store.items(key)
        items.append(entity)
        self._store.replace(key, items)
        self._store.commit(key)
        logger.info("Added %s %s", key, entity.id)
        return entity

    def _update(self, key: str, entity_id: str, changes: Dict[str, Any]) -> Optional[Any]:
        items = self._store.items(key)
        index = _index_of(items, entity_id)
        if index is None:
            logger.warning("%s %s not found for update", key, entity_id)
            return None
        items[index] = _merge(items[index], changes)
        self._store.replace(key, items)
        self._store.commit(key)
        logger.info("Updated %s %s", key, entity_id)
        return items[index]

    def _delete(self, key: str, entity_id: str) -> bool:
        items = self._store.items(key)
        index = _index_of(items, entity_id)
        if index is None:
            logger.warning("%s %s not found for delete", key, entity_id)
            return False
        del items[index]
        self._store.replace(key, items)
        self._store.commit(key)
        logger.info("Deleted %s %s", key, entity_id)
        return True

    @staticmethod
    def _sku_taken(products: List[schema.Product], sku: str, exclude_id: Optional[str] = None) -> bool:
        return any(p.sku == sku and p.id != exclude_id for p in products)


def _index_of(items: List[Any], entity_id: str) -> Optional[int]:
    return next((i for i, item in enumerate(items) if item.id == entity_id), None)


def open_ledger(
    kv_store: KeyValueStore,
    clock: Optional[Clock] = None,
    id_factory: Optional[Callable[[], str]] = None,
) -> LedgerEngine:
    """Wire adapter, store and engine over ``kv_store`` and load the data."""
    adapter = PersistenceAdapter(kv_store, clock=clock)
    store = EntityStore(adapter)
    store.load()
    return LedgerEngine(store, clock=clock, id_factory=id_factory)
