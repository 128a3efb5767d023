"""Persistence adapter between the entity store and a key-value store.

Each collection lives under its own key as a JSON array; the company name
is a plain string under ``companyName``.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import TypeAdapter, ValidationError

import schema
from config import settings
from logging_config import get_logger
from storage import KeyValueStore

logger = get_logger("persistence")

PRODUCTS_KEY = "products"
CATEGORIES_KEY = "categories"
SUPPLIERS_KEY = "suppliers"
TRANSACTIONS_KEY = "transactions"
USERS_KEY = "users"
COMPANY_NAME_KEY = "companyName"

COLLECTION_KEYS = (PRODUCTS_KEY, CATEGORIES_KEY, SUPPLIERS_KEY, TRANSACTIONS_KEY, USERS_KEY)

_ADAPTERS: Dict[str, TypeAdapter] = {
    PRODUCTS_KEY: TypeAdapter(List[schema.Product]),
    CATEGORIES_KEY: TypeAdapter(List[schema.Category]),
    SUPPLIERS_KEY: TypeAdapter(List[schema.Supplier]),
    TRANSACTIONS_KEY: TypeAdapter(List[schema.Transaction]),
    USERS_KEY: TypeAdapter(List[schema.User]),
}


class InvalidBundleError(ValueError):
    """An import payload was rejected; nothing was written."""


# --- Seed data ---
def sample_products(now: datetime) -> List[schema.Product]:
    return [
        schema.Product(id="1", name="Laptop", sku="LAP-001", category_id="1", supplier_id="1",
                       price=590000, quantity=15, threshold=5,
                       description="High performance laptop", created_at=now),
        schema.Product(id="2", name="Smartphone", sku="SMART-001", category_id="1", supplier_id="2",
                       price=325000, quantity=25, threshold=8,
                       description="Latest generation smartphone", created_at=now),
    ]

def sample_categories(now: datetime) -> List[schema.Category]:
    return [
        schema.Category(id="1", name="Electronics", description="Electronic products and gadgets"),
        schema.Category(id="2", name="Furniture", description="Office furniture and accessories"),
    ]

def sample_suppliers(now: datetime) -> List[schema.Supplier]:
    return [
        schema.Supplier(id="1", name="TechPro", contact="Jean Dupont", email="contact@techpro.com",
                        phone="01 23 45 67 89", address="123 Rue de la Tech, Paris"),
        schema.Supplier(id="2", name="MobileTech", contact="Marie Martin", email="info@mobiletech.com",
                        phone="01 98 76 54 32", address="456 Avenue Mobile, Lyon"),
    ]

def sample_transactions(now: datetime) -> List[schema.Transaction]:
    # newest first, like the ledger keeps them
    return [
        schema.Transaction(id="2", type=schema.TransactionType.EXIT, product_id="1", quantity=2,
                           date=now - timedelta(days=5), notes="Customer sale"),
        schema.Transaction(id="1", type=schema.TransactionType.ENTRY, product_id="1", quantity=10,
                           date=now - timedelta(days=7), notes="Regular restock"),
    ]

def default_user() -> schema.User:
    return schema.User(id="1", name="Admin", email="admin@mic-services.com", role=schema.Role.ADMIN)

def sample_users(now: datetime) -> List[schema.User]:
    return [default_user()]


_SEEDS: Dict[str, Callable[[datetime], list]] = {
    PRODUCTS_KEY: sample_products,
    CATEGORIES_KEY: sample_categories,
    SUPPLIERS_KEY: sample_suppliers,
    TRANSACTIONS_KEY: sample_transactions,
    USERS_KEY: sample_users,
}


def _repeated(values: Iterable[str]) -> List[str]:
    seen, repeated = set(), []
    for value in values:
        if value in seen and value not in repeated:
            repeated.append(value)
        seen.add(value)
    return repeated


def _duplicates(collections: schema.Collections) -> List[str]:
    """Ids repeated within a collection, and repeated product SKUs."""
    problems = []
    for key in COLLECTION_KEYS:
        repeated = _repeated(item.id for item in getattr(collections, key))
        if repeated:
            problems.append(f"{key} ids {', '.join(repeated)}")
    skus = _repeated(p.sku for p in collections.products)
    if skus:
        problems.append(f"products skus {', '.join(skus)}")
    return problems


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PersistenceAdapter:
    """Loads, seeds and writes back the five entity collections."""

    def __init__(self, store: KeyValueStore, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._store = store
        self._clock = clock or _utcnow

    def load(self) -> schema.Collections:
        """Read every collection, seeding the ones that are missing or unreadable.

        A stored empty array is kept as is, except for users: the user
        collection is never allowed to be empty.
        """
        now = self._clock()
        loaded = {}
        for key in COLLECTION_KEYS:
            items = self._read(key)
            if items is None or (key == USERS_KEY and not items):
                logger.info("Seeding default %s", key)
                items = _SEEDS[key](now)
            loaded[key] = items
        collections = schema.Collections(**loaded)
        self.save(collections)
        return collections

    def save(self, collections: schema.Collections, keys: Iterable[str] = COLLECTION_KEYS) -> None:
        """Overwrite the given collections under their keys."""
        for key in keys:
            self._write(key, getattr(collections, key))

    def reset(self) -> schema.Collections:
        """Clear all collections, keeping a single user, then reload seeds.

        The kept user is whichever user was first in the stored collection,
        or the default admin when there was none.
        """
        users = self._read(USERS_KEY)
        keep = users[0] if users else default_user()
        for key in COLLECTION_KEYS:
            self._store.remove(key)
        self._write(USERS_KEY, [keep])
        logger.warning("Stock data reset; kept user %s", keep.id)
        return self.load()

    # --- Settings ---
    def company_name(self) -> str:
        try:
            name = self._store.get(COMPANY_NAME_KEY)
        except Exception:
            logger.warning("Could not read %s, using default", COMPANY_NAME_KEY, exc_info=True)
            name = None
        return name or settings.DEFAULT_COMPANY_NAME

    def set_company_name(self, name: str) -> None:
        self._store.set(COMPANY_NAME_KEY, name)

    # --- Data management ---
    def export_bundle(self) -> schema.ExportBundle:
        collections = {key: self._read(key) or [] for key in COLLECTION_KEYS}
        return schema.ExportBundle(
            **collections,
            settings=schema.BundleSettings(company_name=self.company_name()),
        )

    def import_bundle(self, payload: Union[str, bytes, Dict[str, Any]]) -> schema.ExportBundle:
        """Replace all collections with an exported bundle.

        The whole bundle is validated first; if any collection is missing or
        malformed, ``InvalidBundleError`` is raised and the store is untouched.
        """
        try:
            if isinstance(payload, (str, bytes)):
                bundle = schema.ExportBundle.model_validate_json(payload)
            else:
                bundle = schema.ExportBundle.model_validate(payload)
        except ValidationError as exc:
            missing = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
            raise InvalidBundleError(
                f"Invalid import file: problems with {', '.join(missing) or 'payload'}"
            ) from exc

        duplicates = _duplicates(bundle)
        if duplicates:
            raise InvalidBundleError(f"Invalid import file: duplicate {'; '.join(duplicates)}")

        self.save(bundle)
        if bundle.settings.company_name:
            self.set_company_name(bundle.settings.company_name)
        logger.info(
            "Imported bundle: %s",
            ", ".join(f"{len(getattr(bundle, key))} {key}" for key in COLLECTION_KEYS),
        )
        return bundle

    # --- Raw access ---
    def _read(self, key: str) -> Optional[list]:
        try:
            raw = self._store.get(key)
        except Exception:
            logger.warning("Storage read failed for %s", key, exc_info=True)
            return None
        if not raw:
            return None
        try:
            return _ADAPTERS[key].validate_json(raw)
        except ValueError:
            logger.warning("Discarding unreadable %s record", key, exc_info=True)
            return None

    def _write(self, key: str, items: list) -> None:
        self._store.set(key, _ADAPTERS[key].dump_json(items, by_alias=True).decode("utf-8"))
