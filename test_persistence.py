import json

import pytest

import schema
from conftest import NOW
from ledger import open_ledger
from persistence import (
    COLLECTION_KEYS,
    COMPANY_NAME_KEY,
    PRODUCTS_KEY,
    USERS_KEY,
    InvalidBundleError,
    PersistenceAdapter,
)
from storage import MemoryStore


class BrokenStore(MemoryStore):
    def get(self, key):
        raise OSError("disk unavailable")


def test_load_seeds_and_persists_defaults(kv_store, clock):
    collections = PersistenceAdapter(kv_store, clock=clock).load()

    assert [p.sku for p in collections.products] == ["LAP-001", "SMART-001"]
    assert len(collections.categories) == 2
    assert len(collections.suppliers) == 2
    assert len(collections.transactions) == 2
    assert [u.role for u in collections.users] == [schema.Role.ADMIN]
    for key in COLLECTION_KEYS:
        assert kv_store.get(key) is not None

def test_load_keeps_stored_data(kv_store, clock):
    adapter = PersistenceAdapter(kv_store, clock=clock)
    adapter.load()
    kv_store.set(PRODUCTS_KEY, "[]")

    assert adapter.load().products == []

def test_empty_user_collection_is_reseeded(kv_store, clock):
    kv_store.set(USERS_KEY, "[]")
    users = PersistenceAdapter(kv_store, clock=clock).load().users
    assert [u.email for u in users] == ["admin@mic-services.com"]

def test_unreadable_record_falls_back_to_seed(kv_store, clock):
    kv_store.set(PRODUCTS_KEY, "{not json")
    collections = PersistenceAdapter(kv_store, clock=clock).load()
    assert len(collections.products) == 2
    assert json.loads(kv_store.get(PRODUCTS_KEY))[0]["sku"] == "LAP-001"

def test_storage_read_failure_falls_back_to_seed(clock):
    collections = PersistenceAdapter(BrokenStore(), clock=clock).load()
    assert len(collections.users) == 1
    assert len(collections.products) == 2

def test_stored_documents_use_camel_case(kv_store, clock):
    PersistenceAdapter(kv_store, clock=clock).load()
    product = json.loads(kv_store.get(PRODUCTS_KEY))[0]
    assert {"categoryId", "supplierId", "createdAt"} <= set(product)

def test_naive_stored_dates_read_as_utc(kv_store, clock):
    kv_store.set("transactions", json.dumps([
        {"id": "t", "type": "exit", "productId": "1", "quantity": 1, "date": "2026-01-02T03:04:05"}
    ]))
    transaction = PersistenceAdapter(kv_store, clock=clock).load().transactions[0]
    assert transaction.date.utcoffset().total_seconds() == 0


# Reset
def test_reset_keeps_first_user(ledger):
    first = ledger.snapshot().users[0]
    ledger.add_user(schema.UserCreate(name="Vic", email="vic@example.com", role="Viewer"))
    ledger.add_category(schema.CategoryCreate(name="Garden"))

    snapshot = ledger.reset()

    assert snapshot.users == (first,)
    assert [c.name for c in snapshot.categories] == ["Electronics", "Furniture"]
    assert ledger.snapshot() == snapshot

def test_reset_recreates_default_admin_when_no_users(kv_store, clock):
    adapter = PersistenceAdapter(kv_store, clock=clock)
    collections = adapter.reset()
    assert [u.id for u in collections.users] == ["1"]


# Export / import
def test_export_import_round_trip(ledger, clock):
    ledger.add_product(schema.ProductCreate(
        name="Desk", sku="DESK-001", category_id="2", supplier_id="1", price=80, quantity=4, threshold=1))
    clock.advance(hours=1)
    ledger.add_transaction(schema.TransactionCreate(type="exit", product_id="2", quantity=3))
    ledger.store.adapter.set_company_name("Acme")

    exported = json.loads(ledger.export_bundle().model_dump_json(by_alias=True))
    assert exported["settings"] == {"companyName": "Acme"}

    other = open_ledger(MemoryStore(), clock=clock)
    snapshot = other.import_bundle(exported)

    for key in COLLECTION_KEYS:
        assert tuple(getattr(snapshot, key)) == tuple(getattr(ledger.snapshot(), key))
    assert other.store.adapter.company_name() == "Acme"
    assert json.loads(other.export_bundle().model_dump_json(by_alias=True)) == exported

def test_import_accepts_json_text_and_empty_collections(ledger):
    payload = json.dumps({
        "products": [], "categories": [], "suppliers": [], "transactions": [],
        "users": [{"id": "9", "name": "Root", "email": "root@example.com", "role": "Admin"}],
    })
    snapshot = ledger.import_bundle(payload)
    assert snapshot.products == ()
    assert [u.id for u in snapshot.users] == ["9"]

@pytest.mark.parametrize("missing", COLLECTION_KEYS)
def test_import_rejects_missing_collection(ledger, kv_store, missing):
    bundle = json.loads(ledger.export_bundle().model_dump_json(by_alias=True))
    del bundle[missing]
    stored = {key: kv_store.get(key) for key in COLLECTION_KEYS}
    before = ledger.snapshot()

    with pytest.raises(InvalidBundleError, match=missing):
        ledger.import_bundle(bundle)

    assert ledger.snapshot() == before
    assert {key: kv_store.get(key) for key in COLLECTION_KEYS} == stored

@pytest.mark.parametrize("key", COLLECTION_KEYS)
def test_import_rejects_repeated_ids(ledger, kv_store, key):
    bundle = json.loads(ledger.export_bundle().model_dump_json(by_alias=True))
    bundle[key].append(dict(bundle[key][0]))
    if key == PRODUCTS_KEY:
        bundle[key][-1]["sku"] = "OTHER-SKU"
    stored = {k: kv_store.get(k) for k in COLLECTION_KEYS}
    before = ledger.snapshot()

    with pytest.raises(InvalidBundleError, match=f"{key} ids"):
        ledger.import_bundle(bundle)

    assert ledger.snapshot() == before
    assert {k: kv_store.get(k) for k in COLLECTION_KEYS} == stored

def test_import_rejects_repeated_sku(ledger):
    bundle = json.loads(ledger.export_bundle().model_dump_json(by_alias=True))
    bundle["products"][1]["sku"] = bundle["products"][0]["sku"]

    with pytest.raises(InvalidBundleError, match="skus LAP-001"):
        ledger.import_bundle(bundle)
    assert [p.sku for p in ledger.snapshot().products] == ["LAP-001", "SMART-001"]

def test_import_rejects_invalid_entity(ledger):
    bundle = json.loads(ledger.export_bundle().model_dump_json(by_alias=True))
    bundle["products"][0]["quantity"] = -1
    with pytest.raises(InvalidBundleError):
        ledger.import_bundle(bundle)

def test_company_name_defaults(kv_store):
    adapter = PersistenceAdapter(kv_store)
    assert adapter.company_name() == "My Company"
    adapter.set_company_name("Acme")
    assert kv_store.get(COMPANY_NAME_KEY) == "Acme"


def test_seeded_dates_follow_clock(kv_store, clock):
    products = PersistenceAdapter(kv_store, clock=clock).load().products
    assert all(p.created_at == NOW for p in products)
