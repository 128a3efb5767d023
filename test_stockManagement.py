import io

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from main import app, obtain_ledger
from database import Base, build_engine, build_session_factory, create_tables, obtain_db_session
from config import settings
from ledger import open_ledger
from storage import SqlKeyValueStore

engine = build_engine(settings.SQLALCHEMY_TEST_DATABASE_URL)

TestingSessionLocal = build_session_factory(engine)

def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()

client = TestClient(app)


@pytest.fixture(autouse=True)
def fresh_storage():
    Base.metadata.drop_all(bind=engine)
    create_tables(engine)
    test_ledger = open_ledger(SqlKeyValueStore(TestingSessionLocal))
    app.dependency_overrides[obtain_db_session] = override_get_db
    app.dependency_overrides[obtain_ledger] = lambda: test_ledger
    yield test_ledger
    app.dependency_overrides.clear()


def login(email):
    response = client.post("/session", json={"email": email})
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}

@pytest.fixture
def auth_header():
    return login("admin@mic-services.com")

def add_user(auth_header, role):
    email = f"{role.lower()}@example.com"
    response = client.post("/users/", json={"name": role, "email": email, "role": role}, headers=auth_header)
    assert response.status_code == 200
    return login(email)

PRODUCT = {
    "name": "Office Desk",
    "sku": "DESK-001",
    "categoryId": "2",
    "supplierId": "1",
    "description": "A sleek, durable desk designed for efficient, professional workspaces.",
    "price": 8000.0,
    "quantity": 15,
    "threshold": 5,
}


# Root test
def test_root_response():
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["app_name"] == "Stock Management Dashboard"
    assert response.json()["company_name"] == "My Company"

# Health test
def test_health_response():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["services"]["storage"] == "online"

# Sessions
def test_session_for_known_user():
    response = client.post("/session", json={"email": "ADMIN@mic-services.com"})
    assert response.status_code == 200
    assert "access_token" in response.json()

    me = client.get("/session/me", headers={"Authorization": f"Bearer {response.json()['access_token']}"})
    assert me.json()["role"] == "Admin"

def test_session_for_unknown_user():
    assert client.post("/session", json={"email": "nobody@example.com"}).status_code == 401

def test_email_sessions_can_be_disabled(monkeypatch):
    monkeypatch.setattr(settings, "EMAIL_SESSIONS_ENABLED", False)
    response = client.post("/session", json={"email": "admin@mic-services.com"})
    assert response.status_code == 403
    assert "access_token" not in response.json()

def test_requests_without_token_are_rejected():
    assert client.get("/products/").status_code == 401
    assert client.get("/products/", headers={"Authorization": "Bearer junk"}).status_code == 401

# CRUD Operations
def test_product_crud_with_ledger(auth_header):
    # CREATE
    response = client.post("/products/", json=PRODUCT, headers=auth_header)
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Office Desk"
    assert data["quantity"] == 15
    product_id = data["id"]

    transactions = client.get("/transactions/", headers=auth_header).json()
    assert transactions[0]["productId"] == product_id
    assert transactions[0]["type"] == "entry"
    assert transactions[0]["quantity"] == 15

    # READ
    products = client.get("/products/", params={"search": "desk"}, headers=auth_header).json()
    assert [p["id"] for p in products] == [product_id]

    # UPDATE
    update_response = client.put(f"/products/{product_id}", json={"quantity": 9, "price": 9000.0}, headers=auth_header)
    assert update_response.status_code == 200
    assert update_response.json()["quantity"] == 9
    assert update_response.json()["name"] == "Office Desk"
    exits = client.get("/transactions/", params={"type": "exit", "search": "office"}, headers=auth_header).json()
    assert [t["quantity"] for t in exits] == [6]

    # DELETE
    assert client.delete(f"/products/{product_id}", headers=auth_header).status_code == 200
    assert client.delete(f"/products/{product_id}", headers=auth_header).status_code == 404
    assert client.put(f"/products/{product_id}", json={"quantity": 1}, headers=auth_header).status_code == 404

def test_duplicate_sku_conflicts(auth_header):
    assert client.post("/products/", json=PRODUCT, headers=auth_header).status_code == 200
    assert client.post("/products/", json=PRODUCT, headers=auth_header).status_code == 409

def test_invalid_product_is_rejected(auth_header):
    bad = dict(PRODUCT, quantity=-3)
    assert client.post("/products/", json=bad, headers=auth_header).status_code == 422

# Stock movements
def test_exit_clamps_stock_at_zero(auth_header):
    product_id = client.post("/products/", json=PRODUCT, headers=auth_header).json()["id"]

    response = client.post("/transactions/", json={"type": "exit", "productId": product_id, "quantity": 20},
                           headers=auth_header)
    assert response.status_code == 200

    low = client.get("/products/low-stock", headers=auth_header).json()
    desk = next(p for p in low if p["id"] == product_id)
    assert desk["quantity"] == 0

# Referential guards
def test_category_and_supplier_guards(auth_header):
    assert client.delete("/categories/1", headers=auth_header).status_code == 409
    assert client.delete("/suppliers/2", headers=auth_header).status_code == 409
    assert client.delete("/categories/missing", headers=auth_header).status_code == 404

    category = client.post("/categories/", json={"name": "Garden"}, headers=auth_header).json()
    renamed = client.put(f"/categories/{category['id']}", json={"name": "Outdoor"}, headers=auth_header)
    assert renamed.json()["name"] == "Outdoor"
    assert client.delete(f"/categories/{category['id']}", headers=auth_header).status_code == 200

    supplier = client.post("/suppliers/", json={"name": "AGSCorp", "email": "sales@agscorp.com"}, headers=auth_header).json()
    assert client.delete(f"/suppliers/{supplier['id']}", headers=auth_header).status_code == 200

def test_last_user_cannot_be_deleted(auth_header):
    users = client.get("/users/", headers=auth_header).json()
    assert len(users) == 1
    assert client.delete(f"/users/{users[0]['id']}", headers=auth_header).status_code == 409

# Permissions
def test_viewer_permissions(auth_header):
    viewer = add_user(auth_header, "Viewer")
    assert client.get("/products/", headers=viewer).status_code == 200
    assert client.get("/transactions/", headers=viewer).status_code == 200
    response = client.post("/transactions/", json={"type": "entry", "productId": "1", "quantity": 1}, headers=viewer)
    assert response.status_code == 403
    assert client.get("/suppliers/", headers=viewer).status_code == 403

def test_editor_permissions(auth_header):
    editor = add_user(auth_header, "Editor")
    response = client.post("/transactions/", json={"type": "entry", "productId": "1", "quantity": 1}, headers=editor)
    assert response.status_code == 200
    assert client.post("/products/", json=PRODUCT, headers=editor).status_code == 403
    assert client.get("/users/", headers=editor).status_code == 403
    assert client.post("/data/reset", headers=editor).status_code == 403

def test_deleted_user_session_is_rejected(auth_header):
    viewer = add_user(auth_header, "Viewer")
    viewer_id = client.get("/session/me", headers=viewer).json()["id"]
    assert client.delete(f"/users/{viewer_id}", headers=auth_header).status_code == 200
    assert client.get("/products/", headers=viewer).status_code == 401

# Reports
def test_dashboard_and_reports(auth_header):
    client.post("/products/", json=PRODUCT, headers=auth_header)

    dashboard = client.get("/dashboard", headers=auth_header).json()
    assert dashboard["total_products"] == 3
    assert dashboard["total_stock_value"] == 590000 * 15 + 325000 * 25 + 8000 * 15
    assert len(dashboard["daily_movements"]) == settings.PERIOD_DAYS

    daily = client.get("/reports/daily", headers=auth_header).json()
    assert daily["entries"] == 1
    assert daily["total_value"] == 8000 * 15

    annual = client.get("/reports/annual/2020", headers=auth_header).json()
    assert annual["totals"]["total_transactions"] == 0
    assert len(annual["months"]) == 12

def test_inventory_report_csv(auth_header):
    response = client.get("/report/inventory", headers=auth_header)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    df = pd.read_csv(io.StringIO(response.text))
    assert list(df["sku"]) == ["LAP-001", "SMART-001"]
    assert df["total_value"].sum() == 590000 * 15 + 325000 * 25

# Data management
def test_export_import_and_settings(auth_header):
    assert client.put("/settings", json={"companyName": "Acme"}, headers=auth_header).status_code == 200
    exported = client.get("/data/export", headers=auth_header).json()
    assert exported["settings"]["companyName"] == "Acme"

    client.post("/products/", json=PRODUCT, headers=auth_header)
    response = client.post("/data/import", json=exported, headers=auth_header)
    assert response.status_code == 200
    assert response.json()["counts"]["products"] == 2
    assert client.get("/data/export", headers=auth_header).json() == exported

    broken = {key: value for key, value in exported.items() if key != "users"}
    response = client.post("/data/import", json=broken, headers=auth_header)
    assert response.status_code == 400
    assert "users" in response.json()["detail"]

def test_reset_keeps_current_admin(auth_header):
    client.post("/categories/", json={"name": "Garden"}, headers=auth_header)
    add_user(auth_header, "Viewer")
    response = client.post("/data/reset", headers=auth_header)
    assert response.status_code == 200
    assert response.json()["kept_user"] == "1"
    assert len(client.get("/users/", headers=auth_header).json()) == 1
    assert len(client.get("/categories/", headers=auth_header).json()) == 2
