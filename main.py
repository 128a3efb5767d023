import io
from functools import lru_cache
from config import settings
from sqlalchemy import text
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from datetime import datetime, timedelta, timezone
import schema, authentication, database, aggregation
from ledger import LedgerEngine, open_ledger
from logging_config import configure_logging
from permissions import Action, user_has_permission
from persistence import InvalidBundleError
from storage import SqlKeyValueStore
from fastapi.responses import StreamingResponse
from fastapi import Body, FastAPI, Depends, HTTPException, status

configure_logging(settings.LOG_LEVEL)
database.create_tables(database.db_engine)

app = FastAPI(title= settings.PROJECT_NAME, version = settings.VERSION)


@lru_cache(maxsize=1)
def obtain_ledger() -> LedgerEngine:
    return open_ledger(SqlKeyValueStore(database.LocalSession))


def require_permission(action: Action):
    def check(
        session: authentication.Session = Depends(authentication.verify_user_session),
        ledger: LedgerEngine = Depends(obtain_ledger),
    ) -> schema.User:
        user = session.resolve(ledger.snapshot())
        if user is None:
            raise HTTPException(status_code=401, detail="Session user no longer exists")
        if not user_has_permission(user, action):
            raise HTTPException(status_code=403, detail=f"Not allowed to {action.value}")
        return user
    return check


def _not_found(kind: str):
    return HTTPException(status_code=404, detail=f"{kind} not found")

# basic info
@app.get("/", tags=["System"])
def basic_info(ledger: LedgerEngine = Depends(obtain_ledger)):
    basic_details = {
        "app_name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "company_name": ledger.store.adapter.company_name(),
    }
    return basic_details

# app health
@app.get("/health", tags=["System"])
def health_status(db: Session = Depends(database.obtain_db_session)):
    health_report = {
        "app_name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "server_time": datetime.now(timezone.utc).isoformat(),
        "services": {
            "api": "online",
            "storage": "unknown"
        }
    }

    try:
        db.execute(text("SELECT 1"))
        health_report["services"]["storage"] = "online"
        return health_report
    except Exception as e:
        health_report["services"]["storage"] = "offline"
        health_report["error_details"] = str(e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=health_report
        )

# session
@app.post("/session", response_model=schema.Token, tags=["Session"])
def open_session(request: schema.SessionRequest, ledger: LedgerEngine = Depends(obtain_ledger)):
    """Issue a session for any known email, with no password.

    This stands in for an external session provider during local use and
    grants that user's role, Admin included. Set EMAIL_SESSIONS_ENABLED=false
    on any shared deployment.
    """
    if not settings.EMAIL_SESSIONS_ENABLED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Email sessions are disabled")
    user =ledger.snapshot().user_by_email(request.email)
    if not user:
        raise HTTPException(status_code=401, detail="Unknown user")
    access_token = authentication.issue_session_token(user)
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/session/me", response_model=schema.User, tags=["Session"])
def current_user(
    session: authentication.Session = Depends(authentication.verify_user_session),
    ledger: LedgerEngine = Depends(obtain_ledger),
):
    user = session.resolve(ledger.snapshot())
    if not user:
        raise HTTPException(status_code=401, detail="Session user no longer exists")
    return user


# products
@app.get("/products/", response_model=List[schema.Product], tags=["Products"])
def read_products(skip: int = 0, limit: int = 100, search: Optional[str] = None,
                  ledger: LedgerEngine = Depends(obtain_ledger),
                  user: schema.User = Depends(require_permission(Action.VIEW_PRODUCTS))):
    products = list(ledger.snapshot().products)
    if search:
        needle = search.lower()
        products = [p for p in products if needle in p.name.lower() or needle in p.sku.lower()]
    return products[skip:skip + limit]

@app.get("/products/low-stock", response_model=List[schema.Product], tags=["Products"])
def read_low_stock(ledger: LedgerEngine = Depends(obtain_ledger),
                   user: schema.User = Depends(require_permission(Action.VIEW_PRODUCTS))):
    return aggregation.low_stock_products(ledger.snapshot())

@app.get("/products/by-category", response_model=Dict[str, List[schema.Product]], tags=["Products"])
def read_products_by_category(ledger: LedgerEngine = Depends(obtain_ledger),
                              user: schema.User = Depends(require_permission(Action.VIEW_PRODUCTS))):
    return aggregation.products_by_category(ledger.snapshot())

@app.post("/products/", response_model=schema.Product, tags=["Products"])
def create_product(product: schema.ProductCreate, ledger: LedgerEngine = Depends(obtain_ledger),
                   user: schema.User = Depends(require_permission(Action.MANAGE_PRODUCTS))):
    created = ledger.add_product(product)
    if created is None:
        raise HTTPException(status_code=409, detail="SKU already in use")
    return created

@app.put("/products/{product_id}", response_model=schema.Product, tags=["Products"])
def update_product(product_id: str, product_update: schema.ProductUpdate,
                   ledger: LedgerEngine = Depends(obtain_ledger),
                   user: schema.User = Depends(require_permission(Action.MANAGE_PRODUCTS))):
    if ledger.snapshot().product(product_id) is None:
        raise _not_found("Product")
    updated = ledger.update_product(product_id, product_update)
    if updated is None:
        raise HTTPException(status_code=409, detail="SKU already in use")
    return updated

@app.delete("/products/{product_id}", tags=["Products"])
def delete_product(product_id: str, ledger: LedgerEngine = Depends(obtain_ledger),
                   user: schema.User = Depends(require_permission(Action.MANAGE_PRODUCTS))):
    if not ledger.delete_product(product_id):
        raise _not_found("Product")
    return {"detail": "Product deleted"}


# categories
@app.get("/categories/", response_model=List[schema.Category], tags=["Categories"])
def read_categories(ledger: LedgerEngine = Depends(obtain_ledger),
                    user: schema.User = Depends(require_permission(Action.VIEW_CATEGORIES))):
    return list(ledger.snapshot().categories)

@app.post("/categories/", response_model=schema.Category, tags=["Categories"])
def create_category(category: schema.CategoryCreate, ledger: LedgerEngine = Depends(obtain_ledger),
                    user: schema.User = Depends(require_permission(Action.MANAGE_CATEGORIES))):
    return ledger.add_category(category)

@app.put("/categories/{category_id}", response_model=schema.Category, tags=["Categories"])
def update_category(category_id: str, category: schema.CategoryUpdate,
                    ledger: LedgerEngine = Depends(obtain_ledger),
                    user: schema.User = Depends(require_permission(Action.MANAGE_CATEGORIES))):
    updated = ledger.update_category(category_id, category)
    if updated is None:
        raise _not_found("Category")
    return updated

@app.delete("/categories/{category_id}", tags=["Categories"])
def delete_category(category_id: str, ledger: LedgerEngine = Depends(obtain_ledger),
                    user: schema.User = Depends(require_permission(Action.MANAGE_CATEGORIES))):
    if ledger.snapshot().category(category_id) is None:
        raise _not_found("Category")
    if not ledger.delete_category(category_id):
        raise HTTPException(status_code=409, detail="Category is used by products")
    return {"detail": "Category deleted"}


# suppliers
@app.get("/suppliers/", response_model=List[schema.Supplier], tags=["Suppliers"])
def read_suppliers(ledger: LedgerEngine = Depends(obtain_ledger),
                   user: schema.User = Depends(require_permission(Action.VIEW_SUPPLIERS))):
    return list(ledger.snapshot().suppliers)

@app.post("/suppliers/", response_model=schema.Supplier, tags=["Suppliers"])
def create_supplier(supplier: schema.SupplierCreate, ledger: LedgerEngine = Depends(obtain_ledger),
                    user: schema.User = Depends(require_permission(Action.MANAGE_SUPPLIERS))):
    return ledger.add_supplier(supplier)

@app.put("/suppliers/{supplier_id}", response_model=schema.Supplier, tags=["Suppliers"])
def update_supplier(supplier_id: str, supplier: schema.SupplierUpdate,
                    ledger: LedgerEngine = Depends(obtain_ledger),
                    user: schema.User = Depends(require_permission(Action.MANAGE_SUPPLIERS))):
    updated = ledger.update_supplier(supplier_id, supplier)
    if updated is None:
        raise _not_found("Supplier")
    return updated

@app.delete("/suppliers/{supplier_id}", tags=["Suppliers"])
def delete_supplier(supplier_id: str, ledger: LedgerEngine = Depends(obtain_ledger),
                    user: schema.User = Depends(require_permission(Action.MANAGE_SUPPLIERS))):
    if ledger.snapshot().supplier(supplier_id) is None:
        raise _not_found("Supplier")
    if not ledger.delete_supplier(supplier_id):
        raise HTTPException(status_code=409, detail="Supplier is used by products")
    return {"detail": "Supplier deleted"}


# transactions
@app.get("/transactions/", response_model=List[schema.Transaction], tags=["Transactions"])
def read_transactions(search: Optional[str] = None, type: Optional[schema.TransactionType] = None,
                      days: Optional[int] = None, ascending: bool = False,
                      ledger: LedgerEngine = Depends(obtain_ledger),
                      user: schema.User = Depends(require_permission(Action.VIEW_TRANSACTIONS))):
    since = datetime.now(timezone.utc) - timedelta(days=days) if days is not None else None
    return aggregation.filter_transactions(ledger.snapshot(), search=search, type=type,
                                           since=since, ascending=ascending)

@app.post("/transactions/", response_model=schema.Transaction, tags=["Transactions"])
def create_transaction(transaction: schema.TransactionCreate, ledger: LedgerEngine = Depends(obtain_ledger),
                       user: schema.User = Depends(require_permission(Action.ADD_TRANSACTIONS))):
    return ledger.add_transaction(transaction)


# users
@app.get("/users/", response_model=List[schema.User], tags=["Users"])
def read_users(ledger: LedgerEngine = Depends(obtain_ledger),
               user: schema.User = Depends(require_permission(Action.VIEW_USERS))):
    return list(ledger.snapshot().users)

@app.post("/users/", response_model=schema.User, tags=["Users"])
def create_user(new_user: schema.UserCreate, ledger: LedgerEngine = Depends(obtain_ledger),
                user: schema.User = Depends(require_permission(Action.MANAGE_USERS))):
    return ledger.add_user(new_user)

@app.put("/users/{user_id}", response_model=schema.User, tags=["Users"])
def update_user(user_id: str, user_update: schema.UserUpdate, ledger: LedgerEngine = Depends(obtain_ledger),
                user: schema.User = Depends(require_permission(Action.MANAGE_USERS))):
    updated = ledger.update_user(user_id, user_update)
    if updated is None:
        raise _not_found("User")
    return updated

@app.delete("/users/{user_id}", tags=["Users"])
def delete_user(user_id: str, ledger: LedgerEngine = Depends(obtain_ledger),
                user: schema.User = Depends(require_permission(Action.MANAGE_USERS))):
    if ledger.snapshot().user(user_id) is None:
        raise _not_found("User")
    if not ledger.delete_user(user_id):
        raise HTTPException(status_code=409, detail="Cannot delete the last user")
    return {"detail": "User deleted"}


# dashboard and reports
@app.get("/dashboard", response_model=schema.DashboardSummary, tags=["Reports"])
def dashboard(ledger: LedgerEngine = Depends(obtain_ledger),
              user: schema.User = Depends(require_permission(Action.VIEW_PRODUCTS))):
    return aggregation.dashboard_summary(
        ledger.snapshot(),
        recent_limit=settings.RECENT_TRANSACTIONS_LIMIT,
        period_days=settings.PERIOD_DAYS,
    )

@app.get("/reports/daily", response_model=schema.DailyReport, tags=["Reports"])
def daily_report(ledger: LedgerEngine = Depends(obtain_ledger),
                 user: schema.User = Depends(require_permission(Action.VIEW_REPORTS))):
    return aggregation.daily_report(ledger.snapshot())

@app.get("/reports/annual/{year}", response_model=schema.AnnualReport, tags=["Reports"])
def annual_report(year: int, ledger: LedgerEngine = Depends(obtain_ledger),
                  user: schema.User = Depends(require_permission(Action.VIEW_REPORTS))):
    return aggregation.annual_report(ledger.snapshot(), year)

# app generate report
@app.get("/report/inventory", tags=["Reports"])
def get_inventory_report(ledger: LedgerEngine = Depends(obtain_ledger),
                         user: schema.User = Depends(require_permission(Action.VIEW_REPORTS))):
    df = aggregation.inventory_frame(ledger.snapshot())

    stream = io.StringIO()
    df.to_csv(stream, index=False)
    response = StreamingResponse(iter([stream.getvalue()]), media_type="text/csv")
    response.headers["Content-Disposition"] = "attachment; filename=inventory_report.csv"
    return response


# data management
@app.get("/data/export", tags=["Data"])
def export_data(ledger: LedgerEngine = Depends(obtain_ledger),
                user: schema.User = Depends(require_permission(Action.MANAGE_SETTINGS))):
    bundle = ledger.export_bundle()
    filename = f"stock-export-{datetime.now(timezone.utc).date().isoformat()}.json"
    return StreamingResponse(
        iter([bundle.model_dump_json(by_alias=True, indent=2)]),
        media_type="application/json",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )

@app.post("/data/import", tags=["Data"])
def import_data(payload: Any = Body(...), ledger: LedgerEngine = Depends(obtain_ledger),
                user: schema.User = Depends(require_permission(Action.MANAGE_SETTINGS))):
    try:
        snapshot = ledger.import_bundle(payload)
    except InvalidBundleError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"detail": "Data imported", "counts": {
        "products": len(snapshot.products),
        "categories": len(snapshot.categories),
        "suppliers": len(snapshot.suppliers),
        "transactions": len(snapshot.transactions),
        "users": len(snapshot.users),
    }}

@app.post("/data/reset", tags=["Data"])
def reset_data(ledger: LedgerEngine = Depends(obtain_ledger),
               user: schema.User = Depends(require_permission(Action.MANAGE_SETTINGS))):
    snapshot = ledger.reset()
    return {"detail": "Data reset", "kept_user": snapshot.users[0].id}


# settings
@app.get("/settings", response_model=schema.CompanySettings, tags=["Settings"])
def read_settings(ledger: LedgerEngine = Depends(obtain_ledger),
                  session: authentication.Session = Depends(authentication.verify_user_session)):
    return schema.CompanySettings(company_name=ledger.store.adapter.company_name())

@app.put("/settings", response_model=schema.CompanySettings, tags=["Settings"])
def update_settings(company: schema.CompanySettings, ledger: LedgerEngine = Depends(obtain_ledger),
                    user: schema.User = Depends(require_permission(Action.MANAGE_SETTINGS))):
    ledger.store.adapter.set_company_name(company.company_name)
    return company
