from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, Field
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class CamelModel(BaseModel):
    """Stored and exported documents use camelCase keys."""
    class Config:
        alias_generator = to_camel
        populate_by_name = True


# --- Enums ---
class TransactionType(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"

class Role(str, Enum):
    ADMIN = "Admin"
    EDITOR = "Editor"
    VIEWER = "Viewer"

# --- Session Schemas ---
class Token(BaseModel):
    access_token: str
    token_type: str

class SessionRequest(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN)

# --- Category Schemas ---
class CategoryBase(CamelModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None

class CategoryCreate(CategoryBase):
    pass

class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None

class Category(CategoryBase):
    id: str
    class Config:
        frozen = True

# --- Supplier Schemas ---
class SupplierBase(CamelModel):
    name: str = Field(..., min_length=1)
    contact: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

class SupplierCreate(SupplierBase):
    pass

class SupplierUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    contact: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

class Supplier(SupplierBase):
    id: str
    class Config:
        frozen = True

# --- Product Schemas ---
class ProductBase(CamelModel):
    name: str = Field(..., min_length=1)
    sku: str = Field(..., min_length=1)
    category_id: str
    supplier_id: str
    price: float = Field(..., ge=0)
    quantity: int = Field(0, ge=0)
    threshold: int = Field(0, ge=0)
    description: Optional[str] = None

class ProductCreate(ProductBase):
    pass

class ProductUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    sku: Optional[str] = Field(None, min_length=1)
    category_id: Optional[str] = None
    supplier_id: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=0)
    threshold: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None

class Product(ProductBase):
    id: str
    created_at: UtcDatetime
    class Config:
        frozen = True

# --- Transaction Schemas ---
class TransactionCreate(CamelModel):
    type: TransactionType
    product_id: str
    quantity: int = Field(..., gt=0)
    date: Optional[UtcDatetime] = None
    notes: Optional[str] = None

class Transaction(CamelModel):
    id: str
    type: TransactionType
    product_id: str
    quantity: int = Field(..., gt=0)
    date: UtcDatetime
    notes: Optional[str] = None
    class Config:
        frozen = True

# --- User Schemas ---
class UserBase(CamelModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=EMAIL_PATTERN)
    role: Role

class UserCreate(UserBase):
    pass

class UserUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    role: Optional[Role] = None

class User(UserBase):
    id: str
    class Config:
        frozen = True

# --- Data management ---
class BundleSettings(CamelModel):
    company_name: Optional[str] = None

class Collections(CamelModel):
    products: List[Product]
    categories: List[Category]
    suppliers: List[Supplier]
    transactions: List[Transaction]
    users: List[User]

class ExportBundle(Collections):
    settings: BundleSettings = Field(default_factory=BundleSettings)

class CompanySettings(CamelModel):
    company_name: str = Field(..., min_length=1)

# --- Report Schemas ---
class MovementCounts(BaseModel):
    entries: int = 0
    exits: int = 0

class DayMovement(BaseModel):
    day: date
    entries: int = 0
    exits: int = 0

class DailyReport(BaseModel):
    day: date
    total_transactions: int
    entries: int
    exits: int
    total_value: float
    transactions: List[Transaction]

class MonthlyStats(BaseModel):
    month: int
    entries: int = 0
    exits: int = 0
    entries_value: float = 0.0
    exits_value: float = 0.0

class AnnualTotals(BaseModel):
    total_transactions: int = 0
    total_entries: int = 0
    total_exits: int = 0
    total_value: float = 0.0

class AnnualReport(BaseModel):
    year: int
    months: List[MonthlyStats]
    totals: AnnualTotals

class DashboardSummary(BaseModel):
    total_products: int
    total_stock_value: float
    low_stock: List[Product]
    recent_transactions: List[Transaction]
    period_movements: MovementCounts
    category_distribution: Dict[str, int]
    daily_movements: List[DayMovement]
