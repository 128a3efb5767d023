import os
class Settings:
    PROJECT_NAME: str = "Stock Management Dashboard"
    VERSION: str = "1.0.0"
    SECRET_KEY: str = os.getenv("SECRET_KEY")
    ALGO: str = "HS256"
    TOKEN_EXPIRE_MIN: int = int(os.getenv("TOKEN_EXPIRE_MIN", 480))
    EMAIL_SESSIONS_ENABLED: bool = os.getenv("EMAIL_SESSIONS_ENABLED", "True").lower() == "true"
    DB_URL: str = os.getenv("STOCK_DB_URL", "sqlite:///./stock_dashboard.db")
    SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    DEFAULT_COMPANY_NAME: str = "My Company"
    RECENT_TRANSACTIONS_LIMIT: int = 5
    PERIOD_DAYS: int = 7

settings = Settings()
