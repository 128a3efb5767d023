from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from config import settings

Base = declarative_base()

def build_engine(url: str):
    """SQLite engine for the key-value records; in-memory URLs share one connection."""
    options = {"connect_args": {"check_same_thread": False}, "echo": False}
    if url.endswith(":memory:"):
        options["poolclass"] = StaticPool
    return create_engine(url, **options)

def build_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)

def create_tables(engine):
    import models  # noqa: F401  registers StoredRecord on Base
    Base.metadata.create_all(bind=engine)

db_engine = build_engine(settings.DB_URL)

LocalSession = build_session_factory(db_engine)

def obtain_db_session():
    dbSession = LocalSession()
    try:
        yield dbSession
    finally:
        dbSession.close()
