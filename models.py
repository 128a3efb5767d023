from sqlalchemy import Column, String, Text
from database import Base

class StoredRecord(Base):
    """One key of the dashboard's key-value store; value is a JSON document."""
    __tablename__ = "stored_records"
    key = Column(String, primary_key=True, index=True)
    value = Column(Text, nullable=False)
