"""
SQLAlchemy ORM models for database tables.

For Pydantic request/response schemas, see schemas.py.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

# Base class for SQLAlchemy models
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Compliment(Base):
    """
    An anonymous message addressed to a recipient code.

    Table: compliments
    Rows are never updated after insert.
    """
    __tablename__ = "compliments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_code = Column(String, nullable=False, index=True)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
