"""
SQLAlchemy 2.0 async DeclarativeBase for Lotline.

All models inherit from this Base. Portable column types live here so the
same models run on PostgreSQL (production) and SQLite (tests).
"""

from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

# BIGSERIAL on PostgreSQL; SQLite only autoincrements INTEGER PRIMARY KEY.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

JSONPayload = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all Lotline database models."""
    pass
