"""
SQLAlchemy base and column mixins for syncable models.
"""

from sqlalchemy import Column, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class AttioRecordMixin:
    """Adds the column holding the Attio record ID."""
    attio_record_id = Column(String(100), nullable=True, index=True)


class AttioDealMixin:
    """Adds the column holding the Attio deal record ID."""
    attio_deal_id = Column(String(100), nullable=True, index=True)
