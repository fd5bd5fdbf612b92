"""
Product directory models.

A product row is created once per manufacturer registration and the only
mutation ever applied to it is the one-way ``is_fake`` flag.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, String, Uuid

from verisure.db import Base

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Product(Base):
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(String(128), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    qr_hash = Column(String(255), nullable=False, unique=True)
    is_fake = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_products_created_at", "created_at"),
    )

    def __repr__(self):
        status = "fake" if self.is_fake else "authentic"
        return f"<Product {self.product_id} ({self.name}, {status})>"

    def mark_fake(self) -> bool:
        """Flag the product as counterfeit. Returns False if it already was."""
        if self.is_fake:
            return False
        self.is_fake = True
        logger.info(
            f"Product {self.product_id} flagged as fake",
            extra={'product_id': self.product_id}
        )
        return True
