"""
Product directory: the authoritative store for product records.

Every operation opens its own session from the injected factory, so the
directory can be shared by concurrent requests. Identifier and token lookups
trim whitespace and then match exactly.
"""

import logging
from typing import List, Optional, Tuple
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from verisure.errors import DirectoryError, DuplicateProductError
from verisure.models import Product

logger = logging.getLogger(__name__)


class ProductDirectory:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def insert(self, product_id: str, name: str, qr_hash: str) -> Product:
        product = Product(product_id=product_id, name=name, qr_hash=qr_hash, is_fake=False)
        async with self._session_maker() as session:
            try:
                session.add(product)
                await session.commit()
                await session.refresh(product)
            except IntegrityError as e:
                await session.rollback()
                logger.warning(f"Duplicate product registration: {product_id}")
                raise DuplicateProductError(product_id) from e
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Error adding product {product_id}: {e}")
                raise DirectoryError(f"Failed to add product '{product_id}'") from e

        logger.info(
            f"Product added to directory: {product_id}",
            extra={'product_id': product_id, 'qr_hash': qr_hash}
        )
        return product

    async def mark_fake(self, product_id: str) -> Optional[Product]:
        """Set ``is_fake`` on the matching row. Already-flagged rows are left as they are."""
        key = product_id.strip()
        async with self._session_maker() as session:
            try:
                result = await session.execute(select(Product).where(Product.product_id == key))
                product = result.scalar_one_or_none()
                if product is None:
                    return None
                if product.mark_fake():
                    await session.commit()
                    await session.refresh(product)
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Error marking product {key} as fake: {e}")
                raise DirectoryError(f"Failed to flag product '{key}'") from e
        return product

    async def list_all(self) -> List[Product]:
        async with self._session_maker() as session:
            try:
                result = await session.execute(select(Product).order_by(Product.created_at.desc()))
                return list(result.scalars().all())
            except SQLAlchemyError as e:
                logger.error(f"Error fetching products: {e}")
                raise DirectoryError("Failed to fetch products") from e

    async def get_by_identifier(self, product_id: str) -> Optional[Product]:
        return await self._get_one(Product.product_id, product_id.strip())

    async def get_by_qr_hash(self, qr_hash: str) -> Optional[Product]:
        return await self._get_one(Product.qr_hash, qr_hash.strip())

    async def _get_one(self, column, value: str) -> Optional[Product]:
        if not value:
            return None
        async with self._session_maker() as session:
            try:
                result = await session.execute(select(Product).where(column == value).limit(1))
                return result.scalar_one_or_none()
            except SQLAlchemyError as e:
                logger.error(f"Error looking up product by {column.key}={value!r}: {e}")
                raise DirectoryError("Product lookup failed") from e

    async def flag_projection(self) -> List[Tuple[bool, datetime]]:
        """``(is_fake, created_at)`` for every row, for the analytics aggregates."""
        async with self._session_maker() as session:
            try:
                result = await session.execute(select(Product.is_fake, Product.created_at))
                return [(row.is_fake, row.created_at) for row in result]
            except SQLAlchemyError as e:
                logger.error(f"Error fetching analytics projection: {e}")
                raise DirectoryError("Failed to fetch analytics data") from e
