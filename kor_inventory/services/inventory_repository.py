"""
Inventory Repository

Product queries used by the alert engine and the dashboard:
- low-stock detection (per-product threshold override or configured default)
- aggregate stock statistics
- last-notified timestamps for low-stock deduplication
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, or_, select, update

from kor_inventory.core.config import settings
from kor_inventory.core.database import get_db_session
from kor_inventory.core.exceptions import InventoryError
from kor_inventory.models import Product, StockStatus, UNAVAILABLE_STATUSES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductStats:
    total_count: int
    in_stock_count: int
    out_of_stock_count: int
    family_count: int = 0


def effective_threshold(product, default_threshold: int) -> int:
    """Per-product override wins over the global default."""
    if product.low_stock_threshold is not None:
        return product.low_stock_threshold
    return default_threshold


def is_low_stock(product, default_threshold: int) -> bool:
    """
    A product is low stock when its quantity is under its effective threshold
    or its status marks it unavailable.
    """
    if product.stock_status in UNAVAILABLE_STATUSES:
        return True
    return (product.stock_quantity or 0) < effective_threshold(product, default_threshold)


def low_stock_condition(default_threshold: int):
    """SQL equivalent of is_low_stock()."""
    return or_(
        Product.stock_quantity < func.coalesce(Product.low_stock_threshold, default_threshold),
        Product.stock_status.in_([s.value for s in UNAVAILABLE_STATUSES]),
    )


class InventoryRepository:
    """Product reads/writes for the alert engine. Each call uses its own session."""

    def __init__(self, session_factory=get_db_session):
        self._session_factory = session_factory

    async def get_low_stock_products(self, default_threshold: Optional[int] = None) -> List[Product]:
        """All products matching the low-stock predicate, most critical first."""
        threshold = default_threshold or settings.ALERT_DEFAULT_THRESHOLD

        async with self._session_factory() as db:
            result = await db.execute(
                select(Product)
                .where(low_stock_condition(threshold))
                .order_by(Product.stock_quantity.asc(), Product.sku.asc())
            )
            return list(result.scalars().all())

    async def get_product_stats(self) -> ProductStats:
        async with self._session_factory() as db:
            total = await db.execute(select(func.count(Product.id)))
            in_stock = await db.execute(
                select(func.count(Product.id)).where(
                    Product.stock_status == StockStatus.AVAILABLE.value
                )
            )
            families = await db.execute(
                select(func.count(func.distinct(Product.family))).where(Product.family.isnot(None))
            )

            total_count = total.scalar() or 0
            in_stock_count = in_stock.scalar() or 0

            return ProductStats(
                total_count=total_count,
                in_stock_count=in_stock_count,
                out_of_stock_count=total_count - in_stock_count,
                family_count=families.scalar() or 0,
            )

    async def mark_notified(self, product_id: int, timestamp: datetime) -> None:
        """Record that a low-stock alert for this product was delivered."""
        async with self._session_factory() as db:
            result = await db.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(low_stock_notified_at=timestamp)
            )
            if result.rowcount == 0:
                raise InventoryError(
                    f"Product {product_id} not found",
                    code="PRODUCT_NOT_FOUND",
                    details={"product_id": product_id},
                )
