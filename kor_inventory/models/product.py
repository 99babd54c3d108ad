"""
Product model

Catalog entry for industrial equipment. Only the inventory fields are used
by the alert engine; the rest is catalog metadata.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Text, CheckConstraint, Index
from sqlalchemy.sql import func

from kor_inventory.core.database import Base


class StockStatus(str, enum.Enum):
    """Commercial availability shown in the catalog."""
    AVAILABLE = "available"
    OUT_OF_STOCK = "out_of_stock"
    INQUIRE = "inquire"  # Price/availability on request


# Statuses that count as low stock regardless of quantity
UNAVAILABLE_STATUSES = (StockStatus.OUT_OF_STOCK, StockStatus.INQUIRE)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(64), unique=True, index=True, nullable=False)
    model = Column(String(255))
    brand = Column(String(255))
    family = Column(String(255), index=True)
    description = Column(Text)

    # Inventory
    stock_quantity = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=True)  # NULL = use alert config default
    low_stock_notified_at = Column(DateTime(timezone=True), nullable=True)
    stock_status = Column(String(20), nullable=False, default=StockStatus.OUT_OF_STOCK.value)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="chk_product_stock_quantity"),
        CheckConstraint(
            "low_stock_threshold IS NULL OR low_stock_threshold >= 1",
            name="chk_product_low_stock_threshold",
        ),
        CheckConstraint(
            "stock_status IN ('available', 'out_of_stock', 'inquire')",
            name="chk_product_stock_status",
        ),
        Index("ix_products_stock_status", "stock_status"),
    )

    def __repr__(self):
        return f"<Product {self.id}: {self.sku} qty={self.stock_quantity}>"
