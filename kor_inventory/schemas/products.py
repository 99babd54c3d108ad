from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class LowStockProductResponse(BaseModel):
    id: int
    sku: str
    model: Optional[str] = None
    family: Optional[str] = None
    description: Optional[str] = None
    stock_quantity: int
    low_stock_threshold: Optional[int] = None
    effective_threshold: int
    stock_status: str
    low_stock_notified_at: Optional[datetime] = None


class ProductStatsResponse(BaseModel):
    total_count: int
    in_stock_count: int
    out_of_stock_count: int
    family_count: int
    low_stock_count: int
