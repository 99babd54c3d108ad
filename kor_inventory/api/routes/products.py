"""
Product inventory routes (read-only views used by the dashboard)
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from kor_inventory.api.deps import (
    get_alert_engine,
    get_current_viewer,
    get_inventory_repository,
)
from kor_inventory.models import User
from kor_inventory.schemas.products import LowStockProductResponse, ProductStatsResponse
from kor_inventory.services.alert_engine import AlertEngine
from kor_inventory.services.inventory_repository import InventoryRepository, effective_threshold

router = APIRouter(prefix="/products", tags=["Products"])


@router.get("/low-stock", response_model=List[LowStockProductResponse])
async def list_low_stock_products(
    threshold: Optional[int] = Query(None, ge=1, description="Override the configured default threshold"),
    engine: AlertEngine = Depends(get_alert_engine),
    inventory: InventoryRepository = Depends(get_inventory_repository),
    current_user: User = Depends(get_current_viewer),
):
    if threshold is None:
        config = await engine.config_store.get_config()
        threshold = config.default_threshold

    products = await inventory.get_low_stock_products(threshold)
    return [
        LowStockProductResponse(
            id=p.id,
            sku=p.sku,
            model=p.model,
            family=p.family,
            description=p.description,
            stock_quantity=p.stock_quantity,
            low_stock_threshold=p.low_stock_threshold,
            effective_threshold=effective_threshold(p, threshold),
            stock_status=p.stock_status,
            low_stock_notified_at=p.low_stock_notified_at,
        )
        for p in products
    ]


@router.get("/stats", response_model=ProductStatsResponse)
async def get_product_stats(
    engine: AlertEngine = Depends(get_alert_engine),
    inventory: InventoryRepository = Depends(get_inventory_repository),
    current_user: User = Depends(get_current_viewer),
):
    config = await engine.config_store.get_config()
    stats = await inventory.get_product_stats()
    low_stock = await inventory.get_low_stock_products(config.default_threshold)
    return ProductStatsResponse(
        total_count=stats.total_count,
        in_stock_count=stats.in_stock_count,
        out_of_stock_count=stats.out_of_stock_count,
        family_count=stats.family_count,
        low_stock_count=len(low_stock),
    )
