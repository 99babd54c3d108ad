"""
Alert Email Templates

Jinja2 rendering for low-stock alerts and periodic digests.
Templates live in kor_inventory/templates/email.
"""
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from kor_inventory.core.config import settings
from kor_inventory.models import SummaryFrequency

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
)


@dataclass(frozen=True)
class LowStockLine:
    """One product row in an alert email."""
    sku: str
    model: str
    description: str
    stock_quantity: int
    threshold: Optional[int]

    @classmethod
    def from_product(cls, product, default_threshold: int) -> "LowStockLine":
        threshold = product.low_stock_threshold
        return cls(
            sku=product.sku,
            model=product.model or "",
            description=product.description or "",
            stock_quantity=product.stock_quantity or 0,
            threshold=threshold if threshold is not None else default_threshold,
        )


@dataclass(frozen=True)
class DigestStats:
    total_count: int
    out_of_stock_count: int
    low_stock_count: int


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    summary: str


def low_stock_subject(count: int) -> str:
    return f"Alert: {count} product{'s' if count != 1 else ''} with low stock"


def digest_title(frequency: SummaryFrequency) -> str:
    return "Daily Summary" if frequency == SummaryFrequency.DAILY else "Weekly Summary"


def render_low_stock_email(products: Sequence[LowStockLine], now: datetime) -> RenderedEmail:
    count = len(products)
    html = _env.get_template("low_stock.html").render(
        title="Low Stock Alert",
        header_color="#dc2626",
        app_name=settings.APP_NAME,
        year=now.year,
        products=products,
    )
    return RenderedEmail(
        subject=low_stock_subject(count),
        html=html,
        summary=f"{count} products with low or critical stock: " + ", ".join(p.sku for p in products),
    )


def render_digest_email(
    products: Sequence[LowStockLine],
    frequency: SummaryFrequency,
    stats: DigestStats,
    now: datetime,
    max_products: Optional[int] = None,
) -> RenderedEmail:
    """Digest lists at most `max_products` rows plus an "and N more" line."""
    limit = settings.ALERT_DIGEST_MAX_PRODUCTS if max_products is None else max_products
    shown: List[LowStockLine] = list(products[:limit])
    title = digest_title(frequency)

    html = _env.get_template("digest.html").render(
        title=f"Inventory {title}",
        header_color="#1d4ed8",
        app_name=settings.APP_NAME,
        year=now.year,
        generated_on=now.strftime("%A, %d %B %Y"),
        period="today" if frequency == SummaryFrequency.DAILY else "this week",
        stats=stats,
        low_stock_count=stats.low_stock_count,
        products=shown,
        remaining=max(len(products) - len(shown), 0),
    )
    return RenderedEmail(
        subject=f"Inventory {title} - {settings.APP_NAME}",
        html=html,
        summary=f"Summary with {stats.low_stock_count} products with low stock",
    )
