import logging
from datetime import date, datetime, time
from typing import Dict, Optional

from sqlalchemy.orm import Session

from profit_auditor.models import EcommerceMetric, EcommerceProduct, EcommerceSale, Integration

logger = logging.getLogger(__name__)


def calculate_daily_metrics(db: Session, integration: Integration, target: Optional[date] = None) -> Dict:
    """Compute and upsert one day's store metrics for an integration."""
    target = target or datetime.utcnow().date()
    start = datetime.combine(target, time.min)
    end = datetime.combine(target, time.max)

    sales = (
        db.query(EcommerceSale)
        .filter(EcommerceSale.integration_id == integration.id,
                EcommerceSale.sale_date >= start,
                EcommerceSale.sale_date <= end)
        .all()
    )
    names = {
        p.platform_product_id: p.name
        for p in db.query(EcommerceProduct).filter(EcommerceProduct.integration_id == integration.id)
    }

    daily_revenue = sum(s.total_price or 0.0 for s in sales)
    total_orders = len({s.order_id for s in sales})
    average_order_value = daily_revenue / total_orders if total_orders else 0.0
    products_sold = sum(s.quantity or 0 for s in sales)

    by_product = {}
    for sale in sales:
        entry = by_product.setdefault(sale.product_id, {
            "product_id": sale.product_id,
            "name": names.get(sale.product_id, "Unknown product"),
            "total_quantity": 0,
            "total_revenue": 0.0,
        })
        entry["total_quantity"] += sale.quantity or 0
        entry["total_revenue"] += sale.total_price or 0.0
    top_products = sorted(by_product.values(), key=lambda p: p["total_revenue"], reverse=True)[:5]

    # Orders stand in for customers; store APIs don't expose customer ids consistently
    all_sales = db.query(EcommerceSale).filter(EcommerceSale.integration_id == integration.id).all()
    unique_customers = len({s.order_id for s in all_sales})
    lifetime_revenue = sum(s.total_price or 0.0 for s in all_sales)
    customer_metrics = {
        "unique_customers": unique_customers,
        "average_lifetime_value": lifetime_revenue / unique_customers if unique_customers else 0.0,
    }

    metrics = {
        "daily_revenue": daily_revenue,
        "total_orders": total_orders,
        "average_order_value": average_order_value,
        "products_sold": products_sold,
        "top_products": top_products,
        "customer_metrics": customer_metrics,
    }

    record = (
        db.query(EcommerceMetric)
        .filter(EcommerceMetric.integration_id == integration.id, EcommerceMetric.metric_date == target)
        .first()
    )
    if record is None:
        record = EcommerceMetric(integration_id=integration.id, user_id=integration.user_id, metric_date=target)
        db.add(record)
    for key, value in metrics.items():
        setattr(record, key, value)
    db.commit()

    logger.info(f"Metrics for integration {integration.id} on {target}: revenue={daily_revenue:.2f}, orders={total_orders}")
    return metrics
