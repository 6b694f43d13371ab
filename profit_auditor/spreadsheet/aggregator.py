"""
Row aggregation over classified spreadsheet columns.
"""

import math
import re
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Optional

from profit_auditor.spreadsheet.classifier import (
    COST, COST_PRICE, PRODUCT, REVENUE, SALE_PRICE, UNITS, role_columns
)

_NON_NUMERIC = re.compile(r"[^0-9.\-]")

TOP_PRODUCTS_LIMIT = 5


@dataclass
class AggregateMetrics:
    total_revenue: float = 0.0
    total_cost: float = 0.0
    total_profit: float = 0.0
    profit_margin: float = 0.0
    expense_ratio: float = 0.0
    total_rows: int = 0
    top_products: List[Dict[str, Any]] = field(default_factory=list)

    def financial_metrics(self) -> Dict[str, float]:
        return {
            "total_revenue": self.total_revenue,
            "total_cost": self.total_cost,
            "total_profit": self.total_profit,
            "profit_margin": self.profit_margin,
            "expense_ratio": self.expense_ratio,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def coerce_number(value) -> float:
    """Best-effort numeric coercion: "$1,234.56" -> 1234.56, "n/a" -> 0.0"""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return 0.0 if math.isnan(value) or math.isinf(value) else float(value)

    cleaned = _NON_NUMERIC.sub("", str(value))
    if not cleaned:
        return 0.0
    try:
        number = float(cleaned)
    except ValueError:
        return 0.0
    return 0.0 if math.isnan(number) or math.isinf(number) else number


def _ratio(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole else 0.0


def derive_metrics(total_revenue: float, total_cost: float) -> Dict[str, float]:
    """Profit, margin and expense ratio (both percentages) from two totals."""
    total_profit = total_revenue - total_cost
    return {
        "total_revenue": total_revenue,
        "total_cost": total_cost,
        "total_profit": total_profit,
        "profit_margin": _ratio(total_profit, total_revenue),
        "expense_ratio": _ratio(total_cost, total_revenue),
    }


def _first_nonzero(row: Dict[str, Any], columns: List[str]) -> float:
    for column in columns:
        number = coerce_number(row.get(column))
        if number:
            return number
    return 0.0


def _row_amount(row, direct_columns, units_columns, price_columns) -> float:
    if direct_columns:
        return _first_nonzero(row, direct_columns)
    if units_columns and price_columns:
        return _first_nonzero(row, units_columns) * _first_nonzero(row, price_columns)
    return 0.0


def aggregate_rows(rows: Iterable[Dict[str, Any]], headers: Optional[List[str]] = None) -> AggregateMetrics:
    """
    Sum revenue and cost over rows in file order.

    Revenue comes from the revenue columns when any header was classified as
    revenue, otherwise from units * sale_price on each row. Cost follows the
    same rule with cost and cost_price.
    """
    rows = list(rows)
    if headers is None:
        headers = list(rows[0].keys()) if rows else []

    columns = role_columns(headers)
    product_columns = columns[PRODUCT]

    total_revenue = 0.0
    total_cost = 0.0
    by_product: Dict[str, Dict[str, Any]] = {}

    for row in rows:
        revenue = _row_amount(row, columns[REVENUE], columns[UNITS], columns[SALE_PRICE])
        cost = _row_amount(row, columns[COST], columns[UNITS], columns[COST_PRICE])
        total_revenue += revenue
        total_cost += cost

        if product_columns:
            name = row.get(product_columns[0])
            if name is None or str(name).strip() == "":
                continue
            name = str(name).strip()
            entry = by_product.setdefault(name, {"name": name, "total_quantity": 0.0, "total_revenue": 0.0})
            entry["total_quantity"] += _first_nonzero(row, columns[UNITS])
            entry["total_revenue"] += revenue

    top_products = sorted(by_product.values(), key=lambda p: p["total_revenue"], reverse=True)[:TOP_PRODUCTS_LIMIT]

    return AggregateMetrics(
        **derive_metrics(total_revenue, total_cost),
        total_rows=len(rows),
        top_products=top_products,
    )


def combine_metrics(parts: Iterable[AggregateMetrics]) -> AggregateMetrics:
    """Merge several aggregates, recomputing the derived ratios."""
    parts = list(parts)
    total_revenue = sum(p.total_revenue for p in parts)
    total_cost = sum(p.total_cost for p in parts)

    merged: Dict[str, Dict[str, Any]] = {}
    for part in parts:
        for product in part.top_products:
            entry = merged.setdefault(product["name"], {"name": product["name"], "total_quantity": 0.0, "total_revenue": 0.0})
            entry["total_quantity"] += product.get("total_quantity", 0.0)
            entry["total_revenue"] += product.get("total_revenue", 0.0)

    return AggregateMetrics(
        **derive_metrics(total_revenue, total_cost),
        total_rows=sum(p.total_rows for p in parts),
        top_products=sorted(merged.values(), key=lambda p: p["total_revenue"], reverse=True)[:TOP_PRODUCTS_LIMIT],
    )


def metrics_from_analysis(analysis: Dict[str, Any]) -> AggregateMetrics:
    """Rebuild an aggregate from a stored upload analysis."""
    financial = analysis.get("financial_metrics") or {}
    return AggregateMetrics(
        **derive_metrics(
            coerce_number(financial.get("total_revenue")),
            coerce_number(financial.get("total_cost")),
        ),
        total_rows=int(coerce_number(analysis.get("total_rows"))),
        top_products=list(analysis.get("top_products") or []),
    )
