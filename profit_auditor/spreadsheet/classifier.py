"""
Header-based column classification for uploaded spreadsheets.

Each header is matched against an ordered table of keyword groups. The first
group with a keyword that appears in the lower-cased header decides the role.
Headers that match nothing are classified as ``other``.
"""

from typing import Dict, List

UNITS = "units"
SALE_PRICE = "sale_price"
COST_PRICE = "cost_price"
REVENUE = "revenue"
COST = "cost"
DATE = "date"
PRODUCT = "product"
OTHER = "other"

ROLES = (UNITS, SALE_PRICE, COST_PRICE, REVENUE, COST, DATE, PRODUCT, OTHER)

# Order matters: "cost price" must be tested before "cost", and the per-unit
# price groups before the total revenue group.
KEYWORD_GROUPS = [
    (UNITS, ["units", "quantity", "qty", "volume sold"]),
    (COST_PRICE, ["cost price", "unit cost", "cost per unit", "purchase price", "buy price"]),
    (SALE_PRICE, ["sale price", "selling price", "unit price", "price per unit", "retail price", "price"]),
    (REVENUE, ["revenue", "sales", "income", "turnover", "takings"]),
    (COST, ["cost", "cogs", "expense", "spend", "outgoing"]),
    (DATE, ["date", "month", "period", "day", "year"]),
    (PRODUCT, ["product", "item", "sku", "description", "name"]),
]


def _normalize(header) -> str:
    text = str(header).lower()
    return text.replace("_", " ").replace("-", " ")


def classify_header(header) -> str:
    """Return the role for a single header."""
    text = _normalize(header)
    for role, keywords in KEYWORD_GROUPS:
        if any(keyword in text for keyword in keywords):
            return role
    return OTHER


def classify_columns(headers: List) -> List[str]:
    """Return one role per header, in header order."""
    return [classify_header(header) for header in headers]


def role_columns(headers: List) -> Dict[str, List[str]]:
    """Group headers by role, keeping their original order within each role."""
    grouped = {role: [] for role in ROLES}
    for header, role in zip(headers, classify_columns(headers)):
        grouped[role].append(header)
    return grouped
