"""
Monetary computation shared by quotations and invoices.

Totals are always recomputed from the line items here before a document is
written. Caller-supplied `total`, `subtotal` or `total_amount` values are
never persisted.
"""

from typing import Any, Dict, Iterable, List

from services.errors import ValidationFailed

CENTS = 2


def round_money(value: float) -> float:
    """Money is stored and compared to the cent"""
    return round(value or 0, CENTS)


def _field(item: Any, name: str):
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name)


def compute_line_items(items: Iterable[Any]) -> List[Dict[str, Any]]:
    """Normalize line items and recompute each `total = quantity * unit_price`"""
    computed = []
    for item in items:
        quantity = _field(item, "quantity")
        unit_price = _field(item, "unit_price")
        if quantity is None or quantity <= 0:
            raise ValidationFailed("Item quantity must be greater than 0")
        if unit_price is None or unit_price < 0:
            raise ValidationFailed("Item unit price cannot be negative")
        computed.append({
            "description": _field(item, "description"),
            "quantity": quantity,
            "unit_price": unit_price,
            "total": round_money(quantity * unit_price)
        })
    return computed


def compute_totals(items: Iterable[Any], tax: float = 0, discount: float = 0) -> Dict[str, Any]:
    """
    Return the monetary fields of a quotation or invoice.

    `tax` and `discount` are flat amounts. A discount larger than
    subtotal plus tax is rejected rather than producing a negative total.
    """
    tax = tax or 0
    discount = discount or 0
    if tax < 0:
        raise ValidationFailed("Tax cannot be negative")
    if discount < 0:
        raise ValidationFailed("Discount cannot be negative")

    line_items = compute_line_items(items)
    subtotal = round_money(sum(item["total"] for item in line_items))
    total_amount = round_money(subtotal + tax - discount)
    if total_amount < 0:
        raise ValidationFailed("Discount cannot exceed subtotal plus tax")

    return {
        "items": line_items,
        "subtotal": subtotal,
        "tax": tax,
        "discount": discount,
        "total_amount": total_amount
    }


def copy_line_items(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Structural snapshot of persisted items (used on quotation conversion)"""
    return [
        {
            "description": item["description"],
            "quantity": item["quantity"],
            "unit_price": item["unit_price"],
            "total": item["total"]
        }
        for item in items
    ]
