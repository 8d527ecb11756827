from typing import Dict, Iterable, List

from services.bling_models import ProductSale, RawProductItem


def consolidate_products(items: Iterable[RawProductItem]) -> List[ProductSale]:
    """
    Merge raw NF-e lines from all accounts into one entry per product.

    Products are grouped by trimmed, lowercased name; the first trimmed spelling seen
    is kept for display. Quantities and line totals are summed, so the unit price is
    the quantity-weighted average. Output follows first appearance of each product.
    """
    groups: Dict[str, dict] = {}

    for item in items:
        display_name = item.product_name.strip()
        key = display_name.lower()
        line_total = item.quantity * item.unit_price
        group = groups.get(key)
        if group is None:
            groups[key] = {
                "display_name": display_name,
                "quantity": item.quantity,
                "total_value": line_total,
                "accounts": {item.account},
            }
        else:
            group["quantity"] += item.quantity
            group["total_value"] += line_total
            group["accounts"].add(item.account)

    return [
        ProductSale(
            product_name=group["display_name"],
            quantity=group["quantity"],
            total_value=group["total_value"],
            accounts=sorted(group["accounts"]),
        )
        for group in groups.values()
    ]
