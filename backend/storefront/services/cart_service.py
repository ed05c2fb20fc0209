# Overview: Service-layer operations for carts; mutation and authoritative pricing.

"""
Cart / Pricing Aggregator

Pricing resolves each cart line against the store's live inventory (price,
offer price, stock) and the catalog (names, images, variant attributes). It is
a pure read of cart + inventory + catalog state: no lock is held, so stock may
change between a preview and order creation. Order creation re-prices.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import NotFoundError, OutOfStockError, ValidationError
from . import document_store as store
from .inventory_service import get_store_inventory, find_product, find_variant


@dataclass
class PricedCart:
    products: list[dict] = field(default_factory=list)
    subTotal: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.products

    @property
    def has_unsellable_lines(self) -> bool:
        return any(p.get("outOfStock") or p.get("unavailable") for p in self.products)

    def to_dict(self) -> dict:
        return {"products": self.products, "subTotal": self.subTotal}


def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def unit_price(inventory_variant: dict) -> float:
    """Offer price when positive, else list price."""
    offer = _to_float(inventory_variant.get("offerPrice"))
    return offer if offer > 0 else _to_float(inventory_variant.get("price"))


def _catalog_variant(catalog: dict | None, variant_id: str) -> dict | None:
    if not catalog:
        return None
    for variant in catalog.get("variants") or []:
        if variant.get("id") == variant_id:
            return variant
    return None


def price_lines(lines: list[dict], store_id: str) -> PricedCart:
    """
    Price arbitrary {productId, variantId, quantity} lines for a store.

    - No matching inventory or catalog entry: line kept with price 0 and
      `unavailable` set; contributes nothing.
    - quantity above variant stock: `outOfStock` set; contributes nothing.
    """
    if not lines:
        return PricedCart()

    inventory = get_store_inventory(store_id)
    catalog_cache: dict[str, dict | None] = {}
    priced: list[dict] = []
    subtotal = 0.0

    for raw in lines:
        item = {
            "productId": raw.get("productId"),
            "variantId": raw.get("variantId"),
            "quantity": int(raw.get("quantity") or 0),
        }

        inv_variant = find_variant(find_product(inventory, item["productId"]), item["variantId"])
        if item["productId"] not in catalog_cache:
            catalog_cache[item["productId"]] = store.read_by_id(store.PRODUCTS, item["productId"])
        catalog = catalog_cache[item["productId"]]
        cat_variant = _catalog_variant(catalog, item["variantId"])

        if inv_variant is None or cat_variant is None:
            item.update({"price": 0, "offerPrice": 0, "lineTotal": 0, "outOfStock": False, "unavailable": True})
            priced.append(item)
            continue

        images = cat_variant.get("images") or []
        item.update({
            "productName": catalog.get("name"),
            "variantName": cat_variant.get("name"),
            "productImage": images[0] if images else None,
            "type": cat_variant.get("type"),
            "value": cat_variant.get("value"),
            "metrics": cat_variant.get("metrics"),
            "price": inv_variant.get("price"),
            "offerPrice": inv_variant.get("offerPrice"),
            "stock": inv_variant.get("stock"),
            "outOfStock": False,
        })

        if item["quantity"] > int(inv_variant.get("stock") or 0):
            item["outOfStock"] = True
            item["lineTotal"] = 0
            priced.append(item)
            continue

        line_total = round(unit_price(inv_variant) * item["quantity"], 2)
        item["lineTotal"] = line_total
        subtotal += line_total
        priced.append(item)

    return PricedCart(products=priced, subTotal=round(subtotal, 2))


def get_cart(phone: str) -> dict | None:
    return store.read_by_id(store.CART_ITEMS, phone)


def price(phone: str, store_id: str) -> PricedCart:
    """Price the customer's current cart against one store."""
    cart = get_cart(phone)
    return price_lines((cart or {}).get("products") or [], store_id)


# =============================================================================
# CART MUTATION
# =============================================================================

def _sellable_variant(store_id: str, product_id: str, variant_id: str) -> dict:
    product = find_product(get_store_inventory(store_id), product_id)
    if product is None:
        raise NotFoundError("Product not found.")
    variant = find_variant(product, variant_id)
    if variant is None or int(variant.get("stock") or 0) <= 0:
        raise OutOfStockError("Out of Stock")
    return variant


def add_item(phone: str, store_id: str, product_id: str, variant_id: str) -> dict:
    """Add one unit of a variant, capped at the store's available stock."""
    if not all([phone, store_id, product_id, variant_id]):
        raise ValidationError("phone, storeId, productId and variantId required")

    variant = _sellable_variant(store_id, product_id, variant_id)
    available = int(variant.get("stock") or 0)

    cart = get_cart(phone)
    if cart is None:
        return store.create(store.CART_ITEMS, {
            "id": phone,
            "phone": phone,
            "products": [{"productId": product_id, "variantId": variant_id, "quantity": 1}],
        })

    lines = cart.setdefault("products", [])
    for line in lines:
        if line.get("productId") == product_id and line.get("variantId") == variant_id:
            if int(line.get("quantity") or 0) >= available:
                raise OutOfStockError(f"Only {available} items available")
            line["quantity"] = int(line.get("quantity") or 0) + 1
            break
    else:
        lines.append({"productId": product_id, "variantId": variant_id, "quantity": 1})

    return _save(cart)


def _save(cart: dict) -> dict:
    # concurrent mutations of one cart are last-write-wins
    cart.pop(store.ETAG, None)
    return store.replace(store.CART_ITEMS, cart)


def _cart_or_404(phone: str) -> dict:
    cart = get_cart(phone)
    if cart is None or not isinstance(cart.get("products"), list):
        raise NotFoundError("Cart not found")
    return cart


def remove_item(phone: str, product_id: str, variant_id: str) -> dict:
    """Decrease a line by one unit; the line is dropped when it reaches zero."""
    cart = _cart_or_404(phone)
    lines = cart["products"]
    for index, line in enumerate(lines):
        if line.get("productId") == product_id and line.get("variantId") == variant_id:
            if int(line.get("quantity") or 0) <= 1:
                lines.pop(index)
            else:
                line["quantity"] = int(line["quantity"]) - 1
            return _save(cart)
    raise NotFoundError("Product not found in cart")


def delete_item(phone: str, product_id: str, variant_id: str) -> dict:
    cart = _cart_or_404(phone)
    cart["products"] = [
        line for line in cart["products"]
        if not (line.get("productId") == product_id and line.get("variantId") == variant_id)
    ]
    return _save(cart)


def clear_cart(phone: str) -> bool:
    """Empty the customer's cart. Returns False when the customer has no cart."""
    cart = get_cart(phone)
    if cart is None:
        return False
    cart["products"] = []
    _save(cart)
    return True
