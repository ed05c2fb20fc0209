# Overview: Service-layer operations for per-store inventory; lookups and stock decrement.

"""
Store Inventory Invariants (authoritative)

- One StoreProduct document per store:
    {id, storeId, products: [{productId, stock, variants: [{variantId, stock, price, offerPrice}]}]}
- This document is the single source of truth for sellable price and stock.
  Catalog Product documents are metadata only.
- product.stock == sum(variant.stock for variant in product.variants) after
  every mutation of a product that has variants.
- Stock never goes negative: a line asking for more than is available is
  skipped, the rest of the batch still applies.
- A decrement batch is persisted with one conditional replace of the whole
  document; a concurrent writer forces a re-read and re-apply.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from . import document_store as store
from .concurrency import run_with_retry


@dataclass
class DecrementReport:
    """Outcome of one decrement batch."""
    store_id: str
    applied: list[dict] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)

    @property
    def persisted(self) -> bool:
        return bool(self.applied)


def get_store_inventory(store_id: str) -> dict | None:
    return store.query_one(store.STORE_PRODUCT, {"storeId": store_id})


def find_product(inventory: dict | None, product_id: str) -> dict | None:
    if not inventory:
        return None
    for product in inventory.get("products") or []:
        if product.get("productId") == product_id:
            return product
    return None


def find_variant(product: dict | None, variant_id: str) -> dict | None:
    if not product:
        return None
    for variant in product.get("variants") or []:
        if variant.get("variantId") == variant_id:
            return variant
    return None


def recompute_product_stock(product: dict) -> None:
    variants = product.get("variants") or []
    if variants:
        product["stock"] = sum(int(v.get("stock") or 0) for v in variants)


def _apply_line(inventory: dict, line: dict, report: DecrementReport) -> None:
    product_id = line.get("productId")
    variant_id = line.get("variantId")
    quantity = int(line.get("quantity") or 0)

    if not product_id or quantity <= 0:
        report.skipped.append({**_line_key(line), "reason": "invalid line"})
        return

    product = find_product(inventory, product_id)
    if product is None:
        report.skipped.append({**_line_key(line), "reason": "product not stocked"})
        return

    if variant_id:
        variant = find_variant(product, variant_id)
        if variant is None:
            report.skipped.append({**_line_key(line), "reason": "variant not stocked"})
            return
        available = int(variant.get("stock") or 0)
        if available < quantity:
            report.skipped.append({**_line_key(line), "reason": "insufficient stock", "available": available})
            return
        variant["stock"] = available - quantity
        recompute_product_stock(product)
    else:
        available = int(product.get("stock") or 0)
        if available < quantity:
            report.skipped.append({**_line_key(line), "reason": "insufficient stock", "available": available})
            return
        product["stock"] = available - quantity

    report.applied.append(_line_key(line))


def _line_key(line: dict) -> dict:
    return {
        "productId": line.get("productId"),
        "variantId": line.get("variantId"),
        "quantity": line.get("quantity"),
    }


def decrement(store_id: str, line_items: list[dict]) -> DecrementReport:
    """
    Reduce per-store, per-variant stock for a paid order, best effort per line.

    Lines that cannot be satisfied are logged and skipped. The inventory
    document is replaced once after all lines are processed.
    """
    def _op() -> DecrementReport:
        report = DecrementReport(store_id=store_id)
        inventory = get_store_inventory(store_id)
        if inventory is None:
            current_app.logger.warning("No inventory record for store %s; stock not decremented", store_id)
            report.skipped.extend({**_line_key(l), "reason": "no inventory"} for l in line_items)
            return report

        for line in line_items:
            _apply_line(inventory, line, report)

        if report.applied:
            store.replace(store.STORE_PRODUCT, inventory)
        return report

    report = run_with_retry(_op)
    for skipped in report.skipped:
        current_app.logger.warning(
            "Out of stock, decrement skipped: store=%s product=%s variant=%s (%s)",
            store_id, skipped.get("productId"), skipped.get("variantId"), skipped.get("reason"),
        )
    return report
