"""
Cart pricing and mutation tests.

Verifies:
- Pricing against store inventory (offer price, out of stock, unavailable)
- Pricing is a pure read (idempotent)
- Add/remove/delete/clear keep the cart consistent with stock
"""

import pytest

from conftest import CUSTOMER_PHONE, STORE_ID, put_cart, seed_inventory, set_variant_stock
from storefront.errors import NotFoundError, OutOfStockError, ValidationError
from storefront.services import cart_service
from storefront.services import document_store as store


# =============================================================================
# PRICING
# =============================================================================


class TestPricing:
    def test_scenario_a_subtotal(self, seed):
        priced = cart_service.price(CUSTOMER_PHONE, STORE_ID)
        assert priced.subTotal == 200
        line = priced.products[0]
        assert line["outOfStock"] is False
        assert line["lineTotal"] == 200
        assert line["productName"] == "Basmati Rice"
        assert line["variantName"] == "1 kg"
        assert line["productImage"] == "https://img.test/rice.png"
        assert not priced.has_unsellable_lines

    def test_scenario_b_out_of_stock_line(self, seed):
        set_variant_stock(1)
        priced = cart_service.price(CUSTOMER_PHONE, STORE_ID)
        assert priced.products[0]["outOfStock"] is True
        assert priced.products[0]["lineTotal"] == 0
        assert priced.subTotal == 0
        assert priced.has_unsellable_lines

    def test_offer_price_wins_when_positive(self, db_session, seed):
        store.delete(store.STORE_PRODUCT, f"inv-{STORE_ID}")
        seed_inventory(price=100, offer_price=80)
        assert cart_service.price(CUSTOMER_PHONE, STORE_ID).subTotal == 160

    def test_unknown_variant_is_unavailable(self, seed):
        put_cart(lines=[
            {"productId": "P1", "variantId": "V1", "quantity": 1},
            {"productId": "P9", "variantId": "V9", "quantity": 3},
        ])
        priced = cart_service.price(CUSTOMER_PHONE, STORE_ID)
        assert priced.subTotal == 100
        ghost = priced.products[1]
        assert ghost["unavailable"] is True
        assert ghost["price"] == 0
        assert priced.has_unsellable_lines

    def test_other_store_has_no_inventory(self, seed):
        priced = cart_service.price(CUSTOMER_PHONE, "S-elsewhere")
        assert priced.subTotal == 0
        assert all(p["unavailable"] for p in priced.products)

    def test_pricing_is_idempotent(self, seed):
        first = cart_service.price(CUSTOMER_PHONE, STORE_ID).to_dict()
        second = cart_service.price(CUSTOMER_PHONE, STORE_ID).to_dict()
        assert first == second

    def test_missing_cart_prices_empty(self, seed):
        priced = cart_service.price("0000000000", STORE_ID)
        assert priced.is_empty
        assert priced.subTotal == 0


# =============================================================================
# MUTATION
# =============================================================================


class TestMutation:
    def test_add_creates_cart(self, seed):
        cart = cart_service.add_item("8880000000", STORE_ID, "P1", "V1")
        assert cart["products"] == [{"productId": "P1", "variantId": "V1", "quantity": 1}]

    def test_add_increments_existing_line(self, seed):
        cart = cart_service.add_item(CUSTOMER_PHONE, STORE_ID, "P1", "V1")
        assert cart["products"][0]["quantity"] == 3

    def test_add_capped_at_stock(self, seed):
        set_variant_stock(2)
        with pytest.raises(OutOfStockError) as exc:
            cart_service.add_item(CUSTOMER_PHONE, STORE_ID, "P1", "V1")
        assert "Only 2 items available" in exc.value.message

    def test_add_zero_stock_variant(self, seed):
        set_variant_stock(0)
        with pytest.raises(OutOfStockError):
            cart_service.add_item("8880000000", STORE_ID, "P1", "V1")

    def test_add_unknown_product(self, seed):
        with pytest.raises(NotFoundError):
            cart_service.add_item(CUSTOMER_PHONE, STORE_ID, "P404", "V1")

    def test_add_requires_all_fields(self, seed):
        with pytest.raises(ValidationError):
            cart_service.add_item(CUSTOMER_PHONE, STORE_ID, "P1", None)

    def test_remove_decrements_then_drops(self, seed):
        cart = cart_service.remove_item(CUSTOMER_PHONE, "P1", "V1")
        assert cart["products"][0]["quantity"] == 1
        cart = cart_service.remove_item(CUSTOMER_PHONE, "P1", "V1")
        assert cart["products"] == []

    def test_remove_missing_line(self, seed):
        with pytest.raises(NotFoundError):
            cart_service.remove_item(CUSTOMER_PHONE, "P1", "V2")

    def test_delete_line(self, seed):
        cart = cart_service.delete_item(CUSTOMER_PHONE, "P1", "V1")
        assert cart["products"] == []

    def test_clear(self, seed):
        assert cart_service.clear_cart(CUSTOMER_PHONE) is True
        assert cart_service.get_cart(CUSTOMER_PHONE)["products"] == []
        assert cart_service.clear_cart("0000000000") is False
