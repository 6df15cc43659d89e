"""Tests for document schemas."""

import pytest
from pydantic import ValidationError

from conftest import PAYMENT, SHIPPING, line_item
from schemas import Order, OrderItem, Product, calculate_total


def test_order_total_is_derived_from_items():
    order = Order(
        user="u1",
        order_items=[line_item("p1", quantity=2, price=10), line_item("p2", quantity=1, price=4.5)],
        shipping_address=SHIPPING,
        payment_details=PAYMENT,
        total_price=999,
    )

    assert order.total_price == 24.5
    assert order.order_status == "Pending"


def test_order_needs_items():
    with pytest.raises(ValidationError):
        Order(user="u1", order_items=[], shipping_address=SHIPPING, payment_details=PAYMENT)


def test_unknown_status_rejected():
    with pytest.raises(ValidationError):
        Order(
            user="u1",
            order_items=[line_item("p1")],
            shipping_address=SHIPPING,
            payment_details=PAYMENT,
            order_status="Lost",
        )


def test_calculate_total_accepts_dicts_and_models():
    items = [line_item("p1", quantity=3, price=2), OrderItem(**line_item("p2", quantity=1, price=5))]

    assert calculate_total(items) == 11
    assert calculate_total([]) == 0


class TestOrderItem:
    def test_size_coerced_to_label(self):
        assert OrderItem(**line_item("p1", size=42)).size == "42"

    def test_integral_float_size_coerced_to_label(self):
        assert OrderItem(**line_item("p1", size=42.0)).size == "42"
        with pytest.raises(ValidationError):
            OrderItem(**line_item("p1", size=42.5))

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValidationError):
            OrderItem(**line_item("p1", quantity=0))

    @pytest.mark.parametrize("size", ["", "M.L", "$where"])
    def test_unsafe_size_rejected(self, size):
        with pytest.raises(ValidationError):
            OrderItem(**line_item("p1", size=size))


class TestProduct:
    def product(self, **overrides):
        data = {
            "brand": "Acme",
            "name": "Tee",
            "price": 12.0,
            "image_url": "https://img.example.com/tee.png",
            "category": "Shirts",
            "sizes": {"M": 1},
        }
        data.update(overrides)
        return Product(**data)

    def test_negative_stock_rejected(self):
        with pytest.raises(ValidationError):
            self.product(sizes={"M": -1})

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            self.product(price=-1)

    def test_sizes_required(self):
        with pytest.raises(ValidationError):
            Product(brand="Acme", name="Tee", price=1, image_url="x", category="Shirts")
