import pytest

from hive.extensions import db
from hive.models import Product
from hive.services.inventory_service import (
    InsufficientStockError,
    decrement_for_items,
    decrement_stock,
    set_stock,
)
from hive.validation import NotFoundError, ValidationError


def _stock(product_id):
    product = db.session.get(Product, product_id)
    return product.stock_count, product.in_stock


class TestDecrementStock:
    def test_decrements(self, make_product):
        product = make_product(stock_count=5)
        decrement_stock(product.id, 2)
        assert _stock(product.id) == (3, True)

    def test_reaching_zero_marks_out_of_stock(self, make_product):
        product = make_product(stock_count=2)
        decrement_stock(product.id, 2)
        assert _stock(product.id) == (0, False)

    def test_insufficient_stock_writes_nothing(self, make_product):
        product = make_product(stock_count=1)

        with pytest.raises(InsufficientStockError) as exc_info:
            decrement_stock(product.id, 2)

        assert exc_info.value.available == 1
        assert exc_info.value.requested == 2
        assert _stock(product.id) == (1, True)

    def test_unknown_product(self):
        with pytest.raises(NotFoundError):
            decrement_stock(424242, 1)

    @pytest.mark.parametrize("quantity", [0, -1, True, "2"])
    def test_rejects_bad_quantity(self, make_product, quantity):
        product = make_product(stock_count=5)
        with pytest.raises(ValidationError):
            decrement_stock(product.id, quantity)
        assert _stock(product.id) == (5, True)


class TestDecrementForItems:
    def test_each_item_is_independent(self, make_product):
        plenty = make_product(stock_count=10)
        scarce = make_product(stock_count=1)

        outcomes = decrement_for_items([
            {"product_id": plenty.id, "quantity": 3},
            {"product_id": scarce.id, "quantity": 2},
            {"product_id": 999999, "quantity": 1},
        ])

        assert [o.ok for o in outcomes] == [True, False, False]
        assert "Insufficient stock" in outcomes[1].error
        assert _stock(plenty.id) == (7, True)
        assert _stock(scarce.id) == (1, True)


class TestSetStock:
    def test_admin_override(self, make_product):
        product = make_product(stock_count=0)
        set_stock(product.id, 4)
        assert _stock(product.id) == (4, True)

    def test_negative_rejected(self, make_product):
        product = make_product(stock_count=3)
        with pytest.raises(ValidationError):
            set_stock(product.id, -1)
