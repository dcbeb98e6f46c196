"""Cart pricing: discounts, tax, shipping and minor-unit conversion."""

from decimal import Decimal

import pytest

from conftest import line, seed_product
from storefront.errors import NotFoundError, ValidationError
from storefront.pricing import calculate_totals, final_unit_price, price_cart, to_minor_units


def test_final_unit_price_applies_percentage_discount():
    assert final_unit_price(Decimal("100"), Decimal("10")) == Decimal("90.00")
    assert final_unit_price(Decimal("19.99"), Decimal("0")) == Decimal("19.99")


def test_final_unit_price_rounds_half_up_to_cents():
    # 20 * (1 - 0.3333) = 13.334
    assert final_unit_price(Decimal("20"), Decimal("33.33")) == Decimal("13.33")
    # 10 * (1 - 0.3335) = 6.665
    assert final_unit_price(Decimal("10"), Decimal("33.35")) == Decimal("6.67")


def test_to_minor_units():
    assert to_minor_units(Decimal("495")) == 49500
    assert to_minor_units(Decimal("12.34")) == 1234
    assert to_minor_units(Decimal("0.01")) == 1


def test_full_stock_order_totals(db, config):
    pid, _ = seed_product(db, price="100", discount="10", stock=5)

    totals = price_cart(db, [line(pid, 5)], config)

    assert totals.subtotal == Decimal("450.00")
    assert totals.tax == Decimal("45.00")
    assert totals.shipping == Decimal("0")
    assert totals.total == Decimal("495.00")
    assert totals.amount_minor == 49500


def test_shipping_charged_at_or_below_threshold(db, config):
    pid, _ = seed_product(db, price="50", discount="0", stock=5)

    # Exactly 50 is not above the threshold
    totals = price_cart(db, [line(pid, 1)], config)

    assert totals.subtotal == Decimal("50.00")
    assert totals.shipping == Decimal("10.00")
    assert totals.total == Decimal("65.00")


def test_shipping_free_just_above_threshold(db, config):
    pid, _ = seed_product(db, price="50.01", discount="0", stock=5)
    totals = price_cart(db, [line(pid, 1)], config)
    assert totals.shipping == Decimal("0")


def test_tax_rounds_to_cents(db, config):
    pid, _ = seed_product(db, price="0.15", discount="0", stock=5)
    totals = price_cart(db, [line(pid, 1)], config)
    # 0.015 rounds half up
    assert totals.tax == Decimal("0.02")


def test_lines_carry_catalog_snapshot(db, config):
    pid, sizes = seed_product(db, name="Denim Jacket", price="80", discount="25", sizes={"M": 2},
                              images=["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.jpg"])

    totals = price_cart(db, [line(pid, 2, sizes["M"])], config)

    (priced,) = totals.lines
    assert priced.product_name == "Denim Jacket"
    assert priced.product_image == "https://cdn.example.com/a.jpg"
    assert priced.size_name == "M"
    assert priced.unit_price == Decimal("60.00")
    assert priced.line_total == Decimal("120.00")


def test_product_without_images_gets_empty_image(db, config):
    pid, _ = seed_product(db, images=[])
    (priced,) = price_cart(db, [line(pid, 1)], config).lines
    assert priced.product_image == ""


def test_multiple_lines_are_summed(db, config):
    pid_a, _ = seed_product(db, name="A", price="10", discount="0")
    pid_b, _ = seed_product(db, name="B", price="15.50", discount="0")

    totals = price_cart(db, [line(pid_a, 2), line(pid_b, 1)], config)

    assert totals.subtotal == Decimal("35.50")
    assert totals.tax == Decimal("3.55")
    assert totals.shipping == Decimal("10.00")
    assert totals.total == Decimal("49.05")


def test_calculate_totals_with_custom_rates(config):
    config.tax_rate = Decimal("0.18")
    config.free_shipping_threshold = Decimal("500")
    config.flat_shipping_cost = Decimal("40")

    totals = calculate_totals([], config)

    assert totals.subtotal == Decimal("0")
    assert totals.shipping == Decimal("40.00")


def test_empty_cart_rejected(db, config):
    with pytest.raises(ValidationError, match="Cart is empty"):
        price_cart(db, [], config)


def test_unknown_product_rejected(db, config):
    with pytest.raises(NotFoundError) as exc_info:
        price_cart(db, [line("does-not-exist", 1)], config)
    assert exc_info.value.kind == "Product"


def test_size_of_another_product_rejected(db, config):
    pid_a, _ = seed_product(db, name="A", sizes={"S": 1})
    _, sizes_b = seed_product(db, name="B", sizes={"S": 1})

    with pytest.raises(NotFoundError) as exc_info:
        price_cart(db, [line(pid_a, 1, sizes_b["S"])], config)
    assert exc_info.value.kind == "Size"


def test_sized_product_without_size_rejected(db, config):
    pid, _ = seed_product(db, name="Tee", sizes={"M": 3, "L": 2})

    with pytest.raises(ValidationError, match="Size is required for Tee"):
        price_cart(db, [line(pid, 1)], config)
