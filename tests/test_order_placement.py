"""
Order placement tests.

Exercises the full placement path against a real (SQLite) database with an
in-process gateway double: pricing, gateway call ordering, all-or-nothing
reservation, price snapshots and concurrent checkouts.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import FakeGateway, address, line, seed_product
from storefront.errors import (
    GatewayError, InsufficientStockError, NotFoundError, TransactionTimeoutError, ValidationError,
)
from storefront.metrics import metrics_collector
from storefront.models import Address, Order, OrderItem, Product, ProductSize, User
from storefront.orders import OrderPlacementService, get_order, list_orders_for_user


def _count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def _stock(db, product_id):
    db.expire_all()
    return db.get(Product, product_id).stock


@pytest.mark.asyncio
async def test_place_order_reserves_stock_and_records_pending_order(db, user, gateway):
    pid, _ = seed_product(db, name="Product A", price="100", discount="10", stock=5)

    placed = await OrderPlacementService(db, gateway).place_order(user, [line(pid, 5)], address())

    assert placed.amount == 49500
    assert placed.currency == "INR"
    assert _stock(db, pid) == 0

    order = get_order(db, placed.db_order_id)
    assert order.order_number == placed.remote_order_id
    assert order.status == "pending"
    assert order.payment_status == "pending"
    assert order.payment_method == "razorpay"
    assert order.subtotal == Decimal("450.00")
    assert order.tax == Decimal("45.00")
    assert order.shipping == Decimal("0.00")
    assert order.total == Decimal("495.00")
    assert order.shipping_address.city == "Bengaluru"
    (item,) = order.items
    assert item.product_name == "Product A"
    assert item.quantity == 5
    assert item.price == Decimal("90.00")

    (call,) = gateway.calls
    assert call["amount"] == 49500
    assert call["currency"] == "INR"
    assert call["notes"] == {"userId": user.id}
    assert call["receipt"].startswith("order_")

    assert metrics_collector.counters["orders_placed"] == 1


@pytest.mark.asyncio
async def test_second_order_after_stock_exhausted_fails(db, user, gateway):
    pid, _ = seed_product(db, stock=5)
    service = OrderPlacementService(db, gateway)
    await service.place_order(user, [line(pid, 5)], address())

    with pytest.raises(InsufficientStockError) as exc_info:
        await service.place_order(user, [line(pid, 1)], address())

    assert "Insufficient stock" in str(exc_info.value)
    assert _stock(db, pid) == 0
    assert _count(db, Order) == 1
    assert metrics_collector.counters["stock_conflicts"] == 1


@pytest.mark.asyncio
async def test_failed_line_rolls_back_whole_order(db, user, gateway):
    pid_a, _ = seed_product(db, name="A", stock=5)
    pid_b, sizes_b = seed_product(db, name="B", sizes={"M": 1})

    # First line reserves fine, second cannot: nothing may be kept
    with pytest.raises(InsufficientStockError) as exc_info:
        await OrderPlacementService(db, gateway).place_order(
            user, [line(pid_a, 2), line(pid_b, 2, sizes_b["M"])], address()
        )

    assert exc_info.value.size_label == "M"
    assert _stock(db, pid_a) == 5
    assert _stock(db, pid_b) == 1
    assert db.get(ProductSize, sizes_b["M"]).quantity == 1
    assert _count(db, Order) == 0
    assert _count(db, OrderItem) == 0
    assert _count(db, Address) == 0


@pytest.mark.asyncio
async def test_sized_line_decrements_size_and_product(db, user, gateway):
    pid, sizes = seed_product(db, name="Tee", sizes={"S": 3, "L": 2})

    placed = await OrderPlacementService(db, gateway).place_order(
        user, [line(pid, 2, sizes["S"])], address()
    )

    assert _stock(db, pid) == 3
    assert db.get(ProductSize, sizes["S"]).quantity == 1
    assert db.get(ProductSize, sizes["L"]).quantity == 2
    (item,) = get_order(db, placed.db_order_id).items
    assert item.size_id == sizes["S"]
    assert item.size_name == "S"


@pytest.mark.asyncio
async def test_stored_size_label_comes_from_catalog(db, user, gateway):
    pid, sizes = seed_product(db, sizes={"XL": 2})
    cart_line = line(pid, 1, sizes["XL"])
    cart_line.size_name = "Extra Large (client)"

    placed = await OrderPlacementService(db, gateway).place_order(user, [cart_line], address())

    (item,) = get_order(db, placed.db_order_id).items
    assert item.size_name == "XL"


@pytest.mark.asyncio
@pytest.mark.parametrize("items, shipping, message", [
    ([], address(), "Cart is empty"),
    (None, None, "Shipping address is required"),
    (None, address(city=""), "missing required fields: city"),
    (None, address(full_name=None, phone=None), "missing required fields: full_name, phone"),
])
async def test_validation_happens_before_gateway(db, user, gateway, items, shipping, message):
    pid, _ = seed_product(db, stock=5)
    cart = items if items is not None else [line(pid, 1)]

    with pytest.raises(ValidationError, match=message):
        await OrderPlacementService(db, gateway).place_order(user, cart, shipping)

    assert gateway.calls == []
    assert _stock(db, pid) == 5


@pytest.mark.asyncio
async def test_state_is_optional(db, user, gateway):
    pid, _ = seed_product(db, stock=5)
    placed = await OrderPlacementService(db, gateway).place_order(user, [line(pid, 1)], address(state=None))
    assert get_order(db, placed.db_order_id).shipping_address.state == ""


@pytest.mark.asyncio
async def test_unknown_product_fails_before_gateway(db, user, gateway):
    with pytest.raises(NotFoundError):
        await OrderPlacementService(db, gateway).place_order(user, [line("ghost", 1)], address())
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_gateway_failure_leaves_stock_untouched(db, user):
    pid, _ = seed_product(db, stock=5)

    with pytest.raises(GatewayError):
        await OrderPlacementService(db, FakeGateway(fail=True)).place_order(user, [line(pid, 2)], address())

    assert _stock(db, pid) == 5
    assert _count(db, Order) == 0


@pytest.mark.asyncio
async def test_order_keeps_price_snapshot_after_catalog_change(db, user, gateway):
    pid, _ = seed_product(db, price="100", discount="10", stock=5)
    placed = await OrderPlacementService(db, gateway).place_order(user, [line(pid, 1)], address())

    product = db.get(Product, pid)
    product.price = Decimal("250")
    product.discount = Decimal("0")
    product.name = "Renamed"
    db.commit()
    db.expire_all()

    order = get_order(db, placed.db_order_id)
    assert order.items[0].price == Decimal("90.00")
    assert order.items[0].product_name == "Product A"
    assert order.total == Decimal("99.00")


@pytest.mark.asyncio
async def test_transaction_over_budget_rolls_back(db, user, gateway, config):
    pid, _ = seed_product(db, stock=5)
    config.transaction_timeout_seconds = 1e-9

    with pytest.raises(TransactionTimeoutError):
        await OrderPlacementService(db, gateway, config).place_order(user, [line(pid, 2)], address())

    assert _stock(db, pid) == 5
    assert _count(db, Order) == 0
    assert _count(db, Address) == 0


@pytest.mark.asyncio
async def test_orders_listed_for_owner_only(db, user, other_user, gateway):
    pid, _ = seed_product(db, stock=5)
    service = OrderPlacementService(db, gateway)
    await service.place_order(user, [line(pid, 1)], address())
    await service.place_order(other_user, [line(pid, 1)], address())

    mine = list_orders_for_user(db, user)

    assert len(mine) == 1
    assert mine[0].user_id == user.id


def test_concurrent_checkouts_never_oversell(db, session_factory, user):
    pid, _ = seed_product(db, stock=5)
    user_id = user.id

    def checkout(_):
        session = session_factory()
        try:
            buyer = session.get(User, user_id)
            service = OrderPlacementService(session, FakeGateway())
            asyncio.run(service.place_order(buyer, [line(pid, 1)], address()))
            return "ok"
        except InsufficientStockError:
            return "out_of_stock"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(checkout, range(10)))

    assert results.count("ok") == 5
    assert results.count("out_of_stock") == 5
    assert _stock(db, pid) == 0
    assert _count(db, Order) == 5


@pytest.mark.asyncio
async def test_sized_product_requires_a_size(db, user, gateway):
    pid, sizes = seed_product(db, name="Tee", sizes={"M": 3, "L": 2})

    with pytest.raises(ValidationError, match="Size is required for Tee"):
        await OrderPlacementService(db, gateway).place_order(user, [line(pid, 4)], address())

    assert gateway.calls == []
    assert _stock(db, pid) == 5
    assert sum(db.get(ProductSize, size_id).quantity for size_id in sizes.values()) == 5
    assert _count(db, Order) == 0
