"""
Order placement: price the cart, open a gateway payment, then reserve stock
and record the pending order in one bounded transaction.

The gateway call always happens before the local transaction so no database
lock is held across network latency. If the transaction fails afterwards the
gateway order is simply left to expire; no stock was decremented for it.
"""

from dataclasses import dataclass
import time
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront.config import StorefrontConfig, get_config
from storefront.database import transaction
from storefront.errors import InsufficientStockError, NotFoundError, ValidationError
from storefront.inventory import InventoryLedger
from storefront.logger import get_logger
from storefront.metrics import metrics_collector
from storefront.models import Address, Order, OrderItem, User
from storefront.pricing import OrderTotals, price_cart
from storefront.schemas import CartLine, ShippingAddressInput
from storefront.structured_logger import log_order_event

logger = get_logger("orders")


@dataclass
class PlacedOrder:
    """What the client needs to open the gateway checkout."""
    remote_order_id: str
    amount: int
    currency: str
    db_order_id: str


def validate_checkout(items: List[CartLine], shipping_address: Optional[ShippingAddressInput]) -> None:
    """Reject an empty cart or an incomplete address before anything else runs."""
    if not items:
        raise ValidationError("Cart is empty")
    if shipping_address is None:
        raise ValidationError("Shipping address is required")
    missing = shipping_address.missing_fields()
    if missing:
        raise ValidationError(f"Shipping address is missing required fields: {', '.join(missing)}")


class OrderPlacementService:
    """
    Places orders for one request.

    gateway must provide `async create_order(amount_minor, currency, notes=..., receipt=...)`
    returning an object with id, amount and currency.
    """

    def __init__(self, db: Session, gateway, config: Optional[StorefrontConfig] = None):
        self.db = db
        self.gateway = gateway
        self.config = config or get_config()

    async def place_order(
        self,
        user: User,
        items: List[CartLine],
        shipping_address: Optional[ShippingAddressInput],
    ) -> PlacedOrder:
        """
        Place a pending order.

        Raises:
            ValidationError: empty cart, bad quantity or incomplete address
            NotFoundError: a product or size does not exist
            GatewayError: the gateway order could not be created
            InsufficientStockError: a line could not be reserved; nothing was kept
            TransactionTimeoutError: the transaction ran out of time; nothing was kept
        """
        validate_checkout(items, shipping_address)
        user_id = user.id

        # Step 1: price from the catalog (unlocked read)
        totals = price_cart(self.db, items, self.config)
        # End the read transaction so nothing stays open during the gateway call
        self.db.rollback()

        # Step 2: gateway order, outside any database transaction
        gateway_order = await self.gateway.create_order(
            totals.amount_minor,
            self.config.currency,
            notes={"userId": user_id},
            receipt=f"order_{int(time.time() * 1000)}",
        )

        # Step 3: reserve stock and persist, all or nothing
        try:
            with transaction(self.db, self.config.transaction_timeout_seconds):
                order = self._reserve_and_record(user_id, gateway_order.id, totals, shipping_address)
        except InsufficientStockError as e:
            metrics_collector.increment("stock_conflicts")
            log_order_event(
                "stock_conflict",
                gateway_order.id,
                product=e.product_name,
                size=e.size_label,
                available=e.available,
            )
            raise

        metrics_collector.increment("orders_placed")
        log_order_event(
            "order_placed",
            gateway_order.id,
            order_id=order.id,
            user_id=user_id,
            total=totals.total,
            lines=len(totals.lines),
        )

        return PlacedOrder(
            remote_order_id=gateway_order.id,
            amount=gateway_order.amount,
            currency=gateway_order.currency,
            db_order_id=order.id,
        )

    def _reserve_and_record(
        self,
        user_id: str,
        order_number: str,
        totals: OrderTotals,
        shipping_address: ShippingAddressInput,
    ) -> Order:
        ledger = InventoryLedger(self.db)
        for line in totals.lines:
            ledger.reserve(line.product_id, line.size_id, line.quantity)

        address = Address(
            user_id=user_id,
            full_name=shipping_address.full_name,
            phone=shipping_address.phone,
            street=shipping_address.street,
            city=shipping_address.city,
            state=shipping_address.state or "",
            postal_code=shipping_address.postal_code,
            country=shipping_address.country,
        )
        self.db.add(address)
        self.db.flush()

        order = Order(
            order_number=order_number,
            user_id=user_id,
            status="pending",
            payment_status="pending",
            payment_method="razorpay",
            subtotal=totals.subtotal,
            tax=totals.tax,
            shipping=totals.shipping,
            total=totals.total,
            shipping_address_id=address.id,
            items=[
                OrderItem(
                    product_id=line.product_id,
                    product_name=line.product_name,
                    product_image=line.product_image,
                    size_id=line.size_id,
                    size_name=line.size_name,
                    quantity=line.quantity,
                    price=line.unit_price,
                )
                for line in totals.lines
            ],
        )
        self.db.add(order)
        self.db.flush()
        logger.info(f"Reserved {len(totals.lines)} line(s) and recorded order {order.id} ({order_number})")
        return order


#
# Order store reads
#

def _order_query():
    return select(Order).options(
        selectinload(Order.items),
        selectinload(Order.shipping_address),
    )


def get_order(db: Session, order_id: str) -> Order:
    order = db.execute(_order_query().where(Order.id == order_id)).scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order", order_id)
    return order


def get_order_for_user(db: Session, user: User, order_number: str) -> Order:
    """Order by number, answered as not found when it belongs to someone else."""
    order = db.execute(_order_query().where(Order.order_number == order_number)).scalar_one_or_none()
    if order is None or order.user_id != user.id:
        raise NotFoundError("Order", order_number)
    return order


def list_orders_for_user(db: Session, user: User) -> List[Order]:
    return list(db.execute(
        _order_query().where(Order.user_id == user.id).order_by(Order.created_at.desc())
    ).scalars().all())


def list_orders(db: Session, status: Optional[str] = None, limit: int = 100) -> List[Order]:
    query = _order_query()
    if status:
        query = query.where(Order.status == status)
    return list(db.execute(query.order_by(Order.created_at.desc()).limit(limit)).scalars().all())
