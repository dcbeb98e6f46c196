"""
Reconciliation: payment verification and order status transitions.

- verify_payment is the only path that marks a payment completed, and only
  after the gateway signature checks out.
- Cancelling restores every line's stock exactly once. The status flip is a
  conditional UPDATE (`... WHERE status != 'cancelled'`), so of two concurrent
  cancellations only the one that wins the row restores stock.
"""

from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from storefront.config import StorefrontConfig, get_config
from storefront.database import transaction
from storefront.errors import InvalidTransitionError, NotFoundError, SignatureError, ValidationError
from storefront.inventory import InventoryLedger
from storefront.logger import get_logger
from storefront.metrics import metrics_collector
from storefront.models import ORDER_STATUSES, Order, OrderItem, User
from storefront.orders import get_order, get_order_for_user
from storefront.structured_logger import log_order_event

logger = get_logger("reconciliation")

# No transitions out of these, other than re-asserting the same status
TERMINAL_STATUSES = ("delivered", "cancelled")

# Statuses a customer may still cancel from
CUSTOMER_CANCELLABLE = ("pending", "confirmed")


class ReconciliationService:
    """
    Finalizes orders after checkout.

    gateway must provide `verify_signature(order_id, payment_id, signature) -> bool`.
    """

    def __init__(self, db: Session, gateway=None, config: Optional[StorefrontConfig] = None):
        self.db = db
        self.gateway = gateway
        self.config = config or get_config()

    def verify_payment(self, remote_order_id: str, remote_payment_id: str, signature: str) -> Order:
        """
        Mark the order paid after checking the gateway signature.

        Raises:
            SignatureError: signature mismatch; nothing changed
            NotFoundError: no order carries this gateway order id
            InvalidTransitionError: the order was cancelled before payment was confirmed
        """
        if not self.gateway.verify_signature(remote_order_id, remote_payment_id, signature):
            metrics_collector.increment("signature_failures")
            log_order_event("signature_rejected", remote_order_id, payment_id=remote_payment_id)
            raise SignatureError()

        with transaction(self.db, self.config.transaction_timeout_seconds):
            order = self.db.execute(
                select(Order).where(Order.order_number == remote_order_id).with_for_update()
            ).scalar_one_or_none()
            if order is None:
                raise NotFoundError("Order", remote_order_id)
            if order.status == "cancelled":
                raise InvalidTransitionError(order.status, "confirmed")

            if order.payment_status == "completed":
                logger.info(f"Order {remote_order_id} already verified, nothing to do")
            else:
                order.payment_status = "completed"
                if order.status == "pending":
                    order.status = "confirmed"
                metrics_collector.increment("payments_verified")
                log_order_event("payment_verified", remote_order_id, order_id=order.id, payment_id=remote_payment_id)
            order_id = order.id

        return get_order(self.db, order_id)

    def update_status(self, order_id: str, new_status: str) -> Order:
        """
        Admin status change. Moving into 'cancelled' restores stock.

        Raises:
            ValidationError: unknown status
            NotFoundError: unknown order
            InvalidTransitionError: the order is delivered or cancelled already
        """
        if new_status not in ORDER_STATUSES:
            raise ValidationError(f"Invalid status: {new_status}")

        order = get_order(self.db, order_id)
        if new_status == "cancelled":
            return self.cancel(order)

        if order.status == new_status:
            return order
        if order.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(order.status, new_status)

        previous = order.status
        with transaction(self.db, self.config.transaction_timeout_seconds):
            claimed = self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status.notin_(TERMINAL_STATUSES))
                .values(status=new_status)
                .execution_options(synchronize_session=False)
            ).rowcount
            if not claimed:
                # Cancelled or delivered by someone else in the meantime
                current = self.db.execute(select(Order.status).where(Order.id == order_id)).scalar_one()
                raise InvalidTransitionError(current, new_status)

        log_order_event("status_changed", order.order_number, order_id=order_id, previous=previous, status=new_status)
        self.db.expire_all()
        return get_order(self.db, order_id)

    def cancel(self, order: Order) -> Order:
        """
        Cancel an order and put its stock back. Cancelling a cancelled order is a no-op.

        Raises:
            InvalidTransitionError: the order was already delivered
        """
        if order.status == "cancelled":
            return order
        if order.status == "delivered":
            raise InvalidTransitionError(order.status, "cancelled")

        order_id = order.id
        restored_lines = 0
        with transaction(self.db, self.config.transaction_timeout_seconds):
            claimed = self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status.notin_(TERMINAL_STATUSES))
                .values(
                    status="cancelled",
                    payment_status=case(
                        (Order.payment_status == "completed", "refunded"),
                        else_="failed",
                    ),
                )
                .execution_options(synchronize_session=False)
            ).rowcount

            if claimed:
                ledger = InventoryLedger(self.db)
                items = self.db.execute(
                    select(OrderItem.product_id, OrderItem.size_id, OrderItem.quantity)
                    .where(OrderItem.order_id == order_id)
                ).all()
                for item in items:
                    # Lines whose product was deleted keep only their copied name; nothing to restore
                    if item.product_id is None:
                        continue
                    if ledger.release(item.product_id, item.size_id, item.quantity):
                        restored_lines += 1

        self.db.expire_all()
        cancelled = get_order(self.db, order_id)
        if not claimed:
            # Lost the race: someone else cancelled (or delivered) it first
            if cancelled.status != "cancelled":
                raise InvalidTransitionError(cancelled.status, "cancelled")
            return cancelled

        metrics_collector.increment("stock_restorations", restored_lines)
        log_order_event(
            "order_cancelled",
            cancelled.order_number,
            order_id=order_id,
            restored_lines=restored_lines,
            payment_status=cancelled.payment_status,
        )
        return cancelled

    def cancel_for_customer(self, user: User, order_number: str) -> Order:
        """
        Customer-initiated cancel of their own order.

        Raises:
            NotFoundError: no such order for this user
            InvalidTransitionError: the order is past the cancellable stages
        """
        order = get_order_for_user(self.db, user, order_number)
        if order.status == "cancelled":
            return order
        if order.status not in CUSTOMER_CANCELLABLE:
            raise InvalidTransitionError(order.status, "cancelled")
        return self.cancel(order)
