"""
Storefront order endpoints.

Customer:
- POST /api/payments/create-order   place an order and open a gateway payment
- POST /api/payments/verify         confirm payment from the gateway callback
- GET  /api/orders                  caller's orders
- GET  /api/orders/{order_number}   one of the caller's orders
- POST /api/orders/{order_number}/cancel
- POST /api/products/validate       which cart product ids still exist

Admin (X-Admin-API-Key):
- GET   /api/admin/orders
- GET   /api/admin/orders/{order_id}
- PATCH /api/admin/orders/{order_id}   status change; cancelling restores stock
- GET   /api/admin/metrics
"""

import traceback
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.auth import get_current_user, verify_admin_api_key
from storefront.config import get_config
from storefront.database import get_db
from storefront.errors import StorefrontError, ValidationError
from storefront.metrics import metrics_collector
from storefront.models import ORDER_STATUSES, Product, User
from storefront.orders import OrderPlacementService, get_order, get_order_for_user, list_orders, list_orders_for_user
from storefront.payment_gateway import RazorpayClient
from storefront.reconciliation import ReconciliationService
from storefront.schemas import (
    CreateOrderRequest, CreateOrderResponse,
    OrderData, OrderStatusUpdateRequest,
    ErrorResponse, ValidateProductsRequest, ValidateProductsResponse,
    VerifiedOrder, VerifyPaymentRequest, VerifyPaymentResponse,
)
from storefront.structured_logger import log_error

router = APIRouter(prefix="/api", tags=["orders"])
admin_router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(verify_admin_api_key)],
)


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid input, out of stock or bad signature"},
    401: {"model": ErrorResponse, "description": "Missing or invalid credentials"},
    404: {"model": ErrorResponse, "description": "Unknown product, size or order"},
    409: {"model": ErrorResponse, "description": "Status change not allowed"},
    500: {"model": ErrorResponse, "description": "Gateway failure or transaction timeout"},
}


def get_payment_gateway() -> RazorpayClient:
    """Dependency: gateway client built from current config (overridden in tests)."""
    return RazorpayClient.from_config(get_config())


# ============================================================================
# Checkout
# ============================================================================

@router.post(
    "/payments/create-order", response_model=CreateOrderResponse, status_code=201, responses=ERROR_RESPONSES
)
async def create_order(
    request: CreateOrderRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_payment_gateway),
):
    """
    Price the cart server-side, create the gateway order, then reserve stock
    and record the pending order in one transaction.

    Stock failures answer 400 with "Insufficient stock" in the message so the
    client can refresh availability instead of retrying blindly.
    """
    service = OrderPlacementService(db, gateway)
    try:
        placed = await service.place_order(user, request.items, request.shipping_address)
    except StorefrontError:
        raise
    except Exception as e:
        log_error(type(e).__name__, str(e), stack_trace=traceback.format_exc())
        raise StorefrontError("Failed to create order. Please try again.") from e

    return CreateOrderResponse(
        order_id=placed.remote_order_id,
        amount=placed.amount,
        currency=placed.currency,
        db_order_id=placed.db_order_id,
    )


@router.post("/payments/verify", response_model=VerifyPaymentResponse, responses=ERROR_RESPONSES)
def verify_payment(
    request: VerifyPaymentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_payment_gateway),
):
    """Confirm a payment. Only a valid gateway signature can mark an order paid."""
    service = ReconciliationService(db, gateway)
    order = service.verify_payment(request.remote_order_id, request.remote_payment_id, request.signature)
    return VerifyPaymentResponse(
        success=True,
        order=VerifiedOrder(id=order.id, order_number=order.order_number, total=order.total),
    )


# ============================================================================
# Customer orders
# ============================================================================

@router.get("/orders", response_model=List[OrderData])
def my_orders(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [OrderData.model_validate(order) for order in list_orders_for_user(db, user)]


@router.get("/orders/{order_number}", response_model=OrderData)
def my_order(order_number: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return OrderData.model_validate(get_order_for_user(db, user, order_number))


@router.post("/orders/{order_number}/cancel", response_model=OrderData, responses=ERROR_RESPONSES)
def cancel_my_order(order_number: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = ReconciliationService(db).cancel_for_customer(user, order_number)
    return OrderData.model_validate(order)


@router.post("/products/validate", response_model=ValidateProductsResponse)
def validate_products(request: ValidateProductsRequest, db: Session = Depends(get_db)):
    """Return the subset of product ids that still exist, so stale cart lines can be dropped."""
    if not request.product_ids:
        return ValidateProductsResponse(valid_product_ids=[])
    existing = set(db.execute(select(Product.id).where(Product.id.in_(request.product_ids))).scalars().all())
    return ValidateProductsResponse(valid_product_ids=[pid for pid in request.product_ids if pid in existing])


# ============================================================================
# Admin
# ============================================================================

@admin_router.get("/orders", response_model=List[OrderData])
def admin_list_orders(status: Optional[str] = None, limit: int = 100, db: Session = Depends(get_db)):
    if status and status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    return [OrderData.model_validate(order) for order in list_orders(db, status=status, limit=min(limit, 500))]


@admin_router.get("/orders/{order_id}", response_model=OrderData)
def admin_get_order(order_id: str, db: Session = Depends(get_db)):
    return OrderData.model_validate(get_order(db, order_id))


@admin_router.patch("/orders/{order_id}", response_model=OrderData, responses=ERROR_RESPONSES)
def admin_update_order_status(order_id: str, request: OrderStatusUpdateRequest, db: Session = Depends(get_db)):
    """Change an order's status. Moving into 'cancelled' restores its stock once."""
    order = ReconciliationService(db).update_status(order_id, request.status)
    return OrderData.model_validate(order)


@admin_router.get("/metrics")
def admin_metrics():
    """Latency percentiles, error rates and order lifecycle counters."""
    return metrics_collector.get_summary()
