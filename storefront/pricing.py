"""
Server-side cart pricing.

Prices and discounts always come from the catalog rows, never from the client.
Amounts are Decimals rounded to the cent:

  unit price   = price * (1 - discount / 100)
  subtotal     = sum(unit price * quantity)
  tax          = subtotal * tax_rate
  shipping     = 0 above the free-shipping threshold, else the flat cost
  total        = subtotal + tax + shipping

The reads here take no locks. Stock is re-checked by the reservation
transaction, so stale availability at this point is harmless.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront.config import StorefrontConfig
from storefront.errors import NotFoundError, ValidationError
from storefront.models import Product

CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to the gateway's minor unit (paise, cents)."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def final_unit_price(price: Decimal, discount: Decimal) -> Decimal:
    """Unit price after the percentage discount."""
    return to_cents(Decimal(price) * (1 - Decimal(discount) / 100))


@dataclass
class PricedLine:
    product_id: str
    product_name: str
    product_image: str
    size_id: Optional[str]
    size_name: Optional[str]
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    lines: List[PricedLine] = field(default_factory=list)

    @property
    def amount_minor(self) -> int:
        return to_minor_units(self.total)


def find_products_by_ids(db: Session, product_ids: Iterable[str]) -> Dict[str, Product]:
    """Batch-load products with their sizes. Missing ids are simply absent from the result."""
    ids = list(set(product_ids))
    if not ids:
        return {}
    products = db.execute(
        select(Product).where(Product.id.in_(ids)).options(selectinload(Product.sizes))
    ).scalars().all()
    return {p.id: p for p in products}


def calculate_totals(lines: List[PricedLine], config: StorefrontConfig) -> OrderTotals:
    subtotal = sum((line.line_total for line in lines), Decimal("0"))
    tax = to_cents(subtotal * config.tax_rate)
    shipping = Decimal("0") if subtotal > config.free_shipping_threshold else to_cents(config.flat_shipping_cost)
    return OrderTotals(
        subtotal=subtotal,
        tax=tax,
        shipping=shipping,
        total=subtotal + tax + shipping,
        lines=lines,
    )


def price_cart(db: Session, items: list, config: StorefrontConfig) -> OrderTotals:
    """
    Price cart lines against the current catalog.

    Args:
        db: Session used for one unlocked batch read
        items: cart lines with product_id, quantity and optional size_id
        config: supplies tax rate and shipping rules

    Raises:
        ValidationError: empty cart, non-positive quantity, or no size chosen
            for a product that has sizes
        NotFoundError: a product, or a size of a product, does not exist
    """
    if not items:
        raise ValidationError("Cart is empty")

    products = find_products_by_ids(db, [item.product_id for item in items])

    lines: List[PricedLine] = []
    for item in items:
        if item.quantity <= 0:
            raise ValidationError(f"Quantity must be positive for product {item.product_id}")

        product = products.get(item.product_id)
        if product is None:
            raise NotFoundError("Product", item.product_id)

        size_name = None
        if item.size_id:
            size = next((s for s in product.sizes if s.id == item.size_id), None)
            if size is None:
                raise NotFoundError("Size", item.size_id)
            size_name = size.size
        elif product.sizes:
            # Sized products are reserved per size so the aggregate stays the sum of its sizes
            raise ValidationError(f"Size is required for {product.name}")

        images = product.images or []
        lines.append(PricedLine(
            product_id=product.id,
            product_name=product.name,
            product_image=images[0] if images else "",
            size_id=item.size_id,
            size_name=size_name,
            quantity=item.quantity,
            unit_price=final_unit_price(product.price, product.discount),
        ))

    return calculate_totals(lines, config)
