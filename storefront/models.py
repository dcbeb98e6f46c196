"""
SQLAlchemy database models.
These are the authoritative source of truth for the order core.

Postgres is authoritative for:
- Products (price, discount, aggregate stock)
- Product sizes (per-variant stock)
- Orders, order items and the shipping address captured for each order
"""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from storefront.database import Base


ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")


def _new_id() -> str:
    return uuid.uuid4().hex


def _sql_list(values) -> str:
    return ", ".join(f"'{v}'" for v in values)


class User(Base):
    """
    Local mirror of an identity-provider user.
    Created on first authenticated request; external_id is the provider's subject.
    """
    __tablename__ = "users"

    id = Column(String(50), primary_key=True, default=_new_id)
    external_id = Column(String(255), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, default="")
    name = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    orders = relationship("Order", back_populates="user")


class Product(Base):
    """
    Catalog item. The order core only ever mutates `stock`.
    When a product has sizes, `stock` is the denormalized sum of their quantities.
    """
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),)

    id = Column(String(50), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(5, 2), nullable=False, default=0)  # percent off
    stock = Column(Integer, nullable=False, default=0)
    images = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    sizes = relationship("ProductSize", back_populates="product", cascade="all, delete-orphan", passive_deletes=True)


class ProductSize(Base):
    """
    A size/option of a product carrying its own stock count.
    """
    __tablename__ = "product_sizes"
    __table_args__ = (CheckConstraint("quantity >= 0", name="ck_product_sizes_quantity_non_negative"),)

    id = Column(String(50), primary_key=True, default=_new_id)
    product_id = Column(String(50), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    size = Column(String(50), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="sizes")


class Address(Base):
    """
    Shipping address snapshot. A fresh row is written for every order and never edited.
    """
    __tablename__ = "addresses"

    id = Column(String(50), primary_key=True, default=_new_id)
    user_id = Column(String(50), ForeignKey("users.id"), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=False)
    street = Column(Text, nullable=False)
    city = Column(String(120), nullable=False)
    state = Column(String(120), nullable=False, default="")
    postal_code = Column(String(20), nullable=False)
    country = Column(String(80), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Order(Base):
    """
    Order aggregate.
    order_number is the payment gateway's order id and the correlation key for verification.
    Money columns are captured at creation and never recomputed.
    """
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(f"status IN ({_sql_list(ORDER_STATUSES)})", name="ck_orders_status"),
        CheckConstraint(f"payment_status IN ({_sql_list(PAYMENT_STATUSES)})", name="ck_orders_payment_status"),
    )

    id = Column(String(50), primary_key=True, default=_new_id)
    order_number = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(String(50), ForeignKey("users.id"), nullable=False, index=True)

    # Order status: pending, confirmed, processing, shipped, delivered, cancelled
    status = Column(String(20), nullable=False, default="pending", index=True)
    # Payment status: pending, completed, failed, refunded
    payment_status = Column(String(20), nullable=False, default="pending")
    payment_method = Column(String(30), nullable=False, default="razorpay")

    subtotal = Column(Numeric(12, 2), nullable=False)
    tax = Column(Numeric(12, 2), nullable=False)
    shipping = Column(Numeric(12, 2), nullable=False)
    total = Column(Numeric(12, 2), nullable=False)

    shipping_address_id = Column(String(50), ForeignKey("addresses.id"), nullable=False, unique=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="orders")
    shipping_address = relationship("Address")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    """
    Immutable order line. Name and image are copied so the line survives product deletion.
    """
    __tablename__ = "order_items"

    id = Column(String(50), primary_key=True, default=_new_id)
    order_id = Column(String(50), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(50), ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    product_name = Column(String(255), nullable=False)
    product_image = Column(Text, nullable=False, default="")
    size_id = Column(String(50), ForeignKey("product_sizes.id", ondelete="SET NULL"), nullable=True)
    size_name = Column(String(50), nullable=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)  # unit price charged, after discount

    order = relationship("Order", back_populates="items")
