"""
Inventory ledger: race-safe stock reservation and restoration.

Every mutation is a single conditional UPDATE per row, so the check and the
decrement happen atomically inside the database (the row lock taken by the
UPDATE serializes concurrent callers). Nothing here commits; callers own the
transaction and a failed reserve is undone by rolling it back.

When a line targets a size, the size row and the parent product's aggregate
`stock` move together so the two views never diverge.
"""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.errors import InsufficientStockError, NotFoundError, ValidationError
from storefront.logger import get_logger
from storefront.models import Product, ProductSize

logger = get_logger("inventory")


class InventoryLedger:
    """Stock primitives bound to one session (one transaction)."""

    def __init__(self, db: Session):
        self.db = db

    def reserve(self, product_id: str, size_id: Optional[str], quantity: int) -> None:
        """
        Decrement available stock for one line.

        Raises:
            ValidationError: quantity is not positive, or no size given for a product that has sizes
            NotFoundError: the product or size row does not exist
            InsufficientStockError: the row holds fewer than `quantity` units
        """
        if quantity <= 0:
            raise ValidationError(f"Quantity must be positive, got {quantity}")

        if not size_id and self._has_sizes(product_id):
            raise ValidationError(f"Size is required for product {product_id}")

        if size_id:
            if not self._decrement_size(product_id, size_id, quantity):
                row = self.db.execute(
                    select(ProductSize.quantity, ProductSize.size, Product.name)
                    .join(Product, Product.id == ProductSize.product_id)
                    .where(ProductSize.id == size_id, ProductSize.product_id == product_id)
                ).first()
                if row is None:
                    raise NotFoundError("Size", size_id)
                raise InsufficientStockError(row.name, row.quantity, row.size)

        if not self._decrement_product(product_id, quantity):
            row = self.db.execute(
                select(Product.stock, Product.name).where(Product.id == product_id)
            ).first()
            if row is None:
                raise NotFoundError("Product", product_id)
            if size_id:
                # Aggregate stock drifted below a size's quantity
                logger.error(f"Aggregate stock for {product_id} is {row.stock}, below size {size_id} reservation of {quantity}")
            raise InsufficientStockError(row.name, row.stock)

        logger.debug(f"Reserved {quantity} of product={product_id} size={size_id}")

    def release(self, product_id: str, size_id: Optional[str], quantity: int) -> bool:
        """
        Increment stock for one line. Never fails for stock reasons.

        Rows that no longer exist (deleted product or size) are skipped.
        Returns True if the product row was restored.
        """
        if quantity <= 0:
            return False

        if size_id:
            restored = self.db.execute(
                update(ProductSize)
                .where(ProductSize.id == size_id, ProductSize.product_id == product_id)
                .values(quantity=ProductSize.quantity + quantity)
                .execution_options(synchronize_session=False)
            ).rowcount
            if not restored:
                logger.warning(f"Size {size_id} of product {product_id} no longer exists, skipping size restore")

        restored = self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        ).rowcount
        if not restored:
            logger.warning(f"Product {product_id} no longer exists, skipping stock restore")
            return False

        logger.debug(f"Released {quantity} of product={product_id} size={size_id}")
        return True

    def available(self, product_id: str, size_id: Optional[str] = None) -> int:
        """Current quantity on hand for a product or one of its sizes."""
        if size_id:
            qty = self.db.execute(
                select(ProductSize.quantity).where(ProductSize.id == size_id, ProductSize.product_id == product_id)
            ).scalar_one_or_none()
            if qty is None:
                raise NotFoundError("Size", size_id)
            return qty

        qty = self.db.execute(select(Product.stock).where(Product.id == product_id)).scalar_one_or_none()
        if qty is None:
            raise NotFoundError("Product", product_id)
        return qty

    def _has_sizes(self, product_id: str) -> bool:
        return self.db.execute(
            select(ProductSize.id).where(ProductSize.product_id == product_id).limit(1)
        ).first() is not None

    def _decrement_size(self, product_id: str, size_id: str, quantity: int) -> bool:
        result = self.db.execute(
            update(ProductSize)
            .where(
                ProductSize.id == size_id,
                ProductSize.product_id == product_id,
                ProductSize.quantity >= quantity,
            )
            .values(quantity=ProductSize.quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _decrement_product(self, product_id: str, quantity: int) -> bool:
        result = self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
