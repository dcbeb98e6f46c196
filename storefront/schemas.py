"""
Pydantic v2 schemas for request/response validation.

Wire names are camelCase (the storefront client's convention); Python
attributes stay snake_case. Request schemas use extra="forbid".
"""

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class RequestModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        str_strip_whitespace=True,
    )


#
# Request Schemas
#

class CartLine(RequestModel):
    """
    One cart line as sent by the client.
    Only ids and quantities are accepted; prices are always resolved server-side.
    """
    product_id: str = Field(..., min_length=1, description="Product identifier")
    quantity: int = Field(..., ge=1, description="Units requested")
    size_id: Optional[str] = Field(None, description="Product size identifier, when the product has sizes")
    size_name: Optional[str] = Field(None, description="Display label sent by the client; the stored label comes from the size row")


REQUIRED_ADDRESS_FIELDS = ("full_name", "phone", "street", "city", "postal_code", "country")


class ShippingAddressInput(RequestModel):
    """
    Shipping address for one order. Every field except state and email is
    required; they are optional here so a missing field is reported by name.
    The checkout form sends the contact email alongside the address; it is
    accepted but not stored on the address.
    """
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    def missing_fields(self) -> List[str]:
        return [name for name in REQUIRED_ADDRESS_FIELDS if not getattr(self, name)]


class CreateOrderRequest(RequestModel):
    """Place an order for the cart and open a payment on the gateway."""
    items: List[CartLine] = Field(default_factory=list)
    shipping_address: Optional[ShippingAddressInput] = None


class VerifyPaymentRequest(RequestModel):
    """Gateway checkout callback relayed by the client."""
    remote_order_id: str = Field(..., validation_alias=AliasChoices("razorpayOrderId", "remoteOrderId", "remote_order_id"))
    remote_payment_id: str = Field(..., validation_alias=AliasChoices("razorpayPaymentId", "remotePaymentId", "remote_payment_id"))
    signature: str = Field(..., validation_alias=AliasChoices("razorpaySignature", "signature"))


class OrderStatusUpdateRequest(RequestModel):
    """Admin status change."""
    status: str = Field(..., min_length=1)


class ValidateProductsRequest(RequestModel):
    product_ids: List[str] = Field(default_factory=list)


#
# Response Schemas
#

class CreateOrderResponse(CamelModel):
    order_id: str = Field(..., description="Gateway order id (also the local order number)")
    amount: int = Field(..., description="Amount in minor currency units")
    currency: str
    db_order_id: str


class VerifiedOrder(CamelModel):
    id: str
    order_number: str
    total: float


class VerifyPaymentResponse(CamelModel):
    success: bool
    order: VerifiedOrder


class AddressData(CamelModel):
    id: str
    full_name: str
    phone: str
    street: str
    city: str
    state: str
    postal_code: str
    country: str


class OrderItemData(CamelModel):
    id: str
    product_id: Optional[str] = None
    product_name: str
    product_image: str
    size_id: Optional[str] = None
    size_name: Optional[str] = None
    quantity: int
    price: float


class OrderData(CamelModel):
    id: str
    order_number: str
    user_id: str
    status: str
    payment_status: str
    payment_method: str
    subtotal: float
    tax: float
    shipping: float
    total: float
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemData] = Field(default_factory=list)
    shipping_address: Optional[AddressData] = None


class ValidateProductsResponse(CamelModel):
    valid_product_ids: List[str]


class ErrorResponse(BaseModel):
    error: str
    code: str
