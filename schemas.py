"""
Request and response schemas for the storefront API.

Field names are snake_case in Python and in MongoDB documents; on the
wire they are camelCase (``productId``, ``totalAmount``).  Both spellings
are accepted on input.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    field_validator,
)
from pydantic.alias_generators import to_camel

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
Price = Annotated[Decimal, Field(ge=0, max_digits=10, decimal_places=2)]
Discount = Annotated[int, Field(ge=0, le=100)]


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
OptionalEmail = Annotated[Optional[EmailStr], BeforeValidator(_blank_to_none)]

MAX_PASSWORD_BYTES = 72

DeliveryStatus = Literal["pending", "processing", "shipped", "delivered"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Accounts

class Profile(CamelModel):
    full_name: OptionalText = None
    email: OptionalEmail = None
    phone: OptionalText = None


class RegisterRequest(CamelModel):
    username: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=64)]
    password: str = Field(
        ...,
        min_length=6,
        max_length=72,
        validation_alias=AliasChoices("password", "credential"),
    )
    full_name: OptionalText = None
    email: OptionalEmail = None
    phone: OptionalText = None
    profile: Optional[Profile] = None

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        # bcrypt only hashes the first 72 bytes
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
        return value

    def profile_fields(self) -> dict:
        """Flat profile fields, with a nested ``profile`` object taking precedence."""
        fields = {"full_name": self.full_name, "email": self.email, "phone": self.phone}
        if self.profile is not None:
            for key, value in self.profile.model_dump().items():
                if value is not None:
                    fields[key] = value
        return fields


class LoginRequest(CamelModel):
    username: str
    password: str = Field(..., validation_alias=AliasChoices("password", "credential"))


class UserOut(CamelModel):
    id: int
    username: str
    role: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[datetime] = None


# Catalog

class ProductCreate(CamelModel):
    name: NonEmptyStr
    description: NonEmptyStr
    price: Price
    discount: Optional[Discount] = 0
    image_url: str = "/images/products.png"
    category: Optional[str] = None


class ProductUpdate(CamelModel):
    name: Optional[NonEmptyStr] = None
    description: Optional[NonEmptyStr] = None
    price: Optional[Price] = None
    discount: Optional[Discount] = None
    image_url: Optional[str] = None
    category: Optional[str] = None


class ProductOut(CamelModel):
    id: int
    name: str
    description: str
    price: str
    discount: Optional[int] = None
    image_url: Optional[str] = None
    category: Optional[str] = None
    created_at: Optional[datetime] = None


# Orders

class OrderCreate(CamelModel):
    product_id: int = Field(..., ge=1)
    quantity: int = Field(..., ge=1)
    shipping_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Optional[str] = None
    payment_method: str = "gateway"


class OrderCreated(CamelModel):
    order_id: int
    gateway_order_ref: str
    amount: int = Field(..., description="Amount in currency minor units")
    currency: str
    key: str


class PaymentVerification(CamelModel):
    gateway_order_ref: NonEmptyStr = Field(
        ..., validation_alias=AliasChoices("gatewayOrderRef", "gateway_order_ref", "razorpay_order_id")
    )
    gateway_payment_ref: NonEmptyStr = Field(
        ..., validation_alias=AliasChoices("gatewayPaymentRef", "gateway_payment_ref", "razorpay_payment_id")
    )
    signature: NonEmptyStr = Field(
        ..., validation_alias=AliasChoices("signature", "razorpay_signature")
    )


class DeliveryUpdate(CamelModel):
    delivery_status: Optional[DeliveryStatus] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[str] = None


class OrderItemOut(CamelModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    price: str


class OrderOut(CamelModel):
    id: int
    user_id: Optional[int] = None
    total_amount: str
    status: str
    gateway_order_ref: Optional[str] = None
    gateway_payment_ref: Optional[str] = None
    payment_status: str
    shipping_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Optional[str] = None
    delivery_status: str
    estimated_delivery: Optional[str] = None
    tracking_number: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderDetail(OrderOut):
    items: List[OrderItemOut] = Field(default_factory=list)


# Contact

class ContactCreate(CamelModel):
    name: NonEmptyStr
    email: EmailStr
    phone: Optional[str] = None
    message: NonEmptyStr


class ContactOut(CamelModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    message: str
    created_at: Optional[datetime] = None


class MessageOut(BaseModel):
    message: str


class StatusOut(BaseModel):
    status: str
