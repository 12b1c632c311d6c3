"""
Order pipeline — checkout, payment reconciliation and delivery tracking.

An order moves along two independent tracks:

* payment: ``pending -> paid`` with order status ``pending -> confirmed``.
  Cash-on-delivery orders start out paid/confirmed; gateway orders wait
  for a signed payment callback.
* delivery: ``pending -> processing -> shipped -> delivered``, set by
  admins.  Any of the four values may be set at any time.

Checkout charges the product's list price.  The product ``discount`` is
shown in the catalog only and is not applied here.
"""

import logging
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List

from catalog import money
from database import Storage
from errors import NotFoundError, ValidationError
from payments import PaymentGateway, timestamp_ref
from schemas import DeliveryUpdate, OrderCreate, PaymentVerification

logger = logging.getLogger(__name__)

CASH_ON_DELIVERY = "cod"
DELIVERY_DAYS = 6


def to_minor_units(amount: Decimal) -> int:
    """Decimal currency amount -> integer minor units (paise), rounded half up."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class OrderPipeline:
    def __init__(self, storage: Storage, gateway: PaymentGateway, currency: str = "INR",
                 today: Callable[[], date] = date.today):
        self.storage = storage
        self.gateway = gateway
        self.currency = currency
        self.today = today

    def create_order(self, caller: dict, payload: OrderCreate) -> dict:
        product = self.storage.get_product(payload.product_id)
        if product is None:
            raise NotFoundError("Product not found")

        unit_price = Decimal(product["price"])
        amount = unit_price * payload.quantity
        amount_minor = to_minor_units(amount)

        if payload.payment_method == CASH_ON_DELIVERY:
            gateway_ref = timestamp_ref("cod")
            payment_status, status = "paid", "confirmed"
        else:
            # raises UpstreamError before anything is stored
            gateway_ref = self.gateway.create_transaction(
                amount_minor, self.currency, receipt=timestamp_ref("receipt")
            )
            payment_status, status = "pending", "pending"

        estimated = self.today() + timedelta(days=DELIVERY_DAYS)
        order = self.storage.create_order_with_item(
            {
                "user_id": caller["id"],
                "total_amount": money(amount),
                "status": status,
                "gateway_order_ref": gateway_ref,
                "gateway_payment_ref": None,
                "payment_status": payment_status,
                "shipping_address": payload.shipping_address,
                "city": payload.city,
                "state": payload.state,
                "zip_code": payload.zip_code,
                "phone": payload.phone,
                "delivery_status": "pending",
                "estimated_delivery": estimated.isoformat(),
                "tracking_number": None,
            },
            {
                "product_id": product["id"],
                "quantity": payload.quantity,
                "price": money(unit_price),
            },
        )
        logger.info(
            "Order %s created",
            order["id"],
            extra={"user_id": caller["id"], "extra": {"payment_method": payload.payment_method,
                                                      "amount": order["total_amount"]}},
        )
        return {
            "order_id": order["id"],
            "gateway_order_ref": gateway_ref,
            "amount": amount_minor,
            "currency": self.currency,
            "key": self.gateway.key_id,
        }

    def verify_payment(self, payload: PaymentVerification) -> dict:
        if not self.gateway.verify_callback(
            payload.gateway_order_ref, payload.gateway_payment_ref, payload.signature
        ):
            logger.warning("Rejected payment callback for %s: bad signature", payload.gateway_order_ref)
            raise ValidationError("Invalid payment signature", field="signature")

        order = self.storage.get_order_by_gateway_ref(payload.gateway_order_ref)
        if order is None:
            raise NotFoundError("Order not found")
        if order["payment_status"] != "paid":
            self.storage.update_order_payment(payload.gateway_order_ref, payload.gateway_payment_ref)
            logger.info("Order %s paid", order["id"], extra={"user_id": order.get("user_id")})
        return {"status": "success"}

    def list_orders_for_user(self, caller: dict) -> List[dict]:
        return self.storage.get_user_orders(caller["id"])

    def list_all_orders(self, caller: dict) -> List[dict]:
        """Every order, newest first. ``caller`` must already be an admin."""
        return self.storage.get_all_orders()

    def get_order(self, caller: dict, order_id: int) -> dict:
        order = self.storage.get_order(order_id)
        # someone else's order is reported as missing
        if order is None or order.get("user_id") != caller["id"]:
            raise NotFoundError("Order not found")
        order["items"] = self.storage.get_order_items(order_id)
        return order

    def update_delivery(self, caller: dict, order_id: int, payload: DeliveryUpdate) -> dict:
        updates = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
        order = self.storage.update_order_delivery(order_id, updates)
        if order is None:
            raise NotFoundError("Order not found")
        logger.info("Order %s delivery updated", order_id,
                    extra={"user_id": caller["id"], "extra": updates})
        return order
