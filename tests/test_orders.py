from datetime import date, timedelta
from unittest import mock

from pymongo.errors import PyMongoError

from errors import InternalError, UpstreamError
from payments import MockPaymentGateway, compute_signature
from storetest import GATEWAY_SECRET, StoreTestCase

SHIPPING = {
    "shippingAddress": "12 Dairy Road",
    "city": "Anand",
    "state": "Gujarat",
    "zipCode": "388001",
    "phone": "9876543210",
}


class OrderTestCase(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.admin = self.admin_client()
        self.product = self.create_product(admin=self.admin, price="500.00", discount=20)
        self.register("ram", "secret1")

    def place(self, quantity=3, payment_method="cod", client=None, **extra):
        client = client or self.client
        body = {"productId": self.product["id"], "quantity": quantity,
                "paymentMethod": payment_method, **SHIPPING, **extra}
        return client.post("/api/orders", json=body)


class TestCashOnDelivery(OrderTestCase):

    def test_cod_order_is_paid_and_confirmed(self):
        with mock.patch.object(self.gateway, "create_transaction") as create_transaction:
            resp = self.place(quantity=3, payment_method="cod")
        self.assertEqual(resp.status_code, 201, resp.text)
        create_transaction.assert_not_called()
        created = resp.json()
        self.assertEqual(created["amount"], 150000)
        self.assertEqual(created["currency"], "INR")
        self.assertEqual(created["key"], "mock_key")
        self.assertTrue(created["gatewayOrderRef"].startswith("cod_"))

        order = self.client.get(f"/api/orders/{created['orderId']}").json()
        self.assertEqual(order["totalAmount"], "1500.00")
        self.assertEqual(order["status"], "confirmed")
        self.assertEqual(order["paymentStatus"], "paid")
        self.assertEqual(order["deliveryStatus"], "pending")
        self.assertEqual(order["city"], "Anand")
        self.assertEqual(len(order["items"]), 1)
        item = order["items"][0]
        self.assertEqual(item["quantity"], 3)
        self.assertEqual(item["price"], "500.00")
        self.assertEqual(item["productId"], self.product["id"])

    def test_discount_is_not_applied_at_checkout(self):
        resp = self.place(quantity=1)
        order = self.client.get(f"/api/orders/{resp.json()['orderId']}").json()
        self.assertEqual(self.product["discount"], 20)
        self.assertEqual(order["totalAmount"], "500.00")

    def test_estimated_delivery_is_six_days_out(self):
        resp = self.place()
        order = self.client.get(f"/api/orders/{resp.json()['orderId']}").json()
        self.assertEqual(order["estimatedDelivery"], (date.today() + timedelta(days=6)).isoformat())

    def test_item_price_is_a_snapshot(self):
        resp = self.place(quantity=2)
        self.admin.put(f"/api/products/{self.product['id']}", json={"price": "900.00"})
        order = self.client.get(f"/api/orders/{resp.json()['orderId']}").json()
        self.assertEqual(order["items"][0]["price"], "500.00")
        self.assertEqual(order["totalAmount"], "1000.00")

    def test_fractional_amount_rounds_to_minor_units(self):
        cheap = self.create_product(admin=self.admin, price="0.99")
        resp = self.client.post("/api/orders", json={"productId": cheap["id"], "quantity": 3,
                                                     "paymentMethod": "cod"})
        self.assertEqual(resp.json()["amount"], 297)


class TestGatewayOrders(OrderTestCase):

    def test_gateway_order_starts_pending(self):
        resp = self.place(quantity=2, payment_method="gateway")
        self.assertEqual(resp.status_code, 201)
        created = resp.json()
        self.assertTrue(created["gatewayOrderRef"].startswith("mock_order_"))
        order = self.client.get(f"/api/orders/{created['orderId']}").json()
        self.assertEqual(order["paymentStatus"], "pending")
        self.assertEqual(order["status"], "pending")

    def test_valid_signature_marks_order_paid(self):
        created = self.place(payment_method="gateway").json()
        ref = created["gatewayOrderRef"]
        resp = self.new_client().post("/api/orders/verify", json={
            "gatewayOrderRef": ref,
            "gatewayPaymentRef": "pay_123",
            "signature": self.sign(ref, "pay_123"),
        })
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "success"})
        order = self.client.get(f"/api/orders/{created['orderId']}").json()
        self.assertEqual(order["paymentStatus"], "paid")
        self.assertEqual(order["status"], "confirmed")
        self.assertEqual(order["gatewayPaymentRef"], "pay_123")

    def test_razorpay_field_names_accepted(self):
        created = self.place(payment_method="razorpay").json()
        ref = created["gatewayOrderRef"]
        resp = self.client.post("/api/orders/verify", json={
            "razorpay_order_id": ref,
            "razorpay_payment_id": "pay_9",
            "razorpay_signature": self.sign(ref, "pay_9"),
        })
        self.assertEqual(resp.status_code, 200)

    def test_invalid_signature_leaves_order_untouched(self):
        created = self.place(payment_method="gateway").json()
        ref = created["gatewayOrderRef"]
        before = self.db["orders"].find_one({"_id": created["orderId"]})
        resp = self.client.post("/api/orders/verify", json={
            "gatewayOrderRef": ref,
            "gatewayPaymentRef": "pay_123",
            "signature": self.sign(ref, "pay_other"),
        })
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["message"], "Invalid payment signature")
        after = self.db["orders"].find_one({"_id": created["orderId"]})
        self.assertEqual(before, after)

    def test_verify_unknown_order(self):
        resp = self.client.post("/api/orders/verify", json={
            "gatewayOrderRef": "order_missing",
            "gatewayPaymentRef": "pay_1",
            "signature": self.sign("order_missing", "pay_1"),
        })
        self.assertEqual(resp.status_code, 404)

    def test_verify_requires_all_fields(self):
        resp = self.client.post("/api/orders/verify", json={"gatewayOrderRef": "x"})
        self.assertEqual(resp.status_code, 400)

    def test_gateway_failure_persists_nothing(self):
        with mock.patch.object(self.gateway, "create_transaction",
                               side_effect=UpstreamError("Payment initialization failed")):
            resp = self.place(payment_method="gateway")
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json(), {"message": "Payment initialization failed"})
        self.assertEqual(self.db["orders"].count_documents({}), 0)
        self.assertEqual(self.db["order_items"].count_documents({}), 0)

    def test_gateway_receives_minor_units(self):
        with mock.patch.object(self.gateway, "create_transaction",
                               return_value="order_abc") as create_transaction:
            resp = self.place(quantity=3, payment_method="gateway")
        self.assertEqual(resp.json()["gatewayOrderRef"], "order_abc")
        args, kwargs = create_transaction.call_args
        self.assertEqual(args[:2], (150000, "INR"))


class TestOrderAccess(OrderTestCase):

    def test_order_requires_login(self):
        anon = self.new_client()
        self.assertEqual(self.place(client=anon).status_code, 401)
        self.assertEqual(anon.get("/api/orders").status_code, 401)
        self.assertEqual(anon.get("/api/orders/1").status_code, 401)

    def test_unknown_product(self):
        resp = self.client.post("/api/orders", json={"productId": 9999, "quantity": 1, "paymentMethod": "cod"})
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {"message": "Product not found"})

    def test_invalid_quantity(self):
        resp = self.place(quantity=0)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["field"], "quantity")

    def test_orders_are_private(self):
        mine = self.place().json()
        other = self.new_client()
        self.register("sita", "secret2", client=other)
        theirs = self.place(client=other).json()

        my_ids = [o["id"] for o in self.client.get("/api/orders").json()]
        self.assertEqual(my_ids, [mine["orderId"]])
        resp = self.client.get(f"/api/orders/{theirs['orderId']}")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {"message": "Order not found"})

    def test_deleted_product_leaves_order_history(self):
        created = self.place().json()
        self.assertEqual(self.admin.delete(f"/api/products/{self.product['id']}").status_code, 204)
        order = self.client.get(f"/api/orders/{created['orderId']}").json()
        self.assertEqual(order["items"][0]["productId"], self.product["id"])


class TestDelivery(OrderTestCase):

    def test_admin_updates_delivery(self):
        created = self.place().json()
        resp = self.admin.patch(f"/api/orders/{created['orderId']}/delivery", json={
            "deliveryStatus": "shipped", "trackingNumber": "TRK-1",
        })
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual(body["deliveryStatus"], "shipped")
        self.assertEqual(body["trackingNumber"], "TRK-1")
        self.assertEqual(body["paymentStatus"], "paid")

    def test_delivery_status_can_move_backwards(self):
        created = self.place().json()
        url = f"/api/orders/{created['orderId']}/delivery"
        self.admin.patch(url, json={"deliveryStatus": "delivered"})
        resp = self.admin.patch(url, json={"deliveryStatus": "processing"})
        self.assertEqual(resp.json()["deliveryStatus"], "processing")

    def test_unknown_delivery_status_rejected(self):
        created = self.place().json()
        resp = self.admin.patch(f"/api/orders/{created['orderId']}/delivery", json={"deliveryStatus": "lost"})
        self.assertEqual(resp.status_code, 400)

    def test_missing_order(self):
        resp = self.admin.patch("/api/orders/9999/delivery", json={"deliveryStatus": "shipped"})
        self.assertEqual(resp.status_code, 404)

    def test_customer_cannot_update_delivery(self):
        created = self.place().json()
        resp = self.client.patch(f"/api/orders/{created['orderId']}/delivery", json={"deliveryStatus": "lost"})
        self.assertEqual(resp.status_code, 403)

    def test_admin_sees_all_orders(self):
        self.place()
        other = self.new_client()
        self.register("sita", "secret2", client=other)
        self.place(client=other)
        self.assertEqual(len(self.admin.get("/api/admin/orders").json()), 2)
        self.assertEqual(self.client.get("/api/admin/orders").status_code, 403)


class TestOrderRollback(OrderTestCase):

    def test_item_failure_removes_order(self):
        storage = self.app.state.storage
        original = storage.create_document

        def failing(collection_name, data):
            if collection_name == "order_items":
                raise PyMongoError("disk full")
            return original(collection_name, data)

        with mock.patch.object(storage, "create_document", side_effect=failing):
            with self.assertRaises(InternalError):
                storage.create_order_with_item({"user_id": 1, "total_amount": "1.00"},
                                               {"product_id": 1, "quantity": 1, "price": "1.00"})
        self.assertEqual(self.db["orders"].count_documents({}), 0)


class TestMockGatewaySecret(OrderTestCase):

    def test_signature_from_other_secret_rejected(self):
        created = self.place(payment_method="gateway").json()
        ref = created["gatewayOrderRef"]
        forged = MockPaymentGateway("not-" + GATEWAY_SECRET)
        self.assertFalse(self.gateway.verify_callback(ref, "pay_1", "deadbeef"))
        resp = self.client.post("/api/orders/verify", json={
            "gatewayOrderRef": ref,
            "gatewayPaymentRef": "pay_1",
            "signature": compute_signature(forged.secret, ref, "pay_1"),
        })
        self.assertEqual(resp.status_code, 400)
