# orders/tests/test_order_creation.py

from datetime import timedelta
from decimal import Decimal

import threading

from django.db import connection
from django.test import TestCase, TransactionTestCase, override_settings, skipUnlessDBFeature
from django.utils import timezone

from cart.models import CartItem
from orders.models import Coupon, Order
from orders.services.exceptions import (
    AddressNotFoundError,
    CodUnavailableError,
    EmptyCartError,
    InsufficientStockError,
    InvalidCouponError,
    ProductUnavailableError,
)
from orders.services.order_creation import create_order
from orders.tests.support import FakeGateway, fill_cart, make_address, make_product, make_user
from payments.services.exceptions import PaymentGatewayError
from products.models import Product, StockMovement
from users.models import UserActivity


class OrderCreationTests(TestCase):
    """
    Order creation tests.

    GUARANTEES:
    - Preconditions fail fast with no side effects
    - Stock is reserved with the order, cart cleared in the same transaction
    - Cash on delivery is confirmed without touching the gateway
    - Gateway failure is compensated (stock, coupon, cart given back)
    """

    def setUp(self):
        self.user = make_user()
        self.address = make_address(self.user, postal_code="712248")
        self.product = make_product("SKU-100", price="100.00", stock=5)
        self.gateway = FakeGateway()

    def _stock(self):
        return Product.objects.get(pk=self.product.pk).stock

    # --------------------------------------------------
    # cash on delivery
    # --------------------------------------------------

    def test_cash_on_delivery_scenario(self):
        fill_cart(self.user, (self.product, 2))

        result = create_order(
            user=self.user,
            shipping_address_id=self.address.id,
            payment_method=Order.PAYMENT_COD,
            gateway=self.gateway,
        )
        order = Order.objects.get(pk=result.order.pk)

        self.assertFalse(result.payment_required)
        self.assertIsNone(result.payment)
        self.assertEqual(self._stock(), 3)
        self.assertEqual(order.subtotal_amount, Decimal("200.00"))
        self.assertEqual(order.tax_amount, Decimal("36.00"))
        self.assertEqual(order.shipping_amount, Decimal("99.00"))
        self.assertEqual(order.total_amount, Decimal("335.00"))
        self.assertEqual(order.status, Order.STATUS_CONFIRMED)
        self.assertEqual(order.payment_status, Order.PAYMENT_STATUS_PENDING)
        self.assertEqual(order.gateway_payment_id, f"COD-{order.order_no}")
        self.assertIsNotNone(order.confirmed_at)
        self.assertFalse(CartItem.objects.filter(cart__user=self.user).exists())
        self.assertEqual(self.gateway.intents, [])

    def test_order_lines_snapshot_catalogue(self):
        fill_cart(self.user, (self.product, 2))
        result = create_order(
            user=self.user,
            shipping_address_id=self.address.id,
            payment_method=Order.PAYMENT_COD,
        )

        item = result.order.items.get()
        self.assertEqual(item.product_name, self.product.name)
        self.assertEqual(item.sku, "SKU-100")
        self.assertEqual(item.unit_price, Decimal("100.00"))
        self.assertEqual(item.line_total, Decimal("200.00"))
        self.assertEqual(result.order.shipping_address["postal_code"], "712248")
        self.assertEqual(result.order.billing_address, result.order.shipping_address)
        self.assertEqual(
            StockMovement.objects.filter(order=result.order, reason=StockMovement.Reason.RESERVE).count(),
            1,
        )

    def test_free_shipping_above_threshold(self):
        fill_cart(self.user, (self.product, 5))
        self.product.unit_price = Decimal("250.00")
        self.product.save(update_fields=["unit_price"])

        result = create_order(
            user=self.user,
            shipping_address_id=self.address.id,
            payment_method=Order.PAYMENT_COD,
        )
        self.assertEqual(result.order.shipping_amount, Decimal("0.00"))
        self.assertEqual(result.order.total_amount, Decimal("1475.00"))

    def test_purchase_activity_logged_after_commit(self):
        fill_cart(self.user, (self.product, 1))

        with self.captureOnCommitCallbacks(execute=True):
            create_order(
                user=self.user,
                shipping_address_id=self.address.id,
                payment_method=Order.PAYMENT_COD,
            )

        activity = UserActivity.objects.get(user=self.user)
        self.assertEqual(activity.activity_type, UserActivity.ActivityType.PURCHASE)
        self.assertEqual(activity.metadata["product_ids"], [str(self.product.id)])

    # --------------------------------------------------
    # gateway methods
    # --------------------------------------------------

    def test_gateway_happy_path_returns_client_parameters(self):
        fill_cart(self.user, (self.product, 2))

        result = create_order(
            user=self.user,
            shipping_address_id=self.address.id,
            payment_method=Order.PAYMENT_UPI,
            payment_data={"vpa": "asha@upi"},
            gateway=self.gateway,
        )
        order = Order.objects.get(pk=result.order.pk)

        self.assertTrue(result.payment_required)
        self.assertEqual(
            result.payment,
            {
                "key_id": "rzp_test_key",
                "gateway_order_id": "order_fake0001",
                "amount": 33500,
                "currency": "INR",
                "order_no": order.order_no,
            },
        )
        self.assertEqual(order.status, Order.STATUS_PENDING)
        self.assertEqual(order.gateway_order_id, "order_fake0001")
        self.assertEqual(order.gateway_payment_id, "")
        self.assertEqual(self._stock(), 3)
        self.assertEqual(self.gateway.intents[0]["receipt_ref"], order.order_no)
        self.assertEqual(self.gateway.intents[0]["notes"]["client_vpa"], "asha@upi")

    def test_gateway_failure_is_compensated(self):
        coupon = Coupon.objects.create(
            code="WELCOME",
            discount_type=Coupon.TYPE_FIXED,
            discount_value=Decimal("20.00"),
            expiry_date=timezone.now() + timedelta(days=1),
        )
        fill_cart(self.user, (self.product, 2))

        with self.assertRaises(PaymentGatewayError) as ctx:
            create_order(
                user=self.user,
                shipping_address_id=self.address.id,
                payment_method=Order.PAYMENT_CREDIT_CARD,
                coupon_code="welcome",
                gateway=FakeGateway(fail_intent=True),
            )

        self.assertEqual(ctx.exception.code, "PAYMENT_GATEWAY_UNAVAILABLE")
        self.assertEqual(ctx.exception.http_status, 502)

        order = Order.objects.get()
        self.assertEqual(order.status, Order.STATUS_CANCELLED)
        self.assertEqual(order.payment_status, Order.PAYMENT_STATUS_FAILED)
        self.assertEqual(order.payment_failure_reason, "payment gateway unavailable")
        self.assertIsNotNone(order.stock_released_at)
        self.assertEqual(self._stock(), 5)
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 0)
        self.assertEqual(
            CartItem.objects.get(cart__user=self.user, product=self.product).quantity, 2
        )

    def test_unexpected_gateway_error_is_compensated_and_reraised(self):
        class CrashingGateway(FakeGateway):
            def create_intent(self, *args, **kwargs):
                raise RuntimeError("malformed gateway response")

        fill_cart(self.user, (self.product, 2))

        with self.assertRaises(RuntimeError):
            create_order(
                user=self.user,
                shipping_address_id=self.address.id,
                payment_method=Order.PAYMENT_UPI,
                gateway=CrashingGateway(),
            )

        order = Order.objects.get()
        self.assertEqual(order.status, Order.STATUS_CANCELLED)
        self.assertEqual(order.payment_status, Order.PAYMENT_STATUS_FAILED)
        self.assertEqual(self._stock(), 5)
        self.assertEqual(
            CartItem.objects.get(cart__user=self.user, product=self.product).quantity, 2
        )

    # --------------------------------------------------
    # preconditions
    # --------------------------------------------------

    def test_empty_cart(self):
        with self.assertRaises(EmptyCartError):
            create_order(user=self.user, shipping_address_id=self.address.id, payment_method="upi")
        self.assertFalse(Order.objects.exists())

    def test_address_must_belong_to_user(self):
        stranger = make_user("stranger@example.com")
        foreign = make_address(stranger)
        fill_cart(self.user, (self.product, 1))

        with self.assertRaises(AddressNotFoundError):
            create_order(user=self.user, shipping_address_id=foreign.id, payment_method="upi")
        self.assertEqual(self._stock(), 5)

    def test_cod_restricted_to_allowed_postal_codes(self):
        remote = make_address(self.user, postal_code="999999")
        fill_cart(self.user, (self.product, 1))

        with self.assertRaises(CodUnavailableError):
            create_order(
                user=self.user,
                shipping_address_id=remote.id,
                payment_method=Order.PAYMENT_COD,
            )
        self.assertFalse(Order.objects.exists())

    @override_settings(
        ORDERS={
            "TAX_RATE": "0.18",
            "SHIPPING_FEE": "99.00",
            "FREE_SHIPPING_THRESHOLD": "999.00",
            "COD_ALLOWED_POSTAL_CODES": ["999999"],
            "PENDING_ORDER_TTL_MINUTES": 60,
        }
    )
    def test_cod_allow_list_comes_from_settings(self):
        remote = make_address(self.user, postal_code="999999")
        fill_cart(self.user, (self.product, 1))

        result = create_order(
            user=self.user,
            shipping_address_id=remote.id,
            payment_method=Order.PAYMENT_COD,
        )
        self.assertEqual(result.order.status, Order.STATUS_CONFIRMED)

    def test_insufficient_stock_has_no_side_effects(self):
        fill_cart(self.user, (self.product, 6))

        with self.assertRaises(InsufficientStockError) as ctx:
            create_order(
                user=self.user,
                shipping_address_id=self.address.id,
                payment_method=Order.PAYMENT_COD,
            )

        self.assertEqual(ctx.exception.code, "INSUFFICIENT_STOCK")
        self.assertFalse(Order.objects.exists())
        self.assertEqual(self._stock(), 5)
        self.assertTrue(CartItem.objects.filter(cart__user=self.user).exists())

    def test_inactive_product(self):
        fill_cart(self.user, (self.product, 1))
        Product.objects.filter(pk=self.product.pk).update(is_active=False)

        with self.assertRaises(ProductUnavailableError):
            create_order(
                user=self.user,
                shipping_address_id=self.address.id,
                payment_method=Order.PAYMENT_COD,
            )

    def test_invalid_coupon_rolls_back(self):
        fill_cart(self.user, (self.product, 1))

        with self.assertRaises(InvalidCouponError):
            create_order(
                user=self.user,
                shipping_address_id=self.address.id,
                payment_method=Order.PAYMENT_COD,
                coupon_code="NOPE",
            )
        self.assertFalse(Order.objects.exists())
        self.assertEqual(self._stock(), 5)

    def test_coupon_discount_and_usage(self):
        coupon = Coupon.objects.create(
            code="TENOFF",
            discount_type=Coupon.TYPE_PERCENTAGE,
            discount_value=Decimal("10.00"),
            expiry_date=timezone.now() + timedelta(days=1),
            usage_limit=1,
        )
        fill_cart(self.user, (self.product, 2))

        result = create_order(
            user=self.user,
            shipping_address_id=self.address.id,
            payment_method=Order.PAYMENT_COD,
            coupon_code="tenoff",
        )

        order = result.order
        self.assertEqual(order.coupon_code, "TENOFF")
        self.assertEqual(order.discount_amount, Decimal("20.00"))
        self.assertEqual(order.total_amount, Decimal("315.00"))
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 1)

    def test_last_unit_has_exactly_one_winner(self):
        rival = make_user("rival@example.com")
        rival_address = make_address(rival)
        last = make_product("LAST", price="500.00", stock=1)
        fill_cart(self.user, (last, 1))
        fill_cart(rival, (last, 1))

        create_order(user=self.user, shipping_address_id=self.address.id, payment_method=Order.PAYMENT_COD)

        with self.assertRaises(InsufficientStockError):
            create_order(user=rival, shipping_address_id=rival_address.id, payment_method=Order.PAYMENT_COD)

        self.assertEqual(Product.objects.get(pk=last.pk).stock, 0)
        self.assertEqual(Order.objects.count(), 1)


@skipUnlessDBFeature("has_select_for_update")
class ConcurrentOrderCreationTests(TransactionTestCase):
    """
    Two buyers race for the last unit on real connections.
    Needs a database with row locks (set TEST_DATABASE_URL).
    """

    def test_last_unit_is_sold_once_under_concurrency(self):
        last = make_product("LAST-RACE", price="500.00", stock=1)
        buyers = []
        for email in ("first@example.com", "second@example.com"):
            user = make_user(email)
            address = make_address(user)
            fill_cart(user, (last, 1))
            buyers.append((user, address))

        barrier = threading.Barrier(len(buyers))
        outcomes = []
        lock = threading.Lock()

        def buy(user, address):
            try:
                barrier.wait()
                create_order(user=user, shipping_address_id=address.id, payment_method=Order.PAYMENT_COD)
                result = "ok"
            except InsufficientStockError:
                result = "out of stock"
            finally:
                connection.close()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=buy, args=buyer) for buyer in buyers]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(outcomes), ["ok", "out of stock"])
        self.assertEqual(Product.objects.get(pk=last.pk).stock, 0)
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(StockMovement.objects.filter(product=last).count(), 1)
