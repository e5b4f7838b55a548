# orders/tests/test_cancellation.py

from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from orders.models import Coupon, Order
from orders.services.cancellation import (
    EXPIRY_REASON,
    cancel_order,
    expire_pending_orders,
    release_order_stock,
)
from orders.services.exceptions import InvalidOrderTransitionError, OrderNotFoundError
from orders.services.lifecycle import transition_order
from orders.services.order_creation import create_order
from orders.tests.support import (
    FakeGateway,
    make_address,
    make_product,
    fill_cart,
    make_user,
    mark_paid,
    place_order,
)
from products.models import Product, StockMovement
from users.models import UserActivity


class CancelOrderTests(TestCase):
    """
    GUARANTEES:
    - Customers cancel only their own pending/confirmed orders
    - Reserved stock goes back exactly once
    - Completed gateway payments are refunded after the cancellation commits
    """

    def setUp(self):
        self.user = make_user()
        self.address = make_address(self.user)
        self.product = make_product("SKU-C", price="100.00", stock=5)

    def _stock(self):
        return Product.objects.get(pk=self.product.pk).stock

    def test_cancel_pending_order_releases_stock(self):
        order = place_order(self.user, self.address, (self.product, 2))
        self.assertEqual(self._stock(), 3)

        with self.captureOnCommitCallbacks(execute=True):
            cancelled = cancel_order(user=self.user, order_id=order.id, reason="changed my mind")

        self.assertEqual(cancelled.status, Order.STATUS_CANCELLED)
        self.assertEqual(cancelled.cancellation_reason, "changed my mind")
        self.assertIsNotNone(cancelled.cancelled_at)
        self.assertEqual(self._stock(), 5)
        self.assertEqual(
            UserActivity.objects.filter(user=self.user, activity_type=UserActivity.ActivityType.CANCEL).count(),
            1,
        )

    def test_cancel_returns_coupon_use_once(self):
        coupon = Coupon.objects.create(
            code="WELCOME",
            discount_type=Coupon.TYPE_FIXED,
            discount_value=Decimal("20.00"),
            expiry_date=timezone.now() + timedelta(days=1),
        )
        fill_cart(self.user, (self.product, 1))
        order = create_order(
            user=self.user,
            shipping_address_id=self.address.id,
            payment_method=Order.PAYMENT_COD,
            coupon_code="welcome",
        ).order
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 1)

        cancel_order(user=self.user, order_id=order.id)
        with self.assertRaises(InvalidOrderTransitionError):
            cancel_order(user=self.user, order_id=order.id)

        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 0)

    def test_cancel_twice_is_rejected_without_double_release(self):
        order = place_order(self.user, self.address, (self.product, 2))
        cancel_order(user=self.user, order_id=order.id)

        with self.assertRaises(InvalidOrderTransitionError):
            cancel_order(user=self.user, order_id=order.id)

        self.assertEqual(self._stock(), 5)
        self.assertEqual(
            StockMovement.objects.filter(order=order, reason=StockMovement.Reason.RELEASE).count(),
            1,
        )

    def test_cannot_cancel_someone_elses_order(self):
        order = place_order(self.user, self.address, (self.product, 1))
        stranger = make_user("stranger@example.com")

        with self.assertRaises(OrderNotFoundError):
            cancel_order(user=stranger, order_id=order.id)

        order.refresh_from_db()
        self.assertEqual(order.status, Order.STATUS_PENDING)

    def test_cannot_cancel_after_processing(self):
        order = place_order(self.user, self.address, (self.product, 1), payment_method=Order.PAYMENT_COD)
        order.save(update_fields=transition_order(order, Order.STATUS_PROCESSING))

        with self.assertRaises(InvalidOrderTransitionError):
            cancel_order(user=self.user, order_id=order.id)
        self.assertEqual(self._stock(), 4)

    def test_cancel_paid_order_requests_refund(self):
        gateway = FakeGateway()
        order = place_order(self.user, self.address, (self.product, 2), gateway=gateway)
        mark_paid(order, "pay_cancel01")

        cancelled = cancel_order(user=self.user, order_id=order.id, gateway=gateway)

        self.assertEqual(cancelled.status, Order.STATUS_CANCELLED)
        self.assertEqual(cancelled.refund_status, Order.REFUND_STATUS_PENDING)
        self.assertEqual(cancelled.refund_id, "rfnd_fake0001")
        self.assertEqual(gateway.refunds[0]["payment_id"], "pay_cancel01")
        self.assertEqual(gateway.refunds[0]["amount_minor"], 33500)

    def test_refund_failure_does_not_undo_cancellation(self):
        order = place_order(self.user, self.address, (self.product, 1))
        mark_paid(order)

        cancelled = cancel_order(
            user=self.user, order_id=order.id, gateway=FakeGateway(fail_refund=True)
        )

        self.assertEqual(cancelled.status, Order.STATUS_CANCELLED)
        self.assertEqual(cancelled.refund_status, Order.REFUND_STATUS_FAILED)
        self.assertIn("refund rejected", cancelled.refund_failure_reason)
        self.assertEqual(self._stock(), 5)

    def test_cancel_cod_order_needs_no_refund(self):
        gateway = FakeGateway()
        order = place_order(self.user, self.address, (self.product, 1), payment_method=Order.PAYMENT_COD)

        cancelled = cancel_order(user=self.user, order_id=order.id, gateway=gateway)

        self.assertEqual(cancelled.refund_status, Order.REFUND_STATUS_NONE)
        self.assertEqual(gateway.refunds, [])


class ReleaseOrderStockTests(TestCase):
    def test_release_is_exactly_once(self):
        user = make_user()
        product = make_product("SKU-R", stock=4)
        order = place_order(user, make_address(user), (product, 3))

        self.assertTrue(release_order_stock(order))
        self.assertFalse(release_order_stock(order))
        self.assertFalse(release_order_stock(Order.objects.get(pk=order.pk)))

        self.assertEqual(Product.objects.get(pk=product.pk).stock, 4)


class ExpirePendingOrdersTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.address = make_address(self.user)
        self.product = make_product("SKU-E", stock=5)

    def _age(self, order, minutes):
        Order.objects.filter(pk=order.pk).update(
            created_at=timezone.now() - timedelta(minutes=minutes)
        )

    def test_stale_pending_orders_are_expired(self):
        stale = place_order(self.user, self.address, (self.product, 2))
        fresh = place_order(self.user, self.address, (self.product, 1))
        self._age(stale, 120)

        self.assertEqual(expire_pending_orders(older_than_minutes=60), 1)

        stale.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(stale.status, Order.STATUS_CANCELLED)
        self.assertEqual(stale.cancellation_reason, EXPIRY_REASON)
        self.assertEqual(stale.payment_status, Order.PAYMENT_STATUS_FAILED)
        self.assertEqual(fresh.status, Order.STATUS_PENDING)
        self.assertEqual(Product.objects.get(pk=self.product.pk).stock, 4)

    def test_paid_and_cod_orders_are_left_alone(self):
        cod = place_order(self.user, self.address, (self.product, 1), payment_method=Order.PAYMENT_COD)
        paid = place_order(self.user, self.address, (self.product, 1))
        mark_paid(paid)
        self._age(cod, 600)
        self._age(paid, 600)

        self.assertEqual(expire_pending_orders(older_than_minutes=60), 0)

    def test_management_command(self):
        stale = place_order(self.user, self.address, (self.product, 2))
        self._age(stale, 30)
        out = StringIO()

        call_command("expire_pending_orders", "--minutes", "10", stdout=out)

        self.assertIn("Expired 1 pending order(s).", out.getvalue())
        self.assertEqual(Order.objects.get(pk=stale.pk).status, Order.STATUS_CANCELLED)

        out = StringIO()
        call_command("expire_pending_orders", "--minutes", "10", stdout=out)
        self.assertIn("No stale pending orders.", out.getvalue())
