# orders/tests/test_lifecycle.py

from decimal import Decimal

from django.test import SimpleTestCase, TestCase

from orders.models import Order
from orders.services.exceptions import InvalidOrderTransitionError
from orders.services.lifecycle import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    can_transition,
    next_statuses,
    transition_order,
)
from orders.tests.support import make_user

ALL_STATUSES = [value for value, _ in Order.STATUS_CHOICES]


class TransitionTableTests(SimpleTestCase):
    """
    GUARANTEES:
    - Only the documented edges are allowed
    - Terminal states have no outgoing edges (refund edge excepted)
    """

    def test_allowed_edges(self):
        expected = {
            ("pending", "confirmed"),
            ("pending", "cancelled"),
            ("pending", "failed"),
            ("confirmed", "processing"),
            ("confirmed", "cancelled"),
            ("processing", "shipped"),
            ("shipped", "delivered"),
        }
        for src in ALL_STATUSES:
            for dst in ALL_STATUSES:
                self.assertEqual(
                    can_transition(from_status=src, to_status=dst),
                    (src, dst) in expected,
                    msg=f"{src} -> {dst}",
                )

    def test_terminal_states_are_closed(self):
        for status in TERMINAL_STATES:
            self.assertEqual(next_statuses(status), set())
            self.assertNotIn(status, ALLOWED_TRANSITIONS)

    def test_refund_edge_requires_refund_flag(self):
        self.assertFalse(can_transition(from_status="delivered", to_status="refunded"))
        self.assertTrue(can_transition(from_status="delivered", to_status="refunded", via_refund=True))
        self.assertFalse(can_transition(from_status="cancelled", to_status="refunded", via_refund=True))


class TransitionOrderTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(
            user=make_user(),
            payment_method=Order.PAYMENT_COD,
            subtotal_amount=Decimal("100.00"),
            tax_amount=Decimal("18.00"),
            shipping_amount=Decimal("99.00"),
            total_amount=Decimal("217.00"),
        )

    def test_confirm_sets_timestamp(self):
        fields = transition_order(self.order, Order.STATUS_CONFIRMED)
        self.assertEqual(self.order.status, Order.STATUS_CONFIRMED)
        self.assertIsNotNone(self.order.confirmed_at)
        self.assertIn("confirmed_at", fields)

    def test_invalid_transition_leaves_status_unchanged(self):
        with self.assertRaises(InvalidOrderTransitionError) as ctx:
            transition_order(self.order, Order.STATUS_SHIPPED)

        self.assertEqual(ctx.exception.code, "INVALID_STATUS_TRANSITION")
        self.assertEqual(ctx.exception.http_status, 409)
        self.assertEqual(self.order.status, Order.STATUS_PENDING)

    def test_full_fulfilment_path(self):
        for status in ("confirmed", "processing", "shipped", "delivered"):
            transition_order(self.order, status)
        self.order.save()

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_DELIVERED)
        self.assertIsNotNone(self.order.delivered_at)

        with self.assertRaises(InvalidOrderTransitionError):
            transition_order(self.order, Order.STATUS_CANCELLED)
