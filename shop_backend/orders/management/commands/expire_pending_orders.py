# orders/management/commands/expire_pending_orders.py

"""
PATH: orders/management/commands/expire_pending_orders.py

Housekeeping sweep for abandoned checkouts.

- Cancels pending, unpaid orders older than ORDERS["PENDING_ORDER_TTL_MINUTES"]
  (or --minutes) and releases their reserved stock.
- Idempotent: safe to run from cron as often as needed.
"""

from __future__ import annotations

from django.core.management.base import BaseCommand

from orders.services.cancellation import expire_pending_orders


class Command(BaseCommand):
    help = "Cancel stale pending orders and release their reserved stock."

    def add_arguments(self, parser):
        parser.add_argument(
            "--minutes",
            type=int,
            default=None,
            help="Age threshold in minutes (defaults to ORDERS['PENDING_ORDER_TTL_MINUTES']).",
        )

    def handle(self, *args, **options):
        count = expire_pending_orders(older_than_minutes=options.get("minutes"))
        if count:
            self.stdout.write(self.style.SUCCESS(f"Expired {count} pending order(s)."))
        else:
            self.stdout.write("No stale pending orders.")
