"""
Management command to create or refresh the default subscription plans
"""
from decimal import Decimal, InvalidOperation

from django.core.management.base import BaseCommand, CommandError

from backend.subscriptions.services import seed_plans


class Command(BaseCommand):
    help = "Creates or updates the Free, Trial and Paid subscription plans"

    def add_arguments(self, parser):
        parser.add_argument(
            '--paid-price',
            type=str,
            default=None,
            help='Override the price of the Paid plan (default 999.00)',
        )

    def handle(self, *args, **options):
        overrides = {}
        if options['paid_price'] is not None:
            try:
                overrides['paid'] = {'price': Decimal(options['paid_price'])}
            except InvalidOperation:
                raise CommandError(f"Invalid price: {options['paid_price']}")

        created, updated = seed_plans(overrides)
        self.stdout.write(self.style.SUCCESS(f"Plans ready: {created} created, {updated} updated"))
