from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from payments.tasks import reconcile_payment_intents


class Command(BaseCommand):
    help = "Run one payment intent reconciliation sweep against Stripe synchronously."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--grace-seconds",
            type=int,
            default=None,
            help="Only check intents unchanged for at least this many seconds.",
        )
        parser.add_argument(
            "--batch-size",
            type=int,
            default=None,
            help="Maximum number of intents to check.",
        )

    def handle(self, *args, **options) -> None:
        grace_seconds = options["grace_seconds"]
        batch_size = options["batch_size"]
        if grace_seconds is not None and grace_seconds < 0:
            raise CommandError("--grace-seconds cannot be negative.")
        if batch_size is not None and batch_size <= 0:
            raise CommandError("--batch-size must be greater than 0.")

        summary = reconcile_payment_intents(grace_seconds=grace_seconds, batch_size=batch_size)
        self.stdout.write(
            self.style.SUCCESS(
                "Checked {checked} intents: {advanced} advanced, {errors} errors.".format(**summary)
            )
        )
