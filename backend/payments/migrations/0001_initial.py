import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="PaymentIntent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("gateway_intent_id", models.CharField(max_length=255, unique=True)),
                (
                    "amount",
                    models.PositiveIntegerField(help_text="Amount in the currency's minor units."),
                ),
                ("currency", models.CharField(default="inr", max_length=8)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("requires_payment_method", "Requires payment method"),
                            ("requires_confirmation", "Requires confirmation"),
                            ("requires_action", "Requires action"),
                            ("processing", "Processing"),
                            ("requires_capture", "Requires capture"),
                            ("succeeded", "Succeeded"),
                            ("canceled", "Canceled"),
                            ("failed", "Failed"),
                        ],
                        default="requires_payment_method",
                        max_length=32,
                    ),
                ),
                ("client_secret", models.CharField(blank=True, default="", max_length=255)),
                (
                    "remote_cancel_state",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("", "Not requested"),
                            ("requested", "Requested"),
                            ("done", "Done"),
                            ("failed", "Failed"),
                        ],
                        default="",
                        max_length=16,
                    ),
                ),
                ("remote_cancel_error", models.CharField(blank=True, default="", max_length=500)),
                ("version", models.PositiveIntegerField(default=0)),
                ("last_synced_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_intents",
                        to="bookings.booking",
                    ),
                ),
                (
                    "seeker",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_intents",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="PaymentIncident",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("remote_cancel_failed", "Remote cancel failed"),
                            ("refund_required", "Refund required"),
                        ],
                        max_length=32,
                    ),
                ),
                ("detail", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                (
                    "payment_intent",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="incidents",
                        to="payments.paymentintent",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.AddIndex(
            model_name="paymentintent",
            index=models.Index(fields=["status", "updated_at"], name="payments_status_updated_idx"),
        ),
        migrations.AddIndex(
            model_name="paymentintent",
            index=models.Index(fields=["booking", "status"], name="payments_booking_status_idx"),
        ),
        migrations.AddConstraint(
            model_name="paymentintent",
            constraint=models.UniqueConstraint(
                condition=models.Q(("status__in", ["canceled", "failed"]), _negated=True),
                fields=("booking",),
                name="payments_one_active_intent_per_booking",
            ),
        ),
        migrations.AddConstraint(
            model_name="paymentincident",
            constraint=models.UniqueConstraint(
                condition=models.Q(("resolved_at__isnull", True)),
                fields=("payment_intent", "kind"),
                name="payments_one_open_incident_per_kind",
            ),
        ),
    ]
