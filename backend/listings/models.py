from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models


class Listing(models.Model):
    """A room offered by a provider."""

    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="listings",
    )
    title = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    city = models.CharField(max_length=60, blank=True, default="")
    rent = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(0)],
        default=0,
        help_text="Monthly rent in major currency units.",
    )
    security_deposit = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(0)],
        default=0,
    )
    requires_upfront_payment = models.BooleanField(
        default=True,
        help_text="Seekers pay rent and deposit before the provider reviews the request.",
    )
    is_active = models.BooleanField(default=True)
    is_approved = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def clean(self):
        if not self.title or len(self.title.strip()) < 3:
            raise ValidationError("Title too short")

    def __str__(self) -> str:
        return f"{self.title} (#{self.pk})"
