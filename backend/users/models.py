from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Marketplace account; the role decides which booking actions are allowed."""

    class Role(models.TextChoices):
        SEEKER = "seeker", "Seeker"
        PROVIDER = "provider", "Provider"
        ADMIN = "admin", "Admin"

    role = models.CharField(
        max_length=16,
        choices=Role.choices,
        default=Role.SEEKER,
    )
    phone = models.CharField(
        max_length=32,
        unique=True,
        null=True,
        blank=True,
        help_text="Optional E.164 formatted phone number.",
    )
    email_verified = models.BooleanField(default=False)

    def is_seeker(self) -> bool:
        return self.role == self.Role.SEEKER

    def is_provider(self) -> bool:
        return self.role == self.Role.PROVIDER
