from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .models import Listing


def _q2(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ListingTerms:
    """Snapshot of the listing fields the booking engine relies on."""

    listing_id: int
    provider_id: int
    is_active: bool
    is_approved: bool
    rent: Decimal
    security_deposit: Decimal
    requires_upfront_payment: bool

    def upfront_amount(self, duration_months: int = 1) -> Decimal:
        """
        Amount due before the provider reviews a request:
        rent for every requested month plus the security deposit.

        Listings without a deposit collect one month of rent as the deposit.
        """
        if duration_months < 1:
            raise ValueError("duration_months must be at least 1")
        deposit = self.security_deposit or self.rent
        return _q2(self.rent * duration_months + deposit)


class ListingDirectory:
    """Read-only access to listing terms by id."""

    def get_terms(self, listing_id: int) -> ListingTerms | None:
        listing = (
            Listing.objects.filter(pk=listing_id)
            .only(
                "id",
                "provider_id",
                "is_active",
                "is_approved",
                "rent",
                "security_deposit",
                "requires_upfront_payment",
            )
            .first()
        )
        if listing is None:
            return None
        return ListingTerms(
            listing_id=listing.pk,
            provider_id=listing.provider_id,
            is_active=listing.is_active,
            is_approved=listing.is_approved,
            rent=listing.rent,
            security_deposit=listing.security_deposit or Decimal("0.00"),
            requires_upfront_payment=listing.requires_upfront_payment,
        )
