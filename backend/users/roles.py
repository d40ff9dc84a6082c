"""Typed principals handed to the booking engine by the authentication layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .models import User


@dataclass(frozen=True)
class SeekerPrincipal:
    user_id: int


@dataclass(frozen=True)
class ProviderPrincipal:
    user_id: int


@dataclass(frozen=True)
class AdminPrincipal:
    user_id: int


Principal = Union[SeekerPrincipal, ProviderPrincipal, AdminPrincipal]

_PRINCIPALS_BY_ROLE = {
    User.Role.SEEKER: SeekerPrincipal,
    User.Role.PROVIDER: ProviderPrincipal,
    User.Role.ADMIN: AdminPrincipal,
}


def principal_for(user: User) -> Principal:
    """
    Build the principal for an authenticated user.

    Unknown roles raise ValueError; the engine never guesses a role.
    """
    try:
        principal_cls = _PRINCIPALS_BY_ROLE[User.Role(user.role)]
    except ValueError as exc:
        raise ValueError(f"Unsupported role {user.role!r} for user {user.pk}.") from exc
    return principal_cls(user_id=user.pk)
