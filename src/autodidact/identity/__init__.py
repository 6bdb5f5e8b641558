"""Federated identity binding."""

from .binding import INSTALLATIONS_TABLE, IdentityBinding, extract_claims
from .models import Installation, Session, SessionUser

__all__ = [
    "INSTALLATIONS_TABLE",
    "IdentityBinding",
    "Installation",
    "Session",
    "SessionUser",
    "extract_claims",
]
