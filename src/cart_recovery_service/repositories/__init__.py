"""Data access repositories."""

from cart_recovery_service.repositories.cart_repository import CartRepository

__all__ = ["CartRepository"]
