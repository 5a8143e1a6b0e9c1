"""Storefront checkout service: carts, orders and verified payments."""

__version__ = "1.0.0"
