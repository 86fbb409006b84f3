"""MQTT module __init__ for easier imports."""

from __future__ import annotations

from . import notifications, publisher, schemas

__all__ = ["notifications", "publisher", "schemas"]
