"""
Database models package initialization.

Models are imported here to ensure they are registered with the Base metadata
for Alembic migrations and test schema creation.
"""

from storefront.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from storefront.database.models.order import Order

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "Order",
]
