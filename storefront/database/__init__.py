"""
Database package initialization.

The package follows a modular structure:
- base: declarative base and column mixins
- connection: async engine and per-request session management
- models: SQLAlchemy ORM models
"""

__all__ = []
