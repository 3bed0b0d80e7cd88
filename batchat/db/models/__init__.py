"""
SQLAlchemy ORM models package.

Re-exports all models for convenient imports.
"""

from batchat.db.models.node import StoreNodeModel

__all__ = [
    "StoreNodeModel",
]
