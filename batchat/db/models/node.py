"""
Leaf rows of the document tree.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from batchat.db.database import Base


class StoreNodeModel(Base):
    """
    One scalar leaf of the document tree, keyed by its full path.

    Objects are never stored as rows; a subtree is the set of rows whose
    path starts with ``<subtree path>/``.
    """

    __tablename__ = "store_nodes"

    path: Mapped[str] = mapped_column(
        String,
        primary_key=True,
    )
    value: Mapped[Any] = mapped_column(
        JSON,
        nullable=False,
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
