"""
SQLAlchemy-backed DocumentStore.

The tree is flattened into one row per scalar leaf (see StoreNodeModel).
Each commit runs in a single database transaction, so guards and writes
succeed or fail together.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from batchat.core.exceptions import PreconditionFailed, StoreUnavailableError
from batchat.core.store import DocumentStore, Increment, _now_ms
from batchat.db.database import create_session_maker, init_db
from batchat.db.models import StoreNodeModel

logger = logging.getLogger(__name__)


def flatten(path: str, value: Any) -> Iterator[Tuple[str, Any]]:
    """Yield ``(leaf_path, scalar)`` pairs for ``value`` stored at ``path``."""
    if isinstance(value, dict):
        for key, child in value.items():
            yield from flatten(f"{path}/{key}" if path else key, child)
    elif value is not None:
        yield path, value


def _subtree_clause(path: str):
    """Rows at ``path`` or below it."""
    if path == "":
        return StoreNodeModel.path.isnot(None)
    # "0" is the character right after "/", so this range is exactly the children
    return or_(
        StoreNodeModel.path == path,
        and_(StoreNodeModel.path > path + "/", StoreNodeModel.path < path + "0"),
    )


def _ancestors(path: str) -> List[str]:
    segments = path.split("/")
    return ["/".join(segments[:i]) for i in range(1, len(segments))]


class SqlDocumentStore(DocumentStore):
    """DocumentStore persisted through SQLAlchemy async sessions."""

    def __init__(self, engine: AsyncEngine, now_func=_now_ms):
        super().__init__(now_func)
        self.engine = engine
        self._session_maker = create_session_maker(engine)

    async def initialize(self) -> None:
        """Create the node table if it does not exist."""
        try:
            await init_db(self.engine)
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(f"Database initialization failed: {e}")

    async def close(self) -> None:
        await super().close()
        await self.engine.dispose()

    async def _read(self, path: str) -> Any:
        try:
            async with self._session_maker() as session:
                rows = await self._select_subtree(session, path)
        except (OperationalError, InterfaceError) as e:
            logger.warning(f"Read of {path!r} failed: {e}")
            raise StoreUnavailableError(f"Read of {path!r} failed: {e}")
        return self._assemble(path, rows)

    async def _commit(self, writes: Dict[str, Any], guards: List[str]) -> None:
        now = datetime.now(timezone.utc)
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    for guard in guards:
                        result = await session.execute(
                            select(StoreNodeModel.path).where(_subtree_clause(guard)).limit(1)
                        )
                        if result.first() is not None:
                            raise PreconditionFailed(guard)

                    for path, value in writes.items():
                        if isinstance(value, Increment):
                            current = await session.get(StoreNodeModel, path)
                            base = current.value if current is not None and isinstance(current.value, int) else 0
                            value = base + value.delta
                        await self._replace(session, path, value, now)
        except IntegrityError as e:
            # another process inserted the same leaf between our guard check and write
            if guards:
                raise PreconditionFailed(await self._occupied_guard(guards))
            logger.warning(f"Commit of {len(writes)} path(s) collided with a concurrent write: {e}")
            raise StoreUnavailableError(f"Commit collided with a concurrent write: {e}")
        except (OperationalError, InterfaceError) as e:
            logger.warning(f"Commit of {len(writes)} path(s) failed: {e}")
            raise StoreUnavailableError(f"Commit failed: {e}")

    async def _occupied_guard(self, guards: List[str]) -> str:
        """The first guard path that now holds a value, else the first guard."""
        for guard in guards:
            if await self._read(guard) is not None:
                return guard
        return guards[0]

    @staticmethod
    async def _select_subtree(session: AsyncSession, path: str) -> List[Tuple[str, Any]]:
        result = await session.execute(
            select(StoreNodeModel.path, StoreNodeModel.value).where(_subtree_clause(path))
        )
        return [(row.path, row.value) for row in result]

    @staticmethod
    async def _replace(session: AsyncSession, path: str, value: Any, now: datetime) -> None:
        await session.execute(delete(StoreNodeModel).where(_subtree_clause(path)))
        ancestors = _ancestors(path)
        if ancestors and value is not None:
            # a scalar ancestor would shadow the new subtree
            await session.execute(delete(StoreNodeModel).where(StoreNodeModel.path.in_(ancestors)))
        for leaf_path, leaf_value in flatten(path, value):
            session.add(StoreNodeModel(path=leaf_path, value=leaf_value, updated_at=now))
        await session.flush()

    @staticmethod
    def _assemble(path: str, rows: List[Tuple[str, Any]]) -> Optional[Any]:
        if not rows:
            return None
        tree: dict = {}
        prefix_len = len(path) + 1 if path else 0
        for row_path, row_value in rows:
            if row_path == path:
                return row_value
            segments = row_path[prefix_len:].split("/")
            node = tree
            for segment in segments[:-1]:
                node = node.setdefault(segment, {})
            node[segments[-1]] = row_value
        return tree
