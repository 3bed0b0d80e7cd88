"""
Key-path document store interface and in-memory adapter.

The store is a JSON tree addressed by slash-separated paths
("chats/abc/lastMessage"). Writers describe changes as a mapping of
path -> value and every such mapping commits atomically. Readers may
subscribe to a path and receive its current value on open and again
after every commit that changes it.

Conventions shared by every adapter:
- ``None`` (or an empty dict) at a path means "absent"; writing it deletes.
- ``SERVER_TIMESTAMP`` anywhere in a written value is replaced by the
  commit timestamp in epoch milliseconds. Timestamps are strictly
  increasing per store.
- ``Increment(n)`` as a top-level update value adds ``n`` to the integer
  currently stored at that path (absent counts as 0).
- ``require_absent`` paths are checked inside the commit; if any holds a
  value nothing is written and ``PreconditionFailed`` is raised.
"""

import asyncio
import copy
import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from batchat.core.exceptions import PreconditionFailed, StoreUnavailableError

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Any], None]

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    """Atomic counter update, resolved against the stored value at commit."""

    delta: int = 1


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize_path(path: str) -> str:
    """Strip leading/trailing and duplicate slashes. The root is ``""``."""
    return "/".join(segment for segment in path.split("/") if segment)


def join_path(*parts: str) -> str:
    return normalize_path("/".join(parts))


def is_within(path: str, ancestor: str) -> bool:
    """True when ``path`` equals ``ancestor`` or lies below it."""
    if ancestor == "":
        return True
    return path == ancestor or path.startswith(ancestor + "/")


def prune(value: Any) -> Any:
    """Return a deep copy of ``value`` with ``None`` leaves and empty dicts removed."""
    if isinstance(value, dict):
        pruned = {}
        for key, child in value.items():
            child = prune(child)
            if child is not None:
                pruned[str(key)] = child
        return pruned or None
    if isinstance(value, (list, tuple)):
        return [prune(item) for item in value]
    return value


def resolve_server_timestamps(value: Any, timestamp_ms: int) -> Any:
    if value is SERVER_TIMESTAMP:
        return timestamp_ms
    if isinstance(value, dict):
        return {key: resolve_server_timestamps(child, timestamp_ms) for key, child in value.items()}
    if isinstance(value, list):
        return [resolve_server_timestamps(item, timestamp_ms) for item in value]
    return value


class PushIdGenerator:
    """
    Chronologically sortable 20-character keys.

    The first 8 characters encode the creation time in milliseconds, the
    remaining 12 are random. Keys generated within the same millisecond
    increment the random suffix so they still sort in creation order.
    """

    def __init__(self, now_func: Callable[[], int] = _now_ms, rng: Optional[random.Random] = None):
        self._now = now_func
        self._rng = rng or random.SystemRandom()
        self._last_ms = -1
        self._last_random = [0] * 12

    def __call__(self) -> str:
        now = self._now()
        duplicate = now == self._last_ms
        self._last_ms = now

        time_chars = []
        for _ in range(8):
            time_chars.append(PUSH_CHARS[now % 64])
            now //= 64
        key = "".join(reversed(time_chars))

        if not duplicate:
            self._last_random = [self._rng.randrange(64) for _ in range(12)]
        else:
            index = 11
            while index >= 0 and self._last_random[index] == 63:
                self._last_random[index] = 0
                index -= 1
            if index >= 0:
                self._last_random[index] += 1

        return key + "".join(PUSH_CHARS[i] for i in self._last_random)


class Subscription:
    """Handle for one live change-subscription. ``cancel()`` is idempotent."""

    _UNSET = object()

    def __init__(self, store: "DocumentStore", path: str, callback: ChangeCallback):
        self.path = path
        self._store = store
        self._callback = callback
        self._active = True
        self._last_value: Any = self._UNSET

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._store._discard(self)

    def deliver(self, value: Any) -> None:
        if not self._active or value == self._last_value:
            return
        self._last_value = copy.deepcopy(value)
        try:
            self._callback(value)
        except Exception:
            logger.exception(f"Change callback for {self.path} failed")


class DocumentStore(ABC):
    """
    Generic key-path document store.

    Adapters implement ``_read`` and ``_commit``; validation, timestamps,
    push ids and change notification live here so every backend behaves
    the same way.
    """

    def __init__(self, now_func: Callable[[], int] = _now_ms):
        self._now = now_func
        self._last_timestamp = 0
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._commit_lock = asyncio.Lock()
        self.new_key = PushIdGenerator(now_func)

    # ============ Public API ============

    async def get(self, path: str) -> Any:
        """Return a copy of the value at ``path`` or ``None`` if absent."""
        return await self._read(normalize_path(path))

    async def exists(self, path: str) -> bool:
        return await self.get(path) is not None

    async def set(self, path: str, value: Any) -> None:
        """Replace the value at ``path``."""
        await self.update({path: value})

    async def update(
        self,
        updates: Mapping[str, Any],
        *,
        require_absent: Iterable[str] = (),
    ) -> int:
        """
        Atomically apply a multi-path update.

        Args:
            updates: path -> value; ``None`` deletes the path
            require_absent: paths that must be empty for the commit to proceed

        Returns:
            The commit timestamp (the value ``SERVER_TIMESTAMP`` resolved to)

        Raises:
            PreconditionFailed: a guarded path already holds a value
            ValueError: overlapping paths or a nested ``Increment``
        """
        writes = {normalize_path(path): value for path, value in updates.items()}
        guards = [normalize_path(path) for path in require_absent]
        self._validate(writes)

        async with self._commit_lock:
            timestamp = self._next_timestamp()
            prepared = {}
            for path, value in writes.items():
                if isinstance(value, Increment):
                    prepared[path] = value
                else:
                    prepared[path] = prune(resolve_server_timestamps(value, timestamp))
            await self._commit(prepared, guards)
            logger.debug(f"Committed {len(writes)} path(s) at {timestamp}")
            # delivered under the lock so subscribers see commits in order
            await self._notify(writes.keys())
        return timestamp

    async def push(self, path: str, value: Any) -> str:
        """Write ``value`` under a freshly generated child key and return the key."""
        key = self.new_key()
        await self.update({join_path(path, key): value})
        return key

    async def subscribe(self, path: str, on_change: ChangeCallback) -> Subscription:
        """
        Open a change-subscription on ``path``.

        The current value is delivered before this returns; afterwards the
        callback fires once per commit that changes the value.
        """
        path = normalize_path(path)
        subscription = Subscription(self, path, on_change)
        async with self._commit_lock:
            value = await self._read(path)
            self._subscriptions.setdefault(path, []).append(subscription)
            subscription.deliver(value)
        return subscription

    @property
    def listener_count(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values())

    # ============ Adapter hooks ============

    @abstractmethod
    async def _read(self, path: str) -> Any:
        """Return a deep copy of the subtree at ``path`` or ``None``."""

    @abstractmethod
    async def _commit(self, writes: Dict[str, Any], guards: List[str]) -> None:
        """Check ``guards`` and apply ``writes`` as one all-or-nothing unit."""

    async def close(self) -> None:
        for subs in list(self._subscriptions.values()):
            for subscription in list(subs):
                subscription.cancel()

    # ============ Internals ============

    def _next_timestamp(self) -> int:
        self._last_timestamp = max(self._now(), self._last_timestamp + 1)
        return self._last_timestamp

    @staticmethod
    def _validate(writes: Dict[str, Any]) -> None:
        paths = sorted(writes)
        for earlier, later in zip(paths, paths[1:]):
            if is_within(later, earlier):
                raise ValueError(f"Update paths overlap: {earlier!r} and {later!r}")
        for path, value in writes.items():
            if path == "" and not isinstance(value, dict):
                raise ValueError("Root can only hold an object")
            if _contains_increment(value) and not isinstance(value, Increment):
                raise ValueError(f"Increment must be a top-level update value ({path})")

    def _discard(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.path)
        if not subs:
            return
        try:
            subs.remove(subscription)
        except ValueError:
            return
        if not subs:
            self._subscriptions.pop(subscription.path, None)

    async def _notify(self, changed_paths: Iterable[str]) -> None:
        changed = list(changed_paths)
        affected = [
            path
            for path in list(self._subscriptions)
            if any(is_within(path, c) or is_within(c, path) for c in changed)
        ]
        for path in affected:
            subs = list(self._subscriptions.get(path, []))
            if not subs:
                continue
            try:
                value = await self._read(path)
            except StoreUnavailableError:
                # the commit stands; these subscribers catch up on the next change
                logger.warning(f"Could not read {path!r} to notify {len(subs)} subscriber(s)")
                continue
            for subscription in subs:
                subscription.deliver(value)


def _contains_increment(value: Any) -> bool:
    if isinstance(value, Increment):
        return True
    if isinstance(value, dict):
        return any(_contains_increment(child) for child in value.values())
    if isinstance(value, (list, tuple)):
        return any(_contains_increment(item) for item in value)
    return False


class InMemoryDocumentStore(DocumentStore):
    """Process-local DocumentStore backed by a nested dict."""

    def __init__(self, initial: Optional[dict] = None, now_func: Callable[[], int] = _now_ms):
        super().__init__(now_func)
        self._root: dict = prune(initial) or {}

    async def _read(self, path: str) -> Any:
        return copy.deepcopy(self._lookup(path))

    async def _commit(self, writes: Dict[str, Any], guards: List[str]) -> None:
        for guard in guards:
            if self._lookup(guard) is not None:
                raise PreconditionFailed(guard)
        for path, value in writes.items():
            if isinstance(value, Increment):
                current = self._lookup(path)
                value = (current if isinstance(current, int) else 0) + value.delta
            self._write(path, value)

    def _lookup(self, path: str) -> Any:
        node: Any = self._root
        if path == "":
            return node or None
        for segment in path.split("/"):
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        return node

    def _write(self, path: str, value: Any) -> None:
        if path == "":
            self._root = value or {}
            return
        segments = path.split("/")
        node = self._root
        trail = []
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[segment] = child
            trail.append((node, segment))
            node = child

        if value is None:
            node.pop(segments[-1], None)
            # drop parents left empty by the delete
            while trail and not node:
                parent, segment = trail.pop()
                parent.pop(segment, None)
                node = parent
        else:
            node[segments[-1]] = value
