"""
Per-conversation change subscriptions.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, Set

from batchat.core.exceptions import StoreUnavailableError
from batchat.core.fanout import chat_path
from batchat.core.retry import with_retry
from batchat.core.store import DocumentStore, Subscription

logger = logging.getLogger(__name__)

EventSink = Callable[[str, Any], None]


def last_message_path(conversation_id: str) -> str:
    return chat_path(conversation_id, "lastMessage")


@dataclass
class ReconcileResult:
    """What a reconcile call changed."""

    opened: Set[str] = field(default_factory=set)
    closed: Set[str] = field(default_factory=set)
    failed: Set[str] = field(default_factory=set)

    @property
    def changed(self) -> bool:
        return bool(self.opened or self.closed)


class SubscriptionManager:
    """
    Keeps exactly one live subscription per watched conversation.

    ``reconcile`` diffs the requested id set against the subscriptions
    that are actually open: it opens the missing ones and cancels the ones
    no longer requested. A subscription that failed to open is reported in
    ``ReconcileResult.failed`` and is not considered open, so the next
    ``reconcile`` tries it again.

    Usage:
        manager = SubscriptionManager(store, aggregator.apply_update)
        await manager.reconcile({"c1", "c2"})
        ...
        manager.teardown()
    """

    def __init__(
        self,
        store: DocumentStore,
        on_event: EventSink,
        path_for: Callable[[str], str] = last_message_path,
        retry_attempts: Optional[int] = None,
    ):
        self.store = store
        self._on_event = on_event
        self._path_for = path_for
        self._retry_attempts = retry_attempts
        self._handles: Dict[str, Subscription] = {}
        self._desired: Set[str] = set()

    @property
    def open_ids(self) -> FrozenSet[str]:
        return frozenset(self._handles)

    async def reconcile(self, conversation_ids: Iterable[str]) -> ReconcileResult:
        """Move the open subscriptions to exactly ``conversation_ids``."""
        requested = set(conversation_ids)
        self._desired = requested
        result = ReconcileResult()

        for conversation_id in sorted(set(self._handles) - requested):
            self._handles.pop(conversation_id).cancel()
            result.closed.add(conversation_id)

        for conversation_id in sorted(requested - set(self._handles)):
            try:
                handle = await with_retry(
                    lambda cid=conversation_id: self.store.subscribe(
                        self._path_for(cid), self._forwarder(cid)
                    ),
                    attempts=self._retry_attempts,
                    description=f"subscribe {conversation_id}",
                )
            except StoreUnavailableError as e:
                logger.warning(f"Subscription for {conversation_id} not opened: {e}")
                result.failed.add(conversation_id)
                continue

            # the requested set may have moved on while we were waiting on the store
            if conversation_id not in self._desired or conversation_id in self._handles:
                handle.cancel()
                continue
            self._handles[conversation_id] = handle
            result.opened.add(conversation_id)

        if result.changed or result.failed:
            logger.debug(
                f"Reconciled subscriptions: +{len(result.opened)} -{len(result.closed)} "
                f"failed={len(result.failed)} open={len(self._handles)}"
            )
        return result

    def teardown(self) -> None:
        """Cancel every open subscription. Safe to call at any time, any number of times."""
        self._desired = set()
        handles, self._handles = self._handles, {}
        for handle in handles.values():
            handle.cancel()
        if handles:
            logger.debug(f"Tore down {len(handles)} subscription(s)")

    def _forwarder(self, conversation_id: str) -> Callable[[Any], None]:
        def forward(value: Any) -> None:
            if conversation_id in self._desired:
                self._on_event(conversation_id, value)

        return forward
