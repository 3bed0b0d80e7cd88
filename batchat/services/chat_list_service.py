"""
Live conversation list for one user.

Watches users/{uid}/chats. Every time that index changes, the listed
conversations are fetched, handed to the ChatListAggregator as a fresh
batch, and the SubscriptionManager is reconciled so that exactly those
conversations stream lastMessage updates into the aggregator.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from batchat.core.chat_list import ChatListAggregator
from batchat.core.exceptions import StoreUnavailableError
from batchat.core.fanout import chat_path, user_path
from batchat.core.retry import with_retry
from batchat.core.store import DocumentStore, Subscription
from batchat.core.subscriptions import ReconcileResult, SubscriptionManager
from batchat.models.schemas import Conversation, ConversationType

logger = logging.getLogger(__name__)


class ChatListService:
    """
    Keeps a ChatListAggregator in sync with the store for ``uid``.

    Usage:
        service = ChatListService(store, uid)
        await service.start()
        ...  # service.aggregator.conversations stays current
        await service.close()
    """

    def __init__(self, store: DocumentStore, uid: str):
        self.store = store
        self.uid = uid
        self.aggregator = ChatListAggregator()
        self.manager = SubscriptionManager(store, self.aggregator.apply_update)
        self._index_subscription: Optional[Subscription] = None
        self._lock = asyncio.Lock()
        self._generation = 0
        self._latest_ids: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self.last_result: Optional[ReconcileResult] = None
        # DM id -> (name, avatarUrl) of the other member
        self._counterparts: Dict[str, Tuple[str, Optional[str]]] = {}

    @property
    def conversations(self):
        return self.aggregator.conversations

    def display_info(self, conversation_id: str) -> Tuple[str, Optional[str]]:
        """
        Name and avatar to show for a conversation.

        DMs show the other member; everything else shows its own name.
        """
        conversation = self.aggregator.get(conversation_id)
        if conversation is None:
            raise KeyError(conversation_id)
        if conversation.type == ConversationType.DM and conversation_id in self._counterparts:
            return self._counterparts[conversation_id]
        return conversation.name, conversation.avatarUrl

    def entries(self) -> List[dict]:
        """The list as rendered for the API: documents plus per-viewer fields."""
        aggregator = self.aggregator
        entries = []
        for conversation in aggregator.conversations:
            name, avatar_url = self.display_info(conversation.id)
            entry = conversation.to_store()
            entry.update(
                name=name,
                unreadCount=aggregator.unread_count(conversation.id, self.uid),
                preview=aggregator.display_preview(conversation.id),
                stale=conversation.id in aggregator.stale_ids,
            )
            if avatar_url:
                entry["avatarUrl"] = avatar_url
            entries.append(entry)
        return entries

    async def start(self) -> None:
        """Subscribe to the user's conversation index and wait for the first full refresh."""
        if self._index_subscription is not None:
            return
        self._index_subscription = await with_retry(
            lambda: self.store.subscribe(user_path(self.uid, "chats"), self._on_index_change),
            description=f"subscribe chat index of {self.uid}",
        )
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait until every scheduled refresh has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop watching and cancel every subscription. Safe to call more than once."""
        if self._index_subscription is not None:
            self._index_subscription.cancel()
            self._index_subscription = None
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
        self.manager.teardown()

    def _on_index_change(self, value: Any) -> None:
        ids = {chat_id for chat_id, member in (value or {}).items() if member}
        self._latest_ids = ids
        self._generation += 1
        task = asyncio.create_task(self._refresh(self._generation))
        self._tasks.add(task)
        task.add_done_callback(self._on_refresh_done)

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Chat list refresh for {self.uid} failed", exc_info=task.exception())

    async def _refresh(self, generation: int) -> None:
        async with self._lock:
            if generation != self._generation:
                # a newer index delivery is queued behind us
                return
            ids = set(self._latest_ids)
            conversations, unreachable = await self._fetch_all(ids)
            if generation != self._generation:
                return

            await self._load_counterparts(conversations)
            if generation != self._generation:
                return

            self.aggregator.apply_initial_batch(conversations)
            result = await self.manager.reconcile(c.id for c in conversations)
            for conversation_id in unreachable | result.failed:
                self.aggregator.mark_stale(conversation_id)
            self.last_result = result
            logger.debug(f"Chat list for {self.uid}: {len(conversations)} conversation(s)")

    async def _fetch_all(self, ids: Set[str]) -> Tuple[List[Conversation], Set[str]]:
        ordered = sorted(ids)
        fetched = await asyncio.gather(
            *(self._fetch(conversation_id) for conversation_id in ordered),
            return_exceptions=True,
        )
        conversations = []
        unreachable = set()
        for conversation_id, outcome in zip(ordered, fetched):
            if isinstance(outcome, StoreUnavailableError):
                unreachable.add(conversation_id)
                previous = self.aggregator.get(conversation_id)
                if previous is not None:
                    logger.warning(f"Keeping cached copy of {conversation_id}; store unavailable")
                    conversations.append(previous)
            elif isinstance(outcome, ValidationError):
                logger.warning(f"Skipping malformed conversation {conversation_id}")
            elif isinstance(outcome, BaseException):
                raise outcome
            elif outcome is not None:
                conversations.append(outcome)
        return conversations, unreachable

    async def _fetch(self, conversation_id: str) -> Optional[Conversation]:
        data = await with_retry(
            lambda: self.store.get(chat_path(conversation_id)),
            description=f"fetch {conversation_id}",
        )
        if data is None:
            logger.info(f"Skipping {conversation_id}: listed for {self.uid} but missing")
            return None
        return Conversation.model_validate({**data, "id": conversation_id})

    async def _load_counterparts(self, conversations: List[Conversation]) -> None:
        pending = {}
        for conversation in conversations:
            if conversation.type != ConversationType.DM:
                continue
            others = sorted(conversation.member_ids - {self.uid})
            if others:
                pending[conversation.id] = others[0]

        profiles = await asyncio.gather(
            *(self._fetch_profile(uid) for uid in pending.values()),
            return_exceptions=True,
        )
        counterparts = {}
        for conversation_id, profile in zip(pending, profiles):
            if isinstance(profile, StoreUnavailableError):
                if conversation_id in self._counterparts:
                    counterparts[conversation_id] = self._counterparts[conversation_id]
            elif isinstance(profile, BaseException):
                raise profile
            elif profile is not None:
                counterparts[conversation_id] = (profile.get("name") or "", profile.get("avatarUrl"))
        self._counterparts = counterparts

    async def _fetch_profile(self, uid: str) -> Optional[dict]:
        profile = await with_retry(
            lambda: self.store.get(user_path(uid)),
            description=f"fetch profile {uid}",
        )
        return profile if isinstance(profile, dict) else None
