"""
Sorted, duplicate-free conversation list.
"""

import logging
from typing import Any, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError

from batchat.models.schemas import IMAGE_PLACEHOLDER, Conversation, LastMessageSummary

logger = logging.getLogger(__name__)

NO_MESSAGES_PREVIEW = "No messages yet"


class ChatListAggregator:
    """
    Merges an initial batch of conversations with per-conversation updates.

    The list is ordered by ``lastMessage.timestamp`` descending;
    conversations without a last message sort as timestamp 0. Re-sorting is
    stable, so equal timestamps keep their current relative order.

    Updates for one conversation never affect another entry: an update for
    an unknown id is dropped and an unreadable summary only marks that
    conversation stale.
    """

    def __init__(self) -> None:
        self._conversations: List[Conversation] = []
        self._stale: Set[str] = set()

    @property
    def conversations(self) -> Tuple[Conversation, ...]:
        return tuple(self._conversations)

    @property
    def ids(self) -> List[str]:
        return [conversation.id for conversation in self._conversations]

    @property
    def stale_ids(self) -> frozenset:
        return frozenset(self._stale)

    def get(self, conversation_id: str) -> Optional[Conversation]:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def apply_initial_batch(self, conversations: Iterable[Conversation]) -> None:
        """Replace the whole list. A repeated id keeps its first position and latest data."""
        by_id = {}
        for conversation in conversations:
            by_id[conversation.id] = conversation
        self._conversations = list(by_id.values())
        self._stale &= set(by_id)
        self._sort()

    def apply_update(self, conversation_id: str, summary: Any) -> None:
        """
        Replace one conversation's last-message summary.

        ``summary`` may be a LastMessageSummary, the raw store value, or
        ``None`` (the summary was deleted).
        """
        index = self._index_of(conversation_id)
        if index is None:
            logger.debug(f"Dropping update for {conversation_id}: not in the list")
            return

        try:
            last_message = self._parse_summary(summary)
        except ValidationError as e:
            logger.warning(f"Unreadable lastMessage for {conversation_id}: {e.error_count()} error(s)")
            self._stale.add(conversation_id)
            return

        self._conversations[index] = self._conversations[index].model_copy(
            update={"lastMessage": last_message}
        )
        self._stale.discard(conversation_id)
        self._sort()

    def mark_stale(self, conversation_id: str) -> None:
        """Flag a conversation whose live updates are currently not arriving."""
        if self._index_of(conversation_id) is not None:
            self._stale.add(conversation_id)

    def unread_count(self, conversation_id: str, uid: str) -> int:
        conversation = self.get(conversation_id)
        if conversation is None:
            return 0
        return conversation.unreadCounts.get(uid, 0)

    def display_preview(self, conversation_id: str) -> str:
        """One-line preview shown under the conversation name."""
        conversation = self.get(conversation_id)
        last_message = conversation.lastMessage if conversation else None
        if last_message is None:
            return NO_MESSAGES_PREVIEW
        if last_message.imageUrl:
            return IMAGE_PLACEHOLDER
        return last_message.text or NO_MESSAGES_PREVIEW

    def clear(self) -> None:
        self._conversations = []
        self._stale = set()

    def _index_of(self, conversation_id: str) -> Optional[int]:
        for index, conversation in enumerate(self._conversations):
            if conversation.id == conversation_id:
                return index
        return None

    @staticmethod
    def _parse_summary(summary: Any) -> Optional[LastMessageSummary]:
        if summary is None or isinstance(summary, LastMessageSummary):
            return summary
        return LastMessageSummary.model_validate(summary)

    def _sort(self) -> None:
        self._conversations.sort(key=lambda conversation: conversation.last_timestamp, reverse=True)
