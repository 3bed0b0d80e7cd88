"""
Canonical direct-message conversations.
"""

import logging
from typing import Optional

from batchat.core.exceptions import ChatValidationError, NotFoundError, PreconditionFailed
from batchat.core.fanout import MembershipFanoutWriter, chat_path, user_path
from batchat.core.retry import with_retry
from batchat.core.store import DocumentStore
from batchat.models.schemas import Conversation, ConversationType

logger = logging.getLogger(__name__)

DM_ID_DELIMITER = "_"
DM_DEFAULT_NAME = "DM"


def dm_conversation_id(user_a: str, user_b: str) -> str:
    """Deterministic, order-independent conversation id for a pair of users."""
    return DM_ID_DELIMITER.join(sorted([user_a, user_b]))


class DirectMessageResolver:
    """
    Resolves the single DM conversation shared by two users.

    Creation is a compare-and-set on chats/{dm id}: when both users race to
    open the conversation, one write lands and the other re-reads it.
    """

    def __init__(self, store: DocumentStore, fanout: Optional[MembershipFanoutWriter] = None):
        self.store = store
        self.fanout = fanout or MembershipFanoutWriter(store)

    async def resolve(self, my_id: str, other_id: str) -> Conversation:
        """
        Return the DM between ``my_id`` and ``other_id``, creating it if needed.

        Raises:
            ChatValidationError: both ids are the same user
            NotFoundError: ``other_id`` has no profile
            StoreUnavailableError: the store stayed unreachable through retries
        """
        if my_id == other_id:
            raise ChatValidationError("Cannot open a direct message with yourself")
        conversation_id = dm_conversation_id(my_id, other_id)

        existing = await self._fetch(conversation_id)
        if existing is not None:
            return existing

        if await with_retry(lambda: self.store.get(user_path(other_id))) is None:
            raise NotFoundError(f"User {other_id} not found", "User not found.")

        conversation = Conversation(
            id=conversation_id,
            type=ConversationType.DM,
            name=DM_DEFAULT_NAME,
            members={my_id: True, other_id: True},
        )
        try:
            created = await self.fanout.create_conversation(conversation)
        except PreconditionFailed:
            logger.info(f"DM {conversation_id} was created concurrently, using existing document")
            existing = await self._fetch(conversation_id)
            if existing is None:
                raise
            return existing
        return created

    async def _fetch(self, conversation_id: str) -> Optional[Conversation]:
        data = await with_retry(
            lambda: self.store.get(chat_path(conversation_id)),
            description=f"fetch {conversation_id}",
        )
        if data is None:
            return None
        return Conversation.model_validate({**data, "id": conversation_id})
