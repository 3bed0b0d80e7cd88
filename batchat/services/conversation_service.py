"""
Conversation creation, membership and details service.
"""

import logging
from typing import Optional

from batchat.config import get_settings
from batchat.core.direct_messages import DirectMessageResolver
from batchat.core.exceptions import NotFoundError, PermissionDeniedError
from batchat.core.fanout import MembershipFanoutWriter, chat_path, user_path
from batchat.core.retry import with_retry
from batchat.core.store import DocumentStore
from batchat.models.schemas import Conversation, ConversationInfo, ConversationType, CreateConversationRequest
from batchat.services.message_service import MessageService
from batchat.services.user_service import UserService

logger = logging.getLogger(__name__)


class ConversationService:
    """Entry point for user actions that create conversations or change membership."""

    def __init__(self, store: DocumentStore, fanout: Optional[MembershipFanoutWriter] = None):
        self.store = store
        self.fanout = fanout or MembershipFanoutWriter(store)
        self.resolver = DirectMessageResolver(store, self.fanout)

    async def create(self, owner_id: str, request: CreateConversationRequest) -> Conversation:
        """
        Create a group or channel owned by ``owner_id``.

        The owner is always a member and the only initial admin.
        """
        member_ids = set(request.members) | {owner_id}
        for uid in sorted(member_ids - {owner_id}):
            exists = await with_retry(lambda uid=uid: self.store.exists(user_path(uid)))
            if not exists:
                raise NotFoundError(f"User {uid} not found", "One of the selected users does not exist.")

        conversation_id = self.store.new_key()
        conversation = Conversation(
            id=conversation_id,
            type=request.type,
            name=request.name.strip(),
            handle=request.handle or None,
            description=request.description,
            isPublic=request.isPublic,
            ownerId=owner_id,
            admins={owner_id: True},
            members={uid: True for uid in member_ids},
            avatarUrl=get_settings().default_avatar_url.format(key=conversation_id),
        )
        return await self.fanout.create_conversation(conversation)

    async def open_direct_message(self, my_id: str, other_id: str) -> Conversation:
        return await self.resolver.resolve(my_id, other_id)

    async def add_member(self, conversation_id: str, actor_id: str, user_id: Optional[str] = None) -> Conversation:
        """Add ``user_id``; without one, ``actor_id`` joins the conversation."""
        return await self.fanout.add_member(conversation_id, actor_id, user_id or actor_id)

    async def remove_member(self, conversation_id: str, actor_id: str, user_id: str) -> None:
        await self.fanout.remove_member(conversation_id, actor_id, user_id)

    async def info(self, conversation_id: str, viewer_id: str) -> ConversationInfo:
        """
        Details page for a conversation.

        A DM shows the other member's profile. Groups and channels list
        every member's profile and the images shared in them, newest first.
        Profiles are public views, so phone numbers follow each owner's
        privacy setting.

        Raises:
            NotFoundError: no such conversation
            PermissionDeniedError: a private conversation the viewer is not in
        """
        data = await with_retry(
            lambda: self.store.get(chat_path(conversation_id)),
            description=f"load {conversation_id}",
        )
        if data is None:
            raise NotFoundError(f"Conversation {conversation_id} not found", "Conversation not found.")
        conversation = Conversation.model_validate({**data, "id": conversation_id})
        if viewer_id not in conversation.member_ids and not conversation.isPublic:
            raise PermissionDeniedError(f"{viewer_id} cannot view {conversation_id}")

        users = UserService(self.store, fanout=self.fanout)
        info = ConversationInfo(conversation=conversation.to_store())

        if conversation.type == ConversationType.DM:
            others = sorted(conversation.member_ids - {viewer_id})
            if others:
                try:
                    info.user = await users.public_view(others[0], viewer_id)
                except NotFoundError:
                    logger.info(f"DM {conversation_id} partner {others[0]} has no profile")
            return info

        for uid in sorted(conversation.member_ids):
            try:
                info.members.append(await users.public_view(uid, viewer_id))
            except NotFoundError:
                logger.info(f"Skipping member {uid} of {conversation_id}: no profile")

        messages = await MessageService(self.store).list_messages(conversation_id)
        info.media = [message.imageUrl for message in reversed(messages) if message.imageUrl]
        return info
