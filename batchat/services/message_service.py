"""
Message sending, read receipts and timelines.
"""

import logging
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from batchat.config import get_settings
from batchat.core.exceptions import ChatValidationError, NotFoundError, PermissionDeniedError
from batchat.core.fanout import chat_path
from batchat.core.retry import with_retry
from batchat.core.store import SERVER_TIMESTAMP, DocumentStore, Increment
from batchat.core.timeline import MessageTimeline, build_timeline
from batchat.core.uploads import BlobUploader
from batchat.models.schemas import (
    IMAGE_PLACEHOLDER,
    Conversation,
    ConversationType,
    Message,
    UserProfile,
)

logger = logging.getLogger(__name__)


class MessageService:
    """Service for writing and reading a conversation's messages."""

    def __init__(self, store: DocumentStore, uploader: Optional[BlobUploader] = None):
        self.store = store
        self.uploader = uploader

    async def send(
        self,
        conversation_id: str,
        sender: UserProfile,
        text: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> Tuple[str, int]:
        """
        Send a message.

        One commit writes the message, refreshes the lastMessage mirror with
        the same server timestamp and bumps the unread counter of every
        member except the sender.

        Args:
            conversation_id: Target conversation
            sender: Sender's profile (name and avatar are denormalized)
            text: Message text
            image_url: URL returned by the blob host

        Returns:
            (message id, server timestamp)
        """
        text = text.strip() if text else None
        if not text and not image_url:
            raise ChatValidationError("Empty message", "Cannot send an empty message.")

        conversation = await self._load_conversation(conversation_id)
        if sender.uid not in conversation.member_ids:
            raise PermissionDeniedError(f"{sender.uid} is not a member of {conversation_id}")
        if conversation.type == ConversationType.CHANNEL and not conversation.is_admin(sender.uid):
            raise PermissionDeniedError(
                f"{sender.uid} cannot post in channel {conversation_id}",
                "You cannot send messages in this channel.",
            )

        payload = {
            "senderId": sender.uid,
            "senderName": sender.name,
            "senderAvatar": sender.avatarUrl,
            "timestamp": SERVER_TIMESTAMP,
            "text": text,
            "imageUrl": image_url,
        }
        summary = dict(payload, text=text or IMAGE_PLACEHOLDER)

        message_id = self.store.new_key()
        updates: Dict[str, object] = {
            chat_path(conversation_id, "messages", message_id): payload,
            chat_path(conversation_id, "lastMessage"): summary,
        }
        for uid in sorted(conversation.member_ids - {sender.uid}):
            updates[chat_path(conversation_id, "unreadCounts", uid)] = Increment(1)

        timestamp = await with_retry(
            lambda: self.store.update(updates),
            description=f"send to {conversation_id}",
        )
        logger.debug(f"Message {message_id} sent to {conversation_id} at {timestamp}")
        return message_id, timestamp

    async def send_image(
        self,
        conversation_id: str,
        sender: UserProfile,
        data: bytes,
        filename: Optional[str] = None,
    ) -> Tuple[str, int]:
        """Upload an image to the blob host, then send it as a message."""
        if self.uploader is None:
            raise ChatValidationError("No blob uploader configured", "Image upload is not available.")
        image_url = await self.uploader.upload(data, filename)
        return await self.send(conversation_id, sender, image_url=image_url)

    async def mark_read(self, conversation_id: str, uid: str) -> None:
        """Reset ``uid``'s unread counter for the conversation."""
        conversation = await self._load_conversation(conversation_id)
        if uid not in conversation.member_ids:
            raise PermissionDeniedError(f"{uid} is not a member of {conversation_id}")
        await with_retry(
            lambda: self.store.update({chat_path(conversation_id, "unreadCounts", uid): 0}),
            description=f"mark {conversation_id} read",
        )

    async def list_messages(self, conversation_id: str) -> List[Message]:
        """Messages ordered by timestamp; uncommitted ones (no timestamp) go last."""
        raw = await with_retry(
            lambda: self.store.get(chat_path(conversation_id, "messages")),
            description=f"load messages of {conversation_id}",
        )
        messages = []
        for message_id, data in (raw or {}).items():
            try:
                messages.append(Message.model_validate({**data, "id": message_id}))
            except ValidationError:
                logger.warning(f"Skipping malformed message {message_id} in {conversation_id}")
        messages.sort(key=lambda m: (m.timestamp is None, m.timestamp or 0, m.id))
        return messages

    async def timeline(self, conversation_id: str, viewer_id: str) -> MessageTimeline:
        """Date-grouped timeline, visible to members and, for public conversations, anyone."""
        conversation = await self._load_conversation(conversation_id)
        if viewer_id not in conversation.member_ids and not conversation.isPublic:
            raise PermissionDeniedError(f"{viewer_id} cannot read {conversation_id}")
        messages = await self.list_messages(conversation_id)
        return build_timeline(messages, get_settings().timeline_timezone)

    async def _load_conversation(self, conversation_id: str) -> Conversation:
        data = await with_retry(
            lambda: self.store.get(chat_path(conversation_id)),
            description=f"load {conversation_id}",
        )
        if data is None:
            raise NotFoundError(f"Conversation {conversation_id} not found", "Conversation not found.")
        return Conversation.model_validate({**data, "id": conversation_id})
