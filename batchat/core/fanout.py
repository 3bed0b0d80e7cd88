"""
Denormalized membership writes.

A membership fact lives in several places at once:
- chats/{id} (members, admins, unreadCounts)
- users/{uid}/chats/{id} (each member's personal index)
- handles/{handle} (when the conversation or user claims a handle)

Every operation here builds one multi-path update and commits it
atomically, with "must be absent" guards on the paths it claims.
"""

import logging
import re
from typing import Dict, Optional

from batchat.core.exceptions import (
    ChatValidationError,
    HandleConflictError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailed,
)
from batchat.core.retry import with_retry
from batchat.core.store import DocumentStore, join_path
from batchat.models.schemas import (
    Conversation,
    ConversationType,
    HandleEntry,
    OwnerType,
    UserProfile,
)

logger = logging.getLogger(__name__)

HANDLE_PATTERN = re.compile(r"^[a-z0-9_]{3,32}$")


def normalize_handle(handle: str) -> str:
    """Case-fold a handle and check it is well formed."""
    folded = handle.strip().lstrip("@").casefold()
    if not HANDLE_PATTERN.match(folded):
        raise ChatValidationError(
            f"Invalid handle {handle!r}",
            "Handles are 3-32 characters: letters, digits and underscores.",
        )
    return folded


def chat_path(conversation_id: str, *rest: str) -> str:
    return join_path("chats", conversation_id, *rest)


def user_path(uid: str, *rest: str) -> str:
    return join_path("users", uid, *rest)


def handle_path(handle: str) -> str:
    return join_path("handles", handle)


class MembershipFanoutWriter:
    """Performs the multi-location writes behind membership changes."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        """
        Create a conversation and fan its membership out.

        Writes the conversation document, the handle registry entry (if the
        conversation has a handle), every member's index entry and a zeroed
        unread counter per member, all in one commit.

        Raises:
            HandleConflictError: the handle is already registered
            PreconditionFailed: a document already exists at chats/{id}
            ChatValidationError: empty membership or owner/admins outside members
        """
        members = conversation.member_ids
        if not members:
            raise ChatValidationError("A conversation needs at least one member")

        handle = None
        if conversation.type == ConversationType.DM:
            if conversation.handle:
                raise ChatValidationError("Direct messages cannot have a handle")
        else:
            if conversation.ownerId not in members:
                raise ChatValidationError("The owner must be a member")
            admins = {uid for uid, present in (conversation.admins or {}).items() if present}
            if not admins <= members:
                raise ChatValidationError("Admins must be members")
            if conversation.handle:
                handle = normalize_handle(conversation.handle)

        unread = {uid: conversation.unreadCounts.get(uid, 0) for uid in members}
        conversation = conversation.model_copy(update={"handle": handle, "unreadCounts": unread})

        updates: Dict[str, object] = {chat_path(conversation.id): conversation.to_store()}
        guards = [chat_path(conversation.id)]
        if handle:
            await self._ensure_handle_free(handle)
            updates[handle_path(handle)] = HandleEntry(
                ownerType=OwnerType(conversation.type), ownerId=conversation.id
            ).to_store()
            guards.append(handle_path(handle))
        for uid in sorted(members):
            updates[user_path(uid, "chats", conversation.id)] = True

        await self._commit(updates, guards, handle)
        logger.info(
            f"Created {conversation.type} {conversation.id} with {len(members)} member(s)"
        )
        return conversation

    async def claim_user_handle(self, profile: UserProfile) -> UserProfile:
        """
        Register a user profile together with its handle.

        Raises:
            HandleConflictError: the handle is already registered
            ChatValidationError: a profile already exists for this uid
        """
        handle = normalize_handle(profile.handle)
        profile = profile.model_copy(update={"handle": handle})
        await self._ensure_handle_free(handle)

        updates = {
            user_path(profile.uid): profile.to_store(),
            handle_path(handle): HandleEntry(ownerType=OwnerType.USER, ownerId=profile.uid).to_store(),
        }
        try:
            await self._commit(updates, [user_path(profile.uid), handle_path(handle)], handle)
        except PreconditionFailed:
            raise ChatValidationError(
                f"Profile {profile.uid} already exists", "This account already has a profile."
            )
        logger.info(f"Registered profile {profile.uid} as @{handle}")
        return profile

    async def add_member(self, conversation_id: str, actor_id: str, user_id: str) -> Conversation:
        """
        Add ``user_id`` to a group or channel.

        Owners and admins may add anyone; any user may add themselves to a
        public conversation. Adding an existing member is a no-op.
        """
        conversation = await self._load_conversation(conversation_id)
        if conversation.type == ConversationType.DM:
            raise ChatValidationError("Direct message membership is fixed")
        if user_id in conversation.member_ids:
            return conversation

        joining_self = user_id == actor_id
        if not conversation.is_admin(actor_id) and not (joining_self and conversation.isPublic):
            raise PermissionDeniedError(f"{actor_id} cannot add members to {conversation_id}")
        if not joining_self and await self.store.get(user_path(user_id)) is None:
            raise NotFoundError(f"User {user_id} not found", "User not found.")

        updates = {
            chat_path(conversation_id, "members", user_id): True,
            chat_path(conversation_id, "unreadCounts", user_id): 0,
            user_path(user_id, "chats", conversation_id): True,
        }
        await self._commit(updates, [], None)
        logger.info(f"Added {user_id} to {conversation_id}")

        members = dict(conversation.members, **{user_id: True})
        unread = dict(conversation.unreadCounts, **{user_id: 0})
        return conversation.model_copy(update={"members": members, "unreadCounts": unread})

    async def remove_member(self, conversation_id: str, actor_id: str, user_id: str) -> None:
        """
        Remove ``user_id`` from a group or channel (or leave it, when actor == user).

        The owner can never be removed.
        """
        conversation = await self._load_conversation(conversation_id)
        if conversation.type == ConversationType.DM:
            raise ChatValidationError("Direct message membership is fixed")
        if user_id not in conversation.member_ids:
            return
        if user_id == conversation.ownerId:
            raise ChatValidationError("The owner cannot be removed")
        if user_id != actor_id and not conversation.is_admin(actor_id):
            raise PermissionDeniedError(f"{actor_id} cannot remove members from {conversation_id}")

        updates = {
            chat_path(conversation_id, "members", user_id): None,
            chat_path(conversation_id, "unreadCounts", user_id): None,
            user_path(user_id, "chats", conversation_id): None,
        }
        if (conversation.admins or {}).get(user_id):
            updates[chat_path(conversation_id, "admins", user_id)] = None
        await self._commit(updates, [], None)
        logger.info(f"Removed {user_id} from {conversation_id}")

    async def _load_conversation(self, conversation_id: str) -> Conversation:
        data = await self.store.get(chat_path(conversation_id))
        if data is None:
            raise NotFoundError(f"Conversation {conversation_id} not found", "Conversation not found.")
        return Conversation.model_validate({**data, "id": conversation_id})

    async def _ensure_handle_free(self, handle: str) -> None:
        if await self.store.get(handle_path(handle)) is not None:
            raise HandleConflictError(handle)

    async def _commit(self, updates: dict, guards: list, handle: Optional[str]) -> None:
        try:
            await with_retry(
                lambda: self.store.update(updates, require_absent=guards),
                description="membership fan-out",
            )
        except PreconditionFailed as e:
            if handle and e.path == handle_path(handle):
                raise HandleConflictError(handle)
            raise
