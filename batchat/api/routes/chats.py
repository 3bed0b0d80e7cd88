"""
Conversation and message endpoints.
"""

from typing import List

from fastapi import APIRouter, File, HTTPException, UploadFile, status

from batchat.api.deps import CurrentUserDep, StoreDep, UploaderDep, to_http_exception
from batchat.core.exceptions import ChatError
from batchat.models.schemas import (
    AddMemberRequest,
    ConversationInfo,
    CreateConversationRequest,
    DirectMessageRequest,
    SendMessageRequest,
    SendMessageResponse,
    TimelineItem,
)
from batchat.services.chat_list_service import ChatListService
from batchat.services.conversation_service import ConversationService
from batchat.services.message_service import MessageService

router = APIRouter()


@router.get("/")
async def list_chats(store: StoreDep, current_user: CurrentUserDep):
    """
    The caller's conversations, most recent activity first.

    Each entry carries the caller's unread count and a one-line preview.
    DMs are named after the other member.
    """
    service = ChatListService(store, current_user.uid)
    try:
        await service.start()
        return service.entries()
    except ChatError as e:
        raise to_http_exception(e)
    finally:
        await service.close()


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_chat(
    request: CreateConversationRequest,
    store: StoreDep,
    current_user: CurrentUserDep,
):
    """Create a group or channel owned by the caller."""
    try:
        conversation = await ConversationService(store).create(current_user.uid, request)
    except ChatError as e:
        raise to_http_exception(e)
    return conversation.to_store()


@router.post("/dm")
async def open_direct_message(
    request: DirectMessageRequest,
    store: StoreDep,
    current_user: CurrentUserDep,
):
    """Open the DM with another user, creating it on first use."""
    try:
        conversation = await ConversationService(store).open_direct_message(current_user.uid, request.userId)
    except ChatError as e:
        raise to_http_exception(e)
    return conversation.to_store()


@router.get("/{chat_id}", response_model=ConversationInfo, response_model_exclude_none=True)
async def get_chat_info(chat_id: str, store: StoreDep, current_user: CurrentUserDep):
    """Conversation details: the other member of a DM, or members and shared media."""
    try:
        return await ConversationService(store).info(chat_id, current_user.uid)
    except ChatError as e:
        raise to_http_exception(e)


@router.post("/{chat_id}/members")
async def add_member(
    chat_id: str,
    request: AddMemberRequest,
    store: StoreDep,
    current_user: CurrentUserDep,
):
    """Add a member (admins), or join a public conversation (anyone, without userId)."""
    try:
        conversation = await ConversationService(store).add_member(chat_id, current_user.uid, request.userId)
    except ChatError as e:
        raise to_http_exception(e)
    return conversation.to_store()


@router.delete("/{chat_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    chat_id: str,
    user_id: str,
    store: StoreDep,
    current_user: CurrentUserDep,
):
    """Remove a member (admins) or leave (yourself)."""
    try:
        await ConversationService(store).remove_member(chat_id, current_user.uid, user_id)
    except ChatError as e:
        raise to_http_exception(e)


@router.post("/{chat_id}/messages", response_model=SendMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    chat_id: str,
    request: SendMessageRequest,
    store: StoreDep,
    current_user: CurrentUserDep,
):
    """Send a text message (or an already-hosted image URL)."""
    try:
        message_id, timestamp = await MessageService(store).send(
            chat_id, current_user, text=request.text, image_url=request.imageUrl
        )
    except ChatError as e:
        raise to_http_exception(e)
    return SendMessageResponse(messageId=message_id, timestamp=timestamp)


@router.post("/{chat_id}/images", response_model=SendMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_image(
    chat_id: str,
    store: StoreDep,
    uploader: UploaderDep,
    current_user: CurrentUserDep,
    file: UploadFile = File(...),
):
    """Upload an image to the blob host and send it."""
    data = await file.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
    try:
        message_id, timestamp = await MessageService(store, uploader=uploader).send_image(
            chat_id, current_user, data, file.filename
        )
    except ChatError as e:
        raise to_http_exception(e)
    return SendMessageResponse(messageId=message_id, timestamp=timestamp)


@router.get("/{chat_id}/timeline", response_model=List[TimelineItem], response_model_exclude_none=True)
async def get_timeline(chat_id: str, store: StoreDep, current_user: CurrentUserDep):
    """Messages with date separators, oldest first."""
    try:
        timeline = await MessageService(store).timeline(chat_id, current_user.uid)
    except ChatError as e:
        raise to_http_exception(e)
    return list(timeline)


@router.post("/{chat_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_read(chat_id: str, store: StoreDep, current_user: CurrentUserDep):
    """Reset the caller's unread counter."""
    try:
        await MessageService(store).mark_read(chat_id, current_user.uid)
    except ChatError as e:
        raise to_http_exception(e)
