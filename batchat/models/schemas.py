"""
Pydantic schemas for store documents and API request/response validation.

Field names follow the document store's camelCase wire format.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

IMAGE_PLACEHOLDER = "📷 Image"


class ConversationType(str, Enum):
    """Kinds of conversation."""

    DM = "dm"
    GROUP = "group"
    CHANNEL = "channel"


class OwnerType(str, Enum):
    """Who a handle belongs to."""

    USER = "user"
    GROUP = "group"
    CHANNEL = "channel"


class StoreDocument(BaseModel):
    """Base for documents read from the store; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    def to_store(self) -> dict:
        return self.model_dump(exclude_none=True, mode="json")


# ============ User Schemas ============

class PrivacySettings(StoreDocument):
    """Per-user visibility settings."""

    showPhoneNumber: Literal["everyone", "none"] = "none"


class UserProfile(StoreDocument):
    """A user's profile at users/{uid}."""

    uid: str
    name: str
    handle: str
    email: str
    phone: str
    avatarUrl: Optional[str] = None
    bio: Optional[str] = None
    birthday: Optional[str] = None
    privacy: PrivacySettings = Field(default_factory=PrivacySettings)
    chats: Dict[str, bool] = Field(default_factory=dict)


# ============ Message Schemas ============

class LastMessageSummary(StoreDocument):
    """Denormalized mirror of the newest message, at chats/{id}/lastMessage."""

    text: Optional[str] = None
    imageUrl: Optional[str] = None
    senderId: str
    senderName: str
    senderAvatar: Optional[str] = None
    timestamp: int = 0


class Message(StoreDocument):
    """A message at chats/{id}/messages/{messageId}."""

    id: str
    text: Optional[str] = None
    imageUrl: Optional[str] = None
    senderId: str
    senderName: str
    senderAvatar: Optional[str] = None
    timestamp: Optional[int] = None
    unreadCount: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def require_content(self) -> "Message":
        if not self.text and not self.imageUrl:
            raise ValueError("A message needs text or an image")
        return self


# ============ Conversation Schemas ============

class Conversation(StoreDocument):
    """A conversation document at chats/{id}."""

    id: str
    type: ConversationType
    name: str
    handle: Optional[str] = None
    avatarUrl: Optional[str] = None
    description: Optional[str] = None
    members: Dict[str, bool]
    isPublic: Optional[bool] = None
    ownerId: Optional[str] = None
    admins: Optional[Dict[str, bool]] = None
    lastMessage: Optional[LastMessageSummary] = None
    unreadCounts: Dict[str, Annotated[int, Field(ge=0)]] = Field(default_factory=dict)

    @property
    def member_ids(self) -> set[str]:
        return {uid for uid, present in self.members.items() if present}

    @property
    def last_timestamp(self) -> int:
        return self.lastMessage.timestamp if self.lastMessage else 0

    def is_admin(self, uid: str) -> bool:
        return self.ownerId == uid or bool((self.admins or {}).get(uid))


class ConversationInfo(BaseModel):
    """Details page of a conversation as one viewer sees it."""

    conversation: Dict[str, Any]
    user: Optional[Dict[str, Any]] = None
    members: List[Dict[str, Any]] = Field(default_factory=list)
    media: List[str] = Field(default_factory=list)


class HandleEntry(StoreDocument):
    """Registry entry at handles/{handle}."""

    ownerType: OwnerType
    ownerId: str


# ============ Timeline Schemas ============

class DateSeparator(BaseModel):
    """Marker inserted where the calendar day changes between two messages."""

    kind: Literal["date"] = "date"
    label: str


class TimelineMessage(BaseModel):
    """A message entry of a rendered timeline."""

    kind: Literal["message"] = "message"
    message: Message


TimelineItem = Annotated[Union[DateSeparator, TimelineMessage], Field(discriminator="kind")]


# ============ Search Schemas ============

class UserResult(BaseModel):
    """Search hit on a user."""

    kind: Literal["user"] = "user"
    uid: str
    name: str
    handle: str
    avatarUrl: Optional[str] = None
    score: int


class GroupResult(BaseModel):
    """Search hit on a public group."""

    kind: Literal["group"] = "group"
    id: str
    name: str
    handle: Optional[str] = None
    avatarUrl: Optional[str] = None
    description: Optional[str] = None
    memberCount: int = 0
    score: int


class ChannelResult(GroupResult):
    """Search hit on a public channel."""

    kind: Literal["channel"] = "channel"


SearchResult = Annotated[Union[UserResult, GroupResult, ChannelResult], Field(discriminator="kind")]


# ============ API Request Schemas ============

class RegisterProfileRequest(BaseModel):
    """Profile created right after the identity provider signs the user up."""

    name: str = Field(..., min_length=1)
    handle: str = Field(..., min_length=1)
    email: str
    phone: str


class UpdateProfileRequest(BaseModel):
    """Editable profile fields."""

    name: Optional[str] = Field(None, min_length=1)
    bio: Optional[str] = None
    birthday: Optional[str] = None
    showPhoneNumber: Optional[Literal["everyone", "none"]] = None


class CreateConversationRequest(BaseModel):
    """Group or channel creation."""

    type: Literal["group", "channel"]
    name: str = Field(..., min_length=1)
    handle: Optional[str] = None
    description: Optional[str] = None
    isPublic: bool = False
    members: List[str] = Field(default_factory=list)


class DirectMessageRequest(BaseModel):
    """Open (or create) the DM with another user."""

    userId: str


class AddMemberRequest(BaseModel):
    """Add a user to a conversation; omit userId to join a public one yourself."""

    userId: Optional[str] = None


class SendMessageRequest(BaseModel):
    """New message payload."""

    text: Optional[str] = None
    imageUrl: Optional[str] = None


class SendMessageResponse(BaseModel):
    messageId: str
    timestamp: int
