"""
User profile service.
"""

import logging
from typing import Optional

from batchat.config import get_settings
from batchat.core.exceptions import ChatValidationError, NotFoundError
from batchat.core.fanout import MembershipFanoutWriter, user_path
from batchat.core.retry import with_retry
from batchat.core.store import DocumentStore
from batchat.core.uploads import BlobUploader
from batchat.models.schemas import (
    PrivacySettings,
    RegisterProfileRequest,
    UpdateProfileRequest,
    UserProfile,
)

logger = logging.getLogger(__name__)


class UserService:
    """Service for creating, editing and viewing user profiles."""

    def __init__(
        self,
        store: DocumentStore,
        uploader: Optional[BlobUploader] = None,
        fanout: Optional[MembershipFanoutWriter] = None,
    ):
        self.store = store
        self.uploader = uploader
        self.fanout = fanout or MembershipFanoutWriter(store)

    async def register(self, uid: str, request: RegisterProfileRequest) -> UserProfile:
        """
        Create the profile for a freshly signed-up account and claim its handle.

        Raises:
            HandleConflictError: the handle is taken
            ChatValidationError: invalid handle, or the profile already exists
        """
        settings = get_settings()
        profile = UserProfile(
            uid=uid,
            name=request.name.strip(),
            handle=request.handle,
            email=request.email,
            phone=request.phone,
            avatarUrl=settings.default_avatar_url.format(key=uid),
            privacy=PrivacySettings(showPhoneNumber="none"),
        )
        return await self.fanout.claim_user_handle(profile)

    async def get_profile(self, uid: str) -> UserProfile:
        data = await with_retry(lambda: self.store.get(user_path(uid)), description=f"load user {uid}")
        if data is None:
            raise NotFoundError(f"User {uid} not found", "User not found.")
        return UserProfile.model_validate({**data, "uid": uid})

    async def public_view(self, uid: str, viewer_id: str) -> dict:
        """Profile as ``viewer_id`` may see it: no conversation index, phone per privacy setting."""
        profile = await self.get_profile(uid)
        view = profile.to_store()
        view.pop("chats", None)
        if viewer_id != uid:
            view.pop("privacy", None)
            if profile.privacy.showPhoneNumber != "everyone":
                view.pop("phone", None)
        return view

    async def update_profile(self, uid: str, request: UpdateProfileRequest) -> UserProfile:
        """Apply a partial profile edit."""
        settings = get_settings()
        if request.bio is not None and len(request.bio) > settings.max_bio_length:
            raise ChatValidationError(
                f"Bio longer than {settings.max_bio_length} characters",
                f"Bio can be at most {settings.max_bio_length} characters.",
            )
        await self.get_profile(uid)

        updates = {}
        if request.name is not None:
            updates[user_path(uid, "name")] = request.name.strip()
        if request.bio is not None:
            updates[user_path(uid, "bio")] = request.bio
        if request.birthday is not None:
            updates[user_path(uid, "birthday")] = request.birthday
        if request.showPhoneNumber is not None:
            updates[user_path(uid, "privacy", "showPhoneNumber")] = request.showPhoneNumber
        if updates:
            await with_retry(lambda: self.store.update(updates), description=f"update user {uid}")
        return await self.get_profile(uid)

    async def set_avatar(self, uid: str, data: bytes, filename: Optional[str] = None) -> str:
        """Upload a new avatar and point the profile at it."""
        if self.uploader is None:
            raise ChatValidationError("No blob uploader configured", "Image upload is not available.")
        await self.get_profile(uid)
        url = await self.uploader.upload(data, filename)
        await with_retry(
            lambda: self.store.update({user_path(uid, "avatarUrl"): url}),
            description=f"set avatar of {uid}",
        )
        logger.info(f"Updated avatar for {uid}")
        return url
