"""
User profile endpoints.
"""

from fastapi import APIRouter, File, HTTPException, UploadFile, status

from batchat.api.deps import CurrentUidDep, CurrentUserDep, StoreDep, UploaderDep, to_http_exception
from batchat.core.exceptions import ChatError
from batchat.models.schemas import RegisterProfileRequest, UpdateProfileRequest
from batchat.services.user_service import UserService

router = APIRouter()


@router.post("/", status_code=status.HTTP_201_CREATED)
async def register_profile(
    request: RegisterProfileRequest,
    store: StoreDep,
    uid: CurrentUidDep,
):
    """
    Create the caller's profile after sign-up with the identity provider.

    The handle is claimed in the same write; a taken handle answers 409.
    """
    try:
        profile = await UserService(store).register(uid, request)
    except ChatError as e:
        raise to_http_exception(e)
    return profile.to_store()


@router.get("/me")
async def get_my_profile(current_user: CurrentUserDep):
    """The caller's full profile."""
    return current_user.to_store()


@router.patch("/me")
async def update_my_profile(
    request: UpdateProfileRequest,
    store: StoreDep,
    current_user: CurrentUserDep,
):
    """Edit name, bio, birthday or phone visibility."""
    try:
        profile = await UserService(store).update_profile(current_user.uid, request)
    except ChatError as e:
        raise to_http_exception(e)
    return profile.to_store()


@router.post("/me/avatar")
async def upload_avatar(
    store: StoreDep,
    uploader: UploaderDep,
    current_user: CurrentUserDep,
    file: UploadFile = File(...),
):
    """Upload a new avatar image."""
    data = await file.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
    try:
        url = await UserService(store, uploader=uploader).set_avatar(current_user.uid, data, file.filename)
    except ChatError as e:
        raise to_http_exception(e)
    return {"avatarUrl": url}


@router.get("/{uid}")
async def get_profile(
    uid: str,
    store: StoreDep,
    current_user: CurrentUserDep,
):
    """Another user's profile, with the phone number hidden unless they share it."""
    try:
        return await UserService(store).public_view(uid, current_user.uid)
    except ChatError as e:
        raise to_http_exception(e)
