"""
API route dependencies.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from batchat.core.auth import decode_token
from batchat.core.exceptions import (
    ChatError,
    ChatValidationError,
    HandleConflictError,
    NotFoundError,
    PermissionDeniedError,
    StoreUnavailableError,
)
from batchat.core.store import DocumentStore
from batchat.core.uploads import BlobUploader
from batchat.models.schemas import UserProfile
from batchat.services.user_service import UserService


# HTTP Bearer scheme for identity-provider tokens
security = HTTPBearer()


def to_http_exception(error: ChatError) -> HTTPException:
    """Map a core error onto the HTTP status the API reports for it."""
    if isinstance(error, HandleConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, PermissionDeniedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, ChatValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, StoreUnavailableError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=error.user_message)


def get_store(request: Request) -> DocumentStore:
    """The DocumentStore built at startup."""
    return request.app.state.store


def get_uploader(request: Request) -> Optional[BlobUploader]:
    return getattr(request.app.state, "uploader", None)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    """
    Dependency to get the caller's uid.

    Requires a valid identity-provider bearer token.
    """
    token_data = decode_token(credentials.credentials)

    if not token_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token_data.user_id


async def get_current_user(
    uid: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_store),
) -> UserProfile:
    """
    Dependency to get the caller's profile.

    Accounts without a profile are rejected; they must register first.
    """
    try:
        return await UserService(store).get_profile(uid)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Profile not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except ChatError as e:
        raise to_http_exception(e)


# Dependency annotations
StoreDep = Annotated[DocumentStore, Depends(get_store)]
UploaderDep = Annotated[Optional[BlobUploader], Depends(get_uploader)]
CurrentUidDep = Annotated[str, Depends(get_current_user_id)]
CurrentUserDep = Annotated[UserProfile, Depends(get_current_user)]
