"""
Search endpoint.
"""

from typing import List

from fastapi import APIRouter, Query

from batchat.api.deps import CurrentUserDep, StoreDep, to_http_exception
from batchat.core.exceptions import ChatError
from batchat.models.schemas import SearchResult
from batchat.services.search_service import SearchService

router = APIRouter()


@router.get("/", response_model=List[SearchResult])
async def search(
    store: StoreDep,
    current_user: CurrentUserDep,
    q: str = Query("", max_length=100, description="Free-text query"),
):
    """Users and public groups/channels matching ``q`` on name or handle, best first."""
    try:
        return await SearchService(store).search(q, current_user.uid)
    except ChatError as e:
        raise to_http_exception(e)
