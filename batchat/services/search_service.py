"""
Search over users and public conversations.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from batchat.config import get_settings
from batchat.core.retry import with_retry
from batchat.core.search import SearchRanker
from batchat.core.store import DocumentStore
from batchat.models.schemas import ChannelResult, GroupResult, SearchResult, UserResult

logger = logging.getLogger(__name__)

CandidateKey = Tuple[str, str]


class SearchService:
    """Builds the candidate set for a viewer and ranks it."""

    def __init__(self, store: DocumentStore, fields: Optional[Sequence[str]] = None):
        self.store = store
        self.ranker = SearchRanker(fields or get_settings().search_fields)

    async def search(self, query: str, viewer_id: str) -> List[SearchResult]:
        """
        Rank every other user and every public group/channel against ``query``.

        Returns:
            Tagged results, best match first
        """
        if not query or not query.strip():
            return []

        candidates = await self._load_candidates(viewer_id)
        results: List[SearchResult] = []
        for hit in self.ranker.rank(query, candidates):
            kind, key = hit.key
            record = hit.record
            if kind == "user":
                results.append(
                    UserResult(
                        uid=key,
                        name=record.get("name", ""),
                        handle=record.get("handle", ""),
                        avatarUrl=record.get("avatarUrl"),
                        score=hit.score,
                    )
                )
            else:
                result_cls = ChannelResult if record.get("type") == "channel" else GroupResult
                results.append(
                    result_cls(
                        id=key,
                        name=record.get("name", ""),
                        handle=record.get("handle"),
                        avatarUrl=record.get("avatarUrl"),
                        description=record.get("description"),
                        memberCount=sum(1 for present in (record.get("members") or {}).values() if present),
                        score=hit.score,
                    )
                )
        logger.debug(f"Search for {query!r} returned {len(results)} result(s)")
        return results

    async def _load_candidates(self, viewer_id: str) -> Dict[CandidateKey, Any]:
        users = await with_retry(lambda: self.store.get("users"), description="load users") or {}
        chats = await with_retry(lambda: self.store.get("chats"), description="load chats") or {}

        candidates: Dict[CandidateKey, Any] = {}
        for uid, profile in users.items():
            if uid != viewer_id and isinstance(profile, dict):
                candidates[("user", uid)] = profile
        for chat_id, chat in chats.items():
            if isinstance(chat, dict) and chat.get("isPublic") and chat.get("type") in ("group", "channel"):
                candidates[("chat", chat_id)] = chat
        return candidates
