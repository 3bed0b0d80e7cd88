"""
API router aggregating all route modules.
"""

from fastapi import APIRouter

from batchat.api.routes import health, users, chats, search

router = APIRouter()

# Include all route modules
router.include_router(health.router, prefix="/health", tags=["Health"])
router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(chats.router, prefix="/chats", tags=["Chats"])
router.include_router(search.router, prefix="/search", tags=["Search"])
