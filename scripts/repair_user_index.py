#!/usr/bin/env python3
"""
Re-derive every user's conversation index from conversation membership.

users/{uid}/chats is a denormalized copy of chats/{id}/members. Fan-out
writes keep the two in step; this script repairs stores written before
that was the case, or edited by hand.

Usage:
    python scripts/repair_user_index.py
    python scripts/repair_user_index.py --dry-run
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, Set

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from batchat.config import get_settings
from batchat.core.fanout import user_path
from batchat.core.store import DocumentStore
from batchat.db.database import create_engine
from batchat.db.sql_store import SqlDocumentStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def plan_repairs(store: DocumentStore) -> Dict[str, object]:
    """
    Compare membership with the per-user indexes.

    Returns:
        path -> True for missing index entries, path -> None for entries
        pointing at conversations the user is not a member of
    """
    users = await store.get("users") or {}
    chats = await store.get("chats") or {}

    expected: Dict[str, Set[str]] = {uid: set() for uid in users}
    for chat_id, chat in chats.items():
        for uid, present in ((chat or {}).get("members") or {}).items():
            if present and uid in expected:
                expected[uid].add(chat_id)

    updates: Dict[str, object] = {}
    for uid, profile in users.items():
        indexed = {chat_id for chat_id, flag in ((profile or {}).get("chats") or {}).items() if flag}
        for chat_id in sorted(expected[uid] - indexed):
            updates[user_path(uid, "chats", chat_id)] = True
        for chat_id in sorted(indexed - expected[uid]):
            updates[user_path(uid, "chats", chat_id)] = None
    return updates


async def main_async(dry_run: bool = False) -> None:
    """Main async function."""
    settings = get_settings()
    store = SqlDocumentStore(create_engine(settings.database_url))
    await store.initialize()

    try:
        updates = await plan_repairs(store)
        added = sum(1 for value in updates.values() if value is True)
        removed = len(updates) - added

        logger.info("User index check:")
        logger.info(f"  Missing entries: {added:,}")
        logger.info(f"  Stale entries: {removed:,}")

        if not updates:
            logger.info("Indexes are consistent.")
            return
        if dry_run:
            for path, value in sorted(updates.items()):
                logger.info(f"  {'add' if value else 'drop'} {path}")
            return

        await store.update(updates)
        logger.info(f"Repaired {len(updates):,} index entries.")
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser(
        description="Rebuild users/{uid}/chats from conversation membership"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report differences, don't write",
    )

    args = parser.parse_args()
    asyncio.run(main_async(dry_run=args.dry_run))


if __name__ == "__main__":
    main()
