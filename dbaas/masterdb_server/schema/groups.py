"""
Read-only view of the externally owned groups collection.

Groups are a flat tag used to categorize schemas. Their lifecycle belongs to
another system; this module only answers existence and display-name
questions for the schema registry.

Documents look like ``{"groupId": "...", "groupName": "...", "displayName": "..."}``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from ..store.base import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_GROUP_COLLECTION = "groups"


class GroupDirectory:
    """Existence checks and name lookup over the groups collection."""

    def __init__(self, store: DocumentStore, collection: str = DEFAULT_GROUP_COLLECTION) -> None:
        self._store = store
        self.collection = collection

    async def exists(self, group_id: str) -> bool:
        return await self._store.exists(self.collection, {"groupId": group_id})

    async def get(self, group_id: str) -> dict[str, Any] | None:
        return await self._store.find_one(self.collection, {"groupId": group_id})

    async def names(self, group_ids: Iterable[str | None]) -> dict[str, str]:
        """Map each known group id to its groupName."""
        wanted = sorted({g for g in group_ids if g})
        if not wanted:
            return {}
        groups = await self._store.find(self.collection, {"groupId": {"$in": wanted}})
        return {g["groupId"]: g.get("groupName", "") for g in groups}
