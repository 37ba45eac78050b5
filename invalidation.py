"""Which cache entries a ledger mutation makes stale, and purging them.

Transaction changes purge the owning user's analytics and transaction
list entries and nothing belonging to other users. Category changes purge
the shared category lists only; per-user analytics keep stale category
names and colours until their own TTL runs out.

A purge that fails because the cache store is down is logged and not
raised: the ledger write has already committed, and the affected entries
expire on their TTL.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from cache import CacheManager
from cache_keys import CacheKeys
from errors import CacheUnavailableError


logger = logging.getLogger(__name__)


class Entity(str, Enum):
    transaction = "transaction"
    category = "category"


class Action(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


@dataclass(frozen=True)
class LedgerMutation:
    entity: Entity
    action: Action
    user_id: Optional[int] = None


@dataclass
class InvalidationResult:
    patterns: list[str]
    deleted: int = 0
    failed: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


def patterns_for(mutation: LedgerMutation) -> list[str]:
    if mutation.entity == Entity.transaction:
        if mutation.user_id is None:
            raise ValueError("Transaction mutations must name the owning user")
        return [
            CacheKeys.analytics_pattern(mutation.user_id),
            CacheKeys.transactions_pattern(mutation.user_id),
        ]
    return [CacheKeys.categories_pattern()]


class CacheInvalidator:
    def __init__(self, cache: CacheManager) -> None:
        self.cache = cache

    async def _purge(self, reason: str, patterns: list[str]) -> InvalidationResult:
        result = InvalidationResult(patterns=patterns)
        for pattern in patterns:
            try:
                result.deleted += await self.cache.delete_by_pattern(pattern)
            except CacheUnavailableError as exc:
                result.failed.append(pattern)
                logger.error(
                    f"cache_invalidation_failed: reason={reason} pattern={pattern} error={exc}"
                )
        return result

    async def apply(self, mutation: LedgerMutation) -> InvalidationResult:
        reason = f"{mutation.entity.value}_{mutation.action.value}"
        return await self._purge(reason, patterns_for(mutation))

    async def invalidate_user_analytics(self, user_id: int) -> InvalidationResult:
        return await self.apply(
            LedgerMutation(Entity.transaction, Action.update, user_id=user_id)
        )

    async def invalidate_categories_cache(self) -> InvalidationResult:
        return await self.apply(LedgerMutation(Entity.category, Action.update))

    async def invalidate_user_cache(self, user_id: int) -> InvalidationResult:
        return await self._purge(
            "user_reset",
            [
                CacheKeys.analytics_pattern(user_id),
                CacheKeys.transactions_pattern(user_id),
                CacheKeys.user_pattern(user_id),
            ],
        )
