"""Cache key construction and TTL policy.

Every key handed to the cache manager is built here, together with the
pattern that invalidates it, so the two cannot drift apart.

Key layout: ``{data_class}:{schema_version}:user:{user_id}:{discriminator}``
for per-user data, ``categories:{schema_version}:{type}`` for the shared
category lists. Invalidation patterns wildcard the version segment so a
purge also reaches entries written under an older schema version.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from models import TransactionType


class DataClass(str, Enum):
    analytics = "analytics"
    categories = "categories"
    user = "user"
    transactions = "transactions"


TTL_SECONDS: dict[DataClass, int] = {
    DataClass.analytics: 15 * 60,
    DataClass.categories: 60 * 60,
    DataClass.user: 30 * 60,
    DataClass.transactions: 5 * 60,
}

# Insights and other time-sensitive values.
DEFAULT_TTL_SECONDS = 10 * 60

# Only transaction list pages are large enough to be worth compressing.
COMPRESSED_CLASSES = frozenset({DataClass.transactions})


@dataclass(frozen=True)
class CacheKey:
    key: str
    data_class: DataClass
    ttl_seconds: int

    @property
    def compressible(self) -> bool:
        return self.data_class in COMPRESSED_CLASSES

    def __str__(self) -> str:
        return self.key


def stable_filters(filters: Mapping[str, Any]) -> str:
    """Canonical form of a filter set: unset values dropped, keys sorted."""
    present = {k: v for k, v in filters.items() if v is not None}
    if not present:
        return "all"
    return json.dumps(present, sort_keys=True, separators=(",", ":"), default=str)


class CacheKeys:
    def __init__(self, schema_version: str = "v1") -> None:
        self.schema_version = schema_version

    def _user_key(
        self,
        data_class: DataClass,
        user_id: int,
        *parts: object,
        ttl_seconds: Optional[int] = None,
    ) -> CacheKey:
        segments = [data_class.value, self.schema_version, "user", str(user_id)]
        segments.extend(str(part) for part in parts)
        return CacheKey(
            key=":".join(segments),
            data_class=data_class,
            ttl_seconds=ttl_seconds or TTL_SECONDS[data_class],
        )

    def analytics_summary(self, user_id: int, period: str) -> CacheKey:
        return self._user_key(DataClass.analytics, user_id, "summary", period)

    def statistics(self, user_id: int, period: str) -> CacheKey:
        return self._user_key(DataClass.analytics, user_id, "stats", period)

    def category_breakdown(
        self, user_id: int, txn_type: TransactionType, period: str
    ) -> CacheKey:
        return self._user_key(
            DataClass.analytics, user_id, "breakdown", txn_type.value, period
        )

    def monthly_trends(self, user_id: int, months: int) -> CacheKey:
        return self._user_key(DataClass.analytics, user_id, "trends", f"{months}m")

    def category_trends(self, user_id: int, category_id: int, months: int) -> CacheKey:
        return self._user_key(
            DataClass.analytics, user_id, "category_trends", category_id, f"{months}m"
        )

    def budget(self, user_id: int, period: str) -> CacheKey:
        return self._user_key(DataClass.analytics, user_id, "budget", period)

    def insights(self, user_id: int) -> CacheKey:
        return self._user_key(
            DataClass.analytics, user_id, "insights", ttl_seconds=DEFAULT_TTL_SECONDS
        )

    def transactions(self, user_id: int, filters: Mapping[str, Any]) -> CacheKey:
        return self._user_key(
            DataClass.transactions, user_id, stable_filters(filters)
        )

    def user_profile(self, user_id: int) -> CacheKey:
        """Reserved for the user data class.

        Profile reads belong to the account service, which is not part of this
        package; the key is defined here so `invalidate_user_cache` purges it.
        """
        return self._user_key(DataClass.user, user_id, "profile")

    def categories(self, txn_type: Optional[TransactionType] = None) -> CacheKey:
        scope = txn_type.value if txn_type else "all"
        return CacheKey(
            key=f"{DataClass.categories.value}:{self.schema_version}:{scope}",
            data_class=DataClass.categories,
            ttl_seconds=TTL_SECONDS[DataClass.categories],
        )

    # Invalidation patterns. The trailing ":" after the user id keeps user 4
    # from matching user 42.

    @staticmethod
    def analytics_pattern(user_id: int) -> str:
        return f"{DataClass.analytics.value}:*:user:{user_id}:*"

    @staticmethod
    def transactions_pattern(user_id: int) -> str:
        return f"{DataClass.transactions.value}:*:user:{user_id}:*"

    @staticmethod
    def user_pattern(user_id: int) -> str:
        return f"{DataClass.user.value}:*:user:{user_id}:*"

    @staticmethod
    def categories_pattern() -> str:
        return f"{DataClass.categories.value}:*"
