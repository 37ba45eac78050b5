from fnmatch import fnmatchcase

from cache_keys import DEFAULT_TTL_SECONDS, CacheKeys, DataClass, stable_filters
from models import TransactionType


def test_key_layout_and_ttls() -> None:
    keys = CacheKeys("v1")

    summary = keys.analytics_summary(42, "month")
    assert summary.key == "analytics:v1:user:42:summary:month"
    assert summary.ttl_seconds == 15 * 60

    assert keys.insights(42).key == "analytics:v1:user:42:insights"
    assert keys.insights(42).ttl_seconds == DEFAULT_TTL_SECONDS == 10 * 60

    assert keys.categories().key == "categories:v1:all"
    assert keys.categories(TransactionType.income).key == "categories:v1:income"
    assert keys.categories().ttl_seconds == 60 * 60

    assert keys.user_profile(42).ttl_seconds == 30 * 60
    assert keys.transactions(42, {}).key == "transactions:v1:user:42:all"
    assert keys.transactions(42, {}).ttl_seconds == 5 * 60


def test_only_transaction_pages_are_compressible() -> None:
    keys = CacheKeys("v1")
    assert keys.transactions(1, {}).compressible
    assert not keys.analytics_summary(1, "month").compressible
    assert keys.transactions(1, {}).data_class == DataClass.transactions


def test_filter_serialization_is_order_independent_and_distinct() -> None:
    a = stable_filters({"type": "expense", "category_id": 3, "search": None})
    b = stable_filters({"category_id": 3, "type": "expense"})
    c = stable_filters({"category_id": 3, "type": "income"})
    assert a == b
    assert a != c
    assert stable_filters({"category_id": None}) == "all"


def test_schema_version_is_part_of_every_key() -> None:
    old, new = CacheKeys("v1"), CacheKeys("v2")
    assert old.analytics_summary(1, "all").key != new.analytics_summary(1, "all").key
    pattern = CacheKeys.analytics_pattern(1)
    assert fnmatchcase(old.analytics_summary(1, "all").key, pattern)
    assert fnmatchcase(new.analytics_summary(1, "all").key, pattern)


def test_patterns_do_not_cross_users() -> None:
    keys = CacheKeys("v1")
    user_4 = CacheKeys.analytics_pattern(4)
    assert fnmatchcase(keys.monthly_trends(4, 12).key, user_4)
    assert not fnmatchcase(keys.monthly_trends(42, 12).key, user_4)

    txn_4 = CacheKeys.transactions_pattern(4)
    assert fnmatchcase(keys.transactions(4, {"page": 1}).key, txn_4)
    assert not fnmatchcase(keys.transactions(42, {"page": 1}).key, txn_4)
    assert not fnmatchcase(keys.analytics_summary(4, "month").key, txn_4)


def test_categories_pattern_covers_all_category_lists() -> None:
    keys = CacheKeys("v1")
    pattern = CacheKeys.categories_pattern()
    assert fnmatchcase(keys.categories().key, pattern)
    assert fnmatchcase(keys.categories(TransactionType.expense).key, pattern)
    assert not fnmatchcase(keys.analytics_summary(1, "month").key, pattern)
