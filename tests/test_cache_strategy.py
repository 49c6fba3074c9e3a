import pytest

from querycache.core.cache.strategy import (
    CacheStrategy,
    CacheStrategyConfig,
    build_strategy,
)
from querycache.models.analysis import QueryAnalysis


def _analysis(operation_type="read", query_type="row-lookup", tables=("users",), fingerprint="f1"):
    return QueryAnalysis.model_validate(
        {
            "operation_type": operation_type,
            "cache_key": {
                "type": query_type,
                "fingerprint": fingerprint,
                "tables": [{"table": t} for t in tables],
            },
        }
    )


def test_row_lookup_with_defaults():
    strategy = CacheStrategy()
    analysis = _analysis()

    assert strategy.should_cache(analysis) is True
    assert strategy.get_ttl(analysis) == 3600
    assert strategy.get_primary_table(analysis) == "users"


def test_disabled_strategy_never_caches():
    strategy = CacheStrategy(CacheStrategyConfig(enabled=False))

    for query_type in ("row-lookup", "simple-where", "table-scan"):
        assert strategy.should_cache(_analysis(query_type=query_type)) is False


@pytest.mark.parametrize("operation_type", ["write", "unknown", "bogus"])
def test_non_reads_are_never_cached(operation_type):
    assert CacheStrategy().should_cache(_analysis(operation_type=operation_type)) is False


def test_excluded_table_anywhere_in_the_query():
    strategy = CacheStrategy()

    assert strategy.should_cache(_analysis(tables=("users", "sessions"))) is False
    assert strategy.should_cache(_analysis(tables=("messenger_messages",))) is False


def test_join_limit_counts_joined_tables_not_the_primary():
    strategy = CacheStrategy(CacheStrategyConfig(max_join_tables=2))

    assert strategy.should_cache(_analysis(tables=("a", "b", "c"))) is True
    assert strategy.should_cache(_analysis(tables=("a", "b", "c", "d"))) is False


def test_zero_join_limit_allows_single_table_only():
    strategy = CacheStrategy(CacheStrategyConfig(max_join_tables=0))

    assert strategy.should_cache(_analysis(tables=("a",))) is True
    assert strategy.should_cache(_analysis(tables=("a", "b"))) is False


@pytest.mark.parametrize(
    "query_type,expected",
    [
        ("row-lookup", True),
        ("simple-where", True),
        ("table-scan", True),
        ("join", False),
        ("aggregate", False),
        ("", False),
    ],
)
def test_query_type_allow_list(query_type, expected):
    assert CacheStrategy().should_cache(_analysis(query_type=query_type)) is expected


def test_ttl_is_minimum_of_default_and_matching_tables():
    strategy = build_strategy(default_ttl_seconds=600, table_ttls={"products": 60, "orders": 120})

    assert strategy.get_ttl(_analysis(tables=("products", "orders"))) == 60
    assert strategy.get_ttl(_analysis(tables=("orders", "users"))) == 120
    assert strategy.get_ttl(_analysis(tables=("users",))) == 600
    assert strategy.get_ttl(_analysis(tables=())) == 600


def test_table_ttl_above_default_does_not_extend_it():
    strategy = build_strategy(default_ttl_seconds=60, table_ttls={"users": 3600})

    assert strategy.get_ttl(_analysis()) == 60


def test_primary_table_empty_when_no_tables():
    assert CacheStrategy().get_primary_table(_analysis(tables=())) is None


def test_excluded_keyword_detection_is_case_insensitive():
    strategy = CacheStrategy()

    assert strategy.has_excluded_keyword("SELECT * FROM t WHERE id = 1 for update") is True
    assert strategy.has_excluded_keyword("SELECT * FROM t LOCK IN SHARE MODE") is True
    assert strategy.has_excluded_keyword("SELECT * FROM t WHERE id = 1") is False


def test_config_is_immutable_and_normalised():
    table_ttls = {"users": 10}
    config = CacheStrategyConfig(exclude_tables=["x"], table_ttls=table_ttls)
    table_ttls["users"] = 99999

    assert config.exclude_tables == frozenset({"x"})
    assert config.table_ttls["users"] == 10
    with pytest.raises(TypeError):
        config.table_ttls["users"] = 1  # type: ignore[index]
    with pytest.raises(AttributeError):
        config.enabled = False  # type: ignore[misc]


def test_config_rejects_negative_values():
    with pytest.raises(ValueError):
        CacheStrategyConfig(default_ttl_seconds=-1)
    with pytest.raises(ValueError):
        CacheStrategyConfig(max_join_tables=-1)


def test_config_from_mapping_ignores_unknown_keys():
    config = CacheStrategyConfig.from_mapping(
        {"default_ttl_seconds": 30, "max_join_tables": 4, "not_a_field": True}
    )

    assert config.default_ttl_seconds == 30
    assert config.max_join_tables == 4


def test_strategy_is_deterministic():
    strategy = CacheStrategy()
    analysis = _analysis(query_type="simple-where", tables=("users", "orders"))

    results = {(strategy.should_cache(analysis), strategy.get_ttl(analysis)) for _ in range(10)}

    assert results == {(True, 3600)}
