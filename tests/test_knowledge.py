from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from aris.config import Settings
from aris.db import SqlKnowledgeStore, get_session_factory, init_db
from aris.errors import SchemaNotInitializedError
from aris.knowledge import InMemoryKnowledgeStore, KnowledgeStore, Snippet
from aris.learning import CodeDiff, LearningEngine, Rule, RuleCategory


@pytest_asyncio.fixture
async def sqlite_engine(sqlite_url: str) -> AsyncGenerator[AsyncEngine]:
    engine = create_async_engine(sqlite_url)
    yield engine
    await engine.dispose()


def _snippets() -> list[Snippet]:
    return [
        Snippet("Orders are sharded by customer id", title="orders sharding", role="designer"),
        Snippet("Orders API uses cursor pagination", title="orders api", tags=["api"]),
        Snippet("Checkout buttons follow the design system", title="buttons", role="ui-specialist"),
    ]


@pytest.mark.asyncio
async def test_in_memory_retrieve_filters_by_role() -> None:
    store = InMemoryKnowledgeStore(_snippets())

    snippets = await store.retrieve("orders api pagination", "designer")

    assert [s.title for s in snippets] == ["orders api", "orders sharding"]
    assert all(s.role in (None, "designer") for s in snippets)
    assert snippets[0].score > snippets[1].score


@pytest.mark.asyncio
async def test_in_memory_retrieve_limit_and_misses() -> None:
    store = InMemoryKnowledgeStore(_snippets())

    assert await store.retrieve("unrelated words") == []
    assert len(await store.retrieve("orders", limit=1)) == 1


def test_stores_satisfy_protocol(sqlite_url: str) -> None:
    sql_store = SqlKnowledgeStore(get_session_factory(create_async_engine(sqlite_url)))

    assert isinstance(InMemoryKnowledgeStore(), KnowledgeStore)
    assert isinstance(sql_store, KnowledgeStore)


@pytest.mark.asyncio
async def test_sql_store_round_trips_rules(sqlite_engine: AsyncEngine) -> None:
    await init_db(sqlite_engine)
    store = SqlKnowledgeStore(get_session_factory(sqlite_engine))
    rule = Rule(pattern=r"\bvar\s+\w+", suggestion="Use let or const", category=RuleCategory.STYLE)

    await store.persist_rule(rule)
    rule.usage_count = 4
    rule.confidence = 0.8
    await store.persist_rule(rule)

    (loaded,) = await store.load_rules()
    assert loaded.id == rule.id
    assert loaded.usage_count == 4
    assert loaded.confidence == pytest.approx(0.8)
    assert loaded.category == RuleCategory.STYLE


@pytest.mark.asyncio
async def test_sql_store_retrieves_snippets(sqlite_engine: AsyncEngine) -> None:
    await init_db(sqlite_engine)
    store = SqlKnowledgeStore(get_session_factory(sqlite_engine))
    for snippet in _snippets():
        await store.add_snippet(snippet)

    snippets = await store.retrieve("checkout buttons", "ui-specialist")

    assert [s.title for s in snippets] == ["buttons"]
    assert await store.retrieve("checkout buttons", "designer") == []


@pytest.mark.asyncio
async def test_sql_store_without_schema(sqlite_engine: AsyncEngine) -> None:
    store = SqlKnowledgeStore(get_session_factory(sqlite_engine))

    with pytest.raises(SchemaNotInitializedError) as exc_info:
        await store.load_rules()

    assert "missing table `rules`" in exc_info.value.message


@pytest.mark.asyncio
async def test_learning_engine_with_sql_store(sqlite_engine: AsyncEngine, test_settings: Settings) -> None:
    await init_db(sqlite_engine)
    store = SqlKnowledgeStore(get_session_factory(sqlite_engine))
    first = LearningEngine(knowledge=store, settings=test_settings)
    await first.learn(CodeDiff("app.js", "var x = 1;\n", "const x = 1;\n"))

    second = LearningEngine(knowledge=store, settings=test_settings)
    await second.load()

    issues = await second.review("var y = 2;")
    assert len(issues) == 1
    (persisted,) = await store.load_rules()
    assert persisted.usage_count == 2
