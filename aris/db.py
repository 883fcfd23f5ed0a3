"""Async database access for the SQL-backed knowledge store."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import Settings, settings
from .errors import SchemaNotInitializedError, is_schema_missing_error, schema_not_initialized_message
from .knowledge import Snippet, rank_snippets
from .learning.rules import Rule, RuleCategory
from .models import Base, KnowledgeSnippetRecord, RuleRecord

_engines: dict[str, AsyncEngine] = {}


def get_engine(config: Settings | None = None) -> AsyncEngine:
    """Async engine shared per database URL."""
    url = (config or settings).async_database_url
    engine = _engines.get(url)
    if engine is None:
        engine = create_async_engine(url, echo=False, pool_pre_ping=True)
        _engines[url] = engine
    return engine


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (for development/testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_session(factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Async context manager for database sessions."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            if isinstance(exc, SQLAlchemyError) and is_schema_missing_error(exc):
                raise SchemaNotInitializedError(schema_not_initialized_message(exc)) from exc
            raise


def _to_rule(record: RuleRecord) -> Rule:
    return Rule(
        id=record.id,
        pattern=record.pattern,
        suggestion=record.suggestion,
        category=RuleCategory(record.category),
        confidence=record.confidence,
        usage_count=record.usage_count,
        created_at=record.created_at,
        last_used=record.last_used,
        origin=record.origin,
    )


def _to_snippet(record: KnowledgeSnippetRecord) -> Snippet:
    return Snippet(
        content=record.content,
        title=record.title or "",
        role=record.role,
        tags=list(record.tags or []),
        source=record.source,
    )


class SqlKnowledgeStore:
    """Knowledge store over the ``rules`` and ``knowledge_snippets`` tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "SqlKnowledgeStore":
        return cls(get_session_factory(get_engine(config)))

    async def add_snippet(self, snippet: Snippet) -> None:
        async with get_session(self._factory) as session:
            session.add(
                KnowledgeSnippetRecord(
                    title=snippet.title,
                    content=snippet.content,
                    role=snippet.role,
                    tags=list(snippet.tags),
                    source=snippet.source,
                )
            )

    async def retrieve(
        self, query: str, role_hint: str | None = None, *, limit: int = 5
    ) -> list[Snippet]:
        stmt = select(KnowledgeSnippetRecord)
        if role_hint:
            stmt = stmt.where(
                or_(KnowledgeSnippetRecord.role.is_(None), KnowledgeSnippetRecord.role == role_hint)
            )
        async with get_session(self._factory) as session:
            records = (await session.execute(stmt)).scalars().all()
        return rank_snippets((_to_snippet(r) for r in records), query, role_hint, limit)

    async def persist_rule(self, rule: Rule) -> None:
        async with get_session(self._factory) as session:
            await session.merge(
                RuleRecord(
                    id=rule.id,
                    pattern=rule.pattern,
                    suggestion=rule.suggestion,
                    category=rule.category.value,
                    confidence=rule.confidence,
                    usage_count=rule.usage_count,
                    origin=rule.origin,
                    created_at=rule.created_at,
                    last_used=rule.last_used,
                )
            )

    async def load_rules(self) -> list[Rule]:
        async with get_session(self._factory) as session:
            records = (await session.execute(select(RuleRecord).order_by(RuleRecord.created_at))).scalars().all()
        return [_to_rule(record) for record in records]
