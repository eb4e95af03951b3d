"""
Shared test fixtures and configuration for ChatOps backend tests.
"""
import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DEBUG"] = "true"

from app.db.base import Base  # noqa: E402
from app.services.tools.registry import ToolRegistry  # noqa: E402
from tests.utils.tool_doubles import make_descriptor  # noqa: E402


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine with every model table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # SQLite only enforces ON DELETE CASCADE with foreign keys switched on
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_db_session():
    """Create a mock async database session."""
    session = AsyncMock(spec=AsyncSession)
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.add = MagicMock()
    session.delete = AsyncMock()
    session.close = AsyncMock()
    return session


# =============================================================================
# Tools
# =============================================================================

@pytest.fixture
def echo_registry() -> ToolRegistry:
    """Registry with a few in-memory tools used across loop and service tests."""
    registry = ToolRegistry()

    @registry.register(make_descriptor(
        "create_github_issue",
        {"title": {"type": "string"}, "body": {"type": "string"}},
        ["title"],
    ))
    async def create_github_issue(title, body=None):
        return {
            "success": True,
            "data": {"number": 42, "html_url": "https://github.com/acme/app/issues/42", "title": title},
            "message": "Created issue",
        }

    @registry.register(make_descriptor(
        "add_notion_task",
        {"task": {"type": "string"}, "link_url": {"type": "string"}},
        ["task"],
    ))
    async def add_notion_task(task, link_url=None):
        return {
            "success": True,
            "data": {"id": "page-1", "url": "https://notion.so/page-1"},
            "message": f'Task "{task}" created successfully',
        }

    @registry.register(make_descriptor("post_slack_message", {"text": {"type": "string"}}, ["text"]))
    async def post_slack_message(text):
        raise RuntimeError("channel_not_found")

    return registry
