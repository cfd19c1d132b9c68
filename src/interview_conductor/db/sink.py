"""
Checkpoint sinks.

The orchestrator hands checkpoints to a sink at background-stage exit and
at paste-evaluation completion. Sinks never hold up the session.
"""

import logging
from abc import ABC, abstractmethod

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from interview_conductor.db.models import Base
from interview_conductor.db.repository import CheckpointRepository
from interview_conductor.orchestrator.schemas import Checkpoint

logger = logging.getLogger(__name__)


class CheckpointSink(ABC):
    """Abstract base class for checkpoint sinks."""

    @abstractmethod
    async def emit(self, checkpoint: Checkpoint) -> None:
        """
        Deliver one checkpoint.

        Args:
            checkpoint: Payload to persist.
        """
        ...


class InMemoryCheckpointSink(CheckpointSink):
    """Sink that keeps checkpoints in a list."""

    def __init__(self) -> None:
        self.checkpoints: list[Checkpoint] = []

    async def emit(self, checkpoint: Checkpoint) -> None:
        self.checkpoints.append(checkpoint)
        logger.debug(f"Checkpoint {checkpoint.kind.value} stored for session {checkpoint.session_id}")


class DatabaseCheckpointSink(CheckpointSink):
    """Sink that writes checkpoints through the checkpoint repository."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """
        Initialize the sink.

        Args:
            session_factory: Factory for async database sessions.
        """
        self._session_factory = session_factory

    async def emit(self, checkpoint: Checkpoint) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                repository = CheckpointRepository(session)
                await repository.create_from_checkpoint(checkpoint)
        logger.info(f"Checkpoint {checkpoint.kind.value} persisted for session {checkpoint.session_id}")


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to an engine."""
    return async_sessionmaker(engine, expire_on_commit=False)


def create_engine(database_url: str) -> AsyncEngine:
    """Create an async engine for a database URL."""
    return create_async_engine(database_url)


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
