"""
Repository pattern for database operations.

Provides a thin abstraction over SQLAlchemy for writing checkpoints.
"""

from typing import Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from interview_conductor.db.models import Base, CheckpointModel
from interview_conductor.orchestrator.schemas import Checkpoint

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Base repository bound to one async session."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy async session.
        """
        self._session = session

    async def create(self, entity: T) -> T:
        """
        Create a new entity.

        Args:
            entity: The entity to create.

        Returns:
            The created entity.
        """
        self._session.add(entity)
        await self._session.flush()
        await self._session.refresh(entity)
        return entity


class CheckpointRepository(BaseRepository[CheckpointModel]):
    """Repository for checkpoint operations."""

    async def create_from_checkpoint(self, checkpoint: Checkpoint) -> CheckpointModel:
        """
        Persist a checkpoint payload.

        Args:
            checkpoint: Checkpoint emitted by the orchestrator.

        Returns:
            The created checkpoint model.
        """
        model = CheckpointModel(
            id=checkpoint.checkpoint_id,
            session_id=checkpoint.session_id,
            kind=checkpoint.kind.value,
            stage=checkpoint.stage.value,
            messages=[turn.model_dump(mode="json") for turn in checkpoint.messages],
            scores=dict(checkpoint.scores),
            rationales=dict(checkpoint.rationales),
            details=checkpoint.model_dump(mode="json", include={"details"})["details"],
            created_at=checkpoint.created_at,
        )
        return await self.create(model)
