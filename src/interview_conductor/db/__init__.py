"""
Database module for persistence.

Provides SQLAlchemy models, the repository pattern and checkpoint sinks.
"""

from interview_conductor.db.models import Base, CheckpointModel
from interview_conductor.db.repository import CheckpointRepository
from interview_conductor.db.sink import (
    CheckpointSink,
    DatabaseCheckpointSink,
    InMemoryCheckpointSink,
    create_engine,
    create_session_factory,
    create_tables,
)

__all__ = [
    "Base",
    "CheckpointModel",
    "CheckpointRepository",
    "CheckpointSink",
    "DatabaseCheckpointSink",
    "InMemoryCheckpointSink",
    "create_engine",
    "create_session_factory",
    "create_tables",
]
