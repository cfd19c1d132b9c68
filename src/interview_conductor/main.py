"""
Main entry point for the Interview Conductor application.
"""

import argparse
import asyncio
import logging
import sys

from sqlalchemy.ext.asyncio import AsyncEngine

from interview_conductor.config import get_settings
from interview_conductor.db.sink import (
    CheckpointSink,
    DatabaseCheckpointSink,
    InMemoryCheckpointSink,
    create_engine,
    create_session_factory,
    create_tables,
)
from interview_conductor.io.text_interface import TextInterface
from interview_conductor.models.llm_client import LLMClient
from interview_conductor.scripts.script_source import JsonScriptSource


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


async def build_sink(persist: bool) -> tuple[CheckpointSink, AsyncEngine | None]:
    """
    Create the checkpoint sink, creating tables when persisting.

    Returns:
        The sink and the engine behind it (None for the in-memory sink).
    """
    if not persist:
        return InMemoryCheckpointSink(), None
    settings = get_settings()
    engine = create_engine(settings.database_url)
    await create_tables(engine)
    return DatabaseCheckpointSink(create_session_factory(engine)), engine


async def run_interview(argv: list[str] | None = None) -> None:
    """
    Run an interactive interview session.

    This is the main async entry point that initializes all components
    and runs the interview loop.
    """
    settings = get_settings()
    logger = logging.getLogger(__name__)

    parser = argparse.ArgumentParser(prog="interview-conductor")
    parser.add_argument(
        "--scripts",
        default=settings.scripts_path,
        help="JSON file with interview scripts per company and role",
    )
    parser.add_argument(
        "--persist",
        action="store_true",
        default=settings.persist_checkpoints,
        help="Write checkpoints to the configured database",
    )
    args = parser.parse_args(argv)

    logger.info("Initializing Interview Conductor...")
    logger.debug(f"Using LLM model: {settings.llm_model_name}")

    llm_client = LLMClient(
        model=settings.llm_model_name,
        timeout=settings.llm_timeout,
    )
    sink, engine = await build_sink(args.persist)

    interface = TextInterface(
        llm_client,
        script_source=JsonScriptSource(args.scripts),
        sink=sink,
    )

    logger.info("Starting interview session...")
    try:
        await interface.run()
    finally:
        if engine is not None:
            await engine.dispose()


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        asyncio.run(run_interview(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nInterview session terminated by user.")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
