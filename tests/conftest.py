"""Shared pytest fixtures.

The Job Store runs against in-memory SQLite (aiosqlite, StaticPool) so
conditional updates and row counts are real. The Task Queue and provider
gateway are in-memory doubles from tests/support/fakes.py.
"""

from datetime import timedelta

import pytest
import pytest_asyncio

from songreel.database import create_test_engine
from songreel.models import Base, JobStage
from songreel.services.agents import ImageConceptAgent, SongConceptAgent, SongSelectorAgent
from songreel.services.completion import CompletionListener
from songreel.services.orchestrator import PipelineOrchestrator
from songreel.services.stage_handlers import PollPolicy, StageContext
from songreel.store import JobStore
from songreel.utils.url_validator import URLValidator
from tests.support.fakes import (
    FakeAssembler,
    FakeChatClient,
    FakeProvider,
    FakePublisher,
    FakeTaskQueue,
    FakeVideoPublisher,
)

LLM_MODEL = "anthropic/claude-3.5-sonnet"


@pytest_asyncio.fixture
async def session_factory():
    """Session factory bound to a fresh in-memory database with all tables."""
    engine, factory = create_test_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest.fixture
def store(session_factory) -> JobStore:
    return JobStore(session_factory)


@pytest.fixture
def task_queue() -> FakeTaskQueue:
    return FakeTaskQueue()


@pytest.fixture
def music_provider() -> FakeProvider:
    return FakeProvider("suno")


@pytest.fixture
def image_provider() -> FakeProvider:
    return FakeProvider("nano_banana")


@pytest.fixture
def chat_client() -> FakeChatClient:
    return FakeChatClient()


@pytest.fixture
def assembler(tmp_path) -> FakeAssembler:
    return FakeAssembler(tmp_path)


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def video_publisher() -> FakeVideoPublisher:
    return FakeVideoPublisher()


@pytest.fixture
def poll_policies() -> dict[JobStage, PollPolicy]:
    """Short policies so exhaustion tests stay small."""
    return {
        JobStage.GENERATING_MUSIC: PollPolicy(
            interval=timedelta(seconds=10), max_attempts=5, webhook_grace=timedelta(minutes=5)
        ),
        JobStage.GENERATING_IMAGE: PollPolicy(
            interval=timedelta(seconds=3), max_attempts=5, webhook_grace=timedelta(minutes=2)
        ),
    }


@pytest.fixture
def stage_context(
    store,
    task_queue,
    music_provider,
    image_provider,
    chat_client,
    assembler,
    publisher,
    video_publisher,
    poll_policies,
) -> StageContext:
    """StageContext without webhooks (poll-only)."""
    return StageContext(
        store=store,
        queue=task_queue,
        music=music_provider,
        image=image_provider,
        song_agent=SongConceptAgent(chat_client, LLM_MODEL),
        selector_agent=SongSelectorAgent(chat_client, LLM_MODEL),
        image_agent=ImageConceptAgent(chat_client, LLM_MODEL),
        assembler=assembler,
        publisher=publisher,
        url_validator=URLValidator(resolve_dns=False),
        video_publisher=video_publisher,
        poll_policies=poll_policies,
    )


@pytest.fixture
def listener(stage_context) -> CompletionListener:
    return CompletionListener(stage_context, max_stage_attempts=3)


@pytest.fixture
def orchestrator(stage_context, listener) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        stage_context,
        max_stage_attempts=3,
        retry_base_delay=timedelta(minutes=1),
        listener=listener,
    )
