"""pytest fixtures for Vibra backend tests.

Provides:
- engine: Function-scoped SQLite database (aiosqlite) with all tables created
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- uploader: CloudinaryUploader whose HTTP traffic goes to a MockTransport
- fake_generators: One in-memory generator per tier
- add_image / add_prompt / add_song: Helpers for seeding rows
"""

import asyncio
import os

# Skip production config validation before any vibra import builds Settings
os.environ.setdefault("APP_ENV", "test")

from typing import AsyncGenerator, Callable, Optional  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from vibra.core.database import create_tables  # noqa: E402
from vibra.models.generated_image import GeneratedImage  # noqa: E402
from vibra.models.prompt import Prompt, PromptCategory  # noqa: E402
from vibra.models.song import Song  # noqa: E402
from vibra.services.image_generation.base import GenerationResult, GeneratorTier  # noqa: E402
from vibra.services.storage.cloudinary_client import CloudinaryUploader  # noqa: E402
from vibra.uow import create_uow_factory  # noqa: E402

CLOUD_NAME = "vibra-test"
OWNED_PREFIX = f"https://res.cloudinary.com/{CLOUD_NAME}/image/upload"


class FakeGenerator:
    """In-memory generator returning owned-storage URLs.

    Set `error` to make every call raise it; `calls` records (prompt_text, genre).
    Set `gate` to an asyncio.Event to hold every call until the event is set.
    """

    def __init__(self, tier: GeneratorTier, name: Optional[str] = None):
        self.tier = tier
        self.name = name or f"fake-{tier.value}"
        self.calls: list[tuple[str, str]] = []
        self.error: Optional[Exception] = None
        self.available = True
        self.image_url: Optional[str] = None
        self.gate: Optional[asyncio.Event] = None

    def get_name(self) -> str:
        return self.name

    async def is_available(self) -> bool:
        return self.available

    async def generate_image(self, prompt_text: str, genre: str) -> GenerationResult:
        self.calls.append((prompt_text, genre))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        key = f"vibra/ai-generated/{genre.lower()}/{self.name}-{len(self.calls)}"
        return GenerationResult(
            image_url=self.image_url or f"{OWNED_PREFIX}/{key}.png",
            thumbnail_url=f"{OWNED_PREFIX}/c_fill,f_auto,h_400,q_auto,w_400/{key}",
            storage_key=key,
            storage_folder=f"vibra/ai-generated/{genre.lower()}",
            metadata={"model": self.name, "processing_time_ms": 42, "genre": genre},
        )


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Provide a fresh SQLite database file per test with all tables created."""
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'vibra_test.db'}")
    await create_tables(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session."""
    async with session_factory() as db_session:
        yield db_session
        await db_session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def storage_handler():
    """Mutable MockTransport handler; tests replace `storage_handler.func`."""

    class Handler:
        def __init__(self):
            self.requests: list[httpx.Request] = []
            self.func: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(
                500, text="no handler configured"
            )

        def __call__(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self.func(request)

    return Handler()


@pytest_asyncio.fixture
async def http_client(storage_handler) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(storage_handler)) as client:
        yield client


@pytest.fixture
def uploader(http_client) -> CloudinaryUploader:
    return CloudinaryUploader(
        cloud_name=CLOUD_NAME,
        api_key="test-key",
        api_secret="test-secret",
        http_client=http_client,
    )


@pytest.fixture
def fake_generators() -> dict[GeneratorTier, FakeGenerator]:
    return {tier: FakeGenerator(tier) for tier in GeneratorTier}


@pytest.fixture
def add_image(uow_factory):
    """Insert an active (or inactive) GeneratedImage and return it."""

    async def _add(genre: str = "Rock", **overrides) -> GeneratedImage:
        fields = {
            "genre": genre,
            "image_url": f"{OWNED_PREFIX}/vibra/ai-generated/{genre.lower()}/seed.png",
            "thumbnail_url": f"{OWNED_PREFIX}/c_fill/vibra/ai-generated/{genre.lower()}/seed",
            "storage_key": f"vibra/ai-generated/{genre.lower()}/seed",
            "storage_folder": f"vibra/ai-generated/{genre.lower()}",
            "prompt_text": f"{genre} visual",
            "generator_name": "fake-fast",
            "processing_time_ms": 100,
        }
        fields.update(overrides)
        image = GeneratedImage(**fields)
        async with await uow_factory() as uow:
            await uow.images.add(image)
        return image

    return _add


@pytest.fixture
def add_prompt(uow_factory):
    """Insert a Prompt and return it."""

    async def _add(
        genre: str = "Rock", category: PromptCategory = PromptCategory.BASE, **overrides
    ) -> Prompt:
        fields = {
            "genre": genre,
            "category": category,
            "prompt_text": f"{category.value} visualization of {genre} music",
        }
        fields.update(overrides)
        prompt = Prompt(**fields)
        async with await uow_factory() as uow:
            await uow.prompts.add(prompt)
        return prompt

    return _add


@pytest.fixture
def add_song(uow_factory):
    """Insert a Song and return it."""

    async def _add(genre: Optional[str] = "Rock", duration_seconds: int = 200) -> Song:
        song = Song(title="Test Song", artist="Test Artist", genre=genre, duration_seconds=duration_seconds)
        async with await uow_factory() as uow:
            await uow.songs.add(song)
        return song

    return _add
