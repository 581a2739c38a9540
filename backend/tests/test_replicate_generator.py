"""Tests for the Replicate generator (prediction + polling).

The replicate.Client is replaced with an in-memory fake exposing the same
predictions.create / predictions.get surface.
"""

from types import SimpleNamespace

import httpx
import pytest
from replicate.exceptions import ReplicateError

from vibra.services.exceptions import (
    GenerationTimeoutError,
    ProviderPermanentError,
    ProviderTransientError,
)
from vibra.services.image_generation import replicate_generator
from vibra.services.image_generation.base import GeneratorTier
from vibra.services.image_generation.replicate_generator import (
    ReplicateImageGenerator,
    classify_error,
)

PROVIDER_IMAGE_URL = "https://replicate.delivery/pbxt/abc/out-0.png"


class FakePredictions:
    """Returns queued poll outcomes; an Exception entry is raised instead."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.created: list[dict] = []
        self.polls = 0
        self._last = None

    def create(self, version, input):
        self.created.append({"version": version, "input": input})
        return SimpleNamespace(id="pred-1", status="starting")

    def get(self, prediction_id):
        self.polls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else self._last
        self._last = outcome
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def prediction(status, output=None, error=None):
    return SimpleNamespace(id="pred-1", status=status, output=output, error=error)


def storage_router(request: httpx.Request) -> httpx.Response:
    url = str(request.url)
    if url == PROVIDER_IMAGE_URL:
        return httpx.Response(200, content=b"\x89PNG-bytes")
    if url.endswith("/image/upload"):
        return httpx.Response(
            200,
            json={
                "public_id": "vibra/ai-generated/jazz/sdxl",
                "secure_url": "https://res.cloudinary.com/vibra-test/image/upload/v1/sdxl.png",
                "width": 1024,
                "height": 1024,
            },
        )
    return httpx.Response(404)


@pytest.fixture
def make_generator(uploader, http_client, storage_handler):
    storage_handler.func = storage_router

    def _make(outcomes, max_poll_attempts=5, poll_interval=0):
        fake = SimpleNamespace(predictions=FakePredictions(outcomes))
        generator = ReplicateImageGenerator(
            api_token="r8-test",
            uploader=uploader,
            http_client=http_client,
            model_version="v1",
            poll_interval=poll_interval,
            max_poll_attempts=max_poll_attempts,
            client=fake,
        )
        return generator, fake.predictions

    return _make


@pytest.mark.asyncio
class TestReplicateImageGenerator:
    async def test_polls_until_succeeded(self, make_generator):
        generator, predictions = make_generator(
            [
                prediction("starting"),
                prediction("processing"),
                prediction("succeeded", output=[PROVIDER_IMAGE_URL]),
            ]
        )

        result = await generator.generate_image("Smoky jazz club", "Jazz")

        assert generator.tier == GeneratorTier.MID
        assert predictions.polls == 3
        assert predictions.created[0]["version"] == "v1"
        assert predictions.created[0]["input"]["prompt"] == "Smoky jazz club"
        assert result.image_url.startswith("https://res.cloudinary.com/vibra-test/")
        assert result.storage_folder == "vibra/ai-generated/jazz"
        assert result.metadata["model"] == "stability-ai/sdxl"

    @pytest.mark.parametrize("status", ["failed", "canceled"])
    async def test_terminal_failure_is_permanent(self, make_generator, status):
        generator, _ = make_generator([prediction(status, error="NSFW content detected")])

        with pytest.raises(ProviderPermanentError, match=status):
            await generator.generate_image("Smoky jazz club", "Jazz")

    async def test_network_error_while_polling_keeps_polling(self, make_generator):
        generator, predictions = make_generator(
            [
                httpx.ConnectError("connection reset"),
                prediction("succeeded", output=PROVIDER_IMAGE_URL),
            ]
        )

        result = await generator.generate_image("Smoky jazz club", "Jazz")

        assert predictions.polls == 2
        assert result.image_url.startswith("https://res.cloudinary.com/vibra-test/")

    async def test_auth_error_while_polling_is_raised(self, make_generator):
        generator, predictions = make_generator(
            [ReplicateError(status=401, detail="Unauthenticated")]
        )

        with pytest.raises(ProviderPermanentError):
            await generator.generate_image("Smoky jazz club", "Jazz")
        assert predictions.polls == 1

    async def test_attempt_ceiling_is_a_timeout(self, make_generator):
        generator, predictions = make_generator([prediction("processing")], max_poll_attempts=3)

        with pytest.raises(GenerationTimeoutError):
            await generator.generate_image("Smoky jazz club", "Jazz")
        assert predictions.polls == 3

    async def test_polls_are_spaced_by_poll_interval(self, make_generator, monkeypatch):
        sleeps: list[float] = []

        async def record(delay, *args, **kwargs):
            sleeps.append(delay)

        monkeypatch.setattr(replicate_generator.asyncio, "sleep", record)
        generator, predictions = make_generator(
            [
                prediction("starting"),
                prediction("processing"),
                prediction("succeeded", output=[PROVIDER_IMAGE_URL]),
            ],
            poll_interval=1.5,
        )

        await generator.generate_image("Smoky jazz club", "Jazz")

        assert predictions.polls == 3
        assert sleeps == [1.5, 1.5]

    async def test_no_sleep_after_last_poll(self, make_generator, monkeypatch):
        sleeps: list[float] = []

        async def record(delay, *args, **kwargs):
            sleeps.append(delay)

        monkeypatch.setattr(replicate_generator.asyncio, "sleep", record)
        generator, _ = make_generator(
            [prediction("processing")], max_poll_attempts=3, poll_interval=2.0
        )

        with pytest.raises(GenerationTimeoutError):
            await generator.generate_image("Smoky jazz club", "Jazz")

        assert sleeps == [2.0, 2.0]

    async def test_unexpected_output_is_permanent(self, make_generator):
        generator, _ = make_generator([prediction("succeeded", output=None)])

        with pytest.raises(ProviderPermanentError, match="Unexpected output"):
            await generator.generate_image("Smoky jazz club", "Jazz")

    async def test_availability_requires_token(self, uploader, http_client):
        generator = ReplicateImageGenerator(
            api_token="",
            uploader=uploader,
            http_client=http_client,
            model_version="v1",
            client=SimpleNamespace(predictions=FakePredictions([])),
        )

        assert await generator.is_available() is False
        with pytest.raises(ProviderPermanentError):
            await generator.generate_image("Smoky jazz club", "Jazz")


class TestClassifyError:
    """Test error classification for Replicate and network errors."""

    def test_rate_limit_is_transient(self):
        assert isinstance(classify_error(ReplicateError(status=429)), ProviderTransientError)

    def test_server_error_is_transient(self):
        assert isinstance(classify_error(ReplicateError(status=503)), ProviderTransientError)

    def test_timeout_is_transient(self):
        assert isinstance(classify_error(httpx.ReadTimeout("read timed out")), ProviderTransientError)

    def test_auth_is_permanent(self):
        error = classify_error(ReplicateError(status=403, detail="Forbidden"))
        assert isinstance(error, ProviderPermanentError)
        assert not error.retryable

    def test_unknown_is_permanent(self):
        assert isinstance(classify_error(ValueError("bad input")), ProviderPermanentError)
