"""Tests for playback orchestration.

Tests cover:
- Planning: image count and per-tier mix from track duration
- Serving: genre images first, random fallback from other genres
- Background generation: dedup per (genre, duration bucket), TTL expiry,
  failure isolation between units, owned-storage URLs only
- Song lookups: missing songs, missing genre, unknown duration
"""

import asyncio
import math
from uuid import uuid4

import pytest

from vibra.services.exceptions import ProviderTransientError, SongNotFoundError
from vibra.services.image_generation.base import GeneratorTier
from vibra.services.image_generation.pipeline import GenerationPipeline
from vibra.services.playback import (
    SOURCE_FALLBACK_RANDOM,
    SOURCE_PRECACHED,
    MAX_PLAYBACK_DURATION_SECONDS,
    PlaybackOrchestrator,
    plan_for_duration,
    round_half_up,
)
from vibra.services.prompt_selector import PromptSelector


@pytest.fixture
def make_orchestrator(uow_factory, uploader, fake_generators):
    def _make(generators=None, **kwargs) -> PlaybackOrchestrator:
        pipeline = GenerationPipeline(uow_factory, PromptSelector(uow_factory), uploader)
        if generators is None:
            generators = list(fake_generators.values())
        return PlaybackOrchestrator(uow_factory, pipeline, generators=generators, **kwargs)

    return _make


class TestPlanning:
    def test_two_hundred_seconds(self):
        plan = plan_for_duration(200)

        assert plan.total_needed == 40
        assert (plan.precached, plan.fast, plan.mid, plan.expensive) == (13, 17, 7, 4)
        assert plan.precached + plan.to_generate >= 40

    def test_short_track(self):
        plan = plan_for_duration(30)

        assert plan.total_needed == 6
        assert (plan.precached, plan.fast, plan.mid, plan.expensive) == (2, 3, 1, 1)

    def test_partial_slot_rounds_up(self):
        assert plan_for_duration(1).total_needed == 1
        assert plan_for_duration(201).total_needed == 41

    def test_expensive_tier_always_rounds_up(self):
        plan = plan_for_duration(5)

        assert plan.total_needed == 1
        assert plan.expensive == 1

    @pytest.mark.parametrize("duration", [0, -10])
    def test_non_positive_duration_rejected(self, duration):
        with pytest.raises(ValueError):
            plan_for_duration(duration)

    @pytest.mark.parametrize("duration", [math.inf, -math.inf, math.nan])
    def test_non_finite_duration_rejected(self, duration):
        with pytest.raises(ValueError, match="finite"):
            plan_for_duration(duration)

    def test_duration_cap(self):
        assert plan_for_duration(MAX_PLAYBACK_DURATION_SECONDS).total_needed == 720
        with pytest.raises(ValueError, match="at most"):
            plan_for_duration(MAX_PLAYBACK_DURATION_SECONDS + 1)
        with pytest.raises(ValueError):
            plan_for_duration(120, max_duration_seconds=60)

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1
        assert round_half_up(2.49) == 2


@pytest.mark.asyncio
class TestServing:
    async def test_sufficient_supply_does_not_generate(
        self, make_orchestrator, add_image, fake_generators
    ):
        for _ in range(6):
            await add_image("Rock")
        orchestrator = make_orchestrator()

        result = await orchestrator.get_images_for_playback("Rock", 30)

        assert len(result.images) == 6
        assert {item.source for item in result.images} == {SOURCE_PRECACHED}
        assert result.generating is False
        assert orchestrator.active_jobs() == []
        assert all(not generator.calls for generator in fake_generators.values())

    async def test_shortfall_filled_from_other_genres(self, make_orchestrator, add_image):
        rock = await add_image("Rock")
        for _ in range(3):
            await add_image("Jazz")
        await add_image("Jazz", is_active=False)
        orchestrator = make_orchestrator(generators=[])

        result = await orchestrator.get_images_for_playback("Rock", 30)

        precached = [item for item in result.images if item.source == SOURCE_PRECACHED]
        fallback = [item for item in result.images if item.source == SOURCE_FALLBACK_RANDOM]
        assert [item.image.id for item in precached] == [rock.id]
        assert len(fallback) == 3
        assert all(item.image.genre == "Jazz" and item.image.is_active for item in fallback)
        assert result.breakdown["served"] == {SOURCE_PRECACHED: 1, SOURCE_FALLBACK_RANDOM: 3}

    async def test_empty_pool_returns_no_images(self, make_orchestrator, add_prompt):
        await add_prompt("Rock")
        orchestrator = make_orchestrator()

        result = await orchestrator.get_images_for_playback("Rock", 30)
        await orchestrator.wait_for_background()

        assert result.images == []
        assert result.generating is True

    async def test_breakdown_shape(self, make_orchestrator, add_prompt):
        await add_prompt("Rock")
        orchestrator = make_orchestrator()

        result = await orchestrator.get_images_for_playback("Rock", 200)
        await orchestrator.wait_for_background()

        breakdown = result.breakdown
        assert breakdown["total_needed"] == 40
        assert breakdown["planned"][SOURCE_PRECACHED] == {"count": 13, "percentage": 33}
        assert breakdown["planned"]["fast"] == {
            "count": 17,
            "percentage": 42,
            "generator": "fake-fast",
        }
        assert breakdown["planned"]["expensive"]["count"] == 4
        assert breakdown["scheduled"] == {"fast": 17, "mid": 7, "expensive": 4}

    async def test_non_positive_duration_rejected(self, make_orchestrator):
        orchestrator = make_orchestrator()

        with pytest.raises(ValueError):
            await orchestrator.get_images_for_playback("Rock", 0)

    async def test_oversized_duration_schedules_nothing(
        self, make_orchestrator, add_prompt, fake_generators
    ):
        await add_prompt("Rock")
        orchestrator = make_orchestrator(max_duration_seconds=600)

        with pytest.raises(ValueError):
            await orchestrator.get_images_for_playback("Rock", 1_000_000)
        with pytest.raises(ValueError):
            await orchestrator.get_images_for_playback("Rock", math.inf)

        assert orchestrator.active_jobs() == []
        assert orchestrator._tasks == set()
        assert all(not generator.calls for generator in fake_generators.values())

    async def test_returns_while_generators_are_blocked(
        self, make_orchestrator, add_prompt, fake_generators
    ):
        await add_prompt("Rock")
        gate = asyncio.Event()
        for generator in fake_generators.values():
            generator.gate = gate
        orchestrator = make_orchestrator()

        result = await asyncio.wait_for(
            orchestrator.get_images_for_playback("Rock", 30), timeout=5
        )

        assert result.generating is True
        [job] = orchestrator.active_jobs()
        assert len(job.tasks) == 5

        for _ in range(200):
            if any(generator.calls for generator in fake_generators.values()):
                break
            await asyncio.sleep(0.01)
        assert any(generator.calls for generator in fake_generators.values())
        assert all(not task.done() for task in job.tasks)

        await orchestrator.shutdown()
        assert not gate.is_set()


@pytest.mark.asyncio
class TestBackgroundGeneration:
    async def test_units_fan_out_across_tiers(
        self, make_orchestrator, add_prompt, fake_generators, uow_factory
    ):
        await add_prompt("Rock")
        orchestrator = make_orchestrator()

        await orchestrator.get_images_for_playback("Rock", 30)
        await orchestrator.wait_for_background()

        assert len(fake_generators[GeneratorTier.FAST].calls) == 3
        assert len(fake_generators[GeneratorTier.MID].calls) == 1
        assert len(fake_generators[GeneratorTier.EXPENSIVE].calls) == 1

        async with await uow_factory() as uow:
            images = await uow.images.get_newest_by_genre("Rock", 10)
        assert len(images) == 5
        assert all(
            image.image_url.startswith("https://res.cloudinary.com/vibra-test/")
            for image in images
        )

    async def test_duplicate_requests_launch_one_batch(
        self, make_orchestrator, add_prompt, fake_generators
    ):
        await add_prompt("Rock")
        orchestrator = make_orchestrator()

        first, second = await asyncio.gather(
            orchestrator.get_images_for_playback("Rock", 30),
            orchestrator.get_images_for_playback("Rock", 25),  # same 30s bucket
        )
        await orchestrator.wait_for_background()

        assert first.generating is True
        assert second.generating is True
        launched = [
            result for result in (first, second) if result.breakdown["scheduled"]["fast"] > 0
        ]
        assert len(launched) == 1
        assert len(fake_generators[GeneratorTier.FAST].calls) == 3
        assert len(orchestrator.active_jobs()) == 1

    async def test_different_bucket_launches_separate_batch(
        self, make_orchestrator, add_prompt, fake_generators
    ):
        await add_prompt("Rock")
        orchestrator = make_orchestrator()

        await orchestrator.get_images_for_playback("Rock", 30)
        await orchestrator.get_images_for_playback("Rock", 60)
        await orchestrator.wait_for_background()

        assert len(orchestrator.active_jobs()) == 2
        # 3 fast units for 30s, 5 for 60s
        assert len(fake_generators[GeneratorTier.FAST].calls) == 8

    async def test_expired_job_allows_new_batch(
        self, make_orchestrator, add_prompt, fake_generators
    ):
        await add_prompt("Rock")
        orchestrator = make_orchestrator(job_ttl_seconds=0)

        first = await orchestrator.get_images_for_playback("Rock", 30)
        second = await orchestrator.get_images_for_playback("Rock", 30)
        await orchestrator.wait_for_background()

        assert first.breakdown["scheduled"]["fast"] == 3
        assert second.breakdown["scheduled"]["fast"] == 3
        assert len(fake_generators[GeneratorTier.FAST].calls) == 6

    async def test_job_is_dropped_once_ttl_elapses(
        self, make_orchestrator, add_prompt, fake_generators
    ):
        await add_prompt("Rock")
        orchestrator = make_orchestrator(
            generators=[fake_generators[GeneratorTier.FAST]], job_ttl_seconds=0.05
        )

        await orchestrator.get_images_for_playback("Rock", 30)
        assert list(orchestrator._jobs) == [("Rock", 1)]

        await orchestrator.wait_for_background()
        await asyncio.sleep(0.2)

        # Removed by the scheduled cleanup, not by a lookup
        assert orchestrator._jobs == {}

    async def test_failing_units_do_not_affect_siblings(
        self, make_orchestrator, add_prompt, fake_generators, uow_factory
    ):
        prompt = await add_prompt("Rock")
        fake_generators[GeneratorTier.FAST].error = ProviderTransientError("provider down")
        orchestrator = make_orchestrator()

        result = await orchestrator.get_images_for_playback("Rock", 30)
        await orchestrator.wait_for_background()

        assert result.generating is True
        async with await uow_factory() as uow:
            images = await uow.images.get_newest_by_genre("Rock", 10)
            stored_prompt = await uow.prompts.get_by_id(prompt.id)

        # mid + expensive succeeded, all three fast units failed
        assert sorted(image.generator_name for image in images) == ["fake-expensive", "fake-mid"]
        assert stored_prompt.usage_count == 2
        assert 0.0 <= stored_prompt.success_rate <= 1.0

    async def test_unowned_urls_are_never_persisted(
        self, make_orchestrator, add_prompt, fake_generators, uow_factory
    ):
        await add_prompt("Rock")
        for generator in fake_generators.values():
            generator.image_url = "https://oaidalleapiprodscus.blob.core.windows.net/img.png"
        orchestrator = make_orchestrator()

        await orchestrator.get_images_for_playback("Rock", 30)
        await orchestrator.wait_for_background()

        async with await uow_factory() as uow:
            assert await uow.images.count_active("Rock") == 0

    async def test_missing_prompt_fails_units_quietly(
        self, make_orchestrator, fake_generators
    ):
        orchestrator = make_orchestrator()

        result = await orchestrator.get_images_for_playback("Polka", 30)
        await orchestrator.wait_for_background()

        assert result.generating is True
        assert all(not generator.calls for generator in fake_generators.values())

    async def test_unconfigured_tier_is_skipped(
        self, make_orchestrator, add_prompt, fake_generators
    ):
        await add_prompt("Rock")
        orchestrator = make_orchestrator(generators=[fake_generators[GeneratorTier.FAST]])

        result = await orchestrator.get_images_for_playback("Rock", 30)
        await orchestrator.wait_for_background()

        assert result.breakdown["scheduled"] == {"fast": 3, "mid": 0, "expensive": 0}
        assert result.breakdown["planned"]["mid"]["generator"] is None

    async def test_no_generators_means_not_generating(self, make_orchestrator):
        orchestrator = make_orchestrator(generators=[])

        result = await orchestrator.get_images_for_playback("Rock", 30)

        assert result.generating is False

    async def test_shutdown_cancels_pending_units(
        self, make_orchestrator, add_prompt, fake_generators
    ):
        await add_prompt("Rock")
        orchestrator = make_orchestrator(max_concurrent_generations=1)

        await orchestrator.get_images_for_playback("Rock", 200)
        await orchestrator.shutdown()

        assert orchestrator.active_jobs() == []
        await orchestrator.wait_for_background()
        total_calls = sum(len(generator.calls) for generator in fake_generators.values())
        assert total_calls < 28


@pytest.mark.asyncio
class TestSongPlayback:
    async def test_unknown_song(self, make_orchestrator):
        orchestrator = make_orchestrator()

        with pytest.raises(SongNotFoundError):
            await orchestrator.get_images_for_song(uuid4())

    async def test_song_genre_and_duration_are_used(self, make_orchestrator, add_song):
        song = await add_song(genre="Jazz", duration_seconds=200)
        orchestrator = make_orchestrator(generators=[])

        result = await orchestrator.get_images_for_song(song.id)

        assert result.song_id == song.id
        assert result.genre == "Jazz"
        assert result.breakdown["total_needed"] == 40

    async def test_missing_genre_and_duration_use_defaults(self, make_orchestrator, add_song):
        song = await add_song(genre=None, duration_seconds=0)
        orchestrator = make_orchestrator(generators=[], fallback_genre="Pop")

        result = await orchestrator.get_images_for_song(song.id)

        assert result.genre == "Pop"
        assert result.duration_seconds == 30
        assert result.breakdown["total_needed"] == 6

    async def test_long_song_is_clamped_to_cap(self, make_orchestrator, add_song):
        song = await add_song(genre="Jazz", duration_seconds=10_000)
        orchestrator = make_orchestrator(generators=[], max_duration_seconds=600)

        result = await orchestrator.get_images_for_song(song.id)

        assert result.duration_seconds == 600
        assert result.breakdown["total_needed"] == 120


@pytest.mark.asyncio
async def test_check_generators_reports_each_generator(make_orchestrator, fake_generators):
    fake_generators[GeneratorTier.MID].available = False
    orchestrator = make_orchestrator()

    availability = await orchestrator.check_generators()

    assert availability == {"fake-fast": True, "fake-mid": False, "fake-expensive": True}
