"""Playback image orchestration.

Answers "which images should be shown while this track plays" from the existing
pool in a single store round trip, and schedules background generation across
the three generator tiers when the genre's pool is short.

Flow of get_images_for_playback(genre, duration_seconds):
1. total_needed = ceil(duration_seconds / seconds_per_image)
2. Plan the source mix: precached 33%, fast 42%, mid 17%, expensive 8% (ceil)
3. Fetch up to total_needed active images of the genre, newest first
4. Fill any shortfall with random active images from other genres ("fallback-random")
5. If the genre is short and no live job exists for (genre, duration_bucket),
   register a job and launch one background task per planned image
6. Return images, breakdown and the generating flag without awaiting generation

Background units are isolated: each one selects its own prompt, calls exactly
one generator and persists its own record. A failing unit is logged and never
affects its siblings or the caller. Generators own their retry policy, so units
are not retried here.
"""

import asyncio
import math
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence
from uuid import UUID

import structlog

from vibra.models.generated_image import GeneratedImage
from vibra.services.exceptions import SongNotFoundError
from vibra.services.image_generation.base import GeneratorTier, ImageGenerator
from vibra.services.image_generation.pipeline import GenerationPipeline
from vibra.uow import UnitOfWorkFactory

logger = structlog.get_logger(__name__)

SOURCE_PRECACHED = "precached"
SOURCE_FALLBACK_RANDOM = "fallback-random"

PRECACHED_PERCENTAGE = 33
FAST_PERCENTAGE = 42
MID_PERCENTAGE = 17
EXPENSIVE_PERCENTAGE = 8

# One hour of playback; bounds the units a single request can schedule
MAX_PLAYBACK_DURATION_SECONDS = 3600.0

# Background fan-out order
GENERATION_TIERS = (GeneratorTier.FAST, GeneratorTier.MID, GeneratorTier.EXPENSIVE)

JobKey = tuple[str, int]


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (round() uses banker's rounding)."""
    return math.floor(value + 0.5)


@dataclass(frozen=True)
class GenerationPlan:
    """Per-source image counts for one track.

    Each tier is rounded independently, so the counts approximate total_needed
    and may not sum to it exactly.
    """

    total_needed: int
    precached: int
    fast: int
    mid: int
    expensive: int

    def count_for(self, tier: GeneratorTier) -> int:
        return {
            GeneratorTier.FAST: self.fast,
            GeneratorTier.MID: self.mid,
            GeneratorTier.EXPENSIVE: self.expensive,
        }[tier]

    @property
    def to_generate(self) -> int:
        return self.fast + self.mid + self.expensive


def plan_for_duration(
    duration_seconds: float,
    seconds_per_image: int = 5,
    max_duration_seconds: float = MAX_PLAYBACK_DURATION_SECONDS,
) -> GenerationPlan:
    """Compute how many images a track needs and how to source them.

    Raises:
        ValueError: If duration_seconds is not finite, not positive or above
            max_duration_seconds
    """
    if not math.isfinite(duration_seconds):
        raise ValueError(f"duration_seconds must be finite, got {duration_seconds}")
    if duration_seconds <= 0:
        raise ValueError(f"duration_seconds must be positive, got {duration_seconds}")
    if duration_seconds > max_duration_seconds:
        raise ValueError(
            f"duration_seconds must be at most {max_duration_seconds:g}, got {duration_seconds:g}"
        )

    total_needed = math.ceil(duration_seconds / seconds_per_image)
    return GenerationPlan(
        total_needed=total_needed,
        precached=round_half_up(total_needed * PRECACHED_PERCENTAGE / 100),
        fast=round_half_up(total_needed * FAST_PERCENTAGE / 100),
        mid=round_half_up(total_needed * MID_PERCENTAGE / 100),
        expensive=math.ceil(total_needed * EXPENSIVE_PERCENTAGE / 100),
    )


@dataclass(frozen=True)
class PlaybackImage:
    """An image handed to the player, tagged with where it came from."""

    image: GeneratedImage
    source: str


@dataclass
class PlaybackResult:
    genre: str
    duration_seconds: float
    images: list[PlaybackImage]
    breakdown: dict[str, Any]
    generating: bool
    song_id: Optional[UUID] = None


@dataclass
class GenerationJob:
    """In-flight background batch for one (genre, duration_bucket) key."""

    key: JobKey
    genre: str
    plan: GenerationPlan
    started_at: float = field(default_factory=time.monotonic)
    tasks: set[asyncio.Task] = field(default_factory=set)
    cleanup_handle: Optional[asyncio.TimerHandle] = None

    def is_expired(self, ttl_seconds: float, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        return now - self.started_at >= ttl_seconds


class PlaybackOrchestrator:
    """Serves playback images and schedules background generation.

    The job map is the only shared mutable state. Lookup and registration run
    without an await in between, so within one process at most one batch is in
    flight per key. Separate worker processes keep separate maps and may each
    launch a batch for the same key; that bounded duplication is accepted
    instead of a distributed lock.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        pipeline: GenerationPipeline,
        generators: Sequence[ImageGenerator],
        seconds_per_image: int = 5,
        duration_bucket_seconds: int = 30,
        job_ttl_seconds: float = 300.0,
        max_concurrent_generations: int = 4,
        fallback_genre: str = "Pop",
        max_duration_seconds: float = MAX_PLAYBACK_DURATION_SECONDS,
    ):
        self.uow_factory = uow_factory
        self.pipeline = pipeline
        self.generators: dict[GeneratorTier, ImageGenerator] = {g.tier: g for g in generators}
        self.seconds_per_image = seconds_per_image
        self.duration_bucket_seconds = duration_bucket_seconds
        self.job_ttl_seconds = job_ttl_seconds
        self.fallback_genre = fallback_genre
        self.max_duration_seconds = max_duration_seconds

        self._jobs: dict[JobKey, GenerationJob] = {}
        self._tasks: set[asyncio.Task] = set()
        self._semaphore = asyncio.Semaphore(max_concurrent_generations)

    def duration_bucket(self, duration_seconds: float) -> int:
        return math.ceil(duration_seconds / self.duration_bucket_seconds)

    async def get_images_for_playback(
        self, genre: str, duration_seconds: float
    ) -> PlaybackResult:
        """Return images for a track and kick off background generation if short.

        Args:
            genre: Genre key of the track
            duration_seconds: Track length, positive and at most max_duration_seconds

        Returns:
            PlaybackResult with images marked precached/fallback-random, a
            breakdown of planned and served counts, and the generating flag

        Raises:
            ValueError: If duration_seconds is out of range
        """
        plan = plan_for_duration(
            duration_seconds, self.seconds_per_image, self.max_duration_seconds
        )

        async with await self.uow_factory() as uow:
            genre_images = await uow.images.get_newest_by_genre(genre, plan.total_needed)
            fallback_images: list[GeneratedImage] = []
            shortfall = plan.total_needed - len(genre_images)
            if shortfall > 0:
                fallback_images = await uow.images.sample_random(
                    shortfall,
                    exclude_genre=genre,
                    exclude_ids=[image.id for image in genre_images],
                )

        images = [PlaybackImage(image, SOURCE_PRECACHED) for image in genre_images]
        images += [PlaybackImage(image, SOURCE_FALLBACK_RANDOM) for image in fallback_images]

        need_to_generate = len(genre_images) < plan.total_needed
        scheduled_job: Optional[GenerationJob] = None
        generating = False

        if need_to_generate:
            key = (genre, self.duration_bucket(duration_seconds))
            # No await between lookup and registration
            if self._live_job(key) is None:
                scheduled_job = self._start_job(key, genre, plan)
                generating = bool(scheduled_job.tasks)
            else:
                generating = True

        breakdown = self._build_breakdown(
            plan, len(genre_images), len(fallback_images), scheduled_job
        )

        logger.info(
            "playback.images_served",
            genre=genre,
            duration_seconds=duration_seconds,
            total_needed=plan.total_needed,
            precached=len(genre_images),
            fallback_random=len(fallback_images),
            generating=generating,
            batch_launched=scheduled_job is not None,
        )

        return PlaybackResult(
            genre=genre,
            duration_seconds=duration_seconds,
            images=images,
            breakdown=breakdown,
            generating=generating,
        )

    async def get_images_for_song(self, song_id: UUID) -> PlaybackResult:
        """Resolve a song's genre and duration, then serve playback images.

        A song without a genre uses the fallback genre. A song without a known
        duration is treated as one duration bucket long. Durations above the
        playback cap are clamped to it.

        Raises:
            SongNotFoundError: If song_id does not resolve
        """
        async with await self.uow_factory() as uow:
            info = await uow.songs.get_playback_info(song_id)

        if info is None:
            raise SongNotFoundError(f"Song {song_id} not found")

        genre, duration_seconds = info
        if not genre:
            logger.info("playback.genre_defaulted", song_id=str(song_id), genre=self.fallback_genre)
            genre = self.fallback_genre
        if not duration_seconds or duration_seconds <= 0:
            duration_seconds = self.duration_bucket_seconds
        elif duration_seconds > self.max_duration_seconds:
            logger.info(
                "playback.duration_clamped",
                song_id=str(song_id),
                duration_seconds=duration_seconds,
                max_duration_seconds=self.max_duration_seconds,
            )
            duration_seconds = self.max_duration_seconds

        result = await self.get_images_for_playback(genre, duration_seconds)
        result.song_id = song_id
        return result

    def active_jobs(self) -> list[GenerationJob]:
        """Live (non-expired) jobs."""
        now = time.monotonic()
        return [job for job in self._jobs.values() if not job.is_expired(self.job_ttl_seconds, now)]

    async def wait_for_background(self) -> None:
        """Wait until every launched background unit has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel pending units and drop all jobs."""
        for job in self._jobs.values():
            if job.cleanup_handle is not None:
                job.cleanup_handle.cancel()
        self._jobs.clear()

        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("playback.shutdown", cancelled_units=len(pending))

    async def check_generators(self) -> dict[str, bool]:
        """Startup diagnostics: availability of each configured generator."""
        generators = list(self.generators.values())
        results = await asyncio.gather(
            *(generator.is_available() for generator in generators), return_exceptions=True
        )

        availability = {}
        for generator, result in zip(generators, results):
            available = result is True
            availability[generator.get_name()] = available
            if isinstance(result, Exception):
                logger.warning(
                    "generator.check_failed",
                    generator=generator.get_name(),
                    error_type=type(result).__name__,
                    error_message=str(result),
                )
            logger.info(
                "generator.availability",
                generator=generator.get_name(),
                tier=generator.tier.value,
                available=available,
            )
        return availability

    def _live_job(self, key: JobKey) -> Optional[GenerationJob]:
        job = self._jobs.get(key)
        if job is not None and job.is_expired(self.job_ttl_seconds):
            self._remove_job(key, job)
            return None
        return job

    def _start_job(self, key: JobKey, genre: str, plan: GenerationPlan) -> GenerationJob:
        job = GenerationJob(key=key, genre=genre, plan=plan)
        self._jobs[key] = job

        loop = asyncio.get_running_loop()
        job.cleanup_handle = loop.call_later(self.job_ttl_seconds, self._remove_job, key, job)

        for tier in GENERATION_TIERS:
            count = plan.count_for(tier)
            generator = self.generators.get(tier)
            if generator is None:
                if count:
                    logger.warning("generation.tier.unconfigured", tier=tier.value, skipped=count)
                continue
            for _ in range(count):
                task = asyncio.create_task(self._run_unit(generator, genre))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                job.tasks.add(task)
                task.add_done_callback(job.tasks.discard)

        logger.info(
            "generation.batch.started",
            genre=genre,
            duration_bucket=key[1],
            fast=plan.fast,
            mid=plan.mid,
            expensive=plan.expensive,
            units=len(job.tasks),
        )
        return job

    def _remove_job(self, key: JobKey, job: GenerationJob) -> None:
        # Only drop the entry if it still belongs to this job
        if self._jobs.get(key) is job:
            del self._jobs[key]
            logger.debug("generation.job.expired", genre=job.genre, duration_bucket=key[1])
        if job.cleanup_handle is not None:
            job.cleanup_handle.cancel()

    async def _run_unit(self, generator: ImageGenerator, genre: str) -> None:
        async with self._semaphore:
            try:
                await self.pipeline.run(generator, genre)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "generation.unit.failed",
                    genre=genre,
                    generator=generator.get_name(),
                    error_type=type(e).__name__,
                    error_message=str(e),
                )

    def _build_breakdown(
        self,
        plan: GenerationPlan,
        precached_count: int,
        fallback_count: int,
        scheduled_job: Optional[GenerationJob],
    ) -> dict[str, Any]:
        def tier_entry(tier: GeneratorTier, percentage: int) -> dict[str, Any]:
            generator = self.generators.get(tier)
            return {
                "count": plan.count_for(tier),
                "percentage": percentage,
                "generator": generator.get_name() if generator else None,
            }

        scheduled = {tier.value: 0 for tier in GENERATION_TIERS}
        if scheduled_job is not None:
            for tier in GENERATION_TIERS:
                if tier in self.generators:
                    scheduled[tier.value] = plan.count_for(tier)

        return {
            "total_needed": plan.total_needed,
            "served": {
                SOURCE_PRECACHED: precached_count,
                SOURCE_FALLBACK_RANDOM: fallback_count,
            },
            "planned": {
                SOURCE_PRECACHED: {"count": plan.precached, "percentage": PRECACHED_PERCENTAGE},
                GeneratorTier.FAST.value: tier_entry(GeneratorTier.FAST, FAST_PERCENTAGE),
                GeneratorTier.MID.value: tier_entry(GeneratorTier.MID, MID_PERCENTAGE),
                GeneratorTier.EXPENSIVE.value: tier_entry(
                    GeneratorTier.EXPENSIVE, EXPENSIVE_PERCENTAGE
                ),
            },
            "scheduled": scheduled,
        }
